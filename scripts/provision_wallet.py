#!/usr/bin/env python3
"""
Provision a lead wallet for a logistics partner.

Partner onboarding normally does this; the script exists for support and demos.

Usage:
    python scripts/provision_wallet.py --partner-id <uuid> --opening-balance 5000
"""

import sys
from pathlib import Path

# Add parent directory to path so we can import from services
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
from decimal import Decimal, InvalidOperation
from uuid import UUID

from api.dependencies import build_container
from domain.pricing import SubscriptionTier


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from None


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Provision a partner lead wallet")

    parser.add_argument("--partner-id", required=True, type=UUID, help="Partner UUID")
    parser.add_argument(
        "--opening-balance",
        type=_decimal,
        default=Decimal("0"),
        help="Initial recharge amount (INR)"
    )
    parser.add_argument(
        "--alert-threshold",
        type=_decimal,
        default=Decimal("1000.00"),
        help="Low-balance alert threshold (INR)"
    )
    parser.add_argument("--currency", default="INR")
    parser.add_argument(
        "--show-tier",
        action="store_true",
        help="Print the partner's subscription tier (FREE when none is on file)"
    )

    args = parser.parse_args()

    try:
        container = build_container()
        wallet = container.wallet.provision_wallet(
            args.partner_id,
            opening_balance=args.opening_balance,
            currency=args.currency,
            alert_threshold=args.alert_threshold,
        )

        print("[SUCCESS] Lead wallet provisioned")
        print(f"  Partner ID: {wallet.partner_id}")
        print(f"  Wallet ID:  {wallet.wallet_id}")
        print(f"  Balance:    {wallet.balance:.2f} {wallet.currency}")
        print(f"  Alert at:   {wallet.alert_threshold:.2f}")

        if args.show_tier:
            tier = container.store.get_subscription_tier(args.partner_id) or SubscriptionTier.FREE
            print(f"  Tier:       {tier.value}")
        return 0

    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
