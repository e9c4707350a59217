#!/usr/bin/env python3
"""
Run the quote expiry sweep once.

Expires every MATCHING / OFFERS_AVAILABLE quote whose bidding window has
closed, together with its pending offers. Safe to run repeatedly (e.g. from
cron when the API's background scheduler is disabled).

Usage:
    python scripts/run_expiry_sweep.py
    python scripts/run_expiry_sweep.py --retry-webhooks --check-balances
"""

import sys
from pathlib import Path

# Add parent directory to path so we can import from services
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import logging

from api.dependencies import build_container
from services.config import get_settings
from services.quote_lifecycle_service import ThreadingTimerScheduler
from services.scheduler import WEBHOOK_MAX_ATTEMPTS, WEBHOOK_RETRY_BATCH


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Expire quotes whose bidding window has closed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sweep expired quotes
  python run_expiry_sweep.py

  # Also retry failed webhooks and send low-balance alerts
  python run_expiry_sweep.py --retry-webhooks --check-balances
        """
    )

    parser.add_argument(
        "--retry-webhooks",
        action="store_true",
        help="Re-send webhooks that have not been delivered yet"
    )

    parser.add_argument(
        "--check-balances",
        action="store_true",
        help="Alert partners whose wallet is at or below their threshold"
    )

    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    try:
        container = build_container(settings, scheduler=ThreadingTimerScheduler())

        expired = container.lifecycle.check_expired_quotes()
        print(f"Expired quotes: {len(expired)}")
        for quote_id in expired:
            print(f"  - {quote_id}")

        if args.check_balances:
            alerted = container.wallet.check_all_wallets()
            print(f"Low-balance alerts sent: {alerted}")

        if args.retry_webhooks and container.publisher is not None:
            delivered = container.publisher.retry_failed_webhooks(WEBHOOK_MAX_ATTEMPTS, WEBHOOK_RETRY_BATCH)
            print(f"Webhooks delivered on retry: {delivered}")

        return 0

    except KeyboardInterrupt:
        print("\n\nSweep interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
