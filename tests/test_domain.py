"""
Tests for the pure domain model (`domain/`).

Covers contract rules:
- Timestamps are UTC.
- Terminal quotes never change status.
- Ledger amounts are signed by transaction type; wallets never go negative.
- Offer terms are validated at construction.
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from domain.offer import OfferPriceDetails, OfferStatus
from domain.quote import CargoDescriptor, Quote, QuoteStatus
from domain.time import require_utc_timestamp, whole_minutes_between
from domain.wallet import DebitResult, LeadTransaction, LeadWallet, TransactionType

NOW = datetime(2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


def _quote(status: QuoteStatus) -> Quote:
    return Quote(
        quote_id=uuid4(),
        shipper_id=uuid4(),
        quote_number="QT-1",
        status=status,
        cargo=CargoDescriptor(name="Steel coils", quantity=Decimal("20"), unit="MT"),
        pickup_state="Gujarat",
        delivery_state="Delhi",
        created_at=NOW,
    )


def test_timestamps_must_be_utc() -> None:
    with pytest.raises(ValueError):
        require_utc_timestamp("t", datetime(2025, 1, 1))
    with pytest.raises(ValueError):
        require_utc_timestamp("t", datetime(2025, 1, 1, tzinfo=timezone(timedelta(hours=5, minutes=30))))

    require_utc_timestamp("t", NOW)


def test_whole_minutes_between_floors_and_clamps() -> None:
    assert whole_minutes_between(NOW, NOW + timedelta(minutes=9, seconds=59)) == 9
    assert whole_minutes_between(NOW, NOW - timedelta(minutes=5)) == 0


@pytest.mark.parametrize("terminal", [QuoteStatus.SELECTED, QuoteStatus.EXPIRED, QuoteStatus.CANCELLED])
def test_terminal_quote_status_never_changes(terminal: QuoteStatus) -> None:
    quote = _quote(terminal)

    assert quote.is_terminal
    assert quote.with_status(terminal) is quote
    with pytest.raises(ValueError):
        quote.with_status(QuoteStatus.MATCHING)


def test_only_running_quotes_accept_offers() -> None:
    assert QuoteStatus.MATCHING.accepts_offers
    assert QuoteStatus.OFFERS_AVAILABLE.accepts_offers
    assert not QuoteStatus.DRAFT.accepts_offers
    assert not QuoteStatus.EXPIRED.accepts_offers


def test_quote_is_immutable() -> None:
    quote = _quote(QuoteStatus.DRAFT)

    with pytest.raises(FrozenInstanceError):
        quote.status = QuoteStatus.MATCHING  # type: ignore[misc]


def test_withdrawn_offer_does_not_occupy_slot() -> None:
    assert OfferStatus.PENDING.occupies_slot
    assert OfferStatus.EXPIRED.occupies_slot
    assert not OfferStatus.WITHDRAWN.occupies_slot


@pytest.mark.parametrize("price, days", [(Decimal("0"), 3), (Decimal("100"), 0)])
def test_offer_terms_are_validated(price: Decimal, days: int) -> None:
    with pytest.raises(ValueError):
        OfferPriceDetails(price=price, transit_days=days, valid_until=NOW)


def test_wallet_balance_cannot_be_negative() -> None:
    with pytest.raises(ValueError):
        LeadWallet(wallet_id=uuid4(), partner_id=uuid4(), balance=Decimal("-0.01"))


def test_alert_threshold_is_inclusive() -> None:
    wallet = LeadWallet(wallet_id=uuid4(), partner_id=uuid4(), balance=Decimal("1000"))

    assert wallet.below_alert_threshold
    assert not LeadWallet(
        wallet_id=uuid4(), partner_id=uuid4(), balance=Decimal("1000"), low_balance_alert=False
    ).below_alert_threshold


def test_ledger_amounts_are_signed_by_type() -> None:
    with pytest.raises(ValueError):
        LeadTransaction(
            transaction_id=uuid4(),
            wallet_id=uuid4(),
            transaction_type=TransactionType.DEBIT,
            amount=Decimal("100"),
            balance_after=Decimal("0"),
            created_at=NOW,
        )
    with pytest.raises(ValueError):
        LeadTransaction(
            transaction_id=uuid4(),
            wallet_id=uuid4(),
            transaction_type=TransactionType.REFUND,
            amount=Decimal("-100"),
            balance_after=Decimal("0"),
            created_at=NOW,
        )


def test_failed_debit_reports_available_balance() -> None:
    result = DebitResult(success=False, required=Decimal("700"), available=Decimal("300"))

    assert result.insufficient_funds
    assert result.new_balance == Decimal("300")
