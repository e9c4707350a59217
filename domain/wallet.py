"""
Domain: Lead wallet and its append-only ledger.

Contract excerpts implemented here:
- balance >= 0 at all observable times.
- The only mutators are credit (RECHARGE), debit (DEBIT) and refund (REFUND).
- Ledger reconstructibility: initial_balance + sum(amounts) == balance.
  DEBIT amounts are stored negative; RECHARGE and REFUND amounts positive.
- LeadTransaction entries are immutable and never updated or deleted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from .time import require_utc_timestamp

ZERO = Decimal("0.00")


class TransactionType(str, Enum):
    RECHARGE = "RECHARGE"
    DEBIT = "DEBIT"
    REFUND = "REFUND"


class LeadType(str, Enum):
    EXCLUSIVE = "EXCLUSIVE"
    SHARED = "SHARED"


@dataclass(frozen=True, slots=True)
class LeadWallet:
    wallet_id: UUID
    partner_id: UUID
    balance: Decimal
    initial_balance: Decimal = ZERO
    currency: str = "INR"
    low_balance_alert: bool = True
    alert_threshold: Decimal = Decimal("1000.00")

    def __post_init__(self) -> None:
        if self.balance < 0:
            raise ValueError("wallet balance must be >= 0")
        if self.initial_balance < 0:
            raise ValueError("initial_balance must be >= 0")

    def can_cover(self, amount: Decimal) -> bool:
        return self.balance >= amount

    @property
    def below_alert_threshold(self) -> bool:
        return self.low_balance_alert and self.balance <= self.alert_threshold


@dataclass(frozen=True, slots=True)
class LeadTransaction:
    """Immutable ledger entry."""

    transaction_id: UUID
    wallet_id: UUID
    transaction_type: TransactionType
    amount: Decimal  # signed
    balance_after: Decimal
    created_at: datetime
    description: str = ""
    offer_id: Optional[UUID] = None
    quote_id: Optional[UUID] = None
    refunded_transaction_id: Optional[UUID] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.transaction_type is TransactionType.DEBIT and self.amount >= 0:
            raise ValueError("DEBIT amounts must be negative")
        if self.transaction_type is not TransactionType.DEBIT and self.amount <= 0:
            raise ValueError(f"{self.transaction_type.value} amounts must be positive")


@dataclass(frozen=True, slots=True)
class DebitResult:
    """
    Outcome of a conditional debit.

    Insufficient funds is a normal outcome, not an exception: success is False
    and available carries the balance re-read after the failed update.
    """

    success: bool
    required: Decimal
    available: Decimal
    transaction: Optional[LeadTransaction] = None

    @property
    def insufficient_funds(self) -> bool:
        return not self.success

    @property
    def new_balance(self) -> Decimal:
        if self.transaction is not None:
            return self.transaction.balance_after
        return self.available


def reconstruct_balance(initial_balance: Decimal, transactions: Iterable[LeadTransaction]) -> Decimal:
    """Replay the ledger: initial_balance + sum of signed amounts."""

    total = initial_balance
    for txn in transactions:
        total += txn.amount
    return total
