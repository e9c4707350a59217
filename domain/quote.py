"""
Domain: Quote entity and its lifecycle states.

A Quote is a shipper's freight request, the unit around which bidding occurs.

Lifecycle:
  DRAFT -> SUBMITTED -> MATCHING -> OFFERS_AVAILABLE -> SELECTED
  MATCHING | OFFERS_AVAILABLE -> EXPIRED | CANCELLED

Invariant:
- Once a quote reaches a terminal status (SELECTED, EXPIRED, CANCELLED)
  its status never changes again.

This module contains only pure domain entities: no I/O, no database.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Optional, Tuple
from uuid import UUID

from .time import require_utc_timestamp


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    MATCHING = "MATCHING"
    OFFERS_AVAILABLE = "OFFERS_AVAILABLE"
    SELECTED = "SELECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_QUOTE_STATUSES

    @property
    def accepts_offers(self) -> bool:
        """Only quotes with a running timer accept new offers."""
        return self in OPEN_QUOTE_STATUSES


TERMINAL_QUOTE_STATUSES: FrozenSet[QuoteStatus] = frozenset(
    {QuoteStatus.SELECTED, QuoteStatus.EXPIRED, QuoteStatus.CANCELLED}
)

# Statuses the expiry sweep looks at and in which offers may be submitted.
OPEN_QUOTE_STATUSES: FrozenSet[QuoteStatus] = frozenset(
    {QuoteStatus.MATCHING, QuoteStatus.OFFERS_AVAILABLE}
)

# Statuses from which start_timer may move a quote into MATCHING.
TIMER_STARTABLE_STATUSES: FrozenSet[QuoteStatus] = frozenset(
    {QuoteStatus.DRAFT, QuoteStatus.SUBMITTED, QuoteStatus.MATCHING}
)


class HazardClass(str, Enum):
    """UN dangerous-goods classes. A quote with no hazard class is non-hazardous."""

    CLASS_1 = "CLASS_1"
    CLASS_2 = "CLASS_2"
    CLASS_3 = "CLASS_3"
    CLASS_4 = "CLASS_4"
    CLASS_5 = "CLASS_5"
    CLASS_6 = "CLASS_6"
    CLASS_7 = "CLASS_7"
    CLASS_8 = "CLASS_8"
    CLASS_9 = "CLASS_9"


class VehicleType(str, Enum):
    TRUCK = "TRUCK"
    CONTAINER = "CONTAINER"
    TANKER = "TANKER"
    ISO_TANK = "ISO_TANK"
    FLATBED = "FLATBED"
    REFRIGERATED = "REFRIGERATED"


@dataclass(frozen=True, slots=True)
class CargoDescriptor:
    """What is being shipped."""

    name: str
    quantity: Decimal
    unit: str
    hazard_class: Optional[HazardClass] = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError("quantity must be >= 0")

    @property
    def is_hazardous(self) -> bool:
        return self.hazard_class is not None


@dataclass(frozen=True, slots=True)
class Quote:
    """
    Pure domain entity for a Quote.

    Mutations return new instances; persistence of the new state is the
    repository's job.
    """

    quote_id: UUID
    shipper_id: UUID
    quote_number: str
    status: QuoteStatus
    cargo: CargoDescriptor
    pickup_state: str
    delivery_state: str
    created_at: datetime
    preferred_vehicle_types: Tuple[VehicleType, ...] = field(default_factory=tuple)
    is_urgent: bool = False
    expires_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.expires_at is not None:
            require_utc_timestamp("expires_at", self.expires_at)
        if self.submitted_at is not None:
            require_utc_timestamp("submitted_at", self.submitted_at)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def with_status(self, status: QuoteStatus) -> "Quote":
        """
        Return a copy in the given status.

        Raises ValueError when the quote is already terminal and the target differs.
        """

        if self.status == status:
            return self
        if self.is_terminal:
            raise ValueError(
                f"Quote {self.quote_id} is {self.status.value}; terminal status cannot change"
            )
        return replace(self, status=status)

    def with_expiry(self, expires_at: datetime) -> "Quote":
        require_utc_timestamp("expires_at", expires_at)
        return replace(self, expires_at=expires_at)
