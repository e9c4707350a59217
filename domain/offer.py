"""
Domain: Offer entity.

An Offer is a logistics partner's priced bid against a Quote.

Contract excerpts implemented here:
- At most one non-withdrawn offer per (quote_id, partner_id).
- An offer's lead fee is charged exactly once; offers are only created by a
  successful settlement.
- PENDING offers become EXPIRED en masse when their quote expires.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID

from .time import require_utc_timestamp


class OfferStatus(str, Enum):
    PENDING = "PENDING"
    SELECTED = "SELECTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    EXPIRED = "EXPIRED"

    @property
    def occupies_slot(self) -> bool:
        """Every status except WITHDRAWN counts against the one-offer-per-partner rule."""
        return self is not OfferStatus.WITHDRAWN


@dataclass(frozen=True, slots=True)
class OfferPriceDetails:
    """
    Partner-supplied commercial terms of a bid.

    The lead fee is not part of this; it is computed by the pricing engine.
    """

    price: Decimal
    transit_days: int
    valid_until: datetime
    pickup_available_from: Optional[datetime] = None
    insurance_included: bool = False
    tracking_included: bool = True
    customs_clearance: bool = False
    value_added_services: Tuple[str, ...] = field(default_factory=tuple)
    remarks: Optional[str] = None

    def __post_init__(self) -> None:
        if self.price <= 0:
            raise ValueError("price must be > 0")
        if self.transit_days <= 0:
            raise ValueError("transit_days must be > 0")
        require_utc_timestamp("valid_until", self.valid_until)
        if self.pickup_available_from is not None:
            require_utc_timestamp("pickup_available_from", self.pickup_available_from)


@dataclass(frozen=True, slots=True)
class Offer:
    offer_id: UUID
    quote_id: UUID
    partner_id: UUID
    status: OfferStatus
    details: OfferPriceDetails
    created_at: datetime
    lead_cost: Decimal = Decimal("0.00")

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)

    @property
    def price(self) -> Decimal:
        return self.details.price

    @property
    def is_pending(self) -> bool:
        return self.status is OfferStatus.PENDING
