"""
Domain: Notification decisions.

The core decides *that* someone is notified and *what* they are told; delivery
over email, SMS, WhatsApp or the partner portal belongs to an external sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Tuple
from uuid import UUID


class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"
    PORTAL = "PORTAL"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationEvent(str, Enum):
    OFFER_EXPIRING_SOON = "OFFER_EXPIRING_SOON"
    LEAD_PAYMENT_FAILED = "LEAD_PAYMENT_FAILED"
    QUOTE_OFFERS_AVAILABLE = "QUOTE_OFFERS_AVAILABLE"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    LOW_WALLET_BALANCE = "LOW_WALLET_BALANCE"


# Events that are also published as signed webhooks.
WEBHOOK_EVENTS = frozenset(
    {NotificationEvent.QUOTE_OFFERS_AVAILABLE, NotificationEvent.LEAD_PAYMENT_FAILED}
)


@dataclass(frozen=True, slots=True)
class Notification:
    recipient_id: UUID
    title: str
    message: str
    event: NotificationEvent
    channels: Tuple[NotificationChannel, ...] = (NotificationChannel.PORTAL,)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class WebhookDelivery:
    """
    Record of one webhook delivery and its attempts.

    status_code is None when the transport itself failed.
    """

    delivery_id: UUID
    event: NotificationEvent
    url: str
    payload: Mapping[str, Any]
    signature: str
    attempts: int
    status_code: Optional[int] = None
    response_body: str = ""
    last_attempt_at: Optional[datetime] = None

    @property
    def delivered(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300
