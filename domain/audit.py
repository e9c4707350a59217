"""
Domain: Audit log entries.

Every state change the core makes (offer settlement, timer start/extension,
expiry, selection, cancellation, wallet alert settings) leaves an immutable
audit row. Audit rows written inside an atomic unit commit or roll back with it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID, uuid4

from .time import require_utc_timestamp


class AuditAction(str, Enum):
    SUBMIT_OFFER = "SUBMIT_OFFER"
    WITHDRAW_OFFER = "WITHDRAW_OFFER"
    QUOTE_TIMER_STARTED = "QUOTE_TIMER_STARTED"
    QUOTE_TIMER_EXTENDED = "QUOTE_TIMER_EXTENDED"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    QUOTE_CANCELLED = "QUOTE_CANCELLED"
    OFFER_SELECTED = "OFFER_SELECTED"
    LOW_BALANCE_ALERT = "LOW_BALANCE_ALERT"
    UPDATE_WALLET_ALERT_SETTINGS = "UPDATE_WALLET_ALERT_SETTINGS"


class AuditEntity(str, Enum):
    QUOTE = "QUOTE"
    OFFER = "OFFER"
    WALLET = "WALLET"


@dataclass(frozen=True, slots=True)
class AuditEntry:
    action: AuditAction
    entity: AuditEntity
    entity_id: UUID
    created_at: datetime
    changes: Mapping[str, Any] = field(default_factory=dict)
    actor_id: Optional[UUID] = None
    quote_id: Optional[UUID] = None
    audit_id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
