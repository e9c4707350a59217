"""
Persistence contract for the lead monetization core.

The services never talk to a database directly; they depend on this protocol.
Two implementations exist:
- repositories.supabase_store.SupabaseStore: production, every atomic unit is a
  PostgreSQL function invoked through supabase.rpc()
- repositories.memory_store.InMemoryStore: tests and local runs

Atomic operations (settle_offer, debit_wallet, credit_wallet, refund_transaction,
expire_quote, cancel_quote, select_offer) either apply completely or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Protocol
from uuid import UUID

from domain.audit import AuditEntry
from domain.notification import WebhookDelivery
from domain.offer import Offer, OfferPriceDetails, OfferStatus
from domain.pricing import SubscriptionTier
from domain.quote import Quote, QuoteStatus
from domain.wallet import DebitResult, LeadTransaction, LeadWallet


class SettlementErrorCode(str, Enum):
    QUOTE_NOT_FOUND = "QUOTE_NOT_FOUND"
    QUOTE_NOT_OPEN = "QUOTE_NOT_OPEN"
    DUPLICATE_OFFER = "DUPLICATE_OFFER"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"


@dataclass(frozen=True, slots=True)
class SettlementCommand:
    """Everything the atomic settlement unit needs; pricing already happened."""

    offer_id: UUID
    quote_id: UUID
    partner_id: UUID
    details: OfferPriceDetails
    lead_cost: Decimal
    lead_metadata: Mapping[str, Any]
    description: str
    submitted_at: datetime


@dataclass(frozen=True, slots=True)
class AtomicSettlementResult:
    """Result from the atomic settlement unit (submit_offer_atomic)."""

    success: bool
    offer: Optional[Offer] = None
    transaction: Optional[LeadTransaction] = None
    balance_before: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None
    error_code: Optional[SettlementErrorCode] = None
    error_message: Optional[str] = None
    available_balance: Optional[Decimal] = None
    quote_status: Optional[QuoteStatus] = None


@dataclass(frozen=True, slots=True)
class QuoteClosure:
    """
    Result of expiring or cancelling a quote.

    applied is False when the quote was already terminal (no-op).
    """

    quote_id: UUID
    applied: bool
    previous_status: Optional[QuoteStatus]
    offers_affected: int = 0


@dataclass(frozen=True, slots=True)
class SelectionOutcome:
    quote: Quote
    offer: Offer
    applied: bool
    rejected_offers: int = 0


class MarketplaceStore(Protocol):
    # Quotes
    def get_quote(self, quote_id: UUID) -> Optional[Quote]: ...

    def insert_quote(self, quote: Quote) -> None: ...

    def start_quote_timer(self, quote_id: UUID, expires_at: datetime) -> Optional[Quote]: ...

    def extend_quote_timer(
        self, quote_id: UUID, previous_expires_at: datetime, new_expires_at: datetime
    ) -> Optional[Quote]: ...

    def transition_quote_status(
        self, quote_id: UUID, from_statuses: Iterable[QuoteStatus], to_status: QuoteStatus
    ) -> bool: ...

    def expire_quote(self, quote_id: UUID, expired_at: datetime) -> QuoteClosure: ...

    def cancel_quote(self, quote_id: UUID, cancelled_at: datetime) -> QuoteClosure: ...

    def list_quotes_due_for_expiry(self, now: datetime) -> List[Quote]: ...

    # Offers
    def get_offer(self, offer_id: UUID) -> Optional[Offer]: ...

    def find_active_offer(self, quote_id: UUID, partner_id: UUID) -> Optional[Offer]: ...

    def list_offers(self, quote_id: UUID, status: Optional[OfferStatus] = None) -> List[Offer]: ...

    def settle_offer(self, command: SettlementCommand) -> AtomicSettlementResult: ...

    def select_offer(self, offer_id: UUID, selected_at: datetime) -> SelectionOutcome: ...

    def withdraw_offer(self, offer_id: UUID, partner_id: UUID, withdrawn_at: datetime) -> Optional[Offer]: ...

    # Wallets and ledger
    def get_wallet(self, partner_id: UUID) -> Optional[LeadWallet]: ...

    def insert_wallet(self, wallet: LeadWallet) -> None: ...

    def credit_wallet(
        self,
        partner_id: UUID,
        amount: Decimal,
        description: str,
        metadata: Mapping[str, Any],
        credited_at: datetime,
    ) -> LeadTransaction: ...

    def debit_wallet(
        self,
        partner_id: UUID,
        amount: Decimal,
        description: str,
        metadata: Mapping[str, Any],
        debited_at: datetime,
        offer_id: Optional[UUID] = None,
        quote_id: Optional[UUID] = None,
    ) -> DebitResult: ...

    def refund_transaction(self, transaction_id: UUID, reason: str, refunded_at: datetime) -> LeadTransaction: ...

    def get_transaction(self, transaction_id: UUID) -> Optional[LeadTransaction]: ...

    def list_transactions(self, partner_id: UUID, limit: Optional[int] = None) -> List[LeadTransaction]: ...

    def update_wallet_alert_settings(
        self,
        partner_id: UUID,
        low_balance_alert: Optional[bool],
        alert_threshold: Optional[Decimal],
    ) -> Optional[LeadWallet]: ...

    def list_low_balance_wallets(self) -> List[LeadWallet]: ...

    # Pricing and partner profile
    def get_active_pricing_row(self) -> Optional[Mapping[str, Any]]: ...

    def get_subscription_tier(self, partner_id: UUID) -> Optional[SubscriptionTier]: ...

    # Audit and webhooks
    def insert_audit(self, entry: AuditEntry) -> None: ...

    def list_audit(self, entity_id: Optional[UUID] = None) -> List[AuditEntry]: ...

    def insert_webhook_delivery(self, delivery: WebhookDelivery) -> None: ...

    def update_webhook_delivery(self, delivery: WebhookDelivery) -> None: ...

    def list_failed_webhook_deliveries(self, max_attempts: int, limit: int) -> List[WebhookDelivery]: ...
