"""
In-memory MarketplaceStore.

Used by the test suite and for local runs without Supabase (STORE_BACKEND=memory).

Every public method runs under one re-entrant lock, which gives the same
guarantee a SERIALIZABLE database transaction gives the SQL functions in
migrations/001_lead_core.sql: each atomic operation observes and mutates a
consistent snapshot. Atomic operations validate everything first and only then
apply their writes, so a rejected operation leaves no partial state.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import UUID, uuid4

from domain.audit import AuditAction, AuditEntity, AuditEntry
from domain.errors import (
    OfferNotFoundError,
    OfferNotPendingError,
    QuoteNotFoundError,
    QuoteNotOpenError,
    RefundNotAllowedError,
    TransactionNotFoundError,
    WalletNotProvisionedError,
)
from domain.notification import WebhookDelivery
from domain.offer import Offer, OfferStatus
from domain.pricing import SubscriptionTier
from domain.quote import OPEN_QUOTE_STATUSES, TIMER_STARTABLE_STATUSES, Quote, QuoteStatus
from domain.wallet import DebitResult, LeadTransaction, LeadWallet, TransactionType
from repositories.store import (
    AtomicSettlementResult,
    QuoteClosure,
    SelectionOutcome,
    SettlementCommand,
    SettlementErrorCode,
)


class InMemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._quotes: Dict[UUID, Quote] = {}
        self._offers: Dict[UUID, Offer] = {}
        self._wallets: Dict[UUID, LeadWallet] = {}  # keyed by partner_id
        self._transactions: List[LeadTransaction] = []
        self._audit: List[AuditEntry] = []
        self._webhooks: Dict[UUID, WebhookDelivery] = {}
        self._tiers: Dict[UUID, SubscriptionTier] = {}
        self._pricing_row: Optional[Mapping[str, Any]] = None

    # ------------------------------------------------------------------
    # Seeding helpers (provisioning is external in production)
    # ------------------------------------------------------------------

    def set_subscription_tier(self, partner_id: UUID, tier: SubscriptionTier) -> None:
        with self._lock:
            self._tiers[partner_id] = tier

    def set_active_pricing_row(self, row: Optional[Mapping[str, Any]]) -> None:
        with self._lock:
            self._pricing_row = dict(row) if row is not None else None

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def get_quote(self, quote_id: UUID) -> Optional[Quote]:
        with self._lock:
            return self._quotes.get(quote_id)

    def insert_quote(self, quote: Quote) -> None:
        with self._lock:
            if quote.quote_id in self._quotes:
                raise ValueError(f"Quote already exists: {quote.quote_id}")
            self._quotes[quote.quote_id] = quote

    def start_quote_timer(self, quote_id: UUID, expires_at: datetime) -> Optional[Quote]:
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None:
                return None
            if quote.status in TIMER_STARTABLE_STATUSES:
                updated = replace(quote, status=QuoteStatus.MATCHING, expires_at=expires_at)
            elif quote.status is QuoteStatus.OFFERS_AVAILABLE:
                updated = replace(quote, expires_at=expires_at)
            else:
                return None
            self._quotes[quote_id] = updated
            return updated

    def extend_quote_timer(
        self, quote_id: UUID, previous_expires_at: datetime, new_expires_at: datetime
    ) -> Optional[Quote]:
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None or quote.status not in OPEN_QUOTE_STATUSES:
                return None
            if quote.expires_at != previous_expires_at:
                return None
            updated = replace(quote, expires_at=new_expires_at)
            self._quotes[quote_id] = updated
            return updated

    def transition_quote_status(
        self, quote_id: UUID, from_statuses: Iterable[QuoteStatus], to_status: QuoteStatus
    ) -> bool:
        allowed = set(from_statuses)
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None or quote.status not in allowed:
                return False
            self._quotes[quote_id] = quote.with_status(to_status)
            return True

    def expire_quote(self, quote_id: UUID, expired_at: datetime) -> QuoteClosure:
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None:
                return QuoteClosure(quote_id=quote_id, applied=False, previous_status=None)
            if quote.is_terminal:
                return QuoteClosure(quote_id=quote_id, applied=False, previous_status=quote.status)

            self._quotes[quote_id] = quote.with_status(QuoteStatus.EXPIRED)
            expired = self._cascade_pending(quote_id, OfferStatus.EXPIRED)
            self._audit.append(
                AuditEntry(
                    action=AuditAction.QUOTE_EXPIRED,
                    entity=AuditEntity.QUOTE,
                    entity_id=quote_id,
                    quote_id=quote_id,
                    created_at=expired_at,
                    changes={
                        "previousStatus": quote.status.value,
                        "expiresAt": quote.expires_at.isoformat() if quote.expires_at else None,
                        "expiredAt": expired_at.isoformat(),
                        "offersExpired": expired,
                    },
                )
            )
            return QuoteClosure(
                quote_id=quote_id, applied=True, previous_status=quote.status, offers_affected=expired
            )

    def cancel_quote(self, quote_id: UUID, cancelled_at: datetime) -> QuoteClosure:
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None:
                raise QuoteNotFoundError(quote_id)
            if quote.status is QuoteStatus.CANCELLED:
                return QuoteClosure(quote_id=quote_id, applied=False, previous_status=quote.status)
            if quote.is_terminal:
                raise QuoteNotOpenError(quote_id, quote.status.value)

            self._quotes[quote_id] = quote.with_status(QuoteStatus.CANCELLED)
            rejected = self._cascade_pending(quote_id, OfferStatus.REJECTED)
            self._audit.append(
                AuditEntry(
                    action=AuditAction.QUOTE_CANCELLED,
                    entity=AuditEntity.QUOTE,
                    entity_id=quote_id,
                    quote_id=quote_id,
                    created_at=cancelled_at,
                    changes={"previousStatus": quote.status.value, "offersRejected": rejected},
                )
            )
            return QuoteClosure(
                quote_id=quote_id, applied=True, previous_status=quote.status, offers_affected=rejected
            )

    def list_quotes_due_for_expiry(self, now: datetime) -> List[Quote]:
        with self._lock:
            return [
                q
                for q in self._quotes.values()
                if q.status in OPEN_QUOTE_STATUSES and q.expires_at is not None and q.expires_at <= now
            ]

    def _cascade_pending(self, quote_id: UUID, to_status: OfferStatus) -> int:
        count = 0
        for offer_id, offer in list(self._offers.items()):
            if offer.quote_id == quote_id and offer.status is OfferStatus.PENDING:
                self._offers[offer_id] = replace(offer, status=to_status)
                count += 1
        return count

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def get_offer(self, offer_id: UUID) -> Optional[Offer]:
        with self._lock:
            return self._offers.get(offer_id)

    def find_active_offer(self, quote_id: UUID, partner_id: UUID) -> Optional[Offer]:
        with self._lock:
            for offer in self._offers.values():
                if offer.quote_id == quote_id and offer.partner_id == partner_id and offer.status.occupies_slot:
                    return offer
            return None

    def list_offers(self, quote_id: UUID, status: Optional[OfferStatus] = None) -> List[Offer]:
        with self._lock:
            offers = [o for o in self._offers.values() if o.quote_id == quote_id]
            if status is not None:
                offers = [o for o in offers if o.status is status]
            return sorted(offers, key=lambda o: o.created_at)

    def settle_offer(self, command: SettlementCommand) -> AtomicSettlementResult:
        with self._lock:
            quote = self._quotes.get(command.quote_id)
            if quote is None:
                return AtomicSettlementResult(
                    success=False,
                    error_code=SettlementErrorCode.QUOTE_NOT_FOUND,
                    error_message="Quote not found",
                )
            if not quote.status.accepts_offers:
                return AtomicSettlementResult(
                    success=False,
                    error_code=SettlementErrorCode.QUOTE_NOT_OPEN,
                    error_message=f"Quote is {quote.status.value}",
                    quote_status=quote.status,
                )
            if self.find_active_offer(command.quote_id, command.partner_id) is not None:
                return AtomicSettlementResult(
                    success=False,
                    error_code=SettlementErrorCode.DUPLICATE_OFFER,
                    error_message="Partner already has an offer on this quote",
                )
            wallet = self._wallets.get(command.partner_id)
            if wallet is None:
                return AtomicSettlementResult(
                    success=False,
                    error_code=SettlementErrorCode.WALLET_NOT_FOUND,
                    error_message="Lead wallet not found",
                )
            if not wallet.can_cover(command.lead_cost):
                return AtomicSettlementResult(
                    success=False,
                    error_code=SettlementErrorCode.INSUFFICIENT_BALANCE,
                    error_message="Insufficient wallet balance",
                    available_balance=wallet.balance,
                )

            offer = Offer(
                offer_id=command.offer_id,
                quote_id=command.quote_id,
                partner_id=command.partner_id,
                status=OfferStatus.PENDING,
                details=command.details,
                created_at=command.submitted_at,
                lead_cost=command.lead_cost,
            )
            updated_wallet = replace(wallet, balance=wallet.balance - command.lead_cost)
            txn = LeadTransaction(
                transaction_id=uuid4(),
                wallet_id=wallet.wallet_id,
                transaction_type=TransactionType.DEBIT,
                amount=-command.lead_cost,
                balance_after=updated_wallet.balance,
                created_at=command.submitted_at,
                description=command.description,
                offer_id=offer.offer_id,
                quote_id=command.quote_id,
                metadata=dict(command.lead_metadata),
            )
            audit = AuditEntry(
                action=AuditAction.SUBMIT_OFFER,
                entity=AuditEntity.OFFER,
                entity_id=offer.offer_id,
                actor_id=command.partner_id,
                quote_id=command.quote_id,
                created_at=command.submitted_at,
                changes={
                    "quoteId": str(command.quote_id),
                    "price": str(command.details.price),
                    "leadCost": str(command.lead_cost),
                    "walletBalanceBefore": str(wallet.balance),
                    "walletBalanceAfter": str(updated_wallet.balance),
                },
            )

            self._wallets[command.partner_id] = updated_wallet
            self._offers[offer.offer_id] = offer
            self._transactions.append(txn)
            self._audit.append(audit)

            return AtomicSettlementResult(
                success=True,
                offer=offer,
                transaction=txn,
                balance_before=wallet.balance,
                balance_after=updated_wallet.balance,
            )

    def select_offer(self, offer_id: UUID, selected_at: datetime) -> SelectionOutcome:
        with self._lock:
            offer = self._offers.get(offer_id)
            if offer is None:
                raise OfferNotFoundError(offer_id)
            quote = self._quotes[offer.quote_id]

            if offer.status is OfferStatus.SELECTED and quote.status is QuoteStatus.SELECTED:
                return SelectionOutcome(quote=quote, offer=offer, applied=False)
            if quote.is_terminal:
                raise QuoteNotOpenError(quote.quote_id, quote.status.value)
            if offer.status is not OfferStatus.PENDING:
                raise OfferNotPendingError(offer_id, offer.status.value)

            selected = replace(offer, status=OfferStatus.SELECTED)
            self._offers[offer_id] = selected
            rejected = self._cascade_pending(quote.quote_id, OfferStatus.REJECTED)
            updated_quote = quote.with_status(QuoteStatus.SELECTED)
            self._quotes[quote.quote_id] = updated_quote
            self._audit.append(
                AuditEntry(
                    action=AuditAction.OFFER_SELECTED,
                    entity=AuditEntity.OFFER,
                    entity_id=offer_id,
                    quote_id=quote.quote_id,
                    created_at=selected_at,
                    changes={"previousStatus": quote.status.value, "offersRejected": rejected},
                )
            )
            return SelectionOutcome(quote=updated_quote, offer=selected, applied=True, rejected_offers=rejected)

    def withdraw_offer(self, offer_id: UUID, partner_id: UUID, withdrawn_at: datetime) -> Optional[Offer]:
        with self._lock:
            offer = self._offers.get(offer_id)
            if offer is None or offer.partner_id != partner_id or offer.status is not OfferStatus.PENDING:
                return None
            withdrawn = replace(offer, status=OfferStatus.WITHDRAWN)
            self._offers[offer_id] = withdrawn
            self._audit.append(
                AuditEntry(
                    action=AuditAction.WITHDRAW_OFFER,
                    entity=AuditEntity.OFFER,
                    entity_id=offer_id,
                    actor_id=partner_id,
                    quote_id=offer.quote_id,
                    created_at=withdrawn_at,
                )
            )
            return withdrawn

    # ------------------------------------------------------------------
    # Wallets and ledger
    # ------------------------------------------------------------------

    def get_wallet(self, partner_id: UUID) -> Optional[LeadWallet]:
        with self._lock:
            return self._wallets.get(partner_id)

    def insert_wallet(self, wallet: LeadWallet) -> None:
        with self._lock:
            if wallet.partner_id in self._wallets:
                raise ValueError(f"Wallet already exists for partner {wallet.partner_id}")
            self._wallets[wallet.partner_id] = wallet

    def credit_wallet(
        self,
        partner_id: UUID,
        amount: Decimal,
        description: str,
        metadata: Mapping[str, Any],
        credited_at: datetime,
    ) -> LeadTransaction:
        with self._lock:
            wallet = self._wallets.get(partner_id)
            if wallet is None:
                raise WalletNotProvisionedError(partner_id)
            updated = replace(wallet, balance=wallet.balance + amount)
            txn = LeadTransaction(
                transaction_id=uuid4(),
                wallet_id=wallet.wallet_id,
                transaction_type=TransactionType.RECHARGE,
                amount=amount,
                balance_after=updated.balance,
                created_at=credited_at,
                description=description,
                metadata=dict(metadata),
            )
            self._wallets[partner_id] = updated
            self._transactions.append(txn)
            return txn

    def debit_wallet(
        self,
        partner_id: UUID,
        amount: Decimal,
        description: str,
        metadata: Mapping[str, Any],
        debited_at: datetime,
        offer_id: Optional[UUID] = None,
        quote_id: Optional[UUID] = None,
    ) -> DebitResult:
        with self._lock:
            wallet = self._wallets.get(partner_id)
            if wallet is None:
                raise WalletNotProvisionedError(partner_id)
            # Conditional update: balance - amount WHERE balance >= amount
            if not wallet.can_cover(amount):
                return DebitResult(success=False, required=amount, available=wallet.balance)

            updated = replace(wallet, balance=wallet.balance - amount)
            txn = LeadTransaction(
                transaction_id=uuid4(),
                wallet_id=wallet.wallet_id,
                transaction_type=TransactionType.DEBIT,
                amount=-amount,
                balance_after=updated.balance,
                created_at=debited_at,
                description=description,
                offer_id=offer_id,
                quote_id=quote_id,
                metadata=dict(metadata),
            )
            self._wallets[partner_id] = updated
            self._transactions.append(txn)
            return DebitResult(success=True, required=amount, available=wallet.balance, transaction=txn)

    def refund_transaction(self, transaction_id: UUID, reason: str, refunded_at: datetime) -> LeadTransaction:
        with self._lock:
            original = self._find_transaction(transaction_id)
            if original is None or original.transaction_type is not TransactionType.DEBIT:
                raise TransactionNotFoundError(transaction_id)
            if any(t.refunded_transaction_id == transaction_id for t in self._transactions):
                raise RefundNotAllowedError(transaction_id, "already refunded")

            wallet = next(w for w in self._wallets.values() if w.wallet_id == original.wallet_id)
            amount = -original.amount
            updated = replace(wallet, balance=wallet.balance + amount)
            txn = LeadTransaction(
                transaction_id=uuid4(),
                wallet_id=wallet.wallet_id,
                transaction_type=TransactionType.REFUND,
                amount=amount,
                balance_after=updated.balance,
                created_at=refunded_at,
                description=f"Refund for lead fee {transaction_id}: {reason}",
                offer_id=original.offer_id,
                quote_id=original.quote_id,
                refunded_transaction_id=transaction_id,
                metadata={"reason": reason},
            )
            self._wallets[wallet.partner_id] = updated
            self._transactions.append(txn)
            return txn

    def get_transaction(self, transaction_id: UUID) -> Optional[LeadTransaction]:
        with self._lock:
            return self._find_transaction(transaction_id)

    def _find_transaction(self, transaction_id: UUID) -> Optional[LeadTransaction]:
        for txn in self._transactions:
            if txn.transaction_id == transaction_id:
                return txn
        return None

    def list_transactions(self, partner_id: UUID, limit: Optional[int] = None) -> List[LeadTransaction]:
        with self._lock:
            wallet = self._wallets.get(partner_id)
            if wallet is None:
                return []
            rows = [t for t in reversed(self._transactions) if t.wallet_id == wallet.wallet_id]
            return rows[:limit] if limit is not None else rows

    def update_wallet_alert_settings(
        self,
        partner_id: UUID,
        low_balance_alert: Optional[bool],
        alert_threshold: Optional[Decimal],
    ) -> Optional[LeadWallet]:
        with self._lock:
            wallet = self._wallets.get(partner_id)
            if wallet is None:
                return None
            changes: Dict[str, Any] = {}
            if low_balance_alert is not None:
                changes["low_balance_alert"] = low_balance_alert
            if alert_threshold is not None:
                changes["alert_threshold"] = alert_threshold
            updated = replace(wallet, **changes)
            self._wallets[partner_id] = updated
            return updated

    def list_low_balance_wallets(self) -> List[LeadWallet]:
        with self._lock:
            return [w for w in self._wallets.values() if w.below_alert_threshold]

    # ------------------------------------------------------------------
    # Pricing, partner profile, audit, webhooks
    # ------------------------------------------------------------------

    def get_active_pricing_row(self) -> Optional[Mapping[str, Any]]:
        with self._lock:
            return self._pricing_row

    def get_subscription_tier(self, partner_id: UUID) -> Optional[SubscriptionTier]:
        with self._lock:
            return self._tiers.get(partner_id)

    def insert_audit(self, entry: AuditEntry) -> None:
        with self._lock:
            self._audit.append(entry)

    def list_audit(self, entity_id: Optional[UUID] = None) -> List[AuditEntry]:
        with self._lock:
            if entity_id is None:
                return list(self._audit)
            return [a for a in self._audit if a.entity_id == entity_id]

    def insert_webhook_delivery(self, delivery: WebhookDelivery) -> None:
        with self._lock:
            self._webhooks[delivery.delivery_id] = delivery

    def update_webhook_delivery(self, delivery: WebhookDelivery) -> None:
        with self._lock:
            self._webhooks[delivery.delivery_id] = delivery

    def list_failed_webhook_deliveries(self, max_attempts: int, limit: int) -> List[WebhookDelivery]:
        with self._lock:
            # Insertion order is creation order.
            failed = [d for d in self._webhooks.values() if not d.delivered and d.attempts < max_attempts]
            return failed[:limit]
