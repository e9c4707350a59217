"""
Supabase-backed MarketplaceStore (persistence).

Plain reads and single-row writes go through the table API. Every operation
that must be atomic is a PostgreSQL function (see migrations/001_lead_core.sql)
invoked with supabase.rpc(), so the conditional wallet update, the ledger row,
the offer row and the audit row commit or roll back together.

This module contains no business rules beyond mapping rows to domain objects.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from postgrest.exceptions import APIError  # type: ignore[import-not-found]
from supabase import Client  # type: ignore[import-not-found]

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
from domain.notification import NotificationEvent, WebhookDelivery
from domain.offer import Offer, OfferPriceDetails, OfferStatus
from domain.pricing import SubscriptionTier
from domain.quote import (
    OPEN_QUOTE_STATUSES,
    TIMER_STARTABLE_STATUSES,
    CargoDescriptor,
    HazardClass,
    Quote,
    QuoteStatus,
    VehicleType,
)
from domain.time import require_utc_timestamp
from domain.wallet import DebitResult, LeadTransaction, LeadWallet, TransactionType
from repositories.client import get_supabase_client
from repositories.store import (
    AtomicSettlementResult,
    QuoteClosure,
    SelectionOutcome,
    SettlementCommand,
    SettlementErrorCode,
)

logger = logging.getLogger(__name__)

# Supabase table names.
# Keep these aligned with migrations/001_lead_core.sql.
_QUOTES_TABLE: str = "quotes"
_OFFERS_TABLE: str = "offers"
_WALLETS_TABLE: str = "lead_wallets"
_TRANSACTIONS_TABLE: str = "lead_transactions"
_AUDIT_TABLE: str = "audit_logs"
_PRICING_TABLE: str = "pricing_configs"
_CAPABILITIES_TABLE: str = "partner_capabilities"
_WEBHOOKS_TABLE: str = "webhook_logs"


def _to_iso_utc(dt: datetime, *, name: str) -> str:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Supabase commonly returns ISO-8601 strings, sometimes with a trailing 'Z'.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _optional_datetime(value: Any) -> Optional[datetime]:
    return _parse_utc_datetime(value) if value else None


def _optional_uuid(value: Any) -> Optional[UUID]:
    return UUID(str(value)) if value else None


def _rows(response: Any, action: str) -> List[Mapping[str, Any]]:
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    return getattr(response, "data", None) or []


def _row_to_quote(row: Mapping[str, Any]) -> Quote:
    hazard = row.get("hazard_class")
    return Quote(
        quote_id=UUID(str(row["quote_id"])),
        shipper_id=UUID(str(row["shipper_id"])),
        quote_number=str(row["quote_number"]),
        status=QuoteStatus(str(row["status"])),
        cargo=CargoDescriptor(
            name=str(row["cargo_name"]),
            quantity=Decimal(str(row["quantity"])),
            unit=str(row["quantity_unit"]),
            hazard_class=HazardClass(hazard) if hazard else None,
        ),
        pickup_state=str(row["pickup_state"]),
        delivery_state=str(row["delivery_state"]),
        preferred_vehicle_types=tuple(VehicleType(v) for v in (row.get("preferred_vehicle_types") or [])),
        is_urgent=bool(row.get("is_urgent", False)),
        expires_at=_optional_datetime(row.get("expires_at_utc")),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        submitted_at=_optional_datetime(row.get("submitted_at_utc")),
    )


def _quote_to_row(quote: Quote) -> Dict[str, Any]:
    return {
        "quote_id": str(quote.quote_id),
        "shipper_id": str(quote.shipper_id),
        "quote_number": quote.quote_number,
        "status": quote.status.value,
        "cargo_name": quote.cargo.name,
        "hazard_class": quote.cargo.hazard_class.value if quote.cargo.hazard_class else None,
        "quantity": str(quote.cargo.quantity),
        "quantity_unit": quote.cargo.unit,
        "pickup_state": quote.pickup_state,
        "delivery_state": quote.delivery_state,
        "preferred_vehicle_types": [v.value for v in quote.preferred_vehicle_types],
        "is_urgent": quote.is_urgent,
        "expires_at_utc": _to_iso_utc(quote.expires_at, name="expires_at") if quote.expires_at else None,
        "created_at_utc": _to_iso_utc(quote.created_at, name="created_at"),
        "submitted_at_utc": _to_iso_utc(quote.submitted_at, name="submitted_at") if quote.submitted_at else None,
    }


def _row_to_offer(row: Mapping[str, Any]) -> Offer:
    return Offer(
        offer_id=UUID(str(row["offer_id"])),
        quote_id=UUID(str(row["quote_id"])),
        partner_id=UUID(str(row["partner_id"])),
        status=OfferStatus(str(row["status"])),
        details=OfferPriceDetails(
            price=Decimal(str(row["price"])),
            transit_days=int(row["transit_days"]),
            valid_until=_parse_utc_datetime(row["valid_until_utc"]),
            pickup_available_from=_optional_datetime(row.get("pickup_available_from_utc")),
            insurance_included=bool(row.get("insurance_included", False)),
            tracking_included=bool(row.get("tracking_included", True)),
            customs_clearance=bool(row.get("customs_clearance", False)),
            value_added_services=tuple(row.get("value_added_services") or ()),
            remarks=row.get("remarks"),
        ),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        lead_cost=Decimal(str(row.get("lead_cost", "0"))),
    )


def _offer_payload(command: SettlementCommand) -> Dict[str, Any]:
    details = command.details
    return {
        "offer_id": str(command.offer_id),
        "quote_id": str(command.quote_id),
        "partner_id": str(command.partner_id),
        "price": str(details.price),
        "transit_days": details.transit_days,
        "valid_until_utc": _to_iso_utc(details.valid_until, name="valid_until"),
        "pickup_available_from_utc": (
            _to_iso_utc(details.pickup_available_from, name="pickup_available_from")
            if details.pickup_available_from
            else None
        ),
        "insurance_included": details.insurance_included,
        "tracking_included": details.tracking_included,
        "customs_clearance": details.customs_clearance,
        "value_added_services": list(details.value_added_services),
        "remarks": details.remarks,
    }


def _row_to_wallet(row: Mapping[str, Any]) -> LeadWallet:
    return LeadWallet(
        wallet_id=UUID(str(row["wallet_id"])),
        partner_id=UUID(str(row["partner_id"])),
        balance=Decimal(str(row["balance"])),
        initial_balance=Decimal(str(row.get("initial_balance", "0"))),
        currency=str(row.get("currency", "INR")),
        low_balance_alert=bool(row.get("low_balance_alert", True)),
        alert_threshold=Decimal(str(row.get("alert_threshold", "1000"))),
    )


def _row_to_transaction(row: Mapping[str, Any]) -> LeadTransaction:
    return LeadTransaction(
        transaction_id=UUID(str(row["transaction_id"])),
        wallet_id=UUID(str(row["wallet_id"])),
        transaction_type=TransactionType(str(row["transaction_type"])),
        amount=Decimal(str(row["amount"])),
        balance_after=Decimal(str(row["balance_after"])),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        description=str(row.get("description") or ""),
        offer_id=_optional_uuid(row.get("offer_id")),
        quote_id=_optional_uuid(row.get("quote_id")),
        refunded_transaction_id=_optional_uuid(row.get("refunded_transaction_id")),
        metadata=row.get("metadata") or {},
    )


def _row_to_audit(row: Mapping[str, Any]) -> AuditEntry:
    return AuditEntry(
        audit_id=UUID(str(row["audit_id"])),
        action=AuditAction(str(row["action"])),
        entity=AuditEntity(str(row["entity"])),
        entity_id=UUID(str(row["entity_id"])),
        actor_id=_optional_uuid(row.get("actor_id")),
        quote_id=_optional_uuid(row.get("quote_id")),
        changes=row.get("changes") or {},
        created_at=_parse_utc_datetime(row["created_at_utc"]),
    )


def _row_to_webhook(row: Mapping[str, Any]) -> WebhookDelivery:
    status = row.get("status")
    return WebhookDelivery(
        delivery_id=UUID(str(row["delivery_id"])),
        event=NotificationEvent(str(row["event"])),
        url=str(row["url"]),
        payload=row.get("payload") or {},
        signature=str(row["hmac_signature"]),
        attempts=int(row.get("attempts", 1)),
        status_code=int(status) if status is not None else None,
        response_body=str(row.get("response_body") or ""),
        last_attempt_at=_optional_datetime(row.get("last_attempt_utc")),
    )


def _webhook_to_row(delivery: WebhookDelivery) -> Dict[str, Any]:
    return {
        "delivery_id": str(delivery.delivery_id),
        "event": delivery.event.value,
        "url": delivery.url,
        "payload": dict(delivery.payload),
        "hmac_signature": delivery.signature,
        "status": delivery.status_code,
        "response_body": delivery.response_body,
        "attempts": delivery.attempts,
        "last_attempt_utc": (
            _to_iso_utc(delivery.last_attempt_at, name="last_attempt_at") if delivery.last_attempt_at else None
        ),
    }


class SupabaseStore:
    """MarketplaceStore on top of Supabase tables and PostgreSQL functions."""

    def __init__(self, client: Optional[Client] = None) -> None:
        self._client = client if client is not None else get_supabase_client()

    def _rpc(self, function: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Call a PostgreSQL function that returns a JSON object.

        supabase-py raises APIError for some JSON-returning functions even on
        success, so the error body is inspected before giving up.
        """

        try:
            response = self._client.rpc(function, dict(params)).execute()
        except APIError as e:
            try:
                error_data = e.json() if callable(getattr(e, "json", None)) else {}
            except (TypeError, ValueError):
                error_data = {}
            if isinstance(error_data, dict) and error_data.keys() & {"success", "applied", "error"}:
                return error_data
            message = getattr(e, "message", None) or str(e)
            raise RuntimeError(f"{function} failed: {message}") from e

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"{function} failed: {error}")
        data = response.data
        if not isinstance(data, dict):
            raise RuntimeError(f"{function} returned unexpected payload: {data!r}")
        return data

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def get_quote(self, quote_id: UUID) -> Optional[Quote]:
        response = (
            self._client.table(_QUOTES_TABLE)
            .select("*")
            .eq("quote_id", str(quote_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get quote")
        return _row_to_quote(rows[0]) if rows else None

    def insert_quote(self, quote: Quote) -> None:
        response = self._client.table(_QUOTES_TABLE).insert(_quote_to_row(quote)).execute()
        _rows(response, "insert quote")

    def start_quote_timer(self, quote_id: UUID, expires_at: datetime) -> Optional[Quote]:
        expires_iso = _to_iso_utc(expires_at, name="expires_at")

        # Two guarded updates: startable statuses move to MATCHING, OFFERS_AVAILABLE keeps its status.
        response = (
            self._client.table(_QUOTES_TABLE)
            .update({"expires_at_utc": expires_iso, "status": QuoteStatus.MATCHING.value})
            .eq("quote_id", str(quote_id))
            .in_("status", [s.value for s in TIMER_STARTABLE_STATUSES])
            .execute()
        )
        rows = _rows(response, "start quote timer")
        if not rows:
            response = (
                self._client.table(_QUOTES_TABLE)
                .update({"expires_at_utc": expires_iso})
                .eq("quote_id", str(quote_id))
                .eq("status", QuoteStatus.OFFERS_AVAILABLE.value)
                .execute()
            )
            rows = _rows(response, "start quote timer")
        return _row_to_quote(rows[0]) if rows else None

    def extend_quote_timer(
        self, quote_id: UUID, previous_expires_at: datetime, new_expires_at: datetime
    ) -> Optional[Quote]:
        response = (
            self._client.table(_QUOTES_TABLE)
            .update({"expires_at_utc": _to_iso_utc(new_expires_at, name="new_expires_at")})
            .eq("quote_id", str(quote_id))
            .eq("expires_at_utc", _to_iso_utc(previous_expires_at, name="previous_expires_at"))
            .in_("status", [s.value for s in OPEN_QUOTE_STATUSES])
            .execute()
        )
        rows = _rows(response, "extend quote timer")
        return _row_to_quote(rows[0]) if rows else None

    def transition_quote_status(
        self, quote_id: UUID, from_statuses: Iterable[QuoteStatus], to_status: QuoteStatus
    ) -> bool:
        response = (
            self._client.table(_QUOTES_TABLE)
            .update({"status": to_status.value})
            .eq("quote_id", str(quote_id))
            .in_("status", [s.value for s in from_statuses])
            .execute()
        )
        return bool(_rows(response, "transition quote status"))

    def expire_quote(self, quote_id: UUID, expired_at: datetime) -> QuoteClosure:
        result = self._rpc(
            "expire_quote_atomic",
            {"p_quote_id": str(quote_id), "p_expired_at": _to_iso_utc(expired_at, name="expired_at")},
        )
        previous = result.get("previous_status")
        return QuoteClosure(
            quote_id=quote_id,
            applied=bool(result.get("applied")),
            previous_status=QuoteStatus(previous) if previous else None,
            offers_affected=int(result.get("offers_affected") or 0),
        )

    def cancel_quote(self, quote_id: UUID, cancelled_at: datetime) -> QuoteClosure:
        result = self._rpc(
            "cancel_quote_atomic",
            {"p_quote_id": str(quote_id), "p_cancelled_at": _to_iso_utc(cancelled_at, name="cancelled_at")},
        )
        error = result.get("error")
        if error == "QUOTE_NOT_FOUND":
            raise QuoteNotFoundError(quote_id)
        if error == "QUOTE_NOT_OPEN":
            raise QuoteNotOpenError(quote_id, str(result.get("previous_status")))
        previous = result.get("previous_status")
        return QuoteClosure(
            quote_id=quote_id,
            applied=bool(result.get("applied")),
            previous_status=QuoteStatus(previous) if previous else None,
            offers_affected=int(result.get("offers_affected") or 0),
        )

    def list_quotes_due_for_expiry(self, now: datetime) -> List[Quote]:
        response = (
            self._client.table(_QUOTES_TABLE)
            .select("*")
            .lte("expires_at_utc", _to_iso_utc(now, name="now"))
            .in_("status", [s.value for s in OPEN_QUOTE_STATUSES])
            .execute()
        )
        return [_row_to_quote(row) for row in _rows(response, "list quotes due for expiry")]

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def get_offer(self, offer_id: UUID) -> Optional[Offer]:
        response = (
            self._client.table(_OFFERS_TABLE)
            .select("*")
            .eq("offer_id", str(offer_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get offer")
        return _row_to_offer(rows[0]) if rows else None

    def find_active_offer(self, quote_id: UUID, partner_id: UUID) -> Optional[Offer]:
        response = (
            self._client.table(_OFFERS_TABLE)
            .select("*")
            .eq("quote_id", str(quote_id))
            .eq("partner_id", str(partner_id))
            .neq("status", OfferStatus.WITHDRAWN.value)
            .limit(1)
            .execute()
        )
        rows = _rows(response, "find active offer")
        return _row_to_offer(rows[0]) if rows else None

    def list_offers(self, quote_id: UUID, status: Optional[OfferStatus] = None) -> List[Offer]:
        query = self._client.table(_OFFERS_TABLE).select("*").eq("quote_id", str(quote_id))
        if status is not None:
            query = query.eq("status", status.value)
        response = query.order("created_at_utc").execute()
        return [_row_to_offer(row) for row in _rows(response, "list offers")]

    def settle_offer(self, command: SettlementCommand) -> AtomicSettlementResult:
        try:
            result = self._rpc(
                "submit_offer_atomic",
                {
                    "p_offer": _offer_payload(command),
                    "p_lead_cost": str(command.lead_cost),
                    "p_lead_metadata": dict(command.lead_metadata),
                    "p_description": command.description,
                    "p_submitted_at": _to_iso_utc(command.submitted_at, name="submitted_at"),
                },
            )
        except RuntimeError as e:
            # The unique index fired after the pre-check: a concurrent submission won.
            if "DUPLICATE_OFFER" in str(e):
                return AtomicSettlementResult(
                    success=False,
                    error_code=SettlementErrorCode.DUPLICATE_OFFER,
                    error_message=str(e),
                )
            raise

        if not result.get("success"):
            code = result.get("error")
            available = result.get("available")
            status = result.get("quote_status")
            return AtomicSettlementResult(
                success=False,
                error_code=SettlementErrorCode(code) if code in SettlementErrorCode.__members__ else None,
                error_message=result.get("message"),
                available_balance=Decimal(str(available)) if available is not None else None,
                quote_status=QuoteStatus(status) if status else None,
            )

        balance_after = Decimal(str(result["balance_after"]))
        offer = Offer(
            offer_id=command.offer_id,
            quote_id=command.quote_id,
            partner_id=command.partner_id,
            status=OfferStatus.PENDING,
            details=command.details,
            created_at=command.submitted_at,
            lead_cost=command.lead_cost,
        )
        txn = LeadTransaction(
            transaction_id=UUID(str(result["transaction_id"])),
            wallet_id=UUID(str(result["wallet_id"])),
            transaction_type=TransactionType.DEBIT,
            amount=-command.lead_cost,
            balance_after=balance_after,
            created_at=command.submitted_at,
            description=command.description,
            offer_id=command.offer_id,
            quote_id=command.quote_id,
            metadata=dict(command.lead_metadata),
        )
        return AtomicSettlementResult(
            success=True,
            offer=offer,
            transaction=txn,
            balance_before=Decimal(str(result["balance_before"])),
            balance_after=balance_after,
        )

    def select_offer(self, offer_id: UUID, selected_at: datetime) -> SelectionOutcome:
        result = self._rpc(
            "select_offer_atomic",
            {"p_offer_id": str(offer_id), "p_selected_at": _to_iso_utc(selected_at, name="selected_at")},
        )
        error = result.get("error")
        if error == "OFFER_NOT_FOUND":
            raise OfferNotFoundError(offer_id)
        offer = self.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        if error == "QUOTE_NOT_OPEN":
            raise QuoteNotOpenError(offer.quote_id, str(result.get("status")))
        if error == "OFFER_NOT_PENDING":
            raise OfferNotPendingError(offer_id, str(result.get("status")))

        quote = self.get_quote(offer.quote_id)
        if quote is None:
            raise QuoteNotFoundError(offer.quote_id)
        return SelectionOutcome(
            quote=quote,
            offer=offer,
            applied=bool(result.get("applied")),
            rejected_offers=int(result.get("rejected_offers") or 0),
        )

    def withdraw_offer(self, offer_id: UUID, partner_id: UUID, withdrawn_at: datetime) -> Optional[Offer]:
        response = (
            self._client.table(_OFFERS_TABLE)
            .update({"status": OfferStatus.WITHDRAWN.value})
            .eq("offer_id", str(offer_id))
            .eq("partner_id", str(partner_id))
            .eq("status", OfferStatus.PENDING.value)
            .execute()
        )
        rows = _rows(response, "withdraw offer")
        if not rows:
            return None
        offer = _row_to_offer(rows[0])
        self.insert_audit(
            AuditEntry(
                action=AuditAction.WITHDRAW_OFFER,
                entity=AuditEntity.OFFER,
                entity_id=offer_id,
                actor_id=partner_id,
                quote_id=offer.quote_id,
                created_at=withdrawn_at,
            )
        )
        return offer

    # ------------------------------------------------------------------
    # Wallets and ledger
    # ------------------------------------------------------------------

    def get_wallet(self, partner_id: UUID) -> Optional[LeadWallet]:
        response = (
            self._client.table(_WALLETS_TABLE)
            .select("*")
            .eq("partner_id", str(partner_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get wallet")
        return _row_to_wallet(rows[0]) if rows else None

    def insert_wallet(self, wallet: LeadWallet) -> None:
        payload = {
            "wallet_id": str(wallet.wallet_id),
            "partner_id": str(wallet.partner_id),
            "balance": str(wallet.balance),
            "initial_balance": str(wallet.initial_balance),
            "currency": wallet.currency,
            "low_balance_alert": wallet.low_balance_alert,
            "alert_threshold": str(wallet.alert_threshold),
        }
        response = self._client.table(_WALLETS_TABLE).insert(payload).execute()
        _rows(response, "insert wallet")

    def credit_wallet(
        self,
        partner_id: UUID,
        amount: Decimal,
        description: str,
        metadata: Mapping[str, Any],
        credited_at: datetime,
    ) -> LeadTransaction:
        result = self._rpc(
            "credit_lead_wallet",
            {
                "p_partner_id": str(partner_id),
                "p_amount": str(amount),
                "p_description": description,
                "p_metadata": dict(metadata),
                "p_credited_at": _to_iso_utc(credited_at, name="credited_at"),
            },
        )
        if result.get("error") == "WALLET_NOT_FOUND":
            raise WalletNotProvisionedError(partner_id)
        return LeadTransaction(
            transaction_id=UUID(str(result["transaction_id"])),
            wallet_id=UUID(str(result["wallet_id"])),
            transaction_type=TransactionType.RECHARGE,
            amount=amount,
            balance_after=Decimal(str(result["balance_after"])),
            created_at=credited_at,
            description=description,
            metadata=dict(metadata),
        )

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
        result = self._rpc(
            "debit_lead_wallet",
            {
                "p_partner_id": str(partner_id),
                "p_amount": str(amount),
                "p_description": description,
                "p_metadata": dict(metadata),
                "p_debited_at": _to_iso_utc(debited_at, name="debited_at"),
                "p_offer_id": str(offer_id) if offer_id else None,
                "p_quote_id": str(quote_id) if quote_id else None,
            },
        )
        error = result.get("error")
        if error == "WALLET_NOT_FOUND":
            raise WalletNotProvisionedError(partner_id)
        if error == "INSUFFICIENT_BALANCE":
            return DebitResult(success=False, required=amount, available=Decimal(str(result["available"])))

        txn = LeadTransaction(
            transaction_id=UUID(str(result["transaction_id"])),
            wallet_id=UUID(str(result["wallet_id"])),
            transaction_type=TransactionType.DEBIT,
            amount=-amount,
            balance_after=Decimal(str(result["balance_after"])),
            created_at=debited_at,
            description=description,
            offer_id=offer_id,
            quote_id=quote_id,
            metadata=dict(metadata),
        )
        return DebitResult(
            success=True, required=amount, available=Decimal(str(result["available"])), transaction=txn
        )

    def refund_transaction(self, transaction_id: UUID, reason: str, refunded_at: datetime) -> LeadTransaction:
        result = self._rpc(
            "refund_lead_transaction",
            {
                "p_transaction_id": str(transaction_id),
                "p_reason": reason,
                "p_refunded_at": _to_iso_utc(refunded_at, name="refunded_at"),
            },
        )
        error = result.get("error")
        if error == "TRANSACTION_NOT_FOUND":
            raise TransactionNotFoundError(transaction_id)
        if error == "ALREADY_REFUNDED":
            raise RefundNotAllowedError(transaction_id, "already refunded")

        refund = self.get_transaction(UUID(str(result["transaction_id"])))
        if refund is None:
            raise RuntimeError(f"Refund row missing after refund_lead_transaction for {transaction_id}")
        return refund

    def get_transaction(self, transaction_id: UUID) -> Optional[LeadTransaction]:
        response = (
            self._client.table(_TRANSACTIONS_TABLE)
            .select("*")
            .eq("transaction_id", str(transaction_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get transaction")
        return _row_to_transaction(rows[0]) if rows else None

    def list_transactions(self, partner_id: UUID, limit: Optional[int] = None) -> List[LeadTransaction]:
        wallet = self.get_wallet(partner_id)
        if wallet is None:
            return []
        query = (
            self._client.table(_TRANSACTIONS_TABLE)
            .select("*")
            .eq("wallet_id", str(wallet.wallet_id))
            .order("created_at_utc", desc=True)
        )
        if limit is not None:
            query = query.limit(limit)
        return [_row_to_transaction(row) for row in _rows(query.execute(), "list transactions")]

    def update_wallet_alert_settings(
        self,
        partner_id: UUID,
        low_balance_alert: Optional[bool],
        alert_threshold: Optional[Decimal],
    ) -> Optional[LeadWallet]:
        payload: Dict[str, Any] = {}
        if low_balance_alert is not None:
            payload["low_balance_alert"] = low_balance_alert
        if alert_threshold is not None:
            payload["alert_threshold"] = str(alert_threshold)
        if not payload:
            return self.get_wallet(partner_id)

        response = (
            self._client.table(_WALLETS_TABLE)
            .update(payload)
            .eq("partner_id", str(partner_id))
            .execute()
        )
        rows = _rows(response, "update wallet alert settings")
        return _row_to_wallet(rows[0]) if rows else None

    def list_low_balance_wallets(self) -> List[LeadWallet]:
        # PostgREST cannot compare two columns; filter the alert-enabled wallets here.
        response = (
            self._client.table(_WALLETS_TABLE)
            .select("*")
            .eq("low_balance_alert", True)
            .execute()
        )
        wallets = [_row_to_wallet(row) for row in _rows(response, "list wallets")]
        return [w for w in wallets if w.below_alert_threshold]

    # ------------------------------------------------------------------
    # Pricing, partner profile, audit, webhooks
    # ------------------------------------------------------------------

    def get_active_pricing_row(self) -> Optional[Mapping[str, Any]]:
        response = (
            self._client.table(_PRICING_TABLE)
            .select("*")
            .eq("is_active", True)
            .order("created_at_utc", desc=True)
            .limit(1)
            .execute()
        )
        rows = _rows(response, "fetch pricing config")
        return rows[0] if rows else None

    def get_subscription_tier(self, partner_id: UUID) -> Optional[SubscriptionTier]:
        response = (
            self._client.table(_CAPABILITIES_TABLE)
            .select("subscription_tier")
            .eq("partner_id", str(partner_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "fetch partner capability")
        if not rows:
            return None
        return SubscriptionTier(str(rows[0]["subscription_tier"]))

    def insert_audit(self, entry: AuditEntry) -> None:
        payload = {
            "audit_id": str(entry.audit_id),
            "action": entry.action.value,
            "entity": entry.entity.value,
            "entity_id": str(entry.entity_id),
            "actor_id": str(entry.actor_id) if entry.actor_id else None,
            "quote_id": str(entry.quote_id) if entry.quote_id else None,
            "changes": dict(entry.changes),
            "created_at_utc": _to_iso_utc(entry.created_at, name="created_at"),
        }
        response = self._client.table(_AUDIT_TABLE).insert(payload).execute()
        _rows(response, "insert audit log")

    def list_audit(self, entity_id: Optional[UUID] = None) -> List[AuditEntry]:
        query = self._client.table(_AUDIT_TABLE).select("*")
        if entity_id is not None:
            query = query.eq("entity_id", str(entity_id))
        response = query.order("created_at_utc").execute()
        return [_row_to_audit(row) for row in _rows(response, "list audit logs")]

    def insert_webhook_delivery(self, delivery: WebhookDelivery) -> None:
        response = self._client.table(_WEBHOOKS_TABLE).insert(_webhook_to_row(delivery)).execute()
        _rows(response, "insert webhook log")

    def update_webhook_delivery(self, delivery: WebhookDelivery) -> None:
        row = _webhook_to_row(delivery)
        row.pop("delivery_id")
        response = (
            self._client.table(_WEBHOOKS_TABLE)
            .update(row)
            .eq("delivery_id", str(delivery.delivery_id))
            .execute()
        )
        _rows(response, "update webhook log")

    def list_failed_webhook_deliveries(self, max_attempts: int, limit: int) -> List[WebhookDelivery]:
        response = (
            self._client.table(_WEBHOOKS_TABLE)
            .select("*")
            .lt("attempts", max_attempts)
            .order("created_at_utc")
            .limit(limit * 2)
            .execute()
        )
        deliveries = [_row_to_webhook(row) for row in _rows(response, "list webhook logs")]
        return [d for d in deliveries if not d.delivered][:limit]


__all__ = ["SupabaseStore"]
