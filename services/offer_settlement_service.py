"""
Offer settlement service.

Submitting an offer charges the partner's lead fee. The debit, the offer row,
the ledger row and the audit row are written by one atomic store operation
(submit_offer_atomic in PostgreSQL), which re-checks the quote status and the
one-offer-per-partner rule under lock. Either all of it happens or none of it.

Flow:
1. Pre-check outside the unit (quote exists, no active offer): cheap rejects
2. Resolve the partner's subscription tier (no capability row -> FREE)
3. Price the lead
4. Atomic settlement
5. Insufficient funds -> LEAD_PAYMENT_FAILED, nothing persisted
6. After commit -> quote MATCHING -> OFFERS_AVAILABLE, shipper notified

Failures are never retried here: an unknown outcome must be resolved by
re-reading the wallet and offers first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from domain.errors import (
    DuplicateOfferError,
    InsufficientBalanceError,
    MarketplaceError,
    OfferNotFoundError,
    OfferNotPendingError,
    QuoteNotFoundError,
    QuoteNotOpenError,
    UnknownSettlementError,
    WalletNotProvisionedError,
)
from domain.offer import Offer, OfferPriceDetails
from domain.pricing import SubscriptionTier
from domain.quote import Quote
from domain.time import utc_now
from repositories.store import (
    AtomicSettlementResult,
    MarketplaceStore,
    SettlementCommand,
    SettlementErrorCode,
)
from services.notification_service import MarketplaceNotifier
from services.pricing_service import PricingEngine, lead_type_for_tier
from services.quote_lifecycle_service import QuoteLifecycle
from services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SettlementResult:
    offer: Offer
    lead_cost_charged: Decimal
    new_balance: Decimal


class OfferSettlementService:
    def __init__(
        self,
        store: MarketplaceStore,
        pricing: PricingEngine,
        lifecycle: QuoteLifecycle,
        wallet: Optional[WalletLedger] = None,
        notifier: Optional[MarketplaceNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._pricing = pricing
        self._lifecycle = lifecycle
        self._wallet = wallet
        self._notifier = notifier
        self._clock = clock

    def _tier_for(self, partner_id: UUID) -> SubscriptionTier:
        tier = self._store.get_subscription_tier(partner_id)
        return tier if tier is not None else SubscriptionTier.FREE

    def submit_offer(self, quote_id: UUID, partner_id: UUID, details: OfferPriceDetails) -> SettlementResult:
        """
        Submit a priced bid and charge the lead fee.

        Raises:
            QuoteNotFoundError, QuoteNotOpenError, DuplicateOfferError,
            InsufficientBalanceError, WalletNotProvisionedError,
            UnknownSettlementError
        """

        try:
            quote = self._store.get_quote(quote_id)
            if quote is None:
                raise QuoteNotFoundError(quote_id)
            if self._store.find_active_offer(quote_id, partner_id) is not None:
                raise DuplicateOfferError(quote_id, partner_id)

            tier = self._tier_for(partner_id)
            lead_cost = self._pricing.compute_lead_cost(
                hazard_class=quote.cargo.hazard_class,
                quantity=quote.cargo.quantity,
                pickup_state=quote.pickup_state,
                delivery_state=quote.delivery_state,
                vehicle_types=quote.preferred_vehicle_types,
                subscription_tier=tier,
                is_urgent=quote.is_urgent,
            )

            command = SettlementCommand(
                offer_id=uuid4(),
                quote_id=quote_id,
                partner_id=partner_id,
                details=details,
                lead_cost=lead_cost,
                lead_metadata={
                    "leadType": lead_type_for_tier(tier).value,
                    "subscriptionTier": tier.value,
                    "quoteNumber": quote.quote_number,
                },
                description=f"Lead fee for quote {quote.quote_number}",
                submitted_at=self._clock(),
            )
            result = self._store.settle_offer(command)
        except MarketplaceError:
            raise
        except Exception as e:
            logger.exception("Offer settlement failed for quote %s, partner %s", quote_id, partner_id)
            raise UnknownSettlementError(
                "Offer submission failed; check wallet balance and offers before retrying"
            ) from e

        if not result.success:
            self._raise_for(result, quote_id, partner_id, lead_cost)

        offer = result.offer
        if offer is None or result.balance_after is None:
            logger.error(
                "Settlement for quote %s, partner %s reported success without offer or balance",
                quote_id,
                partner_id,
            )
            raise UnknownSettlementError(
                "Offer submission returned an incomplete result; check wallet balance and offers before retrying"
            )
        logger.info(
            "Offer %s settled for quote %s: partner %s charged %s (balance %s)",
            offer.offer_id,
            quote_id,
            partner_id,
            lead_cost,
            result.balance_after,
        )
        self._after_commit(quote, offer, lead_cost)
        return SettlementResult(offer=offer, lead_cost_charged=lead_cost, new_balance=result.balance_after)

    def _raise_for(
        self, result: AtomicSettlementResult, quote_id: UUID, partner_id: UUID, lead_cost: Decimal
    ) -> None:
        code = result.error_code
        if code is SettlementErrorCode.QUOTE_NOT_FOUND:
            raise QuoteNotFoundError(quote_id)
        if code is SettlementErrorCode.QUOTE_NOT_OPEN:
            status = result.quote_status.value if result.quote_status else "closed"
            raise QuoteNotOpenError(quote_id, status)
        if code is SettlementErrorCode.DUPLICATE_OFFER:
            raise DuplicateOfferError(quote_id, partner_id)
        if code is SettlementErrorCode.INSUFFICIENT_BALANCE:
            available = result.available_balance if result.available_balance is not None else Decimal("0.00")
            logger.info(
                "Partner %s cannot cover lead fee %s for quote %s (available %s)",
                partner_id,
                lead_cost,
                quote_id,
                available,
            )
            if self._notifier is not None:
                self._notifier.lead_payment_failed(partner_id, quote_id, lead_cost, available)
            raise InsufficientBalanceError(lead_cost, available)
        if code is SettlementErrorCode.WALLET_NOT_FOUND:
            logger.error("No lead wallet provisioned for partner %s", partner_id)
            raise WalletNotProvisionedError(partner_id)

        logger.error("Offer settlement returned unknown error %s: %s", code, result.error_message)
        raise UnknownSettlementError(result.error_message or "Offer settlement failed", code=str(code))

    def _after_commit(self, quote: Quote, offer: Offer, lead_cost: Decimal) -> None:
        try:
            self._lifecycle.on_offer_settled(quote.quote_id)
        except Exception:
            logger.exception("Failed to mark quote %s as OFFERS_AVAILABLE", quote.quote_id)

        if self._notifier is not None:
            self._notifier.offers_available(
                quote.shipper_id,
                quote.quote_id,
                quote.quote_number,
                offer.offer_id,
                offer.partner_id,
                offer.price,
                lead_cost,
            )
        if self._wallet is not None:
            self._wallet.check_low_balance(offer.partner_id)

    def estimate_lead_cost(self, quote_id: UUID, partner_id: Optional[UUID] = None) -> Decimal:
        """Fee preview; uses the partner's tier when known, STANDARD otherwise."""

        quote = self._store.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        tier = self._tier_for(partner_id) if partner_id is not None else SubscriptionTier.STANDARD
        return self._pricing.estimate_lead_cost(quote, tier)

    def withdraw_offer(self, offer_id: UUID, partner_id: UUID) -> Offer:
        """PENDING -> WITHDRAWN. The lead fee is not refunded."""

        withdrawn = self._store.withdraw_offer(offer_id, partner_id, self._clock())
        if withdrawn is not None:
            logger.info("Offer %s withdrawn by partner %s", offer_id, partner_id)
            return withdrawn

        offer = self._store.get_offer(offer_id)
        if offer is None or offer.partner_id != partner_id:
            raise OfferNotFoundError(offer_id)
        raise OfferNotPendingError(offer_id, offer.status.value)


__all__ = ["OfferSettlementService", "SettlementResult"]
