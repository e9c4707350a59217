"""
Domain errors for the lead monetization core.

Expected, user-actionable outcomes (duplicate bid, insufficient balance, quote
no longer open) and integrity violations (wallet never provisioned) are kept
apart so callers can decide what to log and what to surface.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID


class MarketplaceError(Exception):
    """Base class for every error raised by the core."""


class InvalidPricingConfigError(MarketplaceError, ValueError):
    """A stored pricing configuration row failed validation at load time."""


class QuoteNotFoundError(MarketplaceError):
    def __init__(self, quote_id: UUID):
        self.quote_id = quote_id
        super().__init__(f"Quote not found: {quote_id}")


class QuoteNotOpenError(MarketplaceError):
    """The quote is not in a status that allows the requested operation."""

    def __init__(self, quote_id: UUID, status: str):
        self.quote_id = quote_id
        self.status = status
        super().__init__(f"Quote {quote_id} is {status}")


class QuoteTimerNotSetError(MarketplaceError):
    def __init__(self, quote_id: UUID):
        self.quote_id = quote_id
        super().__init__(f"Quote {quote_id} does not have an expiry time")


class OfferNotFoundError(MarketplaceError):
    def __init__(self, offer_id: UUID):
        self.offer_id = offer_id
        super().__init__(f"Offer not found: {offer_id}")


class OfferNotPendingError(MarketplaceError):
    def __init__(self, offer_id: UUID, status: str):
        self.offer_id = offer_id
        self.status = status
        super().__init__(f"Offer {offer_id} is {status}")


class DuplicateOfferError(MarketplaceError):
    def __init__(self, quote_id: UUID, partner_id: UUID):
        self.quote_id = quote_id
        self.partner_id = partner_id
        super().__init__("You have already submitted an offer for this quote")


class InsufficientBalanceError(MarketplaceError):
    """Recharge required. Not a system fault."""

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient wallet balance. Required: {required:.2f}, Available: {available:.2f}"
        )


class WalletNotProvisionedError(MarketplaceError):
    """No wallet exists for the partner. Indicates an upstream provisioning bug."""

    def __init__(self, partner_id: UUID):
        self.partner_id = partner_id
        super().__init__(f"Lead wallet not found for partner {partner_id}. Please contact support.")


class TransactionNotFoundError(MarketplaceError):
    def __init__(self, transaction_id: UUID):
        self.transaction_id = transaction_id
        super().__init__(f"Original debit transaction not found: {transaction_id}")


class RefundNotAllowedError(MarketplaceError):
    def __init__(self, transaction_id: UUID, reason: str):
        self.transaction_id = transaction_id
        super().__init__(f"Cannot refund transaction {transaction_id}: {reason}")


class UnknownSettlementError(MarketplaceError):
    """
    Settlement failed for an unexpected reason.

    The outcome is unknown to the caller: re-check wallet balance and offer
    existence before retrying.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)
