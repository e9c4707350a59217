"""
Domain error -> HTTP status mapping shared by the routers.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException

from domain.errors import (
    DuplicateOfferError,
    InsufficientBalanceError,
    MarketplaceError,
    OfferNotFoundError,
    OfferNotPendingError,
    QuoteNotFoundError,
    QuoteNotOpenError,
    QuoteTimerNotSetError,
    RefundNotAllowedError,
    TransactionNotFoundError,
    WalletNotProvisionedError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND = (QuoteNotFoundError, OfferNotFoundError, TransactionNotFoundError, QuoteTimerNotSetError)
_CONFLICT = (DuplicateOfferError, QuoteNotOpenError, OfferNotPendingError, RefundNotAllowedError)


def to_http_exception(error: Exception, *, wallet_missing_is_fatal: bool = False) -> HTTPException:
    """
    Translate a service error.

    wallet_missing_is_fatal: a missing wallet during a write is a provisioning
    bug (500); during a read it is simply not found (404).
    """

    if isinstance(error, InsufficientBalanceError):
        return HTTPException(
            status_code=402,
            detail={
                "error": "INSUFFICIENT_BALANCE",
                "message": str(error),
                "required": f"{error.required:.2f}",
                "available": f"{error.available:.2f}",
            },
        )
    if isinstance(error, WalletNotProvisionedError):
        if wallet_missing_is_fatal:
            return HTTPException(status_code=500, detail=str(error))
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, _NOT_FOUND):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, _CONFLICT):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, MarketplaceError):
        return HTTPException(status_code=500, detail=str(error))

    logger.exception("Unhandled error", exc_info=error)
    return HTTPException(status_code=500, detail="Internal server error")


__all__ = ["to_http_exception"]
