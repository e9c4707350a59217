"""
Offers API Endpoints.

Endpoints for submitting, selecting and withdrawing offers.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_quote_lifecycle, get_settlement_service
from api.errors import to_http_exception
from api.models import (
    OfferActionRequest,
    OfferResponse,
    OfferSubmitRequest,
    OfferSubmitResponse,
    SelectionResponse,
)
from domain.offer import Offer, OfferPriceDetails
from services.offer_settlement_service import OfferSettlementService
from services.quote_lifecycle_service import QuoteLifecycle

router = APIRouter()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize client timestamps; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _offer_response(offer: Offer) -> OfferResponse:
    return OfferResponse(
        offer_id=offer.offer_id,
        quote_id=offer.quote_id,
        partner_id=offer.partner_id,
        status=offer.status.value,
        price=offer.price,
        transit_days=offer.details.transit_days,
        valid_until=offer.details.valid_until,
        lead_cost=offer.lead_cost,
        created_at=offer.created_at,
    )


@router.post(
    "/offers",
    response_model=OfferSubmitResponse,
    status_code=201,
    summary="Submit Offer",
    description="Submit a priced offer on a quote. The lead fee is deducted from the partner's wallet."
)
def submit_offer(
    request: OfferSubmitRequest,
    service: OfferSettlementService = Depends(get_settlement_service),
):
    """
    Submit an offer and pay the lead fee.

    **Process:**
    1. Verifies the quote exists and the partner has no active offer on it
    2. Prices the lead from the quote's cargo and the partner's subscription tier
    3. Atomically debits the wallet, creates the offer and records the ledger entry

    **Errors:**
    - 404: quote not found
    - 409: duplicate offer, or quote no longer accepting offers
    - 402: insufficient wallet balance (includes required and available amounts)
    - 500: wallet not provisioned or unexpected failure
    """
    try:
        details = OfferPriceDetails(
            price=request.price,
            transit_days=request.transit_days,
            valid_until=_as_utc(request.valid_until),
            pickup_available_from=_as_utc(request.pickup_available_from),
            insurance_included=request.insurance_included,
            tracking_included=request.tracking_included,
            customs_clearance=request.customs_clearance,
            value_added_services=tuple(request.value_added_services),
            remarks=request.remarks,
        )
        result = service.submit_offer(request.quote_id, request.partner_id, details)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, wallet_missing_is_fatal=True)

    return OfferSubmitResponse(
        offer=_offer_response(result.offer),
        lead_cost_charged=result.lead_cost_charged,
        new_balance=result.new_balance,
        message=f"Offer submitted successfully. Lead cost: {result.lead_cost_charged:.2f} deducted from wallet.",
    )


@router.post(
    "/offers/{offer_id}/select",
    response_model=SelectionResponse,
    summary="Select Offer",
    description="Shipper accepts an offer; all other pending offers on the quote are rejected."
)
def select_offer(offer_id: UUID, lifecycle: QuoteLifecycle = Depends(get_quote_lifecycle)):
    try:
        outcome = lifecycle.apply_selection(offer_id)
    except Exception as e:
        raise to_http_exception(e)

    return SelectionResponse(
        quote_id=outcome.quote.quote_id,
        offer_id=outcome.offer.offer_id,
        quote_status=outcome.quote.status.value,
        offer_status=outcome.offer.status.value,
        rejected_offers=outcome.rejected_offers,
        applied=outcome.applied,
    )


@router.post(
    "/offers/{offer_id}/withdraw",
    response_model=OfferResponse,
    summary="Withdraw Offer",
    description="Partner withdraws a pending offer. The lead fee is not refunded."
)
def withdraw_offer(
    offer_id: UUID,
    request: OfferActionRequest,
    service: OfferSettlementService = Depends(get_settlement_service),
):
    try:
        offer = service.withdraw_offer(offer_id, request.partner_id)
    except Exception as e:
        raise to_http_exception(e)
    return _offer_response(offer)
