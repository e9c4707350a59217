"""
Quote Timer API Endpoints.

Endpoints for the bidding window of a quote and lead fee previews.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_quote_lifecycle, get_settlement_service
from api.errors import to_http_exception
from api.models import ExtendTimerRequest, LeadCostResponse, StartTimerRequest, TimerResponse
from services.offer_settlement_service import OfferSettlementService
from services.quote_lifecycle_service import QuoteLifecycle

router = APIRouter()


def _timer_response(quote_id: UUID, lifecycle: QuoteLifecycle) -> TimerResponse:
    remaining = lifecycle.get_remaining_time(quote_id)
    return TimerResponse(
        quote_id=quote_id,
        expires_at=remaining.expires_at,
        remaining_minutes=remaining.remaining_minutes,
        has_expired=remaining.has_expired,
    )


@router.get(
    "/quotes/{quote_id}/timer",
    response_model=TimerResponse,
    summary="Remaining Time",
    description="Minutes left before the quote stops accepting offers."
)
def get_timer(quote_id: UUID, lifecycle: QuoteLifecycle = Depends(get_quote_lifecycle)):
    try:
        return _timer_response(quote_id, lifecycle)
    except Exception as e:
        raise to_http_exception(e)


@router.post(
    "/quotes/{quote_id}/timer",
    response_model=TimerResponse,
    summary="Start Timer",
    description="Open the bidding window. Partners are warned before it closes."
)
def start_timer(
    quote_id: UUID,
    request: Optional[StartTimerRequest] = None,
    lifecycle: QuoteLifecycle = Depends(get_quote_lifecycle),
):
    request = request or StartTimerRequest()
    try:
        lifecycle.start_timer(quote_id, request.duration_minutes, request.enable_warnings)
        return _timer_response(quote_id, lifecycle)
    except Exception as e:
        raise to_http_exception(e)


@router.post(
    "/quotes/{quote_id}/timer/extend",
    response_model=TimerResponse,
    summary="Extend Timer"
)
def extend_timer(
    quote_id: UUID,
    request: ExtendTimerRequest,
    lifecycle: QuoteLifecycle = Depends(get_quote_lifecycle),
):
    try:
        lifecycle.extend_timer(quote_id, request.additional_minutes)
        return _timer_response(quote_id, lifecycle)
    except Exception as e:
        raise to_http_exception(e)


@router.get(
    "/quotes/{quote_id}/lead-cost",
    response_model=LeadCostResponse,
    summary="Estimate Lead Cost",
    description="Preview the lead fee for a quote. Uses the partner's tier when partner_id is given."
)
def estimate_lead_cost(
    quote_id: UUID,
    partner_id: Optional[UUID] = Query(None),
    service: OfferSettlementService = Depends(get_settlement_service),
):
    try:
        cost = service.estimate_lead_cost(quote_id, partner_id)
    except Exception as e:
        raise to_http_exception(e)
    return LeadCostResponse(quote_id=quote_id, partner_id=partner_id, lead_cost=cost)
