"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Offer Models
# ============================================================================

class OfferSubmitRequest(BaseModel):
    """Request to submit a priced offer against a quote."""
    quote_id: UUID
    partner_id: UUID
    price: Decimal = Field(..., gt=0, description="Freight price offered to the shipper")
    transit_days: int = Field(..., gt=0)
    valid_until: datetime
    pickup_available_from: Optional[datetime] = None
    insurance_included: bool = False
    tracking_included: bool = True
    customs_clearance: bool = False
    value_added_services: List[str] = Field(default_factory=list)
    remarks: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "quote_id": "123e4567-e89b-12d3-a456-426614174000",
                "partner_id": "123e4567-e89b-12d3-a456-426614174001",
                "price": "45000.00",
                "transit_days": 3,
                "valid_until": "2025-01-08T12:00:00Z",
                "insurance_included": True,
                "tracking_included": True,
                "customs_clearance": False,
                "value_added_services": ["loading"],
                "remarks": "ADR certified driver"
            }
        }


class OfferResponse(BaseModel):
    """A settled offer."""
    offer_id: UUID
    quote_id: UUID
    partner_id: UUID
    status: str
    price: Decimal
    transit_days: int
    valid_until: datetime
    lead_cost: Decimal
    created_at: datetime


class OfferSubmitResponse(BaseModel):
    """Response for a successful offer submission."""
    offer: OfferResponse
    lead_cost_charged: Decimal
    new_balance: Decimal
    message: str

    class Config:
        json_schema_extra = {
            "example": {
                "offer": {
                    "offer_id": "123e4567-e89b-12d3-a456-426614174002",
                    "quote_id": "123e4567-e89b-12d3-a456-426614174000",
                    "partner_id": "123e4567-e89b-12d3-a456-426614174001",
                    "status": "PENDING",
                    "price": "45000.00",
                    "transit_days": 3,
                    "valid_until": "2025-01-08T12:00:00Z",
                    "lead_cost": "1305.60",
                    "created_at": "2025-01-01T12:00:00Z"
                },
                "lead_cost_charged": "1305.60",
                "new_balance": "3694.40",
                "message": "Offer submitted successfully. Lead cost: 1305.60 deducted from wallet."
            }
        }


class OfferActionRequest(BaseModel):
    """Identifies the partner acting on an offer."""
    partner_id: UUID


class SelectionResponse(BaseModel):
    """Response for offer selection."""
    quote_id: UUID
    offer_id: UUID
    quote_status: str
    offer_status: str
    rejected_offers: int
    applied: bool


# ============================================================================
# Quote Timer Models
# ============================================================================

class StartTimerRequest(BaseModel):
    duration_minutes: int = Field(60, gt=0)
    enable_warnings: bool = True


class ExtendTimerRequest(BaseModel):
    additional_minutes: int = Field(..., gt=0)


class TimerResponse(BaseModel):
    """Remaining time on a quote's bidding window."""
    quote_id: UUID
    expires_at: datetime
    remaining_minutes: int
    has_expired: bool

    class Config:
        json_schema_extra = {
            "example": {
                "quote_id": "123e4567-e89b-12d3-a456-426614174000",
                "expires_at": "2025-01-01T13:00:00Z",
                "remaining_minutes": 42,
                "has_expired": False
            }
        }


class LeadCostResponse(BaseModel):
    """Lead fee preview for a quote."""
    quote_id: UUID
    partner_id: Optional[UUID] = None
    lead_cost: Decimal
    currency: str = "INR"


# ============================================================================
# Wallet Models
# ============================================================================

class WalletResponse(BaseModel):
    wallet_id: UUID
    partner_id: UUID
    balance: Decimal
    currency: str
    low_balance_alert: bool
    alert_threshold: Decimal

    class Config:
        json_schema_extra = {
            "example": {
                "wallet_id": "123e4567-e89b-12d3-a456-426614174003",
                "partner_id": "123e4567-e89b-12d3-a456-426614174001",
                "balance": "3694.40",
                "currency": "INR",
                "low_balance_alert": True,
                "alert_threshold": "1000.00"
            }
        }


class TransactionResponse(BaseModel):
    transaction_id: UUID
    transaction_type: str
    amount: Decimal
    balance_after: Decimal
    description: str
    offer_id: Optional[UUID] = None
    quote_id: Optional[UUID] = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    total_count: int


class WalletSettingsRequest(BaseModel):
    low_balance_alert: Optional[bool] = None
    alert_threshold: Optional[Decimal] = Field(None, ge=0)


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    required: Optional[Decimal] = None
    available: Optional[Decimal] = None
