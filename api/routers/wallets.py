"""
Wallets API Endpoints.

Read-only wallet views for partners, plus low-balance alert settings.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_wallet_ledger
from api.errors import to_http_exception
from api.models import (
    TransactionListResponse,
    TransactionResponse,
    WalletResponse,
    WalletSettingsRequest,
)
from domain.wallet import LeadWallet
from services.wallet_service import WalletLedger

router = APIRouter()


def _wallet_response(wallet: LeadWallet) -> WalletResponse:
    return WalletResponse(
        wallet_id=wallet.wallet_id,
        partner_id=wallet.partner_id,
        balance=wallet.balance,
        currency=wallet.currency,
        low_balance_alert=wallet.low_balance_alert,
        alert_threshold=wallet.alert_threshold,
    )


@router.get("/wallets/{partner_id}", response_model=WalletResponse, summary="Get Wallet")
def get_wallet(partner_id: UUID, ledger: WalletLedger = Depends(get_wallet_ledger)):
    try:
        return _wallet_response(ledger.get_wallet(partner_id))
    except Exception as e:
        raise to_http_exception(e)


@router.get(
    "/wallets/{partner_id}/transactions",
    response_model=TransactionListResponse,
    summary="Transaction History",
    description="Ledger entries, newest first."
)
def get_transactions(
    partner_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    try:
        history = ledger.get_history(partner_id, limit=limit)
    except Exception as e:
        raise to_http_exception(e)

    items = [
        TransactionResponse(
            transaction_id=t.transaction_id,
            transaction_type=t.transaction_type.value,
            amount=t.amount,
            balance_after=t.balance_after,
            description=t.description,
            offer_id=t.offer_id,
            quote_id=t.quote_id,
            created_at=t.created_at,
        )
        for t in history
    ]
    return TransactionListResponse(transactions=items, total_count=len(items))


@router.patch("/wallets/{partner_id}/settings", response_model=WalletResponse, summary="Update Alert Settings")
def update_settings(
    partner_id: UUID,
    request: WalletSettingsRequest,
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    try:
        wallet = ledger.update_alert_settings(
            partner_id,
            low_balance_alert=request.low_balance_alert,
            alert_threshold=request.alert_threshold,
        )
    except Exception as e:
        raise to_http_exception(e)
    return _wallet_response(wallet)
