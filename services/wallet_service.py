"""
Wallet service: prepaid lead wallets and their ledger.

Handles:
- Balance and history reads
- Recharge (credit), lead-fee debit, refund of a debit
- Low-balance alerts after debits and as a periodic job
- Alert settings

Every mutation is a single atomic store operation that updates the balance
and appends the ledger row together. A debit is conditional
(balance >= amount); insufficient funds is a normal DebitResult, not an error.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional
from uuid import UUID, uuid4

from domain.audit import AuditAction, AuditEntity, AuditEntry
from domain.errors import WalletNotProvisionedError
from domain.time import utc_now
from domain.wallet import ZERO, DebitResult, LeadTransaction, LeadWallet
from repositories.store import MarketplaceStore
from services.notification_service import MarketplaceNotifier

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def _require_positive(amount: Decimal) -> Decimal:
    value = Decimal(amount)
    if value <= 0:
        raise ValueError("amount must be > 0")
    return value


class WalletLedger:
    def __init__(
        self,
        store: MarketplaceStore,
        notifier: Optional[MarketplaceNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_wallet(self, partner_id: UUID) -> LeadWallet:
        wallet = self._store.get_wallet(partner_id)
        if wallet is None:
            raise WalletNotProvisionedError(partner_id)
        return wallet

    def get_balance(self, partner_id: UUID) -> Decimal:
        return self.get_wallet(partner_id).balance

    def get_history(self, partner_id: UUID, limit: int = DEFAULT_HISTORY_LIMIT) -> List[LeadTransaction]:
        """Newest first."""

        self.get_wallet(partner_id)
        return self._store.list_transactions(partner_id, limit=limit)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def provision_wallet(
        self,
        partner_id: UUID,
        opening_balance: Decimal = ZERO,
        currency: str = "INR",
        alert_threshold: Decimal = Decimal("1000.00"),
    ) -> LeadWallet:
        """
        Create an empty wallet and, if requested, recharge it.

        The opening amount goes through the ledger so the balance stays
        reconstructible from initial_balance (0) plus transactions.
        """

        existing = self._store.get_wallet(partner_id)
        if existing is not None:
            raise ValueError(f"Wallet already exists for partner {partner_id}")

        wallet = LeadWallet(
            wallet_id=uuid4(),
            partner_id=partner_id,
            balance=ZERO,
            initial_balance=ZERO,
            currency=currency,
            alert_threshold=Decimal(alert_threshold),
        )
        self._store.insert_wallet(wallet)
        logger.info("Provisioned lead wallet %s for partner %s", wallet.wallet_id, partner_id)

        if Decimal(opening_balance) > 0:
            self.credit(partner_id, Decimal(opening_balance), {"source": "opening_balance"})
        return self.get_wallet(partner_id)

    def credit(
        self,
        partner_id: UUID,
        amount: Decimal,
        metadata: Optional[Mapping[str, Any]] = None,
        description: str = "Wallet recharge",
    ) -> LeadTransaction:
        value = _require_positive(amount)
        txn = self._store.credit_wallet(partner_id, value, description, dict(metadata or {}), self._clock())
        logger.info("Credited %s to wallet of partner %s (balance %s)", value, partner_id, txn.balance_after)
        return txn

    def debit(
        self,
        partner_id: UUID,
        amount: Decimal,
        metadata: Optional[Mapping[str, Any]] = None,
        description: str = "Lead fee",
        offer_id: Optional[UUID] = None,
        quote_id: Optional[UUID] = None,
    ) -> DebitResult:
        value = _require_positive(amount)
        result = self._store.debit_wallet(
            partner_id,
            value,
            description,
            dict(metadata or {}),
            self._clock(),
            offer_id=offer_id,
            quote_id=quote_id,
        )
        if result.insufficient_funds:
            logger.info(
                "Debit of %s refused for partner %s: available %s", value, partner_id, result.available
            )
            return result

        self.check_low_balance(partner_id)
        return result

    def refund(self, original_debit_id: UUID, reason: str) -> LeadTransaction:
        """
        Credit back the exact amount of a DEBIT, linked to it.

        Whether a refund is warranted is decided by the caller; a debit can be
        refunded at most once.
        """

        txn = self._store.refund_transaction(original_debit_id, reason, self._clock())
        logger.info("Refunded debit %s (%s): %s", original_debit_id, reason, txn.amount)
        return txn

    # ------------------------------------------------------------------
    # Low-balance alerts
    # ------------------------------------------------------------------

    def check_low_balance(self, partner_id: UUID) -> bool:
        """
        Alert the partner if the balance is at or below the threshold.

        Best effort: returns whether an alert was raised, never raises.
        """

        try:
            wallet = self._store.get_wallet(partner_id)
            if wallet is None or not wallet.below_alert_threshold:
                return False
            self._raise_alert(wallet)
            return True
        except Exception:
            logger.exception("Low-balance check failed for partner %s", partner_id)
            return False

    def check_all_wallets(self) -> int:
        """Periodic job: alert every wallet at or below its threshold."""

        alerted = 0
        for wallet in self._store.list_low_balance_wallets():
            try:
                self._raise_alert(wallet)
                alerted += 1
            except Exception:
                logger.exception("Low-balance alert failed for partner %s", wallet.partner_id)
        if alerted:
            logger.info("Low-balance check: alerted %d wallets", alerted)
        return alerted

    def _raise_alert(self, wallet: LeadWallet) -> None:
        if self._notifier is not None:
            self._notifier.low_wallet_balance(wallet.partner_id, wallet.balance, wallet.alert_threshold)
        self._store.insert_audit(
            AuditEntry(
                action=AuditAction.LOW_BALANCE_ALERT,
                entity=AuditEntity.WALLET,
                entity_id=wallet.wallet_id,
                actor_id=wallet.partner_id,
                created_at=self._clock(),
                changes={"balance": str(wallet.balance), "threshold": str(wallet.alert_threshold)},
            )
        )

    def update_alert_settings(
        self,
        partner_id: UUID,
        low_balance_alert: Optional[bool] = None,
        alert_threshold: Optional[Decimal] = None,
    ) -> LeadWallet:
        if alert_threshold is not None and Decimal(alert_threshold) < 0:
            raise ValueError("alert_threshold must be >= 0")

        before = self.get_wallet(partner_id)
        updated = self._store.update_wallet_alert_settings(
            partner_id,
            low_balance_alert,
            Decimal(alert_threshold) if alert_threshold is not None else None,
        )
        if updated is None:
            raise WalletNotProvisionedError(partner_id)

        self._store.insert_audit(
            AuditEntry(
                action=AuditAction.UPDATE_WALLET_ALERT_SETTINGS,
                entity=AuditEntity.WALLET,
                entity_id=updated.wallet_id,
                actor_id=partner_id,
                created_at=self._clock(),
                changes={
                    "lowBalanceAlert": {"from": before.low_balance_alert, "to": updated.low_balance_alert},
                    "alertThreshold": {"from": str(before.alert_threshold), "to": str(updated.alert_threshold)},
                },
            )
        )
        return updated


__all__ = ["DEFAULT_HISTORY_LIMIT", "WalletLedger"]
