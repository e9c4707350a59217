"""
Tests for `services/wallet_service.py`.

Covers contract rules:
- balance >= 0 at all times; concurrent debits never overdraw.
- initial_balance + sum(transaction amounts) == balance.
- Insufficient funds is a normal outcome carrying a fresh available balance.
- A debit is refunded at most once, by exactly its amount.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

import pytest

from domain.audit import AuditAction
from domain.errors import RefundNotAllowedError, TransactionNotFoundError, WalletNotProvisionedError
from domain.notification import NotificationEvent
from domain.wallet import TransactionType, reconstruct_balance
from services.wallet_service import WalletLedger


def _assert_reconstructible(store, partner_id) -> None:
    wallet = store.get_wallet(partner_id)
    assert reconstruct_balance(wallet.initial_balance, store.list_transactions(partner_id)) == wallet.balance


def test_provision_records_opening_balance_as_recharge(wallet: WalletLedger, store) -> None:
    partner_id = uuid4()

    provisioned = wallet.provision_wallet(partner_id, opening_balance=Decimal("5000"))

    assert provisioned.balance == Decimal("5000")
    history = wallet.get_history(partner_id)
    assert [t.transaction_type for t in history] == [TransactionType.RECHARGE]
    _assert_reconstructible(store, partner_id)


def test_provision_twice_is_rejected(wallet: WalletLedger) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id)

    with pytest.raises(ValueError):
        wallet.provision_wallet(partner_id)


def test_missing_wallet_raises_not_provisioned(wallet: WalletLedger) -> None:
    with pytest.raises(WalletNotProvisionedError):
        wallet.get_balance(uuid4())

    with pytest.raises(WalletNotProvisionedError):
        wallet.debit(uuid4(), Decimal("10"))

    with pytest.raises(WalletNotProvisionedError):
        wallet.credit(uuid4(), Decimal("10"))


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
def test_non_positive_amounts_are_rejected(wallet: WalletLedger, amount: Decimal) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("100"))

    with pytest.raises(ValueError):
        wallet.credit(partner_id, amount)
    with pytest.raises(ValueError):
        wallet.debit(partner_id, amount)


def test_debit_success_records_negative_ledger_row(wallet: WalletLedger, store) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("2000"))

    result = wallet.debit(partner_id, Decimal("750.50"), {"leadType": "SHARED"})

    assert result.success
    assert result.new_balance == Decimal("1249.50")
    assert result.transaction.amount == Decimal("-750.50")
    assert result.transaction.balance_after == Decimal("1249.50")
    assert wallet.get_balance(partner_id) == Decimal("1249.50")
    _assert_reconstructible(store, partner_id)


def test_insufficient_funds_is_not_an_error_and_changes_nothing(wallet: WalletLedger, store) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("100"))

    result = wallet.debit(partner_id, Decimal("100.01"))

    assert result.insufficient_funds
    assert result.required == Decimal("100.01")
    assert result.available == Decimal("100")
    assert wallet.get_balance(partner_id) == Decimal("100")
    assert len(store.list_transactions(partner_id)) == 1


def test_debit_of_entire_balance_leaves_zero(wallet: WalletLedger) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("700"))

    assert wallet.debit(partner_id, Decimal("700")).success
    assert wallet.get_balance(partner_id) == Decimal("0")


def test_concurrent_debits_never_overdraw(wallet: WalletLedger, store) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("1000"))
    barrier = threading.Barrier(10)

    def _debit(_):
        barrier.wait()
        return wallet.debit(partner_id, Decimal("150"))

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(_debit, range(10)))

    assert sum(1 for r in results if r.success) == 6
    assert wallet.get_balance(partner_id) == Decimal("100")
    _assert_reconstructible(store, partner_id)


def test_refund_credits_exact_debit_amount_once(wallet: WalletLedger, store) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("1000"))
    debit = wallet.debit(partner_id, Decimal("320")).transaction

    refund = wallet.refund(debit.transaction_id, "quote cancelled by shipper")

    assert refund.transaction_type is TransactionType.REFUND
    assert refund.amount == Decimal("320")
    assert refund.refunded_transaction_id == debit.transaction_id
    assert wallet.get_balance(partner_id) == Decimal("1000")
    _assert_reconstructible(store, partner_id)

    with pytest.raises(RefundNotAllowedError):
        wallet.refund(debit.transaction_id, "again")


def test_refund_of_unknown_or_non_debit_transaction(wallet: WalletLedger) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("1000"))
    recharge = wallet.get_history(partner_id)[0]

    with pytest.raises(TransactionNotFoundError):
        wallet.refund(uuid4(), "unknown")
    with pytest.raises(TransactionNotFoundError):
        wallet.refund(recharge.transaction_id, "not a debit")


def test_history_is_newest_first_and_limited(wallet: WalletLedger, clock) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("1000"))
    for amount in ("10", "20", "30"):
        clock.advance(minutes=1)
        wallet.debit(partner_id, Decimal(amount))

    history = wallet.get_history(partner_id, limit=2)

    assert [t.amount for t in history] == [Decimal("-30"), Decimal("-20")]


def test_debit_below_threshold_raises_low_balance_alert(wallet: WalletLedger, store, sink) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("1500"), alert_threshold=Decimal("1000"))

    wallet.debit(partner_id, Decimal("400"))
    assert sink.events(NotificationEvent.LOW_WALLET_BALANCE) == []

    wallet.debit(partner_id, Decimal("100"))
    alerts = sink.events(NotificationEvent.LOW_WALLET_BALANCE)
    assert len(alerts) == 1
    assert alerts[0].recipient_id == partner_id
    assert any(a.action is AuditAction.LOW_BALANCE_ALERT for a in store.list_audit())


def test_alerts_can_be_disabled(wallet: WalletLedger, sink, store) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id, opening_balance=Decimal("1500"))

    updated = wallet.update_alert_settings(partner_id, low_balance_alert=False)
    wallet.debit(partner_id, Decimal("1400"))

    assert updated.low_balance_alert is False
    assert sink.events(NotificationEvent.LOW_WALLET_BALANCE) == []
    assert any(a.action is AuditAction.UPDATE_WALLET_ALERT_SETTINGS for a in store.list_audit(updated.wallet_id))


def test_negative_threshold_is_rejected(wallet: WalletLedger) -> None:
    partner_id = uuid4()
    wallet.provision_wallet(partner_id)

    with pytest.raises(ValueError):
        wallet.update_alert_settings(partner_id, alert_threshold=Decimal("-1"))


def test_check_all_wallets_alerts_each_low_wallet(wallet: WalletLedger, sink) -> None:
    low_a, low_b, healthy = uuid4(), uuid4(), uuid4()
    wallet.provision_wallet(low_a, opening_balance=Decimal("200"))
    wallet.provision_wallet(low_b)
    wallet.provision_wallet(healthy, opening_balance=Decimal("5000"))

    assert wallet.check_all_wallets() == 2
    recipients = {n.recipient_id for n in sink.events(NotificationEvent.LOW_WALLET_BALANCE)}
    assert recipients == {low_a, low_b}


def test_low_balance_notification_failure_does_not_fail_debit(store, clock) -> None:
    class _BrokenNotifier:
        def low_wallet_balance(self, *args):
            raise RuntimeError("sink down")

    ledger = WalletLedger(store, _BrokenNotifier(), clock=clock)  # type: ignore[arg-type]
    partner_id = uuid4()
    ledger.provision_wallet(partner_id, opening_balance=Decimal("1200"))

    result = ledger.debit(partner_id, Decimal("500"))

    assert result.success
    assert ledger.get_balance(partner_id) == Decimal("700")
