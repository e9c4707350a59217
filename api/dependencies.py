"""
Service wiring for the API.

Services are built once per process from Settings. Tests replace them with
app.dependency_overrides or by calling set_container().
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from repositories.store import MarketplaceStore
from repositories.store_factory import build_store
from services.config import Settings, get_settings
from services.notification_service import LoggingNotificationSink, MarketplaceNotifier, WebhookPublisher
from services.offer_settlement_service import OfferSettlementService
from services.pricing_service import PricingEngine
from services.quote_lifecycle_service import QuoteLifecycle, ThreadingTimerScheduler, TimerScheduler
from services.wallet_service import WalletLedger


@dataclass
class ServiceContainer:
    store: MarketplaceStore
    pricing: PricingEngine
    wallet: WalletLedger
    lifecycle: QuoteLifecycle
    settlement: OfferSettlementService
    notifier: MarketplaceNotifier
    publisher: Optional[WebhookPublisher] = None


def build_container(
    settings: Optional[Settings] = None,
    store: Optional[MarketplaceStore] = None,
    scheduler: Optional[TimerScheduler] = None,
    notifier: Optional[MarketplaceNotifier] = None,
) -> ServiceContainer:
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)

    publisher: Optional[WebhookPublisher] = None
    if notifier is None:
        if settings.webhook_url:
            publisher = WebhookPublisher(
                store,
                url=settings.webhook_url,
                secret=settings.webhook_secret,
                timeout_seconds=settings.webhook_timeout_seconds,
            )
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="webhook") if publisher is not None else None
        notifier = MarketplaceNotifier(LoggingNotificationSink(), publisher, executor)

    pricing = PricingEngine(store, cache_ttl_seconds=settings.pricing_cache_ttl_seconds)
    pricing.refresh_config()
    wallet = WalletLedger(store, notifier)
    lifecycle = QuoteLifecycle(
        store,
        scheduler if scheduler is not None else ThreadingTimerScheduler(),
        notifier,
        warning_minutes=settings.quote_warning_minutes,
    )
    settlement = OfferSettlementService(store, pricing, lifecycle, wallet, notifier)
    return ServiceContainer(
        store=store,
        pricing=pricing,
        wallet=wallet,
        lifecycle=lifecycle,
        settlement=settlement,
        notifier=notifier,
        publisher=publisher,
    )


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = build_container()
    return _container


def set_container(container: Optional[ServiceContainer]) -> None:
    global _container
    _container = container


def get_settlement_service() -> OfferSettlementService:
    return get_container().settlement


def get_quote_lifecycle() -> QuoteLifecycle:
    return get_container().lifecycle


def get_wallet_ledger() -> WalletLedger:
    return get_container().wallet


__all__ = [
    "ServiceContainer",
    "build_container",
    "get_container",
    "get_quote_lifecycle",
    "get_settlement_service",
    "get_wallet_ledger",
    "set_container",
]
