"""
Background jobs.

- expiry sweep (QuoteLifecycle.check_expired_quotes), every 60 s
- low-balance check (WalletLedger.check_all_wallets), hourly
- webhook retry (WebhookPublisher.retry_failed_webhooks), every 15 min
- pricing refresh (PricingEngine.refresh_config), once per cache TTL

Each job runs on its own daemon thread. A failing run is logged and the job
keeps its schedule.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

from services.config import Settings
from services.notification_service import WebhookPublisher
from services.pricing_service import PricingEngine
from services.quote_lifecycle_service import QuoteLifecycle
from services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)

WEBHOOK_MAX_ATTEMPTS = 5
WEBHOOK_RETRY_BATCH = 100


class RecurringJob:
    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Any]) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self.interval_seconds = interval_seconds
        self._func = func
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> None:
        try:
            self._func()
        except Exception:
            logger.exception("Background job %s failed", self.name)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()
        logger.info("Started background job %s (every %ss)", self.name, self.interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


class BackgroundScheduler:
    def __init__(self, jobs: Optional[List[RecurringJob]] = None) -> None:
        self.jobs: List[RecurringJob] = list(jobs or [])

    @classmethod
    def for_services(
        cls,
        settings: Settings,
        lifecycle: QuoteLifecycle,
        wallet: WalletLedger,
        publisher: Optional[WebhookPublisher] = None,
        pricing: Optional[PricingEngine] = None,
    ) -> "BackgroundScheduler":
        jobs = [
            RecurringJob("expiry-sweep", settings.expiry_sweep_seconds, lifecycle.check_expired_quotes),
            RecurringJob("low-balance-check", settings.low_balance_check_seconds, wallet.check_all_wallets),
        ]
        if pricing is not None:
            jobs.append(RecurringJob("pricing-refresh", settings.pricing_cache_ttl_seconds, pricing.refresh_config))
        if publisher is not None:
            jobs.append(
                RecurringJob(
                    "webhook-retry",
                    settings.webhook_retry_seconds,
                    lambda: publisher.retry_failed_webhooks(WEBHOOK_MAX_ATTEMPTS, WEBHOOK_RETRY_BATCH),
                )
            )
        return cls(jobs)

    def start(self) -> None:
        for job in self.jobs:
            job.start()

    def stop(self) -> None:
        for job in self.jobs:
            job.stop()
        logger.info("Background jobs stopped")


__all__ = ["BackgroundScheduler", "RecurringJob"]
