"""
Quote lifecycle service.

Owns the bidding window of a quote:
- start/extend the expiry timer
- warn partners with pending offers shortly before expiry
- expire the quote (and its pending offers) when the window closes
- selection and cancellation, which win over a later expiry

In-process timers only reduce latency. check_expired_quotes() is the
authoritative sweep: it is run periodically and is safe to repeat, so a lost
timer (restart, crash) only delays an expiry.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol
from uuid import UUID

from domain.audit import AuditAction, AuditEntity, AuditEntry
from domain.errors import QuoteNotFoundError, QuoteNotOpenError, QuoteTimerNotSetError
from domain.offer import OfferStatus
from domain.quote import OPEN_QUOTE_STATUSES, Quote, QuoteStatus
from domain.time import utc_now, whole_minutes_between
from repositories.store import MarketplaceStore, QuoteClosure, SelectionOutcome
from services.notification_service import MarketplaceNotifier

logger = logging.getLogger(__name__)

DEFAULT_TIMER_MINUTES = 60
DEFAULT_WARNING_MINUTES = 10
_EXTEND_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class RemainingTime:
    expires_at: datetime
    remaining_minutes: int
    has_expired: bool


class TimerScheduler(Protocol):
    def schedule(self, key: str, run_at: datetime, callback: Callable[[], None]) -> None: ...

    def cancel(self, key: str) -> None: ...


class ThreadingTimerScheduler:
    """
    TimerScheduler on threading.Timer.

    Scheduling a key replaces any timer already registered under it.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}

    def schedule(self, key: str, run_at: datetime, callback: Callable[[], None]) -> None:
        delay = (run_at - self._clock()).total_seconds()
        self.cancel(key)
        if delay <= 0:
            return

        def _run() -> None:
            # A timer that fired while being replaced or cancelled does nothing.
            with self._lock:
                if self._timers.get(key) is not timer:
                    return
                del self._timers[key]
            callback()

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        with self._lock:
            self._timers[key] = timer
        timer.start()

    def cancel(self, key: str) -> None:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()


def _warning_key(quote_id: UUID) -> str:
    return f"{quote_id}:warning"


def _expiry_key(quote_id: UUID) -> str:
    return f"{quote_id}:expiry"


class QuoteLifecycle:
    def __init__(
        self,
        store: MarketplaceStore,
        scheduler: TimerScheduler,
        notifier: Optional[MarketplaceNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
        warning_minutes: int = DEFAULT_WARNING_MINUTES,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._notifier = notifier
        self._clock = clock
        self._warning_minutes = warning_minutes

    def _get_quote(self, quote_id: UUID) -> Quote:
        quote = self._store.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        return quote

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def start_timer(
        self,
        quote_id: UUID,
        duration_minutes: int = DEFAULT_TIMER_MINUTES,
        enable_warnings: bool = True,
    ) -> datetime:
        """
        Open the bidding window: expires_at = now + duration, status MATCHING.

        A quote that already has offers keeps OFFERS_AVAILABLE and only gets a
        new expiry. Terminal quotes raise QuoteNotOpenError.
        """

        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be > 0")

        quote = self._get_quote(quote_id)
        now = self._clock()
        expires_at = now + timedelta(minutes=duration_minutes)

        updated = self._store.start_quote_timer(quote_id, expires_at)
        if updated is None:
            current = self._get_quote(quote_id)
            raise QuoteNotOpenError(quote_id, current.status.value)

        self._store.insert_audit(
            AuditEntry(
                action=AuditAction.QUOTE_TIMER_STARTED,
                entity=AuditEntity.QUOTE,
                entity_id=quote_id,
                quote_id=quote_id,
                created_at=now,
                changes={
                    "previousStatus": quote.status.value,
                    "durationMinutes": duration_minutes,
                    "expiresAt": expires_at.isoformat(),
                },
            )
        )
        self._schedule(quote_id, expires_at, enable_warnings)
        logger.info("Started %d-minute timer for quote %s (expires %s)", duration_minutes, quote_id, expires_at)
        return expires_at

    def extend_timer(self, quote_id: UUID, additional_minutes: int) -> datetime:
        """
        Push expires_at back by additional_minutes.

        Compare-and-swap on the previous expires_at; a concurrent change
        forces a re-read. Only open quotes can be extended.
        """

        if additional_minutes <= 0:
            raise ValueError("additional_minutes must be > 0")

        for _ in range(_EXTEND_ATTEMPTS):
            quote = self._get_quote(quote_id)
            if quote.status not in OPEN_QUOTE_STATUSES:
                raise QuoteNotOpenError(quote_id, quote.status.value)
            if quote.expires_at is None:
                raise QuoteTimerNotSetError(quote_id)

            new_expires_at = quote.expires_at + timedelta(minutes=additional_minutes)
            updated = self._store.extend_quote_timer(quote_id, quote.expires_at, new_expires_at)
            if updated is None:
                continue

            self._store.insert_audit(
                AuditEntry(
                    action=AuditAction.QUOTE_TIMER_EXTENDED,
                    entity=AuditEntity.QUOTE,
                    entity_id=quote_id,
                    quote_id=quote_id,
                    created_at=self._clock(),
                    changes={
                        "previousExpiresAt": quote.expires_at.isoformat(),
                        "newExpiresAt": new_expires_at.isoformat(),
                        "additionalMinutes": additional_minutes,
                    },
                )
            )
            self._schedule(quote_id, new_expires_at, enable_warnings=True)
            logger.info("Extended quote %s by %d minutes (expires %s)", quote_id, additional_minutes, new_expires_at)
            return new_expires_at

        current = self._get_quote(quote_id)
        raise QuoteNotOpenError(quote_id, current.status.value)

    def get_remaining_time(self, quote_id: UUID) -> RemainingTime:
        quote = self._get_quote(quote_id)
        if quote.expires_at is None:
            raise QuoteTimerNotSetError(quote_id)

        now = self._clock()
        return RemainingTime(
            expires_at=quote.expires_at,
            remaining_minutes=whole_minutes_between(now, quote.expires_at),
            has_expired=now >= quote.expires_at,
        )

    def _schedule(self, quote_id: UUID, expires_at: datetime, enable_warnings: bool) -> None:
        now = self._clock()
        warning_at = expires_at - timedelta(minutes=self._warning_minutes)
        if enable_warnings and warning_at > now:
            self._scheduler.schedule(
                _warning_key(quote_id), warning_at, lambda: self._on_warning_timer(quote_id)
            )
        else:
            self._scheduler.cancel(_warning_key(quote_id))
        if expires_at > now:
            self._scheduler.schedule(_expiry_key(quote_id), expires_at, lambda: self._on_expiry_timer(quote_id))

    def _cancel_timers(self, quote_id: UUID) -> None:
        self._scheduler.cancel(_warning_key(quote_id))
        self._scheduler.cancel(_expiry_key(quote_id))

    def _on_warning_timer(self, quote_id: UUID) -> None:
        try:
            self.send_expiry_warning(quote_id)
        except Exception:
            logger.exception("Expiry warning failed for quote %s", quote_id)

    def _on_expiry_timer(self, quote_id: UUID) -> None:
        try:
            self.expire(quote_id)
        except Exception:
            logger.exception("Timer expiry failed for quote %s; the sweep will retry", quote_id)

    # ------------------------------------------------------------------
    # Warning and expiry
    # ------------------------------------------------------------------

    def send_expiry_warning(self, quote_id: UUID) -> int:
        """Notify every partner with a PENDING offer. Returns how many were notified."""

        quote = self._store.get_quote(quote_id)
        if quote is None or quote.status not in OPEN_QUOTE_STATUSES or quote.expires_at is None:
            return 0

        minutes = whole_minutes_between(self._clock(), quote.expires_at)
        pending = self._store.list_offers(quote_id, status=OfferStatus.PENDING)
        if self._notifier is not None:
            for offer in pending:
                self._notifier.offer_expiring_soon(offer.partner_id, quote_id, quote.quote_number, minutes)
        logger.info("Sent expiry warning for quote %s to %d partners", quote_id, len(pending))
        return len(pending)

    def expire(self, quote_id: UUID) -> bool:
        """
        Expire the quote and its PENDING offers in one atomic unit.

        Idempotent: a quote that is already terminal (including SELECTED or
        CANCELLED) is left untouched and False is returned.
        """

        closure: QuoteClosure = self._store.expire_quote(quote_id, self._clock())
        self._cancel_timers(quote_id)
        if not closure.applied:
            return False

        logger.info("Quote %s expired; %d pending offers expired", quote_id, closure.offers_affected)
        if self._notifier is not None:
            quote = self._store.get_quote(quote_id)
            if quote is not None:
                self._notifier.quote_expired(quote.shipper_id, quote_id, quote.quote_number, closure.offers_affected)
        return True

    def check_expired_quotes(self) -> List[UUID]:
        """Sweep: expire every open quote whose expires_at has passed."""

        expired: List[UUID] = []
        for quote in self._store.list_quotes_due_for_expiry(self._clock()):
            try:
                if self.expire(quote.quote_id):
                    expired.append(quote.quote_id)
            except Exception:
                logger.exception("Sweep failed to expire quote %s", quote.quote_id)
        if expired:
            logger.info("Expiry sweep closed %d quotes", len(expired))
        return expired

    # ------------------------------------------------------------------
    # Offer-driven transitions
    # ------------------------------------------------------------------

    def on_offer_settled(self, quote_id: UUID) -> bool:
        """MATCHING -> OFFERS_AVAILABLE after the first offer lands."""

        return self._store.transition_quote_status(
            quote_id, (QuoteStatus.MATCHING,), QuoteStatus.OFFERS_AVAILABLE
        )

    def apply_selection(self, offer_id: UUID) -> SelectionOutcome:
        """
        Select an offer: it becomes SELECTED, every other PENDING offer REJECTED,
        the quote SELECTED. Re-selecting the same offer is a no-op.
        """

        outcome = self._store.select_offer(offer_id, self._clock())
        self._cancel_timers(outcome.quote.quote_id)
        if outcome.applied:
            logger.info(
                "Offer %s selected for quote %s; %d offers rejected",
                offer_id,
                outcome.quote.quote_id,
                outcome.rejected_offers,
            )
        return outcome

    def cancel(self, quote_id: UUID) -> QuoteClosure:
        closure = self._store.cancel_quote(quote_id, self._clock())
        self._cancel_timers(quote_id)
        if closure.applied:
            logger.info("Quote %s cancelled; %d offers rejected", quote_id, closure.offers_affected)
        return closure


__all__ = [
    "DEFAULT_TIMER_MINUTES",
    "DEFAULT_WARNING_MINUTES",
    "QuoteLifecycle",
    "RemainingTime",
    "ThreadingTimerScheduler",
    "TimerScheduler",
]
