"""
Tests for the real timer threads and background jobs.

Covers `ThreadingTimerScheduler` (services/quote_lifecycle_service.py) and
`RecurringJob` / `BackgroundScheduler` (services/scheduler.py):
- A scheduled callback fires once its delay passes.
- Re-scheduling or cancelling a key stops the earlier timer.
- A job whose function raises keeps its schedule; stop() ends its thread.
- The expiry sweep job closes overdue quotes without any timer.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta

from domain.quote import QuoteStatus
from domain.time import utc_now
from services.config import Settings
from services.quote_lifecycle_service import ThreadingTimerScheduler
from services.scheduler import BackgroundScheduler, RecurringJob

WAIT_SECONDS = 2.0


def _job_threads(name: str):
    return [t for t in threading.enumerate() if t.name == f"job-{name}" and t.is_alive()]


def test_timer_fires_after_delay() -> None:
    scheduler = ThreadingTimerScheduler()
    fired = threading.Event()

    scheduler.schedule("q1:expiry", utc_now() + timedelta(milliseconds=50), fired.set)

    assert fired.wait(WAIT_SECONDS)


def test_rescheduling_replaces_earlier_timer() -> None:
    scheduler = ThreadingTimerScheduler()
    first = threading.Event()
    second = threading.Event()

    scheduler.schedule("q1:expiry", utc_now() + timedelta(milliseconds=50), first.set)
    scheduler.schedule("q1:expiry", utc_now() + timedelta(milliseconds=150), second.set)

    assert second.wait(WAIT_SECONDS)
    assert not first.is_set()


def test_cancelled_timer_never_fires() -> None:
    scheduler = ThreadingTimerScheduler()
    fired = threading.Event()

    scheduler.schedule("q1:warning", utc_now() + timedelta(milliseconds=50), fired.set)
    scheduler.cancel("q1:warning")

    assert not fired.wait(0.3)


def test_past_run_at_is_not_scheduled() -> None:
    scheduler = ThreadingTimerScheduler()
    fired = threading.Event()

    scheduler.schedule("q1:warning", utc_now() - timedelta(seconds=1), fired.set)

    assert not fired.wait(0.1)


def test_cancel_all_stops_every_timer() -> None:
    scheduler = ThreadingTimerScheduler()
    fired = threading.Event()

    scheduler.schedule("q1:expiry", utc_now() + timedelta(milliseconds=50), fired.set)
    scheduler.schedule("q2:expiry", utc_now() + timedelta(milliseconds=50), fired.set)
    scheduler.cancel_all()

    assert not fired.wait(0.3)


def test_failing_job_keeps_running_and_stops_cleanly(caplog) -> None:
    calls = []
    third_call = threading.Event()

    def _flaky() -> None:
        calls.append(1)
        if len(calls) >= 3:
            third_call.set()
        raise ConnectionError("database unreachable")

    job = RecurringJob("flaky", 0.02, _flaky)

    with caplog.at_level(logging.ERROR, logger="services.scheduler"):
        job.start()
        assert third_call.wait(WAIT_SECONDS)
        job.stop()

    assert _job_threads("flaky") == []
    assert "Background job flaky failed" in caplog.text

    settled = len(calls)
    time.sleep(0.1)
    assert len(calls) == settled


def test_expiry_sweep_job_closes_overdue_quotes(lifecycle, make_quote, store, timers, clock) -> None:
    quote = make_quote()
    lifecycle.start_timer(quote.quote_id, 30)
    timers.timers.clear()
    clock.advance(minutes=31)

    scheduler = BackgroundScheduler([RecurringJob("expiry-sweep", 0.02, lifecycle.check_expired_quotes)])

    scheduler.start()
    try:
        deadline = time.monotonic() + WAIT_SECONDS
        while store.get_quote(quote.quote_id).status is not QuoteStatus.EXPIRED and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        scheduler.stop()

    assert store.get_quote(quote.quote_id).status is QuoteStatus.EXPIRED
    assert _job_threads("expiry-sweep") == []


def test_for_services_registers_every_job(lifecycle, wallet, pricing) -> None:
    scheduler = BackgroundScheduler.for_services(Settings(store_backend="memory"), lifecycle, wallet, pricing=pricing)

    assert [job.name for job in scheduler.jobs] == ["expiry-sweep", "low-balance-check", "pricing-refresh"]
