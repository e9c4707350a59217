"""
Pytest configuration and shared fixtures.

This file adds the parent directory to the Python path so that tests
can import from the domain, repositories, services and api packages.

Fixtures wire the real services to an InMemoryStore, a manual clock, a
manual timer scheduler and a notification sink that records deliveries.
"""

import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple
from uuid import UUID, uuid4

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.notification import Notification, NotificationChannel, NotificationEvent  # noqa: E402
from domain.offer import OfferPriceDetails  # noqa: E402
from domain.quote import CargoDescriptor, HazardClass, Quote, QuoteStatus, VehicleType  # noqa: E402
from repositories.memory_store import InMemoryStore  # noqa: E402
from services.notification_service import MarketplaceNotifier  # noqa: E402
from services.offer_settlement_service import OfferSettlementService  # noqa: E402
from services.pricing_service import PricingEngine  # noqa: E402
from services.quote_lifecycle_service import QuoteLifecycle  # noqa: E402
from services.wallet_service import WalletLedger  # noqa: E402

T0 = datetime(2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Deterministic UTC clock for services that accept clock=..."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)
        return self.now


class ManualTimerScheduler:
    """TimerScheduler that only fires when run_due() is called."""

    def __init__(self) -> None:
        self.timers: Dict[str, Tuple[datetime, Callable[[], None]]] = {}

    def schedule(self, key: str, run_at: datetime, callback: Callable[[], None]) -> None:
        self.timers[key] = (run_at, callback)

    def cancel(self, key: str) -> None:
        self.timers.pop(key, None)

    def run_due(self, now: datetime) -> List[str]:
        fired: List[str] = []
        for key, (run_at, callback) in sorted(self.timers.items(), key=lambda item: item[1][0]):
            if run_at <= now and key in self.timers:
                del self.timers[key]
                callback()
                fired.append(key)
        return fired


class RecordingSink:
    """NotificationSink that records deliveries; channels in fail_on raise."""

    def __init__(self, fail_on: Optional[Set[NotificationChannel]] = None) -> None:
        self.delivered: List[Tuple[Notification, NotificationChannel]] = []
        self.fail_on = fail_on or set()

    def deliver(self, notification: Notification, channel: NotificationChannel) -> None:
        if channel in self.fail_on:
            raise ConnectionError(f"{channel.value} gateway down")
        self.delivered.append((notification, channel))

    def events(self, event: NotificationEvent) -> List[Notification]:
        seen: List[Notification] = []
        for notification, _ in self.delivered:
            if notification.event is event and notification not in seen:
                seen.append(notification)
        return seen


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def timers() -> ManualTimerScheduler:
    return ManualTimerScheduler()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier(sink: RecordingSink) -> MarketplaceNotifier:
    return MarketplaceNotifier(sink)


@pytest.fixture
def pricing(store: InMemoryStore, clock: ManualClock) -> PricingEngine:
    return PricingEngine(store, cache_ttl_seconds=60, clock=clock)


@pytest.fixture
def wallet(store: InMemoryStore, notifier: MarketplaceNotifier, clock: ManualClock) -> WalletLedger:
    return WalletLedger(store, notifier, clock=clock)


@pytest.fixture
def lifecycle(
    store: InMemoryStore, timers: ManualTimerScheduler, notifier: MarketplaceNotifier, clock: ManualClock
) -> QuoteLifecycle:
    return QuoteLifecycle(store, timers, notifier, clock=clock, warning_minutes=10)


@pytest.fixture
def settlement(
    store: InMemoryStore,
    pricing: PricingEngine,
    lifecycle: QuoteLifecycle,
    wallet: WalletLedger,
    notifier: MarketplaceNotifier,
    clock: ManualClock,
) -> OfferSettlementService:
    return OfferSettlementService(store, pricing, lifecycle, wallet, notifier, clock=clock)


@pytest.fixture
def make_quote(store: InMemoryStore, clock: ManualClock) -> Callable[..., Quote]:
    """Insert a quote (DRAFT unless told otherwise) and return it."""

    counter = {"n": 0}

    def _make(
        hazard_class: Optional[HazardClass] = None,
        quantity: str = "15",
        pickup_state: str = "Maharashtra",
        delivery_state: str = "Delhi",
        vehicle_types: Tuple[VehicleType, ...] = (VehicleType.TRUCK,),
        is_urgent: bool = False,
        status: QuoteStatus = QuoteStatus.DRAFT,
        shipper_id: Optional[UUID] = None,
    ) -> Quote:
        counter["n"] += 1
        quote = Quote(
            quote_id=uuid4(),
            shipper_id=shipper_id or uuid4(),
            quote_number=f"QT-2025-{counter['n']:04d}",
            status=status,
            cargo=CargoDescriptor(
                name="Sulphuric acid",
                quantity=Decimal(quantity),
                unit="MT",
                hazard_class=hazard_class,
            ),
            pickup_state=pickup_state,
            delivery_state=delivery_state,
            preferred_vehicle_types=vehicle_types,
            is_urgent=is_urgent,
            created_at=clock(),
        )
        store.insert_quote(quote)
        return quote

    return _make


@pytest.fixture
def make_details(clock: ManualClock) -> Callable[..., OfferPriceDetails]:
    def _make(price: str = "45000.00", transit_days: int = 3) -> OfferPriceDetails:
        return OfferPriceDetails(
            price=Decimal(price),
            transit_days=transit_days,
            valid_until=clock() + timedelta(days=7),
        )

    return _make
