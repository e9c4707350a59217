"""
Tests for the HTTP API (`api/`).

Runs the FastAPI app against the in-memory services from conftest, sharing their
manual clock. The background scheduler is not started (TestClient is used
without the lifespan context).
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.dependencies import ServiceContainer, build_container, set_container
from api.main import app
from domain.pricing import SubscriptionTier
from domain.quote import HazardClass
from services.config import Settings


@pytest.fixture
def container(store, pricing, wallet, lifecycle, settlement, notifier):
    built = ServiceContainer(
        store=store,
        pricing=pricing,
        wallet=wallet,
        lifecycle=lifecycle,
        settlement=settlement,
        notifier=notifier,
    )
    set_container(built)
    yield built
    set_container(None)


@pytest.fixture
def client(container) -> TestClient:
    return TestClient(app)


@pytest.fixture
def open_quote(container, make_quote):
    quote = make_quote(hazard_class=HazardClass.CLASS_8)
    container.lifecycle.start_timer(quote.quote_id, 60)
    return quote


def _partner(container, balance: str = "5000", tier=SubscriptionTier.STANDARD):
    partner_id = uuid4()
    container.wallet.provision_wallet(partner_id, opening_balance=Decimal(balance), alert_threshold=Decimal("0"))
    container.store.set_subscription_tier(partner_id, tier)
    return partner_id


def _offer_body(quote_id, partner_id, price: str = "45000.00") -> dict:
    return {
        "quote_id": str(quote_id),
        "partner_id": str(partner_id),
        "price": price,
        "transit_days": 3,
        "valid_until": "2025-01-08T12:00:00Z",
    }


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_submit_offer_charges_lead_fee(client, container, open_quote) -> None:
    partner_id = _partner(container)

    response = client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, partner_id))

    assert response.status_code == 201
    body = response.json()
    assert Decimal(str(body["lead_cost_charged"])) == Decimal("1305.60")
    assert Decimal(str(body["new_balance"])) == Decimal("3694.40")
    assert body["offer"]["status"] == "PENDING"


def test_duplicate_offer_is_409(client, container, open_quote) -> None:
    partner_id = _partner(container)
    client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, partner_id))

    response = client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, partner_id))

    assert response.status_code == 409


def test_insufficient_balance_is_402_with_amounts(client, container, open_quote) -> None:
    partner_id = _partner(container, balance="1000")

    response = client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, partner_id))

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["error"] == "INSUFFICIENT_BALANCE"
    assert detail["required"] == "1305.60"
    assert detail["available"] == "1000.00"


def test_unknown_quote_is_404(client, container) -> None:
    response = client.post("/api/v1/offers", json=_offer_body(uuid4(), _partner(container)))

    assert response.status_code == 404


def test_missing_wallet_on_submit_is_500(client, open_quote) -> None:
    response = client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, uuid4()))

    assert response.status_code == 500
    assert "contact support" in response.json()["detail"]


def test_invalid_price_is_422(client, container, open_quote) -> None:
    response = client.post(
        "/api/v1/offers", json=_offer_body(open_quote.quote_id, _partner(container), price="0")
    )

    assert response.status_code == 422


def test_timer_endpoints(client, make_quote, clock) -> None:
    quote = make_quote()

    started = client.post(f"/api/v1/quotes/{quote.quote_id}/timer", json={"duration_minutes": 30})
    assert started.status_code == 200
    assert started.json()["remaining_minutes"] == 30

    extended = client.post(f"/api/v1/quotes/{quote.quote_id}/timer/extend", json={"additional_minutes": 15})
    assert extended.json()["remaining_minutes"] == 45

    clock.advance(minutes=20)
    remaining = client.get(f"/api/v1/quotes/{quote.quote_id}/timer")
    assert remaining.json()["remaining_minutes"] == 25
    assert remaining.json()["has_expired"] is False


def test_timer_on_unknown_quote_is_404(client) -> None:
    assert client.get(f"/api/v1/quotes/{uuid4()}/timer").status_code == 404


def test_lead_cost_preview(client, container, open_quote) -> None:
    premium = _partner(container, tier=SubscriptionTier.PREMIUM)

    default = client.get(f"/api/v1/quotes/{open_quote.quote_id}/lead-cost")
    for_premium = client.get(f"/api/v1/quotes/{open_quote.quote_id}/lead-cost", params={"partner_id": str(premium)})

    assert Decimal(str(default.json()["lead_cost"])) == Decimal("1305.60")
    assert Decimal(str(for_premium.json()["lead_cost"])) == Decimal("1075.20")


def test_select_and_withdraw(client, container, open_quote) -> None:
    winner, other = _partner(container), _partner(container)
    winning = client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, winner)).json()["offer"]
    losing = client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, other)).json()["offer"]

    selected = client.post(f"/api/v1/offers/{winning['offer_id']}/select")
    assert selected.status_code == 200
    assert selected.json()["quote_status"] == "SELECTED"
    assert selected.json()["rejected_offers"] == 1

    withdraw = client.post(f"/api/v1/offers/{losing['offer_id']}/withdraw", json={"partner_id": str(other)})
    assert withdraw.status_code == 409


def test_wallet_endpoints(client, container, open_quote) -> None:
    partner_id = _partner(container)
    client.post("/api/v1/offers", json=_offer_body(open_quote.quote_id, partner_id))

    wallet = client.get(f"/api/v1/wallets/{partner_id}")
    assert Decimal(str(wallet.json()["balance"])) == Decimal("3694.40")

    history = client.get(f"/api/v1/wallets/{partner_id}/transactions", params={"limit": 10}).json()
    assert history["total_count"] == 2
    assert history["transactions"][0]["transaction_type"] == "DEBIT"

    updated = client.patch(f"/api/v1/wallets/{partner_id}/settings", json={"alert_threshold": "2500"})
    assert Decimal(str(updated.json()["alert_threshold"])) == Decimal("2500")


def test_unknown_wallet_is_404(client) -> None:
    assert client.get(f"/api/v1/wallets/{uuid4()}").status_code == 404


def test_build_container_with_memory_backend(timers) -> None:
    built = build_container(Settings(store_backend="memory", webhook_url=""), scheduler=timers)

    assert built.publisher is None
    assert built.settlement is not None
    assert built.store.get_wallet(uuid4()) is None
