"""
Tests for `services/pricing_service.py` and `domain/pricing.py`.

Covers contract rules:
- Lead fee is the product of base cost and every multiplier, rounded half-up to 2 dp.
- Pricing never hard-fails: missing or invalid configuration falls back and logs.
- Urgency never lowers the fee; the sync path never prices below the authoritative one.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal

import pytest

from api.dependencies import build_container
from domain.errors import InvalidPricingConfigError
from domain.pricing import (
    FALLBACK_PRICING_CONFIG,
    DistanceBand,
    PricingConfig,
    QuantityBand,
    SubscriptionTier,
    config_to_row,
    resolve_distance_band,
)
from domain.quote import HazardClass, VehicleType
from domain.wallet import LeadType
from services.config import Settings
from services.pricing_service import LeadCostInput, PricingEngine, lead_type_for_tier


def _scenario_cost(engine: PricingEngine, **overrides) -> Decimal:
    args = dict(
        hazard_class=HazardClass.CLASS_8,
        quantity=Decimal("15"),
        pickup_state="Maharashtra",
        delivery_state="Delhi",
        vehicle_types=(VehicleType.TRUCK,),
        subscription_tier=SubscriptionTier.STANDARD,
        is_urgent=False,
    )
    args.update(overrides)
    return engine.compute_lead_cost(**args)


def test_class_8_medium_distance_standard_tier_costs_1305_60(pricing: PricingEngine) -> None:
    """500 x 1.6 (CLASS_8) x 1.6 (MEDIUM) x 1.2 (15 units) x 1.0 (TRUCK) x 0.85 (STANDARD)."""

    assert _scenario_cost(pricing) == Decimal("1305.60")


def test_non_hazardous_same_state_is_base_times_quantity_and_tier(pricing: PricingEngine) -> None:
    cost = pricing.compute_lead_cost(
        hazard_class=None,
        quantity=Decimal("75"),
        pickup_state="Gujarat",
        delivery_state="Gujarat",
        vehicle_types=(),
        subscription_tier=SubscriptionTier.FREE,
    )

    assert cost == Decimal("500.00")


def test_result_is_rounded_half_up_to_two_places(pricing: PricingEngine) -> None:
    # 500 x 1.9 (CLASS_6) x 1.3 (SHORT) x 1.0 (75 units) x 1.1 (CONTAINER) x 0.85 = 1154.725
    cost = pricing.compute_lead_cost(
        hazard_class=HazardClass.CLASS_6,
        quantity=Decimal("75"),
        pickup_state="Maharashtra",
        delivery_state="Gujarat",
        vehicle_types=(VehicleType.CONTAINER,),
        subscription_tier=SubscriptionTier.STANDARD,
    )

    assert cost == Decimal("1154.73")
    assert cost.as_tuple().exponent == -2


def test_pricing_is_deterministic(pricing: PricingEngine) -> None:
    assert _scenario_cost(pricing) == _scenario_cost(pricing)


def test_urgency_never_lowers_the_fee(pricing: PricingEngine) -> None:
    normal = _scenario_cost(pricing, is_urgent=False)
    urgent = _scenario_cost(pricing, is_urgent=True)

    assert urgent >= normal
    assert urgent == Decimal("1697.28")


def test_vehicle_multiplier_is_the_maximum_requested(pricing: PricingEngine) -> None:
    mixed = _scenario_cost(pricing, vehicle_types=(VehicleType.TRUCK, VehicleType.ISO_TANK))
    iso_only = _scenario_cost(pricing, vehicle_types=(VehicleType.ISO_TANK,))

    assert mixed == iso_only


def test_tiers_discount_in_order(pricing: PricingEngine) -> None:
    free = _scenario_cost(pricing, subscription_tier=SubscriptionTier.FREE)
    standard = _scenario_cost(pricing, subscription_tier=SubscriptionTier.STANDARD)
    premium = _scenario_cost(pricing, subscription_tier=SubscriptionTier.PREMIUM)

    assert free > standard > premium


def test_distance_lookup_is_symmetric_and_defaults_to_medium() -> None:
    assert resolve_distance_band("Tamil Nadu", "Maharashtra") is DistanceBand.LONG
    assert resolve_distance_band("Maharashtra", "Tamil Nadu") is DistanceBand.LONG
    assert resolve_distance_band("Kerala", "Kerala") is DistanceBand.SAME_STATE
    assert resolve_distance_band("Assam", "Bihar") is DistanceBand.MEDIUM


def test_quantity_bands_are_half_open() -> None:
    config = FALLBACK_PRICING_CONFIG

    assert config.quantity_multiplier(Decimal("9.99")) == Decimal("1.5")
    assert config.quantity_multiplier(Decimal("10")) == Decimal("1.2")
    assert config.quantity_multiplier(Decimal("500")) == Decimal("0.8")
    assert config.quantity_multiplier(Decimal("100000")) == Decimal("0.8")


def test_active_config_from_store_is_used(store, pricing: PricingEngine) -> None:
    doubled = replace(FALLBACK_PRICING_CONFIG, version="v2", base_cost=Decimal("1000"))
    store.set_active_pricing_row(config_to_row(doubled))

    assert _scenario_cost(pricing) == Decimal("2611.20")


def test_missing_config_falls_back_with_warning(pricing: PricingEngine, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="services.pricing_service"):
        cost = _scenario_cost(pricing)

    assert cost == Decimal("1305.60")
    assert "fallback" in caplog.text


def test_invalid_config_falls_back_with_warning(store, pricing: PricingEngine, caplog) -> None:
    row = config_to_row(FALLBACK_PRICING_CONFIG)
    row["hazard_class_8"] = "0"
    store.set_active_pricing_row(row)

    with caplog.at_level(logging.WARNING, logger="services.pricing_service"):
        cost = _scenario_cost(pricing)

    assert cost == Decimal("1305.60")
    assert "invalid" in caplog.text


def test_store_failure_falls_back(store, pricing: PricingEngine, monkeypatch) -> None:
    def _boom():
        raise ConnectionError("database unreachable")

    monkeypatch.setattr(store, "get_active_pricing_row", _boom)

    assert _scenario_cost(pricing) == Decimal("1305.60")


def test_config_is_cached_for_the_ttl(store, clock, pricing: PricingEngine) -> None:
    assert _scenario_cost(pricing) == Decimal("1305.60")

    store.set_active_pricing_row(config_to_row(replace(FALLBACK_PRICING_CONFIG, base_cost=Decimal("1000"))))
    clock.advance(seconds=30)
    assert _scenario_cost(pricing) == Decimal("1305.60")

    clock.advance(seconds=31)
    assert _scenario_cost(pricing) == Decimal("2611.20")


def _scenario_cost_sync(engine: PricingEngine) -> Decimal:
    return engine.compute_lead_cost_sync(
        HazardClass.CLASS_8,
        Decimal("15"),
        "Maharashtra",
        "Delhi",
        (VehicleType.TRUCK,),
        SubscriptionTier.STANDARD,
    )


def test_sync_path_after_startup_refresh_matches_higher_active_config(store, pricing: PricingEngine) -> None:
    store.set_active_pricing_row(config_to_row(replace(FALLBACK_PRICING_CONFIG, base_cost=Decimal("1000"))))
    pricing.refresh_config()

    sync = _scenario_cost_sync(pricing)

    assert sync == Decimal("2611.20")
    assert sync >= _scenario_cost(pricing)


def test_sync_path_keeps_last_loaded_config_after_ttl(store, clock, pricing: PricingEngine) -> None:
    store.set_active_pricing_row(config_to_row(replace(FALLBACK_PRICING_CONFIG, base_cost=Decimal("1000"))))
    pricing.refresh_config()

    clock.advance(seconds=120)

    sync = _scenario_cost_sync(pricing)
    assert sync == Decimal("2611.20")
    assert sync >= _scenario_cost(pricing)


def test_sync_path_without_store_config_uses_fallback(pricing: PricingEngine) -> None:
    pricing.refresh_config()

    assert _scenario_cost_sync(pricing) == Decimal("1305.60")


def test_refresh_ignores_the_ttl(store, pricing: PricingEngine) -> None:
    assert _scenario_cost(pricing) == Decimal("1305.60")

    store.set_active_pricing_row(config_to_row(replace(FALLBACK_PRICING_CONFIG, base_cost=Decimal("1000"))))
    pricing.refresh_config()

    assert _scenario_cost(pricing) == Decimal("2611.20")


def test_container_warms_pricing_at_startup(store) -> None:
    store.set_active_pricing_row(config_to_row(replace(FALLBACK_PRICING_CONFIG, base_cost=Decimal("1000"))))

    container = build_container(Settings(store_backend="memory", webhook_url=""), store=store)

    assert _scenario_cost_sync(container.pricing) == Decimal("2611.20")


def test_sync_path_never_prices_below_authoritative(store, pricing: PricingEngine) -> None:
    store.set_active_pricing_row(config_to_row(replace(FALLBACK_PRICING_CONFIG, base_cost=Decimal("1000"))))
    authoritative = _scenario_cost(pricing)

    sync = pricing.compute_lead_cost_sync(
        HazardClass.CLASS_8,
        Decimal("15"),
        "Maharashtra",
        "Delhi",
        (VehicleType.TRUCK,),
        SubscriptionTier.STANDARD,
    )

    assert sync >= authoritative


def test_estimate_for_quote_defaults_to_standard_tier(pricing: PricingEngine, make_quote) -> None:
    quote = make_quote(hazard_class=HazardClass.CLASS_8)

    assert pricing.estimate_lead_cost(quote) == Decimal("1305.60")
    assert pricing.estimate_lead_cost_sync(quote) == Decimal("1305.60")
    assert pricing.estimate_lead_cost(quote, SubscriptionTier.FREE) == Decimal("1536.00")


def test_breakdown_lists_every_factor(pricing: PricingEngine) -> None:
    inputs = LeadCostInput(
        hazard_class=HazardClass.CLASS_8,
        quantity=Decimal("15"),
        pickup_state="Maharashtra",
        delivery_state="Delhi",
        vehicle_types=(VehicleType.TRUCK,),
        subscription_tier=SubscriptionTier.STANDARD,
        is_urgent=True,
    )

    breakdown = pricing.get_pricing_breakdown(inputs)

    assert breakdown.config_version == "fallback"
    assert breakdown.distance_band is DistanceBand.MEDIUM
    assert breakdown.urgency_multiplier == Decimal("1.3")
    assert breakdown.lead_cost == Decimal("1697.28")
    assert any(line.startswith("Urgent") for line in breakdown.lines)
    assert breakdown.lines[-1] == "Lead cost: 1697.28"


def test_lead_type_follows_tier() -> None:
    assert lead_type_for_tier(SubscriptionTier.PREMIUM) is LeadType.EXCLUSIVE
    assert lead_type_for_tier(SubscriptionTier.STANDARD) is LeadType.SHARED
    assert lead_type_for_tier(SubscriptionTier.FREE) is LeadType.SHARED


def test_from_row_rejects_missing_columns() -> None:
    row = config_to_row(FALLBACK_PRICING_CONFIG)
    del row["vehicle_tanker"]

    with pytest.raises(InvalidPricingConfigError):
        PricingConfig.from_row(row)


def test_from_row_rejects_overlapping_quantity_bands() -> None:
    row = config_to_row(FALLBACK_PRICING_CONFIG)
    row["quantity_ranges"] = [
        {"min": 0, "max": 20, "multiplier": 1.5},
        {"min": 10, "max": None, "multiplier": 1.0},
    ]

    with pytest.raises(InvalidPricingConfigError):
        PricingConfig.from_row(row)


def test_from_row_non_list_quantity_ranges_uses_builtin_bands() -> None:
    row = config_to_row(FALLBACK_PRICING_CONFIG)
    row["quantity_ranges"] = "not-a-list"

    config = PricingConfig.from_row(row)

    assert config.quantity_bands == FALLBACK_PRICING_CONFIG.quantity_bands


def test_quantity_band_with_open_maximum() -> None:
    band = QuantityBand(Decimal("500"), None, Decimal("0.8"))

    assert band.contains(Decimal("500"))
    assert band.contains(Decimal("1e9"))
    assert not band.contains(Decimal("499.99"))
