"""
Pricing service for lead fees.

Computes the fee a logistics partner pays to bid on a quote:

    base_cost x hazard x distance x quantity x vehicle x urgency x tier

rounded to 2 decimal places (ROUND_HALF_UP).

The active PricingConfig comes from the store and is cached for a short TTL.
Pricing never hard-fails: a missing, unreachable or invalid configuration
falls back to FALLBACK_PRICING_CONFIG and logs a warning.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Sequence, Tuple

from domain.errors import InvalidPricingConfigError
from domain.pricing import (
    FALLBACK_PRICING_CONFIG,
    NON_HAZARDOUS,
    DistanceBand,
    PricingConfig,
    SubscriptionTier,
    resolve_distance_band,
)
from domain.quote import HazardClass, Quote, VehicleType
from domain.time import utc_now
from domain.wallet import LeadType
from repositories.store import MarketplaceStore

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def _round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class LeadCostInput:
    """Cargo attributes that drive the lead fee."""

    hazard_class: Optional[HazardClass]
    quantity: Decimal
    pickup_state: str
    delivery_state: str
    vehicle_types: Tuple[VehicleType, ...]
    subscription_tier: SubscriptionTier
    is_urgent: bool = False

    @staticmethod
    def for_quote(quote: Quote, tier: SubscriptionTier) -> "LeadCostInput":
        return LeadCostInput(
            hazard_class=quote.cargo.hazard_class,
            quantity=quote.cargo.quantity,
            pickup_state=quote.pickup_state,
            delivery_state=quote.delivery_state,
            vehicle_types=tuple(quote.preferred_vehicle_types),
            subscription_tier=tier,
            is_urgent=quote.is_urgent,
        )


@dataclass(frozen=True, slots=True)
class PricingBreakdown:
    """
    Every factor that went into a lead fee.

    lines is a human-readable explanation, one entry per factor, for partner
    and admin screens.
    """

    config_version: str
    base_cost: Decimal
    hazard_multiplier: Decimal
    distance_band: DistanceBand
    distance_multiplier: Decimal
    quantity_multiplier: Decimal
    vehicle_multiplier: Decimal
    urgency_multiplier: Decimal
    tier_multiplier: Decimal
    lead_cost: Decimal
    lines: List[str]


def lead_type_for_tier(tier: SubscriptionTier) -> LeadType:
    """PREMIUM partners get exclusive leads; everyone else shares."""

    return LeadType.EXCLUSIVE if tier is SubscriptionTier.PREMIUM else LeadType.SHARED


def _apply(config: PricingConfig, inputs: LeadCostInput) -> Decimal:
    cost = config.base_cost
    cost *= config.hazard_multiplier(inputs.hazard_class)
    cost *= config.distance_multiplier(inputs.pickup_state, inputs.delivery_state)
    cost *= config.quantity_multiplier(inputs.quantity)
    cost *= config.vehicle_multiplier(inputs.vehicle_types)
    cost *= config.urgency_multiplier(inputs.is_urgent)
    cost *= config.tier_multiplier(inputs.subscription_tier)
    return _round_money(max(cost, Decimal("0")))


class PricingEngine:
    """
    Lead fee calculator.

    compute_lead_cost reads the active configuration (through the TTL cache);
    compute_lead_cost_sync does no I/O at all.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        cache_ttl_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[PricingConfig] = None
        self._cached_at: Optional[datetime] = None
        # Last configuration loaded from the store; outlives the TTL.
        self._last_loaded: Optional[PricingConfig] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def active_config(self) -> PricingConfig:
        """The active configuration, or the fallback table. Never raises."""

        now = self._clock()
        with self._lock:
            if (
                self._cached is not None
                and self._cached_at is not None
                and (now - self._cached_at).total_seconds() < self._cache_ttl_seconds
            ):
                return self._cached

        config = self._load_config()
        with self._lock:
            self._cached = config
            self._cached_at = now
            if config is not FALLBACK_PRICING_CONFIG:
                self._last_loaded = config
        return config

    def _load_config(self) -> PricingConfig:
        try:
            row = self._store.get_active_pricing_row()
        except Exception:
            logger.warning("Failed to fetch pricing config, using fallback", exc_info=True)
            return FALLBACK_PRICING_CONFIG

        if row is None:
            logger.warning("No active pricing config found, using fallback")
            return FALLBACK_PRICING_CONFIG

        try:
            return PricingConfig.from_row(row)
        except InvalidPricingConfigError as e:
            logger.warning("Active pricing config is invalid (%s), using fallback", e)
            return FALLBACK_PRICING_CONFIG

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = None

    def refresh_config(self) -> PricingConfig:
        """Reload the active configuration now, ignoring the TTL."""

        self.invalidate_cache()
        return self.active_config()

    # ------------------------------------------------------------------
    # Fee computation
    # ------------------------------------------------------------------

    def compute_lead_cost(
        self,
        hazard_class: Optional[HazardClass],
        quantity: Decimal,
        pickup_state: str,
        delivery_state: str,
        vehicle_types: Sequence[VehicleType] = (),
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
        is_urgent: bool = False,
    ) -> Decimal:
        inputs = LeadCostInput(
            hazard_class=hazard_class,
            quantity=Decimal(quantity),
            pickup_state=pickup_state,
            delivery_state=delivery_state,
            vehicle_types=tuple(vehicle_types),
            subscription_tier=subscription_tier,
            is_urgent=is_urgent,
        )
        return _apply(self.active_config(), inputs)

    def compute_lead_cost_sync(
        self,
        hazard_class: Optional[HazardClass],
        quantity: Decimal,
        pickup_state: str,
        delivery_state: str,
        vehicle_types: Sequence[VehicleType] = (),
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
        is_urgent: bool = False,
    ) -> Decimal:
        """
        Same computation without configuration I/O.

        Uses the fallback table, or the last configuration loaded from the
        store when that prices higher. The last loaded configuration is kept
        past the TTL, so once the engine has been warmed (refresh_config at
        startup and on the scheduler) it never quotes less than
        compute_lead_cost would.
        """

        inputs = LeadCostInput(
            hazard_class=hazard_class,
            quantity=Decimal(quantity),
            pickup_state=pickup_state,
            delivery_state=delivery_state,
            vehicle_types=tuple(vehicle_types),
            subscription_tier=subscription_tier,
            is_urgent=is_urgent,
        )
        cost = _apply(FALLBACK_PRICING_CONFIG, inputs)
        with self._lock:
            last_loaded = self._last_loaded
        if last_loaded is not None:
            cost = max(cost, _apply(last_loaded, inputs))
        return cost

    def estimate_lead_cost(self, quote: Quote, tier: SubscriptionTier = SubscriptionTier.STANDARD) -> Decimal:
        """Read-only preview of the fee for a quote."""

        return _apply(self.active_config(), LeadCostInput.for_quote(quote, tier))

    def estimate_lead_cost_sync(self, quote: Quote, tier: SubscriptionTier = SubscriptionTier.STANDARD) -> Decimal:
        inputs = LeadCostInput.for_quote(quote, tier)
        return self.compute_lead_cost_sync(
            inputs.hazard_class,
            inputs.quantity,
            inputs.pickup_state,
            inputs.delivery_state,
            inputs.vehicle_types,
            inputs.subscription_tier,
            inputs.is_urgent,
        )

    def get_pricing_breakdown(self, inputs: LeadCostInput) -> PricingBreakdown:
        config = self.active_config()

        hazard = config.hazard_multiplier(inputs.hazard_class)
        band = resolve_distance_band(inputs.pickup_state, inputs.delivery_state)
        distance = config.distance[band]
        quantity = config.quantity_multiplier(inputs.quantity)
        vehicle = config.vehicle_multiplier(inputs.vehicle_types)
        urgency = config.urgency_multiplier(inputs.is_urgent)
        tier = config.tier_multiplier(inputs.subscription_tier)
        lead_cost = _apply(config, inputs)

        hazard_name = inputs.hazard_class.value if inputs.hazard_class else NON_HAZARDOUS
        vehicles = ", ".join(v.value for v in inputs.vehicle_types) or "any"
        lines = [
            f"Base cost: {config.base_cost:.2f}",
            f"Hazard ({hazard_name}): x{hazard}",
            f"Distance ({inputs.pickup_state} -> {inputs.delivery_state}, {band.value}): x{distance}",
            f"Quantity ({inputs.quantity}): x{quantity}",
            f"Vehicle ({vehicles}): x{vehicle}",
        ]
        if inputs.is_urgent:
            lines.append(f"Urgent: x{urgency}")
        lines.append(f"Subscription tier ({inputs.subscription_tier.value}): x{tier}")
        lines.append(f"Lead cost: {lead_cost:.2f}")

        return PricingBreakdown(
            config_version=config.version,
            base_cost=config.base_cost,
            hazard_multiplier=hazard,
            distance_band=band,
            distance_multiplier=distance,
            quantity_multiplier=quantity,
            vehicle_multiplier=vehicle,
            urgency_multiplier=urgency,
            tier_multiplier=tier,
            lead_cost=lead_cost,
            lines=lines,
        )


__all__ = [
    "LeadCostInput",
    "PricingBreakdown",
    "PricingEngine",
    "lead_type_for_tier",
]
