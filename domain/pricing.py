"""
Domain: Lead pricing configuration.

A PricingConfig is a versioned multiplier table plus a base cost. At most one
configuration is active at a time. Stored rows are loosely typed, so they are
validated here, at load time, rather than trusted at the point of use.

FALLBACK_PRICING_CONFIG is the built-in table used whenever no valid active
configuration is available; pricing never hard-fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import InvalidPricingConfigError
from .quote import HazardClass, VehicleType

NON_HAZARDOUS = "NON_HAZARDOUS"


class SubscriptionTier(str, Enum):
    FREE = "FREE"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"


class DistanceBand(str, Enum):
    SAME_STATE = "SAME_STATE"
    SHORT = "SHORT"
    MEDIUM = "MEDIUM"
    LONG = "LONG"


# Static state-pair classification. Lookups are symmetric; unknown pairs are MEDIUM.
STATE_DISTANCES: Mapping[str, Mapping[str, DistanceBand]] = {
    "Maharashtra": {
        "Gujarat": DistanceBand.SHORT,
        "Karnataka": DistanceBand.SHORT,
        "Goa": DistanceBand.SHORT,
        "Delhi": DistanceBand.MEDIUM,
        "Tamil Nadu": DistanceBand.LONG,
        "West Bengal": DistanceBand.LONG,
    },
    "Gujarat": {
        "Maharashtra": DistanceBand.SHORT,
        "Rajasthan": DistanceBand.SHORT,
        "Delhi": DistanceBand.MEDIUM,
        "Karnataka": DistanceBand.MEDIUM,
    },
    "Karnataka": {
        "Maharashtra": DistanceBand.SHORT,
        "Goa": DistanceBand.SHORT,
        "Tamil Nadu": DistanceBand.SHORT,
        "Kerala": DistanceBand.SHORT,
        "Andhra Pradesh": DistanceBand.SHORT,
    },
    "Delhi": {
        "Haryana": DistanceBand.SHORT,
        "Uttar Pradesh": DistanceBand.SHORT,
        "Punjab": DistanceBand.SHORT,
        "Rajasthan": DistanceBand.SHORT,
        "Maharashtra": DistanceBand.MEDIUM,
        "Gujarat": DistanceBand.MEDIUM,
    },
}


def resolve_distance_band(pickup_state: str, delivery_state: str) -> DistanceBand:
    if pickup_state == delivery_state:
        return DistanceBand.SAME_STATE

    band = STATE_DISTANCES.get(pickup_state, {}).get(delivery_state)
    if band is None:
        band = STATE_DISTANCES.get(delivery_state, {}).get(pickup_state)
    return band or DistanceBand.MEDIUM


@dataclass(frozen=True, slots=True)
class QuantityBand:
    """Half-open range [minimum, maximum). maximum=None means unbounded."""

    minimum: Decimal
    maximum: Optional[Decimal]
    multiplier: Decimal

    def contains(self, quantity: Decimal) -> bool:
        if quantity < self.minimum:
            return False
        return self.maximum is None or quantity < self.maximum


@dataclass(frozen=True, slots=True)
class PricingConfig:
    """
    Validated pricing table.

    hazard is keyed by HazardClass value plus NON_HAZARDOUS; distance by
    DistanceBand; vehicle by VehicleType; tier by SubscriptionTier.
    """

    version: str
    base_cost: Decimal
    hazard: Mapping[str, Decimal]
    distance: Mapping[DistanceBand, Decimal]
    quantity_bands: Tuple[QuantityBand, ...]
    vehicle: Mapping[VehicleType, Decimal]
    urgency: Decimal
    tier: Mapping[SubscriptionTier, Decimal]

    def __post_init__(self) -> None:
        if self.base_cost < 0:
            raise InvalidPricingConfigError("base_cost must be >= 0")

        expected_hazard = {NON_HAZARDOUS, *(h.value for h in HazardClass)}
        _require_keys("hazard", self.hazard, expected_hazard)
        _require_keys("distance", self.distance, set(DistanceBand))
        _require_keys("vehicle", self.vehicle, set(VehicleType))
        _require_keys("tier", self.tier, set(SubscriptionTier))

        for table_name, table in (
            ("hazard", self.hazard),
            ("distance", self.distance),
            ("vehicle", self.vehicle),
            ("tier", self.tier),
        ):
            for key, value in table.items():
                if value <= 0:
                    raise InvalidPricingConfigError(f"{table_name}[{key}] must be > 0")
        if self.urgency <= 0:
            raise InvalidPricingConfigError("urgency must be > 0")

        previous_max: Optional[Decimal] = None
        for index, band in enumerate(self.quantity_bands):
            if band.multiplier <= 0:
                raise InvalidPricingConfigError("quantity band multiplier must be > 0")
            if band.maximum is not None and band.maximum <= band.minimum:
                raise InvalidPricingConfigError("quantity band maximum must exceed minimum")
            if index > 0:
                if previous_max is None or band.minimum < previous_max:
                    raise InvalidPricingConfigError("quantity bands must be ordered and non-overlapping")
            previous_max = band.maximum

    def hazard_multiplier(self, hazard_class: Optional[HazardClass]) -> Decimal:
        key = hazard_class.value if hazard_class is not None else NON_HAZARDOUS
        return self.hazard[key]

    def distance_multiplier(self, pickup_state: str, delivery_state: str) -> Decimal:
        return self.distance[resolve_distance_band(pickup_state, delivery_state)]

    def quantity_multiplier(self, quantity: Decimal) -> Decimal:
        for band in self.quantity_bands:
            if band.contains(quantity):
                return band.multiplier
        return Decimal("1.0")

    def vehicle_multiplier(self, vehicle_types: Tuple[VehicleType, ...]) -> Decimal:
        """Maximum across requested vehicles: never undercharge for the riskiest one."""

        if not vehicle_types:
            return Decimal("1.0")
        return max(self.vehicle.get(vt, Decimal("1.0")) for vt in vehicle_types)

    def urgency_multiplier(self, is_urgent: bool) -> Decimal:
        return self.urgency if is_urgent else Decimal("1.0")

    def tier_multiplier(self, tier: SubscriptionTier) -> Decimal:
        return self.tier[tier]

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "PricingConfig":
        """
        Build a PricingConfig from a pricing_configs row.

        Raises InvalidPricingConfigError for missing or malformed columns.
        A quantity_ranges column that is not a list falls back to the built-in bands.
        """

        try:
            ranges = row.get("quantity_ranges")
            if isinstance(ranges, list):
                bands = tuple(_band_from_mapping(r) for r in ranges)
            else:
                bands = FALLBACK_PRICING_CONFIG.quantity_bands

            return PricingConfig(
                version=str(row.get("version") or row.get("id") or "unversioned"),
                base_cost=_decimal(row["base_lead_cost"]),
                hazard={
                    NON_HAZARDOUS: _decimal(row["hazard_non_hazardous"]),
                    **{h.value: _decimal(row[f"hazard_{h.value.lower()}"]) for h in HazardClass},
                },
                distance={b: _decimal(row[f"distance_{b.value.lower()}"]) for b in DistanceBand},
                quantity_bands=bands,
                vehicle={v: _decimal(row[f"vehicle_{v.value.lower()}"]) for v in VehicleType},
                urgency=_decimal(row["urgency_multiplier"]),
                tier={t: _decimal(row[f"tier_{t.value.lower()}_discount"]) for t in SubscriptionTier},
            )
        except KeyError as e:
            raise InvalidPricingConfigError(f"pricing config is missing column {e.args[0]!r}") from None


def _require_keys(name: str, table: Mapping[Any, Any], expected: set) -> None:
    missing = [str(getattr(k, "value", k)) for k in expected if k not in table]
    if missing:
        raise InvalidPricingConfigError(f"{name} table is missing {sorted(missing)}")


def _decimal(value: Any) -> Decimal:
    if value is None:
        raise InvalidPricingConfigError("multiplier value is null")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise InvalidPricingConfigError(f"not a number: {value!r}") from None


def _band_from_mapping(raw: Any) -> QuantityBand:
    if not isinstance(raw, Mapping):
        raise InvalidPricingConfigError(f"quantity range must be an object, got {raw!r}")
    maximum = raw.get("max")
    # JSON cannot carry Infinity; null or a missing max means unbounded.
    if maximum in (None, "Infinity", "inf"):
        max_value = None
    else:
        max_value = _decimal(maximum)
    return QuantityBand(
        minimum=_decimal(raw.get("min", 0)),
        maximum=max_value,
        multiplier=_decimal(raw.get("multiplier")),
    )


def _d(value: str) -> Decimal:
    return Decimal(value)


FALLBACK_PRICING_CONFIG = PricingConfig(
    version="fallback",
    base_cost=_d("500"),
    hazard={
        NON_HAZARDOUS: _d("1.0"),
        HazardClass.CLASS_1.value: _d("2.5"),
        HazardClass.CLASS_2.value: _d("1.8"),
        HazardClass.CLASS_3.value: _d("1.6"),
        HazardClass.CLASS_4.value: _d("1.5"),
        HazardClass.CLASS_5.value: _d("1.7"),
        HazardClass.CLASS_6.value: _d("1.9"),
        HazardClass.CLASS_7.value: _d("2.0"),
        HazardClass.CLASS_8.value: _d("1.6"),
        HazardClass.CLASS_9.value: _d("1.3"),
    },
    distance={
        DistanceBand.SAME_STATE: _d("1.0"),
        DistanceBand.SHORT: _d("1.3"),
        DistanceBand.MEDIUM: _d("1.6"),
        DistanceBand.LONG: _d("2.0"),
    },
    quantity_bands=(
        QuantityBand(_d("0"), _d("10"), _d("1.5")),
        QuantityBand(_d("10"), _d("50"), _d("1.2")),
        QuantityBand(_d("50"), _d("100"), _d("1.0")),
        QuantityBand(_d("100"), _d("500"), _d("0.9")),
        QuantityBand(_d("500"), None, _d("0.8")),
    ),
    vehicle={
        VehicleType.TRUCK: _d("1.0"),
        VehicleType.CONTAINER: _d("1.1"),
        VehicleType.TANKER: _d("1.3"),
        VehicleType.ISO_TANK: _d("1.5"),
        VehicleType.FLATBED: _d("1.1"),
        VehicleType.REFRIGERATED: _d("1.4"),
    },
    urgency=_d("1.3"),
    tier={
        SubscriptionTier.PREMIUM: _d("0.7"),
        SubscriptionTier.STANDARD: _d("0.85"),
        SubscriptionTier.FREE: _d("1.0"),
    },
)


def config_to_row(config: PricingConfig) -> Dict[str, Any]:
    """Inverse of PricingConfig.from_row, used when seeding a store."""

    row: Dict[str, Any] = {
        "version": config.version,
        "base_lead_cost": str(config.base_cost),
        "hazard_non_hazardous": str(config.hazard[NON_HAZARDOUS]),
        "urgency_multiplier": str(config.urgency),
        "quantity_ranges": [
            {
                "min": str(b.minimum),
                "max": str(b.maximum) if b.maximum is not None else None,
                "multiplier": str(b.multiplier),
            }
            for b in config.quantity_bands
        ],
    }
    for h in HazardClass:
        row[f"hazard_{h.value.lower()}"] = str(config.hazard[h.value])
    for b in DistanceBand:
        row[f"distance_{b.value.lower()}"] = str(config.distance[b])
    for v in VehicleType:
        row[f"vehicle_{v.value.lower()}"] = str(config.vehicle[v])
    for t in SubscriptionTier:
        row[f"tier_{t.value.lower()}_discount"] = str(config.tier[t])
    return row
