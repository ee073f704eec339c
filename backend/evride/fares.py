"""Fare, carbon and battery arithmetic.

Everything here is pure: callers pass a :class:`Tariff` explicitly and the
functions never look at ``settings`` themselves.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Mapping

from .models import VehicleType
from .utils import haversine_m, round2, round_half_away

LOGGER = logging.getLogger("evride.fares")

# percent of battery used per km
CONSUMPTION_PCT_PER_KM: Mapping[VehicleType, float] = {
    VehicleType.scooter: 2.0,
    VehicleType.bike: 1.33,
    VehicleType.ev: 1.25,
}
# Applied to type strings that are not a known VehicleType (e.g. rows written
# by a newer fleet import). Matches the scooter rate, the most conservative.
FALLBACK_CONSUMPTION_PCT_PER_KM = 2.0


@dataclass(frozen=True)
class Tariff:
    base_fare: float = 10.0
    per_minute_charge: float = 2.0
    per_km_charge: float = 5.0
    carbon_saving_per_km: float = 0.108
    reservation_timeout_minutes: int = 5
    min_battery_for_reserve: float = 20.0
    max_wallet_top_up: float = 10000.0
    cashback_rate: float = 0.10
    estimate_speed_kmh: float = 20.0

    @classmethod
    def from_settings(cls, settings) -> "Tariff":
        return cls(
            base_fare=settings.base_fare,
            per_minute_charge=settings.per_minute_charge,
            per_km_charge=settings.per_km_charge,
            carbon_saving_per_km=settings.carbon_saving_per_km,
            reservation_timeout_minutes=settings.reservation_timeout_minutes,
            min_battery_for_reserve=settings.min_battery_for_reserve,
            max_wallet_top_up=settings.max_wallet_top_up,
            cashback_rate=settings.cashback_rate,
            estimate_speed_kmh=settings.estimate_speed_kmh,
        )


@dataclass(frozen=True)
class FareBreakdown:
    base_fare: float
    time_fare: float
    distance_fare: float
    total: float


@dataclass(frozen=True)
class FareEstimate:
    base: float
    distance_charge: float
    time_charge: float
    estimated_total: float
    estimated_duration_minutes: int


DEFAULT_TARIFF = Tariff()


def distance_km(start_lat: float, start_lon: float, end_lat: float, end_lon: float) -> float:
    return round2(haversine_m(start_lat, start_lon, end_lat, end_lon) / 1000.0)


def fare(duration_min: float, km: float, tariff: Tariff = DEFAULT_TARIFF) -> float:
    return round2(tariff.base_fare + duration_min * tariff.per_minute_charge + km * tariff.per_km_charge)


def fare_breakdown(duration_min: float, km: float, tariff: Tariff = DEFAULT_TARIFF) -> FareBreakdown:
    """Component-wise fare used when a ride ends.

    Each component is rounded on its own before summing, so ``total`` can
    differ from :func:`fare` by a cent on pathological inputs.
    """
    time_fare = round2(duration_min * tariff.per_minute_charge)
    distance_fare = round2(km * tariff.per_km_charge)
    total = round2(tariff.base_fare + time_fare + distance_fare)
    return FareBreakdown(
        base_fare=tariff.base_fare,
        time_fare=time_fare,
        distance_fare=distance_fare,
        total=total,
    )


def carbon_saved_kg(km: float, tariff: Tariff = DEFAULT_TARIFF) -> float:
    return round2(km * tariff.carbon_saving_per_km)


def estimate_fare(km: float, tariff: Tariff = DEFAULT_TARIFF) -> FareEstimate:
    minutes = round_half_away(km / tariff.estimate_speed_kmh * 60)
    return FareEstimate(
        base=tariff.base_fare,
        distance_charge=round2(km * tariff.per_km_charge),
        time_charge=round2(minutes * tariff.per_minute_charge),
        estimated_total=fare(minutes, km, tariff),
        estimated_duration_minutes=minutes,
    )


def consumption_rate(vehicle_type: VehicleType | str) -> float:
    if not isinstance(vehicle_type, VehicleType):
        try:
            vehicle_type = VehicleType(vehicle_type)
        except ValueError:
            LOGGER.warning(
                "unknown vehicle type %r, using fallback consumption %.2f%%/km",
                vehicle_type,
                FALLBACK_CONSUMPTION_PCT_PER_KM,
            )
            return FALLBACK_CONSUMPTION_PCT_PER_KM
    return CONSUMPTION_PCT_PER_KM[vehicle_type]


def next_battery_level(current_pct: float, km: float, vehicle_type: VehicleType | str) -> float:
    used = max(km, 0.0) * consumption_rate(vehicle_type)
    remaining = current_pct - used
    if math.isnan(remaining):
        remaining = 0.0
    return round2(min(max(remaining, 0.0), 100.0))
