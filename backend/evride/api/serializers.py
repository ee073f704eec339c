from __future__ import annotations

from typing import Optional

from ..models import Ride, Vehicle
from ..schemas import Location, RideFare, RideOut, VehicleOut


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _location(raw: Optional[dict]) -> Optional[Location]:
    if not raw:
        return None
    return Location(lat=raw["lat"], lng=raw["lng"], address=raw.get("address"))


def serialize_vehicle(vehicle: Vehicle, distance_from_user_m: Optional[int] = None) -> VehicleOut:
    return VehicleOut(
        id=vehicle.id,
        vehicle_number=vehicle.vehicle_number,
        type=vehicle.type.value,
        brand=vehicle.brand,
        model=vehicle.model,
        status=vehicle.status.value,
        battery_pct=vehicle.battery_pct,
        range_km=vehicle.range_km,
        remaining_range_km=vehicle.remaining_range_km,
        lat=vehicle.lat,
        lng=vehicle.lon,
        current_ride_id=vehicle.current_ride_id,
        total_km_traveled=vehicle.total_km_traveled,
        is_active=vehicle.is_active,
        distance_from_user_m=distance_from_user_m,
    )


def serialize_ride(ride: Ride) -> RideOut:
    fare = RideFare(
        base_fare=ride.base_fare or 0.0,
        time_fare=ride.time_fare or 0.0,
        distance_fare=ride.distance_fare or 0.0,
        original_fare=ride.original_fare or 0.0,
        fare=ride.fare or 0.0,
        points_redeemed=ride.points_redeemed or 0,
        points_earned=ride.points_earned or 0,
        is_paid=bool(ride.is_paid),
    )
    return RideOut(
        id=ride.id,
        user_id=ride.user_id,
        vehicle_id=ride.vehicle_id,
        status=ride.status.value,
        reserved_at=_iso(ride.reserved_at),
        start_time=_iso(ride.start_time),
        end_time=_iso(ride.end_time),
        start_location=_location(ride.start_location),
        end_location=_location(ride.end_location),
        distance_km=ride.distance_km or 0.0,
        duration_min=ride.duration_min or 0,
        carbon_saved_kg=ride.carbon_saved_kg or 0.0,
        fare=fare,
        rating=ride.rating,
        feedback=ride.feedback,
    )
