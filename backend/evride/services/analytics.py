from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Ride, RideStatus, Vehicle, VehicleStatus


def compute_kpis(db: Session, low_battery_pct: float) -> dict:
    rides_by_status = {s.value: 0 for s in RideStatus}
    for ride_status, count in db.query(Ride.status, func.count(Ride.id)).group_by(Ride.status).all():
        rides_by_status[ride_status.value] = int(count)

    revenue, avg_fare, distance, carbon = (
        db.query(
            func.coalesce(func.sum(Ride.fare), 0.0),
            func.coalesce(func.avg(Ride.fare), 0.0),
            func.coalesce(func.sum(Ride.distance_km), 0.0),
            func.coalesce(func.sum(Ride.carbon_saved_kg), 0.0),
        )
        .filter(Ride.status == RideStatus.completed)
        .one()
    )

    fleet_by_status = {s.value: 0 for s in VehicleStatus}
    for vehicle_status, count in (
        db.query(Vehicle.status, func.count(Vehicle.id))
        .filter(Vehicle.is_active.is_(True))
        .group_by(Vehicle.status)
        .all()
    ):
        fleet_by_status[vehicle_status.value] = int(count)

    low_battery = (
        db.query(func.count(Vehicle.id))
        .filter(Vehicle.is_active.is_(True), Vehicle.battery_pct < low_battery_pct)
        .scalar()
    )

    return {
        "rides_by_status": rides_by_status,
        "revenue": round(float(revenue), 2),
        "avg_fare": round(float(avg_fare), 2),
        "total_distance_km": round(float(distance), 2),
        "total_carbon_saved_kg": round(float(carbon), 2),
        "fleet_by_status": fleet_by_status,
        "low_battery_vehicles": int(low_battery or 0),
    }
