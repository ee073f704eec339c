from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..fares import Tariff, carbon_saved_kg, distance_km, fare_breakdown, next_battery_level
from ..models import (
    OPEN_RIDE_STATES,
    RideStatus,
    Ride,
    RoleEnum,
    User,
    Vehicle,
    VehicleStatus,
)
from ..services.errors import ErrorKind, Outcome
from ..services.eventlog import log_event
from ..services.ledger import Settlement, WalletLedger
from ..services.records import (
    claim_rider,
    flush_or_conflict,
    locked_ride,
    locked_user,
    locked_vehicle,
    open_ride,
)
from ..services.reservations import Clock, ReservationService
from ..utils import minutes_between, round2

MAX_FEEDBACK_CHARS = 500


@dataclass
class StartResult:
    ride: Ride
    vehicle: Vehicle
    from_reservation: bool


@dataclass
class EndResult:
    ride: Ride
    vehicle: Optional[Vehicle]
    user: User
    settlement: Settlement


@dataclass
class RideHistory:
    rides: List[Ride]
    total: int
    page: int
    pages: int


def _valid_coordinate(lat, lon) -> bool:
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def _location(lat: float, lon: float, address: Optional[str], fallback: str) -> dict:
    return {"lat": float(lat), "lng": float(lon), "address": address or fallback}


class RideService:
    def __init__(self, db: Session, tariff: Optional[Tariff] = None, clock: Clock = datetime.utcnow) -> None:
        self.db = db
        self.tariff = tariff or Tariff.from_settings(settings)
        self.clock = clock
        self.reservations = ReservationService(db, self.tariff, clock)
        self.ledger = WalletLedger(db, self.tariff)

    def _lock_vehicle_then_ride(self, ride: Ride) -> tuple[Optional[Vehicle], Optional[Ride]]:
        # same order as reserve and start, which hold the vehicle before any ride
        vehicle = locked_vehicle(self.db, ride.vehicle_id)
        return vehicle, locked_ride(self.db, ride.id)

    def start(
        self,
        *,
        user: User,
        vehicle_id: int,
        lat: float,
        lon: float,
        address: Optional[str] = None,
    ) -> Outcome[StartResult]:
        if not _valid_coordinate(lat, lon):
            return Outcome.failure(ErrorKind.validation_error, "Please provide a valid start location")

        user = claim_rider(self.db, user.id)
        if user is None:
            return Outcome.failure(ErrorKind.not_found, "User not found")
        conflict = flush_or_conflict(self.db, "Rider")
        if conflict:
            return Outcome(error=conflict)

        vehicle = locked_vehicle(self.db, vehicle_id)
        if vehicle is None or not vehicle.is_active:
            return Outcome.failure(ErrorKind.not_found, "Vehicle not found")

        ride = open_ride(self.db, user.id, vehicle_id=vehicle.id, status=RideStatus.reserved)
        if ride is not None and self.reservations.expire_if_stale(ride):
            ride = None
        if ride is not None:
            ride = locked_ride(self.db, ride.id)
            if ride is not None and ride.status != RideStatus.reserved:
                ride = None
        if ride is None:
            # the hold may belong to somebody else and have lapsed already
            self.reservations.release_stale_hold(vehicle)

        if vehicle.status not in (VehicleStatus.available, VehicleStatus.reserved):
            return Outcome.failure(ErrorKind.invalid_state, f"Vehicle is currently {vehicle.status.value}")
        if vehicle.status == VehicleStatus.reserved and (
            ride is None or vehicle.current_ride_id not in (None, ride.id)
        ):
            return Outcome.failure(ErrorKind.invalid_state, "Vehicle is reserved by another rider")

        if ride is None:
            other = open_ride(self.db, user.id)
            if other is not None and self.reservations.expire_if_stale(other):
                other = None
            if other is not None:
                return Outcome.failure(ErrorKind.invalid_state, "You already have an active or reserved ride")

        now = self.clock()
        from_reservation = ride is not None
        if ride is None:
            ride = Ride(user_id=user.id, vehicle_id=vehicle.id)
        ride.start_location = _location(lat, lon, address, "Current Location")
        ride.start_time = now
        ride.status = RideStatus.active
        self.db.add(ride)
        conflict = flush_or_conflict(self.db, "Ride")
        if conflict:
            return Outcome(error=conflict)

        vehicle.status = VehicleStatus.in_use
        vehicle.current_ride_id = ride.id
        self.db.add(vehicle)
        conflict = flush_or_conflict(self.db, "Vehicle")
        if conflict:
            return Outcome(error=conflict)

        log_event(
            self.db,
            component="ride",
            level="info",
            message="Ride started",
            payload={
                "ride_id": ride.id,
                "vehicle_id": vehicle.id,
                "user_id": user.id,
                "from_reservation": from_reservation,
            },
        )
        return Outcome.success(StartResult(ride=ride, vehicle=vehicle, from_reservation=from_reservation))

    def end(
        self,
        *,
        ride_id: int,
        requester: User,
        lat: float,
        lon: float,
        address: Optional[str] = None,
    ) -> Outcome[EndResult]:
        ride = self.db.get(Ride, ride_id)
        if ride is None:
            return Outcome.failure(ErrorKind.not_found, "Ride not found")
        if ride.user_id != requester.id:
            return Outcome.failure(ErrorKind.forbidden, "Not authorized to end this ride")

        user = locked_user(self.db, ride.user_id)
        if user is None:
            return Outcome.failure(ErrorKind.not_found, "User not found")
        vehicle, ride = self._lock_vehicle_then_ride(ride)
        if ride is None:
            return Outcome.failure(ErrorKind.not_found, "Ride not found")
        if ride.status != RideStatus.active:
            return Outcome.failure(ErrorKind.invalid_state, "Ride is not active")

        start = ride.start_location or {}
        if not isinstance(start, dict) or not _valid_coordinate(start.get("lat"), start.get("lng")):
            return Outcome.failure(ErrorKind.validation_error, "Invalid start location data")
        if ride.start_time is None:
            return Outcome.failure(ErrorKind.validation_error, "Ride has no start time")
        if not _valid_coordinate(lat, lon):
            return Outcome.failure(ErrorKind.validation_error, "Please provide a valid end location")

        now = self.clock()
        km = distance_km(float(start["lat"]), float(start["lng"]), float(lat), float(lon))
        minutes = minutes_between(ride.start_time, now)
        breakdown = fare_breakdown(minutes, km, self.tariff)
        carbon = carbon_saved_kg(km, self.tariff)

        # nothing has been written yet, so a rejected settlement leaves the ride active
        settled = self.ledger.settle(user, breakdown.total)
        if not settled.ok:
            return Outcome(error=settled.error)
        settlement = settled.value

        ride.end_location = _location(lat, lon, address, "Not provided")
        ride.end_time = now
        ride.duration_min = minutes
        ride.distance_km = km
        ride.base_fare = breakdown.base_fare
        ride.time_fare = breakdown.time_fare
        ride.distance_fare = breakdown.distance_fare
        ride.original_fare = breakdown.total
        ride.fare = settlement.final_fare
        ride.carbon_saved_kg = carbon
        ride.points_redeemed = settlement.points_redeemed
        ride.points_earned = settlement.points_earned
        ride.is_paid = True
        ride.status = RideStatus.completed
        self.db.add(ride)

        if vehicle is not None:
            vehicle.status = VehicleStatus.available
            vehicle.current_ride_id = None
            vehicle.lat = float(lat)
            vehicle.lon = float(lon)
            vehicle.total_km_traveled = round2(vehicle.total_km_traveled + km)
            vehicle.battery_pct = next_battery_level(vehicle.battery_pct, km, vehicle.type)
            self.db.add(vehicle)

        user.total_rides += 1
        user.total_distance_km = round2(user.total_distance_km + km)
        user.carbon_saved_kg = round2(user.carbon_saved_kg + carbon)
        self.db.add(user)

        conflict = flush_or_conflict(self.db, "Ride")
        if conflict:
            return Outcome(error=conflict)

        log_event(
            self.db,
            component="ride",
            level="info",
            message="Ride completed",
            payload={
                "ride_id": ride.id,
                "vehicle_id": ride.vehicle_id,
                "distance_km": km,
                "duration_min": minutes,
                "fare": breakdown.total,
                "final_fare": settlement.final_fare,
            },
        )
        return Outcome.success(EndResult(ride=ride, vehicle=vehicle, user=user, settlement=settlement))

    def cancel(self, *, ride_id: int, requester: User) -> Outcome[Ride]:
        ride = self.db.get(Ride, ride_id)
        if ride is None:
            return Outcome.failure(ErrorKind.not_found, "Ride not found")
        if ride.user_id != requester.id:
            return Outcome.failure(ErrorKind.forbidden, "Not authorized to cancel this ride")
        vehicle, ride = self._lock_vehicle_then_ride(ride)
        if ride is None:
            return Outcome.failure(ErrorKind.not_found, "Ride not found")
        self.reservations.expire_if_stale(ride)
        if ride.status not in OPEN_RIDE_STATES:
            return Outcome.failure(ErrorKind.invalid_state, "Can only cancel reserved or active rides")

        previous = ride.status
        ride.status = RideStatus.cancelled
        ride.end_time = self.clock()
        self.db.add(ride)

        if vehicle is not None:
            vehicle.status = VehicleStatus.available
            vehicle.current_ride_id = None
            self.db.add(vehicle)

        conflict = flush_or_conflict(self.db, "Ride")
        if conflict:
            return Outcome(error=conflict)

        log_event(
            self.db,
            component="ride",
            level="info",
            message="Ride cancelled",
            payload={"ride_id": ride.id, "vehicle_id": ride.vehicle_id, "previous_status": previous.value},
        )
        return Outcome.success(ride)

    def rate(
        self,
        *,
        ride_id: int,
        requester: User,
        rating: int,
        feedback: Optional[str] = None,
    ) -> Outcome[Ride]:
        if rating is None or not 1 <= rating <= 5:
            return Outcome.failure(ErrorKind.validation_error, "Please provide a rating between 1 and 5")
        if feedback is not None and len(feedback) > MAX_FEEDBACK_CHARS:
            return Outcome.failure(ErrorKind.validation_error, "Feedback cannot exceed 500 characters")

        ride = locked_ride(self.db, ride_id)
        if ride is None:
            return Outcome.failure(ErrorKind.not_found, "Ride not found")
        if ride.user_id != requester.id:
            return Outcome.failure(ErrorKind.forbidden, "Not authorized to rate this ride")
        if ride.status != RideStatus.completed:
            return Outcome.failure(ErrorKind.invalid_state, "Can only rate completed rides")
        if ride.rating is not None:
            return Outcome.failure(ErrorKind.already_rated, "Ride already rated")

        ride.rating = rating
        ride.feedback = feedback or ""
        self.db.add(ride)
        conflict = flush_or_conflict(self.db, "Ride")
        if conflict:
            return Outcome(error=conflict)

        log_event(
            self.db,
            component="ride",
            level="info",
            message="Ride rated",
            payload={"ride_id": ride.id, "rating": rating},
        )
        return Outcome.success(ride)

    def get_ride(self, *, ride_id: int, requester: User) -> Outcome[Ride]:
        ride = self.db.get(Ride, ride_id)
        if ride is None:
            return Outcome.failure(ErrorKind.not_found, "Ride not found")
        if ride.user_id != requester.id and requester.role != RoleEnum.admin:
            return Outcome.failure(ErrorKind.forbidden, "Not authorized to view this ride")
        if ride.status == RideStatus.reserved:
            self.reservations.expire_if_stale(ride)
        return Outcome.success(ride)

    def current_ride(self, *, user: User) -> Outcome[Ride]:
        ride = open_ride(self.db, user.id)
        if ride is not None and self.reservations.expire_if_stale(ride):
            ride = None
        if ride is None:
            return Outcome.failure(ErrorKind.not_found, "No active or reserved ride found")
        return Outcome.success(ride)

    def history(
        self,
        *,
        user: User,
        status: Optional[RideStatus] = None,
        limit: int = 20,
        page: int = 1,
    ) -> RideHistory:
        stale = open_ride(self.db, user.id, status=RideStatus.reserved)
        if stale is not None:
            self.reservations.expire_if_stale(stale)

        query = self.db.query(Ride).filter(Ride.user_id == user.id)
        if status is not None:
            query = query.filter(Ride.status == status)
        total = query.count()
        rides = (
            query.order_by(Ride.created_at.desc(), Ride.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
            .all()
        )
        pages = math.ceil(total / limit) if limit else 0
        return RideHistory(rides=rides, total=total, page=page, pages=pages)
