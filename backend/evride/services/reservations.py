from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..fares import Tariff
from ..models import Ride, RideStatus, User, Vehicle, VehicleStatus
from ..services.errors import ErrorKind, Outcome
from ..services.eventlog import log_event
from ..services.records import claim_rider, flush_or_conflict, locked_ride, locked_vehicle, open_ride

LOGGER = logging.getLogger("evride.reservations")

Clock = Callable[[], datetime]


@dataclass
class ReservationResult:
    ride: Ride
    vehicle: Vehicle
    expires_at: datetime


class ReservationService:
    """Time-boxed holds on vehicles.

    Expiry is evaluated lazily: any code path that reads a reserved ride
    calls :meth:`expire_if_stale` first, and :meth:`sweep_expired` cleans up
    holds nobody has looked at (e.g. after a restart).
    """

    def __init__(self, db: Session, tariff: Tariff, clock: Clock = datetime.utcnow) -> None:
        self.db = db
        self.tariff = tariff
        self.clock = clock

    @property
    def timeout(self) -> timedelta:
        return timedelta(minutes=self.tariff.reservation_timeout_minutes)

    def expires_at(self, ride: Ride) -> Optional[datetime]:
        if ride.reserved_at is None:
            return None
        return ride.reserved_at + self.timeout

    def is_stale(self, ride: Ride) -> bool:
        deadline = self.expires_at(ride)
        return (
            ride.status == RideStatus.reserved
            and deadline is not None
            and self.clock() >= deadline
        )

    def expire_if_stale(self, ride: Ride) -> bool:
        """Cancel ``ride`` if its hold has lapsed. Returns True when it did.

        ``ride`` may be a plain read; the vehicle and then the ride are
        locked and the staleness check is repeated on the fresh row. Calling
        this on a ride that already left ``reserved`` does nothing, so
        repeated expiry is safe.
        """
        if not self.is_stale(ride):
            return False

        vehicle = locked_vehicle(self.db, ride.vehicle_id)
        ride = locked_ride(self.db, ride.id)
        if ride is None or not self.is_stale(ride):
            return False

        ride.status = RideStatus.cancelled
        ride.end_time = self.clock()
        self.db.add(ride)

        if vehicle is not None:
            held_by_ride = vehicle.current_ride_id == ride.id or (
                vehicle.current_ride_id is None and vehicle.status == VehicleStatus.reserved
            )
            if held_by_ride:
                vehicle.status = VehicleStatus.available
                vehicle.current_ride_id = None
                self.db.add(vehicle)
            else:
                LOGGER.warning(
                    "reservation %s expired but vehicle %s is held by ride %s; leaving vehicle untouched",
                    ride.id,
                    vehicle.id,
                    vehicle.current_ride_id,
                )

        log_event(
            self.db,
            component="reservation",
            level="info",
            message="Reservation expired",
            payload={"ride_id": ride.id, "vehicle_id": ride.vehicle_id, "user_id": ride.user_id},
        )
        try:
            self.db.flush()
        except StaleDataError:
            # someone else moved the ride on first; their state wins
            self.db.rollback()
            LOGGER.warning("reservation %s changed while expiring; skipped", ride.id)
            return False
        return True

    def release_stale_hold(self, vehicle: Vehicle) -> bool:
        if vehicle.status != VehicleStatus.reserved or vehicle.current_ride_id is None:
            return False
        holder = self.db.get(Ride, vehicle.current_ride_id)
        if holder is None:
            return False
        return self.expire_if_stale(holder)

    def reserve(self, *, user: User, vehicle_id: int) -> Outcome[ReservationResult]:
        user = claim_rider(self.db, user.id)
        if user is None:
            return Outcome.failure(ErrorKind.not_found, "User not found")
        if flush_or_conflict(self.db, "Rider") is not None:
            return Outcome.failure(
                ErrorKind.conflicting_reservation,
                "You already have an active or reserved ride",
            )

        vehicle = locked_vehicle(self.db, vehicle_id)
        if vehicle is None or not vehicle.is_active:
            return Outcome.failure(ErrorKind.not_found, "Vehicle not found")

        self.release_stale_hold(vehicle)
        if vehicle.status != VehicleStatus.available:
            return Outcome.failure(ErrorKind.invalid_state, f"Vehicle is currently {vehicle.status.value}")
        if vehicle.battery_pct < self.tariff.min_battery_for_reserve:
            return Outcome.failure(
                ErrorKind.insufficient_battery,
                "Vehicle battery too low. Please choose another vehicle.",
            )

        existing = open_ride(self.db, user.id)
        if existing is not None and self.expire_if_stale(existing):
            existing = None
        if existing is not None:
            return Outcome.failure(
                ErrorKind.conflicting_reservation,
                "You already have an active or reserved ride",
            )

        ride = Ride(
            user_id=user.id,
            vehicle_id=vehicle.id,
            status=RideStatus.reserved,
            reserved_at=self.clock(),
        )
        self.db.add(ride)
        conflict = flush_or_conflict(self.db, "Vehicle")
        if conflict:
            return Outcome(error=conflict)

        vehicle.status = VehicleStatus.reserved
        vehicle.current_ride_id = ride.id
        self.db.add(vehicle)
        conflict = flush_or_conflict(self.db, "Vehicle")
        if conflict:
            return Outcome(error=conflict)

        log_event(
            self.db,
            component="reservation",
            level="info",
            message="Vehicle reserved",
            payload={"ride_id": ride.id, "vehicle_id": vehicle.id, "user_id": user.id},
        )
        return Outcome.success(
            ReservationResult(ride=ride, vehicle=vehicle, expires_at=self.expires_at(ride))
        )

    def sweep_expired(self) -> int:
        """Expire every lapsed hold, committing each one on its own.

        A failure on one reservation is logged and the sweep moves on.
        """
        cutoff = self.clock() - self.timeout
        stale_ids = [
            ride_id
            for (ride_id,) in self.db.query(Ride.id)
            .filter(Ride.status == RideStatus.reserved, Ride.reserved_at <= cutoff)
            .order_by(Ride.id.asc())
            .all()
        ]
        expired = 0
        for ride_id in stale_ids:
            try:
                ride = self.db.get(Ride, ride_id)
                if ride is not None and self.expire_if_stale(ride):
                    self.db.commit()
                    expired += 1
            except SQLAlchemyError:
                self.db.rollback()
                LOGGER.exception("failed to expire reservation %s", ride_id)
        return expired
