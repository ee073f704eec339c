"""Row-locked loaders shared by the ride, reservation and wallet services.

Every read that precedes a status transition goes through these helpers.
They issue ``SELECT ... FOR UPDATE`` (a no-op on SQLite) and overwrite any
stale copy already sitting in the session identity map, so a transition is
always decided on the committed row. The ``version`` columns catch whatever
the database lock does not.

Locks are always taken in the same order: the rider, then the vehicle, then
the ride(s) on that vehicle.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from ..models import OPEN_RIDE_STATES, Ride, RideStatus, User, Vehicle
from ..services.errors import ErrorKind, ServiceError


def locked_ride(db: Session, ride_id: int) -> Optional[Ride]:
    return (
        db.query(Ride)
        .filter(Ride.id == ride_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def locked_vehicle(db: Session, vehicle_id: int) -> Optional[Vehicle]:
    return (
        db.query(Vehicle)
        .filter(Vehicle.id == vehicle_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def locked_user(db: Session, user_id: int) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def claim_rider(db: Session, user_id: int) -> Optional[User]:
    """Lock the rider row and bump its version.

    Reserve and start call this before looking for an open ride. With a
    row lock the second request waits; without one (SQLite) its version
    check fails on flush. Either way one rider opens one ride at a time.
    """
    user = locked_user(db, user_id)
    if user is not None:
        flag_modified(user, "total_rides")
        db.add(user)
    return user


def open_ride(db: Session, user_id: int, vehicle_id: int | None = None, status: RideStatus | None = None) -> Optional[Ride]:
    """Latest reserved/active ride of a user, read fresh but not locked.

    Lock the ride's vehicle before locking the ride itself.
    """
    query = db.query(Ride).filter(Ride.user_id == user_id)
    if vehicle_id is not None:
        query = query.filter(Ride.vehicle_id == vehicle_id)
    if status is not None:
        query = query.filter(Ride.status == status)
    else:
        query = query.filter(Ride.status.in_(OPEN_RIDE_STATES))
    return query.order_by(Ride.id.desc()).populate_existing().first()


def flush_or_conflict(db: Session, what: str) -> Optional[ServiceError]:
    """Flush pending changes; a lost optimistic-lock race rolls the unit back."""
    try:
        db.flush()
    except StaleDataError:
        db.rollback()
        return ServiceError(
            kind=ErrorKind.invalid_state,
            message=f"{what} was modified by a concurrent request",
        )
    return None
