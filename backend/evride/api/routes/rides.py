from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...api import deps
from ...api.errors import raise_for_error
from ...api.serializers import serialize_ride, serialize_vehicle
from ...db import get_db
from ...fares import Tariff
from ...models import RideStatus, User
from ...schemas import (
    EndRideRequest,
    EndRideResponse,
    PaymentSummary,
    RateRideRequest,
    RideHistoryOut,
    RideOut,
    StartRideRequest,
    StartRideResponse,
)
from ...services.rides import RideService

router = APIRouter(prefix="/rides", tags=["rides"])


def _service(
    db: Session = Depends(get_db),
    tariff: Tariff = Depends(deps.get_tariff),
    clock: Callable[[], datetime] = Depends(deps.get_clock),
) -> RideService:
    return RideService(db, tariff, clock)


@router.post("/start", response_model=StartRideResponse)
def start_ride(
    payload: StartRideRequest,
    *,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    service: RideService = Depends(_service),
) -> StartRideResponse:
    result = service.start(
        user=user,
        vehicle_id=payload.vehicle_id,
        lat=payload.lat,
        lon=payload.lng,
        address=payload.address,
    )
    if not result.ok:
        raise_for_error(result.error)
    db.commit()
    return StartRideResponse(ride=serialize_ride(result.value.ride), vehicle=serialize_vehicle(result.value.vehicle))


@router.get("", response_model=RideHistoryOut)
def ride_history(
    *,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    service: RideService = Depends(_service),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
) -> RideHistoryOut:
    ride_status = None
    if status_filter is not None:
        try:
            ride_status = RideStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid ride status")
    history = service.history(user=user, status=ride_status, limit=limit, page=page)
    db.commit()
    return RideHistoryOut(
        count=len(history.rides),
        total=history.total,
        page=history.page,
        pages=history.pages,
        rides=[serialize_ride(r) for r in history.rides],
    )


@router.get("/active", response_model=RideOut)
def active_ride(
    *,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    service: RideService = Depends(_service),
) -> RideOut:
    result = service.current_ride(user=user)
    db.commit()
    if not result.ok:
        raise_for_error(result.error)
    return serialize_ride(result.value)


@router.get("/{ride_id}", response_model=RideOut)
def get_ride(
    *,
    ride_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    service: RideService = Depends(_service),
) -> RideOut:
    result = service.get_ride(ride_id=ride_id, requester=user)
    if not result.ok:
        raise_for_error(result.error)
    db.commit()
    return serialize_ride(result.value)


@router.post("/{ride_id}/end", response_model=EndRideResponse)
def end_ride(
    payload: EndRideRequest,
    *,
    ride_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    service: RideService = Depends(_service),
) -> EndRideResponse:
    result = service.end(
        ride_id=ride_id,
        requester=user,
        lat=payload.lat,
        lon=payload.lng,
        address=payload.address,
    )
    if not result.ok:
        raise_for_error(result.error)
    db.commit()
    ended = result.value
    ride = ended.ride
    summary = PaymentSummary(
        duration_min=ride.duration_min,
        distance_km=ride.distance_km,
        original_fare=ended.settlement.original_fare,
        points_redeemed=ended.settlement.points_redeemed,
        final_fare=ended.settlement.final_fare,
        carbon_saved_kg=ride.carbon_saved_kg,
        points_earned=ended.settlement.points_earned,
        total_points=ended.user.reward_points,
        wallet_balance=ended.user.wallet_balance,
    )
    return EndRideResponse(ride=serialize_ride(ride), summary=summary)


@router.post("/{ride_id}/cancel", response_model=RideOut)
def cancel_ride(
    *,
    ride_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    service: RideService = Depends(_service),
) -> RideOut:
    result = service.cancel(ride_id=ride_id, requester=user)
    if not result.ok:
        raise_for_error(result.error)
    db.commit()
    return serialize_ride(result.value)


@router.post("/{ride_id}/rate", response_model=RideOut)
def rate_ride(
    payload: RateRideRequest,
    *,
    ride_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    service: RideService = Depends(_service),
) -> RideOut:
    result = service.rate(ride_id=ride_id, requester=user, rating=payload.rating, feedback=payload.feedback)
    if not result.ok:
        raise_for_error(result.error)
    db.commit()
    return serialize_ride(result.value)
