from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...api import deps
from ...api.errors import raise_for_error
from ...api.serializers import serialize_ride, serialize_vehicle
from ...db import get_db
from ...fares import Tariff, carbon_saved_kg, estimate_fare
from ...models import User, Vehicle, VehicleStatus, VehicleType
from ...schemas import (
    ReservationResponse,
    TripEstimateOut,
    TripEstimateRequest,
    VehicleCreate,
    VehicleOut,
    VehiclePatch,
)
from ...services.reservations import ReservationService
from ...utils import haversine_m, round2

router = APIRouter(prefix="/vehicles", tags=["vehicles"])

# statuses an admin may set by hand; reserved/in-use only come from rides
ADMIN_SETTABLE_STATUSES = (VehicleStatus.available, VehicleStatus.maintenance, VehicleStatus.charging)


@router.get("/nearby", response_model=list[VehicleOut])
def nearby_vehicles(
    *,
    db: Session = Depends(get_db),
    tariff: Tariff = Depends(deps.get_tariff),
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(5.0, gt=0, le=50),
) -> list[VehicleOut]:
    candidates = (
        db.query(Vehicle)
        .filter(
            Vehicle.is_active.is_(True),
            Vehicle.status.in_([VehicleStatus.available, VehicleStatus.reserved]),
            Vehicle.battery_pct >= tariff.min_battery_for_reserve,
        )
        .all()
    )
    in_range = []
    for vehicle in candidates:
        meters = haversine_m(lat, lng, vehicle.lat, vehicle.lon)
        if meters <= radius_km * 1000.0:
            in_range.append((meters, vehicle))
    in_range.sort(key=lambda pair: pair[0])
    return [serialize_vehicle(v, distance_from_user_m=round(m)) for m, v in in_range]


@router.get("", response_model=list[VehicleOut])
def list_vehicles(
    *,
    db: Session = Depends(get_db),
    _admin=Depends(deps.get_current_admin),
    status_filter: str | None = Query(default=None, alias="status"),
) -> list[VehicleOut]:
    query = db.query(Vehicle)
    if status_filter is not None:
        try:
            query = query.filter(Vehicle.status == VehicleStatus(status_filter))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid vehicle status")
    return [serialize_vehicle(v) for v in query.order_by(Vehicle.id.asc()).all()]


@router.post("", response_model=VehicleOut, status_code=status.HTTP_201_CREATED)
def add_vehicle(
    payload: VehicleCreate,
    *,
    db: Session = Depends(get_db),
    _admin=Depends(deps.get_current_admin),
) -> VehicleOut:
    vehicle = Vehicle(
        vehicle_number=payload.vehicle_number.strip().upper(),
        type=VehicleType(payload.type),
        brand=payload.brand,
        model=payload.model,
        battery_pct=payload.battery_pct,
        range_km=payload.range_km,
        lat=payload.lat,
        lon=payload.lng,
    )
    db.add(vehicle)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Vehicle number already exists")
    return serialize_vehicle(vehicle)


@router.get("/{vehicle_id}", response_model=VehicleOut)
def get_vehicle(*, vehicle_id: int, db: Session = Depends(get_db)) -> VehicleOut:
    vehicle = db.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vehicle not found")
    return serialize_vehicle(vehicle)


@router.patch("/{vehicle_id}", response_model=VehicleOut)
def patch_vehicle(
    *,
    vehicle_id: int,
    payload: VehiclePatch,
    db: Session = Depends(get_db),
    _admin=Depends(deps.get_current_admin),
) -> VehicleOut:
    vehicle = db.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vehicle not found")

    if payload.status is not None:
        try:
            new_status = VehicleStatus(payload.status)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid vehicle status")
        if new_status not in ADMIN_SETTABLE_STATUSES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Status is managed by rides")
        if vehicle.current_ride_id is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Vehicle has an open ride")
        vehicle.status = new_status
    if payload.lat is not None:
        vehicle.lat = payload.lat
    if payload.lng is not None:
        vehicle.lon = payload.lng
    if payload.battery_pct is not None:
        vehicle.battery_pct = payload.battery_pct
    if payload.range_km is not None:
        vehicle.range_km = payload.range_km
    if payload.is_active is not None:
        vehicle.is_active = payload.is_active

    db.add(vehicle)
    db.commit()
    return serialize_vehicle(vehicle)


@router.post("/{vehicle_id}/reserve", response_model=ReservationResponse)
def reserve_vehicle(
    *,
    vehicle_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    tariff: Tariff = Depends(deps.get_tariff),
    clock: Callable[[], datetime] = Depends(deps.get_clock),
) -> ReservationResponse:
    service = ReservationService(db, tariff, clock)
    result = service.reserve(user=user, vehicle_id=vehicle_id)
    if not result.ok:
        raise_for_error(result.error)
    db.commit()
    reservation = result.value
    return ReservationResponse(
        ride=serialize_ride(reservation.ride),
        vehicle=serialize_vehicle(reservation.vehicle),
        expires_at=reservation.expires_at.isoformat(),
    )


@router.post("/{vehicle_id}/estimate", response_model=TripEstimateOut)
def estimate_trip(
    payload: TripEstimateRequest,
    *,
    vehicle_id: int,
    db: Session = Depends(get_db),
    _user=Depends(deps.get_current_user),
    tariff: Tariff = Depends(deps.get_tariff),
) -> TripEstimateOut:
    if db.get(Vehicle, vehicle_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vehicle not found")
    # price on the unrounded distance; the rounded one is only for display
    raw_km = haversine_m(payload.user_lat, payload.user_lng, payload.dest_lat, payload.dest_lng) / 1000.0
    estimate = estimate_fare(raw_km, tariff)
    return TripEstimateOut(
        distance_km=round2(raw_km),
        estimated_carbon_saved_kg=carbon_saved_kg(raw_km, tariff),
        base=estimate.base,
        distance_charge=estimate.distance_charge,
        time_charge=estimate.time_charge,
        estimated_total=estimate.estimated_total,
        estimated_duration_minutes=estimate.estimated_duration_minutes,
    )
