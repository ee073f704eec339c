from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...api import deps
from ...api.errors import raise_for_error
from ...api.serializers import serialize_ride
from ...db import get_db
from ...fares import Tariff
from ...models import Ride, RideStatus, User
from ...schemas import (
    Achievement,
    DashboardOut,
    DashboardStats,
    TopUpRequest,
    TopUpResponse,
    UserSummary,
)
from ...services.ledger import WalletLedger
from ...services.records import locked_user

router = APIRouter(prefix="/users", tags=["users"])


def _achievements(total_rides: int, carbon_saved_kg: float) -> list[Achievement]:
    earned = []
    if total_rides >= 1:
        earned.append(Achievement(name="First Ride", icon="🎉"))
    if total_rides >= 10:
        earned.append(Achievement(name="10 Rides", icon="⭐"))
    if total_rides >= 50:
        earned.append(Achievement(name="50 Rides", icon="🏆"))
    if carbon_saved_kg >= 10:
        earned.append(Achievement(name="Eco Warrior", icon="🌱"))
    if carbon_saved_kg >= 50:
        earned.append(Achievement(name="Green Hero", icon="🌿"))
    return earned


@router.get("/me/dashboard", response_model=DashboardOut)
def dashboard(
    *,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    clock: Callable[[], datetime] = Depends(deps.get_clock),
) -> DashboardOut:
    completed = db.query(Ride).filter(Ride.user_id == user.id, Ride.status == RideStatus.completed)
    total_rides = completed.count()
    now = clock()
    month_start = datetime(now.year, now.month, 1)
    rides_this_month = completed.filter(Ride.end_time >= month_start).count()

    total_spent, avg_fare, total_duration = (
        db.query(
            func.coalesce(func.sum(Ride.fare), 0.0),
            func.coalesce(func.avg(Ride.fare), 0.0),
            func.coalesce(func.sum(Ride.duration_min), 0),
        )
        .filter(Ride.user_id == user.id, Ride.status == RideStatus.completed)
        .one()
    )
    rank = db.query(func.count(User.id)).filter(User.carbon_saved_kg > user.carbon_saved_kg).scalar() + 1
    recent = completed.order_by(Ride.end_time.desc()).limit(5).all()

    return DashboardOut(
        user=UserSummary(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role.value,
            reward_points=user.reward_points,
            wallet_balance=user.wallet_balance,
        ),
        stats=DashboardStats(
            total_rides=total_rides,
            rides_this_month=rides_this_month,
            total_carbon_saved_kg=round(user.carbon_saved_kg, 2),
            total_distance_km=round(user.total_distance_km, 2),
            total_spent=round(float(total_spent), 2),
            avg_fare_per_ride=round(float(avg_fare), 2),
            total_time_spent_min=int(total_duration),
            rank=int(rank),
        ),
        achievements=_achievements(total_rides, user.carbon_saved_kg),
        recent_rides=[serialize_ride(r) for r in recent],
    )


@router.post("/me/wallet/top-up", response_model=TopUpResponse)
def top_up_wallet(
    payload: TopUpRequest,
    *,
    db: Session = Depends(get_db),
    user: User = Depends(deps.get_current_user),
    tariff: Tariff = Depends(deps.get_tariff),
) -> TopUpResponse:
    ledger = WalletLedger(db, tariff)
    result = ledger.top_up(locked_user(db, user.id), payload.amount)
    if not result.ok:
        raise_for_error(result.error)
    db.commit()
    return TopUpResponse(wallet_balance=result.value.wallet_balance, amount_added=result.value.amount_added)
