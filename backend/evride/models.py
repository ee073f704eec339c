from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, Float, ForeignKey, Enum, Text, UniqueConstraint, DateTime, Boolean, event
from sqlalchemy.types import JSON
from datetime import datetime
import enum
from typing import List

from .db import Base
from .utils import minutes_between

class RoleEnum(enum.Enum):
    admin = "admin"
    user = "user"

class VehicleType(enum.Enum):
    scooter = "scooter"
    bike = "bike"
    ev = "ev"

class VehicleStatus(enum.Enum):
    available = "available"
    reserved = "reserved"
    in_use = "in-use"
    maintenance = "maintenance"
    charging = "charging"

class RideStatus(enum.Enum):
    reserved = "reserved"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"

OPEN_RIDE_STATES = (RideStatus.reserved, RideStatus.active)


def _enum_values(cls):
    return [member.value for member in cls]


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120), default="")
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(Enum(RoleEnum), default=RoleEnum.user)
    reward_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    wallet_balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_rides: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_distance_km: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    carbon_saved_kg: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    rides: Mapped[List["Ride"]] = relationship(back_populates="user")

    __mapper_args__ = {"version_id_col": version}

class Vehicle(Base):
    __tablename__ = "vehicles"
    __table_args__ = (UniqueConstraint("vehicle_number", name="uq_vehicles_number"),)
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    vehicle_number: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[VehicleType] = mapped_column(Enum(VehicleType), nullable=False)
    brand: Mapped[str] = mapped_column(String(64), default="")
    model: Mapped[str] = mapped_column(String(64), default="")
    status: Mapped[VehicleStatus] = mapped_column(
        Enum(VehicleStatus, values_callable=_enum_values),
        default=VehicleStatus.available,
        nullable=False,
        index=True,
    )
    battery_pct: Mapped[float] = mapped_column(Float, default=100.0, nullable=False)
    range_km: Mapped[float] = mapped_column(Float, default=50.0)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    current_ride_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    total_km_traveled: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    rides: Mapped[List["Ride"]] = relationship(back_populates="vehicle")

    __mapper_args__ = {"version_id_col": version}

    @property
    def remaining_range_km(self) -> float:
        return round((self.battery_pct / 100.0) * self.range_km)

class Ride(Base):
    __tablename__ = "rides"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"), nullable=False, index=True)
    status: Mapped[RideStatus] = mapped_column(Enum(RideStatus), default=RideStatus.reserved, nullable=False, index=True)
    reserved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    start_location: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    end_location: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    distance_km: Mapped[float] = mapped_column(Float, default=0.0)
    duration_min: Mapped[int] = mapped_column(Integer, default=0)
    base_fare: Mapped[float] = mapped_column(Float, default=0.0)
    time_fare: Mapped[float] = mapped_column(Float, default=0.0)
    distance_fare: Mapped[float] = mapped_column(Float, default=0.0)
    original_fare: Mapped[float] = mapped_column(Float, default=0.0)
    fare: Mapped[float] = mapped_column(Float, default=0.0)
    carbon_saved_kg: Mapped[float] = mapped_column(Float, default=0.0)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    points_redeemed: Mapped[int] = mapped_column(Integer, default=0)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_method: Mapped[str] = mapped_column(String(16), default="wallet")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    user: Mapped["User"] = relationship(back_populates="rides")
    vehicle: Mapped["Vehicle"] = relationship(back_populates="rides")

    __mapper_args__ = {"version_id_col": version}


@event.listens_for(Ride, "before_insert")
@event.listens_for(Ride, "before_update")
def _derive_duration(mapper, connection, ride: Ride) -> None:
    if ride.start_time is not None and ride.end_time is not None:
        ride.duration_min = minutes_between(ride.start_time, ride.end_time)

class EventLog(Base):
    __tablename__ = "event_logs"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    component: Mapped[str] = mapped_column(String(120))
    level: Mapped[str] = mapped_column(String(32))
    message: Mapped[str] = mapped_column(String(255))
    payload_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
