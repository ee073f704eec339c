from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6)
    name: str = Field("", max_length=120)


class UserSummary(BaseModel):
    id: int
    email: str
    name: str
    role: str
    reward_points: int
    wallet_balance: float


class Location(BaseModel):
    lat: float
    lng: float
    address: Optional[str] = None


class VehicleOut(BaseModel):
    id: int
    vehicle_number: str
    type: str
    brand: str
    model: str
    status: str
    battery_pct: float
    range_km: float
    remaining_range_km: float
    lat: float
    lng: float
    current_ride_id: Optional[int] = None
    total_km_traveled: float
    is_active: bool
    distance_from_user_m: Optional[int] = None


class VehicleCreate(BaseModel):
    vehicle_number: str = Field(..., min_length=1, max_length=32)
    type: Literal["scooter", "bike", "ev"]
    brand: str = ""
    model: str = ""
    battery_pct: float = Field(100.0, ge=0, le=100)
    range_km: float = Field(50.0, gt=0)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class VehiclePatch(BaseModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    status: Optional[str] = None
    battery_pct: Optional[float] = Field(None, ge=0, le=100)
    range_km: Optional[float] = Field(None, gt=0)
    is_active: Optional[bool] = None


class FareEstimateOut(BaseModel):
    base: float
    distance_charge: float
    time_charge: float
    estimated_total: float
    estimated_duration_minutes: int


class TripEstimateRequest(BaseModel):
    user_lat: float = Field(..., ge=-90, le=90)
    user_lng: float = Field(..., ge=-180, le=180)
    dest_lat: float = Field(..., ge=-90, le=90)
    dest_lng: float = Field(..., ge=-180, le=180)


class TripEstimateOut(FareEstimateOut):
    distance_km: float
    estimated_carbon_saved_kg: float


class TariffOut(BaseModel):
    base_fare: float
    per_minute_charge: float
    per_km_charge: float
    carbon_saving_per_km: float
    reservation_timeout_minutes: int
    min_battery_for_reserve: float
    max_wallet_top_up: float
    cashback_rate: float


class RideFare(BaseModel):
    base_fare: float
    time_fare: float
    distance_fare: float
    original_fare: float
    fare: float
    points_redeemed: int
    points_earned: int
    is_paid: bool


class RideOut(BaseModel):
    id: int
    user_id: int
    vehicle_id: int
    status: str
    reserved_at: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    start_location: Optional[Location] = None
    end_location: Optional[Location] = None
    distance_km: float
    duration_min: int
    carbon_saved_kg: float
    fare: RideFare
    rating: Optional[int] = None
    feedback: Optional[str] = None


class ReservationResponse(BaseModel):
    ride: RideOut
    vehicle: VehicleOut
    expires_at: str


class StartRideRequest(BaseModel):
    vehicle_id: int
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=255)


class StartRideResponse(BaseModel):
    ride: RideOut
    vehicle: VehicleOut


class EndRideRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=255)


class PaymentSummary(BaseModel):
    duration_min: int
    distance_km: float
    original_fare: float
    points_redeemed: int
    final_fare: float
    carbon_saved_kg: float
    points_earned: int
    total_points: int
    wallet_balance: float


class EndRideResponse(BaseModel):
    ride: RideOut
    summary: PaymentSummary


class RateRideRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=500)


class RideHistoryOut(BaseModel):
    count: int
    total: int
    page: int
    pages: int
    rides: List[RideOut]


class TopUpRequest(BaseModel):
    amount: float


class TopUpResponse(BaseModel):
    wallet_balance: float
    amount_added: float


class Achievement(BaseModel):
    name: str
    icon: str


class DashboardStats(BaseModel):
    total_rides: int
    rides_this_month: int
    total_carbon_saved_kg: float
    total_distance_km: float
    total_spent: float
    avg_fare_per_ride: float
    total_time_spent_min: int
    rank: int


class DashboardOut(BaseModel):
    user: UserSummary
    stats: DashboardStats
    achievements: List[Achievement]
    recent_rides: List[RideOut]


class KpiResponse(BaseModel):
    rides_by_status: dict[str, int]
    revenue: float
    avg_fare: float
    total_distance_km: float
    total_carbon_saved_kg: float
    fleet_by_status: dict[str, int]
    low_battery_vehicles: int


class SweepResponse(BaseModel):
    expired: int
