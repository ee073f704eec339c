from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from evride.models import User, Vehicle

START = (12.9716, 77.5946)
# 0.009 degrees of latitude is 1.0008 km on the haversine sphere
ONE_KM_NORTH = (12.9716 + 0.009, 77.5946)


def login_token(client: TestClient, email: str = "admin@demo", password: str = "admin123") -> str:
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200
    return resp.json()["access_token"]


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def rider_headers(client: TestClient, email: str = "user@demo", password: str = "user123") -> dict[str, str]:
    return auth_header(login_token(client, email=email, password=password))


def vehicle_id(db: Session, number: str = "KA01-SC-001") -> int:
    return db.query(Vehicle).filter(Vehicle.vehicle_number == number).one().id


def set_wallet(db: Session, email: str, *, wallet_balance: float | None = None, reward_points: int | None = None) -> None:
    user = db.query(User).filter(User.email == email).one()
    if wallet_balance is not None:
        user.wallet_balance = wallet_balance
    if reward_points is not None:
        user.reward_points = reward_points
    db.commit()
