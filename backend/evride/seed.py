from __future__ import annotations

from sqlalchemy.orm import Session

from .db import Base, SessionLocal, engine
from .models import RoleEnum, User, Vehicle, VehicleStatus, VehicleType
from .security import hash_password

# (vehicle_number, type, brand, model, range_km)
FLEET = [
    ("KA01-SC-001", VehicleType.scooter, "Ather", "450X", 50.0),
    ("KA01-SC-002", VehicleType.scooter, "Ola", "S1 Pro", 50.0),
    ("KA01-BK-001", VehicleType.bike, "Hero Lectro", "C5", 75.0),
    ("KA01-BK-002", VehicleType.bike, "EMotorad", "T-Rex", 75.0),
    ("KA01-EV-001", VehicleType.ev, "Tata", "Nexon EV", 80.0),
    ("KA01-EV-002", VehicleType.ev, "MG", "ZS EV", 80.0),
]

# spread around MG Road, Bengaluru
ANCHOR_LAT = 12.9716
ANCHOR_LON = 77.5946


def _seed_users(db: Session) -> None:
    if db.query(User).count() > 0:
        return
    users = [
        User(
            email="admin@demo",
            name="Fleet Admin",
            password_hash=hash_password("admin123"),
            role=RoleEnum.admin,
        ),
        User(
            email="user@demo",
            name="Demo Rider",
            password_hash=hash_password("user123"),
            role=RoleEnum.user,
            wallet_balance=100.0,
        ),
        User(
            email="rider2@demo",
            name="Second Rider",
            password_hash=hash_password("rider123"),
            role=RoleEnum.user,
            wallet_balance=100.0,
        ),
    ]
    db.add_all(users)


def _seed_vehicles(db: Session) -> None:
    if db.query(Vehicle).count() > 0:
        return
    vehicles = []
    for idx, (number, vehicle_type, brand, model, range_km) in enumerate(FLEET):
        vehicles.append(
            Vehicle(
                vehicle_number=number,
                type=vehicle_type,
                brand=brand,
                model=model,
                range_km=range_km,
                status=VehicleStatus.available,
                battery_pct=100.0,
                lat=round(ANCHOR_LAT + 0.002 * idx, 6),
                lon=round(ANCHOR_LON + 0.001 * idx, 6),
            )
        )
    vehicles.append(
        Vehicle(
            vehicle_number="KA01-SC-099",
            type=VehicleType.scooter,
            brand="Ather",
            model="Rizta",
            range_km=50.0,
            status=VehicleStatus.available,
            battery_pct=12.0,
            lat=ANCHOR_LAT - 0.001,
            lon=ANCHOR_LON - 0.001,
        )
    )
    vehicles.append(
        Vehicle(
            vehicle_number="KA01-BK-099",
            type=VehicleType.bike,
            brand="Hero Lectro",
            model="H5",
            range_km=75.0,
            status=VehicleStatus.maintenance,
            battery_pct=80.0,
            lat=ANCHOR_LAT + 0.001,
            lon=ANCHOR_LON - 0.002,
        )
    )
    db.add_all(vehicles)


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        _seed_users(db)
        _seed_vehicles(db)
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    seed()
