from __future__ import annotations

import threading

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from evride.db import SessionLocal
from evride.fares import Tariff
from evride.models import OPEN_RIDE_STATES, Ride, RideStatus, User, Vehicle, VehicleStatus
from evride.services.errors import ErrorKind
from evride.services.reservations import ReservationService
from evride.services.rides import RideService

from .conftest import FakeClock
from .helpers import ONE_KM_NORTH, START, rider_headers, set_wallet, vehicle_id


def _start(client: TestClient, headers: dict, vid: int, at=START):
    return client.post(
        "/api/v1/rides/start",
        headers=headers,
        json={"vehicle_id": vid, "lat": at[0], "lng": at[1], "address": "MG Road"},
    )


def _end(client: TestClient, headers: dict, ride_id: int, at=ONE_KM_NORTH):
    return client.post(
        f"/api/v1/rides/{ride_id}/end",
        headers=headers,
        json={"lat": at[0], "lng": at[1], "address": "Cubbon Park"},
    )


def test_reserve_start_end_settles_fare(client: TestClient, clock: FakeClock, db: Session) -> None:
    headers = rider_headers(client)
    vid = vehicle_id(db, "KA01-SC-001")

    reserved = client.post(f"/api/v1/vehicles/{vid}/reserve", headers=headers)
    assert reserved.status_code == 200
    ride_id = reserved.json()["ride"]["id"]

    clock.advance(minutes=2)
    started = _start(client, headers, vid)
    assert started.status_code == 200, started.text
    assert started.json()["ride"]["id"] == ride_id
    assert started.json()["ride"]["status"] == "active"
    assert started.json()["ride"]["start_location"]["address"] == "MG Road"
    assert started.json()["vehicle"]["status"] == "in-use"

    clock.advance(minutes=10)
    ended = _end(client, headers, ride_id)
    assert ended.status_code == 200, ended.text
    body = ended.json()
    ride = body["ride"]
    assert ride["status"] == "completed"
    assert ride["distance_km"] == 1.0
    assert ride["duration_min"] == 10
    assert ride["carbon_saved_kg"] == 0.11
    assert ride["fare"] == {
        "base_fare": 10.0,
        "time_fare": 20.0,
        "distance_fare": 5.0,
        "original_fare": 35.0,
        "fare": 35.0,
        "points_redeemed": 0,
        "points_earned": 3,
        "is_paid": True,
    }
    summary = body["summary"]
    assert summary["final_fare"] == 35.0
    assert summary["wallet_balance"] == 65.0
    assert summary["total_points"] == 3

    vehicle = client.get(f"/api/v1/vehicles/{vid}").json()
    assert vehicle["status"] == "available"
    assert vehicle["current_ride_id"] is None
    assert vehicle["battery_pct"] == 98.0
    assert vehicle["total_km_traveled"] == 1.0
    assert (vehicle["lat"], vehicle["lng"]) == ONE_KM_NORTH

    dashboard = client.get("/api/v1/users/me/dashboard", headers=headers).json()
    assert dashboard["user"]["wallet_balance"] == 65.0
    assert dashboard["stats"]["total_rides"] == 1
    assert dashboard["stats"]["total_distance_km"] == 1.0
    assert dashboard["stats"]["total_spent"] == 35.0
    assert dashboard["stats"]["total_time_spent_min"] == 10
    assert dashboard["achievements"] == [{"name": "First Ride", "icon": "🎉"}]


def test_reward_points_cover_the_fare(client: TestClient, clock: FakeClock, db: Session) -> None:
    set_wallet(db, "user@demo", wallet_balance=100.0, reward_points=40)
    headers = rider_headers(client)
    vid = vehicle_id(db)

    ride_id = _start(client, headers, vid).json()["ride"]["id"]
    clock.advance(minutes=10)
    ended = _end(client, headers, ride_id)
    assert ended.status_code == 200, ended.text

    summary = ended.json()["summary"]
    assert summary["original_fare"] == 35.0
    assert summary["points_redeemed"] == 35
    assert summary["final_fare"] == 0.0
    assert summary["points_earned"] == 0
    assert summary["total_points"] == 5
    assert summary["wallet_balance"] == 100.0


def test_insufficient_funds_keeps_ride_active(client: TestClient, clock: FakeClock, db: Session) -> None:
    set_wallet(db, "user@demo", wallet_balance=5.0, reward_points=0)
    headers = rider_headers(client)
    vid = vehicle_id(db)

    ride_id = _start(client, headers, vid).json()["ride"]["id"]
    clock.advance(minutes=10)
    rejected = _end(client, headers, ride_id)
    assert rejected.status_code == 402
    assert rejected.json()["detail"]["error"] == "insufficient_funds"

    assert client.get(f"/api/v1/rides/{ride_id}", headers=headers).json()["status"] == "active"
    assert client.get(f"/api/v1/vehicles/{vid}").json()["status"] == "in-use"
    me = client.get("/api/v1/auth/me", headers=headers).json()
    assert me["wallet_balance"] == 5.0
    assert me["reward_points"] == 0

    topped = client.post("/api/v1/users/me/wallet/top-up", headers=headers, json={"amount": 50})
    assert topped.status_code == 200
    assert topped.json() == {"wallet_balance": 55.0, "amount_added": 50.0}

    retried = _end(client, headers, ride_id)
    assert retried.status_code == 200, retried.text
    assert retried.json()["summary"]["wallet_balance"] == 20.0


def test_start_without_reservation_creates_active_ride(client: TestClient, db: Session) -> None:
    headers = rider_headers(client)
    vid = vehicle_id(db, "KA01-EV-001")
    started = _start(client, headers, vid)
    assert started.status_code == 200
    ride = started.json()["ride"]
    assert ride["status"] == "active"
    assert ride["reserved_at"] is None
    assert started.json()["vehicle"]["current_ride_id"] == ride["id"]

    assert client.get("/api/v1/rides/active", headers=headers).json()["id"] == ride["id"]


def test_start_rejections(client: TestClient, db: Session) -> None:
    headers = rider_headers(client)
    other = rider_headers(client, email="rider2@demo", password="rider123")

    assert _start(client, headers, 9999).status_code == 404
    servicing = _start(client, headers, vehicle_id(db, "KA01-BK-099"))
    assert servicing.status_code == 409

    held = vehicle_id(db, "KA01-SC-001")
    assert client.post(f"/api/v1/vehicles/{held}/reserve", headers=other).status_code == 200
    stolen = _start(client, headers, held)
    assert stolen.status_code == 409
    assert stolen.json()["detail"]["message"] == "Vehicle is reserved by another rider"

    assert _start(client, headers, vehicle_id(db, "KA01-SC-002")).status_code == 200
    second = _start(client, headers, vehicle_id(db, "KA01-BK-001"))
    assert second.status_code == 409
    assert second.json()["detail"]["error"] == "invalid_state"


def test_start_after_lapsed_reservation_opens_fresh_ride(client: TestClient, clock: FakeClock, db: Session) -> None:
    headers = rider_headers(client)
    vid = vehicle_id(db)
    reserved_id = client.post(f"/api/v1/vehicles/{vid}/reserve", headers=headers).json()["ride"]["id"]

    clock.advance(minutes=7)
    started = _start(client, headers, vid)
    assert started.status_code == 200
    assert started.json()["ride"]["id"] != reserved_id
    assert client.get(f"/api/v1/rides/{reserved_id}", headers=headers).json()["status"] == "cancelled"


def test_concurrent_start_on_one_reservation(clock: FakeClock) -> None:
    with SessionLocal() as setup:
        user = setup.query(User).filter(User.email == "user@demo").one()
        vid = setup.query(Vehicle).filter(Vehicle.vehicle_number == "KA01-SC-001").one().id
        reserved = ReservationService(setup, Tariff(), clock).reserve(user=user, vehicle_id=vid)
        assert reserved.ok
        setup.commit()
        user_id, ride_id = user.id, reserved.value.ride.id

    first = SessionLocal()
    second = SessionLocal()
    try:
        first_user = first.get(User, user_id)
        second_user = second.get(User, user_id)
        # both requests have read the reservation before either writes
        assert second.get(Ride, ride_id).status == RideStatus.reserved
        assert second.get(Vehicle, vid).status == VehicleStatus.reserved

        winner = RideService(first, Tariff(), clock).start(user=first_user, vehicle_id=vid, lat=START[0], lon=START[1])
        assert winner.ok
        first.commit()

        loser = RideService(second, Tariff(), clock).start(user=second_user, vehicle_id=vid, lat=START[0], lon=START[1])
        assert not loser.ok
        assert loser.error.kind == ErrorKind.invalid_state
        second.rollback()
    finally:
        first.close()
        second.close()

    with SessionLocal() as check:
        rides = check.query(Ride).filter(Ride.user_id == user_id).all()
        assert [r.status for r in rides] == [RideStatus.active]
        assert check.get(Vehicle, vid).status == VehicleStatus.in_use
        assert check.get(Vehicle, vid).current_ride_id == ride_id


def test_end_rejections(client: TestClient, clock: FakeClock, db: Session) -> None:
    headers = rider_headers(client)
    other = rider_headers(client, email="rider2@demo", password="rider123")
    vid = vehicle_id(db)

    assert _end(client, headers, 9999).status_code == 404
    reserved_id = client.post(f"/api/v1/vehicles/{vid}/reserve", headers=headers).json()["ride"]["id"]
    not_started = _end(client, headers, reserved_id)
    assert not_started.status_code == 409

    ride_id = _start(client, headers, vid).json()["ride"]["id"]
    forbidden = _end(client, other, ride_id)
    assert forbidden.status_code == 403

    bad = client.post(f"/api/v1/rides/{ride_id}/end", headers=headers, json={"lat": 123.0, "lng": 0.0})
    assert bad.status_code == 422

    with SessionLocal() as session:
        ride = session.get(Ride, ride_id)
        ride.start_location = {"lat": "north", "lng": None}
        session.commit()
    malformed = _end(client, headers, ride_id)
    assert malformed.status_code == 400
    assert malformed.json()["detail"]["message"] == "Invalid start location data"


def test_cancel_active_ride_frees_vehicle(client: TestClient, db: Session) -> None:
    headers = rider_headers(client)
    vid = vehicle_id(db)
    ride_id = _start(client, headers, vid).json()["ride"]["id"]

    denied = client.post(f"/api/v1/rides/{ride_id}/cancel", headers=rider_headers(client, email="rider2@demo", password="rider123"))
    assert denied.status_code == 403

    cancelled = client.post(f"/api/v1/rides/{ride_id}/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    vehicle = client.get(f"/api/v1/vehicles/{vid}").json()
    assert vehicle["status"] == "available"
    assert vehicle["current_ride_id"] is None

    again = client.post(f"/api/v1/rides/{ride_id}/cancel", headers=headers)
    assert again.status_code == 409


def test_cancel_reservation(client: TestClient, db: Session) -> None:
    headers = rider_headers(client)
    vid = vehicle_id(db)
    ride_id = client.post(f"/api/v1/vehicles/{vid}/reserve", headers=headers).json()["ride"]["id"]

    cancelled = client.post(f"/api/v1/rides/{ride_id}/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert client.get(f"/api/v1/vehicles/{vid}").json()["status"] == "available"
    assert client.get("/api/v1/rides/active", headers=headers).status_code == 404


def test_rate_completed_ride_once(client: TestClient, clock: FakeClock, db: Session) -> None:
    headers = rider_headers(client)
    vid = vehicle_id(db)
    ride_id = _start(client, headers, vid).json()["ride"]["id"]

    early = client.post(f"/api/v1/rides/{ride_id}/rate", headers=headers, json={"rating": 4})
    assert early.status_code == 409
    assert early.json()["detail"]["error"] == "invalid_state"

    clock.advance(minutes=5)
    assert _end(client, headers, ride_id).status_code == 200

    out_of_range = client.post(f"/api/v1/rides/{ride_id}/rate", headers=headers, json={"rating": 6})
    assert out_of_range.status_code == 422

    other = rider_headers(client, email="rider2@demo", password="rider123")
    assert client.post(f"/api/v1/rides/{ride_id}/rate", headers=other, json={"rating": 1}).status_code == 403

    rated = client.post(f"/api/v1/rides/{ride_id}/rate", headers=headers, json={"rating": 5, "feedback": "Smooth"})
    assert rated.status_code == 200
    assert rated.json()["rating"] == 5
    assert rated.json()["feedback"] == "Smooth"

    twice = client.post(f"/api/v1/rides/{ride_id}/rate", headers=headers, json={"rating": 2})
    assert twice.status_code == 409
    assert twice.json()["detail"]["error"] == "already_rated"


def test_ride_history_and_visibility(client: TestClient, clock: FakeClock, db: Session) -> None:
    headers = rider_headers(client)
    vid = vehicle_id(db)
    for _ in range(3):
        ride_id = _start(client, headers, vid, at=START).json()["ride"]["id"]
        clock.advance(minutes=1)
        assert _end(client, headers, ride_id, at=START).status_code == 200
    client.post(f"/api/v1/vehicles/{vid}/reserve", headers=headers)

    history = client.get("/api/v1/rides", headers=headers, params={"limit": 2, "page": 1}).json()
    assert history["total"] == 4
    assert history["pages"] == 2
    assert history["count"] == 2
    assert history["rides"][0]["status"] == "reserved"

    completed = client.get("/api/v1/rides", headers=headers, params={"status": "completed"}).json()
    assert completed["total"] == 3
    assert client.get("/api/v1/rides", headers=headers, params={"status": "bogus"}).status_code == 400

    other = rider_headers(client, email="rider2@demo", password="rider123")
    first_ride = completed["rides"][-1]["id"]
    assert client.get(f"/api/v1/rides/{first_ride}", headers=other).status_code == 403
    admin = rider_headers(client, email="admin@demo", password="admin123")
    assert client.get(f"/api/v1/rides/{first_ride}", headers=admin).status_code == 200


def _race(attempt, vehicle_numbers: list[str]) -> dict:
    """Run ``attempt(session, user, vehicle_id)`` for one rider from two threads at once."""
    with SessionLocal() as setup:
        user_id = setup.query(User).filter(User.email == "user@demo").one().id
        vehicle_ids = [
            setup.query(Vehicle).filter(Vehicle.vehicle_number == number).one().id for number in vehicle_numbers
        ]

    barrier = threading.Barrier(len(vehicle_ids))
    outcomes = {}

    def run(vid: int) -> None:
        session = SessionLocal()
        try:
            user = session.get(User, user_id)
            barrier.wait(timeout=5)
            result = attempt(session, user, vid)
            if result.ok:
                session.commit()
            else:
                session.rollback()
            outcomes[vid] = result
        finally:
            session.close()

    threads = [threading.Thread(target=run, args=(vid,)) for vid in vehicle_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert len(outcomes) == len(vehicle_ids)
    return outcomes


def test_rider_cannot_start_two_rides_at_once(clock: FakeClock) -> None:
    def attempt(session, user, vid):
        return RideService(session, Tariff(), clock).start(user=user, vehicle_id=vid, lat=START[0], lon=START[1])

    outcomes = _race(attempt, ["KA01-SC-001", "KA01-SC-002"])
    assert sorted(result.ok for result in outcomes.values()) == [False, True]
    loser = next(result for result in outcomes.values() if not result.ok)
    assert loser.error.kind == ErrorKind.invalid_state

    with SessionLocal() as check:
        user = check.query(User).filter(User.email == "user@demo").one()
        open_rides = check.query(Ride).filter(Ride.user_id == user.id, Ride.status.in_(OPEN_RIDE_STATES)).all()
        assert len(open_rides) == 1
        in_use = check.query(Vehicle).filter(Vehicle.status == VehicleStatus.in_use).all()
        assert [v.current_ride_id for v in in_use] == [open_rides[0].id]


def test_rider_cannot_hold_two_reservations_at_once(clock: FakeClock) -> None:
    def attempt(session, user, vid):
        return ReservationService(session, Tariff(), clock).reserve(user=user, vehicle_id=vid)

    outcomes = _race(attempt, ["KA01-BK-001", "KA01-BK-002"])
    assert sorted(result.ok for result in outcomes.values()) == [False, True]
    loser = next(result for result in outcomes.values() if not result.ok)
    assert loser.error.kind == ErrorKind.conflicting_reservation

    with SessionLocal() as check:
        user = check.query(User).filter(User.email == "user@demo").one()
        assert check.query(Ride).filter(Ride.user_id == user.id).count() == 1
        assert check.query(Vehicle).filter(Vehicle.status == VehicleStatus.reserved).count() == 1
