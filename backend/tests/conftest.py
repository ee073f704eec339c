from datetime import datetime, timedelta
from pathlib import Path
import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("DATABASE_URL", "sqlite:///./evride-test.db")

from evride.api import deps
from evride.db import Base, SessionLocal, engine
from evride.main import app
from evride.seed import seed


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    seed()
    yield
    SessionLocal().close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 9, 0, 0))


@pytest.fixture()
def client(clock: FakeClock):
    app.dependency_overrides[deps.get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.pop(deps.get_clock, None)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
