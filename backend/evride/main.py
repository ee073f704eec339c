import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import create_api_router
from .config import settings
from .db import Base, SessionLocal, engine
from .fares import Tariff
from . import models  # noqa: F401
from .services.reservations import ReservationService

LOGGER = logging.getLogger("evride")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # holds live only in the database, so re-derive expiry after a restart
    db = SessionLocal()
    try:
        expired = ReservationService(db, Tariff.from_settings(settings)).sweep_expired()
        if expired:
            LOGGER.info("expired %d lapsed reservations on start-up", expired)
    finally:
        db.close()
    yield


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    Base.metadata.create_all(bind=engine)
    app.include_router(create_api_router())
    return app


app = create_app()
