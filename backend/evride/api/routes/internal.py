from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ...api import deps
from ...config import settings
from ...db import get_db
from ...fares import Tariff
from ...schemas import SweepResponse
from ...services.reservations import ReservationService


router = APIRouter(prefix="/internal", tags=["internal"])


def _require_service_token(token: str | None) -> None:
    expected = settings.service_token.get_secret_value()
    if expected and token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid service token")


@router.post("/reservations/sweep", response_model=SweepResponse)
def sweep_reservations(
    *,
    service_token: str | None = Header(default=None, alias="X-Service-Token"),
    db: Session = Depends(get_db),
    tariff: Tariff = Depends(deps.get_tariff),
    clock: Callable[[], datetime] = Depends(deps.get_clock),
) -> SweepResponse:
    _require_service_token(service_token)
    expired = ReservationService(db, tariff, clock).sweep_expired()
    return SweepResponse(expired=expired)
