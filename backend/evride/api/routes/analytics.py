from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...api import deps
from ...db import get_db
from ...fares import Tariff
from ...schemas import KpiResponse
from ...services.analytics import compute_kpis

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/kpis", response_model=KpiResponse)
def get_kpis(
    *,
    db: Session = Depends(get_db),
    _admin=Depends(deps.get_current_admin),
    tariff: Tariff = Depends(deps.get_tariff),
):
    payload = compute_kpis(db, low_battery_pct=tariff.min_battery_for_reserve)
    return KpiResponse(**payload)
