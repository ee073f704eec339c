from fastapi import APIRouter, Depends, Query

from ...api import deps
from ...fares import Tariff, estimate_fare
from ...schemas import FareEstimateOut, TariffOut

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/tariff", response_model=TariffOut)
def get_tariff(tariff: Tariff = Depends(deps.get_tariff)) -> TariffOut:
    return TariffOut(
        base_fare=tariff.base_fare,
        per_minute_charge=tariff.per_minute_charge,
        per_km_charge=tariff.per_km_charge,
        carbon_saving_per_km=tariff.carbon_saving_per_km,
        reservation_timeout_minutes=tariff.reservation_timeout_minutes,
        min_battery_for_reserve=tariff.min_battery_for_reserve,
        max_wallet_top_up=tariff.max_wallet_top_up,
        cashback_rate=tariff.cashback_rate,
    )


@router.get("/estimate", response_model=FareEstimateOut)
def get_estimate(
    *,
    distance_km: float = Query(..., ge=0, le=1000),
    tariff: Tariff = Depends(deps.get_tariff),
) -> FareEstimateOut:
    estimate = estimate_fare(distance_km, tariff)
    return FareEstimateOut(
        base=estimate.base,
        distance_charge=estimate.distance_charge,
        time_charge=estimate.time_charge,
        estimated_total=estimate.estimated_total,
        estimated_duration_minutes=estimate.estimated_duration_minutes,
    )
