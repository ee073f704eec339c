import math
from datetime import datetime

def haversine_m(lat1, lon1, lat2, lon2) -> float:
    R = 6371000.0
    phi1 = math.radians(lat1); phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(dl/2)**2
    c = 2*math.atan2(math.sqrt(a), math.sqrt(1-a))
    return R * c

def round_half_away(value: float) -> int:
    """Round to the nearest integer, ties away from zero (unlike ``round``)."""
    magnitude = math.floor(abs(value) + 0.5)
    return int(magnitude if value >= 0 else -magnitude)

def round2(value: float) -> float:
    # scale first so 2.675 and friends do not drift across repeated ops
    return round_half_away(round(value * 100, 6)) / 100

def minutes_between(start: datetime, end: datetime) -> int:
    elapsed_s = (end - start).total_seconds()
    return max(round_half_away(elapsed_s / 60.0), 0)
