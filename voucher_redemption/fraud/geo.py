from __future__ import annotations

import math

from voucher_redemption.redemption.types import Location

EARTH_RADIUS_KM = 6371.0


def haversine_km(first: Location, second: Location) -> float:
    d_lat = math.radians(second.latitude - first.latitude)
    d_lon = math.radians(second.longitude - first.longitude)
    lat1 = math.radians(first.latitude)
    lat2 = math.radians(second.latitude)

    a = math.sin(d_lat / 2) ** 2 + math.sin(d_lon / 2) ** 2 * math.cos(lat1) * math.cos(lat2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
