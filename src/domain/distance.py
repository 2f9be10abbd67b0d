"""
Distance calculation using the Haversine formula.

Assumption
----------
The great-circle estimate is a fallback.  When the client supplies a road
distance (e.g. from a mapping service) that figure wins, since it is
closer to what the driver will actually cover.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from typing import Optional

from .entities import Location
from .enums import RideType

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def straight_line_km(pickup: Location, destination: Location) -> float:
    """Haversine distance rounded to 1 decimal place."""
    return round(
        haversine_km(
            pickup.latitude,
            pickup.longitude,
            destination.latitude,
            destination.longitude,
        ),
        1,
    )


def trip_multiplier(ride_type: RideType) -> int:
    return 2 if ride_type == RideType.RETURN else 1


def resolve_distance(
    pickup: Location,
    destination: Location,
    ride_type: RideType,
    supplied: Optional[float] = None,
) -> tuple[float, float]:
    """
    Return ``(base_distance, calculated_distance)`` in km.

    ``base_distance`` is the one-way figure kept for audit; the calculated
    distance is doubled for return trips and drives the PM threshold.
    """
    if supplied is not None and math.isfinite(supplied) and supplied >= 0:
        base = float(supplied)
    else:
        base = straight_line_km(pickup, destination)
    return base, base * trip_multiplier(ride_type)
