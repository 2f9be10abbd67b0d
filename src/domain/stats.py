"""
Mileage and ride-count accumulation.

Stored accumulators keep full precision; ``round_km`` is for display.
The functions mutate whatever they are given (ORM rows in services,
dataclasses in tests).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional


def round_km(value: Optional[float]) -> float:
    return round(value or 0.0, 1)


def add_vehicle_mileage(vehicle: Any, distance: float) -> None:
    vehicle.total_mileage = (vehicle.total_mileage or 0.0) + distance
    vehicle.monthly_mileage = (vehicle.monthly_mileage or 0.0) + distance
    vehicle.total_rides = (vehicle.total_rides or 0) + 1


def add_user_trip(user: Any, distance: float) -> None:
    user.total_rides = (user.total_rides or 0) + 1
    user.total_distance = (user.total_distance or 0.0) + distance


def record_completion(
    vehicle: Any, driver: Any, requester: Any, actual_distance: float
) -> None:
    """Apply one completed trip to every counter it touches.

    Driver and requester are separate counters even when they are the
    same person.
    """
    if vehicle is not None:
        add_vehicle_mileage(vehicle, actual_distance)
    if driver is not None:
        add_user_trip(driver, actual_distance)
    if requester is not None:
        add_user_trip(requester, actual_distance)


def reset_monthly_mileage(
    vehicles: Iterable[Any], now: Optional[datetime] = None
) -> int:
    stamp = now or datetime.now(timezone.utc)
    count = 0
    for vehicle in vehicles:
        vehicle.monthly_mileage = 0.0
        vehicle.last_mileage_reset = stamp
        count += 1
    return count
