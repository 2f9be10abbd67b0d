"""
Domain entities.

These dataclasses carry the same attribute names as the ORM rows in
``src.infrastructure.models`` so the state machine and stat accumulator
can operate on either: services pass ORM rows, unit tests pass these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from .enums import (
    DriverStatus,
    RideStatus,
    RideType,
    UserRole,
    VehicleStatus,
)

# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Actor:
    """Already-verified caller identity supplied by the auth layer."""

    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_project_manager(self) -> bool:
        return self.role == UserRole.PROJECT_MANAGER


@dataclass(frozen=True)
class Transition:
    """Outcome of a successful state-machine event.

    ``changes`` are the column writes to apply together with the move from
    ``source`` to ``target``; the status itself is not part of it.
    """

    event: str
    source: RideStatus
    target: RideStatus
    changes: dict[str, Any] = field(default_factory=dict)


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    ride_code: str = ""
    requester_id: int = 0
    requester_role: UserRole = UserRole.USER
    ride_type: RideType = RideType.ONE_WAY
    distance: float = 0.0
    calculated_distance: float = 0.0
    scheduled_date: Optional[date] = None
    scheduled_time: str = "00:00"
    status: RideStatus = RideStatus.AWAITING_ADMIN
    requires_pm_approval: bool = False
    is_pm_approved: bool = False
    is_admin_approved: bool = False
    assigned_driver_id: Optional[int] = None
    assigned_vehicle_id: Optional[int] = None
    previous_driver_id: Optional[int] = None
    previous_vehicle_id: Optional[int] = None
    start_mileage: Optional[float] = None
    end_mileage: Optional[float] = None
    actual_distance: Optional[float] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def apply(self, transition: Transition) -> None:
        """Apply a transition in memory (the database path uses a conditional UPDATE)."""
        for name, value in transition.changes.items():
            setattr(self, name, value)
        self.status = transition.target


@dataclass
class User:
    id: Optional[int] = None
    name: str = ""
    role: UserRole = UserRole.USER
    status: DriverStatus = DriverStatus.AVAILABLE
    assigned_vehicle_id: Optional[int] = None
    current_ride_id: Optional[int] = None
    total_rides: int = 0
    total_distance: float = 0.0
    is_hardcoded: bool = False


@dataclass
class Vehicle:
    id: Optional[int] = None
    vehicle_number: str = ""
    status: VehicleStatus = VehicleStatus.AVAILABLE
    current_driver_id: Optional[int] = None
    current_ride_id: Optional[int] = None
    total_mileage: float = 0.0
    monthly_mileage: float = 0.0
    last_mileage_reset: Optional[datetime] = None
    total_rides: int = 0
    is_active: bool = True
