"""
Assignment / conflict resolver
==============================

Owns every write to driver and vehicle ``status`` / ``current_ride_id``.

Conflict model
--------------
Rides are point-in-time bookings: a driver (or vehicle) is double-booked
when another ride in ``assigned`` / ``in_progress`` carries the same
``(resource, scheduled_date, scheduled_time)``.  No interval overlap is
computed.

Concurrency safety
------------------
* Driver and vehicle rows are taken with ``SELECT ... FOR UPDATE`` before
  the conflict check, so two assignments of the same resource serialise
  on PostgreSQL.
* Several rows are always locked drivers first, then vehicles, each in
  ascending id order, so crossing reassignments cannot deadlock.
* The partial unique indexes on ``rides`` reject whatever still slips
  through; ``apply_assignment`` turns that ``IntegrityError`` into the
  same ``SchedulingConflict`` the pre-check raises.

Release rule
------------
A resource goes back to ``available`` only when it has no *other* active
ride.  A vehicle in ``maintenance`` keeps that status.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Transition
from src.domain.enums import DriverStatus, VehicleStatus
from src.domain.errors import (
    ConcurrentModification,
    SchedulingConflict,
    UserNotFound,
    VehicleNotFound,
)
from src.infrastructure.models import RideModel, UserModel, VehicleModel
from src.infrastructure.repositories import (
    RideRepository,
    UserRepository,
    VehicleRepository,
)

logger = logging.getLogger(__name__)


class AssignmentResolver:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.rides = RideRepository(session)
        self.users = UserRepository(session)
        self.vehicles = VehicleRepository(session)

    # ── Loading ───────────────────────────────────────────────────────

    async def lock_driver(self, driver_id: int) -> UserModel:
        driver = await self.users.get_for_update(driver_id)
        if driver is None:
            raise UserNotFound("Driver not found")
        return driver

    async def lock_vehicle(self, vehicle_id: int) -> VehicleModel:
        vehicle = await self.vehicles.get_for_update(vehicle_id)
        if vehicle is None or not vehicle.is_active:
            raise VehicleNotFound()
        return vehicle

    async def lock_drivers(
        self, driver_ids: Iterable[Optional[int]]
    ) -> dict[int, UserModel]:
        """Lock several drivers in ascending id order; missing rows are skipped."""
        locked = {}
        for driver_id in sorted({i for i in driver_ids if i is not None}):
            driver = await self.users.get_for_update(driver_id)
            if driver is not None:
                locked[driver_id] = driver
        return locked

    async def lock_vehicles(
        self, vehicle_ids: Iterable[Optional[int]]
    ) -> dict[int, VehicleModel]:
        locked = {}
        for vehicle_id in sorted({i for i in vehicle_ids if i is not None}):
            vehicle = await self.vehicles.get_for_update(vehicle_id)
            if vehicle is not None:
                locked[vehicle_id] = vehicle
        return locked

    # ── Conflict check ────────────────────────────────────────────────

    async def ensure_free(
        self, ride: RideModel, driver_id: int, vehicle_id: int
    ) -> None:
        clash = await self.rides.find_driver_conflict(
            driver_id, ride.scheduled_date, ride.scheduled_time, ride.id
        )
        if clash is not None:
            raise SchedulingConflict(
                f"Driver already booked at this time (Ride #{clash.ride_code})"
            )
        clash = await self.rides.find_vehicle_conflict(
            vehicle_id, ride.scheduled_date, ride.scheduled_time, ride.id
        )
        if clash is not None:
            raise SchedulingConflict(
                f"Vehicle already booked at this time (Ride #{clash.ride_code})"
            )

    async def apply_assignment(self, ride: RideModel, transition: Transition) -> None:
        """Write the ride side of an assign / reassign under its status guard."""
        try:
            async with self.session.begin_nested():
                moved = await self.rides.update_if_status(
                    ride.id,
                    transition.source,
                    {"status": transition.target, **transition.changes},
                )
        except IntegrityError:
            raise SchedulingConflict(
                "Driver or vehicle already booked at this time"
            ) from None
        if not moved:
            raise ConcurrentModification(
                f"Ride {ride.ride_code} was modified concurrently, please retry"
            )

    # ── Claim / release ───────────────────────────────────────────────

    @staticmethod
    def claim(ride: RideModel, driver: UserModel, vehicle: VehicleModel) -> None:
        driver.status = DriverStatus.BUSY
        driver.current_ride_id = ride.id
        driver.assigned_vehicle_id = vehicle.id

        vehicle.status = VehicleStatus.BUSY
        vehicle.current_driver_id = driver.id
        vehicle.current_ride_id = ride.id

    async def release_driver(self, driver: Optional[UserModel], ride_id: int) -> bool:
        """Free *driver* unless another active ride still holds it."""
        if driver is None:
            return False
        other = await self.rides.find_active_for_driver(
            driver.id, exclude_ride_id=ride_id
        )
        if other is None:
            driver.status = DriverStatus.AVAILABLE
            driver.current_ride_id = None
            driver.assigned_vehicle_id = None
            return True
        if driver.current_ride_id in (None, ride_id):
            driver.current_ride_id = other.id
            driver.assigned_vehicle_id = other.assigned_vehicle_id
        logger.info(
            "Driver %s stays busy: still on ride %s", driver.id, other.ride_code
        )
        return False

    async def release_vehicle(
        self, vehicle: Optional[VehicleModel], ride_id: int
    ) -> bool:
        if vehicle is None:
            return False
        other = await self.rides.find_active_for_vehicle(
            vehicle.id, exclude_ride_id=ride_id
        )
        if other is None:
            if VehicleStatus(vehicle.status) != VehicleStatus.MAINTENANCE:
                vehicle.status = VehicleStatus.AVAILABLE
            vehicle.current_driver_id = None
            vehicle.current_ride_id = None
            return True
        if vehicle.current_ride_id in (None, ride_id):
            vehicle.current_ride_id = other.id
            vehicle.current_driver_id = other.assigned_driver_id
        return False

