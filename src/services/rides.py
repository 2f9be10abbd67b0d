"""
Ride service
============

Runs ride commands against the store.  Every command follows the same
shape inside the caller's transaction:

1. load (and lock, where resources are involved) the rows it needs,
2. ask ``src.domain.state_machine`` for the ``Transition`` -- all guards
   run here, before anything is written,
3. write the ride with ``UPDATE ... WHERE status = <source>``; zero rows
   means another transaction moved the ride first,
4. update driver / vehicle / stats through ``AssignmentResolver`` and
   ``src.domain.stats``,
5. queue notifications (best effort).

The request session commits on success and rolls back on any error, so
a command either lands completely or not at all.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, settings as default_settings
from src.domain import state_machine
from src.domain.booking import (
    normalize_scheduled_time,
    parse_scheduled_date,
    today_local,
    validate_booking_date,
)
from src.domain.distance import resolve_distance
from src.domain.entities import Actor, Location, Transition
from src.domain.enums import (
    ACTIVE_STATUSES,
    AWAITING_APPROVAL,
    LIVE_STATUSES,
    READY_FOR_ASSIGNMENT,
    RideStatus,
    RideType,
    UserRole,
    VehicleStatus,
)
from src.domain.errors import (
    ConcurrentModification,
    PendingRideLimitExceeded,
    PermissionDenied,
    RideNotFound,
    RideValidationError,
    UserNotFound,
    VehicleNotFound,
)
from src.domain.stats import record_completion, round_km
from src.infrastructure.models import RideModel, UserModel, VehicleModel
from src.infrastructure.repositories import (
    RideRepository,
    UserRepository,
    VehicleRepository,
)
from src.services.assignment import AssignmentResolver
from src.services.notifications import RideNotifier

logger = logging.getLogger(__name__)

RIDE_CODE_ALPHABET = string.digits + string.ascii_uppercase


def new_ride_code(length: int = 6) -> str:
    return "".join(secrets.choice(RIDE_CODE_ALPHABET) for _ in range(length))


@dataclass
class Place:
    address: str
    location: Location


@dataclass
class RideStats:
    total_rides: int
    completed_rides: int
    pending_rides: int
    total_distance: float


class RideService:
    def __init__(self, session: AsyncSession, config: Optional[Settings] = None):
        self.session = session
        self.config = config or default_settings
        self.rides = RideRepository(session)
        self.users = UserRepository(session)
        self.vehicles = VehicleRepository(session)
        self.resolver = AssignmentResolver(session)
        self.notifier = RideNotifier(session)

    # ── Helpers ───────────────────────────────────────────────────────

    async def _get_ride(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise RideNotFound()
        return ride

    async def _get_user(self, user_id: int) -> UserModel:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def _commit_transition(
        self, ride: RideModel, transition: Transition
    ) -> RideModel:
        moved = await self.rides.update_if_status(
            ride.id,
            transition.source,
            {"status": transition.target, **transition.changes},
        )
        if not moved:
            raise ConcurrentModification(
                f"Ride {ride.ride_code} was modified concurrently, please retry"
            )
        return await self._after_write(ride, transition)

    async def _after_write(self, ride: RideModel, transition: Transition) -> RideModel:
        await self.rides.refresh(ride)
        logger.info(
            "ride %s: %s -> %s (%s)",
            ride.ride_code,
            transition.source.value,
            transition.target.value,
            transition.event,
        )
        return ride

    def today(self) -> date:
        return today_local(self.config.booking_timezone)

    # ── Create ────────────────────────────────────────────────────────

    async def create_ride(
        self,
        actor: Actor,
        *,
        ride_type: RideType,
        pickup: Place,
        destination: Place,
        scheduled_date: Union[str, date],
        scheduled_time: str,
        distance: Optional[float] = None,
        notes: str = "",
    ) -> RideModel:
        # Locking the requester serialises this user's concurrent creations,
        # which keeps the live-ride cap exact.
        requester = await self.users.get_for_update(actor.user_id)
        if requester is None:
            raise UserNotFound()

        on = parse_scheduled_date(scheduled_date)
        at = normalize_scheduled_time(scheduled_time)
        validate_booking_date(on, self.today(), self.config.max_advance_booking_days)

        role = UserRole(requester.role)
        if role == UserRole.USER:
            live = await self.rides.count_live_for_requester(requester.id)
            if live >= self.config.max_pending_rides_user:
                raise PendingRideLimitExceeded(
                    f"You can only have {self.config.max_pending_rides_user} "
                    "pending ride requests at a time"
                )

        ride_type = RideType(ride_type)
        base, calculated = resolve_distance(
            pickup.location, destination.location, ride_type, distance
        )
        status, requires_pm, is_pm_approved = state_machine.initial_approval_state(
            role, calculated, self.config.pm_approval_threshold_km
        )

        ride = await self._insert_with_unique_code(
            requester_id=requester.id,
            requester_role=role,
            ride_type=ride_type,
            pickup_address=pickup.address.strip(),
            pickup_lat=pickup.location.latitude,
            pickup_lng=pickup.location.longitude,
            destination_address=destination.address.strip(),
            destination_lat=destination.location.latitude,
            destination_lng=destination.location.longitude,
            distance=base,
            calculated_distance=calculated,
            scheduled_date=on,
            scheduled_time=at,
            status=status,
            requires_pm_approval=requires_pm,
            is_pm_approved=is_pm_approved,
            notes=notes or "",
        )
        logger.info(
            "ride %s created by %s (%s, %.1f km, status=%s)",
            ride.ride_code,
            requester.id,
            role.value,
            calculated,
            status.value,
        )
        await self.notifier.ride_created(ride, requester)
        return ride

    async def _insert_with_unique_code(self, **fields) -> RideModel:
        for _ in range(self.config.ride_code_max_attempts):
            code = new_ride_code(self.config.ride_code_length)
            if await self.rides.code_exists(code):
                continue
            ride = RideModel(ride_code=code, **fields)
            try:
                async with self.session.begin_nested():
                    await self.rides.create(ride)
            except IntegrityError:
                # a concurrent insert claimed the same code
                continue
            return ride
        raise ConcurrentModification("Could not allocate a unique ride id, please retry")

    # ── Approval ──────────────────────────────────────────────────────

    async def pm_approve(self, ride_id: int, actor: Actor) -> RideModel:
        ride = await self._get_ride(ride_id)
        transition = state_machine.pm_approve(ride, actor)
        await self._commit_transition(ride, transition)
        await self.notifier.pm_approved(ride, await self._get_user(actor.user_id))
        return ride

    async def pm_reject(
        self, ride_id: int, actor: Actor, reason: Optional[str] = None
    ) -> RideModel:
        ride = await self._get_ride(ride_id)
        transition = state_machine.pm_reject(ride, actor, reason)
        await self._commit_transition(ride, transition)
        await self.notifier.rejected(ride, await self._get_user(actor.user_id))
        return ride

    async def admin_approve(
        self, ride_id: int, actor: Actor, note: Optional[str] = None
    ) -> RideModel:
        ride = await self._get_ride(ride_id)
        transition = state_machine.admin_approve(ride, actor, note)
        await self._commit_transition(ride, transition)
        await self.notifier.admin_approved(ride, await self._get_user(actor.user_id))
        return ride

    async def admin_reject(
        self, ride_id: int, actor: Actor, reason: Optional[str] = None
    ) -> RideModel:
        ride = await self._get_ride(ride_id)
        transition = state_machine.admin_reject(ride, actor, reason)
        await self._commit_transition(ride, transition)
        await self.notifier.rejected(ride, await self._get_user(actor.user_id))
        return ride

    # ── Assignment ────────────────────────────────────────────────────

    async def assign(
        self, ride_id: int, actor: Actor, driver_id: int, vehicle_id: int
    ) -> RideModel:
        ride = await self._get_ride(ride_id)
        driver = await self.resolver.lock_driver(driver_id)
        vehicle = await self.resolver.lock_vehicle(vehicle_id)

        transition = state_machine.assign(ride, actor, driver, vehicle)
        await self.resolver.ensure_free(ride, driver.id, vehicle.id)
        await self.resolver.apply_assignment(ride, transition)
        self.resolver.claim(ride, driver, vehicle)
        await self._after_write(ride, transition)

        await self.notifier.assigned(ride, driver, vehicle)
        return ride

    async def reassign(
        self, ride_id: int, actor: Actor, driver_id: int, vehicle_id: int
    ) -> RideModel:
        ride = await self._get_ride(ride_id)
        drivers = await self.resolver.lock_drivers(
            (driver_id, ride.assigned_driver_id)
        )
        vehicles = await self.resolver.lock_vehicles(
            (vehicle_id, ride.assigned_vehicle_id)
        )
        new_driver = drivers.get(driver_id)
        if new_driver is None:
            raise UserNotFound("Driver not found")
        new_vehicle = vehicles.get(vehicle_id)
        if new_vehicle is None or not new_vehicle.is_active:
            raise VehicleNotFound()

        transition = state_machine.reassign(ride, actor, new_driver, new_vehicle)
        old_driver_id = transition.changes["previous_driver_id"]
        old_vehicle_id = transition.changes["previous_vehicle_id"]
        await self.resolver.ensure_free(ride, new_driver.id, new_vehicle.id)

        old_driver = None
        if old_driver_id != new_driver.id:
            old_driver = drivers.get(old_driver_id)
        old_vehicle = None
        if old_vehicle_id != new_vehicle.id:
            old_vehicle = vehicles.get(old_vehicle_id)

        await self.resolver.apply_assignment(ride, transition)
        # the ride row now points at the new pair, so releasing counts only
        # the old resources' *other* rides
        await self.resolver.release_driver(old_driver, ride.id)
        await self.resolver.release_vehicle(old_vehicle, ride.id)
        self.resolver.claim(ride, new_driver, new_vehicle)
        await self._after_write(ride, transition)

        await self.notifier.reassigned(ride, new_driver, new_vehicle, old_driver_id)
        return ride

    # ── Trip execution ────────────────────────────────────────────────

    async def start(
        self, ride_id: int, actor: Actor, start_mileage: Optional[float]
    ) -> RideModel:
        ride = await self._get_ride(ride_id)
        transition = state_machine.start(ride, actor, start_mileage)
        await self._commit_transition(ride, transition)
        await self.notifier.started(ride)
        return ride

    async def complete(
        self, ride_id: int, actor: Actor, end_mileage: Optional[float]
    ) -> RideModel:
        ride = await self._get_ride(ride_id)
        transition = state_machine.complete(ride, actor, end_mileage)

        driver = await self.users.get_for_update(ride.assigned_driver_id)
        vehicle = await self.vehicles.get_for_update(ride.assigned_vehicle_id)
        requester = await self.users.get_for_update(ride.requester_id)

        await self._commit_transition(ride, transition)

        record_completion(vehicle, driver, requester, ride.actual_distance)
        await self.resolver.release_vehicle(vehicle, ride.id)
        await self.resolver.release_driver(driver, ride.id)
        await self.session.flush()

        await self.notifier.completed(ride)
        return ride

    async def cancel(self, ride_id: int, actor: Actor) -> RideModel:
        ride = await self._get_ride(ride_id)
        transition = state_machine.cancel(ride, actor)
        await self._commit_transition(ride, transition)
        await self.notifier.cancelled(ride, await self._get_user(actor.user_id))
        return ride

    # ── Queries ───────────────────────────────────────────────────────

    async def get_ride(self, ride_id: int, actor: Optional[Actor] = None) -> RideModel:
        ride = await self._get_ride(ride_id)
        if actor is not None and not self._can_view(ride, actor):
            raise PermissionDenied("Access denied")
        return ride

    @staticmethod
    def _can_view(ride: RideModel, actor: Actor) -> bool:
        if actor.is_admin or ride.requester_id == actor.user_id:
            return True
        if actor.role == UserRole.DRIVER:
            return actor.user_id in (ride.assigned_driver_id, ride.previous_driver_id)
        if actor.is_project_manager:
            return bool(ride.requires_pm_approval) or (
                RideStatus(ride.status) == RideStatus.AWAITING_PM
            )
        return False

    async def list_rides(
        self,
        actor: Actor,
        *,
        statuses: Optional[list[RideStatus]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[RideModel], int]:
        """Role-scoped ride listing; returns ``(page_of_rides, total)``."""
        filters = []
        if actor.role == UserRole.USER:
            filters.append(RideModel.requester_id == actor.user_id)
        elif actor.role == UserRole.DRIVER:
            filters.append(RideModel.assigned_driver_id == actor.user_id)
        elif actor.role == UserRole.PROJECT_MANAGER:
            filters.append(
                or_(
                    RideModel.status == RideStatus.AWAITING_PM,
                    RideModel.requester_id == actor.user_id,
                    RideModel.requires_pm_approval.is_(True),
                )
            )
        if statuses:
            filters.append(RideModel.status.in_(statuses))
        if start_date is not None:
            filters.append(RideModel.scheduled_date >= start_date)
        if end_date is not None:
            filters.append(RideModel.scheduled_date <= end_date)

        page = max(page, 1)
        rides = await self.rides.search(
            *filters, offset=(page - 1) * limit, limit=limit
        )
        return rides, await self.rides.count(*filters)

    async def rides_awaiting_pm(self) -> list[RideModel]:
        return await self.rides.search(
            RideModel.status.in_(list(AWAITING_APPROVAL)),
            RideModel.requires_pm_approval.is_(True),
            RideModel.is_pm_approved.is_(False),
            RideModel.is_admin_approved.is_(False),
        )

    async def rides_awaiting_admin(self) -> list[RideModel]:
        return await self.rides.search(RideModel.status.in_(list(AWAITING_APPROVAL)))

    async def rides_ready_for_assignment(self) -> list[RideModel]:
        return await self.rides.search(
            RideModel.status.in_(list(READY_FOR_ASSIGNMENT)),
            order_by=[RideModel.scheduled_date, RideModel.scheduled_time],
        )

    async def my_ride_stats(self, actor: Actor) -> RideStats:
        mine = RideModel.requester_id == actor.user_id
        completed = RideModel.status == RideStatus.COMPLETED
        return RideStats(
            total_rides=await self.rides.count(mine),
            completed_rides=await self.rides.count(mine, completed),
            pending_rides=await self.rides.count(
                mine, RideModel.status.in_(list(LIVE_STATUSES))
            ),
            total_distance=round_km(
                await self.rides.sum_actual_distance(mine, completed)
            ),
        )

    async def driver_assigned_rides(self, actor: Actor) -> list[RideModel]:
        return await self.rides.search(
            RideModel.assigned_driver_id == actor.user_id,
            RideModel.status.in_(list(ACTIVE_STATUSES)),
            order_by=[RideModel.scheduled_date, RideModel.scheduled_time],
        )

    async def driver_daily_rides(
        self, actor: Actor, on: Optional[date] = None
    ) -> tuple[list[RideModel], int, int]:
        """Return ``(rides, active_count, completed_count)`` for one day."""
        rides = await self.rides.search(
            RideModel.assigned_driver_id == actor.user_id,
            RideModel.scheduled_date == (on or self.today()),
            order_by=[RideModel.scheduled_time],
        )
        active = sum(1 for r in rides if RideStatus(r.status) in ACTIVE_STATUSES)
        done = sum(1 for r in rides if RideStatus(r.status) == RideStatus.COMPLETED)
        return rides, active, done

    async def available_drivers(
        self,
        on: Union[str, date],
        at: str,
        exclude_ride_id: Optional[int] = None,
    ) -> list[tuple[UserModel, bool]]:
        busy, _ = await self.rides.busy_resource_ids(
            parse_scheduled_date(on), normalize_scheduled_time(at), exclude_ride_id
        )
        drivers = await self.users.list_by_role(UserRole.DRIVER)
        return [(d, d.id not in busy) for d in drivers]

    async def available_vehicles(
        self,
        on: Union[str, date],
        at: str,
        exclude_ride_id: Optional[int] = None,
    ) -> list[tuple[VehicleModel, bool]]:
        _, busy = await self.rides.busy_resource_ids(
            parse_scheduled_date(on), normalize_scheduled_time(at), exclude_ride_id
        )
        vehicles = await self.vehicles.list_active()
        return [
            (
                v,
                v.id not in busy
                and VehicleStatus(v.status) != VehicleStatus.MAINTENANCE,
            )
            for v in vehicles
        ]


def parse_status_filter(values: Optional[list[str]]) -> Optional[list[RideStatus]]:
    if not values:
        return None
    try:
        statuses = [RideStatus(v) for v in values]
    except ValueError:
        raise RideValidationError(f"Unknown ride status in {values!r}") from None
    # awaiting_pm rows are still around from older data
    if RideStatus.AWAITING_ADMIN in statuses and RideStatus.AWAITING_PM not in statuses:
        statuses.append(RideStatus.AWAITING_PM)
    return statuses
