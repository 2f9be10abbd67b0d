"""
Fleet management: vehicles and user accounts.

Vehicle ``status`` is normally driven by ride assignment; the manual
changes allowed here are refused while the vehicle still has an
``assigned`` / ``in_progress`` ride, so the two never disagree.
"""

from __future__ import annotations

import logging
from typing import Optional

import bcrypt
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, settings as default_settings
from src.domain.entities import Actor
from src.domain.enums import DriverStatus, UserRole, VehicleStatus, VehicleType
from src.domain.errors import (
    FleetValidationError,
    PermissionDenied,
    UserNotFound,
    VehicleNotFound,
)
from src.domain.stats import reset_monthly_mileage
from src.infrastructure.models import RideModel, UserModel, VehicleModel
from src.infrastructure.repositories import (
    NotificationRepository,
    RideRepository,
    UserRepository,
    VehicleRepository,
)

logger = logging.getLogger(__name__)

CREATABLE_ROLES = frozenset({UserRole.USER, UserRole.DRIVER, UserRole.ADMIN})


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
    except ValueError:
        return False


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise PermissionDenied("Access denied. Admin only.")


class FleetService:
    def __init__(self, session: AsyncSession, config: Optional[Settings] = None):
        self.session = session
        self.config = config or default_settings
        self.rides = RideRepository(session)
        self.users = UserRepository(session)
        self.vehicles = VehicleRepository(session)

    # ── Vehicles ──────────────────────────────────────────────────────

    async def _active_vehicle(self, vehicle_id: int) -> VehicleModel:
        vehicle = await self.vehicles.get_by_id(vehicle_id)
        if vehicle is None or not vehicle.is_active:
            raise VehicleNotFound()
        return vehicle

    async def _ensure_no_active_rides(self, vehicle: VehicleModel, action: str) -> None:
        if await self.rides.count_active_for_vehicle(vehicle.id):
            raise FleetValidationError(
                f"Cannot {action} vehicle {vehicle.vehicle_number} "
                "while it has active rides"
            )

    async def create_vehicle(
        self, actor: Actor, vehicle_number: str, type: VehicleType = VehicleType.CAR
    ) -> VehicleModel:
        _require_admin(actor)
        number = vehicle_number.strip().upper()
        if not number:
            raise FleetValidationError("Vehicle number is required")
        if await self.vehicles.get_by_number(number) is not None:
            raise FleetValidationError("Vehicle number already exists")
        vehicle = await self.vehicles.create(
            VehicleModel(vehicle_number=number, type=VehicleType(type))
        )
        logger.info("Vehicle %s added to fleet", number)
        return vehicle

    async def list_vehicles(
        self, status: Optional[VehicleStatus] = None
    ) -> list[VehicleModel]:
        return await self.vehicles.list_active(status)

    async def get_vehicle(self, vehicle_id: int) -> VehicleModel:
        return await self._active_vehicle(vehicle_id)

    async def update_vehicle(
        self,
        actor: Actor,
        vehicle_id: int,
        *,
        vehicle_number: Optional[str] = None,
        type: Optional[VehicleType] = None,
        status: Optional[VehicleStatus] = None,
    ) -> VehicleModel:
        _require_admin(actor)
        vehicle = await self._active_vehicle(vehicle_id)

        if vehicle_number is not None:
            number = vehicle_number.strip().upper()
            if not number:
                raise FleetValidationError("Vehicle number is required")
            existing = await self.vehicles.get_by_number(number)
            if existing is not None and existing.id != vehicle.id:
                raise FleetValidationError("Vehicle number already exists")
            vehicle.vehicle_number = number
        if type is not None:
            vehicle.type = VehicleType(type)
        if status is not None:
            status = VehicleStatus(status)
            if status == VehicleStatus.BUSY:
                raise FleetValidationError(
                    "Vehicles become busy only through ride assignment"
                )
            if status != VehicleStatus(vehicle.status):
                action = "release" if status == VehicleStatus.AVAILABLE else "service"
                await self._ensure_no_active_rides(vehicle, action)
                vehicle.status = status
                if status == VehicleStatus.AVAILABLE:
                    vehicle.current_driver_id = None
                    vehicle.current_ride_id = None

        await self.session.flush()
        return vehicle

    async def delete_vehicle(self, actor: Actor, vehicle_id: int) -> VehicleModel:
        """Soft delete: the row stays for ride history."""
        _require_admin(actor)
        vehicle = await self._active_vehicle(vehicle_id)
        await self._ensure_no_active_rides(vehicle, "delete")
        vehicle.is_active = False
        await self.session.flush()
        logger.info("Vehicle %s removed from fleet", vehicle.vehicle_number)
        return vehicle

    async def set_maintenance(self, actor: Actor, vehicle_id: int) -> VehicleModel:
        return await self.update_vehicle(
            actor, vehicle_id, status=VehicleStatus.MAINTENANCE
        )

    async def reset_monthly_mileage(self, actor: Actor) -> int:
        _require_admin(actor)
        count = reset_monthly_mileage(await self.vehicles.list_active())
        await self.session.flush()
        logger.info("Monthly mileage reset for %d vehicles", count)
        return count

    async def vehicle_counts(self) -> dict[str, int]:
        by_status = await self.vehicles.count_active_by_status()
        counts = {s.value: by_status.get(s, 0) for s in VehicleStatus}
        counts["total"] = sum(by_status.values())
        return counts

    # ── Users ─────────────────────────────────────────────────────────

    async def create_user(
        self,
        actor: Actor,
        *,
        name: str,
        email: str,
        phone: str,
        password: str,
        role: UserRole = UserRole.USER,
    ) -> UserModel:
        _require_admin(actor)
        role = UserRole(role)
        if role not in CREATABLE_ROLES:
            raise FleetValidationError("Invalid role")
        email = email.strip().lower()
        phone = phone.strip()
        if await self.users.get_by_email(email) is not None:
            raise FleetValidationError("Email already registered")
        if await self.users.get_by_phone(phone) is not None:
            raise FleetValidationError("Phone number already registered")

        user = await self.users.create(
            UserModel(
                name=name.strip(),
                email=email,
                phone=phone,
                password_hash=hash_password(password, self.config.bcrypt_rounds),
                role=role,
            )
        )
        logger.info("User %s created with role %s", user.id, role.value)
        return user

    async def list_drivers(self) -> list[UserModel]:
        return await self.users.list_by_role(UserRole.DRIVER)

    async def list_users(
        self,
        actor: Actor,
        *,
        role: Optional[UserRole] = None,
        status: Optional[DriverStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[UserModel], int]:
        """Admin directory; *search* matches name or email, case-insensitively."""
        _require_admin(actor)
        page = max(page, 1)
        return await self.users.search(
            role=UserRole(role) if role is not None else None,
            status=DriverStatus(status) if status is not None else None,
            text=(search or "").strip() or None,
            offset=(page - 1) * limit,
            limit=limit,
        )

    async def user_counts(self, actor: Actor) -> dict[str, int]:
        _require_admin(actor)
        by_role = await self.users.count_by_role()
        counts = {r.value: by_role.get(r, 0) for r in UserRole}
        counts["total"] = sum(by_role.values())
        counts["available_drivers"] = await self.users.count_drivers(
            DriverStatus.AVAILABLE
        )
        return counts

    async def get_user(self, user_id: int) -> UserModel:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def update_user(
        self,
        actor: Actor,
        user_id: int,
        *,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        status: Optional[DriverStatus] = None,
    ) -> UserModel:
        _require_admin(actor)
        user = await self.get_user(user_id)
        if user.is_hardcoded:
            raise FleetValidationError("System accounts cannot be modified")

        if name is not None:
            user.name = name.strip()
        if phone is not None:
            phone = phone.strip()
            existing = await self.users.get_by_phone(phone)
            if existing is not None and existing.id != user.id:
                raise FleetValidationError("Phone number already registered")
            user.phone = phone
        if status is not None:
            status = DriverStatus(status)
            if status == DriverStatus.BUSY:
                raise FleetValidationError(
                    "Drivers become busy only through ride assignment"
                )
            if status != DriverStatus(user.status):
                if await self.rides.count_active_for_driver(user.id):
                    raise FleetValidationError(
                        "Cannot change status of a driver with active rides"
                    )
                user.status = status
        await self.session.flush()
        return user

    async def delete_user(self, actor: Actor, user_id: int) -> None:
        _require_admin(actor)
        user = await self.get_user(user_id)
        if user.is_hardcoded:
            raise FleetValidationError("System accounts cannot be deleted")
        if user.id == actor.user_id:
            raise FleetValidationError("You cannot delete your own account")
        history = await self.rides.count(
            or_(
                RideModel.requester_id == user.id,
                RideModel.assigned_driver_id == user.id,
                RideModel.previous_driver_id == user.id,
                RideModel.pm_approved_by_id == user.id,
                RideModel.admin_approved_by_id == user.id,
                RideModel.rejected_by_id == user.id,
            )
        )
        if history:
            raise FleetValidationError("Cannot delete a user with ride history")
        await NotificationRepository(self.session).delete_for_recipient(user.id)
        await self.users.delete(user)
        logger.info("User %s deleted", user_id)
