"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Nothing here commits: the caller owns the
transaction.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import NotificationModel, RideModel, UserModel, VehicleModel
from src.domain.enums import (
    ACTIVE_STATUSES,
    LIVE_STATUSES,
    DriverStatus,
    RideStatus,
    UserRole,
    VehicleStatus,
)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        await self.session.refresh(ride)
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def code_exists(self, ride_code: str) -> bool:
        result = await self.session.execute(
            select(RideModel.id).where(RideModel.ride_code == ride_code)
        )
        return result.first() is not None

    async def update_if_status(
        self, ride_id: int, expected: RideStatus, values: dict[str, Any]
    ) -> bool:
        """
        Conditional write: apply *values* only while the ride is still in
        *expected*.  Returns False when another transaction got there first.
        """
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def refresh(self, ride: RideModel) -> RideModel:
        await self.session.refresh(ride)
        return ride

    async def count_live_for_requester(self, requester_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideModel)
            .where(
                RideModel.requester_id == requester_id,
                RideModel.status.in_(list(LIVE_STATUSES)),
            )
        )
        return result.scalar() or 0

    async def find_driver_conflict(
        self, driver_id: int, on: date, at: str, exclude_ride_id: Optional[int]
    ) -> Optional[RideModel]:
        return await self._find_slot_conflict(
            RideModel.assigned_driver_id == driver_id, on, at, exclude_ride_id
        )

    async def find_vehicle_conflict(
        self, vehicle_id: int, on: date, at: str, exclude_ride_id: Optional[int]
    ) -> Optional[RideModel]:
        return await self._find_slot_conflict(
            RideModel.assigned_vehicle_id == vehicle_id, on, at, exclude_ride_id
        )

    async def _find_slot_conflict(
        self, resource_clause, on: date, at: str, exclude_ride_id: Optional[int]
    ) -> Optional[RideModel]:
        query = select(RideModel).where(
            resource_clause,
            RideModel.scheduled_date == on,
            RideModel.scheduled_time == at,
            RideModel.status.in_(list(ACTIVE_STATUSES)),
        )
        if exclude_ride_id is not None:
            query = query.where(RideModel.id != exclude_ride_id)
        result = await self.session.execute(query.limit(1))
        return result.scalars().first()

    async def find_active_for_driver(
        self, driver_id: int, exclude_ride_id: Optional[int] = None
    ) -> Optional[RideModel]:
        return await self._first_active(
            RideModel.assigned_driver_id == driver_id, exclude_ride_id
        )

    async def find_active_for_vehicle(
        self, vehicle_id: int, exclude_ride_id: Optional[int] = None
    ) -> Optional[RideModel]:
        return await self._first_active(
            RideModel.assigned_vehicle_id == vehicle_id, exclude_ride_id
        )

    async def _first_active(self, resource_clause, exclude_ride_id) -> Optional[RideModel]:
        query = select(RideModel).where(
            resource_clause, RideModel.status.in_(list(ACTIVE_STATUSES))
        )
        if exclude_ride_id is not None:
            query = query.where(RideModel.id != exclude_ride_id)
        result = await self.session.execute(
            query.order_by(RideModel.scheduled_date, RideModel.scheduled_time).limit(1)
        )
        return result.scalars().first()

    async def count_active_for_driver(
        self, driver_id: int, exclude_ride_id: Optional[int] = None
    ) -> int:
        return await self._count_active(
            RideModel.assigned_driver_id == driver_id, exclude_ride_id
        )

    async def count_active_for_vehicle(
        self, vehicle_id: int, exclude_ride_id: Optional[int] = None
    ) -> int:
        return await self._count_active(
            RideModel.assigned_vehicle_id == vehicle_id, exclude_ride_id
        )

    async def _count_active(self, resource_clause, exclude_ride_id) -> int:
        query = (
            select(func.count())
            .select_from(RideModel)
            .where(resource_clause, RideModel.status.in_(list(ACTIVE_STATUSES)))
        )
        if exclude_ride_id is not None:
            query = query.where(RideModel.id != exclude_ride_id)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def busy_resource_ids(
        self, on: date, at: str, exclude_ride_id: Optional[int] = None
    ) -> tuple[set[int], set[int]]:
        """Return ``(driver_ids, vehicle_ids)`` booked at the given slot."""
        query = select(
            RideModel.assigned_driver_id, RideModel.assigned_vehicle_id
        ).where(
            RideModel.scheduled_date == on,
            RideModel.scheduled_time == at,
            RideModel.status.in_(list(ACTIVE_STATUSES)),
        )
        if exclude_ride_id is not None:
            query = query.where(RideModel.id != exclude_ride_id)
        rows = (await self.session.execute(query)).all()
        drivers = {d for d, _ in rows if d is not None}
        vehicles = {v for _, v in rows if v is not None}
        return drivers, vehicles

    async def search(
        self,
        *filters,
        order_by: Iterable = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[RideModel]:
        query = select(RideModel).where(*filters)
        order = list(order_by) or [RideModel.created_at.desc(), RideModel.id.desc()]
        query = query.order_by(*order).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, *filters) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(RideModel).where(*filters)
        )
        return result.scalar() or 0

    async def sum_actual_distance(self, *filters) -> float:
        result = await self.session.execute(
            select(func.coalesce(func.sum(RideModel.actual_distance), 0.0)).where(
                *filters
            )
        )
        return float(result.scalar() or 0.0)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_for_update(self, user_id: int) -> Optional[UserModel]:
        """SELECT ... FOR UPDATE so concurrent writers queue on this row."""
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.phone == phone)
        )
        return result.scalar_one_or_none()

    async def list_by_role(self, role: UserRole) -> list[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.role == role).order_by(UserModel.id)
        )
        return list(result.scalars().all())

    async def search(
        self,
        *,
        role: Optional[UserRole] = None,
        status: Optional[DriverStatus] = None,
        text: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[list[UserModel], int]:
        """Filtered page of users (newest first) plus the unpaged total."""
        filters = []
        if role is not None:
            filters.append(UserModel.role == role)
        if status is not None:
            filters.append(UserModel.status == status)
        if text:
            filters.append(
                or_(
                    UserModel.name.icontains(text, autoescape=True),
                    UserModel.email.icontains(text, autoescape=True),
                )
            )
        query = (
            select(UserModel)
            .where(*filters)
            .order_by(UserModel.created_at.desc(), UserModel.id.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        users = list((await self.session.execute(query)).scalars().all())
        total = await self.session.execute(
            select(func.count()).select_from(UserModel).where(*filters)
        )
        return users, total.scalar() or 0

    async def count_by_role(self) -> dict[UserRole, int]:
        result = await self.session.execute(
            select(UserModel.role, func.count()).group_by(UserModel.role)
        )
        return {UserRole(role): count for role, count in result.all()}

    async def count_drivers(self, status: DriverStatus) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(UserModel)
            .where(UserModel.role == UserRole.DRIVER, UserModel.status == status)
        )
        return result.scalar() or 0

    async def get_many(self, user_ids: Iterable[int]) -> list[UserModel]:
        ids = set(user_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(UserModel).where(UserModel.id.in_(ids))
        )
        return list(result.scalars().all())

    async def delete(self, user: UserModel) -> None:
        await self.session.delete(user)
        await self.session.flush()


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, vehicle: VehicleModel) -> VehicleModel:
        self.session.add(vehicle)
        await self.session.flush()
        await self.session.refresh(vehicle)
        return vehicle

    async def get_by_id(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)

    async def get_for_update(self, vehicle_id: int) -> Optional[VehicleModel]:
        result = await self.session.execute(
            select(VehicleModel)
            .where(VehicleModel.id == vehicle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_number(self, vehicle_number: str) -> Optional[VehicleModel]:
        result = await self.session.execute(
            select(VehicleModel).where(
                VehicleModel.vehicle_number == vehicle_number.upper()
            )
        )
        return result.scalar_one_or_none()

    async def list_active(
        self, status: Optional[VehicleStatus] = None
    ) -> list[VehicleModel]:
        query = select(VehicleModel).where(VehicleModel.is_active.is_(True))
        if status is not None:
            query = query.where(VehicleModel.status == status)
        result = await self.session.execute(query.order_by(VehicleModel.vehicle_number))
        return list(result.scalars().all())

    async def count_active_by_status(self) -> dict[VehicleStatus, int]:
        result = await self.session.execute(
            select(VehicleModel.status, func.count())
            .where(VehicleModel.is_active.is_(True))
            .group_by(VehicleModel.status)
        )
        return {VehicleStatus(status): count for status, count in result.all()}


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add_all(self, notifications: list[NotificationModel]) -> None:
        self.session.add_all(notifications)

    async def get_by_id(self, notification_id: int) -> Optional[NotificationModel]:
        return await self.session.get(NotificationModel, notification_id)

    async def list_for_recipient(
        self, recipient_id: int, unread_only: bool = False, limit: int = 50
    ) -> list[NotificationModel]:
        query = select(NotificationModel).where(
            NotificationModel.recipient_id == recipient_id
        )
        if unread_only:
            query = query.where(NotificationModel.is_read.is_(False))
        result = await self.session.execute(
            query.order_by(NotificationModel.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get_undelivered_for_update(
        self, max_attempts: int, limit: int
    ) -> list[NotificationModel]:
        """Oldest undelivered rows; SKIP LOCKED lets a second worker move on."""
        result = await self.session.execute(
            select(NotificationModel)
            .where(
                NotificationModel.delivered.is_(False),
                NotificationModel.delivery_attempts < max_attempts,
            )
            .order_by(NotificationModel.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def mark_read(
        self, recipient_id: int, notification_ids: Optional[Iterable[int]] = None
    ) -> int:
        query = update(NotificationModel).where(
            NotificationModel.recipient_id == recipient_id,
            NotificationModel.is_read.is_(False),
        )
        if notification_ids is not None:
            query = query.where(NotificationModel.id.in_(list(notification_ids)))
        result = await self.session.execute(
            query.values(is_read=True).execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count_unread(self, recipient_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(NotificationModel)
            .where(
                NotificationModel.recipient_id == recipient_id,
                NotificationModel.is_read.is_(False),
            )
        )
        return result.scalar() or 0

    async def delete_for_recipient(self, recipient_id: int) -> None:
        await self.session.execute(
            delete(NotificationModel).where(
                NotificationModel.recipient_id == recipient_id
            )
        )
