"""
Notification outbox
===================

Ride commands never talk to email / SMS directly.  After a transition
succeeds, ``RideNotifier`` writes one ``notifications`` row per
recipient into the *same* transaction, inside a SAVEPOINT:

* the rows only become visible once the transition commits, and
* a failure to write them is logged and swallowed -- it can never roll
  back the transition itself.

``src.workers.notifier`` later picks the rows up and hands them to a
``NotificationDispatcher``.  Admins and PMs are resolved by role query
at emit time.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.enums import NotificationEvent, UserRole
from src.domain.stats import round_km
from src.infrastructure.models import (
    NotificationModel,
    RideModel,
    UserModel,
    VehicleModel,
)
from src.infrastructure.repositories import NotificationRepository, UserRepository

logger = logging.getLogger(__name__)


# ── Delivery strategy ─────────────────────────────────────────────────


class NotificationDispatcher(ABC):
    @abstractmethod
    async def send(
        self, notification: NotificationModel, recipient: UserModel
    ) -> None: ...


class LoggingDispatcher(NotificationDispatcher):
    """Default transport: writes the message to the log.

    Real email / SMS gateways plug in by subclassing
    ``NotificationDispatcher``.
    """

    async def send(
        self, notification: NotificationModel, recipient: UserModel
    ) -> None:
        logger.info(
            "[%s] to %s <%s>: %s -- %s",
            NotificationEvent(notification.event).value,
            recipient.name,
            recipient.email,
            notification.title,
            notification.message,
        )


# ── Outbox writer ─────────────────────────────────────────────────────


def _summary(ride: RideModel) -> str:
    return (
        f"#{ride.ride_code} on {ride.scheduled_date.isoformat()} at "
        f"{ride.scheduled_time} ({round_km(ride.calculated_distance)} km)"
    )


class RideNotifier:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserRepository(session)

    async def _ids_with_role(self, role: UserRole) -> list[int]:
        return [u.id for u in await self.users.list_by_role(role)]

    async def _emit(
        self,
        ride: RideModel,
        event: NotificationEvent,
        recipient_ids: Iterable[Optional[int]],
        title: str,
        message: str,
    ) -> int:
        recipients = list(dict.fromkeys(r for r in recipient_ids if r is not None))
        if not recipients:
            return 0
        try:
            async with self.session.begin_nested():
                NotificationRepository(self.session).add_all(
                    [
                        NotificationModel(
                            recipient_id=recipient_id,
                            ride_id=ride.id,
                            event=event,
                            title=title,
                            message=message,
                        )
                        for recipient_id in recipients
                    ]
                )
        except SQLAlchemyError:
            logger.exception(
                "Could not queue %s notification for ride %s", event.value, ride.ride_code
            )
            return 0
        return len(recipients)

    # ── One method per transition ─────────────────────────────────────

    async def ride_created(self, ride: RideModel, requester: UserModel) -> None:
        admins = await self._ids_with_role(UserRole.ADMIN)
        if requester.role == UserRole.PROJECT_MANAGER:
            await self._emit(
                ride,
                NotificationEvent.RIDE_CREATED,
                admins,
                "PM Ride Ready for Assignment",
                f"{requester.name} booked ride {_summary(ride)}. "
                "Please assign a driver and vehicle.",
            )
            return
        if ride.requires_pm_approval:
            await self._emit(
                ride,
                NotificationEvent.RIDE_CREATED,
                await self._ids_with_role(UserRole.PROJECT_MANAGER),
                "Long Distance Ride Request",
                f"New ride request {_summary(ride)} from {requester.name} "
                "requires your approval.",
            )
            await self._emit(
                ride,
                NotificationEvent.RIDE_CREATED,
                admins,
                "Long Distance Ride - Dual Approval",
                f"Ride {_summary(ride)} can be approved by you (with a note) "
                "or by the Project Manager.",
            )
        else:
            await self._emit(
                ride,
                NotificationEvent.RIDE_CREATED,
                admins,
                "New Ride Request",
                f"New ride request {_summary(ride)} from {requester.name} "
                "is awaiting approval.",
            )

    async def pm_approved(self, ride: RideModel, pm: UserModel) -> None:
        await self._emit(
            ride,
            NotificationEvent.RIDE_APPROVED,
            await self._ids_with_role(UserRole.ADMIN),
            "PM Approved - Assign Driver",
            f"Ride {_summary(ride)} was approved by {pm.name}. "
            "Please assign a driver and vehicle.",
        )
        await self._emit(
            ride,
            NotificationEvent.RIDE_APPROVED,
            [ride.requester_id],
            "Ride Approved",
            f"Your ride {_summary(ride)} has been approved. Driver assignment pending.",
        )

    async def admin_approved(self, ride: RideModel, admin: UserModel) -> None:
        await self._emit(
            ride,
            NotificationEvent.RIDE_APPROVED,
            [ride.requester_id],
            "Ride Approved",
            f"Your ride {_summary(ride)} has been approved. Driver assignment pending.",
        )
        if ride.requires_pm_approval:
            note = ride.admin_approval_note or "No note provided"
            await self._emit(
                ride,
                NotificationEvent.RIDE_APPROVED,
                await self._ids_with_role(UserRole.PROJECT_MANAGER),
                "Admin Approved Long Distance Ride",
                f"{admin.name} approved ride {_summary(ride)}. Note: {note}",
            )

    async def rejected(self, ride: RideModel, rejecter: UserModel) -> None:
        reason = f" Reason: {ride.rejection_reason}" if ride.rejection_reason else ""
        await self._emit(
            ride,
            NotificationEvent.RIDE_REJECTED,
            [ride.requester_id],
            "Ride Rejected",
            f"Your ride {_summary(ride)} was rejected.{reason}",
        )
        if rejecter.role == UserRole.PROJECT_MANAGER:
            others = await self._ids_with_role(UserRole.ADMIN)
        elif ride.requires_pm_approval:
            others = await self._ids_with_role(UserRole.PROJECT_MANAGER)
        else:
            return
        await self._emit(
            ride,
            NotificationEvent.RIDE_REJECTED,
            others,
            "Ride Rejected",
            f"{rejecter.name} rejected ride {_summary(ride)}.{reason}",
        )

    async def assigned(
        self, ride: RideModel, driver: UserModel, vehicle: VehicleModel
    ) -> None:
        await self._emit(
            ride,
            NotificationEvent.RIDE_ASSIGNED,
            [ride.requester_id],
            "Driver Assigned",
            f"Driver {driver.name} with vehicle {vehicle.vehicle_number} "
            f"is assigned to your ride {_summary(ride)}.",
        )
        await self._emit(
            ride,
            NotificationEvent.RIDE_ASSIGNED,
            [driver.id],
            "New Ride Assignment",
            f"You are assigned to ride {_summary(ride)} with vehicle "
            f"{vehicle.vehicle_number}. Pickup: {ride.pickup_address}.",
        )

    async def reassigned(
        self,
        ride: RideModel,
        driver: UserModel,
        vehicle: VehicleModel,
        previous_driver_id: Optional[int],
    ) -> None:
        if previous_driver_id is not None and previous_driver_id != driver.id:
            await self._emit(
                ride,
                NotificationEvent.DRIVER_CHANGED,
                [previous_driver_id],
                "Ride Reassigned",
                f"You are no longer assigned to ride {_summary(ride)}.",
            )
        await self._emit(
            ride,
            NotificationEvent.RIDE_REASSIGNED,
            [driver.id],
            "New Ride Assignment",
            f"You are assigned to ride {_summary(ride)} with vehicle "
            f"{vehicle.vehicle_number}. Pickup: {ride.pickup_address}.",
        )
        await self._emit(
            ride,
            NotificationEvent.RIDE_REASSIGNED,
            [ride.requester_id],
            "Ride Assignment Changed",
            f"Your ride {_summary(ride)} is now with driver {driver.name} "
            f"and vehicle {vehicle.vehicle_number}.",
        )

    async def started(self, ride: RideModel) -> None:
        await self._emit(
            ride,
            NotificationEvent.RIDE_STARTED,
            [ride.requester_id],
            "Ride Started",
            f"Your ride {_summary(ride)} is on its way.",
        )

    async def completed(self, ride: RideModel) -> None:
        await self._emit(
            ride,
            NotificationEvent.RIDE_COMPLETED,
            [ride.requester_id],
            "Ride Completed",
            f"Your ride {_summary(ride)} is complete. "
            f"Distance travelled: {round_km(ride.actual_distance)} km.",
        )

    async def cancelled(self, ride: RideModel, by: UserModel) -> None:
        recipients = await self._ids_with_role(UserRole.ADMIN)
        if by.id != ride.requester_id:
            recipients.append(ride.requester_id)
        await self._emit(
            ride,
            NotificationEvent.RIDE_CANCELLED,
            [r for r in recipients if r != by.id],
            "Ride Cancelled",
            f"Ride {_summary(ride)} was cancelled by {by.name}.",
        )
