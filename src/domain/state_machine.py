"""
Ride lifecycle state machine
============================

::

    (create) ─┬─> awaiting_admin ──pm-approve / admin-approve──> approved ──assign──> assigned ──start──> in_progress ──complete──> completed
              └─> approved   (PM self-request)                        │                 │ └─reassign─┘
                                                                       └─admin-reject─> rejected
    awaiting_admin ──pm-reject / admin-reject──> rejected
    pending / awaiting_pm / awaiting_admin ──cancel──> cancelled

``awaiting_pm`` is a legacy alias: every event accepted in
``awaiting_admin`` is accepted there too.  A long-distance ride
(``requires_pm_approval``) can be cleared by *either* the PM or an Admin
with a note; whoever acts first wins, the other is only informed.

Each event is one function that checks its guards and returns a
``Transition`` describing the writes, or raises a ``DispatchError``.
Nothing here touches the database; ``src.services.rides`` applies the
transition with a conditional UPDATE keyed on ``Transition.source``.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

from .entities import Actor, Transition
from .enums import (
    AWAITING_APPROVAL,
    CANCELLABLE,
    READY_FOR_ASSIGNMENT,
    RideStatus,
    UserRole,
    VehicleStatus,
    can_transition,
)
from .errors import (
    ApprovalNoteRequired,
    GuardViolation,
    InvalidMileage,
    InvalidStateTransition,
    PermissionDenied,
)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _status(ride: Any) -> RideStatus:
    return RideStatus(ride.status)


def _require_role(actor: Actor, role: UserRole, label: str) -> None:
    if actor.role != role:
        raise PermissionDenied(f"Access denied. {label} only.")


def _require_status(ride: Any, allowed: frozenset, message: str) -> RideStatus:
    status = _status(ride)
    if status not in allowed:
        raise InvalidStateTransition(message)
    return status


def _move(
    ride: Any, event: str, target: RideStatus, changes: Optional[dict] = None
) -> Transition:
    source = _status(ride)
    if not can_transition(source, target):
        raise InvalidStateTransition(
            f"Cannot transition from {source.value} to {target.value}"
        )
    return Transition(event=event, source=source, target=target, changes=changes or {})


def _is_assigned_driver(ride: Any, actor: Actor) -> bool:
    return (
        actor.role == UserRole.DRIVER
        and ride.assigned_driver_id is not None
        and ride.assigned_driver_id == actor.user_id
    )


# ── Creation ──────────────────────────────────────────────────────────


def initial_approval_state(
    requester_role: UserRole, calculated_distance: float, threshold_km: float
) -> tuple[RideStatus, bool, bool]:
    """
    Return ``(status, requires_pm_approval, is_pm_approved)`` for a new ride.

    A PM's own request needs no approval at all; everyone else waits for
    an approver, with the PM brought in once the trip exceeds the
    threshold.
    """
    requires_pm = calculated_distance > threshold_km
    if UserRole(requester_role) == UserRole.PROJECT_MANAGER:
        return RideStatus.APPROVED, requires_pm, True
    return RideStatus.AWAITING_ADMIN, requires_pm, False


# ── Approval ──────────────────────────────────────────────────────────


def pm_approve(ride: Any, actor: Actor, now: Optional[datetime] = None) -> Transition:
    _require_role(actor, UserRole.PROJECT_MANAGER, "Project Manager")
    _require_status(ride, AWAITING_APPROVAL, "This ride is not awaiting PM approval")
    if not ride.requires_pm_approval:
        raise GuardViolation("This ride does not require PM approval")
    return _move(
        ride,
        "pm_approve",
        RideStatus.APPROVED,
        {
            "is_pm_approved": True,
            "pm_approved_by_id": actor.user_id,
            "pm_approved_at": _now(now),
        },
    )


def pm_reject(
    ride: Any,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    _require_role(actor, UserRole.PROJECT_MANAGER, "Project Manager")
    _require_status(ride, AWAITING_APPROVAL, "This ride cannot be rejected at this stage")
    if not ride.requires_pm_approval:
        raise GuardViolation("This ride does not require PM approval")
    return _move(ride, "pm_reject", RideStatus.REJECTED, _rejection(actor, reason, now))


def admin_approve(
    ride: Any,
    actor: Actor,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    _require_role(actor, UserRole.ADMIN, "Admin")
    _require_status(ride, AWAITING_APPROVAL, "This ride is not awaiting admin approval")
    note = (note or "").strip() or None
    if ride.requires_pm_approval and note is None:
        raise ApprovalNoteRequired(
            "Approval note is required for long-distance rides"
        )
    return _move(
        ride,
        "admin_approve",
        RideStatus.APPROVED,
        {
            "is_admin_approved": True,
            "admin_approved_by_id": actor.user_id,
            "admin_approved_at": _now(now),
            "admin_approval_note": note,
        },
    )


def admin_reject(
    ride: Any,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    _require_role(actor, UserRole.ADMIN, "Admin")
    _require_status(
        ride,
        AWAITING_APPROVAL | READY_FOR_ASSIGNMENT,
        "This ride cannot be rejected at this stage",
    )
    return _move(ride, "admin_reject", RideStatus.REJECTED, _rejection(actor, reason, now))


def _rejection(actor: Actor, reason: Optional[str], now: Optional[datetime]) -> dict:
    return {
        "rejected_by_id": actor.user_id,
        "rejected_by_role": actor.role,
        "rejected_at": _now(now),
        "rejection_reason": (reason or "").strip() or None,
    }


# ── Assignment ────────────────────────────────────────────────────────


def _check_resources(driver: Any, vehicle: Any) -> None:
    if driver is None or UserRole(driver.role) != UserRole.DRIVER:
        raise GuardViolation("Invalid driver selected")
    if vehicle is None or not vehicle.is_active:
        raise GuardViolation("Invalid vehicle selected")
    if VehicleStatus(vehicle.status) == VehicleStatus.MAINTENANCE:
        raise GuardViolation(
            f"Vehicle {vehicle.vehicle_number} is under maintenance"
        )


def assign(ride: Any, actor: Actor, driver: Any, vehicle: Any) -> Transition:
    """Guard the move to ``assigned``; scheduling conflicts are checked by the resolver."""
    _require_role(actor, UserRole.ADMIN, "Admin")
    _require_status(
        ride, READY_FOR_ASSIGNMENT, "Ride must be approved before assignment"
    )
    _check_resources(driver, vehicle)
    return _move(
        ride,
        "assign",
        RideStatus.ASSIGNED,
        {"assigned_driver_id": driver.id, "assigned_vehicle_id": vehicle.id},
    )


def reassign(ride: Any, actor: Actor, driver: Any, vehicle: Any) -> Transition:
    _require_role(actor, UserRole.ADMIN, "Admin")
    _require_status(
        ride,
        frozenset({RideStatus.ASSIGNED}),
        "Only assigned rides can be reassigned",
    )
    _check_resources(driver, vehicle)
    if (
        driver.id == ride.assigned_driver_id
        and vehicle.id == ride.assigned_vehicle_id
    ):
        raise GuardViolation("Ride is already assigned to this driver and vehicle")
    return _move(
        ride,
        "reassign",
        RideStatus.ASSIGNED,
        {
            "previous_driver_id": ride.assigned_driver_id,
            "previous_vehicle_id": ride.assigned_vehicle_id,
            "assigned_driver_id": driver.id,
            "assigned_vehicle_id": vehicle.id,
        },
    )


# ── Trip execution ────────────────────────────────────────────────────


def start(
    ride: Any,
    actor: Actor,
    start_mileage: Optional[float],
    now: Optional[datetime] = None,
) -> Transition:
    if not _is_assigned_driver(ride, actor):
        raise PermissionDenied("You are not assigned to this ride")
    _require_status(
        ride,
        frozenset({RideStatus.ASSIGNED}),
        "Ride cannot be started at this stage",
    )
    if start_mileage is None:
        raise InvalidMileage("Start mileage is required")
    if not math.isfinite(start_mileage):
        raise InvalidMileage("Start mileage must be a finite number")
    if start_mileage < 0:
        raise InvalidMileage("Start mileage cannot be negative")
    return _move(
        ride,
        "start",
        RideStatus.IN_PROGRESS,
        {"start_mileage": float(start_mileage), "start_time": _now(now)},
    )


def complete(
    ride: Any,
    actor: Actor,
    end_mileage: Optional[float],
    now: Optional[datetime] = None,
) -> Transition:
    if not _is_assigned_driver(ride, actor):
        raise PermissionDenied("You are not assigned to this ride")
    _require_status(
        ride,
        frozenset({RideStatus.IN_PROGRESS}),
        "Ride must be in progress to complete",
    )
    if end_mileage is None:
        raise InvalidMileage("End mileage is required")
    if not math.isfinite(end_mileage):
        raise InvalidMileage("End mileage must be a finite number")
    if end_mileage < ride.start_mileage:
        raise InvalidMileage("End mileage cannot be less than start mileage")
    return _move(
        ride,
        "complete",
        RideStatus.COMPLETED,
        {
            "end_mileage": float(end_mileage),
            "actual_distance": float(end_mileage) - ride.start_mileage,
            "end_time": _now(now),
        },
    )


def cancel(ride: Any, actor: Actor) -> Transition:
    if ride.requester_id != actor.user_id and not actor.is_admin:
        raise PermissionDenied("Not authorized to cancel this ride")
    _require_status(
        ride, CANCELLABLE, "Ride can only be cancelled before it is approved"
    )
    return _move(ride, "cancel", RideStatus.CANCELLED)
