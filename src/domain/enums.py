"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    AWAITING_PM = "awaiting_pm"  # deprecated alias of AWAITING_ADMIN
    AWAITING_ADMIN = "awaiting_admin"
    PM_APPROVED = "pm_approved"
    APPROVED = "approved"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses.
# ASSIGNED -> ASSIGNED is the reassignment self-loop.
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.AWAITING_ADMIN, RideStatus.CANCELLED},
    RideStatus.AWAITING_PM: {
        RideStatus.APPROVED,
        RideStatus.REJECTED,
        RideStatus.CANCELLED,
    },
    RideStatus.AWAITING_ADMIN: {
        RideStatus.APPROVED,
        RideStatus.REJECTED,
        RideStatus.CANCELLED,
    },
    RideStatus.PM_APPROVED: {RideStatus.ASSIGNED, RideStatus.REJECTED},
    RideStatus.APPROVED: {RideStatus.ASSIGNED, RideStatus.REJECTED},
    RideStatus.ASSIGNED: {RideStatus.ASSIGNED, RideStatus.IN_PROGRESS},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.REJECTED: set(),
    RideStatus.CANCELLED: set(),
}

AWAITING_APPROVAL = frozenset({RideStatus.AWAITING_ADMIN, RideStatus.AWAITING_PM})
READY_FOR_ASSIGNMENT = frozenset({RideStatus.APPROVED, RideStatus.PM_APPROVED})
CANCELLABLE = frozenset(
    {RideStatus.PENDING, RideStatus.AWAITING_PM, RideStatus.AWAITING_ADMIN}
)
# Rides holding a driver and vehicle
ACTIVE_STATUSES = frozenset({RideStatus.ASSIGNED, RideStatus.IN_PROGRESS})
# Rides counted against the per-user request cap
LIVE_STATUSES = frozenset(
    {
        RideStatus.PENDING,
        RideStatus.AWAITING_PM,
        RideStatus.AWAITING_ADMIN,
        RideStatus.PM_APPROVED,
        RideStatus.APPROVED,
        RideStatus.ASSIGNED,
    }
)


def can_transition(source: RideStatus, target: RideStatus) -> bool:
    return target in RIDE_TRANSITIONS.get(source, set())


class RideType(str, enum.Enum):
    ONE_WAY = "one_way"
    RETURN = "return"


class UserRole(str, enum.Enum):
    USER = "user"
    DRIVER = "driver"
    ADMIN = "admin"
    PROJECT_MANAGER = "project_manager"


class DriverStatus(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    MAINTENANCE = "maintenance"


class VehicleType(str, enum.Enum):
    CAR = "Car"
    VAN = "Van"
    BUS = "Bus"
    SUV = "SUV"


class NotificationEvent(str, enum.Enum):
    RIDE_CREATED = "ride_created"
    RIDE_APPROVED = "ride_approved"
    RIDE_REJECTED = "ride_rejected"
    RIDE_ASSIGNED = "ride_assigned"
    RIDE_REASSIGNED = "ride_reassigned"
    RIDE_STARTED = "ride_started"
    RIDE_COMPLETED = "ride_completed"
    RIDE_CANCELLED = "ride_cancelled"
    DRIVER_CHANGED = "driver_changed"
