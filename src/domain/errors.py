"""
Error taxonomy for ride commands.

Every error carries the HTTP status the API layer reports it with.  A
command that raises one of these has not written anything: services check
all guards before mutating, and the request session rolls back on error.
"""


class DispatchError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ── Validation (malformed input, booking window, request cap) ────────


class RideValidationError(DispatchError):
    status_code = 400


class BookingWindowError(RideValidationError):
    pass


class PendingRideLimitExceeded(RideValidationError):
    pass


# ── Guards ────────────────────────────────────────────────────────────


class GuardViolation(DispatchError):
    status_code = 400


class ApprovalNoteRequired(GuardViolation):
    pass


class InvalidMileage(GuardViolation):
    pass


class InvalidStateTransition(GuardViolation):
    """Raised when a ride status change violates the state machine."""

    status_code = 409


class SchedulingConflict(GuardViolation):
    status_code = 409


class ConcurrentModification(GuardViolation):
    """Another transaction moved the ride first."""

    status_code = 409


class PermissionDenied(DispatchError):
    status_code = 403


# ── Fleet management ──────────────────────────────────────────────────


class FleetValidationError(DispatchError):
    """Bad vehicle / user input, duplicates, protected accounts."""

    status_code = 400


# ── Not found ─────────────────────────────────────────────────────────


class NotFound(DispatchError):
    status_code = 404


class RideNotFound(NotFound):
    def __init__(self, message: str = "Ride not found"):
        super().__init__(message)


class UserNotFound(NotFound):
    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class VehicleNotFound(NotFound):
    def __init__(self, message: str = "Vehicle not found"):
        super().__init__(message)
