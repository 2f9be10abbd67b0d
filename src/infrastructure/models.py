"""
SQLAlchemy ORM models  (PostgreSQL in production, SQLite in tests).

Tables
------
* ``users``          -- requesters, drivers, PMs and admins
* ``vehicles``       -- fleet vehicles with mileage accumulators
* ``rides``          -- ride requests and their lifecycle
* ``notifications``  -- per-recipient outbox / in-app inbox

Cross-references from users / vehicles back to rides (``current_ride_id``
etc.) are plain indexed integers; only ``rides`` and ``notifications``
carry foreign keys, which keeps the schema free of FK cycles.

Indexes
-------
* **Partial unique** on ``(assigned_driver_id, scheduled_date,
  scheduled_time)`` and the vehicle equivalent, restricted to
  ``assigned`` / ``in_progress`` rides: the database refuses a double
  booking even if two assignments race past the resolver.
* **B-Tree** on ``status``, ``requester_id`` and the notification
  delivery flag for the hot look-ups.
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)

from .database import Base
from src.domain.enums import (
    DriverStatus,
    NotificationEvent,
    RideStatus,
    RideType,
    UserRole,
    VehicleStatus,
    VehicleType,
)


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Persist enum *values* (``awaiting_admin``), not member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


_ACTIVE_RIDE = text("status IN ('assigned', 'in_progress')")


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20), unique=True, nullable=False)
    password_hash = Column(String(128), nullable=False)
    role = Column(_enum(UserRole, "user_role"), default=UserRole.USER, nullable=False)
    status = Column(
        _enum(DriverStatus, "driver_status"),
        default=DriverStatus.AVAILABLE,
        nullable=False,
    )
    assigned_vehicle_id = Column(Integer, nullable=True)
    current_ride_id = Column(Integer, nullable=True)
    total_rides = Column(Integer, default=0, nullable=False)
    total_distance = Column(Float, default=0.0, nullable=False)
    is_hardcoded = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_users_role", "role"),)


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_number = Column(String(20), unique=True, nullable=False)
    type = Column(_enum(VehicleType, "vehicle_type"), default=VehicleType.CAR, nullable=False)
    status = Column(
        _enum(VehicleStatus, "vehicle_status"),
        default=VehicleStatus.AVAILABLE,
        nullable=False,
    )
    current_driver_id = Column(Integer, nullable=True)
    current_ride_id = Column(Integer, nullable=True)
    total_mileage = Column(Float, default=0.0, nullable=False)
    monthly_mileage = Column(Float, default=0.0, nullable=False)
    last_mileage_reset = Column(DateTime(timezone=True), server_default=func.now())
    total_rides = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_vehicles_active_status", "is_active", "status"),)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_code = Column(String(12), unique=True, nullable=False)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    requester_role = Column(_enum(UserRole, "user_role"), nullable=False)
    ride_type = Column(_enum(RideType, "ride_type"), nullable=False)

    pickup_address = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    destination_address = Column(String(255), nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)

    distance = Column(Float, nullable=False)  # one-way, as supplied or estimated
    calculated_distance = Column(Float, nullable=False)  # doubled for returns
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(String(5), nullable=False)

    status = Column(
        _enum(RideStatus, "ride_status"),
        default=RideStatus.AWAITING_ADMIN,
        nullable=False,
    )
    requires_pm_approval = Column(Boolean, default=False, nullable=False)
    is_pm_approved = Column(Boolean, default=False, nullable=False)
    is_admin_approved = Column(Boolean, default=False, nullable=False)

    assigned_driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    previous_driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    previous_vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)

    start_mileage = Column(Float, nullable=True)
    end_mileage = Column(Float, nullable=True)
    actual_distance = Column(Float, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)

    # Approval / rejection audit
    pm_approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    pm_approved_at = Column(DateTime(timezone=True), nullable=True)
    admin_approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    admin_approved_at = Column(DateTime(timezone=True), nullable=True)
    admin_approval_note = Column(Text, nullable=True)
    rejected_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_by_role = Column(_enum(UserRole, "user_role"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, default="", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_requester", "requester_id"),
        Index("idx_rides_schedule", "scheduled_date", "scheduled_time"),
        Index(
            "uq_rides_driver_slot",
            "assigned_driver_id",
            "scheduled_date",
            "scheduled_time",
            unique=True,
            postgresql_where=_ACTIVE_RIDE,
            sqlite_where=_ACTIVE_RIDE,
        ),
        Index(
            "uq_rides_vehicle_slot",
            "assigned_vehicle_id",
            "scheduled_date",
            "scheduled_time",
            unique=True,
            postgresql_where=_ACTIVE_RIDE,
            sqlite_where=_ACTIVE_RIDE,
        ),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=True)
    event = Column(_enum(NotificationEvent, "notification_event"), nullable=False)
    title = Column(String(120), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)

    delivered = Column(Boolean, default=False, nullable=False)
    delivery_attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_id"),
        Index("idx_notifications_pending", "delivered", "delivery_attempts"),
    )
