"""Initial schema: users, vehicles, rides, notifications.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "user_role": ("user", "driver", "admin", "project_manager"),
    "driver_status": ("available", "busy", "offline"),
    "vehicle_type": ("Car", "Van", "Bus", "SUV"),
    "vehicle_status": ("available", "busy", "maintenance"),
    "ride_type": ("one_way", "return"),
    "ride_status": (
        "pending",
        "awaiting_pm",
        "awaiting_admin",
        "pm_approved",
        "approved",
        "assigned",
        "in_progress",
        "completed",
        "rejected",
        "cancelled",
    ),
    "notification_event": (
        "ride_created",
        "ride_approved",
        "ride_rejected",
        "ride_assigned",
        "ride_reassigned",
        "ride_started",
        "ride_completed",
        "ride_cancelled",
        "driver_changed",
    ),
}

ACTIVE_RIDE = sa.text("status IN ('assigned', 'in_progress')")


def _enum(name: str) -> postgresql.ENUM:
    # types are created once up front; user_role is shared by two tables
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("password_hash", sa.String(128), nullable=False),
        sa.Column("role", _enum("user_role"), nullable=False),
        sa.Column("status", _enum("driver_status"), nullable=False),
        sa.Column("assigned_vehicle_id", sa.Integer, nullable=True),
        sa.Column("current_ride_id", sa.Integer, nullable=True),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_distance", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "is_hardcoded", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )
    op.create_index("idx_users_role", "users", ["role"])

    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("vehicle_number", sa.String(20), unique=True, nullable=False),
        sa.Column("type", _enum("vehicle_type"), nullable=False),
        sa.Column("status", _enum("vehicle_status"), nullable=False),
        sa.Column("current_driver_id", sa.Integer, nullable=True),
        sa.Column("current_ride_id", sa.Integer, nullable=True),
        sa.Column("total_mileage", sa.Float, nullable=False, server_default="0"),
        sa.Column("monthly_mileage", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "last_mileage_reset",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index(
        "idx_vehicles_active_status", "vehicles", ["is_active", "status"]
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_code", sa.String(12), unique=True, nullable=False),
        sa.Column(
            "requester_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("requester_role", _enum("user_role"), nullable=False),
        sa.Column("ride_type", _enum("ride_type"), nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("destination_address", sa.String(255), nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("distance", sa.Float, nullable=False),
        sa.Column("calculated_distance", sa.Float, nullable=False),
        sa.Column("scheduled_date", sa.Date, nullable=False),
        sa.Column("scheduled_time", sa.String(5), nullable=False),
        sa.Column("status", _enum("ride_status"), nullable=False),
        sa.Column(
            "requires_pm_approval",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "is_pm_approved", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "is_admin_approved",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "assigned_driver_id",
            sa.Integer,
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        sa.Column(
            "assigned_vehicle_id",
            sa.Integer,
            sa.ForeignKey("vehicles.id"),
            nullable=True,
        ),
        sa.Column(
            "previous_driver_id",
            sa.Integer,
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        sa.Column(
            "previous_vehicle_id",
            sa.Integer,
            sa.ForeignKey("vehicles.id"),
            nullable=True,
        ),
        sa.Column("start_mileage", sa.Float, nullable=True),
        sa.Column("end_mileage", sa.Float, nullable=True),
        sa.Column("actual_distance", sa.Float, nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "pm_approved_by_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("pm_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "admin_approved_by_id",
            sa.Integer,
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        sa.Column("admin_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_approval_note", sa.Text, nullable=True),
        sa.Column(
            "rejected_by_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("rejected_by_role", _enum("user_role"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_requester", "rides", ["requester_id"])
    op.create_index(
        "idx_rides_schedule", "rides", ["scheduled_date", "scheduled_time"]
    )
    # One active booking per driver / vehicle per slot
    op.create_index(
        "uq_rides_driver_slot",
        "rides",
        ["assigned_driver_id", "scheduled_date", "scheduled_time"],
        unique=True,
        postgresql_where=ACTIVE_RIDE,
    )
    op.create_index(
        "uq_rides_vehicle_slot",
        "rides",
        ["assigned_vehicle_id", "scheduled_date", "scheduled_time"],
        unique=True,
        postgresql_where=ACTIVE_RIDE,
    )

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "recipient_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=True),
        sa.Column("event", _enum("notification_event"), nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "delivered", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "delivery_attempts", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_notifications_recipient", "notifications", ["recipient_id"]
    )
    op.create_index(
        "idx_notifications_pending",
        "notifications",
        ["delivered", "delivery_attempts"],
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("rides")
    op.drop_table("vehicles")
    op.drop_table("users")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
