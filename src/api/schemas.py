"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.enums import (
    DriverStatus,
    NotificationEvent,
    RideStatus,
    RideType,
    UserRole,
    VehicleStatus,
    VehicleType,
)


# ── Requests ──────────────────────────────────────────────────────────


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PlaceIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=255)
    coordinates: Coordinates


class RideCreateRequest(BaseModel):
    ride_type: RideType
    pickup_location: PlaceIn
    destination_location: PlaceIn
    scheduled_date: str = Field(..., description="ISO date, e.g. 2026-10-20")
    scheduled_time: str = Field(..., description="24h time, HH:MM")
    distance: Optional[float] = Field(
        None,
        ge=0,
        description="One-way distance in km; estimated from coordinates if omitted.",
    )
    notes: str = Field("", max_length=500)


class ApproveRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=500)


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AssignRequest(BaseModel):
    driver_id: int
    vehicle_id: int


class StartRideRequest(BaseModel):
    start_mileage: Optional[float] = Field(None, allow_inf_nan=False)


class CompleteRideRequest(BaseModel):
    end_mileage: Optional[float] = Field(None, allow_inf_nan=False)


class VehicleCreateRequest(BaseModel):
    vehicle_number: str = Field(..., min_length=1, max_length=20)
    type: VehicleType = VehicleType.CAR


class VehicleUpdateRequest(BaseModel):
    vehicle_number: Optional[str] = Field(None, min_length=1, max_length=20)
    type: Optional[VehicleType] = None
    status: Optional[VehicleStatus] = None


class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    phone: str = Field(..., pattern=r"^\+?[0-9]{9,15}$")
    password: str = Field(..., min_length=8, max_length=72)
    role: UserRole = UserRole.USER


class UserUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{9,15}$")
    status: Optional[DriverStatus] = None


class MarkReadRequest(BaseModel):
    ids: Optional[list[int]] = Field(
        None, description="Notification ids to mark; all unread when omitted."
    )


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    ride_code: str
    requester_id: int
    requester_role: UserRole
    ride_type: RideType
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    destination_address: str
    destination_lat: float
    destination_lng: float
    distance: float
    calculated_distance: float
    scheduled_date: date
    scheduled_time: str
    status: RideStatus
    requires_pm_approval: bool
    is_pm_approved: bool
    is_admin_approved: bool
    assigned_driver_id: Optional[int] = None
    assigned_vehicle_id: Optional[int] = None
    previous_driver_id: Optional[int] = None
    previous_vehicle_id: Optional[int] = None
    start_mileage: Optional[float] = None
    end_mileage: Optional[float] = None
    actual_distance: Optional[float] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    admin_approval_note: Optional[str] = None
    rejected_by_role: Optional[UserRole] = None
    rejection_reason: Optional[str] = None
    notes: str = ""
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideListResponse(BaseModel):
    rides: list[RideResponse]
    total: int
    page: int
    pages: int


class RideStatsResponse(BaseModel):
    total_rides: int
    completed_rides: int
    pending_rides: int
    total_distance: float


class DriverDailyResponse(BaseModel):
    day: date
    rides: list[RideResponse]
    active_count: int
    completed_count: int


class DriverAvailability(BaseModel):
    id: int
    name: str
    phone: str
    status: DriverStatus
    is_available: bool


class VehicleAvailability(BaseModel):
    id: int
    vehicle_number: str
    type: VehicleType
    status: VehicleStatus
    is_available: bool


class VehicleResponse(BaseModel):
    id: int
    vehicle_number: str
    type: VehicleType
    status: VehicleStatus
    current_driver_id: Optional[int] = None
    current_ride_id: Optional[int] = None
    total_mileage: float
    monthly_mileage: float
    last_mileage_reset: Optional[datetime] = None
    total_rides: int

    model_config = {"from_attributes": True}


class MileageResetResponse(BaseModel):
    vehicles_reset: int


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    role: UserRole
    status: DriverStatus
    assigned_vehicle_id: Optional[int] = None
    current_ride_id: Optional[int] = None
    total_rides: int
    total_distance: float
    is_hardcoded: bool

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    page: int
    pages: int


class NotificationResponse(BaseModel):
    id: int
    ride_id: Optional[int] = None
    event: NotificationEvent
    title: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkReadResponse(BaseModel):
    updated: int


class OverviewResponse(BaseModel):
    awaiting_approval: int
    ready_for_assignment: int
    active: int
    vehicles: dict[str, int]


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
