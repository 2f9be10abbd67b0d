"""
Ride endpoints
==============

POST  /api/v1/rides                          -- request a ride
GET   /api/v1/rides                          -- role-scoped listing
GET   /api/v1/rides/my-stats                 -- caller's ride counters
GET   /api/v1/rides/awaiting-pm              -- long rides waiting on a PM
GET   /api/v1/rides/awaiting-admin           -- rides waiting on an admin
GET   /api/v1/rides/ready-for-assignment     -- approved, unassigned rides
GET   /api/v1/rides/available-drivers        -- drivers free at a slot
GET   /api/v1/rides/available-vehicles       -- vehicles free at a slot
GET   /api/v1/rides/driver/assigned          -- driver's active rides
GET   /api/v1/rides/driver/daily             -- driver's rides for a day
GET   /api/v1/rides/{ride_id}                -- one ride
PATCH /api/v1/rides/{ride_id}/<action>       -- lifecycle transitions
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_actor, get_db, require_roles
from src.api.middleware import limiter
from src.api.schemas import (
    ApproveRequest,
    AssignRequest,
    CompleteRideRequest,
    DriverAvailability,
    DriverDailyResponse,
    RejectRequest,
    RideCreateRequest,
    RideListResponse,
    RideResponse,
    RideStatsResponse,
    StartRideRequest,
    VehicleAvailability,
)
from src.config import settings
from src.domain.booking import parse_scheduled_date
from src.domain.entities import Actor, Location
from src.domain.enums import UserRole
from src.services.rides import Place, RideService, parse_status_filter

router = APIRouter(prefix="/rides", tags=["rides"])

admin_only = require_roles(UserRole.ADMIN)
driver_only = require_roles(UserRole.DRIVER)
pm_or_admin = require_roles(UserRole.PROJECT_MANAGER, UserRole.ADMIN)


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    pickup = body.pickup_location
    destination = body.destination_location
    return await RideService(db).create_ride(
        actor,
        ride_type=body.ride_type,
        pickup=Place(
            pickup.address,
            Location(pickup.coordinates.lat, pickup.coordinates.lng),
        ),
        destination=Place(
            destination.address,
            Location(destination.coordinates.lat, destination.coordinates.lng),
        ),
        scheduled_date=body.scheduled_date,
        scheduled_time=body.scheduled_time,
        distance=body.distance,
        notes=body.notes,
    )


@router.get("", response_model=RideListResponse, summary="List rides visible to the caller")
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    status: Optional[list[str]] = Query(None),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    rides, total = await RideService(db).list_rides(
        actor,
        statuses=parse_status_filter(status),
        start_date=parse_scheduled_date(start_date) if start_date else None,
        end_date=parse_scheduled_date(end_date) if end_date else None,
        page=page,
        limit=limit,
    )
    return RideListResponse(
        rides=[RideResponse.model_validate(r) for r in rides],
        total=total,
        page=page,
        pages=math.ceil(total / limit),
    )


@router.get("/my-stats", response_model=RideStatsResponse, summary="Caller's ride stats")
@limiter.limit(settings.rate_limit)
async def my_stats(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    stats = await RideService(db).my_ride_stats(actor)
    return RideStatsResponse(**vars(stats))


@router.get(
    "/awaiting-pm",
    response_model=list[RideResponse],
    summary="Long-distance rides not yet approved by anyone",
)
@limiter.limit(settings.rate_limit)
async def awaiting_pm(
    request: Request,
    actor: Actor = Depends(pm_or_admin),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).rides_awaiting_pm()


@router.get(
    "/awaiting-admin",
    response_model=list[RideResponse],
    summary="Rides waiting for approval",
)
@limiter.limit(settings.rate_limit)
async def awaiting_admin(
    request: Request,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).rides_awaiting_admin()


@router.get(
    "/ready-for-assignment",
    response_model=list[RideResponse],
    summary="Approved rides waiting for a driver and vehicle",
)
@limiter.limit(settings.rate_limit)
async def ready_for_assignment(
    request: Request,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).rides_ready_for_assignment()


@router.get(
    "/available-drivers",
    response_model=list[DriverAvailability],
    summary="Drivers flagged by availability at a slot",
)
@limiter.limit(settings.rate_limit)
async def available_drivers(
    request: Request,
    date: str,
    time: str,
    exclude_ride_id: Optional[int] = None,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    rows = await RideService(db).available_drivers(date, time, exclude_ride_id)
    return [
        DriverAvailability(
            id=d.id, name=d.name, phone=d.phone, status=d.status, is_available=free
        )
        for d, free in rows
    ]


@router.get(
    "/available-vehicles",
    response_model=list[VehicleAvailability],
    summary="Vehicles flagged by availability at a slot",
)
@limiter.limit(settings.rate_limit)
async def available_vehicles(
    request: Request,
    date: str,
    time: str,
    exclude_ride_id: Optional[int] = None,
    actor: Actor = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    rows = await RideService(db).available_vehicles(date, time, exclude_ride_id)
    return [
        VehicleAvailability(
            id=v.id,
            vehicle_number=v.vehicle_number,
            type=v.type,
            status=v.status,
            is_available=free,
        )
        for v, free in rows
    ]


@router.get(
    "/driver/assigned",
    response_model=list[RideResponse],
    summary="Driver's assigned and in-progress rides",
)
@limiter.limit(settings.rate_limit)
async def driver_assigned(
    request: Request,
    actor: Actor = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).driver_assigned_rides(actor)


@router.get(
    "/driver/daily",
    response_model=DriverDailyResponse,
    summary="Driver's rides for one day (default today)",
)
@limiter.limit(settings.rate_limit)
async def driver_daily(
    request: Request,
    date: Optional[str] = None,
    actor: Actor = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    service = RideService(db)
    on = parse_scheduled_date(date) if date else service.today()
    rides, active, done = await service.driver_daily_rides(actor, on)
    return DriverDailyResponse(
        day=on,
        rides=[RideResponse.model_validate(r) for r in rides],
        active_count=active,
        completed_count=done,
    )


@router.get("/{ride_id}", response_model=RideResponse, summary="Get one ride")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).get_ride(ride_id, actor)


# ── Lifecycle actions ─────────────────────────────────────────────────


@router.patch("/{ride_id}/pm-approve", response_model=RideResponse, summary="PM approval")
@limiter.limit(settings.rate_limit)
async def pm_approve(
    request: Request,
    ride_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).pm_approve(ride_id, actor)


@router.patch("/{ride_id}/pm-reject", response_model=RideResponse, summary="PM rejection")
@limiter.limit(settings.rate_limit)
async def pm_reject(
    request: Request,
    ride_id: int,
    body: Optional[RejectRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    return await RideService(db).pm_reject(ride_id, actor, reason)


@router.patch(
    "/{ride_id}/admin-approve",
    response_model=RideResponse,
    summary="Admin approval",
    description="A note is required when the ride is long-distance.",
)
@limiter.limit(settings.rate_limit)
async def admin_approve(
    request: Request,
    ride_id: int,
    body: Optional[ApproveRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    note = body.note if body else None
    return await RideService(db).admin_approve(ride_id, actor, note)


@router.patch("/{ride_id}/admin-reject", response_model=RideResponse, summary="Admin rejection")
@limiter.limit(settings.rate_limit)
async def admin_reject(
    request: Request,
    ride_id: int,
    body: Optional[RejectRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    return await RideService(db).admin_reject(ride_id, actor, reason)


@router.patch(
    "/{ride_id}/assign",
    response_model=RideResponse,
    summary="Assign a driver and vehicle",
    responses={409: {"description": "Driver or vehicle already booked at this slot."}},
)
@limiter.limit(settings.rate_limit)
async def assign(
    request: Request,
    ride_id: int,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).assign(ride_id, actor, body.driver_id, body.vehicle_id)


@router.patch(
    "/{ride_id}/reassign",
    response_model=RideResponse,
    summary="Swap the driver and/or vehicle of an assigned ride",
)
@limiter.limit(settings.rate_limit)
async def reassign(
    request: Request,
    ride_id: int,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).reassign(
        ride_id, actor, body.driver_id, body.vehicle_id
    )


@router.patch("/{ride_id}/start", response_model=RideResponse, summary="Driver starts the trip")
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: int,
    body: StartRideRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).start(ride_id, actor, body.start_mileage)


@router.patch(
    "/{ride_id}/complete", response_model=RideResponse, summary="Driver completes the trip"
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: int,
    body: CompleteRideRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).complete(ride_id, actor, body.end_mileage)


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description="Only the requester or an admin, and only before approval.",
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).cancel(ride_id, actor)
