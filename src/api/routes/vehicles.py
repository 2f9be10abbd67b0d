"""
Vehicle endpoints
=================

GET    /api/v1/vehicles                     -- active fleet (optional ?status=)
GET    /api/v1/vehicles/counts              -- vehicles per status
POST   /api/v1/vehicles                     -- add a vehicle
POST   /api/v1/vehicles/reset-mileage       -- zero monthly mileage
GET    /api/v1/vehicles/{vehicle_id}        -- one vehicle
PATCH  /api/v1/vehicles/{vehicle_id}        -- edit number / type / status
PATCH  /api/v1/vehicles/{vehicle_id}/maintenance
DELETE /api/v1/vehicles/{vehicle_id}        -- soft delete
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_actor, get_db
from src.api.middleware import limiter
from src.api.schemas import (
    MileageResetResponse,
    VehicleCreateRequest,
    VehicleResponse,
    VehicleUpdateRequest,
)
from src.config import settings
from src.domain.entities import Actor
from src.domain.enums import VehicleStatus
from src.services.fleet import FleetService

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.get("", response_model=list[VehicleResponse], summary="List active vehicles")
@limiter.limit(settings.rate_limit)
async def list_vehicles(
    request: Request,
    status: Optional[VehicleStatus] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).list_vehicles(status)


@router.get("/counts", response_model=dict[str, int], summary="Vehicle counts by status")
@limiter.limit(settings.rate_limit)
async def vehicle_counts(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).vehicle_counts()


@router.post("", status_code=201, response_model=VehicleResponse, summary="Add a vehicle")
@limiter.limit(settings.rate_limit)
async def create_vehicle(
    request: Request,
    body: VehicleCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).create_vehicle(actor, body.vehicle_number, body.type)


@router.post(
    "/reset-mileage",
    response_model=MileageResetResponse,
    summary="Reset monthly mileage on every active vehicle",
)
@limiter.limit(settings.rate_limit)
async def reset_mileage(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    count = await FleetService(db).reset_monthly_mileage(actor)
    return MileageResetResponse(vehicles_reset=count)


@router.get("/{vehicle_id}", response_model=VehicleResponse, summary="Get one vehicle")
@limiter.limit(settings.rate_limit)
async def get_vehicle(
    request: Request,
    vehicle_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).get_vehicle(vehicle_id)


@router.patch("/{vehicle_id}", response_model=VehicleResponse, summary="Edit a vehicle")
@limiter.limit(settings.rate_limit)
async def update_vehicle(
    request: Request,
    vehicle_id: int,
    body: VehicleUpdateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).update_vehicle(
        actor,
        vehicle_id,
        vehicle_number=body.vehicle_number,
        type=body.type,
        status=body.status,
    )


@router.patch(
    "/{vehicle_id}/maintenance",
    response_model=VehicleResponse,
    summary="Take a vehicle out of service",
)
@limiter.limit(settings.rate_limit)
async def set_maintenance(
    request: Request,
    vehicle_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).set_maintenance(actor, vehicle_id)


@router.delete("/{vehicle_id}", status_code=204, summary="Remove a vehicle from the fleet")
@limiter.limit(settings.rate_limit)
async def delete_vehicle(
    request: Request,
    vehicle_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    await FleetService(db).delete_vehicle(actor, vehicle_id)
