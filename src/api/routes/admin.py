"""
Admin / observability endpoints
===============================

GET /api/v1/admin/overview -- dashboard counters (rides by stage, fleet)
GET /api/v1/admin/health   -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, require_roles
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, OverviewResponse
from src.config import settings
from src.domain.entities import Actor
from src.domain.enums import (
    ACTIVE_STATUSES,
    AWAITING_APPROVAL,
    READY_FOR_ASSIGNMENT,
    UserRole,
)
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import RideRepository
from src.services.fleet import FleetService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/overview",
    response_model=OverviewResponse,
    summary="Ride pipeline and fleet counters",
)
@limiter.limit(settings.rate_limit)
async def overview(
    request: Request,
    actor: Actor = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    rides = RideRepository(db)
    return OverviewResponse(
        awaiting_approval=await rides.count(
            RideModel.status.in_(list(AWAITING_APPROVAL))
        ),
        ready_for_assignment=await rides.count(
            RideModel.status.in_(list(READY_FOR_ASSIGNMENT))
        ),
        active=await rides.count(RideModel.status.in_(list(ACTIVE_STATUSES))),
        vehicles=await FleetService(db).vehicle_counts(),
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
