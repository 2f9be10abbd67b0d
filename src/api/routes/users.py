"""
User endpoints
==============

POST   /api/v1/users              -- admin creates an account
GET    /api/v1/users              -- admin directory (?role= &status= &search= &page= &limit=)
GET    /api/v1/users/counts       -- accounts per role, plus available drivers
GET    /api/v1/users/drivers      -- all drivers
GET    /api/v1/users/{user_id}    -- one account
PATCH  /api/v1/users/{user_id}    -- edit name / phone / status
DELETE /api/v1/users/{user_id}    -- remove an account without ride history

System accounts (``is_hardcoded``) cannot be edited or deleted.
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_actor, get_db, require_roles
from src.api.middleware import limiter
from src.api.schemas import (
    UserCreateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)
from src.config import settings
from src.domain.entities import Actor
from src.domain.enums import DriverStatus, UserRole
from src.domain.errors import PermissionDenied
from src.services.fleet import FleetService

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", status_code=201, response_model=UserResponse, summary="Create a user")
@limiter.limit(settings.rate_limit)
async def create_user(
    request: Request,
    body: UserCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).create_user(
        actor,
        name=body.name,
        email=body.email,
        phone=body.phone,
        password=body.password,
        role=body.role,
    )


@router.get("", response_model=UserListResponse, summary="Search user accounts")
@limiter.limit(settings.rate_limit)
async def list_users(
    request: Request,
    role: Optional[UserRole] = None,
    status: Optional[DriverStatus] = None,
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    users, total = await FleetService(db).list_users(
        actor, role=role, status=status, search=search, page=page, limit=limit
    )
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        pages=math.ceil(total / limit),
    )


@router.get("/counts", response_model=dict[str, int], summary="User counts by role")
@limiter.limit(settings.rate_limit)
async def user_counts(
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).user_counts(actor)


@router.get("/drivers", response_model=list[UserResponse], summary="List drivers")
@limiter.limit(settings.rate_limit)
async def list_drivers(
    request: Request,
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.PROJECT_MANAGER)),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).list_drivers()


@router.get("/{user_id}", response_model=UserResponse, summary="Get a user")
@limiter.limit(settings.rate_limit)
async def get_user(
    request: Request,
    user_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    if user_id != actor.user_id and not actor.is_admin:
        raise PermissionDenied("Access denied")
    return await FleetService(db).get_user(user_id)


@router.patch("/{user_id}", response_model=UserResponse, summary="Edit a user")
@limiter.limit(settings.rate_limit)
async def update_user(
    request: Request,
    user_id: int,
    body: UserUpdateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await FleetService(db).update_user(
        actor, user_id, name=body.name, phone=body.phone, status=body.status
    )


@router.delete("/{user_id}", status_code=204, summary="Delete a user")
@limiter.limit(settings.rate_limit)
async def delete_user(
    request: Request,
    user_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    await FleetService(db).delete_user(actor, user_id)
