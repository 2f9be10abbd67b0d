"""
In-app notification inbox
=========================

GET   /api/v1/notifications            -- caller's latest notifications
PATCH /api/v1/notifications/read       -- mark some (or all) as read
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_actor, get_db
from src.api.middleware import limiter
from src.api.schemas import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)
from src.config import settings
from src.domain.entities import Actor
from src.infrastructure.repositories import NotificationRepository

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse, summary="List my notifications")
@limiter.limit(settings.rate_limit)
async def list_notifications(
    request: Request,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    repo = NotificationRepository(db)
    items = await repo.list_for_recipient(actor.user_id, unread_only, limit)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in items],
        unread_count=await repo.count_unread(actor.user_id),
    )


@router.patch("/read", response_model=MarkReadResponse, summary="Mark notifications read")
@limiter.limit(settings.rate_limit)
async def mark_read(
    request: Request,
    body: Optional[MarkReadRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    ids = body.ids if body else None
    updated = await NotificationRepository(db).mark_read(actor.user_id, ids)
    return MarkReadResponse(updated=updated)
