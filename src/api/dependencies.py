"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Actor
from src.domain.enums import UserRole
from src.domain.errors import PermissionDenied
from src.infrastructure.database import async_session_factory


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Identity forwarded by the auth gateway as ``X-User-Id`` / ``X-User-Role``."""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return Actor(user_id=int(x_user_id), role=UserRole(x_user_role.lower()))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid identity headers")


def require_roles(*roles: UserRole):
    """Dependency factory: the caller must hold one of *roles*."""
    allowed = frozenset(roles)
    label = " or ".join(r.value.replace("_", " ") for r in roles)

    async def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in allowed:
            raise PermissionDenied(f"Access denied. {label.capitalize()} only.")
        return actor

    return _check
