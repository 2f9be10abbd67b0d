"""
FastAPI application factory.

* Registers routes for rides, vehicles, users, notifications and admin.
* Upserts the configured system accounts on startup.
* Starts / stops the background notification worker via lifespan events.
* Applies rate-limiting middleware and maps domain errors to HTTP.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import dispatch_error_handler, limiter
from src.api.routes import admin, notifications, rides, users, vehicles
from src.config import settings
from src.domain.errors import DispatchError
from src.infrastructure.database import async_session_factory
from src.infrastructure.redis_client import close_redis
from src.services.bootstrap import ensure_system_accounts
from src.workers import notifier as _notifier

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Seed system accounts and start the notification worker; stop on shutdown."""
    async with async_session_factory() as session:
        await ensure_system_accounts(session, settings.system_accounts)
        await session.commit()
    await _notifier.start_notification_loop()
    yield
    await _notifier.stop_notification_loop()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Fleet Dispatch API",
        description=(
            "Ride requests for a company vehicle fleet: two-tier approval "
            "for long trips, conflict-free driver and vehicle assignment, "
            "trip execution with mileage accounting, and notifications."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors -> {"detail": ...}
    app.add_exception_handler(DispatchError, dispatch_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(vehicles.router, prefix="/api/v1")
    app.include_router(users.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
