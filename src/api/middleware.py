"""Rate limiter and error translation shared by all routers."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config import settings
from src.domain.errors import DispatchError

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """Map a domain error onto its HTTP status with a ``detail`` body."""
    if exc.status_code >= 409:
        logger.info(
            "%s %s -> %d: %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
