"""
Background Notification Worker
==============================

Runs every ``NOTIFICATION_INTERVAL_SECONDS`` (default 5 s) and drains the
``notifications`` outbox.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs a delivery
  cycle at a time across multiple API processes.
* **SELECT ... FOR UPDATE SKIP LOCKED** on the batch means a second
  worker that does get in (lock expiry) never double-sends a row.

Per row
-------
1. Hand it to the ``NotificationDispatcher``.
2. Success: mark ``delivered``.  Failure: bump ``delivery_attempts`` and
   keep ``last_error``; rows reaching ``NOTIFICATION_MAX_ATTEMPTS`` are
   no longer picked up.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import NotificationRepository, UserRepository
from src.services.notifications import LoggingDispatcher, NotificationDispatcher

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_notification_loop(
    dispatcher: Optional[NotificationDispatcher] = None,
) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(dispatcher or LoggingDispatcher()))
    logger.info(
        "Notification worker started (interval=%ds)",
        settings.notification_interval_seconds,
    )


async def stop_notification_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Notification worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(dispatcher: NotificationDispatcher) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_delivery_cycle(dispatcher)
        except Exception:
            logger.exception("Unhandled error in notification cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.notification_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_delivery_cycle(
    dispatcher: Optional[NotificationDispatcher] = None,
    session_factory=async_session_factory,
) -> int:
    """Execute one delivery cycle.  Returns the number of rows delivered."""
    dispatcher = dispatcher or LoggingDispatcher()
    redis = await get_redis()
    lock = DistributedLock(redis, "notification_outbox", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return 0

    delivered = 0
    try:
        async with session_factory() as session:
            batch = await NotificationRepository(session).get_undelivered_for_update(
                settings.notification_max_attempts, settings.notification_batch_size
            )
            if not batch:
                await session.commit()
                return 0

            recipients = {
                u.id: u
                for u in await UserRepository(session).get_many(
                    n.recipient_id for n in batch
                )
            }
            for notification in batch:
                notification.delivery_attempts += 1
                recipient = recipients.get(notification.recipient_id)
                if recipient is None:
                    notification.last_error = "recipient no longer exists"
                    continue
                try:
                    await dispatcher.send(notification, recipient)
                except Exception as exc:
                    notification.last_error = str(exc)[:500]
                    logger.warning(
                        "Delivery of notification %s failed (attempt %d): %s",
                        notification.id,
                        notification.delivery_attempts,
                        exc,
                    )
                    continue
                notification.delivered = True
                notification.delivered_at = datetime.now(timezone.utc)
                notification.last_error = None
                delivered += 1

            await session.commit()
            if delivered:
                logger.info("Notification cycle: %d delivered", delivered)
    except Exception:
        logger.exception("Error in notification cycle")
    finally:
        await lock.release()

    return delivered
