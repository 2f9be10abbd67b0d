"""Notification outbox worker tests (mocked Redis, SQLite store)."""

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from src.config import settings
from src.domain.enums import NotificationEvent
from src.infrastructure.models import NotificationModel
from src.services.rides import RideService
from src.workers import notifier
from tests.conftest import book


@pytest.fixture
def redis_mock():
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    with patch("src.workers.notifier.get_redis", AsyncMock(return_value=client)):
        yield client


async def _outbox(session):
    result = await session.execute(
        select(NotificationModel)
        .order_by(NotificationModel.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _queue_one(session, fleet):
    await book(RideService(session), fleet["user"])
    await session.commit()


class TestDeliveryCycle:
    @pytest.mark.asyncio
    async def test_delivers_and_marks_rows(self, db_session, session_factory, fleet, redis_mock):
        await _queue_one(db_session, fleet)
        dispatcher = AsyncMock()

        delivered = await notifier.run_delivery_cycle(dispatcher, session_factory)

        assert delivered == 1
        sent, recipient = dispatcher.send.await_args.args
        assert sent.event == NotificationEvent.RIDE_CREATED
        assert recipient.id == fleet["admin"].id

        [row] = await _outbox(db_session)
        assert row.delivered is True
        assert row.delivery_attempts == 1
        assert row.delivered_at is not None
        redis_mock.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_retried(
        self, db_session, session_factory, fleet, redis_mock
    ):
        await _queue_one(db_session, fleet)
        dispatcher = AsyncMock()
        dispatcher.send.side_effect = ConnectionError("smtp down")

        assert await notifier.run_delivery_cycle(dispatcher, session_factory) == 0

        [row] = await _outbox(db_session)
        await db_session.commit()
        assert row.delivered is False
        assert row.delivery_attempts == 1
        assert row.last_error == "smtp down"

        for _ in range(settings.notification_max_attempts):
            await notifier.run_delivery_cycle(dispatcher, session_factory)

        # rows that used up their attempts are left alone
        assert dispatcher.send.await_count == settings.notification_max_attempts

    @pytest.mark.asyncio
    async def test_skips_cycle_when_lock_is_held(
        self, db_session, session_factory, fleet, redis_mock
    ):
        await _queue_one(db_session, fleet)
        redis_mock.set = AsyncMock(return_value=False)
        dispatcher = AsyncMock()

        assert await notifier.run_delivery_cycle(dispatcher, session_factory) == 0

        dispatcher.send.assert_not_awaited()
        redis_mock.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_dispatcher_logs(
        self, db_session, session_factory, fleet, redis_mock, caplog
    ):
        await _queue_one(db_session, fleet)

        with caplog.at_level(logging.INFO, logger="src.services.notifications"):
            assert await notifier.run_delivery_cycle(session_factory=session_factory) == 1

        assert "New Ride Request" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_outbox(self, session_factory, fleet, redis_mock):
        assert await notifier.run_delivery_cycle(AsyncMock(), session_factory) == 0
        redis_mock.eval.assert_awaited_once()


@pytest.mark.asyncio
async def test_loop_start_and_stop():
    with patch(
        "src.workers.notifier.run_delivery_cycle", AsyncMock(return_value=0)
    ) as cycle:
        await notifier.start_notification_loop()
        await asyncio.sleep(0)
        await notifier.stop_notification_loop()

    cycle.assert_awaited()
