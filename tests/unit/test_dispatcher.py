"""Unit tests for EventDispatcher channel filtering and delivery."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from chimes.core.models.job import Job
from chimes.core.scheduler.dispatcher import EventDispatcher


def _job(channel: str = 'jobs', name: str = 'j') -> Job:
    return Job(
        id=1,
        name=name,
        channel=channel,
        start_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
        params={'k': 'v'},
    )


@pytest.mark.unit
class TestChannelFilter:
    """Tests for the emitting_channels allow-list."""

    @pytest.mark.parametrize('channels', [None, []])
    def test_no_filter_emits_everything(self, channels: list[str] | None) -> None:
        dispatcher = EventDispatcher(channels)

        assert dispatcher.should_emit('anything') is True

    def test_filter_limits_channels(self) -> None:
        dispatcher = EventDispatcher(['A', 'B'])

        assert dispatcher.should_emit('A') is True
        assert dispatcher.should_emit('B') is True
        assert dispatcher.should_emit('C') is False

    @pytest.mark.asyncio
    async def test_filtered_channel_not_delivered(self) -> None:
        dispatcher = EventDispatcher(['A'])
        handler = MagicMock()
        dispatcher.subscribe('C', handler)

        delivered = await dispatcher.emit(_job('C'))

        assert delivered == 0
        handler.assert_not_called()


@pytest.mark.unit
class TestHandlers:
    """Tests for handler subscriptions."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers_receive_job(self) -> None:
        dispatcher = EventDispatcher()
        sync_handler = MagicMock(return_value=None)
        async_handler = AsyncMock()
        dispatcher.subscribe('jobs', sync_handler)
        dispatcher.subscribe('jobs', async_handler)
        job = _job()

        delivered = await dispatcher.emit(job)

        assert delivered == 2
        sync_handler.assert_called_once_with(job)
        async_handler.assert_awaited_once_with(job)

    @pytest.mark.asyncio
    async def test_only_matching_channel(self) -> None:
        dispatcher = EventDispatcher()
        other = MagicMock()
        dispatcher.subscribe('other', other)

        assert await dispatcher.emit(_job('jobs')) == 0
        other.assert_not_called()

    @pytest.mark.asyncio
    async def test_raising_handler_does_not_stop_delivery(self) -> None:
        dispatcher = EventDispatcher()
        failing = MagicMock(side_effect=RuntimeError('handler bug'))
        healthy = MagicMock(return_value=None)
        dispatcher.subscribe('jobs', failing)
        dispatcher.subscribe('jobs', healthy)

        delivered = await dispatcher.emit(_job())

        assert delivered == 1
        healthy.assert_called_once()

    @pytest.mark.asyncio
    async def test_handlers_called_in_registration_order(self) -> None:
        dispatcher = EventDispatcher()
        calls: list[str] = []
        dispatcher.subscribe('jobs', lambda job: calls.append('first'))
        dispatcher.subscribe('jobs', lambda job: calls.append('second'))

        await dispatcher.emit(_job())

        assert calls == ['first', 'second']

    def test_unsubscribe(self) -> None:
        dispatcher = EventDispatcher()
        handler = MagicMock()
        dispatcher.subscribe('jobs', handler)

        assert dispatcher.unsubscribe('jobs', handler) is True
        assert dispatcher.unsubscribe('jobs', handler) is False
        assert dispatcher.subscriber_count('jobs') == 0


@pytest.mark.unit
class TestQueues:
    """Tests for queue subscriptions."""

    @pytest.mark.asyncio
    async def test_queue_receives_job_with_params(self) -> None:
        dispatcher = EventDispatcher()
        queue = dispatcher.listen('jobs')

        await dispatcher.emit(_job())

        received = queue.get_nowait()
        assert received.name == 'j'
        assert received.params == {'k': 'v'}

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_blocking(self) -> None:
        dispatcher = EventDispatcher()
        queue = dispatcher.listen('jobs', maxsize=1)

        assert await dispatcher.emit(_job(name='first')) == 1
        assert await dispatcher.emit(_job(name='second')) == 0

        assert queue.qsize() == 1
        assert queue.get_nowait().name == 'first'

    def test_unlisten_and_clear(self) -> None:
        dispatcher = EventDispatcher()
        q1 = dispatcher.listen('jobs')
        dispatcher.listen('jobs')
        dispatcher.subscribe('jobs', MagicMock())

        assert dispatcher.subscriber_count('jobs') == 3
        assert dispatcher.unlisten('jobs', q1) is True
        assert dispatcher.unlisten('jobs', q1) is False

        dispatcher.clear()

        assert dispatcher.subscriber_count('jobs') == 0
