"""
Channel-keyed publish/subscribe for claimed job occurrences.

Flow:
  1. A scheduler wins a claim for a due job
  2. The engine hands the post-claim Job to EventDispatcher.emit()
  3. If the job's channel passes the allow-list, every handler and queue
     subscribed to that channel receives the Job

Two subscription styles:
  - Handlers: sync or async callables invoked in registration order
  - Queues: asyncio.Queue[Job] per subscriber, for consumers that prefer
    pulling (same shape as a LISTEN/NOTIFY subscriber queue)
"""

from __future__ import annotations
import asyncio
import inspect
from asyncio import Queue
from collections import defaultdict
from typing import Any, Awaitable, Callable, DefaultDict, Optional, Sequence, Union

from chimes.core.logging import get_logger
from chimes.core.models.job import Job

logger = get_logger('dispatcher')

_SUBSCRIBER_QUEUE_MAXSIZE: int = 4096

JobHandler = Callable[[Job], Union[None, Awaitable[Any]]]


class EventDispatcher:
    """
    Emits claimed jobs on their channel.

    Usage:
    ------
    dispatcher = EventDispatcher(emitting_channels=['billing'])
    dispatcher.subscribe('billing', handle_billing)

    queue = dispatcher.listen('billing')
    job = await queue.get()

    Notes:
    ------
    * An empty or absent allow-list emits on every channel
    * A raising handler is logged; delivery to the others continues
    * put_nowait() keeps slow queue consumers from blocking emission
      (events are dropped with a warning when a queue is full)
    """

    def __init__(self, emitting_channels: Optional[Sequence[str]] = None) -> None:
        self.emitting_channels: frozenset[str] = frozenset(emitting_channels or ())
        self._handlers: DefaultDict[str, list[JobHandler]] = defaultdict(list)
        self._queues: DefaultDict[str, set[Queue[Job]]] = defaultdict(set)

    def should_emit(self, channel: str) -> bool:
        if not self.emitting_channels:
            return True
        return channel in self.emitting_channels

    def subscribe(self, channel: str, handler: JobHandler) -> None:
        self._handlers[channel].append(handler)

    def unsubscribe(self, channel: str, handler: JobHandler) -> bool:
        handlers = self._handlers.get(channel)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._handlers[channel]
        return True

    def listen(self, channel: str, maxsize: int = _SUBSCRIBER_QUEUE_MAXSIZE) -> Queue[Job]:
        """Subscribe a new queue to a channel and return it."""
        q: Queue[Job] = Queue(maxsize=maxsize)
        self._queues[channel].add(q)
        return q

    def unlisten(self, channel: str, q: Queue[Job]) -> bool:
        queues = self._queues.get(channel)
        if queues is None or q not in queues:
            return False
        queues.discard(q)
        if not queues:
            del self._queues[channel]
        return True

    def clear(self) -> None:
        """Drop every handler and queue subscription."""
        self._handlers.clear()
        self._queues.clear()

    def subscriber_count(self, channel: str) -> int:
        return len(self._handlers.get(channel, ())) + len(self._queues.get(channel, ()))

    async def emit(self, job: Job) -> int:
        """
        Deliver a claimed job to the subscribers of its channel.

        Returns:
            Number of handlers/queues that received the job
            (0 when the channel is filtered out or has no subscribers)
        """
        channel = job.channel
        if not self.should_emit(channel):
            logger.debug(f"Channel '{channel}' not in emitting channels, skipping '{job.name}'")
            return 0

        delivered = 0
        for handler in list(self._handlers.get(channel, ())):
            try:
                outcome = handler(job)
                if inspect.isawaitable(outcome):
                    await outcome
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)!r} failed for job "
                    f"'{job.name}' on channel '{channel}': {e}",
                    exc_info=True,
                )

        for q in list(self._queues.get(channel, ())):
            try:
                q.put_nowait(job)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    f"Subscriber queue full on channel '{channel}', dropping '{job.name}'"
                )

        logger.debug(f"Emitted '{job.name}' on '{channel}' to {delivered} subscriber(s)")
        return delivered
