"""In-process fan-out of backup events.

Emission is synchronous on the event loop and every subscriber has its own
FIFO queue, so events for one drive reach each subscriber in the order they
were emitted.

A subscriber that falls behind by queue_size events stops receiving
progress and log lines until it catches up. Every other event, including
backup-complete, is always delivered.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from dbo.backup.models import EVENT_BACKUP_LOG, EVENT_BACKUP_PROGRESS, BackupEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000

# Later events of the same kind supersede these
DROPPABLE_EVENTS = frozenset({EVENT_BACKUP_PROGRESS, EVENT_BACKUP_LOG})


class EventBus:
    """Broadcast BackupEvents to any number of subscribers.

    Example:
        queue = bus.subscribe_queue()
        try:
            event = await queue.get()
        finally:
            bus.unsubscribe(queue)
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: list[asyncio.Queue[BackupEvent]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe_queue(self) -> asyncio.Queue[BackupEvent]:
        queue: asyncio.Queue[BackupEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[BackupEvent]) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass

    async def subscribe(self) -> AsyncIterator[BackupEvent]:
        """Yield events until the consumer stops iterating."""
        queue = self.subscribe_queue()
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(queue)

    def emit(
        self, name: str, payload: dict[str, Any], drive_id: int | None = None
    ) -> BackupEvent:
        """Deliver an event to every subscriber.

        A subscriber with queue_size events pending misses progress and log
        events; the others are unaffected.
        """
        event = BackupEvent(name=name, payload=payload, drive_id=drive_id)
        droppable = name in DROPPABLE_EVENTS
        for queue in list(self._subscribers):
            if droppable and queue.qsize() >= self._queue_size:
                logger.debug("Event subscriber lagging, dropping %s", name)
                continue
            queue.put_nowait(event)
        return event
