"""
Resource events - lifecycle events for watched dashboard resources.

Events are produced by the watch source (on a worker thread) and consumed
in delivery order by a single dispatcher coroutine through an unbounded
asyncio queue.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from dashboards import DashboardResource

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of resource events."""

    ADDED = "ADDED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"


@dataclass
class ResourceEvent:
    """Event emitted when a watched resource changes."""

    event_type: EventType
    resource: DashboardResource
    old_resource: Optional[DashboardResource] = None

    @classmethod
    def added(cls, resource: DashboardResource) -> "ResourceEvent":
        return cls(EventType.ADDED, resource)

    @classmethod
    def updated(
        cls, old: DashboardResource, new: DashboardResource
    ) -> "ResourceEvent":
        return cls(EventType.UPDATED, new, old_resource=old)

    @classmethod
    def deleted(cls, resource: DashboardResource) -> "ResourceEvent":
        return cls(EventType.DELETED, resource)


EventCallback = Callable[[ResourceEvent], None]


class EventSubscription:
    """
    Async iterator for consuming events from a queue.

    A ``None`` sentinel value stops iteration.
    """

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def __aiter__(self) -> AsyncIterator[ResourceEvent]:
        return self

    async def __anext__(self) -> ResourceEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventQueue:
    """
    Unbounded event queue bridging a producer thread and the event loop.

    ``publish`` may be called from any thread; events keep the order in
    which they were published. ``close`` enqueues the sentinel that ends
    every subscription.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def publish(self, event: ResourceEvent) -> None:
        """Publish an event from any thread."""
        if self._closed:
            logger.debug(f"Dropped {event.event_type.value} event: queue closed")
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def close(self) -> None:
        """Stop delivering events to the subscription."""
        if self._closed:
            return
        self._closed = True
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    def subscribe(self) -> EventSubscription:
        return EventSubscription(self._queue)
