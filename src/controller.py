"""
Dashboard Controller - the watch loop and event dispatcher.

Consumes resource events strictly one at a time, in delivery order, and
routes managed resources to the reconciler. The watch source runs on a
daemon thread and feeds the controller through an EventQueue.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Optional, Protocol

from dashboards import is_managed
from events import EventCallback, EventQueue, EventType, ResourceEvent
from reconciler import DashboardReconciler, SyncResult

logger = logging.getLogger(__name__)


class EventSource(Protocol):
    """Blocking producer of resource events (see ConfigMapWatcher)."""

    def run(self, emit: EventCallback) -> None: ...

    def stop(self) -> None: ...


class ControllerState(Enum):
    """Lifecycle of a controller. Stopped is terminal."""

    IDLE = "idle"
    WATCHING = "watching"
    STOPPED = "stopped"


class DashboardController:
    """
    Keeps Grafana dashboards in sync with dashboard ConfigMaps.

    A controller is started once; after it stops it cannot be restarted.
    """

    def __init__(self, reconciler: DashboardReconciler, source: EventSource):
        self.reconciler = reconciler
        self.source = source
        self.state = ControllerState.IDLE
        self._queue: Optional[EventQueue] = None
        self._source_thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.state is ControllerState.WATCHING

    async def start(self) -> None:
        """Start watching and dispatch events until stopped."""
        if self.state is not ControllerState.IDLE:
            raise RuntimeError(f"Controller cannot start from state {self.state.value}")

        logger.info("Starting dashboard controller")
        self.state = ControllerState.WATCHING
        self._queue = EventQueue(asyncio.get_running_loop())
        self._source_thread = threading.Thread(
            target=self._run_source, name="configmap-watch", daemon=True
        )
        self._source_thread.start()

        try:
            async for event in self._queue.subscribe():
                if not self.running:
                    break
                await self.dispatch(event)
        finally:
            await self.stop()

    def _run_source(self) -> None:
        try:
            self.source.run(self._queue.publish)
        except Exception as e:
            logger.error(f"Watch source crashed: {e}", exc_info=True)
        finally:
            # Nothing more will arrive; let the dispatcher drain and exit
            self._queue.close()

    async def stop(self) -> None:
        """Stop the controller. In-flight reconciliation is allowed to finish."""
        previous = self.state
        self.state = ControllerState.STOPPED
        if previous is not ControllerState.WATCHING:
            return

        logger.info("Stopping dashboard controller")
        self.source.stop()
        self._queue.close()

    async def dispatch(self, event: ResourceEvent) -> Optional[SyncResult]:
        """
        Route one event to the reconciler.

        Failures are logged and never propagate, so one bad resource
        cannot stall the events behind it.
        """
        resource = event.resource
        try:
            if not is_managed(resource):
                return None

            if event.event_type is EventType.ADDED:
                logger.info(f"Detected new dashboard {resource.key}")
                return await self.reconciler.upsert(resource)

            if event.event_type is EventType.UPDATED:
                old = event.old_resource
                if old is not None and old.data == resource.data:
                    return None
                logger.info(f"Detected updated dashboard {resource.key}")
                return await self.reconciler.upsert(resource)

            if event.event_type is EventType.DELETED:
                logger.info(f"Detected deleted dashboard {resource.key}")
                return await self.reconciler.delete(resource)

        except Exception as e:
            logger.error(
                f"Error handling {event.event_type.value} event for "
                f"{resource.key}: {e}",
                exc_info=True,
            )
        return None
