"""
ConfigMap watch source.

Lists and then watches ConfigMaps through the Kubernetes API, keeping the
last seen snapshot of each one so that raw watch notifications can be
turned into Add, Update(old, new) and Delete events. Runs on a worker
thread because the kubernetes client is blocking.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from config import WatchConfig
from dashboards import DashboardResource
from events import EventCallback, ResourceEvent

logger = logging.getLogger(__name__)


class ConfigMapWatcher:
    """
    Streams ConfigMap lifecycle events for one namespace, or all of them.

    An initial list emits an Add per ConfigMap. Watch ``ADDED`` events for
    already known ConfigMaps (replays after a reconnect) become Updates.
    A ``410 Gone`` re-lists and diffs the result against the cache.
    """

    def __init__(self, core_api: CoreV1Api, config: Optional[WatchConfig] = None):
        self.core_api = core_api
        self.config = config or WatchConfig()
        self.namespace = self.config.namespace
        self._cache: Dict[str, DashboardResource] = {}
        self._stop = threading.Event()
        self._active_watcher: Optional[watch.Watch] = None
        self._watcher_lock = threading.Lock()

    def _list_func(self) -> Callable[..., Any]:
        if self.namespace:
            return self.core_api.list_namespaced_config_map
        return self.core_api.list_config_map_for_all_namespaces

    def _list_kwargs(self) -> Dict[str, Any]:
        if self.namespace:
            return {"namespace": self.namespace}
        return {}

    def sync(self, config_maps: Any, emit: EventCallback) -> Optional[str]:
        """
        Bring the cache in line with a full ConfigMap list.

        Returns:
            The list's resourceVersion to resume watching from.
        """
        seen = set()
        for item in config_maps.items or []:
            resource = DashboardResource.from_config_map(item)
            seen.add(resource.key)
            old = self._cache.get(resource.key)
            self._cache[resource.key] = resource
            if old is None:
                emit(ResourceEvent.added(resource))
            else:
                emit(ResourceEvent.updated(old, resource))

        for key in [k for k in self._cache if k not in seen]:
            emit(ResourceEvent.deleted(self._cache.pop(key)))

        metadata = getattr(config_maps, "metadata", None)
        return getattr(metadata, "resource_version", None)

    def handle_event(self, event_type: str, config_map: Any, emit: EventCallback):
        """Translate one watch notification into a resource event."""
        resource = DashboardResource.from_config_map(config_map)
        old = self._cache.get(resource.key)

        if event_type == "DELETED":
            self._cache.pop(resource.key, None)
            emit(ResourceEvent.deleted(resource))
        elif event_type in ("ADDED", "MODIFIED"):
            self._cache[resource.key] = resource
            if old is None:
                emit(ResourceEvent.added(resource))
            else:
                emit(ResourceEvent.updated(old, resource))
        else:
            logger.debug(f"Ignoring {event_type} event for {resource.key}")

    def run(self, emit: EventCallback) -> None:
        """
        List-then-watch ConfigMaps until ``stop`` is called.

        ``401``/``403`` responses are configuration (RBAC) errors and end
        the loop. Other failures reconnect with exponential backoff.
        """
        scope = self.namespace or "all namespaces"
        logger.info(f"Watching ConfigMaps in {scope}")

        resource_version: Optional[str] = None
        backoff_seconds = 1

        while not self._stop.is_set():
            try:
                if resource_version is None:
                    listing = self._list_func()(**self._list_kwargs())
                    resource_version = self.sync(listing, emit)

                watcher = watch.Watch()
                with self._watcher_lock:
                    self._active_watcher = watcher
                if self._stop.is_set():
                    break

                stream = watcher.stream(
                    self._list_func(),
                    resource_version=resource_version,
                    timeout_seconds=self.config.timeout_seconds,
                    **self._list_kwargs(),
                )
                for event in stream:
                    if self._stop.is_set():
                        break

                    obj = event.get("object")
                    if obj is None:
                        continue

                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and metadata.resource_version:
                        resource_version = metadata.resource_version

                    self.handle_event(str(event.get("type", "")), obj, emit)

                backoff_seconds = 1
            except ApiException as e:
                if e.status == 410:
                    logger.warning("Watch resource version expired, re-listing")
                    resource_version = None
                    continue
                if e.status in (401, 403):
                    logger.error(
                        f"Kubernetes API access denied (status={e.status}). "
                        f"Check RBAC permissions for ConfigMaps in {scope}."
                    )
                    return
                logger.error(f"ConfigMap watch failed: {e}")
                backoff_seconds = self._backoff(backoff_seconds)
            except Exception as e:
                if self._stop.is_set():
                    # stop() shut the stream socket down under the reader
                    break
                logger.error(f"Unexpected error in ConfigMap watch: {e}", exc_info=True)
                backoff_seconds = self._backoff(backoff_seconds)
            finally:
                with self._watcher_lock:
                    self._active_watcher = None

        logger.info("ConfigMap watch stopped")

    def _backoff(self, delay: int) -> int:
        self._stop.wait(timeout=delay)
        return min(delay * 2, self.config.backoff_max_delay)

    def stop(self) -> None:
        """
        Stop watching. ``Watch.stop`` shuts down the open stream's socket,
        so a blocked read returns at once instead of waiting for the
        server-side timeout.
        """
        self._stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()
