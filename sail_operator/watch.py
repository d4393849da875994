"""Kubernetes watch functionality."""

import logging
import threading
from typing import Any, Callable, Optional

from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException

from .models import EventType, WatchEvent, get_name, get_namespace
from .store import KubernetesResourceStore

logger = logging.getLogger(__name__)


class ResourceWatcher:
    """Watches Kubernetes resources of any kind the store can list."""

    def __init__(self, store: KubernetesResourceStore):
        """
        Initialize resource watcher.

        Args:
            store: Store providing the list calls to stream
        """
        self.store = store
        self._handlers: dict[str, list[Callable[[WatchEvent], None]]] = {}
        self._watches: list[k8s_watch.Watch] = []
        self._last_seen: dict[tuple[str, Optional[str], str], dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def register_handler(
        self,
        kind: str,
        handler: Callable[[WatchEvent], None],
    ) -> None:
        """
        Register a handler for watch events.

        Args:
            kind: Resource kind (e.g. Istio, Pod, Deployment)
            handler: Callback function that takes WatchEvent
        """
        if kind not in self._handlers:
            self._handlers[kind] = []
        self._handlers[kind].append(handler)

    def _emit_event(self, event: WatchEvent) -> None:
        """
        Emit a watch event to registered handlers.

        Args:
            event: Watch event to emit
        """
        handlers = self._handlers.get(event.kind, [])
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in watch event handler: {e}", exc_info=True)

    def to_watch_event(self, kind: str, event_type: str, obj: dict[str, Any]) -> Optional[WatchEvent]:
        """
        Build a watch event, attaching the previously seen version of the object.

        Args:
            kind: Resource kind
            event_type: Raw watch event type
            obj: Object as a dict

        Returns:
            Watch event, or None for ERROR and BOOKMARK events
        """
        if event_type not in EventType.__members__:
            return None
        name = get_name(obj)
        namespace = get_namespace(obj)
        key = (kind, namespace, name)
        with self._lock:
            if event_type == EventType.DELETED.value:
                old = self._last_seen.pop(key, None)
            else:
                old = self._last_seen.get(key)
                self._last_seen[key] = obj
        return WatchEvent(
            event_type=EventType(event_type),
            kind=kind,
            name=name,
            namespace=namespace,
            object=obj,
            old_object=old if event_type == EventType.MODIFIED.value else None,
        )

    def watch(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ) -> None:
        """
        Watch resources of a kind until stopped.

        Blocks; run it in a worker thread. The watch is restarted when it
        expires or the server closes the stream.

        Args:
            kind: Resource kind
            namespace: Kubernetes namespace, or None for all namespaces
            label_selector: Label selector string (e.g., "managed-by=sail-operator")
            timeout_seconds: Server-side watch timeout in seconds (None for the server default)
        """
        fn, args = self.store.list_function(kind, namespace)
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if timeout_seconds:
            kwargs["timeout_seconds"] = timeout_seconds

        logger.info(f"Starting watch on {kind} in namespace {namespace or '<all>'}")
        while not self._stopped.is_set():
            w = k8s_watch.Watch()
            with self._lock:
                self._watches.append(w)
                # a new stream lists every object again
                self._forget(kind, namespace)
            try:
                for event in w.stream(fn, *args, **kwargs):
                    watch_event = self.to_watch_event(kind, event["type"], event["raw_object"])
                    if watch_event is not None:
                        self._emit_event(watch_event)
            except ApiException as e:
                if e.status == 410:  # Resource version too old
                    logger.warning(f"Watch on {kind} expired, restarting...")
                    continue
                logger.error(f"Error watching {kind}: {e}", exc_info=True)
                raise
            finally:
                with self._lock:
                    self._watches.remove(w)

    def _forget(self, kind: str, namespace: Optional[str]) -> None:
        stale = [key for key in self._last_seen if key[0] == kind and (namespace is None or key[1] == namespace)]
        for key in stale:
            del self._last_seen[key]

    def stop(self) -> None:
        """Stop all active watches."""
        self._stopped.set()
        with self._lock:
            for w in self._watches:
                w.stop()
