"""Wiring of watches, event mapping and work queues to the controllers."""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Optional

from .config import OperatorConfig, ReconcilerConfig
from .controllers import (
    AGENT_KINDS,
    DataPlaneAgentController,
    IstioController,
    IstioRevisionController,
    IstioRevisionTagController,
)
from .errors import SailOperatorError
from .helm import Installer
from .mapping import (
    all_revisions,
    map_to_self,
    namespace_to_identity,
    namespace_to_revisions,
    owner_mapper,
    pod_to_identity,
    revision_to_tags,
    tag_to_revision,
)
from .models import EventType, Kind, WatchEvent
from .predicates import (
    Predicate,
    all_of,
    ignore_status_change,
    ignore_update,
    ignore_update_when_annotation,
    validating_webhook_config_predicate,
)
from .queue import WorkQueue
from .store import ResourceStore
from .watch import ResourceWatcher

logger = logging.getLogger(__name__)

Mapper = Callable[[WatchEvent], list[str]]


@dataclass(frozen=True)
class Subscription:
    """A watched kind, the filter its events pass and how they map to requests."""

    kind: str
    mapper: Mapper
    predicate: Optional[Predicate] = None

    def requests(self, event: WatchEvent) -> list[str]:
        """Names to reconcile; updates map both the previous and the current object."""
        if self.predicate is not None and not self.predicate(event):
            return []
        names = list(self.mapper(event))
        if event.event_type == EventType.MODIFIED and event.old_object is not None:
            previous = event.model_copy(update={"object": event.old_object, "old_object": None})
            for name in self.mapper(previous):
                if name not in names:
                    names.append(name)
        return names


def _owned(kind: str, owner_kind: str, *predicates: Predicate) -> Subscription:
    return Subscription(kind, owner_mapper(owner_kind), all_of(ignore_update_when_annotation, *predicates))


class ControllerManager:
    """Runs every controller: watches feed mapped requests into per-controller queues."""

    def __init__(
        self,
        store: ResourceStore,
        installer: Installer,
        config: ReconcilerConfig,
        operator_config: Optional[OperatorConfig] = None,
        watcher: Optional[ResourceWatcher] = None,
    ):
        """
        Initialize the manager.

        Args:
            store: Resource store shared by all controllers
            installer: Chart installer
            config: Reconciler configuration
            operator_config: Image digests
            watcher: Resource watcher; required only for start()
        """
        self.store = store
        self.config = config
        self.watcher = watcher
        operator_config = operator_config or OperatorConfig()

        self.controllers: dict[str, Any] = {
            Kind.ISTIO.value: IstioController(store, config, operator_config),
            Kind.ISTIO_REVISION.value: IstioRevisionController(store, installer, config),
            Kind.ISTIO_REVISION_TAG.value: IstioRevisionTagController(store, installer, config),
        }
        for kind in AGENT_KINDS:
            self.controllers[kind] = DataPlaneAgentController(kind, store, installer, config, operator_config)

        self.subscriptions = self._build_subscriptions()
        self.queues: dict[str, WorkQueue] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: list[asyncio.Task] = []

    def _build_subscriptions(self) -> dict[str, list[Subscription]]:
        store = self.store
        revision = Kind.ISTIO_REVISION.value
        tag = Kind.ISTIO_REVISION_TAG.value

        subscriptions = {
            Kind.ISTIO.value: [
                Subscription(Kind.ISTIO.value, map_to_self, ignore_status_change),
                # revision status drives the Istio status
                Subscription(revision, owner_mapper(Kind.ISTIO.value)),
            ],
            revision: [
                Subscription(revision, map_to_self, ignore_status_change),
                _owned(Kind.DEPLOYMENT.value, revision),
                _owned(Kind.DAEMON_SET.value, revision),
                _owned(Kind.MUTATING_WEBHOOK_CONFIGURATION.value, revision, ignore_status_change),
                _owned(
                    Kind.VALIDATING_WEBHOOK_CONFIGURATION.value,
                    revision,
                    ignore_status_change,
                    validating_webhook_config_predicate,
                ),
                _owned(Kind.HORIZONTAL_POD_AUTOSCALER.value, revision, ignore_status_change),
                _owned(Kind.SERVICE_ACCOUNT.value, revision),
                Subscription(Kind.NAMESPACE.value, partial(namespace_to_revisions, store), ignore_status_change),
                Subscription(Kind.POD.value, partial(pod_to_identity, store), ignore_status_change),
                Subscription(Kind.ISTIO_CNI.value, partial(all_revisions, store)),
                Subscription(Kind.ZTUNNEL.value, partial(all_revisions, store)),
                Subscription(tag, tag_to_revision),
            ],
            tag: [
                Subscription(tag, map_to_self, ignore_status_change),
                _owned(Kind.MUTATING_WEBHOOK_CONFIGURATION.value, tag, ignore_status_change),
                _owned(Kind.VALIDATING_WEBHOOK_CONFIGURATION.value, tag, ignore_status_change),
                Subscription(Kind.NAMESPACE.value, namespace_to_identity, ignore_status_change),
                Subscription(Kind.POD.value, partial(pod_to_identity, store), ignore_status_change),
                Subscription(Kind.ISTIO.value, partial(revision_to_tags, store)),
                Subscription(revision, partial(revision_to_tags, store)),
            ],
        }
        for kind in AGENT_KINDS:
            subscriptions[kind] = [
                Subscription(kind, map_to_self, ignore_status_change),
                _owned(Kind.DAEMON_SET.value, kind),
            ]
            # pull secrets added to the ztunnel ServiceAccount must not trigger a reconcile
            sa_predicates = (ignore_update,) if kind == Kind.ZTUNNEL.value else ()
            subscriptions[kind].append(_owned(Kind.SERVICE_ACCOUNT.value, kind, *sa_predicates))
        return subscriptions

    def watched_kinds(self) -> list[str]:
        kinds: list[str] = []
        for subscriptions in self.subscriptions.values():
            for subscription in subscriptions:
                if subscription.kind not in kinds:
                    kinds.append(subscription.kind)
        return kinds

    def requests_for(self, event: WatchEvent) -> dict[str, list[str]]:
        """
        Map a watch event to the names each controller must reconcile.

        Args:
            event: Watch event

        Returns:
            Names to reconcile keyed by controller kind; controllers with no
            requests are omitted
        """
        requests: dict[str, list[str]] = {}
        for controller_kind, subscriptions in self.subscriptions.items():
            names: list[str] = []
            for subscription in subscriptions:
                if subscription.kind != event.kind:
                    continue
                try:
                    mapped = subscription.requests(event)
                except SailOperatorError as e:
                    logger.error(
                        f"Error mapping {event.kind} {event.name} for {controller_kind}: {e}",
                        exc_info=True,
                    )
                    continue
                for name in mapped:
                    if name not in names:
                        names.append(name)
            if names:
                requests[controller_kind] = names
        return requests

    def _handle_event(self, event: WatchEvent) -> None:
        """Enqueue the requests for an event; called from watch threads."""
        logger.debug(f"Received {event.event_type.value} event for {event.kind} {event.namespace or ''}/{event.name}")
        for controller_kind, names in self.requests_for(event).items():
            queue = self.queues[controller_kind]
            for name in names:
                self._loop.call_soon_threadsafe(queue.add, name)

    async def start(self) -> None:
        """Start queues and watches."""
        if self.watcher is None:
            raise ValueError("a watcher is required to start the manager")
        self._loop = asyncio.get_running_loop()

        for kind, controller in self.controllers.items():
            queue = WorkQueue(kind, controller.reconcile, self.config.max_concurrent_reconciles)
            queue.start()
            self.queues[kind] = queue

        for kind in self.watched_kinds():
            self.watcher.register_handler(kind, self._handle_event)
            self._tasks.append(asyncio.create_task(asyncio.to_thread(self.watcher.watch, kind)))
        logger.info(f"Started {len(self.controllers)} controllers watching {len(self._tasks)} kinds")

    async def stop(self) -> None:
        """Stop watches and queues."""
        logger.info("Stopping controllers")
        if self.watcher is not None:
            self.watcher.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        for queue in self.queues.values():
            await queue.stop()
        self.queues.clear()
