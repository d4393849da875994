"""Standard reconcile flow: fetch, finalizer handling and dispatch."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import NotFoundError, is_transient_error, is_validation_error
from .store import ResourceStore

logger = logging.getLogger(__name__)


@dataclass
class Result:
    """Outcome of one reconciliation."""

    requeue: bool = False
    requeue_after: Optional[float] = None


ReconcileFunc = Callable[[dict[str, Any]], Result]
FinalizeFunc = Callable[[dict[str, Any]], None]


def handle_reconcile_error(err: Optional[BaseException], result: Result) -> Result:
    """
    Turn the error of a reconciliation into the result the work queue sees.

    Validation errors are only reported in the status; a spec change will
    trigger the next attempt. Transient errors are retried without being
    logged as failures. Joined errors are classified by what they contain.
    Everything else is raised for backoff.
    """
    if err is None:
        return result
    if is_validation_error(err):
        logger.info(f"Validation failed: {err}")
        return result
    if is_transient_error(err):
        logger.info(f"Transient error, requeueing: {err}")
        return Result(requeue=True)
    raise err


class StandardReconciler:
    """Runs the finalizer protocol around a controller's reconcile function."""

    def __init__(
        self,
        store: ResourceStore,
        kind: str,
        reconcile: ReconcileFunc,
        finalize: Optional[FinalizeFunc] = None,
        finalizer: str = "",
    ):
        """
        Initialize the reconciler.

        Args:
            store: Resource store
            kind: Kind of the reconciled resource
            reconcile: Called with the object when it is not being deleted
            finalize: Called with the object before its finalizer is removed
            finalizer: Finalizer name; finalization is disabled when empty
        """
        self.store = store
        self.kind = kind
        self._reconcile = reconcile
        self._finalize = finalize
        self.finalizer = finalizer

    def _finalization_enabled(self) -> bool:
        return bool(self.finalizer)

    def reconcile(self, name: str) -> Result:
        try:
            obj = self.store.get(self.kind, name)
        except NotFoundError:
            logger.debug(f"{self.kind} {name} not found, skipping reconciliation")
            return Result()

        metadata = obj.setdefault("metadata", {})
        finalizers = metadata.get("finalizers") or []

        if metadata.get("deletionTimestamp"):
            if self._finalization_enabled() and self.finalizer in finalizers:
                logger.info(f"Finalizing {self.kind} {name}")
                if self._finalize is not None:
                    self._finalize(obj)
                metadata["finalizers"] = [f for f in finalizers if f != self.finalizer]
                self._update_finalizers(obj)
            return Result()

        if self._finalization_enabled() and self.finalizer not in finalizers:
            metadata["finalizers"] = finalizers + [self.finalizer]
            self._update_finalizers(obj)
            return Result(requeue=True)

        return self._reconcile(obj)

    def _update_finalizers(self, obj: dict[str, Any]) -> None:
        try:
            self.store.update(self.kind, obj)
        except NotFoundError:
            logger.debug(f"{self.kind} {obj['metadata'].get('name')} disappeared while updating finalizers")
