"""Active revision selection and pruning of inactive revisions."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .conditions import get_condition, now
from .errors import NotFoundError
from .models import (
    DEFAULT_REVISION_DELETION_GRACE_PERIOD_SECONDS,
    MIN_REVISION_DELETION_GRACE_PERIOD_SECONDS,
    ConditionStatus,
    ConditionType,
    Istio,
    IstioRevision,
    Kind,
    RevisionSummary,
    UpdateStrategyType,
    get_owner_references,
)
from .store import ResourceStore

logger = logging.getLogger(__name__)


def active_revision_name(istio: Istio) -> str:
    """
    Name of the revision an Istio currently designates as authoritative.

    InPlace (the default) reuses the Istio name; RevisionBased appends the
    version with dots replaced by dashes (foo, 1.2.3 -> foo-1-2-3).
    """
    strategy = istio.spec.update_strategy
    if strategy is not None and strategy.type == UpdateStrategyType.REVISION_BASED:
        return f"{istio.name}-{istio.spec.version.replace('.', '-')}"
    return istio.name


def clamp_grace_period(seconds: Optional[int]) -> int:
    """Grace period to apply: the default if unset, never below the minimum."""
    if seconds is None:
        return DEFAULT_REVISION_DELETION_GRACE_PERIOD_SECONDS
    return max(seconds, MIN_REVISION_DELETION_GRACE_PERIOD_SECONDS)


def pruning_grace_period(istio: Istio) -> timedelta:
    strategy = istio.spec.update_strategy
    seconds = strategy.inactive_revision_deletion_grace_period_seconds if strategy else None
    return timedelta(seconds=clamp_grace_period(seconds))


def is_controlled_by(obj: dict, owner_kind: str, owner_uid: str) -> bool:
    """Whether obj has a controller owner reference to the given owner."""
    for ref in get_owner_references(obj):
        if ref.get("controller") and ref.get("kind") == owner_kind and ref.get("uid") == owner_uid:
            return True
    return False


def controller_owner_name(obj: dict, owner_kind: str) -> Optional[str]:
    for ref in get_owner_references(obj):
        if ref.get("controller") and ref.get("kind") == owner_kind:
            return ref.get("name")
    return None


def list_owned_revisions(store: ResourceStore, istio: Istio) -> list[IstioRevision]:
    """
    List the revisions controlled by an Istio.

    Raises:
        StoreError: If revisions cannot be listed
    """
    return [
        IstioRevision.model_validate(obj)
        for obj in store.list(Kind.ISTIO_REVISION.value)
        if is_controlled_by(obj, Kind.ISTIO.value, istio.metadata.uid or "")
    ]


def summarize_revisions(revisions: list[IstioRevision]) -> RevisionSummary:
    ready = 0
    in_use = 0
    for rev in revisions:
        if get_condition(rev.status.conditions, ConditionType.READY.value).status == ConditionStatus.TRUE.value:
            ready += 1
        if get_condition(rev.status.conditions, ConditionType.IN_USE.value).status == ConditionStatus.TRUE.value:
            in_use += 1
    return RevisionSummary(total=len(revisions), ready=ready, in_use=in_use)


@dataclass
class PruneResult:
    """Outcome of a pruning pass."""

    deleted: list[str]
    requeue_after: Optional[float] = None


class RevisionPruner:
    """Deletes inactive revisions of an Istio once their grace period expires."""

    def __init__(self, store: ResourceStore):
        self.store = store

    def prune(
        self,
        istio: Istio,
        revisions: list[IstioRevision],
        current_time: Optional[datetime] = None,
    ) -> PruneResult:
        """
        Delete inactive revisions that have been unused for the grace period.

        Revisions in use are kept. So are revisions whose usage is unknown;
        they are rechecked after the grace period. A revision whose grace
        period has not yet passed contributes its deadline to the result's
        requeue_after, which holds the earliest deadline in seconds. The
        active revision is never deleted.

        Args:
            istio: The owning Istio
            revisions: Revisions owned by the Istio
            current_time: Time to evaluate deadlines against (defaults to now)

        Returns:
            PruneResult with the deleted revision names and requeue delay

        Raises:
            StoreError: If a deletion fails
        """
        active = active_revision_name(istio)
        grace_period = pruning_grace_period(istio)
        current_time = current_time or now()
        result = PruneResult(deleted=[])

        for rev in revisions:
            if rev.name == active:
                continue

            in_use = get_condition(rev.status.conditions, ConditionType.IN_USE.value)
            if in_use.status == ConditionStatus.TRUE.value:
                continue

            if in_use.status == ConditionStatus.UNKNOWN.value or in_use.last_transition_time is None:
                # Not yet evaluated, or the usage check failed
                self._requeue(result, grace_period.total_seconds())
                continue

            deadline = in_use.last_transition_time + grace_period
            if deadline <= current_time:
                logger.info(f"Deleting inactive IstioRevision {rev.name} of Istio {istio.name}")
                try:
                    self.store.delete(Kind.ISTIO_REVISION.value, rev.name)
                except NotFoundError:
                    logger.debug(f"IstioRevision {rev.name} already deleted")
                result.deleted.append(rev.name)
            else:
                self._requeue(result, (deadline - current_time).total_seconds())

        return result

    @staticmethod
    def _requeue(result: PruneResult, seconds: float) -> None:
        if result.requeue_after is None or seconds < result.requeue_after:
            result.requeue_after = seconds
