"""Health of the singleton data plane agents a revision relies on."""

import logging
from typing import Any, Optional

from .conditions import HEALTHY_STATE
from .config import ReconcilerConfig
from .errors import NotFoundError, SailOperatorError, ValidationError
from .models import (
    SINGLETON_NAME,
    Condition,
    ConditionStatus,
    ConditionType,
    DataPlaneAgent,
    IstioRevision,
    IstioRevisionReason,
    Kind,
    Platform,
)
from .readiness import ConditionResult
from .store import ResourceStore
from .values import compute_values, get_nested

logger = logging.getLogger(__name__)


def _revision_values(revision: IstioRevision, config: ReconcilerConfig) -> Optional[dict[str, Any]]:
    try:
        return compute_values(
            revision.spec.values,
            revision.spec.namespace,
            revision.spec.version,
            config.platform,
            config.default_profile,
            "",
            config.resource_directory,
            revision.name,
        )
    except (ValueError, ValidationError) as e:
        logger.debug(f"Cannot compute values of IstioRevision {revision.name}: {e}")
        return None


def depends_on_istio_cni(revision: IstioRevision, config: ReconcilerConfig) -> bool:
    """
    Whether the revision relies on IstioCNI.

    On OpenShift CNI is used unless pilot.cni.enabled is explicitly false;
    elsewhere it must be explicitly enabled.
    """
    values = _revision_values(revision, config)
    if values is None:
        return False
    enabled = get_nested(values, "pilot", "cni", "enabled")
    if get_nested(values, "global", "platform") == Platform.OPENSHIFT.value:
        return enabled is not False
    return enabled is True


def depends_on_ztunnel(revision: IstioRevision, config: ReconcilerConfig) -> bool:
    """Whether the revision runs in ambient mode and so relies on ZTunnel."""
    values = _revision_values(revision, config)
    if values is None:
        return False
    return (
        get_nested(values, "profile") == "ambient"
        or get_nested(values, "pilot", "env", "PILOT_ENABLE_AMBIENT") == "true"
    )


# kind -> (dependency predicate, NotFound reason, NotHealthy reason)
DEPENDENCY_CHECKS = (
    (
        Kind.ISTIO_CNI,
        depends_on_istio_cni,
        IstioRevisionReason.ISTIO_CNI_NOT_FOUND,
        IstioRevisionReason.ISTIO_CNI_NOT_HEALTHY,
    ),
    (
        Kind.ZTUNNEL,
        depends_on_ztunnel,
        IstioRevisionReason.ZTUNNEL_NOT_FOUND,
        IstioRevisionReason.ZTUNNEL_NOT_HEALTHY,
    ),
)


class DependencyHealthChecker:
    """Evaluates the DependenciesHealthy condition of revisions."""

    def __init__(self, store: ResourceStore, config: ReconcilerConfig):
        self.store = store
        self.config = config

    def check(self, revision: IstioRevision) -> ConditionResult:
        """
        Check the agents the revision relies on, IstioCNI first.

        The first dependency that is missing or unhealthy determines the
        condition.

        Returns:
            The condition, and the error that prevented the check, if any
        """
        for kind, depends_on, not_found_reason, not_healthy_reason in DEPENDENCY_CHECKS:
            if not depends_on(revision, self.config):
                continue
            try:
                obj = self.store.get(kind.value, SINGLETON_NAME)
            except NotFoundError:
                return Condition(
                    type=ConditionType.DEPENDENCIES_HEALTHY.value,
                    status=ConditionStatus.FALSE.value,
                    reason=not_found_reason.value,
                    message=f"{kind.value} resource does not exist",
                ), None
            except SailOperatorError as e:
                logger.warning(f"Failed to get {kind.value} {SINGLETON_NAME}: {e}")
                return Condition(
                    type=ConditionType.DEPENDENCIES_HEALTHY.value,
                    status=ConditionStatus.UNKNOWN.value,
                    reason=IstioRevisionReason.DEPENDENCY_CHECK_FAILED.value,
                    message=f"failed to get {kind.value}: {e}",
                ), e

            agent = DataPlaneAgent.model_validate(obj)
            if agent.status.state != HEALTHY_STATE:
                return Condition(
                    type=ConditionType.DEPENDENCIES_HEALTHY.value,
                    status=ConditionStatus.FALSE.value,
                    reason=not_healthy_reason.value,
                    message=f"{kind.value} not healthy: {agent.status.state}",
                ), None

        return Condition(
            type=ConditionType.DEPENDENCIES_HEALTHY.value,
            status=ConditionStatus.TRUE.value,
        ), None
