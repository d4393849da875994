"""Readiness checks of installed control plane and data plane workloads."""

import logging
from typing import Optional

from .constants import DEFAULT_ISTIO_NAMESPACE, WEBHOOK_READINESS_PROBE_STATUS_ANNOTATION
from .errors import NotFoundError, SailOperatorError
from .models import (
    Condition,
    ConditionStatus,
    ConditionType,
    DataPlaneAgentReason,
    IstioRevision,
    IstioRevisionReason,
    IstioRevisionType,
    Kind,
    get_annotations,
)
from .store import ResourceStore
from .values import get_nested

logger = logging.getLogger(__name__)

ConditionResult = tuple[Condition, Optional[Exception]]


def istiod_deployment_name(revision: IstioRevision) -> str:
    name = "istiod"
    value = get_nested(revision.spec.values, "revision")
    if value:
        name += f"-{value}"
    return name


def injection_webhook_name(revision: IstioRevision) -> str:
    """Name of the sidecar injector MutatingWebhookConfiguration of a revision."""
    name = "istio-sidecar-injector"
    value = get_nested(revision.spec.values, "revision")
    if value:
        name += f"-{value}"
    if revision.spec.namespace != DEFAULT_ISTIO_NAMESPACE:
        name += f"-{revision.spec.namespace}"
    return name


def revision_ready_condition(store: ResourceStore, revision: IstioRevision) -> ConditionResult:
    """
    Determine the Ready condition of a revision.

    Local revisions are ready when every istiod replica is ready. Remote
    revisions report the result of an external probe through an annotation
    on the injection webhook.

    Args:
        store: Resource store
        revision: The revision

    Returns:
        The condition, and the error that prevented the check, if any
    """
    if revision.spec.type == IstioRevisionType.LOCAL:
        return _local_ready_condition(store, revision)
    return _remote_ready_condition(store, revision)


def _not_ready(reason: str, message: str) -> Condition:
    return Condition(
        type=ConditionType.READY.value,
        status=ConditionStatus.FALSE.value,
        reason=reason,
        message=message,
    )


def _check_failed(reason: str, err: Exception) -> Condition:
    return Condition(
        type=ConditionType.READY.value,
        status=ConditionStatus.UNKNOWN.value,
        reason=reason,
        message=f"failed to get readiness: {err}",
    )


def _ready() -> Condition:
    return Condition(type=ConditionType.READY.value, status=ConditionStatus.TRUE.value)


def _local_ready_condition(store: ResourceStore, revision: IstioRevision) -> ConditionResult:
    name = istiod_deployment_name(revision)
    try:
        deployment = store.get(Kind.DEPLOYMENT.value, name, revision.spec.namespace)
    except NotFoundError:
        return _not_ready(IstioRevisionReason.ISTIOD_NOT_READY.value, "istiod Deployment not found"), None
    except SailOperatorError as e:
        logger.warning(f"Failed to get istiod Deployment {revision.spec.namespace}/{name}: {e}")
        return _check_failed(IstioRevisionReason.READINESS_CHECK_FAILED.value, e), e

    status = deployment.get("status") or {}
    replicas = status.get("replicas") or 0
    ready_replicas = status.get("readyReplicas") or 0
    if replicas == 0:
        return _not_ready(
            IstioRevisionReason.ISTIOD_NOT_READY.value, "istiod Deployment is scaled to zero replicas"
        ), None
    if ready_replicas < replicas:
        return _not_ready(IstioRevisionReason.ISTIOD_NOT_READY.value, "not all istiod pods are ready"), None
    return _ready(), None


def _remote_ready_condition(store: ResourceStore, revision: IstioRevision) -> ConditionResult:
    name = injection_webhook_name(revision)
    try:
        webhook = store.get(Kind.MUTATING_WEBHOOK_CONFIGURATION.value, name)
    except NotFoundError:
        return _not_ready(
            IstioRevisionReason.REMOTE_ISTIOD_NOT_READY.value,
            f"MutatingWebhookConfiguration {name} not found",
        ), None
    except SailOperatorError as e:
        logger.warning(f"Failed to get MutatingWebhookConfiguration {name}: {e}")
        return _check_failed(IstioRevisionReason.READINESS_CHECK_FAILED.value, e), e

    probe_status = get_annotations(webhook).get(WEBHOOK_READINESS_PROBE_STATUS_ANNOTATION)
    if probe_status == "true":
        return _ready(), None
    if probe_status == "false":
        return _not_ready(
            IstioRevisionReason.REMOTE_ISTIOD_NOT_READY.value, "readiness probe on remote istiod failed"
        ), None
    return Condition(
        type=ConditionType.READY.value,
        status=ConditionStatus.UNKNOWN.value,
        reason=IstioRevisionReason.REMOTE_ISTIOD_NOT_READY.value,
        message=f"invalid or missing annotation {WEBHOOK_READINESS_PROBE_STATUS_ANNOTATION} "
        f"on MutatingWebhookConfiguration {name}",
    ), None


def daemon_set_ready_condition(store: ResourceStore, name: str, namespace: str) -> ConditionResult:
    """
    Determine the Ready condition of a data plane agent from its DaemonSet.

    Args:
        store: Resource store
        name: DaemonSet name
        namespace: DaemonSet namespace

    Returns:
        The condition, and the error that prevented the check, if any
    """
    try:
        daemon_set = store.get(Kind.DAEMON_SET.value, name, namespace)
    except NotFoundError:
        return _not_ready(DataPlaneAgentReason.DAEMON_SET_NOT_READY.value, f"{name} DaemonSet not found"), None
    except SailOperatorError as e:
        logger.warning(f"Failed to get DaemonSet {namespace}/{name}: {e}")
        return _check_failed(DataPlaneAgentReason.READINESS_CHECK_FAILED.value, e), e

    status = daemon_set.get("status") or {}
    scheduled = status.get("currentNumberScheduled") or 0
    ready = status.get("numberReady") or 0
    if scheduled == 0:
        return _not_ready(
            DataPlaneAgentReason.DAEMON_SET_NOT_READY.value, f"no {name} pods are currently scheduled"
        ), None
    if ready < scheduled:
        return _not_ready(DataPlaneAgentReason.DAEMON_SET_NOT_READY.value, f"not all {name} pods are ready"), None
    return _ready(), None
