"""Resource models for the sail operator.

The models mirror the JSON shape of the custom resources stored in the
cluster (camelCase keys). Helm values are kept as plain nested dicts because
their schema belongs to the charts, not to the operator.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

API_GROUP = "sailoperator.io"
API_VERSION = "v1"
GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

DEFAULT_REVISION = "default"
DEFAULT_REVISION_TAG = "default"
SINGLETON_NAME = "default"

DEFAULT_REVISION_DELETION_GRACE_PERIOD_SECONDS = 30
MIN_REVISION_DELETION_GRACE_PERIOD_SECONDS = 0


class Kind(str, Enum):
    """Resource kinds the operator reads or writes."""

    ISTIO = "Istio"
    ISTIO_REVISION = "IstioRevision"
    ISTIO_REVISION_TAG = "IstioRevisionTag"
    ISTIO_CNI = "IstioCNI"
    ZTUNNEL = "ZTunnel"
    NAMESPACE = "Namespace"
    POD = "Pod"
    DEPLOYMENT = "Deployment"
    DAEMON_SET = "DaemonSet"
    MUTATING_WEBHOOK_CONFIGURATION = "MutatingWebhookConfiguration"
    VALIDATING_WEBHOOK_CONFIGURATION = "ValidatingWebhookConfiguration"
    HORIZONTAL_POD_AUTOSCALER = "HorizontalPodAutoscaler"
    SERVICE_ACCOUNT = "ServiceAccount"


class ConditionStatus(str, Enum):
    """Kubernetes condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(str, Enum):
    """Condition types tracked on the operator's resources."""

    RECONCILED = "Reconciled"
    READY = "Ready"
    DEPENDENCIES_HEALTHY = "DependenciesHealthy"
    IN_USE = "InUse"


class IstioReason(str, Enum):
    """Condition reasons reported on Istio resources."""

    HEALTHY = "Healthy"
    RECONCILE_ERROR = "ReconcileError"
    REVISION_NOT_FOUND = "RevisionNotFound"
    FAILED_TO_GET_ACTIVE_REVISION = "FailedToGetActiveRevision"
    NAME_ALREADY_EXISTS = "NameAlreadyExists"
    ISTIOD_NOT_READY = "IstiodNotReady"
    REMOTE_ISTIOD_NOT_READY = "RemoteIstiodNotReady"
    READINESS_CHECK_FAILED = "ReadinessCheckFailed"
    ISTIO_CNI_NOT_FOUND = "IstioCNINotFound"
    ISTIO_CNI_NOT_HEALTHY = "IstioCNINotHealthy"
    ZTUNNEL_NOT_FOUND = "ZTunnelNotFound"
    ZTUNNEL_NOT_HEALTHY = "ZTunnelNotHealthy"
    DEPENDENCY_CHECK_FAILED = "DependencyCheckFailed"


class IstioRevisionReason(str, Enum):
    """Condition reasons reported on IstioRevision resources."""

    HEALTHY = "Healthy"
    RECONCILE_ERROR = "ReconcileError"
    NAME_ALREADY_EXISTS = "NameAlreadyExists"
    ISTIOD_NOT_READY = "IstiodNotReady"
    REMOTE_ISTIOD_NOT_READY = "RemoteIstiodNotReady"
    READINESS_CHECK_FAILED = "ReadinessCheckFailed"
    ISTIO_CNI_NOT_FOUND = "IstioCNINotFound"
    ISTIO_CNI_NOT_HEALTHY = "IstioCNINotHealthy"
    ZTUNNEL_NOT_FOUND = "ZTunnelNotFound"
    ZTUNNEL_NOT_HEALTHY = "ZTunnelNotHealthy"
    DEPENDENCY_CHECK_FAILED = "DependencyCheckFailed"
    REFERENCED_BY_WORKLOADS = "ReferencedByWorkloads"
    NOT_REFERENCED = "NotReferenced"
    USAGE_CHECK_FAILED = "UsageCheckFailed"


class IstioRevisionTagReason(str, Enum):
    """Condition reasons reported on IstioRevisionTag resources."""

    HEALTHY = "Healthy"
    RECONCILE_ERROR = "ReconcileError"
    NAME_ALREADY_EXISTS = "NameAlreadyExists"
    REFERENCE_NOT_FOUND = "RefNotFound"
    REFERENCED_BY_WORKLOADS = "ReferencedByWorkloads"
    NOT_REFERENCED = "NotReferenced"
    USAGE_CHECK_FAILED = "UsageCheckFailed"


class DataPlaneAgentReason(str, Enum):
    """Condition reasons reported on IstioCNI and ZTunnel resources."""

    HEALTHY = "Healthy"
    RECONCILE_ERROR = "ReconcileError"
    DAEMON_SET_NOT_READY = "DaemonSetNotReady"
    READINESS_CHECK_FAILED = "ReadinessCheckFailed"


class UpdateStrategyType(str, Enum):
    """How an Istio rolls out a new version."""

    IN_PLACE = "InPlace"
    REVISION_BASED = "RevisionBased"


class IstioRevisionType(str, Enum):
    """Whether a revision runs a local or a remote control plane."""

    LOCAL = "Local"
    REMOTE = "Remote"


class Platform(str, Enum):
    """Cluster platform flavour."""

    KUBERNETES = "kubernetes"
    OPENSHIFT = "openshift"


class KubeModel(BaseModel):
    """Base model using the camelCase field names of the Kubernetes API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class OwnerReference(KubeModel):
    """Kubernetes owner reference."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None


class ObjectMeta(KubeModel):
    """Subset of Kubernetes object metadata the operator relies on."""

    name: str = ""
    namespace: Optional[str] = None
    uid: Optional[str] = None
    generation: Optional[int] = None
    resource_version: Optional[str] = None
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    finalizers: list[str] = Field(default_factory=list)


class Condition(KubeModel):
    """Status condition of an operator resource."""

    type: str
    status: str = ""
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None


class Resource(KubeModel):
    """Common envelope of the operator's custom resources."""

    api_version: str = GROUP_VERSION
    kind: str
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape stored in the cluster."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def owner_reference(self) -> OwnerReference:
        """Build a controller owner reference pointing at this resource."""
        return OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.metadata.name,
            uid=self.metadata.uid or "",
            controller=True,
            block_owner_deletion=True,
        )


# --- Istio -------------------------------------------------------------------


class IstioUpdateStrategy(KubeModel):
    """Update strategy of an Istio."""

    type: UpdateStrategyType = UpdateStrategyType.IN_PLACE
    inactive_revision_deletion_grace_period_seconds: Optional[int] = None


class IstioSpec(KubeModel):
    """Desired state of an Istio control plane."""

    version: str = ""
    namespace: str = ""
    profile: str = ""
    values: Optional[dict[str, Any]] = None
    update_strategy: Optional[IstioUpdateStrategy] = None


class RevisionSummary(KubeModel):
    """Counts of the revisions owned by an Istio."""

    total: int = 0
    ready: int = 0
    in_use: int = 0


class IstioStatus(KubeModel):
    """Observed state of an Istio control plane."""

    observed_generation: int = 0
    active_revision_name: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    state: str = ""
    revisions: RevisionSummary = Field(default_factory=RevisionSummary)


class Istio(Resource):
    """Primary, user-facing desired state of one mesh control plane."""

    kind: str = Kind.ISTIO.value
    spec: IstioSpec = Field(default_factory=IstioSpec)
    status: IstioStatus = Field(default_factory=IstioStatus)


# --- IstioRevision -----------------------------------------------------------


class IstioRevisionSpec(KubeModel):
    """Desired state of one versioned control plane installation."""

    type: IstioRevisionType = IstioRevisionType.LOCAL
    version: str = ""
    namespace: str = ""
    values: Optional[dict[str, Any]] = None


class IstioRevisionStatus(KubeModel):
    """Observed state of an IstioRevision."""

    observed_generation: int = 0
    conditions: list[Condition] = Field(default_factory=list)
    state: str = ""


class IstioRevision(Resource):
    """One concrete, versioned control plane installation."""

    kind: str = Kind.ISTIO_REVISION.value
    spec: IstioRevisionSpec = Field(default_factory=IstioRevisionSpec)
    status: IstioRevisionStatus = Field(default_factory=IstioRevisionStatus)


# --- IstioRevisionTag --------------------------------------------------------


class TargetReference(KubeModel):
    """Reference from a tag to an Istio or an IstioRevision."""

    kind: str = ""
    name: str = ""


class IstioRevisionTagSpec(KubeModel):
    """Desired state of a revision tag."""

    target_ref: TargetReference = Field(default_factory=TargetReference)


class IstioRevisionTagStatus(KubeModel):
    """Observed state of a revision tag."""

    observed_generation: int = 0
    istio_revision: str = ""
    istiod_namespace: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    state: str = ""


class IstioRevisionTag(Resource):
    """Stable alias for a revision."""

    kind: str = Kind.ISTIO_REVISION_TAG.value
    spec: IstioRevisionTagSpec = Field(default_factory=IstioRevisionTagSpec)
    status: IstioRevisionTagStatus = Field(default_factory=IstioRevisionTagStatus)


# --- Data plane agents -------------------------------------------------------


class DataPlaneAgentSpec(KubeModel):
    """Desired state of a singleton data plane agent."""

    version: str = ""
    namespace: str = ""
    profile: str = ""
    values: Optional[dict[str, Any]] = None


class DataPlaneAgentStatus(KubeModel):
    """Observed state of a singleton data plane agent."""

    observed_generation: int = 0
    conditions: list[Condition] = Field(default_factory=list)
    state: str = ""


class DataPlaneAgent(Resource):
    """IstioCNI or ZTunnel singleton."""

    kind: str = Kind.ISTIO_CNI.value
    spec: DataPlaneAgentSpec = Field(default_factory=DataPlaneAgentSpec)
    status: DataPlaneAgentStatus = Field(default_factory=DataPlaneAgentStatus)


def get_owner_references(obj: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the owner references of a raw object."""
    return (obj.get("metadata") or {}).get("ownerReferences") or []


def get_labels(obj: dict[str, Any]) -> dict[str, str]:
    """Return the labels of a raw object."""
    return (obj.get("metadata") or {}).get("labels") or {}


def get_annotations(obj: dict[str, Any]) -> dict[str, str]:
    """Return the annotations of a raw object."""
    return (obj.get("metadata") or {}).get("annotations") or {}


def get_name(obj: dict[str, Any]) -> str:
    """Return the name of a raw object."""
    return (obj.get("metadata") or {}).get("name", "")


def get_namespace(obj: dict[str, Any]) -> Optional[str]:
    """Return the namespace of a raw object."""
    return (obj.get("metadata") or {}).get("namespace")


class EventType(str, Enum):
    """Kubernetes watch event type."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class WatchEvent(BaseModel):
    """Kubernetes watch event, with the previously seen object for updates."""

    event_type: EventType
    kind: str
    name: str
    namespace: Optional[str] = None
    object: dict[str, Any]
    old_object: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
