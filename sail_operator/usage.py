"""Detection of workloads that reference a revision or a revision tag."""

import logging
from typing import Any, Callable, Optional

from .constants import (
    ISTIO_INJECTION_ENABLED_VALUE,
    ISTIO_INJECTION_LABEL,
    ISTIO_REV_LABEL,
    ISTIO_SIDECAR_INJECT_LABEL,
)
from .models import (
    DEFAULT_REVISION,
    IstioRevision,
    IstioRevisionTag,
    Kind,
    get_annotations,
    get_labels,
    get_name,
    get_namespace,
)
from .store import ResourceStore
from .values import get_nested

logger = logging.getLogger(__name__)

POD_PHASE_SUCCEEDED = "Succeeded"


def namespace_referenced_identity(ns_labels: dict[str, str]) -> str:
    """
    Return the revision or tag a namespace asks to be injected by.

    The istio.io/rev label names an identity exactly and takes precedence
    over istio-injection=enabled, which selects the default identity.

    Returns:
        The identity name, or "" if the namespace references none
    """
    revision = ns_labels.get(ISTIO_REV_LABEL, "")
    if revision:
        return revision
    if ns_labels.get(ISTIO_INJECTION_LABEL) == ISTIO_INJECTION_ENABLED_VALUE:
        return DEFAULT_REVISION
    return ""


def pod_referenced_identity(
    pod_labels: dict[str, str],
    pod_annotations: dict[str, str],
    ns_labels: dict[str, str],
) -> str:
    """
    Return the revision or tag a pod is, or will be, injected by.

    An already injected pod records its injector in the istio.io/rev
    annotation. Otherwise, unless the pod opts out, the namespace reference
    wins over the pod's own labels.

    Returns:
        The identity name, or "" if the pod references none
    """
    injected = pod_annotations.get(ISTIO_REV_LABEL, "")
    if injected:
        return injected

    if pod_labels.get(ISTIO_SIDECAR_INJECT_LABEL) == "false":
        return ""

    from_namespace = namespace_referenced_identity(ns_labels)
    if from_namespace:
        return from_namespace

    revision = pod_labels.get(ISTIO_REV_LABEL, "")
    if revision:
        return revision
    if pod_labels.get(ISTIO_SIDECAR_INJECT_LABEL) == "true":
        return DEFAULT_REVISION
    return ""


def injects_all_namespaces(values: Optional[dict[str, Any]]) -> bool:
    return get_nested(values, "sidecarInjectorWebhook", "enableNamespacesByDefault") is True


class UsageDetector:
    """Decides whether an identity is referenced by any namespace or pod."""

    def __init__(self, store: ResourceStore):
        """
        Initialize usage detector.

        Args:
            store: Resource store to read namespaces, pods and tags from
        """
        self.store = store

    def is_revision_in_use(self, revision: IstioRevision) -> bool:
        """
        Check whether a revision is in use.

        A revision is in use when a tag resolves to it, or when a namespace
        or pod references it by name.

        Raises:
            StoreError: If namespaces, pods or tags cannot be listed
        """
        for obj in self.store.list(Kind.ISTIO_REVISION_TAG.value):
            tag = IstioRevisionTag.model_validate(obj)
            if tag.status.istio_revision == revision.name:
                logger.debug(f"IstioRevision {revision.name} is referenced by IstioRevisionTag {tag.name}")
                return True
        return self._is_referenced(revision.name, lambda: revision.spec.values)

    def is_tag_in_use(self, tag: IstioRevisionTag, resolve_revision: Callable[[], IstioRevision]) -> bool:
        """
        Check whether a tag is in use.

        Args:
            tag: The tag
            resolve_revision: Returns the revision the tag points at; only
                called when no namespace or pod references the tag

        Raises:
            StoreError: If namespaces or pods cannot be listed
            NotFoundError: If the target revision is needed and missing
        """
        return self._is_referenced(tag.name, lambda: resolve_revision().spec.values)

    def _is_referenced(self, identity: str, load_values: Callable[[], Optional[dict[str, Any]]]) -> bool:
        ns_labels: dict[str, dict[str, str]] = {}
        for ns in self.store.list(Kind.NAMESPACE.value):
            labels = get_labels(ns)
            if namespace_referenced_identity(labels) == identity:
                logger.debug(f"{identity} is referenced by Namespace {get_name(ns)}")
                return True
            ns_labels[get_name(ns)] = labels

        for pod in self.store.list(Kind.POD.value):
            if (pod.get("status") or {}).get("phase") == POD_PHASE_SUCCEEDED:
                continue
            namespace = get_namespace(pod)
            if namespace not in ns_labels:
                continue
            referenced = pod_referenced_identity(get_labels(pod), get_annotations(pod), ns_labels[namespace])
            if referenced == identity:
                logger.debug(f"{identity} is referenced by Pod {namespace}/{get_name(pod)}")
                return True

        values = load_values()
        if identity == DEFAULT_REVISION and injects_all_namespaces(values):
            return True

        logger.debug(f"{identity} is not referenced by any Pod or Namespace")
        return False
