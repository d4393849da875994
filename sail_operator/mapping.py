"""Mapping of watch events to the resources that must be reconciled."""

import logging

from .errors import SailOperatorError
from .models import (
    Istio,
    IstioRevision,
    IstioRevisionTag,
    Kind,
    WatchEvent,
    get_annotations,
    get_labels,
)
from .revision import controller_owner_name
from .store import ResourceStore
from .usage import namespace_referenced_identity, pod_referenced_identity

logger = logging.getLogger(__name__)


def map_to_self(event: WatchEvent) -> list[str]:
    return [event.name]


def owner_mapper(owner_kind: str):
    """Build a mapper that enqueues the controller owner of the given kind."""

    def mapper(event: WatchEvent) -> list[str]:
        name = controller_owner_name(event.object, owner_kind)
        return [name] if name else []

    return mapper


def _namespace_labels(store: ResourceStore, namespace: str) -> dict[str, str]:
    try:
        return get_labels(store.get(Kind.NAMESPACE.value, namespace))
    except SailOperatorError as e:
        logger.debug(f"Cannot read Namespace {namespace}: {e}")
        return {}


def namespace_to_revisions(store: ResourceStore, event: WatchEvent) -> list[str]:
    """Revisions installed into the namespace plus the one the namespace references."""
    names = []
    for obj in store.list(Kind.ISTIO_REVISION.value):
        revision = IstioRevision.model_validate(obj)
        if revision.spec.namespace == event.name:
            names.append(revision.name)
    referenced = namespace_referenced_identity(get_labels(event.object))
    if referenced and referenced not in names:
        names.append(referenced)
    return names


def namespace_to_identity(event: WatchEvent) -> list[str]:
    referenced = namespace_referenced_identity(get_labels(event.object))
    return [referenced] if referenced else []


def pod_to_identity(store: ResourceStore, event: WatchEvent) -> list[str]:
    ns_labels = _namespace_labels(store, event.namespace or "")
    referenced = pod_referenced_identity(get_labels(event.object), get_annotations(event.object), ns_labels)
    return [referenced] if referenced else []


def all_revisions(store: ResourceStore, event: WatchEvent) -> list[str]:
    return [IstioRevision.model_validate(obj).name for obj in store.list(Kind.ISTIO_REVISION.value)]


def tag_to_revision(event: WatchEvent) -> list[str]:
    tag = IstioRevisionTag.model_validate(event.object)
    return [tag.status.istio_revision] if tag.status.istio_revision else []


def revision_to_tags(store: ResourceStore, event: WatchEvent) -> list[str]:
    """Tags that resolve to the revision, or to the active revision of the Istio."""
    if event.kind == Kind.ISTIO.value:
        istio = Istio.model_validate(event.object)
        revision_name = istio.status.active_revision_name
    else:
        revision_name = event.name

    names = []
    for obj in store.list(Kind.ISTIO_REVISION_TAG.value):
        tag = IstioRevisionTag.model_validate(obj)
        ref = tag.spec.target_ref
        targets_istio = event.kind == Kind.ISTIO.value and ref.kind == Kind.ISTIO.value and ref.name == event.name
        if targets_istio or (revision_name and tag.status.istio_revision == revision_name):
            names.append(tag.name)
    return names

