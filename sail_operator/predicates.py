"""Watch event filters that suppress irrelevant reconciliations."""

import copy
import re
from typing import Any, Callable

from .constants import IGNORE_ANNOTATION
from .models import EventType, Kind, WatchEvent, get_annotations, get_labels

Predicate = Callable[[WatchEvent], bool]

# Validating webhook configurations whose caBundle and failurePolicy istiod rewrites itself
ISTIOD_VALIDATOR_NAME = re.compile(r"istiod-.*-validator|istio-validator.*")


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _generation_changed(old: dict[str, Any], new: dict[str, Any]) -> bool:
    return _metadata(old).get("generation") != _metadata(new).get("generation")


def _spec_changed(old: dict[str, Any], new: dict[str, Any]) -> bool:
    return old.get("spec") != new.get("spec")


# Kinds whose spec updates do not bump metadata.generation
SPEC_CHANGE_STRATEGIES: dict[str, Callable[[dict[str, Any], dict[str, Any]], bool]] = {
    Kind.HORIZONTAL_POD_AUTOSCALER.value: _spec_changed,
}


def spec_changed(kind: str, old: dict[str, Any], new: dict[str, Any]) -> bool:
    return SPEC_CHANGE_STRATEGIES.get(kind, _generation_changed)(old, new)


def ignore_status_change(event: WatchEvent) -> bool:
    """
    Pass updates that change more than the status.

    An update passes when the spec, labels, annotations, owner references or
    finalizers changed.
    """
    if event.event_type != EventType.MODIFIED or event.old_object is None:
        return True
    old, new = event.old_object, event.object
    if spec_changed(event.kind, old, new):
        return True
    old_meta, new_meta = _metadata(old), _metadata(new)
    return (
        get_labels(old) != get_labels(new)
        or get_annotations(old) != get_annotations(new)
        or (old_meta.get("ownerReferences") or []) != (new_meta.get("ownerReferences") or [])
        or (old_meta.get("finalizers") or []) != (new_meta.get("finalizers") or [])
    )


def ignore_update_when_annotation(event: WatchEvent) -> bool:
    """Drop updates to objects annotated sailoperator.io/ignore=true."""
    if event.event_type != EventType.MODIFIED:
        return True
    return get_annotations(event.object).get(IGNORE_ANNOTATION) != "true"


def ignore_update(event: WatchEvent) -> bool:
    """Drop every update."""
    return event.event_type != EventType.MODIFIED


def _strip_validator_churn(obj: dict[str, Any]) -> dict[str, Any]:
    result = copy.deepcopy(obj)
    metadata = result.get("metadata") or {}
    for key in ("resourceVersion", "generation", "managedFields"):
        metadata.pop(key, None)
    for webhook in result.get("webhooks") or []:
        webhook.pop("failurePolicy", None)
        client_config = webhook.get("clientConfig")
        if isinstance(client_config, dict):
            client_config.pop("caBundle", None)
    return result


def validating_webhook_config_predicate(event: WatchEvent) -> bool:
    """
    Ignore updates to istiod's validating webhook that istiod made itself.

    istiod patches the CA bundle and failure policy of its own validator
    configuration; an update that only touches those fields must not trigger
    a reinstall that would revert them.
    """
    if event.event_type != EventType.MODIFIED or event.old_object is None:
        return True
    if not ISTIOD_VALIDATOR_NAME.search(event.name):
        return True
    return _strip_validator_churn(event.old_object) != _strip_validator_churn(event.object)


def all_of(*predicates: Predicate) -> Predicate:
    """Combine predicates; an event passes only if every predicate passes."""

    def combined(event: WatchEvent) -> bool:
        return all(predicate(event) for predicate in predicates)

    return combined
