"""Validation shared by the reconcilers."""

from datetime import datetime, timezone

from .errors import NotFoundError, ValidationError
from .models import Kind, ObjectMeta
from .store import ResourceStore

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def resource_takes_precedence(ours: ObjectMeta, theirs: ObjectMeta) -> bool:
    """
    Decide which of two same-named resources keeps the name.

    The older resource wins; on equal creation times the lower UID wins.

    Returns:
        True if ours takes precedence over theirs
    """
    our_time = ours.creation_timestamp or _EPOCH
    their_time = theirs.creation_timestamp or _EPOCH
    if our_time != their_time:
        return our_time < their_time
    return (ours.uid or "") < (theirs.uid or "")


def validate_target_namespace(store: ResourceStore, namespace: str) -> None:
    """
    Check that the namespace to install into exists and is not being deleted.

    Raises:
        ValidationError: If the namespace is missing or terminating
        StoreError: If the namespace cannot be read
    """
    try:
        ns = store.get(Kind.NAMESPACE.value, namespace)
    except NotFoundError:
        raise ValidationError(f'namespace "{namespace}" doesn\'t exist') from None
    if (ns.get("metadata") or {}).get("deletionTimestamp"):
        raise ValidationError(f'namespace "{namespace}" is being deleted')
