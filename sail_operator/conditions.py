"""Condition list handling and status aggregation."""

from datetime import datetime, timezone
from typing import Optional

from .models import Condition, ConditionStatus

HEALTHY_STATE = "Healthy"


def now() -> datetime:
    """Current time truncated to the second precision of Kubernetes timestamps."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def get_condition(conditions: list[Condition], condition_type: str) -> Condition:
    """
    Return the condition of the given type.

    Args:
        conditions: Condition list to search
        condition_type: Condition type

    Returns:
        The stored condition, or an empty condition of that type if absent
    """
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return Condition(type=condition_type)


def set_condition(
    conditions: list[Condition],
    new: Condition,
    timestamp: Optional[datetime] = None,
) -> list[Condition]:
    """
    Merge a condition into the list by type.

    The lastTransitionTime is only moved when the status changes; reason and
    message are always updated. The list is modified in place and returned.

    Args:
        conditions: Condition list to update
        new: Condition to merge
        timestamp: Transition time to record (defaults to now)

    Returns:
        The updated condition list
    """
    for i, existing in enumerate(conditions):
        if existing.type != new.type:
            continue
        if existing.status == new.status:
            transition_time = existing.last_transition_time
        else:
            transition_time = timestamp or now()
        conditions[i] = new.model_copy(update={"last_transition_time": transition_time})
        return conditions

    conditions.append(new.model_copy(update={"last_transition_time": timestamp or now()}))
    return conditions


def is_true(conditions: list[Condition], condition_type: str) -> bool:
    """Return whether the condition of the given type has status True."""
    return get_condition(conditions, condition_type).status == ConditionStatus.TRUE.value


def derive_state(*conditions: Condition) -> str:
    """
    Collapse conditions, given in priority order, into one state.

    Returns:
        The reason of the first condition that is not True, or "Healthy"
    """
    for condition in conditions:
        if condition.status != ConditionStatus.TRUE.value:
            return condition.reason
    return HEALTHY_STATE
