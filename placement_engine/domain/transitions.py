# SPDX-License-Identifier: Apache-2.0

"""
Status transition tables and the single place they are enforced.

Every status change of a child, family, matching or placement goes through
`apply_transition`, which validates against the table for the entity type,
updates the status and appends a status history entry.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from ..models.entities import Child, Family, Matching, Placement, StatusChange
from ..models.enums import (
    EntityType, ChildStatus, FamilyStatus, MatchingStatus, PlacementStatus
)
from .errors import InvalidStatusTransition


CHILD_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ChildStatus.AWAITING: frozenset({ChildStatus.IN_PLACEMENT, ChildStatus.RETURNED_FAMILY}),
    ChildStatus.IN_PLACEMENT: frozenset({
        ChildStatus.DISCHARGED, ChildStatus.RETURNED_FAMILY, ChildStatus.AWAITING
    }),
    ChildStatus.DISCHARGED: frozenset(),  # Terminal state
    ChildStatus.RETURNED_FAMILY: frozenset(),  # Terminal state
}

PLACEMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PlacementStatus.ACTIVE: frozenset({
        PlacementStatus.COMPLETED, PlacementStatus.INTERRUPTED, PlacementStatus.TRANSFERRED
    }),
    PlacementStatus.COMPLETED: frozenset(),  # Terminal state
    PlacementStatus.INTERRUPTED: frozenset({PlacementStatus.ACTIVE}),
    PlacementStatus.TRANSFERRED: frozenset({PlacementStatus.ACTIVE}),
}

MATCHING_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    MatchingStatus.PROPOSED: frozenset({MatchingStatus.APPROVED, MatchingStatus.REJECTED}),
    MatchingStatus.APPROVED: frozenset(),  # Terminal state
    MatchingStatus.REJECTED: frozenset(),  # Terminal state
}

FAMILY_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    FamilyStatus.AVAILABLE: frozenset({
        FamilyStatus.UNAVAILABLE, FamilyStatus.UNDER_EVALUATION, FamilyStatus.ACTIVE_PLACEMENT
    }),
    FamilyStatus.ACTIVE_PLACEMENT: frozenset({FamilyStatus.AVAILABLE, FamilyStatus.UNDER_EVALUATION}),
    FamilyStatus.UNDER_EVALUATION: frozenset({
        FamilyStatus.AVAILABLE, FamilyStatus.UNAVAILABLE, FamilyStatus.ACTIVE_PLACEMENT
    }),
    FamilyStatus.UNAVAILABLE: frozenset({FamilyStatus.AVAILABLE, FamilyStatus.UNDER_EVALUATION}),
}


def _by_value(table: Dict[str, FrozenSet[str]]) -> Dict[str, FrozenSet[str]]:
    return {
        key.value: frozenset(status.value for status in targets)
        for key, targets in table.items()
    }


TRANSITION_TABLES: Dict[str, Dict[str, FrozenSet[str]]] = {
    EntityType.CHILD.value: _by_value(CHILD_TRANSITIONS),
    EntityType.FAMILY.value: _by_value(FAMILY_TRANSITIONS),
    EntityType.MATCHING.value: _by_value(MATCHING_TRANSITIONS),
    EntityType.PLACEMENT.value: _by_value(PLACEMENT_TRANSITIONS),
}

_STATUS_FIELDS = {
    EntityType.CHILD.value: "current_status",
    EntityType.FAMILY.value: "status",
    EntityType.MATCHING.value: "status",
    EntityType.PLACEMENT.value: "status",
}


def status_value(status) -> str:
    """Plain string value of a status enum member or string."""
    return getattr(status, "value", status)


def is_transition_allowed(entity_type: str, current_status: str, new_status: str) -> bool:
    """Check a transition against the table for the entity type."""
    table = TRANSITION_TABLES[entity_type]
    return status_value(new_status) in table.get(status_value(current_status), frozenset())


def is_terminal(entity_type: str, status: str) -> bool:
    return not TRANSITION_TABLES[entity_type].get(status_value(status))


def validate_status_transition(entity_type: str, entity_id: str, current_status: str, new_status: str) -> None:
    """
    Validate a status transition.

    Args:
        entity_type: One of child, family, matching, placement
        entity_id: ID of the entity being transitioned
        current_status: Current status value
        new_status: Desired status value

    Raises:
        InvalidStatusTransition: if the table has no such edge
    """
    if not is_transition_allowed(entity_type, current_status, new_status):
        raise InvalidStatusTransition(entity_type, entity_id, status_value(current_status), status_value(new_status))


def apply_transition(
    entity,
    new_status: str,
    actor_id: str,
    now: datetime,
    reason: Optional[str] = None
) -> StatusChange:
    """
    Validate and apply a status change to a child, family, matching or placement.

    Matchings have no status history; their approval and rejection stamps
    are set by the caller.

    Returns:
        The StatusChange describing the transition, for audit logging
    """
    entity_type = entity.entity_type
    status_field = _STATUS_FIELDS[entity_type]
    current_status = getattr(entity, status_field)

    validate_status_transition(entity_type, entity.id, current_status, new_status)

    change = StatusChange(
        previous_status=status_value(current_status),
        new_status=status_value(new_status),
        changed_at=now,
        changed_by=actor_id,
        reason=reason
    )

    if isinstance(entity, Matching):
        # Matching status stamps (approved_by/rejected_by) are validated with the status
        return change

    setattr(entity, status_field, new_status)
    if isinstance(entity, (Child, Family, Placement)):
        entity.status_history = entity.status_history + [change]
    entity.update_timestamp(actor_id, now)
    return change
