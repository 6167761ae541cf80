# SPDX-License-Identifier: Apache-2.0

"""
Typed errors raised by the placement lifecycle engine.

Every error carries the entity it concerns and the operation or transition
that was attempted, so callers can write an audit entry or map it to a
message without parsing strings. Only ConcurrentModification and
StoreTimeout are retryable as-is; the others need corrected input or state.
"""

from typing import Any, Dict, Optional


class PlacementEngineError(Exception):
    """Base class for all engine errors."""

    code = "placement_engine_error"
    retryable = False

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        attempted: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempted = attempted

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for audit logging."""
        return {
            "code": self.code,
            "message": self.message,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "attempted": self.attempted,
            "retryable": self.retryable
        }


class EntityNotFound(PlacementEngineError):
    code = "entity_not_found"

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            entity_type=entity_type,
            entity_id=entity_id,
            attempted="get"
        )


class ChildNotAvailable(PlacementEngineError):
    code = "child_not_available"

    def __init__(self, child_id: str, current_status: str, attempted: str):
        super().__init__(
            f"Child {child_id} is not available (current status: {current_status})",
            entity_type="child",
            entity_id=child_id,
            attempted=attempted
        )
        self.current_status = current_status


class FamilyNotAvailable(PlacementEngineError):
    code = "family_not_available"

    def __init__(self, family_id: str, current_status: str, attempted: str):
        super().__init__(
            f"Family {family_id} is not available (current status: {current_status})",
            entity_type="family",
            entity_id=family_id,
            attempted=attempted
        )
        self.current_status = current_status


class FamilyAtCapacity(PlacementEngineError):
    code = "family_at_capacity"

    def __init__(self, family_id: str, active_placements: int, max_children: int, attempted: str):
        super().__init__(
            f"Family {family_id} has {active_placements} of {max_children} placements active",
            entity_type="family",
            entity_id=family_id,
            attempted=attempted
        )
        self.active_placements = active_placements
        self.max_children = max_children


class InvalidStatusTransition(PlacementEngineError):
    code = "invalid_status_transition"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Invalid {entity_type} status transition from {from_status} to {to_status}",
            entity_type=entity_type,
            entity_id=entity_id,
            attempted=f"{from_status}->{to_status}"
        )
        self.from_status = from_status
        self.to_status = to_status


class InvalidState(PlacementEngineError):
    code = "invalid_state"

    def __init__(self, entity_type: str, entity_id: str, current_status: str, attempted: str, detail: str = ""):
        message = f"Cannot {attempted} {entity_type} {entity_id} in status {current_status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, entity_type=entity_type, entity_id=entity_id, attempted=attempted)
        self.current_status = current_status


class StageNotFound(PlacementEngineError):
    code = "stage_not_found"

    def __init__(self, placement_id: str, stage_id: str):
        super().__init__(
            f"Stage {stage_id} not found in placement {placement_id}",
            entity_type="placement",
            entity_id=placement_id,
            attempted=f"complete_stage:{stage_id}"
        )
        self.stage_id = stage_id


class PlacementNotActive(PlacementEngineError):
    code = "placement_not_active"

    def __init__(self, placement_id: str, current_status: str, attempted: str):
        super().__init__(
            f"Placement {placement_id} is not active (current status: {current_status})",
            entity_type="placement",
            entity_id=placement_id,
            attempted=attempted
        )
        self.current_status = current_status


class InsufficientBudget(PlacementEngineError):
    code = "insufficient_budget"

    def __init__(self, budget_id: str, requested: float, available: float, attempted: str = "reserve"):
        super().__init__(
            f"Insufficient budget: requested {requested:.2f}, available {available:.2f}",
            entity_type="budget",
            entity_id=budget_id,
            attempted=attempted
        )
        self.requested = requested
        self.available = available


class ConcurrentModification(PlacementEngineError):
    code = "concurrent_modification"
    retryable = True

    def __init__(self, entity_type: str, entity_id: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            entity_type=entity_type,
            entity_id=entity_id,
            attempted="commit"
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class StoreTimeout(PlacementEngineError):
    code = "store_timeout"
    retryable = True

    def __init__(self, operation: str, timeout_seconds: float, detail: str = ""):
        message = f"Store operation {operation} did not complete within {timeout_seconds}s"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, attempted=operation)
        self.timeout_seconds = timeout_seconds
