# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Placement state machine.

Each operation updates the placement, the child, the family, the matching
and the budget ledger in one unit of work. Either every entity moves to its
new status together with its audit entries, or nothing changes. Events are
emitted only after the commit.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from opentelemetry import trace

from ..config import EngineConfig
from ..domain.approximation import build_approximation_process
from ..domain.errors import InvalidState, PlacementNotActive
from ..domain.matching import (
    ensure_child_available,
    ensure_family_available,
    ensure_family_has_capacity,
    ensure_matching_placeable
)
from ..domain.transitions import apply_transition, status_value
from ..models.base import utcnow
from ..models.entities import Child, Family, Placement, PlacementHistoryEntry
from ..models.enums import (
    ChildStatus, EntityType, FamilyStatus, PlacementOutcome, PlacementStatus
)
from .audit import AuditService
from .budget import BudgetService
from .matching import MatchingWorkflow
from .notifier import (
    CHILD_STATUS_CHANGED,
    PLACEMENT_COMPLETED,
    PLACEMENT_CREATED,
    PLACEMENT_INTERRUPTED,
    PLACEMENT_REACTIVATED,
    PLACEMENT_TRANSFERRED,
    Notifier
)
from .store import EntityStore, UnitOfWork

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class Termination:
    """How a placement ending affects its child and family."""
    placement_status: PlacementStatus
    child_status: ChildStatus
    outcome: PlacementOutcome
    event: str
    attempted: str
    family_under_evaluation: bool = False


TERMINATIONS = {
    PlacementStatus.COMPLETED: Termination(
        PlacementStatus.COMPLETED, ChildStatus.DISCHARGED, PlacementOutcome.SUCCESSFUL,
        PLACEMENT_COMPLETED, "end_placement"
    ),
    PlacementStatus.INTERRUPTED: Termination(
        PlacementStatus.INTERRUPTED, ChildStatus.AWAITING, PlacementOutcome.INTERRUPTED,
        PLACEMENT_INTERRUPTED, "interrupt_placement", family_under_evaluation=True
    ),
    PlacementStatus.TRANSFERRED: Termination(
        PlacementStatus.TRANSFERRED, ChildStatus.AWAITING, PlacementOutcome.TRANSFERRED,
        PLACEMENT_TRANSFERRED, "transfer_placement"
    ),
}


@dataclass
class _Outcome:
    placement: Placement
    reallocated: List[Placement] = field(default_factory=list)


class PlacementStateMachine:
    """Creates placements from approved matchings and drives them to an end."""

    def __init__(
        self,
        store: EntityStore,
        notifier: Notifier,
        audit: AuditService,
        budget: BudgetService,
        matching: MatchingWorkflow,
        config: EngineConfig,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.notifier = notifier
        self.audit = audit
        self.budget = budget
        self.matching = matching
        self.config = config
        self.clock = clock

    # Helpers

    def _transition(self, uow: UnitOfWork, entity, new_status, actor_id: str, now: datetime,
                    reason: Optional[str] = None) -> None:
        change = apply_transition(entity, new_status, actor_id, now, reason)
        uow.save(entity)
        self.audit.record_transition(uow, entity, change)

    def _occupy_family(self, uow: UnitOfWork, family: Family, placement: Placement, actor_id: str,
                       now: datetime) -> None:
        family.active_placement_ids = family.active_placement_ids + [placement.id]
        family.update_timestamp(actor_id, now)
        uow.save(family)
        if family.is_at_capacity() and family.status != FamilyStatus.ACTIVE_PLACEMENT:
            self._transition(uow, family, FamilyStatus.ACTIVE_PLACEMENT, actor_id, now,
                             f"Reached capacity with placement {placement.id}")

    def _enter_placement(self, uow: UnitOfWork, child: Child, placement: Placement, actor_id: str,
                         now: datetime, reason: str) -> None:
        # The placement id must be set before the status flips to in_placement
        child.current_placement_id = placement.id
        self._transition(uow, child, ChildStatus.IN_PLACEMENT, actor_id, now, reason)

    def _emit(self, event: str, outcome: _Outcome, **extra) -> None:
        placement = outcome.placement
        payload = {
            "placementId": placement.id,
            "childId": placement.child_id,
            "familyId": placement.family_id,
            "status": status_value(placement.status),
            "monthlyAllocation": placement.budget.monthly_allocation
        }
        payload.update(extra)
        self.notifier.emit(event, payload)
        self.budget.emit_reallocated(outcome.reallocated)

    # Creation

    def create_in(self, uow: UnitOfWork, matching_id: str, actor_id: str, now: datetime) -> _Outcome:
        """
        Create a placement from an approved matching on an open unit of work.

        Raises:
            InvalidState: unless the matching is approved and not yet consumed
            ChildNotAvailable: unless the child is awaiting
            FamilyAtCapacity: if the family already has max_children placements
            FamilyNotAvailable: unless the family is available
            InsufficientBudget: if the allocation exceeds the ceiling
        """
        matching = uow.get(EntityType.MATCHING, matching_id)
        ensure_matching_placeable(matching)

        child = uow.get(EntityType.CHILD, matching.child_id)
        family = uow.get(EntityType.FAMILY, matching.family_id)
        ensure_child_available(child, "create_placement")
        ensure_family_has_capacity(family, "create_placement")
        ensure_family_available(family, "create_placement")

        placement = Placement(
            child_id=child.id,
            family_id=family.id,
            matching_id=matching.id,
            start_date=now,
            status=PlacementStatus.ACTIVE,
            approximation_process=build_approximation_process(now, self.config.expected_duration_days),
            created_at=now,
            updated_at=now,
            created_by=actor_id,
            updated_by=actor_id
        )
        uow.add(placement)

        self._enter_placement(uow, child, placement, actor_id, now, f"Placement {placement.id} created")
        self._occupy_family(uow, family, placement, actor_id, now)

        matching.placement_id = placement.id
        matching.update_timestamp(actor_id, now)
        uow.save(matching)

        self.budget.allocate_for_placement(uow, placement, child, actor_id, now)
        reallocated = self.budget.recompute_siblings(
            uow, family.id, child, f"Sibling placement {placement.id} started", actor_id, now
        )

        self.audit.record(
            uow, actor_id, EntityType.PLACEMENT, placement.id, "create",
            new_status=PlacementStatus.ACTIVE.value,
            after={
                "childId": child.id,
                "familyId": family.id,
                "matchingId": matching.id,
                "monthlyAllocation": placement.budget.monthly_allocation
            },
            timestamp=now
        )
        return _Outcome(placement=placement, reallocated=reallocated)

    def create_placement(self, matching_id: str, actor_id: str) -> Placement:
        """Create an active placement from an approved matching."""
        with tracer.start_as_current_span("placement.create") as span:
            span.set_attribute("matching.id", matching_id)
            now = self.clock()

            with self.store.unit_of_work() as uow:
                outcome = self.create_in(uow, matching_id, actor_id, now)

            placement = outcome.placement
            span.set_attribute("placement.id", placement.id)
            logger.info(
                "Placement created",
                extra={"extra_fields": {
                    "placement_id": placement.id,
                    "child_id": placement.child_id,
                    "family_id": placement.family_id,
                    "monthly_allocation": placement.budget.monthly_allocation
                }}
            )
            self._emit(PLACEMENT_CREATED, outcome, matchingId=matching_id)
            return placement

    def approve_and_place(self, matching_id: str, actor_id: str) -> Placement:
        """Approve a proposed matching and create its placement as one atomic unit."""
        with tracer.start_as_current_span("placement.approve_and_place") as span:
            span.set_attribute("matching.id", matching_id)
            now = self.clock()

            with self.store.unit_of_work() as uow:
                matching = self.matching.approve_in(uow, matching_id, actor_id, now)
                outcome = self.create_in(uow, matching_id, actor_id, now)

            self.matching.emit_approved(matching)
            self._emit(PLACEMENT_CREATED, outcome, matchingId=matching_id)
            return outcome.placement

    # Termination

    def _restore_family(self, uow: UnitOfWork, family: Family, termination: Termination, actor_id: str,
                        now: datetime, reason: str) -> None:
        if termination.family_under_evaluation:
            if family.status != FamilyStatus.UNDER_EVALUATION:
                self._transition(uow, family, FamilyStatus.UNDER_EVALUATION, actor_id, now, reason)
        elif family.status == FamilyStatus.ACTIVE_PLACEMENT and not family.is_at_capacity():
            self._transition(uow, family, FamilyStatus.AVAILABLE, actor_id, now, reason)

    def _terminate(self, placement_id: str, target: PlacementStatus, reason: str, actor_id: str) -> Placement:
        termination = TERMINATIONS[target]

        with tracer.start_as_current_span(f"placement.{termination.attempted}") as span:
            span.set_attribute("placement.id", placement_id)
            now = self.clock()

            with self.store.unit_of_work() as uow:
                placement = uow.get(EntityType.PLACEMENT, placement_id)
                if not placement.is_active():
                    raise PlacementNotActive(placement.id, placement.status, termination.attempted)

                child = uow.get(EntityType.CHILD, placement.child_id)
                family = uow.get(EntityType.FAMILY, placement.family_id)
                if child.current_placement_id != placement.id:
                    raise InvalidState(
                        "child", child.id, child.current_status, termination.attempted,
                        f"child is not in placement {placement.id}"
                    )

                self._transition(uow, placement, termination.placement_status, actor_id, now, reason)
                placement.end_date = now
                placement.end_reason = reason

                # Status leaves in_placement before the placement id is cleared
                self._transition(uow, child, termination.child_status, actor_id, now, reason)
                child.current_placement_id = None

                family.active_placement_ids = [pid for pid in family.active_placement_ids if pid != placement.id]
                family.history = family.history + [PlacementHistoryEntry(
                    placement_id=placement.id,
                    child_id=child.id,
                    outcome=termination.outcome,
                    start_date=placement.start_date.date(),
                    end_date=now.date()
                )]
                family.update_timestamp(actor_id, now)
                uow.save(family)
                self._restore_family(uow, family, termination, actor_id, now, reason)

                self.budget.release_for_placement(uow, placement, actor_id, now)
                reallocated = self.budget.recompute_siblings(
                    uow, family.id, child, f"Sibling placement {placement.id} ended", actor_id, now
                )

            logger.info(
                "Placement terminated",
                extra={"extra_fields": {
                    "placement_id": placement.id,
                    "status": status_value(placement.status),
                    "reason": reason
                }}
            )
            self._emit(termination.event, _Outcome(placement, reallocated), reason=reason)
            return placement

    def end_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        """Complete a placement: child discharged, successful outcome in family history."""
        return self._terminate(placement_id, PlacementStatus.COMPLETED, reason, actor_id)

    def interrupt_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        """Interrupt a placement: child back to awaiting, family under evaluation."""
        return self._terminate(placement_id, PlacementStatus.INTERRUPTED, reason, actor_id)

    def transfer_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        """Transfer a placement: child back to awaiting, ready for a new matching."""
        return self._terminate(placement_id, PlacementStatus.TRANSFERRED, reason, actor_id)

    def reactivate_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        """
        Return an interrupted or transferred placement to active.

        Reactivating closes an open family evaluation: a family under
        evaluation leaves that status, becoming available or, when the
        placement fills it, active_placement.

        Raises:
            InvalidStatusTransition: unless the placement is interrupted or transferred
            ChildNotAvailable: unless the child is awaiting
            FamilyNotAvailable: if the family is unavailable
            FamilyAtCapacity: if the family has no room left
            InsufficientBudget: if the allocation exceeds the ceiling
        """
        with tracer.start_as_current_span("placement.reactivate") as span:
            span.set_attribute("placement.id", placement_id)
            now = self.clock()

            with self.store.unit_of_work() as uow:
                placement = uow.get(EntityType.PLACEMENT, placement_id)
                child = uow.get(EntityType.CHILD, placement.child_id)
                family = uow.get(EntityType.FAMILY, placement.family_id)

                self._transition(uow, placement, PlacementStatus.ACTIVE, actor_id, now, reason)
                ensure_child_available(child, "reactivate_placement")
                if family.status == FamilyStatus.UNAVAILABLE:
                    ensure_family_available(family, "reactivate_placement")
                ensure_family_has_capacity(family, "reactivate_placement")

                placement.end_date = None
                placement.end_reason = None

                self._enter_placement(uow, child, placement, actor_id, now, reason)
                self._occupy_family(uow, family, placement, actor_id, now)
                if family.status == FamilyStatus.UNDER_EVALUATION:
                    self._transition(uow, family, FamilyStatus.AVAILABLE, actor_id, now,
                                     f"Evaluation closed by reactivating placement {placement.id}")

                self.budget.allocate_for_placement(uow, placement, child, actor_id, now)
                reallocated = self.budget.recompute_siblings(
                    uow, family.id, child, f"Sibling placement {placement.id} resumed", actor_id, now
                )

            self._emit(PLACEMENT_REACTIVATED, _Outcome(placement, reallocated), reason=reason)
            return placement

    # Child status

    def change_child_status(self, child_id: str, new_status: ChildStatus, reason: str, actor_id: str) -> Child:
        """
        Apply a child transition that does not involve a placement.

        Raises:
            InvalidState: for transitions into or out of in_placement
            InvalidStatusTransition: for transitions outside the child table
        """
        with tracer.start_as_current_span("child.change_status") as span:
            span.set_attribute("child.id", child_id)
            now = self.clock()
            target = status_value(new_status)

            with self.store.unit_of_work() as uow:
                child = uow.get(EntityType.CHILD, child_id)
                previous = child.current_status
                if ChildStatus.IN_PLACEMENT.value in (target, previous):
                    raise InvalidState(
                        "child", child.id, previous, f"change_status:{target}",
                        "placement transitions go through placement operations"
                    )
                self._transition(uow, child, target, actor_id, now, reason)

            self.notifier.emit(CHILD_STATUS_CHANGED, {
                "childId": child.id,
                "previousStatus": previous,
                "newStatus": target,
                "reason": reason
            })
            return child

    # Queries

    def get_placement(self, placement_id: str) -> Placement:
        return self.store.get(EntityType.PLACEMENT, placement_id)

    def placements_for_child(self, child_id: str) -> List[Placement]:
        return sorted(self.store.find(EntityType.PLACEMENT, {"childId": child_id}), key=lambda p: p.start_date)

    def placements_for_family(self, family_id: str) -> List[Placement]:
        return sorted(self.store.find(EntityType.PLACEMENT, {"familyId": family_id}), key=lambda p: p.start_date)

    def active_placements(self) -> List[Placement]:
        return self.store.find(EntityType.PLACEMENT, {"status": PlacementStatus.ACTIVE.value})
