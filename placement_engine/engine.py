# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Placement lifecycle engine facade.

Wires the store, notifier and config into the matching workflow, placement
state machine, approximation tracker and cost allocator, and exposes the
public operations. Collaborators are injected; the engine holds no
process-wide state.
"""

import os
import logging
import threading
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from .config import EngineConfig, load_config_from_env
from .domain.approximation import ProgressMetrics
from .domain.costs import BudgetSummary
from .domain.matching import MatchingFilters
from .domain.statistics import EngineStatistics, calculate_statistics
from .models.base import utcnow
from .models.entities import (
    AuditLog, Child, CompatibilityScore, Family, Matching, Placement, SpecialNeeds
)
from .models.enums import ChildStatus, EntityType
from .services.approximation import ApproximationTracker
from .services.audit import AuditFilters, AuditService
from .services.budget import BudgetService
from .services.matching import BatchProposalResult, BatchRankingResult, MatchingWorkflow
from .services.notifier import InMemoryNotifier, Notifier, create_amqp_notifier
from .services.placements import PlacementStateMachine
from .services.store import EntityStore, InMemoryEntityStore
from .services.mongodb import create_mongodb_store
from .utils.retry import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlacementEngine:
    """Public API of the placement lifecycle engine."""

    def __init__(
        self,
        store: EntityStore,
        notifier: Notifier,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.notifier = notifier
        self.config = config or EngineConfig()
        self.clock = clock

        self.audit = AuditService(store, clock)
        self.budget = BudgetService(store, self.config, self.audit, notifier, clock)
        self.matching = MatchingWorkflow(store, notifier, self.audit, clock)
        self.placements = PlacementStateMachine(
            store, notifier, self.audit, self.budget, self.matching, self.config, clock
        )
        self.approximation = ApproximationTracker(store, notifier, self.audit, clock)

    # Registration

    def register_child(self, child: Child) -> Child:
        """Store a new child record."""
        return self._register(child)

    def register_family(self, family: Family) -> Family:
        """Store a new family record."""
        return self._register(family)

    def _register(self, entity):
        with self.store.unit_of_work() as uow:
            uow.add(entity)
            self.audit.record(
                uow, entity.created_by, entity.entity_type, entity.id, "create",
                new_status=getattr(entity, "current_status", None) or getattr(entity, "status", None)
            )
        return entity

    def get_child(self, child_id: str) -> Child:
        return self.store.get(EntityType.CHILD, child_id)

    def get_family(self, family_id: str) -> Family:
        return self.store.get(EntityType.FAMILY, family_id)

    # Scoring and matching

    def score_compatibility(self, child_id: str, family_id: str) -> CompatibilityScore:
        return self.matching.score_compatibility(child_id, family_id)

    def rank_candidates(self, child_id: str, limit: Optional[int] = None) -> List[CompatibilityScore]:
        return self.matching.rank_candidate_families(child_id, limit)

    def rank_candidates_batch(
        self,
        child_ids: Iterable[str],
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> BatchRankingResult:
        return self.matching.rank_candidates_batch(child_ids, limit, cancel_event)

    def propose_matching(
        self,
        child_id: str,
        family_id: str,
        proposer_id: str,
        notes: Optional[str] = None
    ) -> Matching:
        return self.matching.propose_matching(child_id, family_id, proposer_id, notes)

    def propose_matchings_batch(
        self,
        pairs: Iterable[Tuple[str, str]],
        proposer_id: str,
        cancel_event: Optional[threading.Event] = None
    ) -> BatchProposalResult:
        return self.matching.propose_matchings_batch(pairs, proposer_id, cancel_event)

    def approve_matching(self, matching_id: str, approver_id: str) -> Matching:
        return self.matching.approve_matching(matching_id, approver_id)

    def reject_matching(self, matching_id: str, rejecter_id: str, reason: str) -> Matching:
        return self.matching.reject_matching(matching_id, rejecter_id, reason)

    def add_matching_note(self, matching_id: str, actor_id: str, note: str) -> Matching:
        return self.matching.add_matching_note(matching_id, actor_id, note)

    def get_matching(self, matching_id: str) -> Matching:
        return self.matching.get_matching(matching_id)

    def matchings_for_child(self, child_id: str) -> List[Matching]:
        return self.matching.matchings_for_child(child_id)

    def matchings_for_family(self, family_id: str) -> List[Matching]:
        return self.matching.matchings_for_family(family_id)

    def proposed_matchings(self) -> List[Matching]:
        return self.matching.proposed_matchings()

    def filter_matchings(self, filters: Optional[MatchingFilters] = None) -> List[Matching]:
        return self.matching.filter_matchings(filters)

    # Placements

    def create_placement(self, matching_id: str, actor_id: str) -> Placement:
        return self.placements.create_placement(matching_id, actor_id)

    def approve_and_place(self, matching_id: str, actor_id: str) -> Placement:
        return self.placements.approve_and_place(matching_id, actor_id)

    def end_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        return self.placements.end_placement(placement_id, reason, actor_id)

    def interrupt_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        return self.placements.interrupt_placement(placement_id, reason, actor_id)

    def transfer_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        return self.placements.transfer_placement(placement_id, reason, actor_id)

    def reactivate_placement(self, placement_id: str, reason: str, actor_id: str) -> Placement:
        return self.placements.reactivate_placement(placement_id, reason, actor_id)

    def change_child_status(self, child_id: str, new_status: ChildStatus, reason: str, actor_id: str) -> Child:
        return self.placements.change_child_status(child_id, new_status, reason, actor_id)

    def get_placement(self, placement_id: str) -> Placement:
        return self.placements.get_placement(placement_id)

    def active_placements(self) -> List[Placement]:
        return self.placements.active_placements()

    # Approximation

    def complete_stage(
        self,
        placement_id: str,
        stage_id: str,
        actor_id: str,
        notes: Optional[str] = None
    ) -> Placement:
        return self.approximation.complete_stage(placement_id, stage_id, actor_id, notes)

    def add_stage_note(self, placement_id: str, stage_id: str, actor_id: str, note: str) -> Placement:
        return self.approximation.add_stage_note(placement_id, stage_id, actor_id, note)

    def compute_progress(self, placement: Placement, now: Optional[datetime] = None) -> ProgressMetrics:
        return self.approximation.compute_progress(placement, now)

    def off_track_placements(self, now: Optional[datetime] = None) -> List[Placement]:
        return self.approximation.off_track_placements(now)

    # Costs and budget

    def update_child_special_needs(
        self,
        child_id: str,
        special_needs: SpecialNeeds,
        actor_id: str,
        reason: Optional[str] = None
    ) -> Child:
        return self.budget.update_child_special_needs(child_id, special_needs, actor_id, reason)

    def record_payment(self, placement_id: str, amount: float, description: str, actor_id: str) -> Placement:
        return self.budget.record_payment(placement_id, amount, description, actor_id)

    def update_total_budget(self, total_amount: float, actor_id: str):
        return self.budget.update_total_budget(total_amount, actor_id)

    def budget_summary(self) -> BudgetSummary:
        return self.budget.budget_summary()

    # Retries

    def with_retry(self, operation: Callable[[], T]) -> T:
        """
        Run an engine call, retrying ConcurrentModification and StoreTimeout.

        Example:
            engine.with_retry(lambda: engine.create_placement(matching_id, actor_id))
        """
        return call_with_retry(operation, max_retries=self.config.conflict_max_retries)

    # Audit and statistics

    def audit_trail(self, filters: Optional[AuditFilters] = None) -> List[AuditLog]:
        return self.audit.query(filters)

    def statistics(self, now: Optional[datetime] = None) -> EngineStatistics:
        """Engine-wide counts and averages from current snapshots."""
        return calculate_statistics(
            children=self.store.find(EntityType.CHILD),
            families=self.store.find(EntityType.FAMILY),
            matchings=self.store.find(EntityType.MATCHING),
            placements=self.store.find(EntityType.PLACEMENT),
            budget=self.budget.current_budget(),
            now=now or self.clock()
        )


def create_engine(
    store: Optional[EntityStore] = None,
    notifier: Optional[Notifier] = None,
    config: Optional[EngineConfig] = None
) -> PlacementEngine:
    """
    Factory function to create the engine with collaborators from environment.

    PLACEMENT_STORE selects ``mongodb`` or ``memory`` (default) and
    PLACEMENT_NOTIFIER selects ``amqp`` or ``memory`` (default).
    """
    config = config or load_config_from_env()

    if store is None:
        if os.getenv('PLACEMENT_STORE', 'memory') == 'mongodb':
            store = create_mongodb_store()
        else:
            store = InMemoryEntityStore(config.store_lock_timeout_seconds)

    if notifier is None:
        if os.getenv('PLACEMENT_NOTIFIER', 'memory') == 'amqp':
            notifier = create_amqp_notifier()
        else:
            notifier = InMemoryNotifier()

    logger.info(
        "Placement engine created",
        extra={"extra_fields": {"store": type(store).__name__, "notifier": type(notifier).__name__}}
    )
    return PlacementEngine(store, notifier, config)
