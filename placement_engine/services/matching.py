# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Matching workflow: scoring, ranking, proposing, approving and rejecting
child/family pairings.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from opentelemetry import trace

from ..domain.compatibility import rank_scores, score_compatibility
from ..domain.errors import PlacementEngineError
from ..domain.matching import (
    MatchingFilters,
    ensure_child_available,
    ensure_family_available,
    ensure_matching_proposed,
    filter_matchings
)
from ..domain.transitions import apply_transition
from ..models.base import utcnow
from ..models.entities import CompatibilityScore, Matching
from ..models.enums import EntityType, FamilyStatus, MatchingStatus
from .audit import AuditService
from .notifier import MATCHING_APPROVED, MATCHING_PROPOSED, MATCHING_REJECTED, Notifier
from .store import EntityStore, UnitOfWork

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class BatchRankingResult:
    """Rankings produced by a batch run, with the children it did not reach."""
    rankings: Dict[str, List[CompatibilityScore]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class BatchProposalResult:
    """Matchings proposed by a batch run and the pairs that failed or were skipped."""
    proposed: List[Matching] = field(default_factory=list)
    errors: List[Tuple[str, str, str]] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False


class MatchingWorkflow:
    """Matching state machine: proposed -> approved | rejected."""

    def __init__(
        self,
        store: EntityStore,
        notifier: Notifier,
        audit: AuditService,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.notifier = notifier
        self.audit = audit
        self.clock = clock

    # Scoring

    def score_compatibility(self, child_id: str, family_id: str) -> CompatibilityScore:
        """Score a child/family pair from current snapshots."""
        with tracer.start_as_current_span("matching.score_compatibility") as span:
            span.set_attributes({"child.id": child_id, "family.id": family_id})
            child = self.store.get(EntityType.CHILD, child_id)
            family = self.store.get(EntityType.FAMILY, family_id)
            score = score_compatibility(child, family, self.clock().date())
            span.set_attribute("matching.overall_score", score.overall_score)
            return score

    def rank_candidate_families(self, child_id: str, limit: Optional[int] = None) -> List[CompatibilityScore]:
        """
        Score every available family for a child.

        Raises:
            ChildNotAvailable: if the child is not awaiting

        Returns:
            Scores sorted by overall score descending, ties by family id
        """
        with tracer.start_as_current_span("matching.rank_candidates") as span:
            span.set_attribute("child.id", child_id)
            child = self.store.get(EntityType.CHILD, child_id)
            ensure_child_available(child, "rank_candidates")

            today = self.clock().date()
            families = self.store.find(EntityType.FAMILY, {"status": FamilyStatus.AVAILABLE.value})
            ranked = rank_scores((score_compatibility(child, family, today) for family in families), limit)

            span.set_attribute("matching.candidate_count", len(families))
            logger.debug(f"Ranked {len(families)} candidate families for child {child_id}")
            return ranked

    def rank_candidates_batch(
        self,
        child_ids: Iterable[str],
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> BatchRankingResult:
        """
        Re-rank candidates for many children.

        Cancellation is checked before each child; children not reached are
        reported as skipped. Read-only.
        """
        result = BatchRankingResult()
        pending = list(child_ids)

        with tracer.start_as_current_span("matching.rank_candidates_batch") as span:
            for index, child_id in enumerate(pending):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    result.skipped = pending[index:]
                    break
                try:
                    result.rankings[child_id] = self.rank_candidate_families(child_id, limit)
                except PlacementEngineError as e:
                    result.errors[child_id] = e.code

            span.set_attributes({
                "matching.batch.ranked": len(result.rankings),
                "matching.batch.skipped": len(result.skipped),
                "matching.batch.cancelled": result.cancelled
            })

        return result

    # Workflow

    def _propose_in(
        self,
        uow: UnitOfWork,
        child_id: str,
        family_id: str,
        proposer_id: str,
        notes: Optional[str],
        now: datetime
    ) -> Matching:
        child = uow.get(EntityType.CHILD, child_id)
        family = uow.get(EntityType.FAMILY, family_id)
        ensure_child_available(child, "propose_matching")
        ensure_family_available(family, "propose_matching")

        score = score_compatibility(child, family, now.date())
        matching = Matching(
            child_id=child.id,
            family_id=family.id,
            compatibility_score=score,
            status=MatchingStatus.PROPOSED,
            proposed_by=proposer_id,
            proposed_date=now,
            notes=[notes] if notes else [],
            created_at=now,
            updated_at=now,
            created_by=proposer_id,
            updated_by=proposer_id
        )
        uow.add(matching)
        self.audit.record(
            uow, proposer_id, EntityType.MATCHING, matching.id, "propose",
            new_status=MatchingStatus.PROPOSED.value,
            reason=notes,
            after={"childId": child.id, "familyId": family.id, "overallScore": score.overall_score},
            timestamp=now
        )
        return matching

    def _emit_proposed(self, matching: Matching) -> None:
        self.notifier.emit(MATCHING_PROPOSED, {
            "matchingId": matching.id,
            "childId": matching.child_id,
            "familyId": matching.family_id,
            "overallScore": matching.compatibility_score.overall_score,
            "recommendation": matching.compatibility_score.recommendation,
            "proposedBy": matching.proposed_by
        })

    def propose_matching(
        self,
        child_id: str,
        family_id: str,
        proposer_id: str,
        notes: Optional[str] = None
    ) -> Matching:
        """
        Propose a matching between an awaiting child and an available family.

        Raises:
            ChildNotAvailable: unless the child is awaiting
            FamilyNotAvailable: unless the family is available
        """
        with tracer.start_as_current_span("matching.propose") as span:
            span.set_attributes({"child.id": child_id, "family.id": family_id})
            now = self.clock()

            with self.store.unit_of_work() as uow:
                matching = self._propose_in(uow, child_id, family_id, proposer_id, notes, now)

            logger.info(
                "Matching proposed",
                extra={"extra_fields": {
                    "matching_id": matching.id,
                    "child_id": child_id,
                    "family_id": family_id,
                    "overall_score": matching.compatibility_score.overall_score
                }}
            )
            self._emit_proposed(matching)
            return matching

    def propose_matchings_batch(
        self,
        pairs: Iterable[Tuple[str, str]],
        proposer_id: str,
        cancel_event: Optional[threading.Event] = None
    ) -> BatchProposalResult:
        """
        Propose many matchings, each in its own atomic unit.

        Cancellation is checked between pairs, so a cancelled run never
        leaves a matching half-created.
        """
        result = BatchProposalResult()
        pending = list(pairs)

        with tracer.start_as_current_span("matching.propose_batch"):
            for index, (child_id, family_id) in enumerate(pending):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    result.skipped = pending[index:]
                    break
                try:
                    result.proposed.append(self.propose_matching(child_id, family_id, proposer_id))
                except PlacementEngineError as e:
                    self.audit.log_rejection(e, proposer_id)
                    result.errors.append((child_id, family_id, e.code))

        return result

    def approve_in(self, uow: UnitOfWork, matching_id: str, approver_id: str, now: datetime) -> Matching:
        """Approve a matching on an open unit of work."""
        matching = uow.get(EntityType.MATCHING, matching_id)
        ensure_matching_proposed(matching, "approve")

        change = apply_transition(matching, MatchingStatus.APPROVED, approver_id, now)
        matching.approve(approver_id, now)
        uow.save(matching)
        self.audit.record_transition(uow, matching, change, action="approve")
        return matching

    def emit_approved(self, matching: Matching) -> None:
        self.notifier.emit(MATCHING_APPROVED, {
            "matchingId": matching.id,
            "childId": matching.child_id,
            "familyId": matching.family_id,
            "approvedBy": matching.approved_by
        })

    def approve_matching(self, matching_id: str, approver_id: str) -> Matching:
        """
        Approve a proposed matching. Does not create a placement.

        Raises:
            InvalidState: unless the matching is proposed
        """
        with tracer.start_as_current_span("matching.approve") as span:
            span.set_attribute("matching.id", matching_id)
            now = self.clock()

            with self.store.unit_of_work() as uow:
                matching = self.approve_in(uow, matching_id, approver_id, now)

            logger.info("Matching approved", extra={"extra_fields": {"matching_id": matching_id}})
            self.emit_approved(matching)
            return matching

    def reject_matching(self, matching_id: str, rejecter_id: str, reason: str) -> Matching:
        """
        Reject a proposed matching, keeping the reason in its notes.

        Raises:
            InvalidState: unless the matching is proposed
        """
        with tracer.start_as_current_span("matching.reject") as span:
            span.set_attribute("matching.id", matching_id)
            now = self.clock()

            with self.store.unit_of_work() as uow:
                matching = uow.get(EntityType.MATCHING, matching_id)
                ensure_matching_proposed(matching, "reject")

                change = apply_transition(matching, MatchingStatus.REJECTED, rejecter_id, now, reason)
                matching.reject(rejecter_id, reason, now)
                uow.save(matching)
                self.audit.record_transition(uow, matching, change, action="reject")

            logger.info("Matching rejected", extra={"extra_fields": {"matching_id": matching_id}})
            self.notifier.emit(MATCHING_REJECTED, {
                "matchingId": matching.id,
                "childId": matching.child_id,
                "familyId": matching.family_id,
                "rejectedBy": rejecter_id,
                "reason": reason
            })
            return matching

    def add_matching_note(self, matching_id: str, actor_id: str, note: str) -> Matching:
        """Append an audit note; allowed in every status."""
        now = self.clock()
        with self.store.unit_of_work() as uow:
            matching = uow.get(EntityType.MATCHING, matching_id)
            matching.add_note(actor_id, note, now)
            uow.save(matching)
            self.audit.record(uow, actor_id, EntityType.MATCHING, matching.id, "note", reason=note, timestamp=now)
        return matching

    # Queries

    def get_matching(self, matching_id: str) -> Matching:
        return self.store.get(EntityType.MATCHING, matching_id)

    def matchings_for_child(self, child_id: str) -> List[Matching]:
        return filter_matchings(self.store.find(EntityType.MATCHING, {"childId": child_id}))

    def matchings_for_family(self, family_id: str) -> List[Matching]:
        return filter_matchings(self.store.find(EntityType.MATCHING, {"familyId": family_id}))

    def proposed_matchings(self) -> List[Matching]:
        return filter_matchings(self.store.find(EntityType.MATCHING, {"status": MatchingStatus.PROPOSED.value}))

    def filter_matchings(self, filters: Optional[MatchingFilters] = None) -> List[Matching]:
        return filter_matchings(self.store.find(EntityType.MATCHING), filters)
