# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Approximation process tracker for active placements.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from opentelemetry import trace

from ..domain import approximation
from ..domain.approximation import ProgressMetrics
from ..models.base import utcnow
from ..models.entities import Placement
from ..models.enums import EntityType, PlacementStatus
from .audit import AuditService
from .notifier import STAGE_COMPLETED, Notifier
from .store import EntityStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ApproximationTracker:
    """Completes stages, records stage notes and reports progress."""

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

    def complete_stage(
        self,
        placement_id: str,
        stage_id: str,
        actor_id: str,
        notes: Optional[str] = None
    ) -> Placement:
        """
        Mark a stage completed and advance the current stage.

        Re-completing a completed stage returns the placement unchanged.

        Raises:
            PlacementNotActive: unless the placement is active
            StageNotFound: for an unknown stage id
        """
        with tracer.start_as_current_span("approximation.complete_stage") as span:
            span.set_attributes({"placement.id": placement_id, "stage.id": stage_id})
            now = self.clock()

            with self.store.unit_of_work() as uow:
                placement = uow.get(EntityType.PLACEMENT, placement_id)
                previous_stage = placement.approximation_process.current_stage_id
                changed = approximation.complete_stage(placement, stage_id, actor_id, notes, now)

                if changed:
                    uow.save(placement)
                    self.audit.record(
                        uow, actor_id, EntityType.PLACEMENT, placement.id, "complete_stage",
                        reason=notes,
                        before={"currentStageId": previous_stage},
                        after={
                            "completedStageId": stage_id,
                            "currentStageId": placement.approximation_process.current_stage_id
                        },
                        timestamp=now
                    )

            span.set_attribute("stage.changed", changed)
            if not changed:
                logger.debug(f"Stage {stage_id} of placement {placement_id} already completed")
                return placement

            progress = approximation.compute_progress(placement, now)
            self.notifier.emit(STAGE_COMPLETED, {
                "placementId": placement.id,
                "stageId": stage_id,
                "currentStageId": placement.approximation_process.current_stage_id,
                "actualProgress": progress.actual_progress,
                "isOnTrack": progress.is_on_track
            })
            return placement

    def add_stage_note(self, placement_id: str, stage_id: str, actor_id: str, note: str) -> Placement:
        """
        Append a timestamped note to a stage.

        Raises:
            PlacementNotActive: unless the placement is active
            StageNotFound: for an unknown stage id
        """
        now = self.clock()
        with self.store.unit_of_work() as uow:
            placement = uow.get(EntityType.PLACEMENT, placement_id)
            approximation.add_stage_note(placement, stage_id, actor_id, note, now)
            uow.save(placement)
            self.audit.record(
                uow, actor_id, EntityType.PLACEMENT, placement.id, "note",
                reason=note,
                after={"stageId": stage_id},
                timestamp=now
            )
        return placement

    def compute_progress(self, placement: Placement, now: Optional[datetime] = None) -> ProgressMetrics:
        return approximation.compute_progress(placement, now or self.clock())

    def progress_for(self, placement_id: str) -> ProgressMetrics:
        return self.compute_progress(self.store.get(EntityType.PLACEMENT, placement_id))

    def off_track_placements(self, now: Optional[datetime] = None) -> List[Placement]:
        """Active placements behind their expected progress."""
        with tracer.start_as_current_span("approximation.off_track"):
            placements = self.store.find(EntityType.PLACEMENT, {"status": PlacementStatus.ACTIVE.value})
            return approximation.off_track(placements, now or self.clock())
