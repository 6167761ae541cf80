# SPDX-License-Identifier: Apache-2.0

"""
Approximation process domain logic.

Pure functions for seeding the staged introduction between a family and a
child, completing and annotating stages, and measuring progress against the
expected duration.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..models.entities import ApproximationProcess, ApproximationStage, Placement, StageNote
from ..models.base import utcnow
from .errors import PlacementNotActive, StageNotFound


DEFAULT_EXPECTED_DURATION_DAYS = 90
ON_TRACK_TOLERANCE = 15

DEFAULT_STAGES: Tuple[Tuple[str, str, str], ...] = (
    ("1", "Initial Contact", "First meeting between child and family"),
    ("2", "Orientation Visit", "Child visits family home"),
    ("3", "Trial Period", "Short-term stay to assess compatibility"),
    ("4", "Full Placement", "Child moves in permanently"),
)


@dataclass
class ProgressMetrics:
    """Progress of an approximation process at a point in time."""
    actual_progress: int
    expected_progress: int
    days_elapsed: int
    is_on_track: bool
    completed_stages: int
    total_stages: int
    next_stage_id: Optional[str] = None
    next_stage_name: Optional[str] = None


def round_half_up(value: float) -> int:
    """Round a non-negative value to the nearest integer, halves upward."""
    return int(round(value, 6) + 0.5)


def build_approximation_process(
    start_date: datetime,
    expected_duration_days: int = DEFAULT_EXPECTED_DURATION_DAYS
) -> ApproximationProcess:
    """
    Seed the four default stages, starting at the first one.

    Args:
        start_date: Placement start timestamp
        expected_duration_days: Planned length of the process

    Returns:
        ApproximationProcess with no stage completed
    """
    stages = [
        ApproximationStage(id=stage_id, name=name, description=description)
        for stage_id, name, description in DEFAULT_STAGES
    ]
    return ApproximationProcess(
        stages=stages,
        current_stage_id=stages[0].id,
        start_date=start_date,
        expected_duration_days=expected_duration_days
    )


def _require_active(placement: Placement, attempted: str) -> None:
    if not placement.is_active():
        raise PlacementNotActive(placement.id, placement.status, attempted)


def _find_stage(placement: Placement, stage_id: str) -> Tuple[int, ApproximationStage]:
    process = placement.approximation_process
    index = process.stage_index(stage_id)
    if index is None:
        raise StageNotFound(placement.id, stage_id)
    return index, process.stages[index]


def next_incomplete_stage(process: ApproximationProcess) -> Optional[ApproximationStage]:
    """First incomplete stage after the current one, if any."""
    current_index = process.stage_index(process.current_stage_id) or 0
    for stage in process.stages[current_index + 1:]:
        if not stage.completed:
            return stage
    return None


def complete_stage(
    placement: Placement,
    stage_id: str,
    actor_id: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> bool:
    """
    Mark a stage completed and advance the current stage.

    Completing a stage that is already completed leaves the placement
    untouched. The current stage only moves forward; at the last stage it
    stays put.

    Args:
        placement: Placement to mutate in place
        stage_id: Stage to complete
        actor_id: Actor completing the stage
        notes: Optional note recorded on the stage
        now: Completion timestamp

    Returns:
        True if the placement changed

    Raises:
        PlacementNotActive: if the placement is not active
        StageNotFound: if no stage has the given id
    """
    _require_active(placement, f"complete_stage:{stage_id}")
    _, stage = _find_stage(placement, stage_id)

    if stage.completed:
        return False

    now = now or utcnow()
    process = placement.approximation_process

    stage.completed = True
    stage.completed_date = now
    stage.completed_by = actor_id
    if notes:
        stage.notes = stage.notes + [StageNote(text=notes, created_at=now, author_id=actor_id)]

    current = process.stages[process.stage_index(process.current_stage_id)]
    if current.completed:
        following = next_incomplete_stage(process)
        if following is not None:
            process.current_stage_id = following.id

    placement.update_timestamp(actor_id, now)
    return True


def add_stage_note(
    placement: Placement,
    stage_id: str,
    actor_id: str,
    note: str,
    now: Optional[datetime] = None
) -> StageNote:
    """Append a timestamped note to a stage of an active placement."""
    _require_active(placement, f"add_stage_note:{stage_id}")
    _, stage = _find_stage(placement, stage_id)

    now = now or utcnow()
    stage_note = StageNote(text=note, created_at=now, author_id=actor_id)
    stage.notes = stage.notes + [stage_note]
    placement.update_timestamp(actor_id, now)
    return stage_note


def compute_progress(placement: Placement, now: Optional[datetime] = None) -> ProgressMetrics:
    """
    Compare completed stages with elapsed time.

    Pure and lock-free; safe to call from any number of readers.

    Args:
        placement: Placement snapshot
        now: Reference time, defaults to the current UTC time

    Returns:
        ProgressMetrics for the placement's approximation process
    """
    now = now or utcnow()
    process = placement.approximation_process

    days_elapsed = max(0, (now - process.start_date).days)
    total = len(process.stages)
    completed = process.completed_count()

    actual = round_half_up(100 * completed / total)
    expected = min(100, round_half_up(100 * days_elapsed / process.expected_duration_days))

    upcoming = next(
        (stage for stage in process.stages if not stage.completed),
        None
    )

    return ProgressMetrics(
        actual_progress=actual,
        expected_progress=expected,
        days_elapsed=days_elapsed,
        is_on_track=actual >= expected - ON_TRACK_TOLERANCE,
        completed_stages=completed,
        total_stages=total,
        next_stage_id=upcoming.id if upcoming else None,
        next_stage_name=upcoming.name if upcoming else None
    )


def off_track(placements: List[Placement], now: Optional[datetime] = None) -> List[Placement]:
    """Active placements whose approximation is behind schedule."""
    now = now or utcnow()
    return [
        placement for placement in placements
        if placement.is_active() and not compute_progress(placement, now).is_on_track
    ]
