# SPDX-License-Identifier: Apache-2.0

"""
Aggregate statistics over engine entities.

Pure aggregation; callers pass in snapshots read from the store.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..models.entities import Budget, Child, Family, Matching, Placement
from ..models.enums import PlacementStatus
from ..models.base import utcnow
from .approximation import compute_progress


@dataclass
class EngineStatistics:
    """Counts and averages across children, families, matchings and placements."""
    children_by_status: Dict[str, int] = field(default_factory=dict)
    families_by_status: Dict[str, int] = field(default_factory=dict)
    matchings_by_status: Dict[str, int] = field(default_factory=dict)
    placements_by_status: Dict[str, int] = field(default_factory=dict)
    active_placements: int = 0
    completed_placements: int = 0
    average_placement_duration_days: Optional[float] = None
    average_compatibility_score: Optional[float] = None
    budget_utilization_percent: Optional[float] = None
    off_track_placement_ids: List[str] = field(default_factory=list)


def _count_by(values: Iterable[str]) -> Dict[str, int]:
    return dict(Counter(values))


def calculate_statistics(
    children: List[Child],
    families: List[Family],
    matchings: List[Matching],
    placements: List[Placement],
    budget: Optional[Budget] = None,
    now: Optional[datetime] = None
) -> EngineStatistics:
    """
    Calculate engine-wide statistics.

    Average duration covers completed placements with an end date; the
    average score covers every matching ever proposed.
    """
    now = now or utcnow()

    durations = [
        (placement.end_date - placement.start_date).days
        for placement in placements
        if placement.status == PlacementStatus.COMPLETED and placement.end_date
    ]
    scores = [matching.compatibility_score.overall_score for matching in matchings]

    utilization = None
    if budget is not None and budget.total_amount:
        utilization = round(budget.allocated_amount / budget.total_amount * 100, 2)

    return EngineStatistics(
        children_by_status=_count_by(child.current_status for child in children),
        families_by_status=_count_by(family.status for family in families),
        matchings_by_status=_count_by(matching.status for matching in matchings),
        placements_by_status=_count_by(placement.status for placement in placements),
        active_placements=sum(1 for placement in placements if placement.is_active()),
        completed_placements=len(durations),
        average_placement_duration_days=round(sum(durations) / len(durations), 1) if durations else None,
        average_compatibility_score=round(sum(scores) / len(scores), 1) if scores else None,
        budget_utilization_percent=utilization,
        off_track_placement_ids=[
            placement.id for placement in placements
            if placement.is_active() and not compute_progress(placement, now).is_on_track
        ]
    )
