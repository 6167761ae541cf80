# SPDX-License-Identifier: Apache-2.0

"""
Matching domain logic.

Eligibility checks shared by the matching workflow and placement creation,
and in-memory filtering of matchings.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..models.entities import Child, Family, Matching
from ..models.enums import FamilyStatus, MatchingStatus, Recommendation
from .errors import ChildNotAvailable, FamilyAtCapacity, FamilyNotAvailable, InvalidState
from .transitions import status_value


@dataclass
class MatchingFilters:
    """Filters for matching queries."""
    status: Optional[MatchingStatus] = None
    recommendation: Optional[Recommendation] = None
    min_score: Optional[int] = None
    child_id: Optional[str] = None
    family_id: Optional[str] = None


def ensure_child_available(child: Child, attempted: str) -> None:
    if not child.is_awaiting():
        raise ChildNotAvailable(child.id, child.current_status, attempted)


def ensure_family_available(family: Family, attempted: str) -> None:
    if family.status != FamilyStatus.AVAILABLE:
        raise FamilyNotAvailable(family.id, family.status, attempted)


def ensure_family_has_capacity(family: Family, attempted: str) -> None:
    if family.is_at_capacity():
        raise FamilyAtCapacity(
            family.id, family.active_placement_count(), family.preferences.max_children, attempted
        )


def ensure_matching_placeable(matching: Matching) -> None:
    """
    Check that a placement may be created from the matching.

    Raises:
        InvalidState: unless the matching is approved and not yet consumed
    """
    if matching.status != MatchingStatus.APPROVED:
        raise InvalidState("matching", matching.id, matching.status, "create_placement",
                           "matching must be approved")
    if matching.is_consumed():
        raise InvalidState("matching", matching.id, matching.status, "create_placement",
                           f"already consumed by placement {matching.placement_id}")


def ensure_matching_proposed(matching: Matching, attempted: str) -> None:
    if matching.status != MatchingStatus.PROPOSED:
        raise InvalidState("matching", matching.id, matching.status, attempted,
                           "matching must be proposed")


def filter_matchings(matchings: Iterable[Matching], filters: Optional[MatchingFilters] = None) -> List[Matching]:
    """
    Apply filters to matchings, newest proposal first.

    Args:
        matchings: Matchings to filter
        filters: Filter criteria, None keeps everything

    Returns:
        Filtered list sorted by proposed_date descending
    """
    filters = filters or MatchingFilters()
    result = []

    for matching in matchings:
        if filters.status is not None and matching.status != status_value(filters.status):
            continue
        if (filters.recommendation is not None
                and matching.compatibility_score.recommendation != status_value(filters.recommendation)):
            continue
        if filters.min_score is not None and matching.compatibility_score.overall_score < filters.min_score:
            continue
        if filters.child_id is not None and matching.child_id != filters.child_id:
            continue
        if filters.family_id is not None and matching.family_id != filters.family_id:
            continue
        result.append(matching)

    return sorted(result, key=lambda matching: (matching.proposed_date, matching.id), reverse=True)
