# SPDX-License-Identifier: Apache-2.0

"""
Compatibility scoring domain logic.

Pure functions computing a 0-100 compatibility score and a per-factor
breakdown for a (child, family) pair. Nothing here touches the store, so the
scorer can be called from any number of readers concurrently.
"""

import calendar
from datetime import date
from typing import Dict, Iterable, List, Optional

from ..models.entities import Child, Family, CompatibilityFactors, CompatibilityScore
from ..models.enums import (
    FamilyStatus, FamilyRelationship, GenderPreference, PlacementOutcome, Recommendation
)
from ..models.base import utcnow


# Factor weights, must sum to 1.0
SCORE_WEIGHTS: Dict[str, float] = {
    "age_range": 0.25,
    "special_needs": 0.30,
    "family_size": 0.15,
    "experience": 0.20,
    "availability": 0.10,
}

HIGH_RECOMMENDATION_THRESHOLD = 80
MEDIUM_RECOMMENDATION_THRESHOLD = 60

SPECIAL_NEEDS_ACCEPTED_BASE = 80
SPECIAL_NEEDS_POINTS_PER_NEED = 5
SPECIAL_NEEDS_MAX_REDUCTION = 30
SPECIAL_NEEDS_FLOOR = 50

FAMILY_SIZE_BASE = 100
LARGE_HOUSEHOLD_SIZE = 4
LARGE_HOUSEHOLD_BONUS = 10
SIBLINGS_ACCOMMODATED_BONUS = 20
SIBLINGS_SPLIT_PENALTY = 10

EXPERIENCE_BASE = 60
SUCCESSFUL_PLACEMENT_POINTS = 10
SUCCESSFUL_PLACEMENT_CAP = 30
INTERRUPTED_PLACEMENT_POINTS = 5
INTERRUPTED_PLACEMENT_CAP = 20
PARENTING_EXPERIENCE_BONUS = 10

AVAILABILITY_BASE = 100
RECENT_PLACEMENT_MONTHS = 3
RECENT_PLACEMENT_PENALTY = 10


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def months_before(reference: date, months: int) -> date:
    """Same calendar day `months` months earlier, clamped to month end."""
    month_index = reference.year * 12 + (reference.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(reference.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def calculate_age(birth_date: date, today: date) -> int:
    """Age in whole years, incremented on the birthday itself."""
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def age_range_score(child: Child, family: Family, today: date) -> float:
    """
    Score how centrally the child's age sits in the family's preferred range.

    Args:
        child: Child being placed
        family: Candidate family
        today: Reference date for the child's age

    Returns:
        0 outside the range, otherwise a triangular score peaking at 100 in
        the middle of the range
    """
    age = calculate_age(child.personal_info.birth_date, today)
    age_range = family.preferences.age_range

    if age < age_range.min or age > age_range.max:
        return 0.0

    center = (age_range.max - age_range.min) / 2
    if center == 0:
        # Single-age range that contains the child
        return 100.0

    position = age - age_range.min
    return _clamp(100 * (1 - abs(position - center) / center))


def special_needs_score(child: Child, family: Family) -> float:
    needs = child.special_needs
    if not needs.has_special_needs:
        return 100.0

    if not family.preferences.special_needs_accepted:
        return 0.0

    reduction = min(SPECIAL_NEEDS_MAX_REDUCTION, SPECIAL_NEEDS_POINTS_PER_NEED * needs.complexity())
    return float(max(SPECIAL_NEEDS_FLOOR, SPECIAL_NEEDS_ACCEPTED_BASE - reduction))


def family_size_score(child: Child, family: Family) -> float:
    """
    Score the family's remaining capacity and ability to keep siblings together.

    Uses the family's real active placement count.
    """
    if family.is_at_capacity():
        return 0.0

    score = FAMILY_SIZE_BASE
    if family.household_size() > LARGE_HOUSEHOLD_SIZE:
        score += LARGE_HOUSEHOLD_BONUS

    sibling_count = len(child.family_background.siblings)
    if sibling_count > 0:
        if family.remaining_capacity() >= sibling_count:
            score += SIBLINGS_ACCOMMODATED_BONUS
        else:
            score -= SIBLINGS_SPLIT_PENALTY

    return _clamp(score)


def experience_score(family: Family) -> float:
    successful = sum(1 for entry in family.history if entry.outcome == PlacementOutcome.SUCCESSFUL)
    interrupted = sum(1 for entry in family.history if entry.outcome == PlacementOutcome.INTERRUPTED)

    score = EXPERIENCE_BASE
    score += min(SUCCESSFUL_PLACEMENT_CAP, successful * SUCCESSFUL_PLACEMENT_POINTS)
    score -= min(INTERRUPTED_PLACEMENT_CAP, interrupted * INTERRUPTED_PLACEMENT_POINTS)

    if any(member.relationship == FamilyRelationship.CHILD for member in family.composition):
        score += PARENTING_EXPERIENCE_BONUS

    return _clamp(score)


def has_recent_placement(family: Family, today: date) -> bool:
    """Check if any past placement ended within the recent-placement window."""
    window_start = months_before(today, RECENT_PLACEMENT_MONTHS)
    return any(entry.end_date > window_start for entry in family.history)


def availability_score(family: Family, today: date) -> float:
    if family.status != FamilyStatus.AVAILABLE:
        return 0.0

    score = AVAILABILITY_BASE
    if has_recent_placement(family, today):
        score -= RECENT_PLACEMENT_PENALTY
    return float(score)


def calculate_compatibility_factors(child: Child, family: Family, today: date) -> CompatibilityFactors:
    return CompatibilityFactors(
        age_range=age_range_score(child, family, today),
        special_needs=special_needs_score(child, family),
        family_size=family_size_score(child, family),
        experience=experience_score(family),
        availability=availability_score(family, today)
    )


def calculate_overall_score(factors: CompatibilityFactors) -> int:
    """Weighted sum of the five factors, rounded half up and kept in [0, 100]."""
    weighted = sum(getattr(factors, name) * weight for name, weight in SCORE_WEIGHTS.items())
    # Round half up on a value fixed to 6 decimals so float noise cannot flip a .5
    return int(_clamp(int(round(weighted, 6) + 0.5)))


def get_recommendation(overall_score: int) -> Recommendation:
    if overall_score >= HIGH_RECOMMENDATION_THRESHOLD:
        return Recommendation.HIGH
    if overall_score >= MEDIUM_RECOMMENDATION_THRESHOLD:
        return Recommendation.MEDIUM
    return Recommendation.LOW


def generate_compatibility_notes(
    child: Child,
    family: Family,
    factors: CompatibilityFactors,
    today: date
) -> List[str]:
    """
    Explain which factors hit a boundary condition.

    Notes are for audit and explainability only, they do not affect the score.

    Args:
        child: Child being placed
        family: Candidate family
        factors: Factors already computed for the pair
        today: Reference date for the child's age

    Returns:
        Ordered list of note strings
    """
    notes: List[str] = []
    age = calculate_age(child.personal_info.birth_date, today)
    age_range = family.preferences.age_range

    if age < age_range.min or age > age_range.max:
        notes.append(
            f"Child age ({age}) is outside family's preferred range ({age_range.min}-{age_range.max})"
        )
    elif factors.age_range > 90:
        notes.append("Excellent age match - child fits the center of family's preferred age range")

    if child.special_needs.has_special_needs:
        if factors.special_needs == 0:
            notes.append("Family does not accept children with special needs")
        elif factors.special_needs < 70:
            notes.append("Child has complex special needs that may require additional support")
        else:
            notes.append("Family is well-suited to support child's special needs")

    sibling_count = len(child.family_background.siblings)
    if factors.family_size == 0:
        notes.append("Family is at maximum capacity")
    elif sibling_count > 0:
        if family.remaining_capacity() >= sibling_count:
            notes.append(f"Child has {sibling_count} sibling(s) - family can accommodate them together")
        else:
            notes.append(f"Child has {sibling_count} sibling(s) - family cannot keep siblings together")

    if factors.experience < 50:
        notes.append("Family has limited fostering experience")
    elif factors.experience > 80:
        notes.append("Family has excellent fostering track record")

    if factors.availability == 0:
        notes.append(f"Family is not available (status: {family.status})")
    elif has_recent_placement(family, today):
        notes.append("Family had a placement end within the last 3 months")

    preference = family.preferences.gender_preference
    if preference != GenderPreference.ANY and preference != child.personal_info.gender:
        notes.append(
            f"Family prefers {'boys' if preference == GenderPreference.MALE else 'girls'} "
            f"but child is {child.personal_info.gender}"
        )

    return notes


def score_compatibility(child: Child, family: Family, today: Optional[date] = None) -> CompatibilityScore:
    """
    Compute the compatibility score of a child/family pair.

    Disqualifying conditions produce 0-valued factors rather than errors.

    Args:
        child: Child snapshot
        family: Family snapshot
        today: Reference date, defaults to the current UTC date

    Returns:
        CompatibilityScore with factors, overall score, tier and notes
    """
    today = today or utcnow().date()
    factors = calculate_compatibility_factors(child, family, today)
    overall = calculate_overall_score(factors)

    return CompatibilityScore(
        child_id=child.id,
        family_id=family.id,
        overall_score=overall,
        factors=factors,
        recommendation=get_recommendation(overall),
        notes=generate_compatibility_notes(child, family, factors, today)
    )


def rank_scores(scores: Iterable[CompatibilityScore], limit: Optional[int] = None) -> List[CompatibilityScore]:
    """Sort scores by overall score descending, ties broken by family id."""
    ranked = sorted(scores, key=lambda score: (-score.overall_score, score.family_id))
    if limit is not None:
        ranked = ranked[:max(0, limit)]
    return ranked
