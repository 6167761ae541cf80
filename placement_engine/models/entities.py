# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the placement lifecycle engine.
"""

from datetime import date, datetime
from typing import ClassVar, Dict, List, Optional, Any, Type
from pydantic import Field, field_validator, model_validator
from .base import BaseEntity, DomainModel, generate_object_id, utcnow
from .enums import (
    EntityType,
    ChildStatus,
    FamilyStatus,
    MatchingStatus,
    PlacementStatus,
    Recommendation,
    Gender,
    GenderPreference,
    FamilyRelationship,
    PlacementOutcome,
    PaymentStatus,
    BudgetTransactionType
)


class StatusChange(DomainModel):
    """One entry of an entity's status history."""

    previous_status: str = Field(..., description="Status before the change")
    new_status: str = Field(..., description="Status after the change")
    changed_at: datetime = Field(default_factory=utcnow, description="Change timestamp")
    changed_by: str = Field(..., description="Actor who performed the change")
    reason: Optional[str] = Field(None, description="Reason given for the change")


# Children

class PersonalInfo(DomainModel):
    """Identifying information of a child."""

    name: str = Field(..., min_length=1, max_length=200, description="Child full name")
    birth_date: date = Field(..., description="Date of birth")
    gender: Gender = Field(..., description="Child gender")
    cpf: Optional[str] = Field(None, description="National taxpayer id")
    birth_certificate: Optional[str] = Field(None, description="Birth certificate reference")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate child name."""
        if not v.strip():
            raise ValueError('Child name cannot be empty')
        return v.strip()


class SpecialNeeds(DomainModel):
    """Health, medication and educational needs of a child."""

    has_special_needs: bool = Field(default=False, description="Whether the child has special needs")
    health_conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    educational_needs: List[str] = Field(default_factory=list)
    therapeutic_needs: List[str] = Field(default_factory=list)

    def complexity(self) -> int:
        """Count of conditions, medications and educational needs."""
        return len(self.health_conditions) + len(self.medications) + len(self.educational_needs)


class FamilyBackground(DomainModel):
    """Origin family context of a child."""

    origin_family: Optional[str] = Field(None, description="Origin family description")
    siblings: List[str] = Field(default_factory=list, description="Sibling child IDs")
    community_ties: List[str] = Field(default_factory=list)
    cultural_considerations: List[str] = Field(default_factory=list)


class Child(BaseEntity):
    """Child awaiting or receiving foster care."""

    entity_type: ClassVar[str] = EntityType.CHILD.value

    personal_info: PersonalInfo = Field(..., description="Identifying information")
    special_needs: SpecialNeeds = Field(default_factory=SpecialNeeds, description="Special needs profile")
    family_background: FamilyBackground = Field(default_factory=FamilyBackground, description="Origin family context")
    current_status: ChildStatus = Field(default=ChildStatus.AWAITING, description="Care status")
    current_placement_id: Optional[str] = Field(None, description="Active placement ID")
    status_history: List[StatusChange] = Field(default_factory=list, description="Status change log")

    @model_validator(mode='after')
    def validate_placement_reference(self):
        """A child in placement must reference its placement."""
        if self.current_status == ChildStatus.IN_PLACEMENT and not self.current_placement_id:
            raise ValueError('current_placement_id is required when status is in_placement')
        return self

    def is_awaiting(self) -> bool:
        """Check if the child can be matched."""
        return self.current_status == ChildStatus.AWAITING


# Families

class Contact(DomainModel):
    """Primary contact of a family."""

    name: str = Field(..., min_length=1, max_length=200, description="Contact name")
    phone: Optional[str] = Field(None, description="Phone number")
    email: Optional[str] = Field(None, description="Email address")
    cpf: Optional[str] = Field(None, description="National taxpayer id")


class Address(DomainModel):
    """Postal address."""

    street: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "BR"


class FamilyMember(DomainModel):
    """Household member of a host family."""

    name: Optional[str] = Field(None, description="Member name")
    relationship: FamilyRelationship = Field(..., description="Relationship to the primary contact")
    age: Optional[int] = Field(None, ge=0, description="Age in years")
    occupation: Optional[str] = None
    income: Optional[float] = Field(None, ge=0, description="Monthly income")


class AgeRange(DomainModel):
    """Inclusive preferred age range."""

    min: int = Field(..., ge=0, description="Minimum accepted age")
    max: int = Field(..., ge=0, description="Maximum accepted age")

    @model_validator(mode='after')
    def validate_bounds(self):
        """Validate range ordering."""
        if self.min > self.max:
            raise ValueError('Age range minimum cannot exceed maximum')
        return self


class FamilyPreferences(DomainModel):
    """Placement preferences declared by a family."""

    age_range: AgeRange = Field(..., description="Preferred age range")
    gender_preference: GenderPreference = Field(default=GenderPreference.ANY)
    special_needs_accepted: bool = Field(default=False)
    max_children: int = Field(default=1, ge=1, description="Maximum concurrent placements")
    sibling_groups: bool = Field(default=False, description="Accepts sibling groups")


class PlacementHistoryEntry(DomainModel):
    """Past placement outcome of a family."""

    placement_id: Optional[str] = None
    child_id: Optional[str] = None
    outcome: PlacementOutcome = Field(..., description="Placement outcome")
    start_date: Optional[date] = None
    end_date: date = Field(..., description="Date the placement ended")


class Family(BaseEntity):
    """Host family."""

    entity_type: ClassVar[str] = EntityType.FAMILY.value

    primary_contact: Contact = Field(..., description="Primary contact")
    address: Address = Field(default_factory=Address, description="Home address")
    composition: List[FamilyMember] = Field(default_factory=list, description="Household members")
    preferences: FamilyPreferences = Field(..., description="Placement preferences")
    status: FamilyStatus = Field(default=FamilyStatus.AVAILABLE, description="Availability status")
    history: List[PlacementHistoryEntry] = Field(default_factory=list, description="Past placements")
    limitations: List[str] = Field(default_factory=list)
    active_placement_ids: List[str] = Field(default_factory=list, description="Currently active placement IDs")
    status_history: List[StatusChange] = Field(default_factory=list, description="Status change log")

    @model_validator(mode='after')
    def validate_capacity(self):
        """Active placements never exceed max_children."""
        if len(self.active_placement_ids) > self.preferences.max_children:
            raise ValueError('Active placements exceed max_children')
        return self

    def household_size(self) -> int:
        """Household members plus the primary contact."""
        return len(self.composition) + 1

    def active_placement_count(self) -> int:
        return len(self.active_placement_ids)

    def remaining_capacity(self) -> int:
        return max(0, self.preferences.max_children - self.active_placement_count())

    def is_at_capacity(self) -> bool:
        return self.active_placement_count() >= self.preferences.max_children


# Matching

class CompatibilityFactors(DomainModel):
    """Per-factor compatibility scores, each in [0, 100]."""

    age_range: float = Field(..., ge=0, le=100)
    special_needs: float = Field(..., ge=0, le=100)
    family_size: float = Field(..., ge=0, le=100)
    experience: float = Field(..., ge=0, le=100)
    availability: float = Field(..., ge=0, le=100)


class CompatibilityScore(DomainModel):
    """Weighted fit estimate between a child and a candidate family."""

    child_id: str
    family_id: str
    overall_score: int = Field(..., ge=0, le=100)
    factors: CompatibilityFactors
    recommendation: Recommendation
    notes: List[str] = Field(default_factory=list)


class Matching(BaseEntity):
    """Proposed pairing of a child and a family."""

    entity_type: ClassVar[str] = EntityType.MATCHING.value

    child_id: str = Field(..., description="Child ID")
    family_id: str = Field(..., description="Family ID")
    compatibility_score: CompatibilityScore = Field(..., description="Score at proposal time")
    status: MatchingStatus = Field(default=MatchingStatus.PROPOSED, description="Workflow status")
    proposed_by: str = Field(..., description="Actor who proposed")
    proposed_date: datetime = Field(default_factory=utcnow)
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_date: Optional[datetime] = None
    notes: List[str] = Field(default_factory=list, description="Audit notes")
    placement_id: Optional[str] = Field(None, description="Placement created from this matching")

    @model_validator(mode='after')
    def validate_status_fields(self):
        """Validate status-dependent fields."""
        if self.status == MatchingStatus.APPROVED and not self.approved_by:
            raise ValueError('approved_by is required when status is approved')

        if self.status == MatchingStatus.REJECTED and not self.rejected_by:
            raise ValueError('rejected_by is required when status is rejected')

        return self

    def can_approve(self) -> bool:
        return self.status == MatchingStatus.PROPOSED

    def can_reject(self) -> bool:
        return self.status == MatchingStatus.PROPOSED

    def is_consumed(self) -> bool:
        """Check if a placement was already created from this matching."""
        return self.placement_id is not None

    def approve(self, actor_id: str, now: datetime) -> None:
        """Approve the matching."""
        self.approved_by = actor_id
        self.approved_date = now
        self.status = MatchingStatus.APPROVED
        self.update_timestamp(actor_id, now)

    def reject(self, actor_id: str, reason: str, now: datetime) -> None:
        """Reject the matching, keeping the reason in the notes."""
        self.rejected_by = actor_id
        self.rejected_date = now
        self.status = MatchingStatus.REJECTED
        self.notes = self.notes + [f"Rejected: {reason}"]
        self.update_timestamp(actor_id, now)

    def add_note(self, actor_id: str, note: str, now: datetime) -> None:
        self.notes = self.notes + [note]
        self.update_timestamp(actor_id, now)


# Placements

class StageNote(DomainModel):
    """Timestamped note attached to an approximation stage."""

    text: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    author_id: str


class ApproximationStage(DomainModel):
    """One step of the approximation process."""

    id: str
    name: str
    description: Optional[str] = None
    completed: bool = False
    completed_date: Optional[datetime] = None
    completed_by: Optional[str] = None
    notes: List[StageNote] = Field(default_factory=list)


class ApproximationProcess(DomainModel):
    """Ordered stage sequence between matching approval and full placement."""

    stages: List[ApproximationStage] = Field(..., min_length=1)
    current_stage_id: str
    start_date: datetime
    expected_duration_days: int = Field(default=90, gt=0)

    @model_validator(mode='after')
    def validate_current_stage(self):
        """The current stage must be one of the stages."""
        if self.current_stage_id not in {stage.id for stage in self.stages}:
            raise ValueError(f'Unknown current stage: {self.current_stage_id}')
        return self

    def stage_index(self, stage_id: str) -> Optional[int]:
        for index, stage in enumerate(self.stages):
            if stage.id == stage_id:
                return index
        return None

    def completed_count(self) -> int:
        return sum(1 for stage in self.stages if stage.completed)


class CostRates(DomainModel):
    """Wage and multipliers used to price a placement."""

    minimum_wage: float = Field(..., gt=0)
    special_needs_multiplier: float = Field(..., ge=0)
    sibling_multiplier: float = Field(..., ge=0)


class Payment(DomainModel):
    """Payment made against a placement."""

    id: str = Field(default_factory=generate_object_id)
    amount: float = Field(..., gt=0)
    date: datetime = Field(default_factory=utcnow)
    description: str = ""
    status: PaymentStatus = Field(default=PaymentStatus.COMPLETED)


class AllocationAdjustment(DomainModel):
    """Record of a recomputed monthly allocation."""

    previous_amount: float
    new_amount: float
    reason: str
    adjusted_at: datetime = Field(default_factory=utcnow)
    adjusted_by: str


class PlacementBudget(DomainModel):
    """Recurring cost bound to a placement."""

    monthly_allocation: float = Field(default=0.0, ge=0)
    total_cost: float = Field(default=0.0, ge=0)
    payment_history: List[Payment] = Field(default_factory=list)
    rates: Optional[CostRates] = Field(None, description="Rates in effect at placement creation")
    sibling_count: int = Field(default=0, ge=0)
    adjustments: List[AllocationAdjustment] = Field(default_factory=list)


class Placement(BaseEntity):
    """Foster-care arrangement between one child and one family."""

    entity_type: ClassVar[str] = EntityType.PLACEMENT.value

    child_id: str = Field(..., description="Child ID")
    family_id: str = Field(..., description="Family ID")
    matching_id: Optional[str] = Field(None, description="Matching this placement was created from")
    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = None
    status: PlacementStatus = Field(default=PlacementStatus.ACTIVE)
    approximation_process: ApproximationProcess
    budget: PlacementBudget = Field(default_factory=PlacementBudget)
    end_reason: Optional[str] = None
    status_history: List[StatusChange] = Field(default_factory=list)

    def is_active(self) -> bool:
        return self.status == PlacementStatus.ACTIVE


# Budget

class BudgetAllocation(DomainModel):
    """Monthly amount reserved for one placement."""

    placement_id: str
    monthly_amount: float = Field(..., ge=0)
    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = None
    is_active: bool = True


class BudgetTransaction(DomainModel):
    """Budget ledger movement."""

    id: str = Field(default_factory=generate_object_id)
    type: BudgetTransactionType
    amount: float
    description: str = ""
    date: datetime = Field(default_factory=utcnow)
    placement_id: Optional[str] = None
    created_by: str


class Budget(BaseEntity):
    """Fiscal-year budget ledger with a total ceiling."""

    entity_type: ClassVar[str] = EntityType.BUDGET.value

    fiscal_year: int = Field(..., ge=2000)
    total_amount: float = Field(..., ge=0, description="Budget ceiling")
    allocated_amount: float = Field(default=0.0, ge=0)
    allocations: List[BudgetAllocation] = Field(default_factory=list)
    transactions: List[BudgetTransaction] = Field(default_factory=list)

    @property
    def available_amount(self) -> float:
        return round(self.total_amount - self.allocated_amount, 2)

    def active_allocation(self, placement_id: str) -> Optional[BudgetAllocation]:
        for allocation in self.allocations:
            if allocation.placement_id == placement_id and allocation.is_active:
                return allocation
        return None


# Audit

class AuditLog(BaseEntity):
    """Audit log entry for status transitions and ledger movements."""

    entity_type: ClassVar[str] = EntityType.AUDIT_LOG.value

    timestamp: datetime = Field(default_factory=utcnow, description="Action timestamp")
    actor_id: str = Field(..., description="Actor who performed the action")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity identifier")
    action: str = Field(..., description="Action performed")
    previous_status: Optional[str] = Field(None, description="Status before the action")
    new_status: Optional[str] = Field(None, description="Status after the action")
    reason: Optional[str] = Field(None, description="Reason given by the actor")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = [entity_type.value for entity_type in EntityType if entity_type != EntityType.AUDIT_LOG]
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v

    @field_validator('action')
    @classmethod
    def validate_action(cls, v):
        """Validate action type."""
        valid_actions = [
            'create', 'propose', 'approve', 'reject', 'note', 'transition',
            'complete_stage', 'allocate', 'reallocate', 'release', 'payment',
            'update_budget', 'update_special_needs'
        ]
        if v not in valid_actions:
            raise ValueError(f'Invalid action type: {v}')
        return v


ENTITY_MODELS: Dict[str, Type[BaseEntity]] = {
    EntityType.CHILD.value: Child,
    EntityType.FAMILY.value: Family,
    EntityType.MATCHING.value: Matching,
    EntityType.PLACEMENT.value: Placement,
    EntityType.BUDGET.value: Budget,
    EntityType.AUDIT_LOG.value: AuditLog,
}
