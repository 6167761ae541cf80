# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the placement lifecycle engine.
"""

# Base models
from .base import BaseEntity, DomainModel, generate_object_id, utcnow

# Enumerations
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

# Core entities
from .entities import (
    StatusChange,
    PersonalInfo,
    SpecialNeeds,
    FamilyBackground,
    Child,
    Contact,
    Address,
    FamilyMember,
    AgeRange,
    FamilyPreferences,
    PlacementHistoryEntry,
    Family,
    CompatibilityFactors,
    CompatibilityScore,
    Matching,
    StageNote,
    ApproximationStage,
    ApproximationProcess,
    CostRates,
    Payment,
    AllocationAdjustment,
    PlacementBudget,
    Placement,
    BudgetAllocation,
    BudgetTransaction,
    Budget,
    AuditLog,
    ENTITY_MODELS
)

__all__ = [
    # Base
    "BaseEntity",
    "DomainModel",
    "generate_object_id",
    "utcnow",

    # Enums
    "EntityType",
    "ChildStatus",
    "FamilyStatus",
    "MatchingStatus",
    "PlacementStatus",
    "Recommendation",
    "Gender",
    "GenderPreference",
    "FamilyRelationship",
    "PlacementOutcome",
    "PaymentStatus",
    "BudgetTransactionType",

    # Entities
    "StatusChange",
    "PersonalInfo",
    "SpecialNeeds",
    "FamilyBackground",
    "Child",
    "Contact",
    "Address",
    "FamilyMember",
    "AgeRange",
    "FamilyPreferences",
    "PlacementHistoryEntry",
    "Family",
    "CompatibilityFactors",
    "CompatibilityScore",
    "Matching",
    "StageNote",
    "ApproximationStage",
    "ApproximationProcess",
    "CostRates",
    "Payment",
    "AllocationAdjustment",
    "PlacementBudget",
    "Placement",
    "BudgetAllocation",
    "BudgetTransaction",
    "Budget",
    "AuditLog",
    "ENTITY_MODELS",
]
