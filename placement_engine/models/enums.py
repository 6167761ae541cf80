# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the placement lifecycle engine.
"""

from enum import Enum


class EntityType(str, Enum):
    """Entity collections known to the store."""
    CHILD = "child"
    FAMILY = "family"
    MATCHING = "matching"
    PLACEMENT = "placement"
    BUDGET = "budget"
    AUDIT_LOG = "audit_log"


class ChildStatus(str, Enum):
    """Child care status enumeration."""
    AWAITING = "awaiting"
    IN_PLACEMENT = "in_placement"
    DISCHARGED = "discharged"
    RETURNED_FAMILY = "returned_family"


class FamilyStatus(str, Enum):
    """Host family availability enumeration."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNDER_EVALUATION = "under_evaluation"
    ACTIVE_PLACEMENT = "active_placement"


class MatchingStatus(str, Enum):
    """Matching workflow status enumeration."""
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"


class PlacementStatus(str, Enum):
    """Placement lifecycle status enumeration."""
    ACTIVE = "active"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    TRANSFERRED = "transferred"


class Recommendation(str, Enum):
    """Compatibility recommendation tiers."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Gender(str, Enum):
    """Child gender."""
    MALE = "male"
    FEMALE = "female"


class GenderPreference(str, Enum):
    """Family gender preference."""
    ANY = "any"
    MALE = "male"
    FEMALE = "female"


class FamilyRelationship(str, Enum):
    """Relationship of a household member to the primary contact."""
    PARENT = "parent"
    CHILD = "child"
    GRANDPARENT = "grandparent"
    SIBLING = "sibling"
    OTHER = "other"


class PlacementOutcome(str, Enum):
    """Outcome recorded in a family's placement history."""
    SUCCESSFUL = "successful"
    INTERRUPTED = "interrupted"
    TRANSFERRED = "transferred"


class PaymentStatus(str, Enum):
    """Placement payment status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BudgetTransactionType(str, Enum):
    """Budget ledger transaction kinds."""
    ALLOCATION = "allocation"
    RELEASE = "release"
    ADJUSTMENT = "adjustment"
    PAYMENT = "payment"
    CARRY_OVER = "carry_over"
