# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from bson import ObjectId

from placement_engine.config import EngineConfig
from placement_engine.engine import PlacementEngine
from placement_engine.models.entities import (
    AgeRange, Child, Contact, Family, FamilyBackground, FamilyMember,
    FamilyPreferences, PersonalInfo, PlacementHistoryEntry, SpecialNeeds
)
from placement_engine.models.enums import FamilyRelationship, FamilyStatus, Gender
from placement_engine.services.notifier import InMemoryNotifier
from placement_engine.services.store import InMemoryEntityStore

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'


FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    """Controllable clock injected into services."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, hours: int = 0) -> datetime:
        self.now = self.now + timedelta(days=days, hours=hours)
        return self.now


@pytest.fixture
def clock():
    """Clock fixed at FIXED_NOW."""
    return FakeClock()


@pytest.fixture
def actor_id():
    """Coordinator performing mutating calls."""
    return str(ObjectId())


@pytest.fixture
def config():
    """Default engine configuration."""
    return EngineConfig()


@pytest.fixture
def store():
    """In-memory entity store."""
    return InMemoryEntityStore(lock_timeout_seconds=1.0)


@pytest.fixture
def notifier():
    """In-memory notifier capturing events."""
    return InMemoryNotifier()


@pytest.fixture
def engine(store, notifier, config, clock):
    """Engine wired with in-memory collaborators and the fake clock."""
    return PlacementEngine(store, notifier, config, clock)


@pytest.fixture
def make_child(actor_id):
    """Factory for Child entities."""
    def _make_child(
        age_years: int = 10,
        has_special_needs: bool = False,
        health_conditions: Optional[List[str]] = None,
        medications: Optional[List[str]] = None,
        educational_needs: Optional[List[str]] = None,
        siblings: Optional[List[str]] = None,
        gender: Gender = Gender.FEMALE,
        **overrides: Any
    ) -> Child:
        data: Dict[str, Any] = {
            "personal_info": PersonalInfo(
                name="Ana Souza",
                birth_date=date(FIXED_NOW.year - age_years, 1, 15),
                gender=gender
            ),
            "special_needs": SpecialNeeds(
                has_special_needs=has_special_needs,
                health_conditions=health_conditions or [],
                medications=medications or [],
                educational_needs=educational_needs or []
            ),
            "family_background": FamilyBackground(siblings=siblings or []),
            "created_by": actor_id,
            "updated_by": actor_id
        }
        data.update(overrides)
        return Child(**data)

    return _make_child


@pytest.fixture
def make_family(actor_id):
    """Factory for Family entities."""
    def _make_family(
        age_min: int = 5,
        age_max: int = 15,
        special_needs_accepted: bool = False,
        max_children: int = 1,
        status: FamilyStatus = FamilyStatus.AVAILABLE,
        composition: Optional[List[FamilyMember]] = None,
        history: Optional[List[PlacementHistoryEntry]] = None,
        **overrides: Any
    ) -> Family:
        data: Dict[str, Any] = {
            "primary_contact": Contact(name="Maria Oliveira", phone="+55 11 99999-0000"),
            "composition": composition or [],
            "preferences": FamilyPreferences(
                age_range=AgeRange(min=age_min, max=age_max),
                special_needs_accepted=special_needs_accepted,
                max_children=max_children
            ),
            "status": status,
            "history": history or [],
            "created_by": actor_id,
            "updated_by": actor_id
        }
        data.update(overrides)
        return Family(**data)

    return _make_family


@pytest.fixture
def parent_member():
    """Household member with the parent relationship."""
    return FamilyMember(name="João Oliveira", relationship=FamilyRelationship.PARENT, age=42)


@pytest.fixture
def registered_pair(engine, make_child, make_family):
    """An awaiting child and an available family stored in the engine."""
    child = engine.register_child(make_child())
    family = engine.register_family(make_family())
    return child, family


@pytest.fixture
def approved_matching(engine, registered_pair, actor_id):
    """An approved matching for the registered pair."""
    child, family = registered_pair
    matching = engine.propose_matching(child.id, family.id, actor_id)
    return engine.approve_matching(matching.id, actor_id)


@pytest.fixture
def active_placement(engine, approved_matching, actor_id):
    """An active placement created from the approved matching."""
    return engine.create_placement(approved_matching.id, actor_id)
