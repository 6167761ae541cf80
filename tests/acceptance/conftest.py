# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Fixtures for end-to-end placement lifecycle scenarios.
"""

import os
from datetime import date, datetime, timedelta
import pytest
from bson import ObjectId

from placement_engine.config import EngineConfig
from placement_engine.engine import PlacementEngine
from placement_engine.models.entities import (
    AgeRange, Child, Contact, Family, FamilyBackground, FamilyPreferences, PersonalInfo, SpecialNeeds
)
from placement_engine.models.enums import Gender
from placement_engine.services.notifier import InMemoryNotifier
from placement_engine.services.store import InMemoryEntityStore

os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'


class ScenarioClock:
    """Clock the scenarios move forward by hand."""

    def __init__(self):
        self.now = datetime(2026, 4, 1, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, days=0):
        self.now += timedelta(days=days)


@pytest.fixture
def scenario_clock():
    return ScenarioClock()


@pytest.fixture
def scenario_engine(scenario_clock):
    """Engine on an in-memory store with captured events."""
    return PlacementEngine(
        InMemoryEntityStore(lock_timeout_seconds=2.0),
        InMemoryNotifier(),
        EngineConfig(),
        scenario_clock
    )


@pytest.fixture
def coordinator():
    return str(ObjectId())


@pytest.fixture
def new_child(coordinator):
    """Build an awaiting child of the given age."""
    def _new_child(name, age, special_needs=False, siblings=None, child_id=None):
        data = dict(
            personal_info=PersonalInfo(name=name, birth_date=date(2026 - age, 2, 1), gender=Gender.MALE),
            special_needs=SpecialNeeds(has_special_needs=special_needs),
            family_background=FamilyBackground(siblings=siblings or []),
            created_by=coordinator,
            updated_by=coordinator
        )
        if child_id:
            data["id"] = child_id
        return Child(**data)
    return _new_child


@pytest.fixture
def new_family(coordinator):
    """Build an available family."""
    def _new_family(name, age_min=0, age_max=17, max_children=1, special_needs_accepted=False):
        return Family(
            primary_contact=Contact(name=name),
            preferences=FamilyPreferences(
                age_range=AgeRange(min=age_min, max=age_max),
                special_needs_accepted=special_needs_accepted,
                max_children=max_children
            ),
            created_by=coordinator,
            updated_by=coordinator
        )
    return _new_family
