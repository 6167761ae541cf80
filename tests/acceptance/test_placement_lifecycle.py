# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Placement lifecycle acceptance tests.

Walks children through matching, placement, approximation and termination
and checks the child, family, placement and budget records stay consistent
with each other at every step.
"""

import threading
import pytest
from bson import ObjectId

from placement_engine.domain.errors import (
    ChildNotAvailable, ConcurrentModification, FamilyAtCapacity, PlacementEngineError
)
from placement_engine.services.audit import AuditFilters


class TestFullPlacementJourney:
    """Acceptance test for one child from registration to discharge."""

    @pytest.fixture(autouse=True)
    def setup_journey(self, scenario_engine, scenario_clock, coordinator, new_child, new_family):
        """Register a child and two candidate families."""
        self.engine = scenario_engine
        self.clock = scenario_clock
        self.coordinator = coordinator

        self.child = self.engine.register_child(new_child("Pedro Lima", age=7))
        self.close_fit = self.engine.register_family(new_family("Família Costa", age_min=4, age_max=10))
        self.wide_fit = self.engine.register_family(new_family("Família Rocha", age_min=0, age_max=17))

    def test_registration_to_discharge(self):
        """Test the whole journey leaves consistent records and a complete event stream."""
        ranked = self.engine.rank_candidates(self.child.id)
        assert ranked[0].family_id == self.close_fit.id

        matching = self.engine.propose_matching(self.child.id, self.close_fit.id, self.coordinator)
        self.engine.approve_matching(matching.id, self.coordinator)
        placement = self.engine.create_placement(matching.id, self.coordinator)

        assert self.engine.budget_summary().allocated_amount == 1320

        for stage_id in ["1", "2", "3", "4"]:
            self.clock.advance(days=20)
            self.engine.complete_stage(placement.id, stage_id, self.coordinator)

        progress = self.engine.compute_progress(self.engine.get_placement(placement.id))
        assert progress.actual_progress == 100
        assert progress.is_on_track

        self.engine.end_placement(placement.id, "Adoption finalised", self.coordinator)

        child = self.engine.get_child(self.child.id)
        family = self.engine.get_family(self.close_fit.id)
        ended = self.engine.get_placement(placement.id)

        assert child.current_status == "discharged"
        assert child.current_placement_id is None
        assert family.status == "available"
        assert family.active_placement_ids == []
        assert family.history[-1].outcome == "successful"
        assert ended.status == "completed"
        assert ended.end_reason == "Adoption finalised"
        assert self.engine.budget_summary().allocated_amount == 0

        assert self.engine.notifier.names() == [
            "matching-proposed",
            "matching-approved",
            "placement-created",
            "stage-completed",
            "stage-completed",
            "stage-completed",
            "stage-completed",
            "placement-completed",
        ]

    def test_interruption_and_new_family(self):
        """Test an interrupted child can be matched again while the first family is evaluated."""
        first = self.engine.approve_and_place(
            self.engine.propose_matching(self.child.id, self.close_fit.id, self.coordinator).id,
            self.coordinator
        )
        self.clock.advance(days=10)
        self.engine.interrupt_placement(first.id, "Adaptation difficulties", self.coordinator)

        assert self.engine.get_family(self.close_fit.id).status == "under_evaluation"
        assert [s.family_id for s in self.engine.rank_candidates(self.child.id)] == [self.wide_fit.id]

        second = self.engine.approve_and_place(
            self.engine.propose_matching(self.child.id, self.wide_fit.id, self.coordinator).id,
            self.coordinator
        )

        assert self.engine.get_child(self.child.id).current_placement_id == second.id
        with pytest.raises(ChildNotAvailable):
            self.engine.reactivate_placement(first.id, "Family evaluated", self.coordinator)

        placement_audit = self.engine.audit_trail(AuditFilters(entity="placement", entity_id=first.id))
        assert {entry.new_status for entry in placement_audit} >= {"active", "interrupted"}


class TestSiblingGroupPlacement:
    """Acceptance test for siblings placed with the same family."""

    def test_siblings_share_one_family(self, scenario_engine, coordinator, new_child, new_family):
        """Test sibling allocations follow the group through placement and discharge."""
        engine = scenario_engine
        older_id, younger_id = str(ObjectId()), str(ObjectId())
        older = engine.register_child(new_child("Lucas Alves", age=11, siblings=[younger_id], child_id=older_id))
        younger = engine.register_child(new_child("Bia Alves", age=6, siblings=[older_id], child_id=younger_id))
        family = engine.register_family(new_family("Família Nunes", max_children=2))

        placements = [
            engine.approve_and_place(engine.propose_matching(child.id, family.id, coordinator).id, coordinator)
            for child in (older, younger)
        ]

        allocations = [engine.get_placement(p.id).budget.monthly_allocation for p in placements]
        assert allocations == [1716, 1716]
        assert engine.get_family(family.id).status == "active_placement"

        engine.transfer_placement(placements[0].id, "Moved closer to school", coordinator)

        assert engine.get_placement(placements[1].id).budget.monthly_allocation == 1320
        assert engine.budget_summary().allocated_amount == 1320
        assert engine.get_family(family.id).status == "available"


class TestConcurrentPlacements:
    """Acceptance test for placements racing for the last slot of a family."""

    def test_only_one_placement_wins(self, scenario_engine, coordinator, new_child, new_family):
        """Test concurrent creation never exceeds family capacity."""
        engine = scenario_engine
        family = engine.register_family(new_family("Família Dias", max_children=1))
        matchings = []
        for index in range(4):
            child = engine.register_child(new_child(f"Criança {index}", age=9))
            matching = engine.propose_matching(child.id, family.id, coordinator)
            matchings.append(engine.approve_matching(matching.id, coordinator))

        barrier = threading.Barrier(len(matchings))
        successes, failures = [], []

        def place(matching_id):
            barrier.wait()
            try:
                successes.append(engine.create_placement(matching_id, coordinator))
            except PlacementEngineError as e:
                failures.append(e)

        threads = [threading.Thread(target=place, args=(m.id,)) for m in matchings]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(successes) == 1
        assert len(failures) == 3
        assert all(isinstance(e, (FamilyAtCapacity, ConcurrentModification)) for e in failures)

        stored = engine.get_family(family.id)
        assert stored.active_placement_ids == [successes[0].id]
        assert len(engine.active_placements()) == 1
        assert engine.budget_summary().allocated_amount == 1320
