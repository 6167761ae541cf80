# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the in-memory entity store and unit of work.
"""

import pytest

from placement_engine.domain.errors import ConcurrentModification, EntityNotFound, StoreTimeout
from placement_engine.models.enums import EntityType, FamilyStatus
from placement_engine.services.store import InMemoryEntityStore, UnitOfWork, matches_filters


class TestInMemoryEntityStore:
    """Test InMemoryEntityStore basics."""

    def test_put_and_get(self, store, make_child):
        """Test a stored entity is returned as an independent copy."""
        child = make_child()

        store.put(child)
        loaded = store.get(EntityType.CHILD, child.id)

        assert child.version == 1
        assert loaded.version == 1
        assert loaded.personal_info.name == child.personal_info.name
        assert loaded is not child

    def test_get_missing(self, store):
        """Test a missing entity raises EntityNotFound."""
        with pytest.raises(EntityNotFound) as exc_info:
            store.get("child", "missing")

        assert exc_info.value.entity_id == "missing"
        assert not store.exists("child", "missing")

    def test_find_with_filters(self, store, make_family):
        """Test find matches camelCase document fields."""
        available = make_family()
        evaluating = make_family(status=FamilyStatus.UNDER_EVALUATION)
        store.put(available)
        store.put(evaluating)

        result = store.find(EntityType.FAMILY, {"status": "available"})

        assert [family.id for family in result] == [available.id]
        assert len(store.find("family")) == 2

    def test_mutating_loaded_copy_does_not_change_store(self, store, make_child):
        """Test callers never share state with the store."""
        child = make_child()
        store.put(child)

        loaded = store.get("child", child.id)
        loaded.special_needs.medications.append("ibuprofen")

        assert store.get("child", child.id).special_needs.medications == []

    def test_lock_timeout(self):
        """Test a held lock surfaces as a retryable StoreTimeout."""
        store = InMemoryEntityStore(lock_timeout_seconds=0.05)
        store._lock.acquire()
        try:
            with pytest.raises(StoreTimeout) as exc_info:
                store.get("child", "any")
        finally:
            store._lock.release()

        assert exc_info.value.retryable
        assert exc_info.value.code == "store_timeout"


class TestUnitOfWork:
    """Test unit of work semantics."""

    def test_identity_map(self, store, make_child):
        """Test the same id returns the same object within one unit."""
        child = make_child()
        store.put(child)

        with store.unit_of_work() as uow:
            assert uow.get("child", child.id) is uow.get("child", child.id)

    def test_commit_bumps_versions(self, store, make_child, make_family):
        """Test a commit writes every staged entity with version + 1."""
        child = make_child()
        family = make_family()

        with store.unit_of_work() as uow:
            uow.add(child)
            uow.add(family)

        assert child.version == 1
        assert family.version == 1
        assert store.get("family", family.id).version == 1

    def test_exception_discards_changes(self, store, make_child):
        """Test an exception inside the block writes nothing."""
        child = make_child()

        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                uow.add(child)
                raise RuntimeError("boom")

        assert not store.exists("child", child.id)

    def test_concurrent_modification(self, store, make_child, make_family):
        """Test a stale read rejects the whole commit."""
        child = make_child()
        family = make_family()
        store.put(child)
        store.put(family)

        first = UnitOfWork(store)
        second = UnitOfWork(store)

        stale_child = second.get("child", child.id)
        stale_family = second.get("family", family.id)

        fresh_child = first.get("child", child.id)
        fresh_child.family_background.origin_family = "updated"
        first.save(fresh_child)
        first.commit()

        stale_child.family_background.origin_family = "stale"
        stale_family.limitations = ["stale"]
        second.save(stale_child)
        second.save(stale_family)

        with pytest.raises(ConcurrentModification) as exc_info:
            second.commit()

        assert exc_info.value.retryable
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert store.get("child", child.id).family_background.origin_family == "updated"
        assert store.get("family", family.id).limitations == []

    def test_duplicate_insert_conflicts(self, store, make_child):
        """Test inserting an id that already exists is a conflict."""
        child = make_child()
        store.put(child)
        duplicate = child.model_copy(update={"version": 0})

        with pytest.raises(ConcurrentModification):
            store.put(duplicate)

    def test_find_sees_staged_state(self, store, make_family):
        """Test find inside a unit matches staged and modified entities."""
        stored = make_family()
        store.put(stored)
        staged = make_family()

        with store.unit_of_work() as uow:
            uow.add(staged)
            loaded = uow.get("family", stored.id)
            loaded.status = FamilyStatus.UNAVAILABLE

            result = uow.find("family", {"status": "available"})

        assert [family.id for family in result] == [staged.id]

    def test_update_atomic(self, store, make_family):
        """Test read-modify-write of a single entity."""
        family = make_family()
        store.put(family)

        updated = store.update_atomic("family", family.id, lambda f: setattr(f, "limitations", ["no pets"]))

        assert updated.version == 2
        assert store.get("family", family.id).limitations == ["no pets"]


class TestMatchesFilters:
    """Test document filter matching."""

    def test_empty_filters(self):
        """Test no filters matches everything."""
        assert matches_filters({"a": 1}, None)
        assert matches_filters({"a": 1}, {})

    def test_equality(self):
        """Test every filter must match."""
        assert matches_filters({"a": 1, "b": 2}, {"a": 1})
        assert not matches_filters({"a": 1, "b": 2}, {"a": 1, "b": 3})
        assert matches_filters({"a": 1}, {"c": None})
