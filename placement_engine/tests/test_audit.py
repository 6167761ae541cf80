# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the audit service.
"""

import logging
from datetime import datetime, timedelta
import pytest
from opentelemetry.sdk.trace import TracerProvider

from placement_engine.domain.errors import FamilyAtCapacity
from placement_engine.services.audit import AuditFilters, AuditService, calculate_changes


@pytest.fixture
def audit(store, clock):
    """Audit service on the in-memory store."""
    return AuditService(store, clock)


def _record(store, audit, actor_id, entity="child", entity_id="child-1", action="transition", **kwargs):
    with store.unit_of_work() as uow:
        return audit.record(uow, actor_id, entity, entity_id, action, **kwargs)


class TestCalculateChanges:
    """Test field-level change calculation."""

    def test_changed_fields(self):
        """Test only differing fields are reported, sorted by name."""
        before = {"status": "available", "limitations": [], "name": "Oliveira"}
        after = {"status": "under_evaluation", "limitations": ["no pets"], "name": "Oliveira"}

        changes = calculate_changes(before, after)

        assert changes == [
            {"field": "limitations", "old_value": [], "new_value": ["no pets"]},
            {"field": "status", "old_value": "available", "new_value": "under_evaluation"}
        ]

    def test_bookkeeping_fields_ignored(self):
        """Test timestamps, actor and version are not changes."""
        before = {"id": "a", "version": 1, "updatedAt": "t1", "updatedBy": "u1"}
        after = {"id": "a", "version": 2, "updatedAt": "t2", "updatedBy": "u2"}

        assert calculate_changes(before, after) == []

    def test_added_and_removed_fields(self):
        """Test keys present on one side only are reported."""
        changes = calculate_changes({"endReason": None}, {"endDate": "2026-03-01"})

        assert {change["field"] for change in changes} == {"endDate"}


class TestAuditFilters:
    """Test audit filter conversion."""

    def test_store_filters(self):
        """Test equality filters use document keys."""
        filters = AuditFilters(actor_id="u1", entity="placement", action="create", trace_id="abc", entity_id="p1")

        assert filters.to_store_filters() == {
            "actorId": "u1",
            "entity": "placement",
            "action": "create",
            "traceId": "abc",
            "entityId": "p1"
        }

    def test_empty(self):
        """Test no criteria means no filters."""
        assert AuditFilters().to_store_filters() == {}


class TestAuditService:
    """Test recording and querying."""

    def test_record(self, store, audit, actor_id, clock):
        """Test an entry is written with the clock time when its unit commits."""
        entry = _record(store, audit, actor_id, previous_status="awaiting", new_status="in_placement",
                        reason="Placement created")

        stored = store.get("audit_log", entry.id)
        assert stored.timestamp == clock()
        assert stored.actor_id == actor_id
        assert stored.previous_status == "awaiting"
        assert stored.new_status == "in_placement"
        assert stored.trace_id is None

    def test_record_discarded_with_unit(self, store, audit, actor_id):
        """Test an entry of a failed unit is never written."""
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                audit.record(uow, actor_id, "child", "child-1", "transition")
                raise RuntimeError("rolled back")

        assert audit.query() == []

    def test_trace_correlation(self, store, audit, actor_id):
        """Test entries recorded inside a span carry its ids."""
        tracer = TracerProvider().get_tracer(__name__)

        with tracer.start_as_current_span("placement.create") as span:
            entry = _record(store, audit, actor_id)
            expected_trace_id = format(span.get_span_context().trace_id, "032x")

        assert entry.trace_id == expected_trace_id
        assert len(entry.span_id) == 16
        assert [e.id for e in audit.query(AuditFilters(trace_id=expected_trace_id))] == [entry.id]

    def test_query_order_and_filters(self, store, audit, actor_id, clock):
        """Test queries are newest first and filter by actor and dates."""
        start = clock()
        first = _record(store, audit, actor_id)
        clock.advance(days=1)
        second = _record(store, audit, actor_id, entity="family", entity_id="family-1")
        clock.advance(days=1)
        third = _record(store, audit, "other-actor")

        assert [e.id for e in audit.query()] == [third.id, second.id, first.id]
        assert [e.id for e in audit.query(AuditFilters(actor_id=actor_id))] == [second.id, first.id]
        assert [e.id for e in audit.query(AuditFilters(entity="family"))] == [second.id]

        window = AuditFilters(start_date=start + timedelta(hours=12), end_date=start + timedelta(days=1))
        assert [e.id for e in audit.query(window)] == [second.id]

    def test_history_oldest_first(self, store, audit, actor_id, clock):
        """Test entity history is chronological."""
        first = _record(store, audit, actor_id, action="create")
        clock.advance(hours=2)
        second = _record(store, audit, actor_id, action="transition")
        _record(store, audit, actor_id, entity_id="child-2")

        assert [e.id for e in audit.history("child", "child-1")] == [first.id, second.id]

    def test_explicit_timestamp(self, store, audit, actor_id):
        """Test a given timestamp overrides the clock."""
        when = datetime(2025, 12, 31, 23, 59)

        entry = _record(store, audit, actor_id, timestamp=when)

        assert entry.timestamp == when

    def test_log_rejection(self, audit, actor_id, caplog):
        """Test rejected operations are logged with the error context."""
        error = FamilyAtCapacity("family-1", 2, 2, "create_placement")

        with caplog.at_level(logging.WARNING, logger="placement_engine.services.audit"):
            audit.log_rejection(error, actor_id)

        record = caplog.records[-1]
        assert record.getMessage() == "Operation rejected"
        assert record.extra_fields["code"] == "family_at_capacity"
        assert record.extra_fields["actorId"] == actor_id
