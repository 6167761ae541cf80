# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for transition logging with OpenTelemetry correlation.

Audit entries are staged on the same unit of work as the change they
record, so an entry exists if and only if the change was committed.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from opentelemetry import trace

from ..domain.errors import PlacementEngineError
from ..models.base import utcnow
from ..models.entities import AuditLog, StatusChange
from ..models.enums import EntityType
from .store import EntityStore, UnitOfWork

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditFilters:
    """Filters for audit log queries."""

    def __init__(
        self,
        actor_id: Optional[str] = None,
        entity: Optional[str] = None,
        action: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        trace_id: Optional[str] = None,
        entity_id: Optional[str] = None
    ):
        self.actor_id = actor_id
        self.entity = entity
        self.action = action
        self.start_date = start_date
        self.end_date = end_date
        self.trace_id = trace_id
        self.entity_id = entity_id

    def to_store_filters(self) -> Dict[str, Any]:
        """Convert equality filters to store document filters."""
        query = {}

        if self.actor_id:
            query["actorId"] = self.actor_id

        if self.entity:
            query["entity"] = getattr(self.entity, "value", self.entity)

        if self.action:
            query["action"] = self.action

        if self.trace_id:
            query["traceId"] = self.trace_id

        if self.entity_id:
            query["entityId"] = self.entity_id

        return query

    def matches_dates(self, entry: AuditLog) -> bool:
        if self.start_date and entry.timestamp < self.start_date:
            return False
        if self.end_date and entry.timestamp > self.end_date:
            return False
        return True


def calculate_changes(before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Calculate field-level changes between two snapshots.

    Args:
        before: State before the change
        after: State after the change

    Returns:
        List of {field, old_value, new_value}
    """
    changes = []

    for key in sorted(set(before.keys()) | set(after.keys())):
        # Bookkeeping fields change on every write
        if key in ["updatedAt", "updatedBy", "version", "id"]:
            continue

        old_value = before.get(key)
        new_value = after.get(key)
        if old_value != new_value:
            changes.append({
                "field": key,
                "old_value": old_value,
                "new_value": new_value
            })

    return changes


class AuditService:
    """Stages audit entries on units of work and queries the audit trail."""

    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = utcnow):
        """Initialize audit service with store dependency."""
        self.store = store
        self.clock = clock
        logger.info("Audit service initialized")

    def record(
        self,
        uow: UnitOfWork,
        actor_id: str,
        entity: str,
        entity_id: str,
        action: str,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
        reason: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None
    ) -> AuditLog:
        """
        Stage an audit trail entry with trace correlation.

        Args:
            uow: Unit of work the audited change belongs to
            actor_id: ID of the actor performing the action
            entity: Type of entity being acted upon
            entity_id: ID of the specific entity
            action: Action being performed
            previous_status: Status before a transition
            new_status: Status after a transition
            reason: Reason given by the actor
            before: State before the action (optional)
            after: State after the action (optional)
            timestamp: Action time, defaults to the service clock

        Returns:
            The staged AuditLog entry
        """
        span_context = trace.get_current_span().get_span_context()
        trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else None
        span_id = format(span_context.span_id, "016x") if span_context.is_valid else None

        now = timestamp or self.clock()
        entry = AuditLog(
            timestamp=now,
            actor_id=actor_id,
            entity=getattr(entity, "value", entity),
            entity_id=entity_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason,
            before=before,
            after=after,
            trace_id=trace_id,
            span_id=span_id,
            created_at=now,
            updated_at=now,
            created_by=actor_id,
            updated_by=actor_id
        )
        uow.add(entry)

        changes_count = len(calculate_changes(before, after)) if before and after else 0
        logger.info(
            "Audit trail entry staged",
            extra={
                "extra_fields": {
                    "audit_id": entry.id,
                    "entity": entry.entity,
                    "entity_id": entity_id,
                    "action": action,
                    "actor_id": actor_id,
                    "previous_status": previous_status,
                    "new_status": new_status,
                    "trace_id": trace_id,
                    "changes_count": changes_count
                }
            }
        )
        return entry

    def record_transition(
        self,
        uow: UnitOfWork,
        entity,
        change: StatusChange,
        action: str = "transition"
    ) -> AuditLog:
        """Stage an audit entry for a status change returned by apply_transition."""
        return self.record(
            uow,
            actor_id=change.changed_by,
            entity=entity.entity_type,
            entity_id=entity.id,
            action=action,
            previous_status=change.previous_status,
            new_status=change.new_status,
            reason=change.reason,
            timestamp=change.changed_at
        )

    def log_rejection(self, error: PlacementEngineError, actor_id: str) -> None:
        """Log an operation rejected by a failed invariant check."""
        logger.warning(
            "Operation rejected",
            extra={"extra_fields": dict(error.to_dict(), actorId=actor_id)}
        )

    def query(self, filters: Optional[AuditFilters] = None) -> List[AuditLog]:
        """
        Query audit entries, newest first.

        Args:
            filters: Filter criteria, None returns the whole trail

        Returns:
            Matching AuditLog entries sorted by timestamp descending
        """
        filters = filters or AuditFilters()
        with tracer.start_as_current_span("audit.query") as span:
            entries = [
                entry for entry in self.store.find(EntityType.AUDIT_LOG, filters.to_store_filters())
                if filters.matches_dates(entry)
            ]
            span.set_attribute("audit.result_count", len(entries))
        return sorted(entries, key=lambda entry: (entry.timestamp, entry.id), reverse=True)

    def history(self, entity: str, entity_id: str) -> List[AuditLog]:
        """Audit trail of one entity, oldest first."""
        return list(reversed(self.query(AuditFilters(entity=entity, entity_id=entity_id))))
