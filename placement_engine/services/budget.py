# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Cost allocator and fiscal-year budget ledger.

Allocation changes are staged on the caller's unit of work, so a placement
and its reservation are committed together or not at all.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from opentelemetry import trace

from ..config import EngineConfig
from ..domain import costs
from ..domain.costs import BudgetSummary
from ..domain.errors import EntityNotFound
from ..models.base import utcnow
from ..models.entities import (
    AllocationAdjustment, Budget, Child, Payment, Placement, SpecialNeeds
)
from ..models.enums import EntityType, PlacementStatus
from .audit import AuditService
from .notifier import BUDGET_REALLOCATED, Notifier
from .store import EntityStore, UnitOfWork

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"


def budget_id_for(fiscal_year: int) -> str:
    """Ledger id of a fiscal year; one ledger per year."""
    return f"budget-{fiscal_year}"


class BudgetService:
    """Prices placements and keeps the fiscal-year ledger balanced."""

    def __init__(
        self,
        store: EntityStore,
        config: EngineConfig,
        audit: AuditService,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.config = config
        self.audit = audit
        self.notifier = notifier
        self.clock = clock

    # Ledger access

    def _new_budget(self, fiscal_year: int, now: datetime) -> Budget:
        return Budget(
            id=budget_id_for(fiscal_year),
            fiscal_year=fiscal_year,
            total_amount=self.config.budget_ceiling,
            created_at=now,
            updated_at=now,
            created_by=SYSTEM_ACTOR,
            updated_by=SYSTEM_ACTOR
        )

    @staticmethod
    def _earlier_ledgers(budgets: List[Budget], fiscal_year: int) -> List[Budget]:
        """Ledgers of previous years still holding active allocations, oldest first."""
        earlier = [
            budget for budget in budgets
            if budget.fiscal_year < fiscal_year and any(a.is_active for a in budget.allocations)
        ]
        return sorted(earlier, key=lambda budget: budget.fiscal_year)

    def ledger(self, uow: UnitOfWork, now: Optional[datetime] = None) -> Budget:
        """
        Ledger of the current fiscal year, created on first use.

        A new ledger takes over the active allocations of earlier years, so
        placements running across the year boundary stay reserved exactly once.
        """
        now = now or self.clock()
        try:
            return uow.get(EntityType.BUDGET, budget_id_for(now.year))
        except EntityNotFound:
            budget = self._new_budget(now.year, now)
            carried = 0.0
            for previous in self._earlier_ledgers(uow.find(EntityType.BUDGET), now.year):
                previous = uow.get(EntityType.BUDGET, previous.id)
                carried += costs.carry_over_allocations(previous, budget, SYSTEM_ACTOR, now)
                uow.save(previous)

            logger.info(
                "Budget ledger created",
                extra={"extra_fields": {
                    "fiscal_year": now.year,
                    "total_amount": budget.total_amount,
                    "carried_amount": round(carried, 2)
                }}
            )
            return uow.add(budget)

    def current_budget(self) -> Budget:
        """Read-only snapshot of the current ledger."""
        now = self.clock()
        try:
            return self.store.get(EntityType.BUDGET, budget_id_for(now.year))
        except EntityNotFound:
            budget = self._new_budget(now.year, now)
            for previous in self._earlier_ledgers(self.store.find(EntityType.BUDGET), now.year):
                costs.carry_over_allocations(previous, budget, SYSTEM_ACTOR, now)
            return budget

    # Placement allocations

    def siblings_in_same_placement(
        self,
        uow: UnitOfWork,
        child: Child,
        family_id: str,
        exclude_placement_id: Optional[str] = None
    ) -> int:
        """Count the child's siblings actively placed with the same family."""
        siblings = set(child.family_background.siblings)
        if not siblings:
            return 0
        placements = uow.find(EntityType.PLACEMENT, {"familyId": family_id, "status": PlacementStatus.ACTIVE.value})
        return sum(
            1 for placement in placements
            if placement.child_id in siblings and placement.id != exclude_placement_id
        )

    def allocate_for_placement(
        self,
        uow: UnitOfWork,
        placement: Placement,
        child: Child,
        actor_id: str,
        now: datetime
    ) -> float:
        """
        Price a placement and reserve its monthly allocation.

        The rates in effect are snapshotted on the placement the first time;
        a reactivated placement keeps its original rates.

        Raises:
            InsufficientBudget: if the reservation would exceed the ceiling

        Returns:
            The reserved monthly amount
        """
        rates = placement.budget.rates or self.config.cost_rates()
        sibling_count = self.siblings_in_same_placement(uow, child, placement.family_id, placement.id)
        amount = costs.calculate_monthly_cost(child, sibling_count, rates)

        budget = self.ledger(uow, now)
        available = costs.reserve_budget(budget, amount, placement.id, actor_id, now)
        uow.save(budget)

        placement.budget.rates = rates
        placement.budget.sibling_count = sibling_count
        placement.budget.monthly_allocation = amount

        self.audit.record(
            uow, actor_id, EntityType.BUDGET, budget.id, "allocate",
            reason=f"Placement {placement.id}",
            after={"placementId": placement.id, "monthlyAmount": amount, "availableAmount": available},
            timestamp=now
        )
        logger.info(
            "Placement allocation reserved",
            extra={"extra_fields": {
                "placement_id": placement.id,
                "monthly_amount": amount,
                "sibling_count": sibling_count,
                "available_amount": available
            }}
        )
        return amount

    def release_for_placement(self, uow: UnitOfWork, placement: Placement, actor_id: str, now: datetime) -> float:
        """Release the placement's active allocation, if any."""
        budget = self.ledger(uow, now)
        released = costs.release_allocation(budget, placement.id, actor_id, now)
        if released:
            uow.save(budget)
            self.audit.record(
                uow, actor_id, EntityType.BUDGET, budget.id, "release",
                reason=f"Placement {placement.id}",
                before={"placementId": placement.id, "monthlyAmount": released},
                timestamp=now
            )
        return released

    def recompute_allocation(
        self,
        uow: UnitOfWork,
        placement: Placement,
        child: Child,
        reason: str,
        actor_id: str,
        now: datetime
    ) -> Optional[AllocationAdjustment]:
        """
        Reprice an active placement and record an adjustment when the cost changed.

        Uses the rates snapshotted on the placement.

        Returns:
            The adjustment, or None when the monthly amount is unchanged
        """
        if not placement.is_active():
            return None

        rates = placement.budget.rates or self.config.cost_rates()
        sibling_count = self.siblings_in_same_placement(uow, child, placement.family_id, placement.id)
        new_amount = costs.calculate_monthly_cost(child, sibling_count, rates)
        previous_amount = placement.budget.monthly_allocation
        if new_amount == previous_amount:
            return None

        budget = self.ledger(uow, now)
        costs.adjust_allocation(budget, placement.id, new_amount, reason, actor_id, now)
        uow.save(budget)

        adjustment = AllocationAdjustment(
            previous_amount=previous_amount,
            new_amount=new_amount,
            reason=reason,
            adjusted_at=now,
            adjusted_by=actor_id
        )
        placement.budget.adjustments = placement.budget.adjustments + [adjustment]
        placement.budget.monthly_allocation = new_amount
        placement.budget.sibling_count = sibling_count
        placement.update_timestamp(actor_id, now)
        uow.save(placement)

        self.audit.record(
            uow, actor_id, EntityType.PLACEMENT, placement.id, "reallocate",
            reason=reason,
            before={"monthlyAllocation": previous_amount},
            after={"monthlyAllocation": new_amount},
            timestamp=now
        )
        return adjustment

    def recompute_siblings(
        self,
        uow: UnitOfWork,
        family_id: str,
        child: Child,
        reason: str,
        actor_id: str,
        now: datetime
    ) -> List[Placement]:
        """
        Reprice the active placements of the child's siblings in the same family.

        Called when one sibling's placement starts or stops.

        Returns:
            Placements whose allocation changed
        """
        siblings = set(child.family_background.siblings)
        if not siblings:
            return []

        adjusted = []
        placements = uow.find(EntityType.PLACEMENT, {"familyId": family_id, "status": PlacementStatus.ACTIVE.value})
        for placement in placements:
            if placement.child_id not in siblings:
                continue
            sibling = uow.get(EntityType.CHILD, placement.child_id)
            if self.recompute_allocation(uow, placement, sibling, reason, actor_id, now) is not None:
                adjusted.append(placement)
        return adjusted

    def emit_reallocated(self, placements: List[Placement]) -> None:
        for placement in placements:
            self.notifier.emit(BUDGET_REALLOCATED, {
                "placementId": placement.id,
                "monthlyAllocation": placement.budget.monthly_allocation
            })

    # Public operations

    def reserve_budget(self, amount: float, placement_id: str, actor_id: str) -> float:
        """
        Reserve an amount on the current ledger.

        Raises:
            InsufficientBudget: if allocated + amount exceeds the ceiling

        Returns:
            The new available balance
        """
        with tracer.start_as_current_span("budget.reserve"):
            now = self.clock()
            with self.store.unit_of_work() as uow:
                budget = self.ledger(uow, now)
                available = costs.reserve_budget(budget, amount, placement_id, actor_id, now)
                uow.save(budget)
                self.audit.record(
                    uow, actor_id, EntityType.BUDGET, budget.id, "allocate",
                    after={"placementId": placement_id, "monthlyAmount": amount, "availableAmount": available},
                    timestamp=now
                )
            return available

    def update_child_special_needs(
        self,
        child_id: str,
        special_needs: SpecialNeeds,
        actor_id: str,
        reason: Optional[str] = None
    ) -> Child:
        """
        Replace a child's special-needs profile.

        When the special-needs flag flips while the child is in placement, the
        placement's allocation is recomputed with an adjustment record.
        """
        with tracer.start_as_current_span("budget.update_child_special_needs") as span:
            span.set_attribute("child.id", child_id)
            now = self.clock()
            adjusted = []

            with self.store.unit_of_work() as uow:
                child = uow.get(EntityType.CHILD, child_id)
                before = child.special_needs.model_dump(by_alias=True)
                flag_changed = child.special_needs.has_special_needs != special_needs.has_special_needs

                child.special_needs = special_needs
                child.update_timestamp(actor_id, now)
                uow.save(child)
                self.audit.record(
                    uow, actor_id, EntityType.CHILD, child.id, "update_special_needs",
                    reason=reason,
                    before=before,
                    after=special_needs.model_dump(by_alias=True),
                    timestamp=now
                )

                if flag_changed and child.current_placement_id:
                    placement = uow.get(EntityType.PLACEMENT, child.current_placement_id)
                    adjustment = self.recompute_allocation(
                        uow, placement, child,
                        reason or "Special needs status changed",
                        actor_id, now
                    )
                    if adjustment is not None:
                        adjusted.append(placement)

            self.emit_reallocated(adjusted)
            return child

    def record_payment(self, placement_id: str, amount: float, description: str, actor_id: str) -> Placement:
        """Add a payment to a placement's history and the ledger."""
        with tracer.start_as_current_span("budget.record_payment") as span:
            span.set_attribute("placement.id", placement_id)
            now = self.clock()

            with self.store.unit_of_work() as uow:
                placement = uow.get(EntityType.PLACEMENT, placement_id)
                payment = Payment(amount=amount, date=now, description=description)

                placement.budget.payment_history = placement.budget.payment_history + [payment]
                placement.budget.total_cost = round(placement.budget.total_cost + amount, 2)
                placement.update_timestamp(actor_id, now)
                uow.save(placement)

                budget = self.ledger(uow, now)
                costs.record_payment(budget, placement.id, payment, actor_id, now)
                uow.save(budget)

                self.audit.record(
                    uow, actor_id, EntityType.PLACEMENT, placement.id, "payment",
                    reason=description,
                    after={"paymentId": payment.id, "amount": payment.amount, "totalCost": placement.budget.total_cost},
                    timestamp=now
                )

            return placement

    def update_total_budget(self, total_amount: float, actor_id: str) -> Budget:
        """
        Change the ceiling of the current ledger.

        Raises:
            InsufficientBudget: if the new ceiling is below the allocated amount
        """
        with tracer.start_as_current_span("budget.update_total"):
            now = self.clock()
            with self.store.unit_of_work() as uow:
                budget = self.ledger(uow, now)
                previous = costs.update_total_budget(budget, total_amount, actor_id, now)
                uow.save(budget)
                self.audit.record(
                    uow, actor_id, EntityType.BUDGET, budget.id, "update_budget",
                    before={"totalAmount": previous},
                    after={"totalAmount": budget.total_amount},
                    timestamp=now
                )
            return budget

    def budget_summary(self) -> BudgetSummary:
        return costs.summarize_budget(self.current_budget())
