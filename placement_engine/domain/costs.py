# SPDX-License-Identifier: Apache-2.0

"""
Cost allocation domain logic.

Pure functions pricing a placement from the injected wage and multipliers,
and ledger operations on the fiscal-year Budget. Ledger functions mutate the
Budget they are given; persisting it is the caller's job.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..models.entities import (
    Budget, BudgetAllocation, BudgetTransaction, Child, CostRates, Payment
)
from ..models.enums import BudgetTransactionType
from ..models.base import utcnow
from .errors import InsufficientBudget


@dataclass
class BudgetSummary:
    """Snapshot of a budget ledger."""
    fiscal_year: int
    total_amount: float
    allocated_amount: float
    available_amount: float
    active_allocations: int
    utilization_percent: float


def calculate_monthly_cost(child: Child, siblings_in_same_placement: int, rates: CostRates) -> float:
    """
    Monthly cost of a placement.

    minimum wage, plus the special-needs share when the child has special
    needs, plus the sibling share for each sibling placed with the same
    family.

    Args:
        child: Child being placed
        siblings_in_same_placement: Number of the child's siblings placed with the same family
        rates: Wage and multipliers in effect

    Returns:
        Monthly cost rounded to cents
    """
    total = rates.minimum_wage
    if child.special_needs.has_special_needs:
        total += rates.minimum_wage * rates.special_needs_multiplier
    total += rates.minimum_wage * rates.sibling_multiplier * max(0, siblings_in_same_placement)
    return round(total, 2)


def _record(
    budget: Budget,
    transaction_type: BudgetTransactionType,
    amount: float,
    description: str,
    actor_id: str,
    now: datetime,
    placement_id: Optional[str] = None
) -> BudgetTransaction:
    transaction = BudgetTransaction(
        type=transaction_type,
        amount=round(amount, 2),
        description=description,
        date=now,
        placement_id=placement_id,
        created_by=actor_id
    )
    budget.transactions = budget.transactions + [transaction]
    budget.update_timestamp(actor_id, now)
    return transaction


def reserve_budget(
    budget: Budget,
    amount: float,
    placement_id: str,
    actor_id: str,
    now: Optional[datetime] = None
) -> float:
    """
    Reserve a monthly amount for a placement.

    Raises:
        InsufficientBudget: if the reservation would exceed the ceiling

    Returns:
        The available balance after the reservation
    """
    now = now or utcnow()
    if round(budget.allocated_amount + amount, 2) > budget.total_amount:
        raise InsufficientBudget(budget.id, amount, budget.available_amount, attempted="reserve")

    budget.allocated_amount = round(budget.allocated_amount + amount, 2)
    budget.allocations = budget.allocations + [
        BudgetAllocation(placement_id=placement_id, monthly_amount=amount, start_date=now)
    ]
    _record(
        budget, BudgetTransactionType.ALLOCATION, amount,
        f"Allocation for placement {placement_id}", actor_id, now, placement_id
    )
    return budget.available_amount


def release_allocation(
    budget: Budget,
    placement_id: str,
    actor_id: str,
    now: Optional[datetime] = None
) -> float:
    """
    Release the active allocation of a placement.

    Returns:
        The amount released, 0 when the placement held no active allocation
    """
    now = now or utcnow()
    allocation = budget.active_allocation(placement_id)
    if allocation is None:
        return 0.0

    allocation.is_active = False
    allocation.end_date = now
    budget.allocated_amount = max(0.0, round(budget.allocated_amount - allocation.monthly_amount, 2))
    _record(
        budget, BudgetTransactionType.RELEASE, allocation.monthly_amount,
        f"Release for placement {placement_id}", actor_id, now, placement_id
    )
    return allocation.monthly_amount


def adjust_allocation(
    budget: Budget,
    placement_id: str,
    new_amount: float,
    reason: str,
    actor_id: str,
    now: Optional[datetime] = None
) -> float:
    """
    Replace the active allocation of a placement with a new monthly amount.

    Only the difference is checked against the ceiling.

    Raises:
        InsufficientBudget: if an increase would exceed the ceiling

    Returns:
        The previous monthly amount
    """
    now = now or utcnow()
    allocation = budget.active_allocation(placement_id)
    previous = allocation.monthly_amount if allocation else 0.0
    delta = round(new_amount - previous, 2)

    if delta > 0 and round(budget.allocated_amount + delta, 2) > budget.total_amount:
        raise InsufficientBudget(budget.id, delta, budget.available_amount, attempted="reallocate")

    if allocation is None:
        budget.allocations = budget.allocations + [
            BudgetAllocation(placement_id=placement_id, monthly_amount=new_amount, start_date=now)
        ]
    else:
        allocation.monthly_amount = new_amount

    budget.allocated_amount = max(0.0, round(budget.allocated_amount + delta, 2))
    _record(
        budget, BudgetTransactionType.ADJUSTMENT, delta,
        f"Reallocation for placement {placement_id}: {reason}", actor_id, now, placement_id
    )
    return previous


def carry_over_allocations(
    previous: Budget,
    budget: Budget,
    actor_id: str,
    now: Optional[datetime] = None
) -> float:
    """
    Move the active allocations of an earlier ledger into a new fiscal year.

    Each allocation is closed on the earlier ledger and reopened with the same
    monthly amount on the new one. Carried amounts are not checked against
    the new ceiling.

    Returns:
        The total monthly amount carried
    """
    now = now or utcnow()
    carried = 0.0
    for allocation in previous.allocations:
        if not allocation.is_active:
            continue

        amount = allocation.monthly_amount
        allocation.is_active = False
        allocation.end_date = now
        previous.allocated_amount = max(0.0, round(previous.allocated_amount - amount, 2))
        _record(
            previous, BudgetTransactionType.CARRY_OVER, amount,
            f"Carried to fiscal year {budget.fiscal_year}: placement {allocation.placement_id}",
            actor_id, now, allocation.placement_id
        )

        budget.allocations = budget.allocations + [
            BudgetAllocation(placement_id=allocation.placement_id, monthly_amount=amount, start_date=now)
        ]
        budget.allocated_amount = round(budget.allocated_amount + amount, 2)
        _record(
            budget, BudgetTransactionType.CARRY_OVER, amount,
            f"Carried from fiscal year {previous.fiscal_year}: placement {allocation.placement_id}",
            actor_id, now, allocation.placement_id
        )
        carried += amount

    return round(carried, 2)


def record_payment(
    budget: Budget,
    placement_id: str,
    payment: Payment,
    actor_id: str,
    now: Optional[datetime] = None
) -> BudgetTransaction:
    """Log a placement payment on the ledger."""
    return _record(
        budget, BudgetTransactionType.PAYMENT, payment.amount,
        payment.description or f"Payment for placement {placement_id}",
        actor_id, now or utcnow(), placement_id
    )


def update_total_budget(budget: Budget, total_amount: float, actor_id: str, now: Optional[datetime] = None) -> float:
    """
    Change the budget ceiling.

    Raises:
        InsufficientBudget: if the new ceiling is below the allocated amount

    Returns:
        The previous ceiling
    """
    if total_amount < budget.allocated_amount:
        raise InsufficientBudget(budget.id, budget.allocated_amount, total_amount, attempted="update_budget")

    previous = budget.total_amount
    budget.total_amount = round(total_amount, 2)
    budget.update_timestamp(actor_id, now or utcnow())
    return previous


def summarize_budget(budget: Budget) -> BudgetSummary:
    active = [allocation for allocation in budget.allocations if allocation.is_active]
    utilization = (budget.allocated_amount / budget.total_amount * 100) if budget.total_amount else 0.0
    return BudgetSummary(
        fiscal_year=budget.fiscal_year,
        total_amount=budget.total_amount,
        allocated_amount=budget.allocated_amount,
        available_amount=budget.available_amount,
        active_allocations=len(active),
        utilization_percent=round(utilization, 2)
    )
