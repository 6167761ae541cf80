# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for cost allocation and the budget ledger.
"""

import pytest
from datetime import datetime

from placement_engine.domain.costs import (
    adjust_allocation,
    calculate_monthly_cost,
    carry_over_allocations,
    record_payment,
    release_allocation,
    reserve_budget,
    summarize_budget,
    update_total_budget
)
from placement_engine.domain.errors import InsufficientBudget
from placement_engine.models.entities import Budget, CostRates, Payment
from placement_engine.models.enums import BudgetTransactionType

NOW = datetime(2026, 3, 1, 12, 0, 0)

RATES = CostRates(minimum_wage=1320, special_needs_multiplier=0.50, sibling_multiplier=0.30)


@pytest.fixture
def budget(actor_id):
    """Empty fiscal-year ledger with a 10,000 ceiling."""
    return Budget(id="budget-2026", fiscal_year=2026, total_amount=10000, created_by=actor_id, updated_by=actor_id)


class TestCalculateMonthlyCost:
    """Test monthly cost pricing."""

    def test_base_cost(self, make_child):
        """Test a child without special needs or siblings costs the minimum wage."""
        assert calculate_monthly_cost(make_child(), 0, RATES) == 1320

    def test_special_needs_and_sibling(self, make_child):
        """Test special needs and one sibling in the same placement."""
        child = make_child(has_special_needs=True)

        assert calculate_monthly_cost(child, 1, RATES) == 1320 + 660 + 396 == 2376

    def test_sibling_share_per_sibling(self, make_child):
        """Test each sibling placed with the same family adds its share."""
        assert calculate_monthly_cost(make_child(), 2, RATES) == pytest.approx(1320 + 2 * 396)

    def test_rates_are_injected(self, make_child):
        """Test pricing follows the rates passed in."""
        rates = CostRates(minimum_wage=1500, special_needs_multiplier=1.0, sibling_multiplier=0.0)
        child = make_child(has_special_needs=True)

        assert calculate_monthly_cost(child, 3, rates) == 3000


class TestReserveBudget:
    """Test budget reservation."""

    def test_reserve(self, budget, actor_id):
        """Test a reservation adds an allocation and a transaction."""
        available = reserve_budget(budget, 2376, "p1", actor_id, NOW)

        assert available == 10000 - 2376
        assert budget.allocated_amount == 2376
        assert budget.active_allocation("p1").monthly_amount == 2376
        assert budget.transactions[-1].type == BudgetTransactionType.ALLOCATION.value
        assert budget.transactions[-1].placement_id == "p1"

    def test_reserve_exact_ceiling(self, budget, actor_id):
        """Test reserving exactly the remaining balance succeeds."""
        assert reserve_budget(budget, 10000, "p1", actor_id, NOW) == 0

    def test_insufficient(self, budget, actor_id):
        """Test exceeding the ceiling raises and leaves the ledger untouched."""
        reserve_budget(budget, 9000, "p1", actor_id, NOW)
        before = budget.model_dump()

        with pytest.raises(InsufficientBudget) as exc_info:
            reserve_budget(budget, 1320, "p2", actor_id, NOW)

        assert exc_info.value.code == "insufficient_budget"
        assert exc_info.value.entity_id == "budget-2026"
        assert budget.model_dump() == before


class TestReleaseAllocation:
    """Test releasing allocations."""

    def test_release(self, budget, actor_id):
        """Test releasing returns the funds to the ceiling."""
        reserve_budget(budget, 2376, "p1", actor_id, NOW)

        released = release_allocation(budget, "p1", actor_id, NOW)

        assert released == 2376
        assert budget.allocated_amount == 0
        assert budget.active_allocation("p1") is None
        assert budget.allocations[0].end_date == NOW
        assert budget.transactions[-1].type == BudgetTransactionType.RELEASE.value

    def test_release_without_allocation(self, budget, actor_id):
        """Test releasing a placement with no allocation is a no-op."""
        assert release_allocation(budget, "missing", actor_id, NOW) == 0.0
        assert budget.transactions == []


class TestCarryOverAllocations:
    """Test moving running allocations into a new fiscal year."""

    def test_carry_over(self, budget, actor_id):
        """Test active allocations move to the new ledger and released ones stay behind."""
        reserve_budget(budget, 1320, "p1", actor_id, NOW)
        reserve_budget(budget, 1980, "p2", actor_id, NOW)
        release_allocation(budget, "p2", actor_id, NOW)
        next_year = Budget(id="budget-2027", fiscal_year=2027, total_amount=10000,
                           created_by=actor_id, updated_by=actor_id)
        rollover = datetime(2027, 1, 2, 9, 0, 0)

        carried = carry_over_allocations(budget, next_year, actor_id, rollover)

        assert carried == 1320
        assert budget.allocated_amount == 0
        assert budget.active_allocation("p1") is None
        assert next_year.allocated_amount == 1320
        assert next_year.active_allocation("p1").start_date == rollover
        assert next_year.active_allocation("p2") is None
        assert next_year.transactions[-1].type == BudgetTransactionType.CARRY_OVER.value

    def test_carry_over_ignores_ceiling(self, budget, actor_id):
        """Test carried commitments are kept even above a lower ceiling."""
        reserve_budget(budget, 2376, "p1", actor_id, NOW)
        next_year = Budget(id="budget-2027", fiscal_year=2027, total_amount=2000,
                           created_by=actor_id, updated_by=actor_id)

        carry_over_allocations(budget, next_year, actor_id, NOW)

        assert next_year.allocated_amount == 2376
        assert next_year.available_amount == -376


class TestAdjustAllocation:
    """Test reallocation."""

    def test_increase(self, budget, actor_id):
        """Test an increase only checks the difference."""
        reserve_budget(budget, 1320, "p1", actor_id, NOW)

        previous = adjust_allocation(budget, "p1", 1980, "special needs", actor_id, NOW)

        assert previous == 1320
        assert budget.allocated_amount == 1980
        assert budget.active_allocation("p1").monthly_amount == 1980
        assert budget.transactions[-1].amount == 660

    def test_decrease(self, budget, actor_id):
        """Test a decrease frees funds with a negative adjustment."""
        reserve_budget(budget, 1980, "p1", actor_id, NOW)

        adjust_allocation(budget, "p1", 1320, "needs resolved", actor_id, NOW)

        assert budget.allocated_amount == 1320
        assert budget.transactions[-1].amount == -660

    def test_increase_over_ceiling(self, budget, actor_id):
        """Test an increase past the ceiling raises."""
        reserve_budget(budget, 9000, "p1", actor_id, NOW)

        with pytest.raises(InsufficientBudget):
            adjust_allocation(budget, "p1", 11000, "too much", actor_id, NOW)

        assert budget.allocated_amount == 9000


class TestLedgerUpdates:
    """Test payments and ceiling updates."""

    def test_record_payment(self, budget, actor_id):
        """Test payments are logged as payment transactions."""
        payment = Payment(amount=1320, description="March", date=NOW)

        transaction = record_payment(budget, "p1", payment, actor_id, NOW)

        assert transaction.type == BudgetTransactionType.PAYMENT.value
        assert transaction.amount == 1320
        assert transaction.description == "March"

    def test_update_total(self, budget, actor_id):
        """Test the ceiling can be raised and returns the previous value."""
        assert update_total_budget(budget, 20000, actor_id, NOW) == 10000
        assert budget.total_amount == 20000

    def test_update_total_below_allocated(self, budget, actor_id):
        """Test the ceiling cannot drop below what is already allocated."""
        reserve_budget(budget, 5000, "p1", actor_id, NOW)

        with pytest.raises(InsufficientBudget):
            update_total_budget(budget, 4000, actor_id, NOW)

        assert budget.total_amount == 10000

    def test_summary(self, budget, actor_id):
        """Test the summary reports utilization."""
        reserve_budget(budget, 2500, "p1", actor_id, NOW)

        summary = summarize_budget(budget)

        assert summary.fiscal_year == 2026
        assert summary.available_amount == 7500
        assert summary.active_allocations == 1
        assert summary.utilization_percent == 25.0
