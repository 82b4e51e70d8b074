"""
Tests for the derivations

Every query is a pure function of its inputs, so most tests build
records directly. LedgerState tests use the in-memory store.
"""

from datetime import date
from decimal import Decimal

import pytest

from digibook.events import LEDGER_CHANGED, LEDGER_OPTIMISTIC, LEDGER_ROLLED_BACK, EventBus
from digibook.models.ledger import Category, LedgerSnapshot, PaycheckSettings, PendingTransaction
from digibook.models.reports import (
    ExpenseUrgency,
    MinimumPaymentStatus,
    PayoffFailure,
    UtilizationLevel,
)
from digibook.queries import balances, insights, listing, payoff, schedule
from digibook.queries.memo import IdentityMemo
from digibook.queries.state import LedgerDerivations, LedgerState
from digibook.services.storage import ACCOUNTS, FIXED_EXPENSES

from factories import TODAY, account, account_expense, card, card_expense, card_payment_expense, put_records


def _pending(amount, account_id=1, category="Groceries"):
    return PendingTransaction(account_id=account_id, amount=Decimal(amount), category=category)


class TestBalances:
    """Tests for balance derivations."""

    def test_projected_balance_includes_pending(self):
        """Test that pending amounts for the account are added."""
        pending = [_pending("-40"), _pending("15.50"), _pending("-100", account_id=2)]
        assert balances.projected_balance(account(balance="500"), pending) == Decimal("475.50")

    def test_projected_balances_per_account(self):
        """Test the per-account mapping."""
        result = balances.projected_balances(
            [account(), account(id=2, balance="50", is_default=False)],
            [_pending("-10", account_id=2)],
        )
        assert result == {1: Decimal("500.00"), 2: Decimal("40.00")}

    def test_net_worth_counts_credit_balances(self):
        """Test that a negative card balance adds to net worth."""
        worth = balances.net_worth([account(balance="1000")], [card(balance="300"), card(id=3, balance="-50")])
        assert worth == Decimal("750.00")

    def test_available_credit(self):
        """Test available credit and utilization band."""
        credit = balances.available_credit(card(balance="1500", limit="5000"))
        assert credit.available == Decimal("3500.00")
        assert credit.utilization_percentage == Decimal("30.0")
        assert credit.utilization_level == UtilizationLevel.GOOD

    def test_credit_balance_is_zero_utilization(self):
        """Test that a credit balance does not raise available credit."""
        credit = balances.available_credit(card(balance="-50", limit="5000"))
        assert credit.available == Decimal("5000.00")
        assert credit.utilization_level == UtilizationLevel.NONE

    @pytest.mark.parametrize("percentage, level", [
        ("0", UtilizationLevel.NONE),
        ("10", UtilizationLevel.EXCELLENT),
        ("10.1", UtilizationLevel.GOOD),
        ("50", UtilizationLevel.FAIR),
        ("90", UtilizationLevel.HIGH),
        ("120", UtilizationLevel.CRITICAL),
    ])
    def test_utilization_bands(self, percentage, level):
        """Test band boundaries."""
        assert balances.utilization_level(Decimal(percentage)) == level

    def test_minimum_payment_status(self):
        """Test paid toward the card against its minimum."""
        visa = card(balance="600", minimum_payment=Decimal("35"))
        partial = [card_payment_expense(paid_amount=Decimal("20"))]
        report = balances.minimum_payment_status(visa, partial)
        assert report.status == MinimumPaymentStatus.UNPAID
        assert report.amount_due == Decimal("15.00")

        covered = [card_payment_expense(paid_amount=Decimal("35"))]
        assert balances.minimum_payment_status(visa, covered).status == MinimumPaymentStatus.PAID

    def test_minimum_payment_no_balance(self):
        """Test that a paid-off card has nothing due."""
        report = balances.minimum_payment_status(card(balance="0"), [])
        assert report.status == MinimumPaymentStatus.NO_BALANCE


class TestSchedule:
    """Tests for the paycheck schedule and urgency buckets."""

    def test_next_paycheck_strictly_after_today(self):
        """Test that a payday falling on today is not the next one."""
        assert schedule.next_paycheck_date(date(2024, 3, 8), TODAY) == date(2024, 3, 22)
        assert schedule.next_paycheck_date(date(2024, 3, 1), TODAY) == date(2024, 3, 29)
        assert schedule.next_paycheck_date(TODAY, TODAY) == date(2024, 3, 29)

    def test_series(self):
        """Test the biweekly series."""
        assert schedule.paycheck_series(date(2024, 1, 5), 2) == [date(2024, 1, 19), date(2024, 2, 2)]

    def test_urgency_buckets(self):
        """Test each bucket relative to the paycheck series."""
        plan = schedule.paycheck_schedule(PaycheckSettings(last_paycheck_date=date(2024, 3, 8)), TODAY)
        assert plan.days_until_next == 7

        def urgency(due, **kwargs):
            return schedule.expense_urgency(account_expense(due_date=due, **kwargs), plan, TODAY)

        assert urgency(date(2024, 3, 10)) == ExpenseUrgency.OVERDUE
        assert urgency(date(2024, 3, 20)) == ExpenseUrgency.DUE_THIS_WEEK
        assert urgency(date(2024, 3, 25)) == ExpenseUrgency.DUE_NEXT_CHECK
        assert urgency(date(2024, 4, 10)) == ExpenseUrgency.FUTURE
        assert urgency(date(2024, 3, 10), paid_amount=Decimal("120")) == ExpenseUrgency.PAID

    def test_unscheduled_without_paycheck(self):
        """Test that future expenses are Unscheduled with no paycheck date."""
        assert schedule.paycheck_schedule(PaycheckSettings(), TODAY) is None
        assert schedule.expense_urgency(account_expense(), None, TODAY) == ExpenseUrgency.UNSCHEDULED

    def test_summary_totals_remaining(self):
        """Test that bucket totals use the remaining amount."""
        summary = schedule.paycheck_summary(
            [
                account_expense(paid_amount=Decimal("20")),
                account_expense(id=20, due_date=date(2024, 3, 1)),
            ],
            PaycheckSettings(last_paycheck_date=date(2024, 3, 8)),
            TODAY,
        )
        assert summary.due_this_week_total == Decimal("100.00")
        assert summary.overdue_total == Decimal("120.00")
        assert summary.due_next_check_total == Decimal("0.00")


class TestInsights:
    """Tests for budget-vs-actual insights."""

    def test_expense_overpayment(self):
        """Test a 30% overpayment is significant."""
        result = insights.expense_overpayment(account_expense(amount="100", paid_amount=Decimal("130")))
        assert result.overpayment_amount == Decimal("30.00")
        assert result.overpayment_percentage == Decimal("30.00")
        assert result.is_significant
        assert result.budget_satisfied

    def test_budget_summary(self):
        """Test totals and accuracy."""
        summary = insights.budget_summary([
            account_expense(amount="100", paid_amount=Decimal("130")),
            card_expense(amount="100", paid_amount=Decimal("50")),
        ])
        assert summary.total_budget == Decimal("200.00")
        assert summary.total_actual == Decimal("180.00")
        assert summary.total_overpayment == Decimal("30.00")
        assert summary.budget_accuracy == Decimal("90.00")
        assert summary.significant_overpayments == 1

    def test_empty_budget_summary(self):
        """Test that no expenses gives zero accuracy."""
        assert insights.budget_summary([]).budget_accuracy == Decimal("0.00")

    def test_by_category_uses_category_budget(self):
        """Test that the category percentage is relative to its total budget."""
        results = insights.overpayment_by_category([
            account_expense(amount="100", paid_amount=Decimal("130")),
            account_expense(id=20, amount="100", paid_amount=Decimal("100")),
            card_expense(amount="80"),
        ])
        assert [r.category for r in results] == ["Housing", "Subscriptions"]
        assert results[0].overpayment_percentage == Decimal("15.00")
        assert results[0].significant_count == 1

    def test_monthly_history(self):
        """Test month buckets, newest first."""
        history = insights.monthly_history(
            [account_expense(), account_expense(id=20, due_date=date(2023, 1, 1))], TODAY, months=3,
        )
        assert [h.month for h in history] == ["2024-03", "2024-02", "2024-01"]
        assert history[0].total_budget == Decimal("120.00")
        assert history[0].expense_count == 1

    def test_category_usage(self):
        """Test that usage counts match case-insensitively."""
        usage = insights.category_usage(
            [Category(name="Housing"), Category(name="Groceries")],
            [account_expense(category="housing")],
            [_pending("-5")],
        )
        assert usage[0].expense_count == 1
        assert usage[1].pending_count == 1
        assert usage[1].in_use


class TestPayoff:
    """Tests for the amortization simulation."""

    def test_payment_below_interest(self):
        """Test that 50 a month on 5000 at 24.99% never gets ahead of interest."""
        result = payoff.calculate_debt_payoff(5000, 50, 24.99, TODAY)
        assert not result.success
        assert result.reason == PayoffFailure.PAYMENT_BELOW_INTEREST

    def test_zero_rate(self):
        """Test a simple interest-free payoff."""
        result = payoff.calculate_debt_payoff(1000, 100, 0, TODAY)
        assert result.success
        assert result.months == 10
        assert result.total_interest == Decimal("0.00")
        assert result.payoff_date == date(2025, 1, 15)

    def test_card_payoff_uses_card_rate(self):
        """Test the per-card derivation against the card's balance and APR."""
        derivations = LedgerDerivations(LedgerState(store=None), today=lambda: TODAY)
        visa = card(balance="1000", interest_rate=Decimal("0"))
        result = derivations.card_payoff(visa, 100)
        assert result.success
        assert result.months == 10

    def test_with_interest(self):
        """Test that interest is charged on the declining balance."""
        result = payoff.calculate_debt_payoff(1000, 100, 12, TODAY)
        assert result.success
        assert result.months == 11
        assert Decimal("0") < result.total_interest < Decimal("100")
        assert result.total_cost == Decimal("1000") + result.total_interest

    def test_no_balance(self):
        """Test that nothing owed is NoBalance."""
        assert payoff.calculate_debt_payoff(0, 100, 20, TODAY).reason == PayoffFailure.NO_BALANCE

    def test_exceeds_max_months(self):
        """Test the month ceiling."""
        result = payoff.calculate_debt_payoff(10000, 10, 0, TODAY, max_months=12)
        assert result.reason == PayoffFailure.EXCEEDS_MAX_MONTHS
        assert result.months == 12

    def test_add_months_clamps(self):
        """Test end-of-month clamping."""
        assert payoff.add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_estimated_minimum(self):
        """Test the 2% rule with its floor."""
        assert payoff.estimated_minimum_payment(5000) == Decimal("100.00")
        assert payoff.estimated_minimum_payment(500) == Decimal("25.00")

    def test_interest_savings(self):
        """Test that paying more than the minimum saves interest and months."""
        savings = payoff.interest_savings(1000, 200, 12, TODAY)
        assert savings.minimum_payment == Decimal("25.00")
        assert savings.interest_saved > 0
        assert savings.months_saved > 0

    def test_no_savings_when_minimum_fails(self):
        """Test that savings are zero when the minimum plan cannot finish."""
        savings = payoff.interest_savings(5000, 500, 30, TODAY)
        assert not savings.minimum_plan.success
        assert savings.interest_saved == Decimal("0.00")


class TestListing:
    """Tests for expense filtering and ordering."""

    def _expenses(self):
        return [
            account_expense(id=1, name="Rent", due_date=date(2024, 3, 20)),
            account_expense(id=2, name="gym", due_date=date(2024, 3, 20), category="Health"),
            card_expense(id=3, name="Streaming", due_date=date(2024, 3, 1)),
            account_expense(id=4, name="Water", due_date=date(2024, 3, 5), paid_amount=Decimal("120")),
        ]

    def test_sorted_by_due_date_then_name(self):
        """Test the default ordering."""
        names = [e.name for e in listing.list_expenses(self._expenses(), None, TODAY)]
        assert names == ["Streaming", "Water", "gym", "Rent"]

    def test_status_filters(self):
        """Test paid, unpaid and overdue filters."""
        def names(status):
            filters = listing.ExpenseFilter(status=status)
            return [e.name for e in listing.list_expenses(self._expenses(), filters, TODAY)]

        assert names(listing.StatusFilter.PAID) == ["Water"]
        assert names(listing.StatusFilter.OVERDUE) == ["Streaming"]
        assert "Water" not in names(listing.StatusFilter.UNPAID)

    def test_account_and_search_filters(self):
        """Test that filters compose."""
        filters = listing.ExpenseFilter(account_id=1, search="RE")
        assert [e.name for e in listing.list_expenses(self._expenses(), filters, TODAY)] == ["Rent"]

    def test_category_filter(self):
        """Test case-insensitive category matching."""
        filters = listing.ExpenseFilter(category=" health ")
        assert [e.id for e in listing.list_expenses(self._expenses(), filters, TODAY)] == [2]


class TestIdentityMemo:
    """Tests for identity memoization."""

    def test_same_objects_hit(self):
        """Test that identical inputs reuse the result."""
        calls = []
        memo = IdentityMemo(lambda items: calls.append(1) or len(items))
        items = (account(),)
        assert memo(items) == 1
        assert memo(items) == 1
        assert len(calls) == 1
        assert memo.hits == 1

    def test_new_tuple_misses(self):
        """Test that an equal but new tuple recomputes."""
        memo = IdentityMemo(len)
        memo((account(),))
        memo((account(),))
        assert memo.misses == 2

    def test_values_compared_by_equality(self):
        """Test that dates and amounts compare by value."""
        memo = IdentityMemo(lambda d, n: (d, n))
        items = ()
        memo(items, date(2024, 1, 1))
        memo(items, date(2024, 1, 1))
        assert memo.hits == 1

    def test_clear(self):
        """Test that clear forces a recompute."""
        memo = IdentityMemo(len)
        items = ()
        memo(items)
        memo.clear()
        memo(items)
        assert memo.misses == 2


class TestLedgerState:
    """Tests for committed and optimistic snapshots."""

    @pytest.mark.asyncio
    async def test_refresh_publishes(self, store):
        """Test that refresh re-reads and notifies."""
        bus = EventBus()
        reasons = []
        bus.subscribe(LEDGER_CHANGED, lambda event: reasons.append(event.payload["reason"]))
        state = LedgerState(store, bus)
        await put_records(store, (ACCOUNTS, account()))

        snapshot = await state.refresh("test")

        assert snapshot.account(1).name == "Checking"
        assert reasons == ["test"]

    @pytest.mark.asyncio
    async def test_optimistic_and_rollback(self, store):
        """Test that rollback restores the committed snapshot."""
        bus = EventBus()
        seen = []
        bus.subscribe(LEDGER_OPTIMISTIC, lambda event: seen.append("optimistic"))
        bus.subscribe(LEDGER_ROLLED_BACK, lambda event: seen.append("rolled_back"))
        state = LedgerState(store, bus)
        await put_records(store, (ACCOUNTS, account()))
        await state.hydrate()

        state.update_optimistic(
            lambda s: s.with_account(s.account(1).model_copy(update={"current_balance": Decimal("1")}))
        )
        assert state.has_pending_change
        assert state.snapshot.account(1).current_balance == Decimal("1")

        state.rollback()
        assert not state.has_pending_change
        assert state.snapshot.account(1).current_balance == Decimal("500.00")
        assert seen == ["optimistic", "rolled_back"]

    @pytest.mark.asyncio
    async def test_derivations_are_memoized(self, store):
        """Test that derivations recompute only when the snapshot changes."""
        state = LedgerState(store)
        await put_records(store, (ACCOUNTS, account()), (FIXED_EXPENSES, account_expense()))
        await state.hydrate()
        derivations = LedgerDerivations(state, today=lambda: TODAY)

        first = derivations.budget_summary()
        assert derivations.budget_summary() is first
        assert derivations.liquid_balance() == Decimal("500.00")

        await state.refresh()
        assert derivations.budget_summary() is not first
        assert derivations.budget_summary() == first

    def test_derivations_follow_optimistic_snapshot(self):
        """Test that derivations read the optimistic snapshot when one is applied."""
        state = LedgerState(store=None)
        state.apply_optimistic(LedgerSnapshot(accounts=(account(balance="75"),)))
        assert LedgerDerivations(state).liquid_balance() == Decimal("75.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
