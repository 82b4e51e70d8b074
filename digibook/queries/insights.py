"""
Budget-vs-Actual Insights

Pure folds over fixed expenses:

    totalBudget       = sum(amount)
    totalActual       = sum(paidAmount)
    totalOverpayment  = sum(max(paidAmount - amount, 0))
    budgetAccuracy    = totalActual / totalBudget * 100

An expense is a significant overpayment when it is overpaid by more than
20% of its amount.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from digibook.models.ledger import (
    ZERO,
    Category,
    FixedExpense,
    PendingTransaction,
    quantize_money,
)
from digibook.models.reports import (
    BudgetSummary,
    CategoryOverpayment,
    CategoryUsage,
    ExpenseOverpayment,
    MonthlyExpenseSummary,
)


SIGNIFICANT_OVERPAYMENT_PERCENT = Decimal("20")
PERCENT = Decimal("0.01")


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return Decimal("0.00")
    return (part / whole * 100).quantize(PERCENT)


def expense_overpayment(
    expense: FixedExpense,
    threshold: Decimal = SIGNIFICANT_OVERPAYMENT_PERCENT,
) -> ExpenseOverpayment:
    """Budget-vs-actual for one expense."""
    difference = expense.paid_amount - expense.amount
    percentage = _percentage(difference, expense.amount)
    return ExpenseOverpayment(
        expense_id=expense.id,
        name=expense.name,
        category=expense.category,
        budget=expense.amount,
        actual=expense.paid_amount,
        overpayment_amount=max(difference, ZERO),
        overpayment_percentage=percentage,
        is_significant=percentage > threshold,
        budget_satisfied=expense.paid_amount >= expense.amount,
    )


def overpayment_breakdown(
    expenses: Iterable[FixedExpense],
    threshold: Decimal = SIGNIFICANT_OVERPAYMENT_PERCENT,
) -> list[ExpenseOverpayment]:
    """Per-expense breakdown, largest overpayment first."""
    breakdown = [expense_overpayment(e, threshold) for e in expenses]
    breakdown.sort(key=lambda o: (-o.overpayment_amount, o.name))
    return breakdown


def budget_summary(
    expenses: Iterable[FixedExpense],
    threshold: Decimal = SIGNIFICANT_OVERPAYMENT_PERCENT,
) -> BudgetSummary:
    expenses = list(expenses)
    total_budget = sum((e.amount for e in expenses), ZERO)
    total_actual = sum((e.paid_amount for e in expenses), ZERO)
    total_overpayment = sum(
        (max(e.paid_amount - e.amount, ZERO) for e in expenses), ZERO
    )
    significant = sum(
        1 for e in expenses if expense_overpayment(e, threshold).is_significant
    )
    return BudgetSummary(
        total_budget=total_budget,
        total_actual=total_actual,
        total_overpayment=total_overpayment,
        budget_accuracy=_percentage(total_actual, total_budget),
        significant_overpayments=significant,
        expense_count=len(expenses),
    )


def overpayment_by_category(
    expenses: Iterable[FixedExpense],
    threshold: Decimal = SIGNIFICANT_OVERPAYMENT_PERCENT,
) -> list[CategoryOverpayment]:
    """
    Overpayments folded per category, sorted by category name.

    overpaymentPercentage is the category's total overpayment over its
    total budget.
    """
    groups: dict[str, list[ExpenseOverpayment]] = defaultdict(list)
    for expense in expenses:
        groups[expense.category].append(expense_overpayment(expense, threshold))

    results = []
    for category in sorted(groups):
        items = groups[category]
        total_budget = sum((o.budget for o in items), ZERO)
        total_overpayment = sum((o.overpayment_amount for o in items), ZERO)
        results.append(CategoryOverpayment(
            category=category,
            count=len(items),
            significant_count=sum(1 for o in items if o.is_significant),
            total_budget=total_budget,
            total_actual=sum((o.actual for o in items), ZERO),
            total_overpayment=total_overpayment,
            overpayment_percentage=_percentage(total_overpayment, total_budget),
        ))
    return results


def _month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def _previous_months(today: date, months: int) -> list[str]:
    keys = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return keys


def monthly_history(
    expenses: Iterable[FixedExpense],
    today: date,
    months: int = 6,
) -> list[MonthlyExpenseSummary]:
    """Totals per due-date month for the last `months` months, newest first."""
    keys = _previous_months(today, months)
    budget = {key: ZERO for key in keys}
    paid = {key: ZERO for key in keys}
    counts = {key: 0 for key in keys}

    for expense in expenses:
        key = _month_key(expense.due_date)
        if key not in budget:
            continue
        budget[key] += expense.amount
        paid[key] += expense.paid_amount
        counts[key] += 1

    return [
        MonthlyExpenseSummary(
            month=key,
            total_budget=quantize_money(budget[key]),
            total_paid=quantize_money(paid[key]),
            expense_count=counts[key],
        )
        for key in keys
    ]


def category_usage(
    categories: Iterable[Category],
    expenses: Iterable[FixedExpense],
    pending: Iterable[PendingTransaction],
) -> list[CategoryUsage]:
    """How many expenses and pending transactions use each category."""
    expenses = list(expenses)
    pending = list(pending)
    usage = []
    for category in categories:
        name = category.name.lower()
        matching = [e for e in expenses if e.category.lower() == name]
        usage.append(CategoryUsage(
            category=category.name,
            expense_count=len(matching),
            pending_count=sum(1 for p in pending if p.category.lower() == name),
            total_budget=sum((e.amount for e in matching), ZERO),
        ))
    return usage
