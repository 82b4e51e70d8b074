"""Derivations package: pure projections over ledger snapshots."""

from digibook.queries.balances import (
    available_credit,
    liquid_balance,
    minimum_payment_status,
    net_worth,
    projected_balance,
    projected_balances,
)
from digibook.queries.insights import (
    budget_summary,
    category_usage,
    expense_overpayment,
    monthly_history,
    overpayment_breakdown,
    overpayment_by_category,
)
from digibook.queries.listing import ExpenseFilter, StatusFilter, list_expenses, sort_expenses
from digibook.queries.memo import IdentityMemo
from digibook.queries.payoff import (
    add_months,
    calculate_debt_payoff,
    estimated_minimum_payment,
    interest_savings,
)
from digibook.queries.schedule import (
    expense_urgency,
    paycheck_schedule,
    paycheck_summary,
)

__all__ = [
    # Balances
    "available_credit",
    "liquid_balance",
    "minimum_payment_status",
    "net_worth",
    "projected_balance",
    "projected_balances",
    # Insights
    "budget_summary",
    "category_usage",
    "expense_overpayment",
    "monthly_history",
    "overpayment_breakdown",
    "overpayment_by_category",
    # Listing
    "ExpenseFilter",
    "StatusFilter",
    "list_expenses",
    "sort_expenses",
    # Payoff
    "add_months",
    "calculate_debt_payoff",
    "estimated_minimum_payment",
    "interest_savings",
    # Schedule
    "expense_urgency",
    "paycheck_schedule",
    "paycheck_summary",
    # Memo
    "IdentityMemo",
]
