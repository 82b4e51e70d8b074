"""
Expense Listing

Filtering and ordering for the fixed expense table. Filters compose: an
expense is listed only if it passes every filter that is set.
"""

from collections.abc import Iterable
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from digibook.models.ledger import ExpenseStatus, FixedExpense, funding_account_id


class StatusFilter(str, Enum):
    """Status filters offered by the listing."""
    PAID = "paid"
    UNPAID = "unpaid"
    OVERDUE = "overdue"


class ExpenseFilter(BaseModel):
    """
    Listing filters. Unset fields do not filter.

    search matches a case-insensitive substring of the name or category.
    """

    category: Optional[str] = None
    status: Optional[StatusFilter] = None
    account_id: Optional[int] = None
    search: Optional[str] = Field(default=None, max_length=100)


def expense_sort_key(expense: FixedExpense) -> tuple:
    """Due date ascending with missing dates last, then name."""
    due = expense.due_date
    return (due is None, due or date.max, expense.name.casefold(), expense.name)


def sort_expenses(expenses: Iterable[FixedExpense]) -> list[FixedExpense]:
    return sorted(expenses, key=expense_sort_key)


def matches_filter(expense: FixedExpense, filters: ExpenseFilter, today: date) -> bool:
    if filters.category and expense.category.lower() != filters.category.strip().lower():
        return False

    if filters.status == StatusFilter.PAID and expense.status != ExpenseStatus.PAID:
        return False
    if filters.status == StatusFilter.UNPAID and expense.status == ExpenseStatus.PAID:
        return False
    if filters.status == StatusFilter.OVERDUE and (
        expense.status == ExpenseStatus.PAID or expense.due_date >= today
    ):
        return False

    if filters.account_id is not None:
        if funding_account_id(expense.payment_source) != filters.account_id:
            return False

    if filters.search:
        needle = filters.search.strip().lower()
        if needle not in expense.name.lower() and needle not in expense.category.lower():
            return False
    return True


def list_expenses(
    expenses: Iterable[FixedExpense],
    filters: Optional[ExpenseFilter],
    today: date,
) -> list[FixedExpense]:
    """Filtered and sorted expenses."""
    filters = filters or ExpenseFilter()
    return sort_expenses(e for e in expenses if matches_filter(e, filters, today))
