"""
Paycheck Schedule

The paycheck series is P_i = lastPaycheckDate + 14*i days. The next
paycheck is the first P_i (i >= 1) strictly after today. Expenses are
bucketed relative to it:

    Paid          status is paid
    Overdue       due before today
    DueThisWeek   due before the next paycheck
    DueNextCheck  due before the paycheck after that
    Future        everything later

Without a last paycheck date every unpaid expense is Unscheduled.
"""

from collections.abc import Iterable
from datetime import date, timedelta
from typing import Optional

from digibook.models.ledger import (
    ZERO,
    ExpenseStatus,
    FixedExpense,
    PaycheckSettings,
    quantize_money,
)
from digibook.models.reports import ExpenseUrgency, PaycheckSchedule, PaycheckSummary


PAYCHECK_INTERVAL_DAYS = 14


def paycheck_series(last_paycheck: date, count: int) -> list[date]:
    """The first `count` paydays after last_paycheck."""
    step = timedelta(days=PAYCHECK_INTERVAL_DAYS)
    return [last_paycheck + step * i for i in range(1, count + 1)]


def next_paycheck_date(last_paycheck: date, today: date) -> date:
    """First payday strictly after today."""
    step = timedelta(days=PAYCHECK_INTERVAL_DAYS)
    next_date = last_paycheck + step
    if next_date <= today:
        periods = (today - last_paycheck).days // PAYCHECK_INTERVAL_DAYS
        next_date = last_paycheck + step * (periods + 1)
    return next_date


def paycheck_schedule(
    settings: Optional[PaycheckSettings],
    today: date,
) -> Optional[PaycheckSchedule]:
    """Next and following paydays, or None when no paycheck is recorded."""
    if settings is None or settings.last_paycheck_date is None:
        return None

    next_date = next_paycheck_date(settings.last_paycheck_date, today)
    following = next_date + timedelta(days=PAYCHECK_INTERVAL_DAYS)
    return PaycheckSchedule(
        last_paycheck_date=settings.last_paycheck_date,
        next_paycheck_date=next_date,
        following_paycheck_date=following,
        days_until_next=(next_date - today).days,
        days_until_following=(following - today).days,
    )


def expense_urgency(
    expense: FixedExpense,
    schedule: Optional[PaycheckSchedule],
    today: date,
) -> ExpenseUrgency:
    if expense.status == ExpenseStatus.PAID:
        return ExpenseUrgency.PAID
    if expense.due_date < today:
        return ExpenseUrgency.OVERDUE
    if schedule is None:
        return ExpenseUrgency.UNSCHEDULED
    if expense.due_date < schedule.next_paycheck_date:
        return ExpenseUrgency.DUE_THIS_WEEK
    if expense.due_date < schedule.following_paycheck_date:
        return ExpenseUrgency.DUE_NEXT_CHECK
    return ExpenseUrgency.FUTURE


def group_by_urgency(
    expenses: Iterable[FixedExpense],
    schedule: Optional[PaycheckSchedule],
    today: date,
) -> dict[ExpenseUrgency, list[FixedExpense]]:
    """Expenses per urgency bucket, every bucket present."""
    groups: dict[ExpenseUrgency, list[FixedExpense]] = {urgency: [] for urgency in ExpenseUrgency}
    for expense in expenses:
        groups[expense_urgency(expense, schedule, today)].append(expense)
    return groups


def paycheck_summary(
    expenses: Iterable[FixedExpense],
    settings: Optional[PaycheckSettings],
    today: date,
) -> PaycheckSummary:
    """Remaining amounts due this week, next check and overdue."""
    schedule = paycheck_schedule(settings, today)
    groups = group_by_urgency(expenses, schedule, today)

    def remaining(urgency: ExpenseUrgency):
        return quantize_money(sum((e.remaining for e in groups[urgency]), ZERO))

    return PaycheckSummary(
        schedule=schedule,
        due_this_week_total=remaining(ExpenseUrgency.DUE_THIS_WEEK),
        due_next_check_total=remaining(ExpenseUrgency.DUE_NEXT_CHECK),
        overdue_total=remaining(ExpenseUrgency.OVERDUE),
        expenses_by_urgency=groups,
    )
