"""
Debt Payoff Amortization

Monthly simulation with r = annualRate / 100 / 12:

    interest  = balance * r
    principal = min(payment - interest, balance)
    principal <= 0  -> PaymentBelowInterest
    balance  -= principal

until the balance is at most one cent or 600 months have passed.
Intermediate values keep full Decimal precision; results are rounded to
cents on the way out.
"""

import calendar
from datetime import date
from decimal import Decimal
from typing import Any

from digibook.models.ledger import CreditCard, quantize_money
from digibook.models.reports import (
    DebtPayoffResult,
    InterestSavings,
    PayoffFailure,
)


MAX_PAYOFF_MONTHS = 600
PAID_OFF_THRESHOLD = Decimal("0.01")
MINIMUM_PAYMENT_RATE = Decimal("0.02")
MINIMUM_PAYMENT_FLOOR = Decimal("25")


def add_months(start: date, months: int) -> date:
    """Same day `months` later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def calculate_debt_payoff(
    balance: Any,
    monthly_payment: Any,
    annual_rate: Any,
    today: date,
    max_months: int = MAX_PAYOFF_MONTHS,
) -> DebtPayoffResult:
    """
    Simulate paying `monthly_payment` every month until the debt is gone.

    Fails with PaymentBelowInterest as soon as a month's payment does not
    reduce the balance, NoBalance when there is nothing owed, and
    ExceedsMaxMonths if the ceiling is reached first.
    """
    initial = _decimal(balance)
    payment = _decimal(monthly_payment)
    rate = _decimal(annual_rate) / 100 / 12

    if initial <= PAID_OFF_THRESHOLD:
        return DebtPayoffResult(success=False, reason=PayoffFailure.NO_BALANCE)

    remaining = initial
    total_interest = Decimal("0")
    months = 0
    while remaining > PAID_OFF_THRESHOLD and months < max_months:
        interest = remaining * rate
        principal = min(payment - interest, remaining)
        if principal <= 0:
            return DebtPayoffResult(
                success=False,
                reason=PayoffFailure.PAYMENT_BELOW_INTEREST,
                months=months,
                total_interest=quantize_money(total_interest),
            )
        remaining -= principal
        total_interest += interest
        months += 1

    if remaining > PAID_OFF_THRESHOLD:
        return DebtPayoffResult(
            success=False,
            reason=PayoffFailure.EXCEEDS_MAX_MONTHS,
            months=months,
            total_interest=quantize_money(total_interest),
            total_cost=quantize_money(initial + total_interest),
        )

    return DebtPayoffResult(
        success=True,
        months=months,
        total_interest=quantize_money(total_interest),
        total_cost=quantize_money(initial + total_interest),
        payoff_date=add_months(today, months),
    )


def estimated_minimum_payment(balance: Any) -> Decimal:
    """Typical issuer minimum: 2% of the balance, at least 25."""
    return quantize_money(max(_decimal(balance) * MINIMUM_PAYMENT_RATE, MINIMUM_PAYMENT_FLOOR))


def interest_savings(
    balance: Any,
    payment: Any,
    annual_rate: Any,
    today: date,
) -> InterestSavings:
    """
    Compare paying `payment` every month with paying the estimated minimum.

    Savings are only reported when both plans pay the debt off; a
    minimum that never catches up with interest has no finite cost to
    compare against.
    """
    minimum = estimated_minimum_payment(balance)
    minimum_plan = calculate_debt_payoff(balance, minimum, annual_rate, today)
    chosen_plan = calculate_debt_payoff(balance, payment, annual_rate, today)

    interest_saved = Decimal("0")
    months_saved = 0
    if minimum_plan.success and chosen_plan.success:
        interest_saved = max(minimum_plan.total_interest - chosen_plan.total_interest, Decimal("0"))
        months_saved = max(minimum_plan.months - chosen_plan.months, 0)

    return InterestSavings(
        minimum_payment=minimum,
        minimum_plan=minimum_plan,
        chosen_plan=chosen_plan,
        interest_saved=interest_saved,
        months_saved=months_saved,
    )


def card_payoff(
    card: CreditCard,
    monthly_payment: Any,
    today: date,
    max_months: int = MAX_PAYOFF_MONTHS,
) -> DebtPayoffResult:
    """calculate_debt_payoff for a card's balance and APR."""
    return calculate_debt_payoff(card.balance, monthly_payment, card.interest_rate, today, max_months)
