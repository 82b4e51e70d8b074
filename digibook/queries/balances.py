"""
Balance Derivations

Pure functions over accounts, cards and pending transactions. Identical
inputs always give identical outputs; nothing here touches storage.
"""

from collections.abc import Iterable
from decimal import Decimal

from digibook.models.ledger import (
    ZERO,
    Account,
    CreditCard,
    CreditCardPaymentSource,
    FixedExpense,
    PendingTransaction,
    quantize_money,
)
from digibook.models.reports import (
    AvailableCredit,
    MinimumPaymentReport,
    MinimumPaymentStatus,
    UtilizationLevel,
)


def projected_balance(
    account: Account,
    pending: Iterable[PendingTransaction],
) -> Decimal:
    """currentBalance plus every pending amount targeting the account."""
    total = account.current_balance
    for transaction in pending:
        if transaction.account_id == account.id:
            total += transaction.amount
    return quantize_money(total)


def projected_balances(
    accounts: Iterable[Account],
    pending: Iterable[PendingTransaction],
) -> dict[int, Decimal]:
    """Projected balance per account id."""
    pending = list(pending)
    return {account.id: projected_balance(account, pending) for account in accounts}


def liquid_balance(accounts: Iterable[Account]) -> Decimal:
    """Sum of every account's current balance."""
    return quantize_money(sum((a.current_balance for a in accounts), ZERO))


def total_debt(credit_cards: Iterable[CreditCard]) -> Decimal:
    return quantize_money(sum((c.balance for c in credit_cards), ZERO))


def net_worth(
    accounts: Iterable[Account],
    credit_cards: Iterable[CreditCard],
) -> Decimal:
    """Account balances minus card balances. Credit balances count as assets."""
    return quantize_money(liquid_balance(accounts) - total_debt(credit_cards))


def utilization_level(percentage: Decimal) -> UtilizationLevel:
    if percentage == 0:
        return UtilizationLevel.NONE
    if percentage <= 10:
        return UtilizationLevel.EXCELLENT
    if percentage <= 30:
        return UtilizationLevel.GOOD
    if percentage <= 50:
        return UtilizationLevel.FAIR
    if percentage <= 90:
        return UtilizationLevel.HIGH
    return UtilizationLevel.CRITICAL


def available_credit(card: CreditCard) -> AvailableCredit:
    """
    Remaining credit and utilization.

    A credit (negative) balance counts as zero debt; it does not raise
    the available amount above the limit.
    """
    debt = max(card.balance, ZERO)
    percentage = (debt / card.credit_limit * 100).quantize(Decimal("0.1"))
    return AvailableCredit(
        available=card.credit_limit - debt,
        utilization_percentage=percentage,
        utilization_level=utilization_level(percentage),
        is_over_limit=card.is_over_limit,
    )


def paid_toward_card(card: CreditCard, expenses: Iterable[FixedExpense]) -> Decimal:
    """Amount paid so far by credit card payment expenses targeting the card."""
    total = ZERO
    for expense in expenses:
        source = expense.payment_source
        if isinstance(source, CreditCardPaymentSource) and source.target_credit_card_id == card.id:
            total += expense.paid_amount
    return quantize_money(total)


def minimum_payment_status(
    card: CreditCard,
    expenses: Iterable[FixedExpense],
) -> MinimumPaymentReport:
    """Whether this cycle's payments toward the card cover its minimum."""
    paid = paid_toward_card(card, expenses)
    if card.balance <= 0:
        return MinimumPaymentReport(
            status=MinimumPaymentStatus.NO_BALANCE,
            minimum_payment=ZERO,
            paid_toward_card=paid,
            amount_due=ZERO,
        )

    due = max(card.minimum_payment - paid, ZERO)
    return MinimumPaymentReport(
        status=MinimumPaymentStatus.PAID if due == 0 else MinimumPaymentStatus.UNPAID,
        minimum_payment=card.minimum_payment,
        paid_toward_card=paid,
        amount_due=due,
    )
