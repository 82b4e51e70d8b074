"""
Ledger State

Holds the last committed snapshot and, while a command is in flight, an
optimistic one. Subscribers read derivations from here and are told
about every change through the event bus:

    ledger_optimistic   an optimistic change was applied
    ledger_changed      a commit was re-read from the store
    ledger_rolled_back  the optimistic change was discarded

Rolling back re-installs the committed snapshot already in memory; the
store is not read again.
"""

from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import structlog

from digibook.events import (
    LEDGER_CHANGED,
    LEDGER_OPTIMISTIC,
    LEDGER_ROLLED_BACK,
    EventBus,
)
from digibook.models.ledger import CreditCard, FixedExpense, LedgerSnapshot
from digibook.models.reports import (
    AvailableCredit,
    BudgetSummary,
    CategoryOverpayment,
    CategoryUsage,
    DebtPayoffResult,
    MinimumPaymentReport,
    MonthlyExpenseSummary,
    PaycheckSummary,
)
from digibook.queries import balances, insights, listing, payoff, schedule
from digibook.queries.memo import IdentityMemo
from digibook.services.records import load_snapshot
from digibook.services.storage import ObjectStoreInterface


logger = structlog.get_logger(__name__)


class LedgerState:
    """
    Committed and optimistic ledger snapshots.

    Usage:
        state = LedgerState(store, bus)
        await state.hydrate()
        state.apply_optimistic(state.snapshot.with_expense(updated))
        ...
        await state.refresh()   # after commit
        state.rollback()        # after failure
    """

    def __init__(self, store: ObjectStoreInterface, bus: Optional[EventBus] = None):
        self._store = store
        self._bus = bus or EventBus()
        self._committed = LedgerSnapshot()
        self._optimistic: Optional[LedgerSnapshot] = None

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def committed(self) -> LedgerSnapshot:
        return self._committed

    @property
    def snapshot(self) -> LedgerSnapshot:
        """The optimistic snapshot if one is applied, else the committed one."""
        return self._optimistic if self._optimistic is not None else self._committed

    @property
    def has_pending_change(self) -> bool:
        return self._optimistic is not None

    async def hydrate(self) -> LedgerSnapshot:
        """Read the committed ledger from the store."""
        self._committed = await load_snapshot(self._store)
        self._optimistic = None
        logger.debug(
            "ledger_hydrated",
            accounts=len(self._committed.accounts),
            expenses=len(self._committed.fixed_expenses),
        )
        return self._committed

    async def refresh(self, reason: str = "commit") -> LedgerSnapshot:
        """Re-read after a commit and publish ledger_changed."""
        snapshot = await self.hydrate()
        self._bus.publish(LEDGER_CHANGED, {"reason": reason, "snapshot": snapshot})
        return snapshot

    def apply_optimistic(self, snapshot: LedgerSnapshot) -> None:
        self._optimistic = snapshot
        self._bus.publish(LEDGER_OPTIMISTIC, {"snapshot": snapshot})

    def update_optimistic(self, change: Callable[[LedgerSnapshot], LedgerSnapshot]) -> None:
        """Apply change() to the current snapshot optimistically."""
        self.apply_optimistic(change(self.snapshot))

    def rollback(self) -> None:
        """Discard the optimistic snapshot and go back to the committed one."""
        if self._optimistic is None:
            return
        self._optimistic = None
        logger.info("ledger_rolled_back")
        self._bus.publish(LEDGER_ROLLED_BACK, {"snapshot": self._committed})


class LedgerDerivations:
    """
    Derived values over the current snapshot, memoised on input identity.

    `today` is injectable so tests (and schedules) are deterministic.
    """

    def __init__(
        self,
        state: LedgerState,
        today: Callable[[], date] = date.today,
        significant_overpayment_percent: Decimal = insights.SIGNIFICANT_OVERPAYMENT_PERCENT,
        history_months: int = 6,
        payoff_max_months: int = payoff.MAX_PAYOFF_MONTHS,
    ):
        self._state = state
        self._today = today
        self._threshold = Decimal(str(significant_overpayment_percent))
        self._history_months = history_months
        self._payoff_max_months = payoff_max_months

        self._projected = IdentityMemo(balances.projected_balances)
        self._liquid = IdentityMemo(balances.liquid_balance)
        self._net_worth = IdentityMemo(balances.net_worth)
        self._paycheck = IdentityMemo(schedule.paycheck_summary)
        self._budget = IdentityMemo(insights.budget_summary)
        self._by_category = IdentityMemo(insights.overpayment_by_category)
        self._history = IdentityMemo(insights.monthly_history)
        self._usage = IdentityMemo(insights.category_usage)
        self._listing = IdentityMemo(listing.list_expenses)

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self._state.snapshot

    def projected_balances(self) -> dict[int, Decimal]:
        s = self.snapshot
        return self._projected(s.accounts, s.pending_transactions)

    def liquid_balance(self) -> Decimal:
        return self._liquid(self.snapshot.accounts)

    def net_worth(self) -> Decimal:
        s = self.snapshot
        return self._net_worth(s.accounts, s.credit_cards)

    def paycheck_summary(self) -> PaycheckSummary:
        s = self.snapshot
        return self._paycheck(s.fixed_expenses, s.paycheck_settings, self._today())

    def budget_summary(self) -> BudgetSummary:
        return self._budget(self.snapshot.fixed_expenses, self._threshold)

    def overpayment_by_category(self) -> list[CategoryOverpayment]:
        return self._by_category(self.snapshot.fixed_expenses, self._threshold)

    def monthly_history(self) -> list[MonthlyExpenseSummary]:
        return self._history(self.snapshot.fixed_expenses, self._today(), self._history_months)

    def category_usage(self) -> list[CategoryUsage]:
        s = self.snapshot
        return self._usage(s.categories, s.fixed_expenses, s.pending_transactions)

    def expenses(self, filters: Optional[listing.ExpenseFilter] = None) -> list[FixedExpense]:
        return self._listing(self.snapshot.fixed_expenses, filters, self._today())

    def available_credit(self, card: CreditCard) -> AvailableCredit:
        return balances.available_credit(card)

    def minimum_payment_status(self, card: CreditCard) -> MinimumPaymentReport:
        return balances.minimum_payment_status(card, self.snapshot.fixed_expenses)

    def card_payoff(self, card: CreditCard, monthly_payment: Any) -> DebtPayoffResult:
        return payoff.card_payoff(card, monthly_payment, self._today(), self._payoff_max_months)
