"""
Payment Engine

DESIGN DECISION: A payment is one transaction. The expense, the balances
it moves and the audit record describing it commit together or not at
all. Nothing is written if any participant is missing.

Routing by payment source kind:

    account            account.currentBalance -= delta
    creditCard         card.balance += delta (charging adds debt)
    creditCardPayment  account.currentBalance -= delta, then
                       card.balance -= delta

where delta = newPaidAmount - expense.paidAmount. A negative delta
reverses an earlier payment through the same rules.

Concurrent payments against the same expense are rejected with BusyError
rather than queued; different expenses may interleave freely.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog

from digibook.audit import AuditLogger
from digibook.errors import (
    BusyError,
    DanglingReferenceError,
    InvalidAmountError,
    NotFoundError,
)
from digibook.events import PAYMENT_APPLIED, EventBus
from digibook.models.audit import AuditEvent, AuditEventBuilder, balance_change
from digibook.models.ledger import (
    Account,
    AccountSource,
    CreditCard,
    CreditCardPaymentSource,
    CreditCardSource,
    ExpenseStatus,
    FixedExpense,
    LedgerSnapshot,
    PendingTransaction,
    funding_account_id,
    quantize_money,
    referenced_card_id,
)
from digibook.services.storage import (
    ACCOUNTS,
    AUDIT_LOGS,
    CREDIT_CARDS,
    FIXED_EXPENSES,
    PENDING_TRANSACTIONS,
    READWRITE,
    ObjectStoreInterface,
    TransactionView,
)


logger = structlog.get_logger(__name__)

PAYMENT_STORES = [FIXED_EXPENSES, ACCOUNTS, CREDIT_CARDS, AUDIT_LOGS]
SETTLE_STORES = [PENDING_TRANSACTIONS, ACCOUNTS, AUDIT_LOGS]


def coerce_paid_amount(value: Any) -> Decimal:
    """
    Turn a requested paid amount into cents.

    Raises:
        InvalidAmountError: If it is not a finite, non-negative number
    """
    try:
        amount = quantize_money(value)
    except ValueError as e:
        raise InvalidAmountError(f"Paid amount must be a finite number, got {value!r}") from e
    if amount < 0:
        raise InvalidAmountError(f"Paid amount cannot be negative, got {amount}")
    return amount


class PaymentEngine:
    """
    Applies payments against fixed expenses.

    Usage:
        engine = PaymentEngine(store, audit_logger, bus)
        event = await engine.apply_payment(expense_id, Decimal("120.00"))
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        bus: Optional[EventBus] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger or AuditLogger(store)
        self._bus = bus
        self._in_flight: set[int] = set()

    def is_busy(self, expense_id: int) -> bool:
        return expense_id in self._in_flight

    async def apply_payment(
        self,
        expense_id: int,
        new_paid_amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[AuditEvent]:
        """
        Set an expense's paid amount and move the matching balances.

        Returns the audit event written, or None when the amount did not
        change.

        Raises:
            InvalidAmountError: Negative or non-finite amount
            BusyError: A payment for this expense is already running
            NotFoundError: No such expense
            DanglingReferenceError: The payment source points at a
                missing account or card
        """
        new_paid = coerce_paid_amount(new_paid_amount)

        if expense_id in self._in_flight:
            logger.warning("payment_rejected_busy", expense_id=expense_id)
            raise BusyError(
                f"Expense {expense_id} is already being updated",
                details={"expenseId": expense_id},
            )

        self._in_flight.add(expense_id)
        try:
            event = await self._store.transaction(
                PAYMENT_STORES,
                READWRITE,
                lambda view: self._apply(view, expense_id, new_paid, correlation_id),
            )
        finally:
            self._in_flight.discard(expense_id)

        if event is None:
            logger.debug("payment_noop", expense_id=expense_id, paid_amount=str(new_paid))
            return None

        self._audit_logger.emit(event)
        logger.info(
            "payment_applied",
            expense_id=expense_id,
            delta=event.details["delta"],
            kind=event.kind,
        )
        if self._bus:
            self._bus.publish(PAYMENT_APPLIED, {"expenseId": expense_id, "event": event})
        return event

    async def _apply(
        self,
        view: TransactionView,
        expense_id: int,
        new_paid: Decimal,
        correlation_id: Optional[UUID],
    ) -> Optional[AuditEvent]:
        record = await view.get(FIXED_EXPENSES, expense_id)
        if record is None:
            raise NotFoundError(
                f"Expense {expense_id} not found",
                details={"store": FIXED_EXPENSES, "id": expense_id},
            )
        expense = FixedExpense.from_record(record)

        before = expense.paid_amount
        delta = new_paid - before
        if delta == 0:
            return None

        status = ExpenseStatus.PAID if new_paid >= expense.amount else ExpenseStatus.PENDING
        updated = expense.model_copy(update={"paid_amount": new_paid, "status": status})

        participants = await self._route(view, updated.payment_source, delta)
        await view.put(FIXED_EXPENSES, updated.to_record())

        event = AuditEventBuilder.expense_payment(
            updated, before, delta, participants, correlation_id,
        )
        return await self._audit_logger.append(view, event)

    async def _route(
        self,
        view: TransactionView,
        source: Any,
        delta: Decimal,
    ) -> list[dict[str, Any]]:
        """Move balances for one payment. Returns the audit participants."""
        if isinstance(source, AccountSource):
            account = await self._load_account(view, source.account_id)
            return [await self._debit_account(view, account, delta)]

        if isinstance(source, CreditCardSource):
            card = await self._load_card(view, source.credit_card_id)
            after = card.balance + delta
            await view.put(CREDIT_CARDS, card.model_copy(update={"balance": after}).to_record())
            return [balance_change("creditCard", card, card.balance, after)]

        if isinstance(source, CreditCardPaymentSource):
            # Both sides resolve before either is written
            account = await self._load_account(view, source.account_id)
            card = await self._load_card(view, source.target_credit_card_id)
            participants = [await self._debit_account(view, account, delta)]
            after = card.balance - delta
            await view.put(CREDIT_CARDS, card.model_copy(update={"balance": after}).to_record())
            participants.append(balance_change("creditCard", card, card.balance, after))
            return participants

        raise DanglingReferenceError(f"Unknown payment source {source!r}")

    async def _load_account(self, view: TransactionView, account_id: int) -> Account:
        record = await view.get(ACCOUNTS, account_id)
        if record is None:
            raise DanglingReferenceError(
                f"Payment source references missing account {account_id}",
                details={"store": ACCOUNTS, "id": account_id},
            )
        return Account.from_record(record)

    async def _load_card(self, view: TransactionView, card_id: int) -> CreditCard:
        record = await view.get(CREDIT_CARDS, card_id)
        if record is None:
            raise DanglingReferenceError(
                f"Payment source references missing credit card {card_id}",
                details={"store": CREDIT_CARDS, "id": card_id},
            )
        return CreditCard.from_record(record)

    async def _debit_account(
        self,
        view: TransactionView,
        account: Account,
        delta: Decimal,
    ) -> dict[str, Any]:
        after = account.current_balance - delta
        await view.put(
            ACCOUNTS, account.model_copy(update={"current_balance": after}).to_record(),
        )
        return balance_change("account", account, account.current_balance, after)

    async def mark_paid(
        self,
        expense_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[AuditEvent]:
        """Pay an expense in full: apply_payment(expense_id, expense.amount)."""
        record = await self._store.require(FIXED_EXPENSES, expense_id)
        expense = FixedExpense.from_record(record)
        return await self.apply_payment(expense_id, expense.amount, correlation_id)

    async def settle(self, pending_id: int) -> AuditEvent:
        """
        Settle a pending transaction.

        Removes the row and applies its signed amount to the account in
        one transaction.

        Raises:
            NotFoundError: No such pending transaction
            DanglingReferenceError: Its account no longer exists
        """
        async def body(view: TransactionView) -> AuditEvent:
            record = await view.get(PENDING_TRANSACTIONS, pending_id)
            if record is None:
                raise NotFoundError(
                    f"Pending transaction {pending_id} not found",
                    details={"store": PENDING_TRANSACTIONS, "id": pending_id},
                )
            pending = PendingTransaction.from_record(record)
            account = await self._load_account(view, pending.account_id)

            before = account.current_balance
            settled = account.model_copy(
                update={"current_balance": before + pending.amount}
            )
            await view.put(ACCOUNTS, settled.to_record())
            await view.delete(PENDING_TRANSACTIONS, pending_id)

            event = AuditEventBuilder.pending_settled(pending, settled, before)
            return await self._audit_logger.append(view, event)

        event = await self._store.transaction(SETTLE_STORES, READWRITE, body)
        self._audit_logger.emit(event)
        logger.info("pending_settled", pending_id=pending_id, amount=event.details["amount"])
        return event


def project_payment(
    snapshot: LedgerSnapshot,
    expense_id: int,
    new_paid_amount: Decimal,
) -> LedgerSnapshot:
    """
    The snapshot an apply_payment would commit, computed in memory.

    Used for optimistic display. Returns the snapshot unchanged when the
    expense or a participant is missing; the engine reports those.
    """
    expense = snapshot.expense(expense_id)
    if expense is None:
        return snapshot
    delta = new_paid_amount - expense.paid_amount
    if delta == 0:
        return snapshot

    source = expense.payment_source
    account_id = funding_account_id(source)
    card_id = referenced_card_id(source)
    account = snapshot.account(account_id) if account_id is not None else None
    card = snapshot.credit_card(card_id) if card_id is not None else None
    if (account_id is not None and account is None) or (card_id is not None and card is None):
        return snapshot

    status = ExpenseStatus.PAID if new_paid_amount >= expense.amount else ExpenseStatus.PENDING
    projected = snapshot.with_expense(
        expense.model_copy(update={"paid_amount": new_paid_amount, "status": status})
    )
    if account is not None:
        projected = projected.with_account(
            account.model_copy(update={"current_balance": account.current_balance - delta})
        )
    if isinstance(source, CreditCardSource):
        projected = projected.with_credit_card(
            card.model_copy(update={"balance": card.balance + delta})
        )
    elif isinstance(source, CreditCardPaymentSource):
        projected = projected.with_credit_card(
            card.model_copy(update={"balance": card.balance - delta})
        )
    return projected
