"""
Main Orchestrator for Digibook

This module ties together all the components and defines the command
flows for:
1. Accounts (create, edit, default, delete)
2. Credit cards (create, edit, delete, minimum payment reminders, payments)
3. Categories (cached listing, create, rename, delete with reassignment)
4. Fixed expenses and pending transactions (create, edit, pay, settle)
5. Settings (paycheck schedule, per-component preferences)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing reaches the store without passing a validator
- Every write is one transaction, audited inside it
- The optimistic snapshot is rolled back on any failure and the
  original exception is re-raised unchanged

Derivations and any UI subscribe to the LedgerState bus; they never call
the store directly.
"""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any, Optional, TypeVar
from uuid import UUID

import structlog

from digibook.audit import AuditLogger, configure_logging
from digibook.config import Settings, get_settings
from digibook.engine import PaymentEngine, coerce_paid_amount, project_payment
from digibook.errors import (
    NotFoundError,
    ReferencedError,
    ValidationFailedError,
    raise_for_issues,
)
from digibook.events import CATEGORIES_CHANGED, EventBus
from digibook.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from digibook.models.ledger import (
    CREDIT_CARD_PAYMENT_CATEGORY,
    PAYCHECK_SETTINGS_ID,
    Account,
    Category,
    CreditCard,
    CreditCardPaymentSource,
    FixedExpense,
    LedgerSnapshot,
    PaycheckSettings,
    PendingTransaction,
    UserPreference,
    funding_account_id,
    referenced_card_id,
    utc_now,
)
from digibook.models.reports import (
    CategoryDeletionImpact,
    CategoryUsage,
    ImportSummary,
    PaymentValidationResult,
)
from digibook.queries.listing import ExpenseFilter
from digibook.queries.payoff import estimated_minimum_payment
from digibook.queries.state import LedgerDerivations, LedgerState
from digibook.services.backup import BackupManager
from digibook.services.category_cache import CategoryCache
from digibook.services.records import (
    ensure_default_account,
    load_snapshot,
    read_models,
    seed_defaults,
)
from digibook.services.storage import (
    ACCOUNTS,
    AUDIT_LOGS,
    CATEGORIES,
    CREDIT_CARDS,
    FIXED_EXPENSES,
    PAYCHECK_SETTINGS,
    PENDING_TRANSACTIONS,
    READONLY,
    READWRITE,
    STORE_NAMES,
    USER_PREFERENCES,
    BackupVaultInterface,
    DirectoryBackupVault,
    InMemoryBackupVault,
    InMemoryObjectStore,
    JsonFileObjectStore,
    ObjectStoreInterface,
    TransactionView,
)
from digibook.services.transfer import LedgerTransfer
from digibook.validation import (
    validate_account,
    validate_category,
    validate_credit_card,
    validate_credit_card_payment_amount,
    validate_expense,
    validate_paycheck_settings,
    validate_pending_transaction,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")

MINIMUM_REMINDER_FALLBACK = Decimal("25")


def minimum_reminder_amount(card: CreditCard) -> Decimal:
    """Card minimum if set, else the estimated 2%/25 minimum, else 25."""
    if card.minimum_payment > 0:
        return card.minimum_payment
    if card.balance > 0:
        return estimated_minimum_payment(card.balance)
    return MINIMUM_REMINDER_FALLBACK


class _CommandFlow:
    """
    Shared plumbing for command flows.

    _commit runs one read-write transaction. Audit events appended
    through _audit are staged per transaction and emitted to the local
    log only after that transaction commits.
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        state: LedgerState,
        audit_logger: AuditLogger,
    ):
        self._store = store
        self._state = state
        self._audit_logger = audit_logger
        self._staged_events: dict[int, list[AuditEvent]] = {}

    async def _audit(self, view: TransactionView, event: AuditEvent) -> AuditEvent:
        appended = await self._audit_logger.append(view, event)
        self._staged_events[id(view)].append(appended)
        return appended

    async def _commit(
        self,
        stores: Sequence[str],
        body: Callable[[TransactionView], Awaitable[T]],
        reason: str,
        optimistic: Optional[Callable[[LedgerSnapshot], LedgerSnapshot]] = None,
    ) -> T:
        if optimistic is not None:
            self._state.update_optimistic(optimistic)

        staged: list[AuditEvent] = []

        async def staged_body(view: TransactionView) -> T:
            self._staged_events[id(view)] = staged
            try:
                return await body(view)
            finally:
                del self._staged_events[id(view)]

        try:
            result = await self._store.transaction(
                list(stores) + [AUDIT_LOGS], READWRITE, staged_body,
            )
        except Exception as e:
            self._state.rollback()
            logger.warning("command_failed", reason=reason, error=str(e), error_type=type(e).__name__)
            raise

        for event in staged:
            self._audit_logger.emit(event)
        await self._state.refresh(reason)
        return result

    async def _current(self) -> LedgerSnapshot:
        """Committed ledger, read fresh for validation."""
        return await load_snapshot(self._store)


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountFlow(_CommandFlow):
    """
    Account commands.

    INVARIANT: whenever at least one account exists, exactly one is the
    default. Every write that could break it repairs it in the same
    transaction.
    """

    def list_accounts(self) -> list[Account]:
        return sorted(self._state.snapshot.accounts, key=lambda a: (a.created_at, a.id))

    async def create_account(self, data: Mapping[str, Any]) -> Account:
        """Create an account. The first account becomes the default."""
        snapshot = await self._current()
        result = validate_account(data, snapshot.accounts)
        raise_for_issues(result.issues, "Account rejected")
        account: Account = result.sanitized.model_copy(update={"id": None})

        async def body(view: TransactionView) -> Account:
            existing = await read_models(view, ACCOUNTS, Account)
            is_default = account.is_default or not existing
            if is_default:
                for other in existing:
                    if other.is_default:
                        await view.put(ACCOUNTS, other.model_copy(update={"is_default": False}).to_record())
            new = account.model_copy(update={"is_default": is_default})
            new = new.model_copy(update={"id": await view.put(ACCOUNTS, new.to_record())})
            await ensure_default_account(view)
            await self._audit(view, AuditEventBuilder.account_created(new))
            return new

        created = await self._commit([ACCOUNTS], body, "account_created")
        logger.info("account_created", account_id=created.id, is_default=created.is_default)
        return created

    async def update_account(self, account_id: int, data: Mapping[str, Any]) -> Account:
        """
        Edit name, type or balance.

        The default flag only changes through set_default_account.
        """
        snapshot = await self._current()
        current = snapshot.account(account_id)
        if current is None:
            raise NotFoundError(f"Account {account_id} not found")

        merged = {**current.to_record(), **dict(data), "id": account_id}
        result = validate_account(merged, snapshot.accounts)
        raise_for_issues(result.issues, "Account rejected")
        updated: Account = result.sanitized.model_copy(
            update={"is_default": current.is_default, "created_at": current.created_at}
        )

        async def body(view: TransactionView) -> Account:
            if await view.get(ACCOUNTS, account_id) is None:
                raise NotFoundError(f"Account {account_id} not found")
            await view.put(ACCOUNTS, updated.to_record())
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.ACCOUNT_UPDATED, "account", updated,
                {"balanceBefore": f"{current.current_balance:.2f}",
                 "balanceAfter": f"{updated.current_balance:.2f}"},
            ))
            return updated

        return await self._commit(
            [ACCOUNTS], body, "account_updated",
            optimistic=lambda s: s.with_account(updated),
        )

    async def set_default_account(self, account_id: int) -> Account:
        """Make one account the default and clear every other flag."""

        async def body(view: TransactionView) -> Account:
            accounts = await read_models(view, ACCOUNTS, Account)
            target = next((a for a in accounts if a.id == account_id), None)
            if target is None:
                raise NotFoundError(f"Account {account_id} not found")

            previous = next((a.id for a in accounts if a.is_default), None)
            for account in accounts:
                should_be_default = account.id == account_id
                if account.is_default != should_be_default:
                    await view.put(
                        ACCOUNTS,
                        account.model_copy(update={"is_default": should_be_default}).to_record(),
                    )
            chosen = target.model_copy(update={"is_default": True})
            await self._audit(view, AuditEventBuilder.default_account_changed(chosen, previous))
            return chosen

        return await self._commit([ACCOUNTS], body, "default_account_changed")

    async def delete_account(self, account_id: int) -> None:
        """
        Delete an account.

        Refused while a pending transaction or a fixed expense references
        it. If it was the default, the next account by creation date
        takes over.
        """

        async def body(view: TransactionView) -> None:
            record = await view.get(ACCOUNTS, account_id)
            if record is None:
                raise NotFoundError(f"Account {account_id} not found")
            account = Account.from_record(record)

            pending = await view.scan(
                PENDING_TRANSACTIONS, lambda r: r.get("accountId") == account_id,
            )
            expenses = [
                e for e in await read_models(view, FIXED_EXPENSES, FixedExpense)
                if funding_account_id(e.payment_source) == account_id
            ]
            if pending or expenses:
                raise ReferencedError(
                    f"Account '{account.name}' is still used by "
                    f"{len(pending)} pending transaction(s) and {len(expenses)} expense(s)",
                    details={
                        "pendingIds": [r["id"] for r in pending],
                        "expenseIds": [e.id for e in expenses],
                    },
                )

            await view.delete(ACCOUNTS, account_id)
            new_default = await ensure_default_account(view)
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.ACCOUNT_DELETED, "account", account,
                {"newDefaultId": new_default if account.is_default else None},
            ))

        await self._commit(
            [ACCOUNTS, PENDING_TRANSACTIONS, FIXED_EXPENSES], body, "account_deleted",
        )
        logger.info("account_deleted", account_id=account_id)


# =============================================================================
# CREDIT CARDS
# =============================================================================

class CreditCardFlow(_CommandFlow):
    """Credit card commands, minimum payment reminders and card payments."""

    def __init__(
        self,
        store: ObjectStoreInterface,
        state: LedgerState,
        audit_logger: AuditLogger,
        engine: PaymentEngine,
    ):
        super().__init__(store, state, audit_logger)
        self._engine = engine

    def list_credit_cards(self) -> list[CreditCard]:
        return sorted(self._state.snapshot.credit_cards, key=lambda c: (c.created_at, c.id))

    async def create_credit_card(
        self,
        data: Mapping[str, Any],
        create_reminder: bool = True,
    ) -> CreditCard:
        """
        Add a card. With create_reminder, a card with a balance also gets
        an auto-created minimum payment expense.
        """
        result = validate_credit_card(data)
        raise_for_issues(result.issues, "Credit card rejected")
        card: CreditCard = result.sanitized.model_copy(update={"id": None})

        async def body(view: TransactionView) -> CreditCard:
            new = card.model_copy(update={"id": await view.put(CREDIT_CARDS, card.to_record())})
            await self._audit(view, AuditEventBuilder.credit_card_created(new))
            if create_reminder:
                await self._add_reminder(view, new)
            return new

        created = await self._commit(
            [CREDIT_CARDS, ACCOUNTS, FIXED_EXPENSES], body, "credit_card_created",
        )
        logger.info("credit_card_created", card_id=created.id)
        return created

    async def update_credit_card(self, card_id: int, data: Mapping[str, Any]) -> CreditCard:
        snapshot = await self._current()
        current = snapshot.credit_card(card_id)
        if current is None:
            raise NotFoundError(f"Credit card {card_id} not found")

        merged = {**current.to_record(), **dict(data), "id": card_id}
        # A credit balance left by an overpayment is kept unless the edit sets one
        keep_balance = "balance" not in data
        if keep_balance:
            merged["balance"] = max(current.balance, 0)
        result = validate_credit_card(merged)
        raise_for_issues(result.issues, "Credit card rejected")
        updated: CreditCard = result.sanitized.model_copy(update={"created_at": current.created_at})
        if keep_balance:
            updated = updated.model_copy(update={"balance": current.balance})

        async def body(view: TransactionView) -> CreditCard:
            if await view.get(CREDIT_CARDS, card_id) is None:
                raise NotFoundError(f"Credit card {card_id} not found")
            await view.put(CREDIT_CARDS, updated.to_record())
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.CREDIT_CARD_UPDATED, "creditCard", updated,
            ))
            return updated

        return await self._commit(
            [CREDIT_CARDS], body, "credit_card_updated",
            optimistic=lambda s: s.with_credit_card(updated),
        )

    async def delete_credit_card(self, card_id: int) -> None:
        """Delete a card. Refused while any fixed expense references it."""

        async def body(view: TransactionView) -> None:
            record = await view.get(CREDIT_CARDS, card_id)
            if record is None:
                raise NotFoundError(f"Credit card {card_id} not found")
            card = CreditCard.from_record(record)

            expenses = [
                e for e in await read_models(view, FIXED_EXPENSES, FixedExpense)
                if referenced_card_id(e.payment_source) == card_id
            ]
            if expenses:
                raise ReferencedError(
                    f"Credit card '{card.name}' is still used by {len(expenses)} expense(s)",
                    details={"expenseIds": [e.id for e in expenses]},
                )

            await view.delete(CREDIT_CARDS, card_id)
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.CREDIT_CARD_DELETED, "creditCard", card,
            ))

        await self._commit([CREDIT_CARDS, FIXED_EXPENSES], body, "credit_card_deleted")
        logger.info("credit_card_deleted", card_id=card_id)

    async def _add_reminder(self, view: TransactionView, card: CreditCard) -> Optional[FixedExpense]:
        """
        Auto-create a minimum payment expense for a card with a balance.

        The reminder is paid from the default account. Without any
        account there is nothing to fund it and no reminder is made.
        """
        if card.balance <= 0:
            return None

        expenses = await read_models(view, FIXED_EXPENSES, FixedExpense)
        if any(
            isinstance(e.payment_source, CreditCardPaymentSource)
            and e.payment_source.target_credit_card_id == card.id
            for e in expenses
        ):
            return None

        funding_id = await ensure_default_account(view)
        if funding_id is None:
            logger.info("minimum_reminder_skipped", card_id=card.id, reason="no_account")
            return None

        reminder = FixedExpense(
            name=f"{card.name} Minimum Payment",
            due_date=card.due_date,
            amount=minimum_reminder_amount(card),
            category=CREDIT_CARD_PAYMENT_CATEGORY,
            payment_source=CreditCardPaymentSource(
                account_id=funding_id, target_credit_card_id=card.id,
            ),
            is_auto_created=True,
        )
        reminder = reminder.model_copy(
            update={"id": await view.put(FIXED_EXPENSES, reminder.to_record())}
        )
        await self._audit(view, AuditEventBuilder.expense_created(reminder))
        return reminder

    async def create_minimum_payment_reminders(self) -> list[FixedExpense]:
        """Reminders for every card with a balance that has none yet."""

        async def body(view: TransactionView) -> list[FixedExpense]:
            created = []
            for card in await read_models(view, CREDIT_CARDS, CreditCard):
                reminder = await self._add_reminder(view, card)
                if reminder is not None:
                    created.append(reminder)
            return created

        created = await self._commit(
            [CREDIT_CARDS, ACCOUNTS, FIXED_EXPENSES], body, "minimum_reminders_created",
        )
        logger.info("minimum_reminders_created", count=len(created))
        return created

    async def _check_payment(
        self,
        expense_id: int,
        amount: Any,
    ) -> tuple[FixedExpense, PaymentValidationResult]:
        snapshot = await self._current()
        expense = snapshot.expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense {expense_id} not found")

        source = expense.payment_source
        account = card = None
        if isinstance(source, CreditCardPaymentSource):
            account = snapshot.account(source.account_id)
            card = snapshot.credit_card(source.target_credit_card_id)
        return expense, validate_credit_card_payment_amount(expense, amount, account, card)

    async def validate_payment(self, expense_id: int, amount: Any) -> PaymentValidationResult:
        """Check a credit card payment against the committed ledger."""
        _, validation = await self._check_payment(expense_id, amount)
        return validation

    async def pay_credit_card(
        self,
        expense_id: int,
        amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[PaymentValidationResult, Optional[AuditEvent]]:
        """
        Pay `amount` toward a credit card payment expense.

        Validation runs first. If it reports errors the engine is never
        invoked and the ledger is unchanged. Warnings (overpayment,
        already zero) do not block.

        Raises:
            InsufficientFundsError: Amount is above the funding balance
            DanglingReferenceError: Account or card is gone
        """
        expense, validation = await self._check_payment(expense_id, amount)
        raise_for_issues(validation.issues, "Payment rejected")

        event = await apply_with_rollback(
            self._state, self._engine, expense_id,
            expense.paid_amount + validation.sanitized, correlation_id,
        )
        return validation, event


async def apply_with_rollback(
    state: LedgerState,
    engine: PaymentEngine,
    expense_id: int,
    new_paid_amount: Any,
    correlation_id: Optional[UUID] = None,
) -> Optional[AuditEvent]:
    """Optimistically show a payment, commit it, roll back on failure."""
    new_paid = coerce_paid_amount(new_paid_amount)
    state.update_optimistic(lambda s: project_payment(s, expense_id, new_paid))
    try:
        event = await engine.apply_payment(expense_id, new_paid, correlation_id)
    except Exception:
        state.rollback()
        raise
    await state.refresh("payment")
    return event


# =============================================================================
# CATEGORIES
# =============================================================================

class CategoryFlow(_CommandFlow):
    """
    Category commands.

    Every write invalidates the category cache and publishes
    categories_changed. The Credit Card Payment category is structural:
    it cannot be renamed or deleted.
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        state: LedgerState,
        audit_logger: AuditLogger,
        cache: CategoryCache,
        bus: EventBus,
    ):
        super().__init__(store, state, audit_logger)
        self._cache = cache
        self._bus = bus

    async def _fetch(self) -> list[Category]:
        return await self._store.transaction(
            [CATEGORIES], READONLY, lambda view: read_models(view, CATEGORIES, Category),
        )

    async def list_categories(self) -> list[Category]:
        """Categories through the TTL cache, sorted by name."""
        categories = await self._cache.get(self._fetch)
        return sorted(categories, key=lambda c: c.name.lower())

    def _changed(self, action: str, name: str) -> None:
        self._cache.invalidate()
        self._bus.publish(CATEGORIES_CHANGED, {"action": action, "category": name})

    async def create_category(self, data: Mapping[str, Any]) -> Category:
        existing = await self._fetch()
        result = validate_category(data, existing)
        raise_for_issues(result.issues, "Category rejected")
        category: Category = result.sanitized.model_copy(update={"id": None, "is_default": False})

        async def body(view: TransactionView) -> Category:
            others = await read_models(view, CATEGORIES, Category)
            if any(c.name.lower() == category.name.lower() for c in others):
                raise ValidationFailedError(f"A category named '{category.name}' already exists")
            new = category.model_copy(update={"id": await view.put(CATEGORIES, category.to_record())})
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.CATEGORY_CREATED, "category", new,
            ))
            return new

        created = await self._commit([CATEGORIES], body, "category_created")
        self._changed("created", created.name)
        return created

    async def update_category(self, category_id: int, data: Mapping[str, Any]) -> Category:
        """
        Rename or recolor a category. A rename is carried over to every
        expense and pending transaction using the old name.
        """
        existing = await self._fetch()
        current = next((c for c in existing if c.id == category_id), None)
        if current is None:
            raise NotFoundError(f"Category {category_id} not found")

        merged = {**current.to_record(), **dict(data), "id": category_id}
        result = validate_category(merged, existing)
        raise_for_issues(result.issues, "Category rejected")
        updated: Category = result.sanitized.model_copy(
            update={"is_default": current.is_default, "created_at": current.created_at}
        )
        renamed = updated.name != current.name
        if renamed and current.name == CREDIT_CARD_PAYMENT_CATEGORY:
            raise ValidationFailedError(f"The '{CREDIT_CARD_PAYMENT_CATEGORY}' category cannot be renamed")

        async def body(view: TransactionView) -> Category:
            await view.put(CATEGORIES, updated.to_record())
            if renamed:
                await _reassign_category(view, current.name, updated.name)
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.CATEGORY_UPDATED, "category", updated,
                {"previousName": current.name} if renamed else None,
            ))
            return updated

        result = await self._commit(
            [CATEGORIES, FIXED_EXPENSES, PENDING_TRANSACTIONS], body, "category_updated",
        )
        self._changed("updated", result.name)
        return result

    async def deletion_impact(self, category_id: int) -> CategoryDeletionImpact:
        """What deleting a category would touch, without deleting it."""
        snapshot = await self._current()
        category = next((c for c in snapshot.categories if c.id == category_id), None)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        name = category.name.lower()
        return CategoryDeletionImpact(
            category=category.name,
            affected_expense_ids=[e.id for e in snapshot.fixed_expenses if e.category.lower() == name],
            affected_pending_ids=[p.id for p in snapshot.pending_transactions if p.category.lower() == name],
        )

    async def delete_category(
        self,
        category_id: int,
        reassign_to: Optional[str] = None,
    ) -> CategoryDeletionImpact:
        """
        Delete a category.

        Expenses and pending transactions using it are moved to
        `reassign_to` in the same transaction. If it is in use and no
        target is given the deletion is refused with ReferencedError.
        """

        async def body(view: TransactionView) -> CategoryDeletionImpact:
            categories = await read_models(view, CATEGORIES, Category)
            category = next((c for c in categories if c.id == category_id), None)
            if category is None:
                raise NotFoundError(f"Category {category_id} not found")
            if category.name == CREDIT_CARD_PAYMENT_CATEGORY:
                raise ReferencedError(f"The '{CREDIT_CARD_PAYMENT_CATEGORY}' category cannot be deleted")

            target = None
            if reassign_to is not None:
                target = next(
                    (c.name for c in categories
                     if c.name.lower() == reassign_to.strip().lower() and c.id != category_id),
                    None,
                )
                if target is None:
                    raise NotFoundError(f"Category '{reassign_to}' not found")
                if target == CREDIT_CARD_PAYMENT_CATEGORY:
                    raise ValidationFailedError(
                        f"Regular expenses cannot be moved into '{CREDIT_CARD_PAYMENT_CATEGORY}'"
                    )

            expense_ids, pending_ids = await _category_users(view, category.name)
            if (expense_ids or pending_ids) and target is None:
                raise ReferencedError(
                    f"Category '{category.name}' is used by {len(expense_ids)} expense(s) "
                    f"and {len(pending_ids)} pending transaction(s)",
                    details={"expenseIds": expense_ids, "pendingIds": pending_ids},
                )
            if target is not None:
                await _reassign_category(view, category.name, target)

            await view.delete(CATEGORIES, category_id)
            await self._audit(view, AuditEventBuilder.category_deleted(
                category, target, len(expense_ids), len(pending_ids),
            ))
            return CategoryDeletionImpact(
                category=category.name,
                affected_expense_ids=expense_ids,
                affected_pending_ids=pending_ids,
                reassigned_to=target,
            )

        impact = await self._commit(
            [CATEGORIES, FIXED_EXPENSES, PENDING_TRANSACTIONS], body, "category_deleted",
        )
        self._changed("deleted", impact.category)
        logger.info(
            "category_deleted",
            category=impact.category,
            reassigned_to=impact.reassigned_to,
            affected_expenses=len(impact.affected_expense_ids),
        )
        return impact

    def category_usage(self, derivations: LedgerDerivations) -> list[CategoryUsage]:
        return derivations.category_usage()


async def _category_users(view: TransactionView, name: str) -> tuple[list[int], list[int]]:
    lowered = name.lower()
    expense_ids = [
        r["id"] for r in await view.scan(
            FIXED_EXPENSES, lambda r: str(r.get("category", "")).lower() == lowered,
        )
    ]
    pending_ids = [
        r["id"] for r in await view.scan(
            PENDING_TRANSACTIONS, lambda r: str(r.get("category", "")).lower() == lowered,
        )
    ]
    return expense_ids, pending_ids


async def _reassign_category(view: TransactionView, old_name: str, new_name: str) -> None:
    lowered = old_name.lower()
    for store in (FIXED_EXPENSES, PENDING_TRANSACTIONS):
        for record in await view.scan(store, lambda r: str(r.get("category", "")).lower() == lowered):
            record["category"] = new_name
            await view.put(store, record)


# =============================================================================
# EXPENSES AND PENDING TRANSACTIONS
# =============================================================================

class ExpenseFlow(_CommandFlow):
    """
    Fixed expense and pending transaction commands.

    Paid amounts only change through the payment engine; edits keep the
    stored paid amount.
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        state: LedgerState,
        audit_logger: AuditLogger,
        engine: PaymentEngine,
        derivations: LedgerDerivations,
    ):
        super().__init__(store, state, audit_logger)
        self._engine = engine
        self._derivations = derivations

    def list_expenses(self, filters: Optional[ExpenseFilter] = None) -> list[FixedExpense]:
        return self._derivations.expenses(filters)

    async def create_expense(self, data: Mapping[str, Any]) -> FixedExpense:
        snapshot = await self._current()
        result = validate_expense(
            data, snapshot.accounts, snapshot.credit_cards, snapshot.categories or None,
        )
        raise_for_issues(result.issues, "Expense rejected")
        expense: FixedExpense = result.sanitized.model_copy(update={"id": None})

        async def body(view: TransactionView) -> FixedExpense:
            await _require_participants(view, expense)
            new = expense.model_copy(update={"id": await view.put(FIXED_EXPENSES, expense.to_record())})
            await self._audit(view, AuditEventBuilder.expense_created(new))
            return new

        created = await self._commit(
            [FIXED_EXPENSES, ACCOUNTS, CREDIT_CARDS], body, "expense_created",
        )
        logger.info("expense_created", expense_id=created.id, kind=created.payment_source.kind)
        return created

    async def update_expense(self, expense_id: int, data: Mapping[str, Any]) -> FixedExpense:
        """Edit an expense. paidAmount in `data` is ignored."""
        snapshot = await self._current()
        current = snapshot.expense(expense_id)
        if current is None:
            raise NotFoundError(f"Expense {expense_id} not found")

        changes = {k: v for k, v in dict(data).items() if k not in ("paidAmount", "paid_amount", "status")}
        merged = {**current.to_record(), **changes, "id": expense_id}
        if any(k in changes for k in ("accountId", "creditCardId", "targetCreditCardId")):
            merged.pop("paymentSource", None)
        result = validate_expense(
            merged, snapshot.accounts, snapshot.credit_cards, snapshot.categories or None,
        )
        raise_for_issues(result.issues, "Expense rejected")
        updated = FixedExpense.model_validate({
            **result.sanitized.model_dump(),
            "paid_amount": current.paid_amount,
            "created_at": current.created_at,
        })

        async def body(view: TransactionView) -> FixedExpense:
            if await view.get(FIXED_EXPENSES, expense_id) is None:
                raise NotFoundError(f"Expense {expense_id} not found")
            await _require_participants(view, updated)
            await view.put(FIXED_EXPENSES, updated.to_record())
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.EXPENSE_UPDATED, "expense", updated,
            ))
            return updated

        return await self._commit(
            [FIXED_EXPENSES, ACCOUNTS, CREDIT_CARDS], body, "expense_updated",
            optimistic=lambda s: s.with_expense(updated),
        )

    async def delete_expense(self, expense_id: int) -> None:
        async def body(view: TransactionView) -> None:
            record = await view.get(FIXED_EXPENSES, expense_id)
            if record is None:
                raise NotFoundError(f"Expense {expense_id} not found")
            expense = FixedExpense.from_record(record)
            await view.delete(FIXED_EXPENSES, expense_id)
            await self._audit(view, AuditEventBuilder.entity_changed(
                AuditEventType.EXPENSE_DELETED, "expense", expense,
            ))

        await self._commit([FIXED_EXPENSES], body, "expense_deleted")

    async def apply_payment(
        self,
        expense_id: int,
        new_paid_amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[AuditEvent]:
        """Set an expense's paid amount through the engine."""
        return await apply_with_rollback(
            self._state, self._engine, expense_id, new_paid_amount, correlation_id,
        )

    async def mark_paid(self, expense_id: int) -> Optional[AuditEvent]:
        snapshot = await self._current()
        expense = snapshot.expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense {expense_id} not found")
        return await self.apply_payment(expense_id, expense.amount)

    async def create_pending(self, data: Mapping[str, Any]) -> PendingTransaction:
        snapshot = await self._current()
        result = validate_pending_transaction(data, snapshot.accounts)
        raise_for_issues(result.issues, "Pending transaction rejected")
        pending: PendingTransaction = result.sanitized

        async def body(view: TransactionView) -> PendingTransaction:
            if await view.get(ACCOUNTS, pending.account_id) is None:
                raise NotFoundError(f"Account {pending.account_id} not found")
            new = pending.model_copy(
                update={"id": await view.put(PENDING_TRANSACTIONS, pending.to_record())}
            )
            await self._audit(view, AuditEvent(
                event_type=AuditEventType.PENDING_CREATED,
                entity_type="pendingTransaction",
                entity_id=new.id,
                description=f"Pending transaction added: {new.amount:.2f}",
                details={"accountId": new.account_id, "amount": f"{new.amount:.2f}"},
            ))
            return new

        return await self._commit([PENDING_TRANSACTIONS, ACCOUNTS], body, "pending_created")

    async def delete_pending(self, pending_id: int) -> None:
        """Drop a pending transaction without applying it."""

        async def body(view: TransactionView) -> None:
            if not await view.delete(PENDING_TRANSACTIONS, pending_id):
                raise NotFoundError(f"Pending transaction {pending_id} not found")
            await self._audit(view, AuditEvent(
                event_type=AuditEventType.PENDING_DELETED,
                entity_type="pendingTransaction",
                entity_id=pending_id,
                description="Pending transaction removed",
            ))

        await self._commit([PENDING_TRANSACTIONS], body, "pending_deleted")

    async def settle_pending(self, pending_id: int) -> AuditEvent:
        """Apply a pending transaction to its account and remove it."""
        event = await self._engine.settle(pending_id)
        await self._state.refresh("pending_settled")
        return event


async def _require_participants(view: TransactionView, expense: FixedExpense) -> None:
    account_id = funding_account_id(expense.payment_source)
    card_id = referenced_card_id(expense.payment_source)
    if account_id is not None and await view.get(ACCOUNTS, account_id) is None:
        raise NotFoundError(f"Account {account_id} not found")
    if card_id is not None and await view.get(CREDIT_CARDS, card_id) is None:
        raise NotFoundError(f"Credit card {card_id} not found")


# =============================================================================
# SETTINGS AND PREFERENCES
# =============================================================================

class SettingsFlow(_CommandFlow):
    """Paycheck settings singleton and per-component user preferences."""

    async def get_paycheck_settings(self) -> PaycheckSettings:
        """The singleton, created with empty defaults on first access."""

        async def body(view: TransactionView) -> PaycheckSettings:
            record = await view.get(PAYCHECK_SETTINGS, PAYCHECK_SETTINGS_ID)
            if record is not None:
                return PaycheckSettings.from_record(record)
            settings = PaycheckSettings()
            await view.put(PAYCHECK_SETTINGS, settings.to_record())
            return settings

        return await self._store.transaction([PAYCHECK_SETTINGS], READWRITE, body)

    async def update_paycheck_settings(self, data: Mapping[str, Any]) -> PaycheckSettings:
        result = validate_paycheck_settings(data)
        raise_for_issues(result.issues, "Paycheck settings rejected")
        settings: PaycheckSettings = result.sanitized

        async def body(view: TransactionView) -> PaycheckSettings:
            await view.put(PAYCHECK_SETTINGS, settings.to_record())
            await self._audit(view, AuditEvent(
                event_type=AuditEventType.PAYCHECK_SETTINGS_UPDATED,
                entity_type="paycheckSettings",
                entity_id=PAYCHECK_SETTINGS_ID,
                description="Paycheck settings updated",
                details=settings.to_record(),
            ))
            return settings

        return await self._commit(
            [PAYCHECK_SETTINGS], body, "paycheck_settings_updated",
            optimistic=lambda s: s.model_copy(update={"paycheck_settings": settings}),
        )

    async def _find_preference(self, view: TransactionView, component: str) -> Optional[UserPreference]:
        records = await view.scan(USER_PREFERENCES, lambda r: r.get("component") == component)
        return UserPreference.from_record(records[0]) if records else None

    async def get_preferences(self, component: str) -> dict[str, Any]:
        async def body(view: TransactionView) -> dict[str, Any]:
            preference = await self._find_preference(view, component)
            return dict(preference.preferences) if preference else {}

        return await self._store.transaction([USER_PREFERENCES], READONLY, body)

    async def set_preferences(self, component: str, preferences: Mapping[str, Any]) -> dict[str, Any]:
        """Replace a component's preferences."""
        return await self._write_preferences(component, preferences, merge=False)

    async def update_preferences(self, component: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Shallow-merge changes into a component's preferences."""
        return await self._write_preferences(component, changes, merge=True)

    async def _write_preferences(
        self,
        component: str,
        values: Mapping[str, Any],
        merge: bool,
    ) -> dict[str, Any]:
        async def body(view: TransactionView) -> dict[str, Any]:
            existing = await self._find_preference(view, component)
            preferences = dict(existing.preferences) if existing and merge else {}
            preferences.update(values)
            record = UserPreference(
                id=existing.id if existing else None,
                component=component,
                preferences=preferences,
                updated_at=utc_now(),
            )
            await view.put(USER_PREFERENCES, record.to_record())
            return preferences

        result = await self._store.transaction([USER_PREFERENCES], READWRITE, body)
        logger.debug("preferences_saved", component=component, merge=merge)
        return result


# =============================================================================
# APPLICATION
# =============================================================================

class DigibookApp:
    """
    All flows wired to one store.

    Call open() before use: it opens the store, seeds default
    categories and the paycheck singleton, and hydrates the ledger state.
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        vault: BackupVaultInterface,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = date.today,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.vault = vault
        self.bus = EventBus()
        self.audit_logger = AuditLogger(store)
        self.state = LedgerState(store, self.bus)
        self.derivations = LedgerDerivations(
            self.state,
            today=today,
            significant_overpayment_percent=Decimal(str(self.settings.app.significant_overpayment_percent)),
            history_months=self.settings.app.expense_history_months,
            payoff_max_months=self.settings.app.payoff_max_months,
        )
        self.category_cache = CategoryCache(self.settings.app.category_cache_ttl_seconds)
        self.engine = PaymentEngine(store, self.audit_logger, self.bus)
        self.backups = BackupManager(store, vault, self.audit_logger, self.settings.backup)
        self.transfer = LedgerTransfer(store, self.backups, self.audit_logger, self.category_cache)

        self.accounts = AccountFlow(store, self.state, self.audit_logger)
        self.credit_cards = CreditCardFlow(store, self.state, self.audit_logger, self.engine)
        self.categories = CategoryFlow(store, self.state, self.audit_logger, self.category_cache, self.bus)
        self.expenses = ExpenseFlow(store, self.state, self.audit_logger, self.engine, self.derivations)
        self.preferences = SettingsFlow(store, self.state, self.audit_logger)

    async def open(self) -> LedgerSnapshot:
        await self.store.open()
        seeded = await self.store.transaction(STORE_NAMES, READWRITE, seed_defaults)
        if seeded:
            logger.info("default_categories_seeded", count=seeded)
        return await self.state.hydrate()

    async def import_json(self, text: str) -> ImportSummary:
        summary = await self.transfer.import_json(text)
        await self.state.refresh("import")
        return summary

    async def import_encrypted(self, text: str, password: str) -> ImportSummary:
        summary = await self.transfer.import_encrypted(text, password)
        await self.state.refresh("import")
        return summary

    async def restore_backup(self, key: str) -> ImportSummary:
        summary = await self.backups.restore_backup(key)
        self.category_cache.invalidate()
        await self.state.refresh("restore")
        return summary

    async def clear_all_data(self) -> str:
        key = await self.transfer.clear_all_data()
        await self.state.refresh("clear")
        return key

    async def close(self) -> None:
        await self.store.close()


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[ObjectStoreInterface] = None,
    vault: Optional[BackupVaultInterface] = None,
) -> DigibookApp:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to get_settings()
        store: Object store; defaults to the configured backend
        vault: Backup vault; defaults to a directory vault for the file
               backend and an in-memory vault otherwise

    Returns:
        An unopened DigibookApp
    """
    settings = settings or get_settings()
    storage = settings.storage
    configure_logging(settings.app.log_level)

    if store is None:
        if storage.backend == "file":
            store = JsonFileObjectStore(storage.database_path)
        else:
            store = InMemoryObjectStore()
    if vault is None:
        if storage.backend == "file":
            vault = DirectoryBackupVault(storage.backup_dir)
        else:
            vault = InMemoryBackupVault()

    logger.info("app_components_created", backend=storage.backend)
    return DigibookApp(store, vault, settings)
