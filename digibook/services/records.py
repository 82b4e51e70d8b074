"""
Record Helpers

Whole-ledger reads and writes shared by the command layer, backups and
import/export:

- read_ledger / load_snapshot: one consistent read of every store
- replace_ledger: swap the entire ledger in one transaction
- seed_defaults / ensure_default_account: invariants re-established
  inside a caller's transaction
"""

import asyncio
from typing import Any, Optional, TypeVar

import structlog

from digibook.models.ledger import (
    PAYCHECK_SETTINGS_ID,
    Account,
    Category,
    CreditCard,
    FixedExpense,
    LedgerModel,
    LedgerSnapshot,
    PaycheckSettings,
    PendingTransaction,
    UserPreference,
    default_categories,
)
from digibook.services.storage.interface import (
    ACCOUNTS,
    CATEGORIES,
    CREDIT_CARDS,
    FIXED_EXPENSES,
    PAYCHECK_SETTINGS,
    PENDING_TRANSACTIONS,
    READONLY,
    READWRITE,
    STORE_NAMES,
    USER_PREFERENCES,
    ObjectStoreInterface,
    TransactionView,
)


logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=LedgerModel)


async def read_models(view: TransactionView, store: str, model: type[M]) -> list[M]:
    """All records of a store as models, in id order."""
    return [model.from_record(record) for record in await view.scan(store)]


async def read_ledger(
    store: ObjectStoreInterface,
    cancel: Optional[asyncio.Event] = None,
) -> dict[str, Any]:
    """
    Read every store in one read-only transaction.

    Returns a dict keyed by store name holding raw records. The
    paycheckSettings singleton maps to a record or None.
    """
    async def body(view: TransactionView) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name in STORE_NAMES:
            records = await view.scan(name, cancel=cancel)
            if name == PAYCHECK_SETTINGS:
                data[name] = records[0] if records else None
            else:
                data[name] = records
        return data

    return await store.transaction(STORE_NAMES, READONLY, body)


async def load_snapshot(store: ObjectStoreInterface) -> LedgerSnapshot:
    """Read the ledger into an immutable snapshot (audit logs excluded)."""
    data = await read_ledger(store)
    settings = data[PAYCHECK_SETTINGS]
    return LedgerSnapshot(
        accounts=tuple(Account.from_record(r) for r in data[ACCOUNTS]),
        credit_cards=tuple(CreditCard.from_record(r) for r in data[CREDIT_CARDS]),
        fixed_expenses=tuple(FixedExpense.from_record(r) for r in data[FIXED_EXPENSES]),
        pending_transactions=tuple(
            PendingTransaction.from_record(r) for r in data[PENDING_TRANSACTIONS]
        ),
        categories=tuple(Category.from_record(r) for r in data[CATEGORIES]),
        paycheck_settings=PaycheckSettings.from_record(settings) if settings else None,
        user_preferences=tuple(UserPreference.from_record(r) for r in data[USER_PREFERENCES]),
    )


async def ensure_default_account(view: TransactionView) -> Optional[int]:
    """
    Re-establish "exactly one default account" inside a transaction.

    Keeps the earliest-created default if several are flagged; promotes
    the earliest-created account if none is. Returns the default's id,
    or None when there are no accounts.
    """
    accounts = await read_models(view, ACCOUNTS, Account)
    if not accounts:
        return None

    ordered = sorted(accounts, key=lambda a: (a.created_at, a.id))
    flagged = [a for a in ordered if a.is_default]
    chosen = flagged[0] if flagged else ordered[0]

    for account in ordered:
        should_be_default = account.id == chosen.id
        if account.is_default != should_be_default:
            await view.put(
                ACCOUNTS,
                account.model_copy(update={"is_default": should_be_default}).to_record(),
            )
    return chosen.id


async def seed_defaults(view: TransactionView) -> int:
    """
    Seed default categories and the paycheck settings singleton.

    Existing categories are kept; a default is added only when no
    category with the same name (case-insensitive) exists. Returns the
    number of categories added.
    """
    existing = {c.name.lower() for c in await read_models(view, CATEGORIES, Category)}
    added = 0
    for category in default_categories():
        if category.name.lower() not in existing:
            await view.put(CATEGORIES, category.to_record())
            added += 1

    if await view.get(PAYCHECK_SETTINGS, PAYCHECK_SETTINGS_ID) is None:
        await view.put(PAYCHECK_SETTINGS, PaycheckSettings().to_record())
    return added


async def replace_ledger(
    store: ObjectStoreInterface,
    records: dict[str, list[LedgerModel]],
) -> dict[str, int]:
    """
    Replace every store with the given records in one transaction.

    Ids are preserved, including the audit trail's. The default-account
    invariant is repaired if the records break it.

    Returns the number of records written per store.
    """
    async def body(view: TransactionView) -> dict[str, int]:
        counts = {}
        for name in STORE_NAMES:
            await view.clear(name)
        for name in STORE_NAMES:
            models = records.get(name, [])
            for model in models:
                await view.put(name, model.to_record())
            counts[name] = len(models)

        await ensure_default_account(view)
        return counts

    counts = await store.transaction(STORE_NAMES, READWRITE, body)
    logger.info("ledger_replaced", counts=counts)
    return counts
