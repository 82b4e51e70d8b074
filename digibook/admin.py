"""
Administrative Commands

Maintenance operations that bypass the normal command flows:
- emergency_reset: delete the local database, reinitialize, and restore
  the newest valid backup (or seed defaults when there is none)
- cleanup_duplicate_defaults: keep one default account and drop
  unreferenced "Default Account" placeholders
- repair: re-establish the default account and report records whose
  references are broken, without deleting them
- open_with_recovery: open the app, falling back to emergency_reset

CRITICAL: SchemaTooNew is never recovered automatically. Data written by a
newer build must not be destroyed by an older one.
"""

from typing import Optional

import structlog

from digibook.errors import MalformedError, SchemaTooNewError, StorageError
from digibook.models.ledger import (
    Account,
    FixedExpense,
    LedgerSnapshot,
    funding_account_id,
    referenced_card_id,
)
from digibook.models.reports import RepairReport
from digibook.orchestrator import DigibookApp
from digibook.services.records import ensure_default_account, read_models, seed_defaults
from digibook.services.storage import (
    ACCOUNTS,
    CREDIT_CARDS,
    FIXED_EXPENSES,
    PENDING_TRANSACTIONS,
    READWRITE,
    STORE_NAMES,
    TransactionView,
)


logger = structlog.get_logger(__name__)

PLACEHOLDER_ACCOUNT_NAME = "Default Account"


class AdminCommands:
    """
    Privileged maintenance commands for one app instance.

    Usage:
        admin = AdminCommands(app)
        snapshot = await admin.open_with_recovery()
    """

    def __init__(self, app: DigibookApp):
        self._app = app

    async def emergency_reset(self) -> Optional[str]:
        """
        Destroy and re-create the local database.

        Returns:
            Key of the backup that was restored, or None if defaults
            were seeded instead
        """
        app = self._app
        logger.warning("emergency_reset_started")

        await app.store.destroy()
        await app.store.open()

        restored_key = None
        latest = await app.backups.latest_valid_backup()
        if latest is not None:
            try:
                await app.backups.restore_backup(latest.key, safety_backup=False)
                restored_key = latest.key
            except (MalformedError, SchemaTooNewError) as e:
                logger.error("emergency_restore_failed", key=latest.key, error=str(e))

        if restored_key is None:
            await app.store.transaction(STORE_NAMES, READWRITE, seed_defaults)
        app.category_cache.invalidate()
        await app.audit_logger.log_emergency_reset(restored_key)
        await app.state.refresh("emergency_reset")

        logger.warning("emergency_reset_completed", restored_from=restored_key)
        return restored_key

    async def cleanup_duplicate_defaults(self) -> RepairReport:
        """
        Clear extra default flags and remove placeholder accounts.

        A "Default Account" placeholder is only removed when another
        account exists and nothing references the placeholder.
        """

        async def body(view: TransactionView) -> RepairReport:
            accounts = await read_models(view, ACCOUNTS, Account)
            real = [a for a in accounts if a.name != PLACEHOLDER_ACCOUNT_NAME]

            removed = []
            if real:
                referenced = {
                    funding_account_id(e.payment_source)
                    for e in await read_models(view, FIXED_EXPENSES, FixedExpense)
                }
                referenced.update(r["accountId"] for r in await view.scan(PENDING_TRANSACTIONS))
                for account in accounts:
                    if account.name == PLACEHOLDER_ACCOUNT_NAME and account.id not in referenced:
                        await view.delete(ACCOUNTS, account.id)
                        removed.append(account.id)

            flagged_before = {
                a.id for a in await read_models(view, ACCOUNTS, Account) if a.is_default
            }
            default_id = await ensure_default_account(view)
            return RepairReport(
                default_account_id=default_id,
                defaults_cleared=sorted(flagged_before - {default_id}),
                placeholders_removed=removed,
            )

        report = await self._app.store.transaction(
            [ACCOUNTS, FIXED_EXPENSES, PENDING_TRANSACTIONS], READWRITE, body,
        )
        if report.defaults_cleared or report.placeholders_removed:
            logger.info(
                "duplicate_defaults_cleaned",
                defaults_cleared=report.defaults_cleared,
                placeholders_removed=report.placeholders_removed,
            )
            await self._app.state.refresh("cleanup")
        return report

    async def repair(self) -> RepairReport:
        """
        Re-establish the default account and list broken references.

        Expenses whose payment source points at a missing account or
        card, and pending transactions whose account is gone, are
        reported, never deleted.
        """

        async def body(view: TransactionView) -> RepairReport:
            accounts = await read_models(view, ACCOUNTS, Account)
            flagged_before = {a.id for a in accounts if a.is_default}
            default_id = await ensure_default_account(view)

            account_ids = {a.id for a in accounts}
            card_ids = {r["id"] for r in await view.scan(CREDIT_CARDS)}

            dangling_expenses = []
            for expense in await read_models(view, FIXED_EXPENSES, FixedExpense):
                account_ref = funding_account_id(expense.payment_source)
                card_ref = referenced_card_id(expense.payment_source)
                if (account_ref is not None and account_ref not in account_ids) or (
                    card_ref is not None and card_ref not in card_ids
                ):
                    dangling_expenses.append(expense.id)

            dangling_pending = [
                r["id"] for r in await view.scan(
                    PENDING_TRANSACTIONS, lambda r: r.get("accountId") not in account_ids,
                )
            ]
            return RepairReport(
                default_account_id=default_id,
                defaults_cleared=sorted(flagged_before - {default_id}),
                dangling_expense_ids=dangling_expenses,
                dangling_pending_ids=dangling_pending,
            )

        report = await self._app.store.transaction(
            [ACCOUNTS, CREDIT_CARDS, FIXED_EXPENSES, PENDING_TRANSACTIONS], READWRITE, body,
        )
        if report.dangling_expense_ids or report.dangling_pending_ids:
            logger.warning(
                "dangling_references_found",
                expenses=report.dangling_expense_ids,
                pending=report.dangling_pending_ids,
            )
        await self._app.state.refresh("repair")
        return report

    async def open_with_recovery(self) -> LedgerSnapshot:
        """
        Open the app; if the database cannot be opened, reset it.

        Raises:
            SchemaTooNewError: The database was written by a newer version
        """
        try:
            return await self._app.open()
        except SchemaTooNewError:
            logger.error("open_refused_schema_too_new")
            raise
        except (MalformedError, StorageError) as e:
            logger.error("open_failed", error=str(e), error_type=type(e).__name__)

        await self.emergency_reset()
        await self._app.audit_logger.log_error(
            "open_failed", "Database could not be opened and was reset",
        )
        return self._app.state.committed
