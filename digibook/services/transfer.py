"""
Import / Export

JSON export:

    {"version": 1, "exportedAt": ..., "accounts": [...], "creditCards": [...],
     "fixedExpenses": [...], "pendingTransactions": [...], "categories": [...],
     "paycheckSettings": {...}, "userPreferences": [...], "auditLogs": [...]}

CSV export is one text per collection with nested fields flattened to
dotted column names (paymentSource.kind, ...), dot decimals and
true/false booleans.

DESIGN DECISION: An import replaces the whole ledger. It is validated
first, a pre_import backup is taken, and every store is rewritten in one
transaction with ids preserved, so export -> import gives back the same
ledger.
"""

import asyncio
import csv
import io
import json
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

import structlog

from digibook.audit import AuditLogger
from digibook.errors import MalformedError, raise_for_issues
from digibook.models.ledger import DATA_VERSION, utc_now
from digibook.models.reports import ImportSummary, ValidationResult
from digibook.services.backup import BackupManager
from digibook.services.category_cache import CategoryCache
from digibook.services.crypto import decrypt_text, encrypt_text, is_encrypted_envelope
from digibook.services.records import read_ledger, replace_ledger, seed_defaults
from digibook.services.storage import (
    PAYCHECK_SETTINGS,
    READWRITE,
    STORE_NAMES,
    ObjectStoreInterface,
    TransactionView,
)
from digibook.validation import validate_import


logger = structlog.get_logger(__name__)

# Collections in export order
EXPORT_COLLECTIONS = (
    "accounts",
    "creditCards",
    "fixedExpenses",
    "pendingTransactions",
    "categories",
    "userPreferences",
    "auditLogs",
)


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False)
    return str(value)


def flatten_record(record: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Nested objects become dotted keys. Lists stay whole."""
    flat: dict[str, Any] = {}
    for key, value in record.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(flatten_record(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def records_to_csv(records: list[dict[str, Any]]) -> str:
    """One CSV text; columns are the union of keys in first-seen order."""
    rows = [flatten_record(record) for record in records]
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({column: _csv_value(row.get(column)) for column in columns})
    return buffer.getvalue()


class LedgerTransfer:
    """
    Export and import of the whole ledger.

    Usage:
        transfer = LedgerTransfer(store, backups, audit_logger)
        text = await transfer.export_json()
        await transfer.import_json(text)
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        backups: BackupManager,
        audit_logger: Optional[AuditLogger] = None,
        category_cache: Optional[CategoryCache] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._backups = backups
        self._audit_logger = audit_logger
        self._category_cache = category_cache
        self._clock = clock

    async def export_snapshot(self, cancel: Optional[asyncio.Event] = None) -> dict[str, Any]:
        """The export document as a dict."""
        data = await read_ledger(self._store, cancel=cancel)
        document: dict[str, Any] = {
            "version": DATA_VERSION,
            "exportedAt": self._clock().isoformat(),
        }
        for name in EXPORT_COLLECTIONS:
            document[name] = data[name]
        if data[PAYCHECK_SETTINGS] is not None:
            document["paycheckSettings"] = data[PAYCHECK_SETTINGS]

        logger.info(
            "ledger_exported",
            counts={name: len(document[name]) for name in EXPORT_COLLECTIONS},
        )
        return document

    async def export_json(self, cancel: Optional[asyncio.Event] = None, indent: int = 2) -> str:
        return json.dumps(await self.export_snapshot(cancel), indent=indent, ensure_ascii=False)

    async def export_csv(self, cancel: Optional[asyncio.Event] = None) -> dict[str, str]:
        """{"accounts.csv": "...", ...}, one file per collection."""
        document = await self.export_snapshot(cancel)
        files = {f"{name}.csv": records_to_csv(document[name]) for name in EXPORT_COLLECTIONS}
        settings = document.get("paycheckSettings")
        files["paycheckSettings.csv"] = records_to_csv([settings] if settings else [])
        return files

    async def export_encrypted(
        self,
        password: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """JSON export sealed in a password envelope."""
        plaintext = await self.export_json(cancel, indent=0)
        return json.dumps(encrypt_text(plaintext, password))

    def preview_import(self, text: str) -> ValidationResult:
        """Validate an export without applying it."""
        return validate_import(self._parse(text))

    def _parse(self, text: str) -> Any:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedError(f"Import is not valid JSON: {e}") from e
        if is_encrypted_envelope(payload):
            raise MalformedError("This export is encrypted; a password is required")
        return payload

    async def import_json(self, text: str, source: str = "json") -> ImportSummary:
        """
        Replace the ledger with an export.

        Raises:
            MalformedError: Not JSON, wrong shape, bad records
            SchemaTooNewError: Exported by a newer version
            DanglingReferenceError: Records point at ids not in the export
        """
        result = validate_import(self._parse(text))
        raise_for_issues(result.issues, "Import rejected")

        backup = await self._backups.create_backup("pre_import")
        counts = await replace_ledger(self._store, result.sanitized)
        if self._category_cache:
            self._category_cache.invalidate()

        logger.warning("ledger_imported", source=source, counts=counts, backup_key=backup.key)
        if self._audit_logger:
            await self._audit_logger.log_data_imported(counts, source)
        return ImportSummary(counts=counts, backup_key=backup.key, source=source)

    async def import_encrypted(self, text: str, password: str) -> ImportSummary:
        """Decrypt then import. A wrong password raises BadPasswordError."""
        plaintext = decrypt_text(text, password)
        return await self.import_json(plaintext, source="encrypted")

    async def clear_all_data(self) -> str:
        """
        Back up, empty every store, and reseed the default categories.

        Returns the key of the pre_clear backup.
        """
        backup = await self._backups.create_backup("pre_clear")

        async def body(view: TransactionView) -> int:
            for name in STORE_NAMES:
                await view.clear(name)
            return await seed_defaults(view)

        seeded = await self._store.transaction(STORE_NAMES, READWRITE, body)
        if self._category_cache:
            self._category_cache.invalidate()

        logger.warning("ledger_cleared", backup_key=backup.key, categories_seeded=seeded)
        if self._audit_logger:
            await self._audit_logger.log_data_cleared(backup.key)
        return backup.key
