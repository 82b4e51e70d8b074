"""
Backup Manager

Checksummed snapshots of every store, kept in a backup vault under keys
of the form digibook_backup_<reason>_<timestamp>.

    data         the snapshot, or base64(zlib(canonical JSON)) when compressed
    checksum     SHA-256 of the canonical JSON of the uncompressed snapshot
    reason       manual, pre_restore, pre_import, pre_clear, ...
    timestamp    when it was taken (UTC)
    version      payload format version
    size         stored payload bytes
    originalSize canonical JSON bytes

CRITICAL: restore verifies the checksum before anything is written. A
mismatch is a hard failure and the ledger is left untouched.
"""

import asyncio
import base64
import binascii
import hashlib
import json
import re
import zlib
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from digibook.audit import AuditLogger
from digibook.config import BackupSettings, get_settings
from digibook.errors import MalformedError, NotFoundError, SchemaTooNewError, raise_for_issues
from digibook.models.backup import BackupRecord
from digibook.models.ledger import DATA_VERSION, utc_now
from digibook.models.reports import ImportSummary, ValidationResult
from digibook.services.records import read_ledger, replace_ledger
from digibook.services.storage import BackupVaultInterface, ObjectStoreInterface
from digibook.validation import validate_import


logger = structlog.get_logger(__name__)

_REASON_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def canonical_json(data: Any) -> str:
    """Key-sorted, whitespace-free JSON used for checksums."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def checksum_of(data: Any) -> str:
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def compress_payload(data: Any) -> str:
    return base64.b64encode(zlib.compress(canonical_json(data).encode("utf-8"))).decode("ascii")


def decompress_payload(payload: str) -> Any:
    try:
        raw = zlib.decompress(base64.b64decode(payload, validate=True))
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, zlib.error) as e:
        raise MalformedError(f"Backup payload cannot be decompressed: {e}") from e


class BackupManager:
    """
    Creates, verifies and restores ledger backups.

    Usage:
        manager = BackupManager(store, vault, audit_logger)
        record = await manager.create_backup("manual")
        await manager.restore_backup(record.key)
    """

    def __init__(
        self,
        store: ObjectStoreInterface,
        vault: BackupVaultInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[BackupSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._vault = vault
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().backup
        self._clock = clock

    @property
    def retention(self) -> int:
        return self._settings.retention

    async def snapshot(self, cancel: Optional[asyncio.Event] = None) -> dict[str, Any]:
        """Every store as plain records, tagged with the payload version."""
        data = await read_ledger(self._store, cancel=cancel)
        return {"version": DATA_VERSION, **data}

    async def _next_key(self, reason: str, timestamp: datetime) -> str:
        stamp = int(timestamp.timestamp() * 1000)
        existing = set(await self._vault.keys(self._settings.key_prefix))
        key = f"{self._settings.key_prefix}{reason}_{stamp}"
        while key in existing:
            stamp += 1
            key = f"{self._settings.key_prefix}{reason}_{stamp}"
        return key

    async def create_backup(
        self,
        reason: str = "manual",
        cancel: Optional[asyncio.Event] = None,
    ) -> BackupRecord:
        """
        Snapshot the ledger into the vault and apply retention.

        The snapshot scan honours `cancel`; once the record is being
        written it is not cancellable.
        """
        reason = _REASON_CHARS.sub("_", reason.strip()) or "manual"
        data = await self.snapshot(cancel)
        canonical = canonical_json(data)
        timestamp = self._clock()

        if self._settings.compress:
            payload: Any = compress_payload(data)
            size = len(payload.encode("ascii"))
        else:
            payload = data
            size = len(canonical.encode("utf-8"))

        record = BackupRecord(
            key=await self._next_key(reason, timestamp),
            data=payload,
            checksum=hashlib.sha256(canonical.encode("utf-8")).hexdigest(),
            reason=reason,
            timestamp=timestamp,
            version=DATA_VERSION,
            compressed=self._settings.compress,
            size=size,
            original_size=len(canonical.encode("utf-8")),
        )
        await self._vault.save(record.key, record.to_record())
        logger.info(
            "backup_created",
            key=record.key,
            reason=reason,
            size=record.size,
            original_size=record.original_size,
        )

        await self.apply_retention()
        if self._audit_logger:
            await self._audit_logger.log_backup_created(record.key, reason, record.size)
        return record

    async def _load(self, key: str) -> BackupRecord:
        document = await self._vault.load(key)
        if document is None:
            raise NotFoundError(f"Backup {key} not found", details={"key": key})
        try:
            return BackupRecord.from_record(document)
        except ValidationError as e:
            raise MalformedError(f"Backup {key} is not a valid backup record: {e}") from e

    async def list_backups(self) -> list[BackupRecord]:
        """Every readable backup, newest first. Unreadable ones are skipped."""
        records = []
        for key in await self._vault.keys(self._settings.key_prefix):
            try:
                records.append(await self._load(key))
            except (MalformedError, NotFoundError) as e:
                logger.warning("backup_unreadable", key=key, error=str(e))
        records.sort(key=lambda r: (r.timestamp, r.key), reverse=True)
        return records

    async def get_latest_backup(self) -> Optional[BackupRecord]:
        backups = await self.list_backups()
        return backups[0] if backups else None

    async def latest_valid_backup(self) -> Optional[BackupRecord]:
        """Newest backup whose payload verifies."""
        for record in await self.list_backups():
            if self._verify_record(record):
                return record
        return None

    async def apply_retention(self) -> list[str]:
        """Delete all but the newest N backups. Returns deleted keys."""
        backups = await self.list_backups()
        deleted = []
        for record in backups[self._settings.retention:]:
            if await self._vault.delete(record.key):
                deleted.append(record.key)
        if deleted:
            logger.info("backups_pruned", deleted=deleted, kept=self._settings.retention)
        return deleted

    def decode(self, record: BackupRecord) -> dict[str, Any]:
        """
        The verified snapshot held by a record.

        Raises:
            MalformedError: Payload unreadable or checksum mismatch
        """
        if record.compressed:
            if not isinstance(record.data, str):
                raise MalformedError(f"Backup {record.key} is flagged compressed but holds an object")
            data = decompress_payload(record.data)
        else:
            data = record.data

        if not isinstance(data, dict):
            raise MalformedError(f"Backup {record.key} does not hold a ledger snapshot")
        if checksum_of(data) != record.checksum:
            logger.error("backup_checksum_mismatch", key=record.key)
            raise MalformedError(
                f"Backup {record.key} failed checksum verification",
                details={"key": record.key},
            )
        return data

    def _verify_record(self, record: BackupRecord) -> bool:
        try:
            self.decode(record)
        except MalformedError:
            return False
        return record.version <= DATA_VERSION

    async def verify_backup(self, key: str) -> bool:
        """True if the backup exists, decodes, and its checksum matches."""
        try:
            record = await self._load(key)
        except (NotFoundError, MalformedError):
            return False
        return self._verify_record(record)

    async def test_backup_restore(self, key: str) -> ValidationResult:
        """Decode and validate a backup without applying it."""
        record = await self._load(key)
        data = self.decode(record)
        return validate_import(data)

    async def restore_backup(self, key: str, safety_backup: bool = True) -> ImportSummary:
        """
        Replace the whole ledger with a backup.

        Order: verify checksum and version, validate the payload, take a
        pre_restore safety backup, replace all stores in one transaction.

        Raises:
            NotFoundError: No such backup
            MalformedError: Checksum mismatch or invalid payload
            SchemaTooNewError: Written by a newer version
        """
        record = await self._load(key)
        if record.version > DATA_VERSION:
            raise SchemaTooNewError(
                f"Backup {key} has version {record.version}, newer than {DATA_VERSION}",
                details={"key": key, "version": record.version},
            )

        data = self.decode(record)
        result = validate_import(data)
        raise_for_issues(result.issues, f"Backup {key} cannot be restored")

        safety_key = None
        if safety_backup:
            safety_key = (await self.create_backup("pre_restore")).key

        counts = await replace_ledger(self._store, result.sanitized)
        logger.warning("backup_restored", key=key, safety_key=safety_key, counts=counts)
        if self._audit_logger:
            await self._audit_logger.log_backup_restored(key, safety_key)
        return ImportSummary(counts=counts, backup_key=safety_key, source="backup")

    async def delete_backup(self, key: str) -> bool:
        deleted = await self._vault.delete(key)
        if deleted:
            logger.info("backup_deleted", key=key)
        return deleted

    async def clear_backups(self) -> int:
        """Delete every backup. Returns how many were removed."""
        removed = 0
        for key in await self._vault.keys(self._settings.key_prefix):
            if await self._vault.delete(key):
                removed += 1
        logger.warning("backups_cleared", removed=removed)
        return removed
