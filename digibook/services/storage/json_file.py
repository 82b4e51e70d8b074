"""
JSON File Object Store

Persists the whole ledger as one JSON document:

    {"version": 1, "nextIds": {...}, "stores": {"accounts": [...], ...}}

Each commit rewrites the document atomically (temp file + rename) before
the in-memory state is swapped, so a failed write leaves both the file and
memory at the last committed state.

File I/O runs in a worker thread and is retried with exponential backoff;
transient OS errors (locked file, full disk that recovers) should not lose
a commit. Backoff waits are awaited, so other coroutines keep running.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from digibook.errors import MalformedError, SchemaTooNewError, TransactionFailedError
from digibook.services.storage.interface import (
    STORE_NAMES,
    STORE_SCHEMA_VERSION,
    Record,
)
from digibook.services.storage.memory import InMemoryObjectStore


logger = structlog.get_logger(__name__)


class JsonFileObjectStore(InMemoryObjectStore):
    """
    Object store backed by a single JSON file.

    Usage:
        store = JsonFileObjectStore(settings.storage.database_path)
        await store.open()
    """

    def __init__(self, path: Path):
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    async def _read_text(self) -> str:
        return await asyncio.to_thread(self._path.read_text, encoding="utf-8")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    async def _write_text(self, text: str) -> None:
        await asyncio.to_thread(self._replace_file, text)

    def _replace_file(self, text: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        temp_path.write_text(text, encoding="utf-8")
        os.replace(temp_path, self._path)

    async def open(self) -> None:
        """
        Load the document, or start empty if it does not exist.

        Raises:
            MalformedError: If the file is not a valid ledger document
            SchemaTooNewError: If it was written by a newer version
        """
        if not self._path.exists():
            await super().open()
            return

        try:
            document = json.loads(await self._read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise MalformedError(f"Cannot read ledger file {self._path}: {e}") from e

        stores, next_ids, version = self._parse_document(document)
        if version > STORE_SCHEMA_VERSION:
            raise SchemaTooNewError(
                f"Ledger file version {version} is newer than supported "
                f"version {STORE_SCHEMA_VERSION}",
                details={"version": version, "path": str(self._path)},
            )

        self._stores = stores
        self._next_ids = next_ids
        self._version = version
        await super().open()
        logger.info(
            "ledger_file_loaded",
            path=str(self._path),
            records=sum(len(records) for records in stores.values()),
        )

    def _parse_document(
        self,
        document: Any,
    ) -> tuple[dict[str, dict[int, Record]], dict[str, int], int]:
        if not isinstance(document, dict) or not isinstance(document.get("stores"), dict):
            raise MalformedError(f"Ledger file {self._path} has no stores")

        version = document.get("version")
        if not isinstance(version, int) or version < 1:
            raise MalformedError(f"Ledger file {self._path} has no valid version")

        stores: dict[str, dict[int, Record]] = {name: {} for name in STORE_NAMES}
        for name, records in document["stores"].items():
            if name not in stores:
                continue
            if not isinstance(records, list):
                raise MalformedError(f"Store {name} in {self._path} is not a list")
            for record in records:
                if not isinstance(record, dict) or not isinstance(record.get("id"), int):
                    raise MalformedError(f"Store {name} in {self._path} has a record without id")
                stores[name][record["id"]] = record

        raw_next_ids = document.get("nextIds") or {}
        next_ids = {
            name: max(
                int(raw_next_ids.get(name, 1)),
                max(stores[name], default=0) + 1,
            )
            for name in STORE_NAMES
        }
        return stores, next_ids, version

    async def destroy(self) -> None:
        await super().destroy()
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("ledger_file_delete_failed", path=str(self._path), error=str(e))
            raise

    async def _persist(
        self,
        stores: dict[str, dict[int, Record]],
        next_ids: dict[str, int],
    ) -> None:
        document = {
            "version": self._version,
            "nextIds": next_ids,
            "stores": {
                name: [stores[name][record_id] for record_id in sorted(stores[name])]
                for name in STORE_NAMES
            },
        }
        try:
            await self._write_text(json.dumps(document, ensure_ascii=False, indent=1))
        except OSError as e:
            logger.error("ledger_commit_failed", path=str(self._path), error=str(e))
            raise TransactionFailedError(f"Could not write ledger file: {e}") from e
