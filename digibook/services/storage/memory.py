"""
In-Memory Object Store

Keeps every store as a dict of id -> record. Transactions work on deep
copies of the declared stores (copy-on-write) and swap them in on commit,
so a failing body leaves the committed state untouched.

Read-write transactions are serialized by an asyncio.Lock. Read-only
transactions see the last committed state and never wait.
"""

import asyncio
import copy
from collections.abc import Awaitable, Callable, Sequence
from typing import Optional

import structlog

from digibook.errors import SchemaTooNewError, StorageError
from digibook.services.storage.interface import (
    READONLY,
    READWRITE,
    STORE_NAMES,
    STORE_SCHEMA_VERSION,
    ObjectStoreInterface,
    Predicate,
    Record,
    T,
    TransactionView,
)


logger = structlog.get_logger(__name__)

# Scans yield to the event loop every this many records
_SCAN_YIELD_EVERY = 200


class MemoryTransactionView(TransactionView):
    """Transaction view over staged copies of the declared stores."""

    def __init__(
        self,
        stores: dict[str, dict[int, Record]],
        next_ids: dict[str, int],
        writable: bool,
    ):
        self._stores = stores
        self._next_ids = next_ids
        self._writable = writable

    def _store(self, name: str) -> dict[int, Record]:
        try:
            return self._stores[name]
        except KeyError:
            raise StorageError(
                f"Store '{name}' is not part of this transaction"
            ) from None

    def _check_writable(self) -> None:
        if not self._writable:
            raise StorageError("Cannot write in a read-only transaction")

    async def get(self, store: str, record_id: int) -> Optional[Record]:
        record = self._store(store).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, store: str, record: Record) -> int:
        self._check_writable()
        records = self._store(store)
        record = copy.deepcopy(record)

        record_id = record.get("id")
        if record_id is None:
            record_id = self._next_ids[store]
            record["id"] = record_id
        elif not isinstance(record_id, int) or isinstance(record_id, bool):
            raise StorageError(f"Record ids must be integers, got {record_id!r}")

        self._next_ids[store] = max(self._next_ids[store], record_id + 1)
        records[record_id] = record
        return record_id

    async def delete(self, store: str, record_id: int) -> bool:
        self._check_writable()
        return self._store(store).pop(record_id, None) is not None

    async def scan(
        self,
        store: str,
        predicate: Optional[Predicate] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> list[Record]:
        results = []
        for index, record_id in enumerate(sorted(self._store(store))):
            if cancel is not None and cancel.is_set():
                raise asyncio.CancelledError(f"Scan of {store} cancelled")
            if index and index % _SCAN_YIELD_EVERY == 0:
                await asyncio.sleep(0)
            record = self._store(store)[record_id]
            if predicate is None or predicate(record):
                results.append(copy.deepcopy(record))
        return results

    async def clear(self, store: str) -> int:
        self._check_writable()
        records = self._store(store)
        removed = len(records)
        records.clear()
        self._next_ids[store] = 1
        return removed


class InMemoryObjectStore(ObjectStoreInterface):
    """
    Object store held entirely in memory.

    Subclasses persist committed state by overriding _persist().
    """

    def __init__(self, version: int = STORE_SCHEMA_VERSION):
        self._version = version
        self._stores: dict[str, dict[int, Record]] = {name: {} for name in STORE_NAMES}
        self._next_ids: dict[str, int] = {name: 1 for name in STORE_NAMES}
        self._write_lock = asyncio.Lock()
        self._is_open = False

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_open(self) -> bool:
        return self._is_open

    async def open(self) -> None:
        if self._version > STORE_SCHEMA_VERSION:
            raise SchemaTooNewError(
                f"Store version {self._version} is newer than supported "
                f"version {STORE_SCHEMA_VERSION}",
                details={"version": self._version},
            )
        self._is_open = True
        logger.debug("store_opened", backend=type(self).__name__, version=self._version)

    async def close(self) -> None:
        self._is_open = False

    async def destroy(self) -> None:
        self._stores = {name: {} for name in STORE_NAMES}
        self._next_ids = {name: 1 for name in STORE_NAMES}
        self._version = STORE_SCHEMA_VERSION
        self._is_open = False
        logger.warning("store_destroyed", backend=type(self).__name__)

    def _declared(self, stores: Sequence[str]) -> list[str]:
        if isinstance(stores, str):
            stores = [stores]
        unknown = [name for name in stores if name not in STORE_NAMES]
        if unknown:
            raise StorageError(f"Unknown stores: {', '.join(unknown)}")
        return list(dict.fromkeys(stores))

    async def transaction(
        self,
        stores: Sequence[str],
        mode: str,
        body: Callable[[TransactionView], Awaitable[T]],
    ) -> T:
        if not self._is_open:
            raise StorageError("Store is not open")
        names = self._declared(stores)

        if mode == READONLY:
            view = MemoryTransactionView(
                {name: copy.deepcopy(self._stores[name]) for name in names},
                dict(self._next_ids),
                writable=False,
            )
            return await body(view)

        if mode != READWRITE:
            raise StorageError(f"Unknown transaction mode: {mode}")

        async with self._write_lock:
            staged = {name: copy.deepcopy(self._stores[name]) for name in names}
            next_ids = dict(self._next_ids)
            view = MemoryTransactionView(staged, next_ids, writable=True)

            result = await body(view)

            stores_after = {**self._stores, **staged}
            await self._persist(stores_after, next_ids)
            self._stores = stores_after
            self._next_ids = next_ids
            return result

    async def _persist(
        self,
        stores: dict[str, dict[int, Record]],
        next_ids: dict[str, int],
    ) -> None:
        """Hook for durable backends. Raise TransactionFailedError to abort."""
        return None
