"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the ledger in memory for tests and short sessions
2. Persist it to a local JSON document without touching business logic
3. Swap in a real database later

The interface is intentionally small: an object store with typed stores of
JSON records keyed by auto-assigned integer ids, plus one transaction
primitive. Everything that mutates more than one record goes through
transaction().
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Optional, TypeVar

from digibook.errors import (
    NotFoundError,
    SchemaTooNewError,
    StorageError,
    TransactionFailedError,
)


# Version of the store layout written by this build
STORE_SCHEMA_VERSION = 1

ACCOUNTS = "accounts"
CREDIT_CARDS = "creditCards"
FIXED_EXPENSES = "fixedExpenses"
PENDING_TRANSACTIONS = "pendingTransactions"
CATEGORIES = "categories"
PAYCHECK_SETTINGS = "paycheckSettings"
USER_PREFERENCES = "userPreferences"
AUDIT_LOGS = "auditLogs"

STORE_NAMES: tuple[str, ...] = (
    ACCOUNTS,
    CREDIT_CARDS,
    FIXED_EXPENSES,
    PENDING_TRANSACTIONS,
    CATEGORIES,
    PAYCHECK_SETTINGS,
    USER_PREFERENCES,
    AUDIT_LOGS,
)

READONLY = "readonly"
READWRITE = "readwrite"

Record = dict[str, Any]
Predicate = Callable[[Record], bool]
T = TypeVar("T")


class TransactionView(ABC):
    """
    Isolated view of the stores a transaction declared.

    Writes are visible to later reads in the same view and become
    visible to everyone else only when the transaction commits.
    """

    @abstractmethod
    async def get(self, store: str, record_id: int) -> Optional[Record]:
        """
        Read one record.

        Args:
            store: Store name
            record_id: The record's id

        Returns:
            A copy of the record if found, None otherwise
        """
        pass

    @abstractmethod
    async def put(self, store: str, record: Record) -> int:
        """
        Insert or replace a record.

        Args:
            store: Store name
            record: JSON-safe record. A missing or None "id" is assigned.

        Returns:
            The record's id

        Raises:
            StorageError: If the view is read-only or the store undeclared
        """
        pass

    @abstractmethod
    async def delete(self, store: str, record_id: int) -> bool:
        """
        Delete a record by id.

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    async def scan(
        self,
        store: str,
        predicate: Optional[Predicate] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> list[Record]:
        """
        Read every record matching predicate, in id order.

        Args:
            store: Store name
            predicate: Optional filter over records
            cancel: Optional signal; once set the scan raises CancelledError

        Returns:
            Copies of the matching records
        """
        pass

    @abstractmethod
    async def clear(self, store: str) -> int:
        """
        Remove every record in a store and reset its id counter.

        Returns:
            Number of records removed
        """
        pass


class ObjectStoreInterface(ABC):
    """
    Abstract interface for the ledger's object store.

    Any storage implementation (in-memory, JSON file, database)
    must implement these methods.
    """

    @property
    @abstractmethod
    def version(self) -> int:
        """Schema version of the opened store."""
        pass

    @abstractmethod
    async def open(self) -> None:
        """
        Open the store, creating it if needed.

        Raises:
            SchemaTooNewError: If the store was written by a newer version
            MalformedError: If the persisted data cannot be read
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release any resources held by the store."""
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """
        Delete all persisted data for this store.

        Used by the emergency reset path. The store must be re-opened
        afterwards.
        """
        pass

    @abstractmethod
    async def transaction(
        self,
        stores: Sequence[str],
        mode: str,
        body: Callable[[TransactionView], Awaitable[T]],
    ) -> T:
        """
        Run body against an isolated view of the given stores.

        Args:
            stores: Store names the body may touch
            mode: READONLY or READWRITE
            body: Coroutine function receiving the view

        Returns:
            Whatever body returns

        Raises:
            Whatever body raises, unchanged; nothing is committed
            TransactionFailedError: If the commit itself fails
        """
        pass

    async def get(self, store: str, record_id: int) -> Optional[Record]:
        """Read one record outside any transaction."""
        return await self.transaction([store], READONLY, lambda view: view.get(store, record_id))

    async def require(self, store: str, record_id: int) -> Record:
        """
        Read one record, failing if it does not exist.

        Raises:
            NotFoundError: If the record is absent
        """
        record = await self.get(store, record_id)
        if record is None:
            raise NotFoundError(f"No record {record_id} in {store}")
        return record

    async def put(self, store: str, record: Record) -> int:
        """Insert or replace one record in its own transaction."""
        return await self.transaction([store], READWRITE, lambda view: view.put(store, record))

    async def delete(self, store: str, record_id: int) -> bool:
        """Delete one record in its own transaction."""
        return await self.transaction([store], READWRITE, lambda view: view.delete(store, record_id))

    async def scan(
        self,
        store: str,
        predicate: Optional[Predicate] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> list[Record]:
        """Read matching records outside any transaction."""
        return await self.transaction(
            [store], READONLY, lambda view: view.scan(store, predicate, cancel)
        )


class BackupVaultInterface(ABC):
    """
    Abstract interface for backup storage.

    A flat key/value space of JSON documents, kept apart from the
    ledger store so an emergency reset cannot take the backups with it.
    """

    @abstractmethod
    async def save(self, key: str, document: Record) -> None:
        """
        Store a document under key, replacing any previous one.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def load(self, key: str) -> Optional[Record]:
        """
        Load a document.

        Returns:
            The document if found, None otherwise

        Raises:
            MalformedError: If the stored document cannot be parsed
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a document.

        Returns:
            True if a document was removed
        """
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """
        List stored keys starting with prefix, sorted.
        """
        pass


__all__ = [
    "ACCOUNTS",
    "AUDIT_LOGS",
    "BackupVaultInterface",
    "CATEGORIES",
    "CREDIT_CARDS",
    "FIXED_EXPENSES",
    "NotFoundError",
    "ObjectStoreInterface",
    "PAYCHECK_SETTINGS",
    "PENDING_TRANSACTIONS",
    "READONLY",
    "READWRITE",
    "Record",
    "STORE_NAMES",
    "STORE_SCHEMA_VERSION",
    "SchemaTooNewError",
    "StorageError",
    "TransactionFailedError",
    "TransactionView",
    "USER_PREFERENCES",
]
