"""
Storage Services Package

Provides the abstract object store and backup vault interfaces plus
concrete implementations: in-memory (tests, ephemeral sessions) and
JSON file / directory backed (local persistence).
"""

from digibook.services.storage.interface import (
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
    STORE_SCHEMA_VERSION,
    USER_PREFERENCES,
    BackupVaultInterface,
    NotFoundError,
    ObjectStoreInterface,
    SchemaTooNewError,
    StorageError,
    TransactionFailedError,
    TransactionView,
)
from digibook.services.storage.memory import InMemoryObjectStore
from digibook.services.storage.json_file import JsonFileObjectStore
from digibook.services.storage.vault import DirectoryBackupVault, InMemoryBackupVault

__all__ = [
    # Store names
    "ACCOUNTS",
    "AUDIT_LOGS",
    "CATEGORIES",
    "CREDIT_CARDS",
    "FIXED_EXPENSES",
    "PAYCHECK_SETTINGS",
    "PENDING_TRANSACTIONS",
    "STORE_NAMES",
    "USER_PREFERENCES",
    # Interfaces
    "BackupVaultInterface",
    "ObjectStoreInterface",
    "READONLY",
    "READWRITE",
    "STORE_SCHEMA_VERSION",
    "TransactionView",
    # Exceptions
    "NotFoundError",
    "SchemaTooNewError",
    "StorageError",
    "TransactionFailedError",
    # Implementations
    "DirectoryBackupVault",
    "InMemoryBackupVault",
    "InMemoryObjectStore",
    "JsonFileObjectStore",
]
