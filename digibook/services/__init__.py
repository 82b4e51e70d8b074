"""Services package."""

from digibook.services.category_cache import CategoryCache
from digibook.services.storage import (
    BackupVaultInterface,
    DirectoryBackupVault,
    InMemoryBackupVault,
    InMemoryObjectStore,
    JsonFileObjectStore,
    NotFoundError,
    ObjectStoreInterface,
    SchemaTooNewError,
    StorageError,
    TransactionFailedError,
    TransactionView,
)

__all__ = [
    # Cache
    "CategoryCache",
    # Storage services
    "BackupVaultInterface",
    "DirectoryBackupVault",
    "InMemoryBackupVault",
    "InMemoryObjectStore",
    "JsonFileObjectStore",
    "NotFoundError",
    "ObjectStoreInterface",
    "SchemaTooNewError",
    "StorageError",
    "TransactionFailedError",
    "TransactionView",
]
