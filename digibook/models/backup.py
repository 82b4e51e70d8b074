"""
Backup Models for Digibook

A backup is a checksummed snapshot of every store, saved under a key of
the form digibook_backup_<reason>_<timestamp>.
"""

from datetime import datetime
from typing import Any, Union

from pydantic import Field

from digibook.models.ledger import LedgerModel


class BackupRecord(LedgerModel):
    """
    A stored backup.

    CRITICAL: checksum is the SHA-256 of the canonical JSON of the
    uncompressed snapshot. Restores refuse any record whose payload does
    not hash back to it.
    """

    key: str = Field(..., description="Vault key")
    data: Union[str, dict[str, Any]] = Field(
        ...,
        description="Snapshot, or base64 zlib of its canonical JSON when compressed"
    )
    checksum: str = Field(..., min_length=64, max_length=64)
    reason: str = Field(..., min_length=1, max_length=50)
    timestamp: datetime
    version: int = Field(..., ge=1)
    compressed: bool = False
    size: int = Field(..., ge=0, description="Stored payload size in bytes")
    original_size: int = Field(..., ge=0, description="Canonical JSON size in bytes")

    @property
    def compression_ratio(self) -> float:
        if not self.original_size:
            return 1.0
        return self.size / self.original_size
