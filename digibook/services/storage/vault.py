"""
Backup Vaults

Key/value homes for backup documents. The directory vault writes one
<key>.json file per backup; the in-memory vault is for tests and for
sessions that do not persist anything. Directory I/O runs in a worker
thread so slow disks and retry backoff never stall the event loop.
"""

import asyncio
import copy
import json
import os
import re
from pathlib import Path
from typing import Optional

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from digibook.errors import MalformedError, StorageError
from digibook.services.storage.interface import BackupVaultInterface, Record


logger = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_key(key: str) -> str:
    if not _SAFE_KEY.match(key):
        raise StorageError(f"Invalid backup key: {key!r}")
    return key


class InMemoryBackupVault(BackupVaultInterface):
    """Backup vault held in a dict."""

    def __init__(self):
        self._documents: dict[str, Record] = {}

    async def save(self, key: str, document: Record) -> None:
        self._documents[_check_key(key)] = copy.deepcopy(document)

    async def load(self, key: str) -> Optional[Record]:
        document = self._documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    async def delete(self, key: str) -> bool:
        return self._documents.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._documents if key.startswith(prefix))


class DirectoryBackupVault(BackupVaultInterface):
    """Backup vault storing one JSON file per key in a directory."""

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{_check_key(key)}.json"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    async def _write(self, path: Path, text: str) -> None:
        await asyncio.to_thread(self._replace_file, path, text)

    def _replace_file(self, path: Path, text: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(text, encoding="utf-8")
        os.replace(temp_path, path)

    async def save(self, key: str, document: Record) -> None:
        try:
            await self._write(self._path(key), json.dumps(document, ensure_ascii=False))
        except OSError as e:
            raise StorageError(f"Failed to save backup {key}: {e}") from e

    async def load(self, key: str) -> Optional[Record]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            document = json.loads(await asyncio.to_thread(path.read_text, encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise MalformedError(f"Backup {key} cannot be read: {e}") from e
        if not isinstance(document, dict):
            raise MalformedError(f"Backup {key} is not a JSON object")
        return document

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    async def keys(self, prefix: str = "") -> list[str]:
        if not self._directory.exists():
            return []
        return sorted(
            path.stem
            for path in self._directory.glob("*.json")
            if path.stem.startswith(prefix)
        )
