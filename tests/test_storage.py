"""
Tests for the storage layer

Test strategy:
1. Transaction semantics on the in-memory store
2. Persistence and recovery of the JSON file store
3. Backup vaults
"""

import asyncio
import json
from pathlib import Path

import pytest

from digibook.errors import MalformedError, NotFoundError, SchemaTooNewError, StorageError
from digibook.services.storage import (
    ACCOUNTS,
    FIXED_EXPENSES,
    READONLY,
    READWRITE,
    DirectoryBackupVault,
    InMemoryBackupVault,
    InMemoryObjectStore,
    JsonFileObjectStore,
)


def fail_first_write(monkeypatch):
    """Make the next Path.write_text raise OSError once, then behave normally."""
    original = Path.write_text
    failures = []

    def flaky(self, *args, **kwargs):
        if not failures:
            failures.append(self)
            raise OSError("disk busy")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(Path, "write_text", flaky)
    return failures


async def max_loop_lag(awaitable, interval=0.05):
    """Await `awaitable` while a ticker measures the worst event loop stall."""
    loop = asyncio.get_running_loop()
    lags = [0.0]

    async def ticker():
        while True:
            started = loop.time()
            await asyncio.sleep(interval)
            lags.append(loop.time() - started - interval)

    task = asyncio.create_task(ticker())
    try:
        await awaitable
    finally:
        task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    return max(lags)


class TestInMemoryTransactions:
    """Tests for InMemoryObjectStore transactions."""

    @pytest.mark.asyncio
    async def test_put_assigns_ids(self, store):
        """Test that records without an id get the next one."""
        first = await store.put(ACCOUNTS, {"name": "Checking"})
        second = await store.put(ACCOUNTS, {"name": "Savings"})
        assert (first, second) == (1, 2)
        assert (await store.get(ACCOUNTS, 2))["name"] == "Savings"

    @pytest.mark.asyncio
    async def test_explicit_id_advances_counter(self, store):
        """Test that an explicit id moves the counter past it."""
        await store.put(ACCOUNTS, {"id": 7, "name": "Checking"})
        assert await store.put(ACCOUNTS, {"name": "Savings"}) == 8

    @pytest.mark.asyncio
    async def test_failed_body_commits_nothing(self, store):
        """Test that an exception in the body leaves the store untouched."""
        await store.put(ACCOUNTS, {"name": "Checking", "currentBalance": 100})

        async def body(view):
            record = await view.get(ACCOUNTS, 1)
            record["currentBalance"] = 0
            await view.put(ACCOUNTS, record)
            await view.put(FIXED_EXPENSES, {"name": "Rent"})
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.transaction([ACCOUNTS, FIXED_EXPENSES], READWRITE, body)

        assert (await store.get(ACCOUNTS, 1))["currentBalance"] == 100
        assert await store.scan(FIXED_EXPENSES) == []

    @pytest.mark.asyncio
    async def test_writes_visible_inside_transaction(self, store):
        """Test read-your-writes within one view."""

        async def body(view):
            record_id = await view.put(ACCOUNTS, {"name": "Checking"})
            return await view.get(ACCOUNTS, record_id)

        record = await store.transaction([ACCOUNTS], READWRITE, body)
        assert record["name"] == "Checking"

    @pytest.mark.asyncio
    async def test_readonly_rejects_writes(self, store):
        """Test that a read-only view refuses puts."""
        with pytest.raises(StorageError):
            await store.transaction(
                [ACCOUNTS], READONLY, lambda view: view.put(ACCOUNTS, {"name": "x"}),
            )

    @pytest.mark.asyncio
    async def test_undeclared_store_rejected(self, store):
        """Test that a body can only touch declared stores."""
        with pytest.raises(StorageError):
            await store.transaction(
                [ACCOUNTS], READWRITE, lambda view: view.put(FIXED_EXPENSES, {"name": "x"}),
            )

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        """Test that mutating a read record does not change the store."""
        await store.put(ACCOUNTS, {"name": "Checking"})
        record = await store.get(ACCOUNTS, 1)
        record["name"] = "Changed"
        assert (await store.get(ACCOUNTS, 1))["name"] == "Checking"

    @pytest.mark.asyncio
    async def test_scan_filters_in_id_order(self, store):
        """Test scan ordering and predicates."""
        for name in ("C", "A", "B"):
            await store.put(ACCOUNTS, {"name": name})
        names = [r["name"] for r in await store.scan(ACCOUNTS, lambda r: r["name"] != "A")]
        assert names == ["C", "B"]

    @pytest.mark.asyncio
    async def test_scan_cancel(self, store):
        """Test that a set cancel event aborts the scan."""
        await store.put(ACCOUNTS, {"name": "Checking"})
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(asyncio.CancelledError):
            await store.scan(ACCOUNTS, cancel=cancel)

    @pytest.mark.asyncio
    async def test_clear_resets_ids(self, store):
        """Test that clearing a store restarts its ids."""
        await store.put(ACCOUNTS, {"name": "Checking"})
        await store.put(ACCOUNTS, {"name": "Savings"})
        removed = await store.transaction([ACCOUNTS], READWRITE, lambda view: view.clear(ACCOUNTS))
        assert removed == 2
        assert await store.put(ACCOUNTS, {"name": "New"}) == 1

    @pytest.mark.asyncio
    async def test_require_missing(self, store):
        """Test that require raises NotFound."""
        with pytest.raises(NotFoundError):
            await store.require(ACCOUNTS, 42)

    @pytest.mark.asyncio
    async def test_closed_store_rejects_transactions(self):
        """Test that nothing runs before open()."""
        with pytest.raises(StorageError):
            await InMemoryObjectStore().scan(ACCOUNTS)

    @pytest.mark.asyncio
    async def test_newer_version_refused(self):
        """Test that a store from a newer build will not open."""
        with pytest.raises(SchemaTooNewError):
            await InMemoryObjectStore(version=2).open()

    @pytest.mark.asyncio
    async def test_destroy_empties_everything(self, store):
        """Test that destroy wipes data and requires reopening."""
        await store.put(ACCOUNTS, {"name": "Checking"})
        await store.destroy()
        await store.open()
        assert await store.scan(ACCOUNTS) == []


class TestJsonFileObjectStore:
    """Tests for the JSON file backed store."""

    @pytest.mark.asyncio
    async def test_persists_across_reopen(self, tmp_path):
        """Test that committed records are reloaded from disk."""
        path = tmp_path / "ledger.json"
        store = JsonFileObjectStore(path)
        await store.open()
        await store.put(ACCOUNTS, {"name": "Checking"})
        await store.close()

        reopened = JsonFileObjectStore(path)
        await reopened.open()
        assert (await reopened.get(ACCOUNTS, 1))["name"] == "Checking"
        assert await reopened.put(ACCOUNTS, {"name": "Savings"}) == 2

    @pytest.mark.asyncio
    async def test_missing_file_starts_empty(self, tmp_path):
        """Test that a fresh path opens as an empty ledger."""
        store = JsonFileObjectStore(tmp_path / "new.json")
        await store.open()
        assert await store.scan(ACCOUNTS) == []

    @pytest.mark.asyncio
    async def test_malformed_file(self, tmp_path):
        """Test that invalid JSON is reported as Malformed."""
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(MalformedError):
            await JsonFileObjectStore(path).open()

    @pytest.mark.asyncio
    async def test_newer_file_refused(self, tmp_path):
        """Test that a file written by a newer version is refused."""
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({"version": 2, "stores": {}}), encoding="utf-8")
        with pytest.raises(SchemaTooNewError):
            await JsonFileObjectStore(path).open()

    @pytest.mark.asyncio
    async def test_destroy_removes_file(self, tmp_path):
        """Test that destroy deletes the file."""
        path = tmp_path / "ledger.json"
        store = JsonFileObjectStore(path)
        await store.open()
        await store.put(ACCOUNTS, {"name": "Checking"})
        assert path.exists()
        await store.destroy()
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_write_retry_keeps_event_loop_running(self, tmp_path, monkeypatch):
        """Test that a retried write waits without stalling other coroutines."""
        path = tmp_path / "ledger.json"
        store = JsonFileObjectStore(path)
        await store.open()
        failures = fail_first_write(monkeypatch)

        lag = await max_loop_lag(store.put(ACCOUNTS, {"name": "Checking"}))

        assert len(failures) == 1
        assert lag < 0.5
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["stores"]["accounts"][0]["name"] == "Checking"


class TestBackupVaults:
    """Tests for the backup vaults."""

    @pytest.mark.asyncio
    async def test_memory_vault(self):
        """Test save, load, keys and delete."""
        vault = InMemoryBackupVault()
        await vault.save("digibook_backup_1", {"a": 1})
        await vault.save("other", {"b": 2})
        assert await vault.keys("digibook_backup_") == ["digibook_backup_1"]
        assert await vault.load("digibook_backup_1") == {"a": 1}
        assert await vault.delete("digibook_backup_1")
        assert await vault.load("digibook_backup_1") is None

    @pytest.mark.asyncio
    async def test_rejects_unsafe_keys(self):
        """Test that keys cannot escape the vault."""
        with pytest.raises(StorageError):
            await InMemoryBackupVault().save("../evil", {})

    @pytest.mark.asyncio
    async def test_directory_vault(self, tmp_path):
        """Test the directory vault on disk."""
        vault = DirectoryBackupVault(tmp_path / "backups")
        assert await vault.keys() == []
        await vault.save("digibook_backup_1", {"a": 1})
        assert await vault.keys() == ["digibook_backup_1"]
        assert await vault.load("digibook_backup_1") == {"a": 1}
        assert await vault.load("missing") is None
        assert await vault.delete("digibook_backup_1")
        assert not await vault.delete("digibook_backup_1")

    @pytest.mark.asyncio
    async def test_directory_vault_retry_keeps_event_loop_running(self, tmp_path, monkeypatch):
        """Test that a retried backup save does not block the event loop."""
        vault = DirectoryBackupVault(tmp_path / "backups")
        failures = fail_first_write(monkeypatch)

        lag = await max_loop_lag(vault.save("digibook_backup_1", {"a": 1}))

        assert len(failures) == 1
        assert lag < 0.5
        assert await vault.load("digibook_backup_1") == {"a": 1}

    @pytest.mark.asyncio
    async def test_directory_vault_malformed(self, tmp_path):
        """Test that a corrupt backup file is Malformed."""
        (tmp_path / "broken.json").write_text("[", encoding="utf-8")
        with pytest.raises(MalformedError):
            await DirectoryBackupVault(tmp_path).load("broken")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
