"""
Shared fixtures.

Every test runs against the in-memory store and vault; nothing touches
the filesystem unless a test asks for tmp_path.
"""

import pytest
import pytest_asyncio

from digibook.orchestrator import DigibookApp
from digibook.services.storage import InMemoryBackupVault, InMemoryObjectStore

from factories import TODAY


@pytest_asyncio.fixture
async def store():
    store = InMemoryObjectStore()
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def vault():
    return InMemoryBackupVault()


@pytest_asyncio.fixture
async def app():
    app = DigibookApp(InMemoryObjectStore(), InMemoryBackupVault(), today=lambda: TODAY)
    await app.open()
    yield app
    await app.close()
