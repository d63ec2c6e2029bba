"""
Shared fixtures.

Environment variables are set before anything imports canteen, so the
cached settings never point at a real data directory or Redis server.
"""

import os
import tempfile

os.environ.setdefault("ENV_MODE", "development")
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["DATA_DIRECTORY"] = tempfile.mkdtemp(prefix="canteen-tests-")
os.environ["DEBUG"] = "false"

import pytest
import pytest_asyncio

from canteen.core.config import get_settings
from canteen.services.cart import CartStore
from canteen.services.menu import MenuStore
from canteen.services.storage import MockKeyValueStore, reset_key_value_store


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reload settings around every test so monkeypatched env vars apply."""
    get_settings.cache_clear()
    reset_key_value_store()
    yield
    get_settings.cache_clear()
    reset_key_value_store()


@pytest.fixture
def kv_store() -> MockKeyValueStore:
    return MockKeyValueStore()


@pytest_asyncio.fixture
async def menu_store(kv_store) -> MenuStore:
    store = MenuStore(kv_store)
    await store.start()
    return store


@pytest.fixture
def cart() -> CartStore:
    return CartStore()


@pytest.fixture
def pizza() -> dict:
    return {"item_id": "1", "name": "Pizza", "unit_price": "8.99"}
