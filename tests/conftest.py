# tests/conftest.py
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from stocklens_store.config import Config
from stocklens_store.database import RecordStore
from stocklens_store.errors import KeyStoreError
from stocklens_store.services.data_service import DataService
from stocklens_store.services.event_bus import ChangeBus
from stocklens_store.services.key_manager import KeyManager
from stocklens_store.services.secure_store import SecureStore


class MemorySecureStore(SecureStore):
    """
    Dict-backed secure store for tests.
    Yields to the event loop on every call so concurrent callers interleave.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None, fail: bool = False):
        self.items: Dict[str, str] = dict(initial or {})
        self.fail = fail
        self.set_calls: List[tuple] = []

    async def get_item(self, name: str) -> Optional[str]:
        await asyncio.sleep(0)
        if self.fail:
            raise KeyStoreError("keystore unavailable")
        return self.items.get(name)

    async def set_item(self, name: str, value: str) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise KeyStoreError("keystore unavailable")
        self.set_calls.append((name, value))
        self.items[name] = value

    async def delete_item(self, name: str) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise KeyStoreError("keystore unavailable")
        self.items.pop(name, None)


class RecordingStore(RecordStore):
    """RecordStore that remembers every non-query it ran."""

    def __init__(self, url: str):
        super().__init__(url)
        self.non_queries: List[tuple] = []

    async def execute_non_query(self, statement, params=None):
        self.non_queries.append((statement, dict(params or {})))
        return await super().execute_non_query(statement, params)


class FakeClock:
    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def config(tmp_path) -> Config:
    return Config.for_data_dir(tmp_path / "data", alpha_vantage_key="test-api-key")


@pytest_asyncio.fixture
async def store(config):
    store = RecordingStore(config.database_url)
    await store.init_schema()
    yield store
    await store.dispose()


@pytest.fixture
def secure_store() -> MemorySecureStore:
    return MemorySecureStore()


@pytest.fixture
def key_manager(secure_store) -> KeyManager:
    return KeyManager(secure_store)


@pytest.fixture
def bus() -> ChangeBus:
    return ChangeBus()


@pytest.fixture
def data_service(store, key_manager, bus) -> DataService:
    return DataService(store, key_manager, bus)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def record_events(bus: ChangeBus, topic) -> list:
    """Subscribe a list-appending handler and return the list."""
    events = []
    bus.subscribe(topic, events.append)
    return events
