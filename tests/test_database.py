import pytest

from stocklens_store.database import RecordStore
from stocklens_store.errors import StorageError
from stocklens_store.services.data_service import DataService
from stocklens_store.services.event_bus import ChangeBus

LEGACY_RECEIPTS = """
CREATE TABLE receipts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id TEXT NOT NULL,
  image_uri TEXT,
  total_amount REAL,
  date_scanned DATETIME DEFAULT CURRENT_TIMESTAMP,
  synced INTEGER DEFAULT 0
)
"""


async def _columns(store, table):
    rows = await store.execute_query(f"PRAGMA table_info({table})")
    return {row["name"] for row in rows}


class TestRecordStore:

    async def test_schema_creates_every_table(self, store):
        rows = await store.execute_query("SELECT name FROM sqlite_master WHERE type = 'table'")
        names = {row["name"] for row in rows}
        assert {"users", "receipts", "user_settings", "market_cache", "auth_state"} <= names

    async def test_schema_creates_receipt_indexes(self, store):
        rows = await store.execute_query("SELECT name FROM sqlite_master WHERE type = 'index'")
        names = {row["name"] for row in rows}
        assert {"idx_receipts_user_id_synced", "idx_receipts_date_scanned"} <= names

    async def test_init_schema_is_idempotent(self, store):
        await store.init_schema()
        await store.init_schema()
        assert "ocr_data" in await _columns(store, "receipts")

    async def test_insert_returns_new_row_id(self, store):
        first = await store.execute_non_query(
            "INSERT INTO users (uid, email) VALUES (:uid, :email)", {"uid": "u-1", "email": "one@example.com"}
        )
        second = await store.execute_non_query(
            "INSERT INTO users (uid, email) VALUES (:uid, :email)", {"uid": "u-2", "email": "two@example.com"}
        )
        assert second == first + 1

    async def test_update_returns_affected_rows(self, store):
        for _ in range(3):
            await store.execute_non_query(
                "INSERT INTO receipts (user_id, synced) VALUES (:user_id, 0)", {"user_id": "u-1"}
            )
        changed = await store.execute_non_query(
            "UPDATE receipts SET synced = 1 WHERE user_id = :user_id", {"user_id": "u-1"}
        )
        assert changed == 3
        assert await store.execute_non_query("DELETE FROM receipts WHERE user_id = 'nobody'") == 0

    async def test_query_returns_rows_as_dicts(self, store):
        await store.execute_non_query("INSERT INTO auth_state (key, value) VALUES ('token', 'abc')")
        assert await store.execute_query("SELECT key, value FROM auth_state") == [{"key": "token", "value": "abc"}]

    async def test_unique_violation_is_reported(self, store):
        statement = "INSERT INTO users (uid, email) VALUES (:uid, :email)"
        await store.execute_non_query(statement, {"uid": "u-1", "email": "one@example.com"})
        with pytest.raises(StorageError) as exc_info:
            await store.execute_non_query(statement, {"uid": "u-1", "email": "other@example.com"})
        assert exc_info.value.is_unique_violation("users", "uid")
        assert not exc_info.value.is_unique_violation("users", "email")
        assert exc_info.value.statement == statement

    async def test_malformed_statement_raises_storage_error(self, store):
        with pytest.raises(StorageError):
            await store.execute_query("SELEC * FROM receipts")
        with pytest.raises(StorageError):
            await store.execute_non_query("UPDATE no_such_table SET x = 1")

    def test_requires_url_or_engine(self):
        with pytest.raises(ValueError):
            RecordStore()


class TestAdditiveMigration:
    """Databases created before ocr_data existed are upgraded in place."""

    async def test_missing_column_is_added_and_rows_survive(self, tmp_path, key_manager):
        store = RecordStore(f"sqlite+aiosqlite:///{tmp_path / 'legacy.db'}")
        try:
            await store.execute_non_query(LEGACY_RECEIPTS)
            await store.execute_non_query(
                "INSERT INTO receipts (user_id, image_uri, total_amount) VALUES ('u-1', 'file:///a.jpg', 12.5)"
            )
            assert "ocr_data" not in await _columns(store, "receipts")

            await store.init_schema()

            assert "ocr_data" in await _columns(store, "receipts")
            receipts = await DataService(store, key_manager, ChangeBus()).receipts.get_by_user_id("u-1")
            assert len(receipts) == 1
            assert receipts[0].total_amount == 12.5
            assert receipts[0].ocr_data is None
            assert receipts[0].image_uri == "file:///a.jpg"
        finally:
            await store.dispose()
