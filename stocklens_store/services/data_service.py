"""
Data Service - domain CRUD over the record store.

Sensitive columns (see models.SENSITIVE_COLUMNS) are encrypted with the
device key before a statement is built and decrypted on the way out. Values
that were written before encryption was introduced are passed through
unchanged on read.

Every successful write is followed by a ChangeBus event so list views can
re-query instead of polling.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from ..database import RecordStore
from ..errors import StorageError
from ..models import SENSITIVE_COLUMNS
from ..records import Receipt, UserProfile, UserSettings
from ..utils.crypto import decrypt_or_passthrough, encrypt_text, is_encrypted_payload
from .event_bus import ChangeBus, ReceiptsChanged, SettingsChanged, Topic, UsersChanged
from .key_manager import KeyManager

logger = logging.getLogger(__name__)

RECEIPT_FIELDS = ("user_id", "image_uri", "total_amount", "date_scanned", "ocr_data", "synced")


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning("Stored total_amount is not a number; dropping it from the record")
        return None


# Matches the text sqlite writes for CURRENT_TIMESTAMP.
SQL_TIMESTAMP = "%Y-%m-%d %H:%M:%S"


def _sql_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(SQL_TIMESTAMP)


def _now_sql() -> str:
    return _sql_timestamp(datetime.now(timezone.utc))


def _bindable(value):
    return _sql_timestamp(value) if isinstance(value, datetime) else value


class _EncryptingService:
    table: str = ""

    def __init__(self, store: RecordStore, key_manager: KeyManager, bus: ChangeBus):
        self.store = store
        self.key_manager = key_manager
        self.bus = bus

    @property
    def sensitive(self) -> frozenset:
        return SENSITIVE_COLUMNS.get(self.table, frozenset())

    async def _encrypt_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        columns = [c for c in self.sensitive.intersection(fields) if fields[c] is not None]
        if not columns:
            return fields
        key = await self.key_manager.get_or_create_key()
        out = dict(fields)
        for column in columns:
            value = out[column]
            if isinstance(value, float):
                value = Decimal(str(value))
            out[column] = encrypt_text(str(value), key)
        return out

    async def _decrypt_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        encrypted = [c for c in self.sensitive.intersection(row) if is_encrypted_payload(row[c])]
        if not encrypted:
            return row
        key = await self.key_manager.get_or_create_key()
        out = dict(row)
        for column in encrypted:
            out[column] = decrypt_or_passthrough(out[column], key)
        return out


class ReceiptService(_EncryptingService):
    table = "receipts"

    async def create(self, fields: Mapping[str, Any]) -> int:
        if not fields.get("user_id"):
            raise ValueError("user_id is required to create a receipt")

        values = {k: _bindable(fields.get(k)) for k in RECEIPT_FIELDS}
        if values["synced"] is None:
            values["synced"] = 0
        values = {k: v for k, v in values.items() if v is not None}
        values = await self._encrypt_fields(values)

        columns = ", ".join(values)
        placeholders = ", ".join(f":{k}" for k in values)
        receipt_id = await self.store.execute_non_query(
            f"INSERT INTO receipts ({columns}) VALUES ({placeholders})", values
        )
        self.bus.emit(Topic.RECEIPTS_CHANGED, ReceiptsChanged(receipt_id=receipt_id, action="created"))
        return receipt_id

    async def update(self, receipt_id: int, fields: Mapping[str, Any]) -> None:
        """
        Write the given columns only. A key that is present with a None value
        sets the column to NULL; absent keys are left untouched.
        """
        values = {k: _bindable(v) for k, v in fields.items() if k in RECEIPT_FIELDS}
        if not values:
            return
        values = await self._encrypt_fields(values)

        set_clause = ", ".join(f"{k} = :{k}" for k in values)
        params = dict(values, id=receipt_id)
        await self.store.execute_non_query(f"UPDATE receipts SET {set_clause} WHERE id = :id", params)
        self.bus.emit(Topic.RECEIPTS_CHANGED, ReceiptsChanged(receipt_id=receipt_id, action="updated"))

    async def delete(self, receipt_id: int) -> None:
        await self.store.execute_non_query("DELETE FROM receipts WHERE id = :id", {"id": receipt_id})
        self.bus.emit(Topic.RECEIPTS_CHANGED, ReceiptsChanged(receipt_id=receipt_id, action="deleted"))

    async def delete_all(self, user_id: str) -> None:
        await self.store.execute_non_query("DELETE FROM receipts WHERE user_id = :user_id", {"user_id": user_id})
        self.bus.emit(Topic.RECEIPTS_CHANGED, ReceiptsChanged(user_id=user_id, action="cleared"))

    async def get_by_user_id(self, user_id: str) -> List[Receipt]:
        rows = await self.store.execute_query(
            "SELECT * FROM receipts WHERE user_id = :user_id ORDER BY date_scanned DESC, id DESC",
            {"user_id": user_id},
        )
        return [await self._to_receipt(row) for row in rows]

    async def get_by_id(self, receipt_id: int) -> Optional[Receipt]:
        rows = await self.store.execute_query("SELECT * FROM receipts WHERE id = :id", {"id": receipt_id})
        return await self._to_receipt(rows[0]) if rows else None

    async def get_unsynced(self, user_id: str) -> List[Receipt]:
        rows = await self.store.execute_query(
            "SELECT * FROM receipts WHERE user_id = :user_id AND synced = 0", {"user_id": user_id}
        )
        return [await self._to_receipt(row) for row in rows]

    async def mark_as_synced(self, receipt_id: int) -> None:
        await self.store.execute_non_query("UPDATE receipts SET synced = 1 WHERE id = :id", {"id": receipt_id})
        self.bus.emit(Topic.RECEIPTS_CHANGED, ReceiptsChanged(receipt_id=receipt_id, action="synced"))

    async def _to_receipt(self, row: Dict[str, Any]) -> Receipt:
        row = await self._decrypt_row(row)
        return Receipt(
            id=row["id"],
            user_id=row["user_id"],
            image_uri=row.get("image_uri"),
            total_amount=_to_decimal(row.get("total_amount")),
            date_scanned=None if row.get("date_scanned") is None else str(row["date_scanned"]),
            ocr_data=row.get("ocr_data"),
            synced=row.get("synced") or 0,
        )


class UserService(_EncryptingService):
    table = "users"

    async def upsert(self, uid: str, full_name: Optional[str], email: str) -> int:
        """
        Create or refresh the profile for an external identity.

        The uid is authoritative. If the insert trips the unique email
        constraint, the existing row for this uid is refreshed instead. When
        no row exists for the uid, the email belongs to someone else and the
        original error is raised rather than touching their row.
        """
        timestamp = _now_sql()
        params = {"uid": uid, "full_name": full_name, "email": email, "last_login": timestamp}
        try:
            await self.store.execute_non_query(
                """
                INSERT INTO users (uid, full_name, email, last_login)
                VALUES (:uid, :full_name, :email, :last_login)
                ON CONFLICT(uid) DO UPDATE SET
                  full_name = excluded.full_name,
                  email = excluded.email,
                  last_login = excluded.last_login
                """,
                params,
            )
        except StorageError as e:
            if not e.is_unique_violation("users", "email"):
                raise
            logger.info("Email already registered; refreshing profile by uid instead")
            changed = await self.store.execute_non_query(
                "UPDATE users SET full_name = :full_name, last_login = :last_login WHERE uid = :uid",
                {"uid": uid, "full_name": full_name, "last_login": timestamp},
            )
            if not changed:
                raise

        user_id = await self._id_for_uid(uid)
        self.bus.emit(Topic.USERS_CHANGED, UsersChanged(uid=uid))
        return user_id

    async def _id_for_uid(self, uid: str) -> int:
        rows = await self.store.execute_query("SELECT id FROM users WHERE uid = :uid", {"uid": uid})
        if not rows:
            raise StorageError("No user row for uid after upsert")
        return rows[0]["id"]

    async def get_by_uid(self, uid: str) -> Optional[UserProfile]:
        rows = await self.store.execute_query("SELECT * FROM users WHERE uid = :uid", {"uid": uid})
        if not rows:
            return None
        row = rows[0]
        return UserProfile(
            id=row["id"],
            uid=row["uid"],
            email=row["email"],
            full_name=row.get("full_name"),
            created_at=None if row.get("created_at") is None else str(row["created_at"]),
            last_login=None if row.get("last_login") is None else str(row["last_login"]),
        )

    async def delete_by_uid(self, uid: str) -> None:
        await self.store.execute_non_query("DELETE FROM users WHERE uid = :uid", {"uid": uid})
        self.bus.emit(Topic.USERS_CHANGED, UsersChanged(uid=uid, action="deleted"))


class UserSettingsService(_EncryptingService):
    table = "user_settings"

    async def upsert(self, settings: Mapping[str, Any]) -> None:
        user_id = settings.get("user_id")
        if not user_id:
            raise ValueError("user_id is required to save settings")
        values = {
            "user_id": user_id,
            "theme": settings.get("theme") or "light",
            "auto_backup": int(bool(settings.get("auto_backup") or 0)),
        }
        values = await self._encrypt_fields(values)
        await self.store.execute_non_query(
            "INSERT OR REPLACE INTO user_settings (user_id, theme, auto_backup) "
            "VALUES (:user_id, :theme, :auto_backup)",
            values,
        )
        self.bus.emit(Topic.SETTINGS_CHANGED, SettingsChanged(user_id=user_id))

    async def get_by_user_id(self, user_id: str) -> Optional[UserSettings]:
        rows = await self.store.execute_query(
            "SELECT * FROM user_settings WHERE user_id = :user_id", {"user_id": user_id}
        )
        if not rows:
            return None
        row = await self._decrypt_row(rows[0])
        return UserSettings(
            id=row["id"],
            user_id=row["user_id"],
            theme=row.get("theme") or "light",
            auto_backup=row.get("auto_backup") or 0,
        )


class DataService:
    def __init__(self, store: RecordStore, key_manager: KeyManager, bus: ChangeBus):
        self.receipts = ReceiptService(store, key_manager, bus)
        self.users = UserService(store, key_manager, bus)
        self.settings = UserSettingsService(store, key_manager, bus)
