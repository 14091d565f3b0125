from sqlalchemy import Column, Integer, String, Text, DateTime, Index, UniqueConstraint
from sqlalchemy.sql import func
from .database import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String, unique=True, nullable=False)
    full_name = Column(String, nullable=True)
    email = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_login = Column(DateTime(timezone=True), nullable=True)


class Receipt(Base):
    __tablename__ = "receipts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)
    image_uri = Column(String, nullable=True)
    # Encrypted payload text; older rows may hold a plain REAL.
    total_amount = Column(Text, nullable=True)
    date_scanned = Column(DateTime(timezone=True), server_default=func.now())
    ocr_data = Column(Text, nullable=True)
    synced = Column(Integer, server_default="0")

    __table_args__ = (
        Index("idx_receipts_user_id_synced", "user_id", "synced"),
        Index("idx_receipts_date_scanned", "date_scanned"),
    )


class UserSettings(Base):
    __tablename__ = "user_settings"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, unique=True, nullable=False)
    theme = Column(Text, server_default="light")
    auto_backup = Column(Integer, server_default="0")


class MarketCacheEntry(Base):
    __tablename__ = "market_cache"
    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False)
    granularity = Column(String, nullable=False)
    payload = Column(Text, nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("symbol", "granularity", name="uq_market_cache_symbol_granularity"),
    )


class AuthState(Base):
    __tablename__ = "auth_state"
    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)


# Columns stored as encrypted payloads, per table.
SENSITIVE_COLUMNS = {
    "receipts": frozenset({"total_amount", "ocr_data"}),
    "user_settings": frozenset({"theme"}),
}
