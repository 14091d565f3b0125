import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base

from .errors import StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()

_INSERT_VERBS = ("INSERT", "REPLACE")


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return
    if parsed.database and parsed.database != ":memory:":
        Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _add_missing_columns(sync_conn) -> List[str]:
    """Additive migration: ALTER TABLE ADD COLUMN for model columns a table lacks."""
    inspector = inspect(sync_conn)
    added = []
    for table in Base.metadata.sorted_tables:
        existing = {c["name"] for c in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in existing:
                continue
            ddl = f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column.type.compile(dialect=sync_conn.dialect)}"
            default = column.server_default.arg if column.server_default is not None else None
            if isinstance(default, str):
                ddl += f" DEFAULT '{default}'"
            sync_conn.execute(text(ddl))
            added.append(f"{table.name}.{column.name}")
    return added


class RecordStore:
    """
    Parameterized statement execution against the embedded database.

    Statements use named bind parameters (":name"). Each call runs in its own
    transaction. Engine failures surface as StorageError.
    """

    def __init__(self, url: str = None, engine: Optional[AsyncEngine] = None, echo: bool = False):
        if engine is None:
            if not url:
                raise ValueError("RecordStore needs a database url or an engine")
            _ensure_sqlite_dir(url)
            engine = create_async_engine(url, echo=echo)
        self.engine = engine

    async def init_schema(self) -> None:
        # Registers the tables on Base.metadata.
        from . import models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                added = await conn.run_sync(_add_missing_columns)
        except SQLAlchemyError as e:
            logger.error("Database initialization failed: %s", e)
            raise StorageError(f"Database initialization failed: {e}") from e
        for name in added:
            logger.info("Added missing column %s", name)
        logger.info("Database initialized")

    async def execute_query(self, statement: str, params: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(statement), params or {})
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            logger.error("Query error: %s", _describe(e))
            raise StorageError(_describe(e), statement) from e

    async def execute_non_query(self, statement: str, params: Dict[str, Any] = None) -> int:
        """
        Run an INSERT/UPDATE/DELETE.

        Returns the new row id for INSERT/REPLACE statements, the number of
        affected rows otherwise.
        """
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(statement), params or {})
        except SQLAlchemyError as e:
            logger.error("Non-query error: %s", _describe(e))
            raise StorageError(_describe(e), statement) from e

        if statement.lstrip().upper().startswith(_INSERT_VERBS):
            return result.lastrowid
        return result.rowcount

    async def dispose(self) -> None:
        await self.engine.dispose()


def _describe(error: SQLAlchemyError) -> str:
    # The DBAPI message carries the constraint name without SQLAlchemy's SQL echo.
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)
