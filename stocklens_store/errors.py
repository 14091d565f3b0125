class StoreError(Exception):
    """Base class for every error raised by the data layer."""


class KeyStoreError(StoreError):
    """The secure key store could not be read or written."""


class IntegrityError(StoreError):
    """A payload failed authentication (corrupted data or wrong key)."""


class StorageError(StoreError):
    """The relational engine rejected a statement or failed on I/O."""

    def __init__(self, message: str, statement: str = None):
        super().__init__(message)
        self.statement = statement

    def is_unique_violation(self, table: str, column: str) -> bool:
        # sqlite reports e.g. "UNIQUE constraint failed: users.email"
        message = str(self)
        if "UNIQUE constraint failed" not in message:
            return False
        failed = message.split("UNIQUE constraint failed:", 1)[1].splitlines()[0]
        columns = [c.strip() for c in failed.split(",")]
        return f"{table}.{column}" in columns


class MarketDataError(StoreError):
    """Fetching or parsing remote market data failed."""


class CodecError(StoreError):
    """An image file could not be encrypted or decrypted."""
