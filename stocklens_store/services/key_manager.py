"""
Key Manager - owner of the device encryption key.

The key is generated once per install, persisted in the secure store and then
served from memory for the rest of the process. Every consumer (field
encryption, file encryption) receives the key from the single KeyManager
instance owned by the DataLayer.

There is no rotation: if the stored key is lost or cleared, anything
encrypted with it can no longer be read.
"""
import asyncio
import logging
from typing import Optional

from ..errors import KeyStoreError
from ..utils.crypto import generate_key
from .secure_store import SecureStore

logger = logging.getLogger(__name__)

KEY_NAME = "stocklens_encryption_key_v1"


class KeyManager:
    def __init__(self, store: SecureStore, key_name: str = KEY_NAME):
        self.store = store
        self.key_name = key_name
        self._key: Optional[str] = None
        self._lock = asyncio.Lock()

    async def get_or_create_key(self) -> str:
        """
        Return the device key, creating and persisting it on first use.

        Concurrent first callers are serialized on a lock; late callers find
        the key already cached and never generate a second one.
        """
        if self._key is not None:
            return self._key

        async with self._lock:
            if self._key is not None:
                return self._key

            key = await self.store.get_item(self.key_name)
            if not key:
                key = generate_key()
                await self.store.set_item(self.key_name, key)
                logger.info("Generated new device encryption key")

            self._key = key
            return key

    async def clear_key(self) -> None:
        """
        Delete the key from the secure store and forget the cached copy.
        Previously encrypted data becomes unreadable.
        """
        async with self._lock:
            try:
                await self.store.delete_item(self.key_name)
            except KeyStoreError:
                logger.error("Failed to delete device encryption key")
                raise
            self._key = None
            logger.warning("Device encryption key cleared")
