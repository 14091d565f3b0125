import logging
from typing import Optional

import httpx

from .config import Config
from .database import RecordStore
from .services.data_service import DataService
from .services.event_bus import ChangeBus
from .services.key_manager import KeyManager
from .services.market_cache import MarketCache
from .services.secure_store import FileSecureStore, SecureStore
from .utils.file_crypto import FileCodec

logger = logging.getLogger(__name__)


class DataLayer:
    """
    Owns one instance of every component and wires them together.

    Build one per process (or per test) and pass it by reference; nothing in
    the package keeps module-level state.
    """

    def __init__(self, config: Config, secure_store: Optional[SecureStore] = None,
                 http_client: Optional[httpx.AsyncClient] = None, clock=None):
        self.config = config
        self.bus = ChangeBus()
        self.key_manager = KeyManager(secure_store or FileSecureStore(config.key_store_path))
        self.store = RecordStore(config.database_url)
        self.files = FileCodec(self.key_manager, config.encrypted_dir, config.cache_dir)
        self.data = DataService(self.store, self.key_manager, self.bus)
        self.market = MarketCache(self.store, self.bus, config.alpha_vantage_key,
                                  client=http_client, clock=clock)

    async def start(self) -> "DataLayer":
        await self.store.init_schema()
        return self

    async def close(self) -> None:
        self.bus.clear()
        await self.store.dispose()
        logger.info("Data layer closed")

    async def __aenter__(self) -> "DataLayer":
        return await self.start()

    async def __aexit__(self, *exc) -> None:
        await self.close()
