import asyncio
import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from stocklens_store.config import Config
from stocklens_store.container import DataLayer


async def deploy():
    config = Config.from_env()
    print(f"Initializing schema at: {config.database_url.split('///')[-1]}")
    async with DataLayer(config):
        print("✅ Schema created/verified.")


if __name__ == "__main__":
    try:
        asyncio.run(deploy())
    except Exception as e:
        import traceback
        traceback.print_exc()
        print(f"Initialization failed: {e}")
        sys.exit(1)
