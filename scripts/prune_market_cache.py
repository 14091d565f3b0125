import asyncio
import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from stocklens_store.config import Config
from stocklens_store.container import DataLayer


async def prune(days: int):
    async with DataLayer(Config.from_env()) as layer:
        removed = await layer.market.prune_older_than(days)
        print(f"Success! Deleted {removed} cached market series older than {days} days.")


if __name__ == "__main__":
    days = 30
    if len(sys.argv) > 1:
        try:
            days = int(sys.argv[1])
        except ValueError:
            print("Invalid number of days.")
            exit(1)

    try:
        asyncio.run(prune(days))
    except Exception as e:
        print(f"Error pruning market cache: {e}")
