import asyncio
import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from stocklens_store.config import Config
from stocklens_store.container import DataLayer


async def reset_receipts(user_id: str):
    async with DataLayer(Config.from_env()) as layer:
        receipts = await layer.data.receipts.get_by_user_id(user_id)
        print(f"Found {len(receipts)} receipts for {user_id}.")
        if not receipts:
            return

        confirm = input("Are you sure? (y/N): ")
        if confirm.lower() != 'y':
            print("Cancelled.")
            return

        await layer.data.receipts.delete_all(user_id)
        print("All receipt records deleted successfully.")
        print("Encrypted image files are left in place; remove the encrypted_images directory to delete them.")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/reset_receipts.py <user_id>")
        sys.exit(1)

    print("WARNING: This will delete all receipts for this user from the local database.")
    try:
        asyncio.run(reset_receipts(sys.argv[1]))
    except KeyboardInterrupt:
        print("\nCancelled.")
    except Exception as e:
        print(f"Error: {e}")
