import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=True)


@dataclass
class Config:
    data_dir: Path
    database_url: str
    key_store_path: Path
    encrypted_dir: Path
    cache_dir: Path
    alpha_vantage_key: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        data_dir = Path(os.getenv("STOCKLENS_DATA_DIR", "./.stocklens")).expanduser()
        return cls.for_data_dir(
            data_dir,
            database_url=os.getenv("DATABASE_URL"),
            key_store_path=os.getenv("STOCKLENS_KEY_STORE"),
            encrypted_dir=os.getenv("STOCKLENS_ENCRYPTED_DIR"),
            cache_dir=os.getenv("STOCKLENS_CACHE_DIR"),
            alpha_vantage_key=os.getenv("ALPHA_VANTAGE_KEY", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @classmethod
    def for_data_dir(cls, data_dir, database_url=None, key_store_path=None, encrypted_dir=None,
                     cache_dir=None, alpha_vantage_key: str = "", log_level: str = "INFO") -> "Config":
        data_dir = Path(data_dir)
        return cls(
            data_dir=data_dir,
            database_url=database_url or f"sqlite+aiosqlite:///{data_dir / 'stocklens.db'}",
            key_store_path=Path(key_store_path or data_dir / "secure_store.json"),
            encrypted_dir=Path(encrypted_dir or data_dir / "encrypted_images"),
            cache_dir=Path(cache_dir or data_dir / "cache"),
            alpha_vantage_key=alpha_vantage_key,
            log_level=log_level,
        )
