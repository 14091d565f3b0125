import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

import filelock
from starlette.concurrency import run_in_threadpool

from ..errors import KeyStoreError

logger = logging.getLogger(__name__)


class SecureStore:
    """
    Get/set/delete key-value interface for device secrets.

    Values are small strings (keys, tokens) addressed by name. Implementations
    must raise KeyStoreError on any read or write failure.
    """

    async def get_item(self, name: str) -> Optional[str]:
        raise NotImplementedError

    async def set_item(self, name: str, value: str) -> None:
        raise NotImplementedError

    async def delete_item(self, name: str) -> None:
        raise NotImplementedError


class FileSecureStore(SecureStore):
    """
    Secrets kept in a JSON file readable only by the current user.

    Writes go through a lock file so two processes sharing the data directory
    never interleave a read-modify-write.
    """

    def __init__(self, path, lock_timeout: float = 10):
        self.path = Path(path)
        self._lock = filelock.FileLock(str(self.path) + ".lock", timeout=lock_timeout)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(data, dict):
            raise ValueError(f"{self.path.name} does not hold a JSON object")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        try:
            os.chmod(tmp, 0o600)
        except OSError:
            logger.warning("Could not restrict permissions on %s; restrict them manually", self.path.name)
        os.replace(tmp, self.path)

    def _locked(self) -> filelock.FileLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return self._lock

    def _get(self, name: str) -> Optional[str]:
        with self._locked():
            return self._read_all().get(name)

    def _set(self, name: str, value: str) -> None:
        with self._locked():
            data = self._read_all()
            data[name] = value
            self._write_all(data)

    def _delete(self, name: str) -> None:
        with self._locked():
            data = self._read_all()
            if data.pop(name, None) is not None:
                self._write_all(data)

    async def get_item(self, name: str) -> Optional[str]:
        try:
            return await run_in_threadpool(self._get, name)
        except (OSError, ValueError, filelock.Timeout) as e:
            raise KeyStoreError(f"Failed to read '{name}' from secure store: {e}") from e

    async def set_item(self, name: str, value: str) -> None:
        try:
            await run_in_threadpool(self._set, name, value)
        except (OSError, ValueError, filelock.Timeout) as e:
            raise KeyStoreError(f"Failed to write '{name}' to secure store: {e}") from e

    async def delete_item(self, name: str) -> None:
        try:
            await run_in_threadpool(self._delete, name)
        except (OSError, ValueError, filelock.Timeout) as e:
            raise KeyStoreError(f"Failed to delete '{name}' from secure store: {e}") from e
