import base64
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from starlette.concurrency import run_in_threadpool

from ..errors import CodecError
from . import crypto

logger = logging.getLogger(__name__)


@dataclass
class CodecResult:
    """Outcome of a file encrypt/decrypt. Exactly one of path/error is set."""

    path: Optional[str] = None
    error: Optional[CodecError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        if self.error is not None:
            raise self.error
        return self.path

    def unwrap_or(self, fallback: str) -> str:
        return self.path if self.error is None else fallback


class FileCodec:
    """
    Encrypts receipt photos into the encrypted-assets directory and decrypts
    them into a scratch directory for display.

    The try_* methods report failures on the result. encrypt_file and
    decrypt_to_temp are best-effort: on failure they hand back the path
    they were given. Cleaning up decrypted temp files is the caller's job.
    """

    def __init__(self, key_manager, encrypted_dir, temp_dir, temp_suffix: str = ".jpg"):
        self.key_manager = key_manager
        self.encrypted_dir = Path(encrypted_dir)
        self.temp_dir = Path(temp_dir)
        self.temp_suffix = temp_suffix

    async def try_encrypt_file(self, source_path: str) -> CodecResult:
        if not source_path:
            return CodecResult(path=source_path)
        try:
            raw = await run_in_threadpool(Path(source_path).read_bytes)
            key = await self.key_manager.get_or_create_key()
            payload = crypto.encrypt(base64.b64encode(raw), key)
            dest = self.encrypted_dir / f"{uuid.uuid4().hex}.enc"
            await run_in_threadpool(_write_text, dest, payload)
            return CodecResult(path=str(dest))
        except Exception as e:
            logger.warning("Image encryption failed for %s: %s", Path(source_path).name, e)
            return CodecResult(error=CodecError(f"encrypt failed: {e}"))

    async def try_decrypt_to_temp(self, encrypted_path: str) -> CodecResult:
        if not encrypted_path:
            return CodecResult(path=encrypted_path)
        try:
            raw = await run_in_threadpool(Path(encrypted_path).read_bytes)
            if not crypto.is_encrypted_payload(raw.strip()):
                return CodecResult(path=encrypted_path)
            key = await self.key_manager.get_or_create_key()
            content = base64.b64decode(crypto.decrypt(raw.decode("ascii").strip(), key))
            dest = self.temp_dir / f"dec-{uuid.uuid4().hex}{self.temp_suffix}"
            await run_in_threadpool(_write_bytes, dest, content)
            return CodecResult(path=str(dest))
        except Exception as e:
            logger.warning("Image decryption failed for %s: %s", Path(encrypted_path).name, e)
            return CodecResult(error=CodecError(f"decrypt failed: {e}"))

    async def encrypt_file(self, source_path: str) -> str:
        result = await self.try_encrypt_file(source_path)
        return result.unwrap_or(source_path)

    async def decrypt_to_temp(self, encrypted_path: str) -> str:
        result = await self.try_decrypt_to_temp(encrypted_path)
        return result.unwrap_or(encrypted_path)


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
