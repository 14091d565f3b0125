import logging
import re
from typing import Union

from cryptography.fernet import Fernet, InvalidToken

from ..errors import IntegrityError

logger = logging.getLogger(__name__)

# Version tag of the payload format. A Fernet token follows the tag.
PAYLOAD_PREFIX = "slx1:"

# Fernet tokens are urlsafe base64 and always start with the 0x80 version
# byte followed by a 64-bit timestamp, which encodes as "gAAAAA".
_TOKEN_SHAPE = re.compile(r"^gAAAAA[A-Za-z0-9_\-]{70,}={0,2}$")


def generate_key() -> str:
    return Fernet.generate_key().decode("ascii")


def is_encrypted_payload(value) -> bool:
    if isinstance(value, bytes):
        try:
            value = value.decode("ascii")
        except UnicodeDecodeError:
            return False
    if not isinstance(value, str) or not value.startswith(PAYLOAD_PREFIX):
        return False
    return bool(_TOKEN_SHAPE.match(value[len(PAYLOAD_PREFIX):].strip()))


def _fernet(key: Union[str, bytes]) -> Fernet:
    if isinstance(key, str):
        key = key.encode("ascii")
    return Fernet(key)


def encrypt(plaintext: bytes, key: Union[str, bytes]) -> str:
    token = _fernet(key).encrypt(plaintext)
    return PAYLOAD_PREFIX + token.decode("ascii")


def decrypt(payload: str, key: Union[str, bytes]) -> bytes:
    if not is_encrypted_payload(payload):
        raise IntegrityError("Value is not an encrypted payload")
    if isinstance(payload, bytes):
        payload = payload.decode("ascii")
    token = payload[len(PAYLOAD_PREFIX):].strip().encode("ascii")
    try:
        return _fernet(key).decrypt(token)
    except InvalidToken as e:
        raise IntegrityError("Payload failed authentication (wrong key or corrupted data)") from e


def encrypt_text(plain: str, key: Union[str, bytes]) -> str:
    return encrypt(plain.encode("utf-8"), key)


def decrypt_text(payload: str, key: Union[str, bytes]) -> str:
    return decrypt(payload, key).decode("utf-8")


def decrypt_or_passthrough(value, key: Union[str, bytes]):
    """
    Decrypt a column value read back from storage.

    Anything that is not an encrypted payload (legacy plaintext, numbers,
    None) is returned unchanged. A payload that fails authentication is
    also returned as-is so a single corrupted row does not break a list view.
    """
    if not is_encrypted_payload(value):
        return value
    try:
        return decrypt_text(value, key)
    except IntegrityError as e:
        logger.warning("Could not decrypt stored value, returning it undecrypted: %s", e)
        return value
