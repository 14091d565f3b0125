import pytest

from stocklens_store.errors import IntegrityError
from stocklens_store.utils import crypto


@pytest.fixture
def key():
    return crypto.generate_key()


class TestCipher:
    """Authenticated encryption of byte payloads."""

    @pytest.mark.parametrize("plaintext", [b"", b"hello", "Total: £12.50".encode("utf-8"), bytes(range(256)) * 40])
    def test_round_trip(self, key, plaintext):
        payload = crypto.encrypt(plaintext, key)
        assert crypto.is_encrypted_payload(payload)
        assert crypto.decrypt(payload, key) == plaintext

    def test_each_call_uses_a_fresh_nonce(self, key):
        assert crypto.encrypt(b"same", key) != crypto.encrypt(b"same", key)

    def test_wrong_key_fails_loudly(self, key):
        payload = crypto.encrypt(b"secret", key)
        with pytest.raises(IntegrityError):
            crypto.decrypt(payload, crypto.generate_key())

    def test_tampered_payload_fails_loudly(self, key):
        payload = crypto.encrypt(b"secret", key)
        # flip one character in the ciphertext body
        i = len(payload) - 10
        flipped = "A" if payload[i] != "A" else "B"
        tampered = payload[:i] + flipped + payload[i + 1:]
        with pytest.raises(IntegrityError):
            crypto.decrypt(tampered, key)

    def test_decrypting_plaintext_is_rejected(self, key):
        with pytest.raises(IntegrityError):
            crypto.decrypt("12.50", key)

    def test_text_helpers(self, key):
        assert crypto.decrypt_text(crypto.encrypt_text("dark", key), key) == "dark"


class TestPayloadDetection:
    """is_encrypted_payload is a format-only check."""

    @pytest.mark.parametrize("value", [
        None, 12.5, 0, "", "12.50", "Total: 12.50", "light",
        "slx1:", "slx1:not-a-token", "gAAAAABlooks-like-fernet-but-no-tag",
        '{"iv": "a", "ct": "b", "tag": "c"}',
    ])
    def test_plaintext_is_not_a_payload(self, value):
        assert crypto.is_encrypted_payload(value) is False

    def test_bytes_payload_is_recognised(self, key):
        payload = crypto.encrypt(b"x", key)
        assert crypto.is_encrypted_payload(payload.encode("ascii"))

    def test_binary_garbage_is_not_a_payload(self):
        assert crypto.is_encrypted_payload(b"\xff\xd8\xff\xe0JFIF") is False


class TestDecryptOrPassthrough:
    """Read-path helper tolerates legacy plaintext and corrupted values."""

    @pytest.mark.parametrize("value", [None, 42, 12.5, "12.50", "light"])
    def test_plaintext_passes_through_unchanged(self, key, value):
        assert crypto.decrypt_or_passthrough(value, key) == value

    def test_payload_is_decrypted(self, key):
        assert crypto.decrypt_or_passthrough(crypto.encrypt_text("12.5", key), key) == "12.5"

    def test_undecryptable_payload_is_returned_as_is(self, key):
        payload = crypto.encrypt_text("12.5", key)
        assert crypto.decrypt_or_passthrough(payload, crypto.generate_key()) == payload
