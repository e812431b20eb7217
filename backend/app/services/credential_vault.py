"""AES-256-GCM encryption for provider API keys stored on bot entries.

Ciphertext format: urlsafe base64 of (12-byte nonce || ciphertext+tag).
The key comes from settings.CREDENTIAL_KEY (base64-encoded, 32 bytes).
"""
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config import settings


_NONCE_LENGTH = 12
_REQUIRED_KEY_LENGTH = 32


class CredentialDecryptionError(Exception):
    """Raised when a stored key cannot be decrypted."""


def load_key(encoded: str | None = None) -> bytes:
    """Decode and validate the vault key.

    Raises:
        ValueError: key missing, not base64, or not 32 bytes.
    """
    encoded = (encoded if encoded is not None else settings.CREDENTIAL_KEY).strip()
    if not encoded:
        raise ValueError("CREDENTIAL_KEY is not configured")
    try:
        key = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise ValueError(f"CREDENTIAL_KEY contains invalid base64: {e}") from e
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"CREDENTIAL_KEY has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
        )
    return key


def generate_key() -> str:
    """Return a fresh base64 key suitable for CREDENTIAL_KEY."""
    return base64.b64encode(os.urandom(_REQUIRED_KEY_LENGTH)).decode("ascii")


def encrypt(plaintext: str, key: bytes | None = None) -> str:
    if not plaintext:
        return ""
    aesgcm = AESGCM(key or load_key())
    nonce = os.urandom(_NONCE_LENGTH)
    ct = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.urlsafe_b64encode(nonce + ct).decode("ascii")


def decrypt(ciphertext: str, key: bytes | None = None) -> str:
    """Decrypt a stored key. Empty or whitespace input yields ""."""
    ciphertext = (ciphertext or "").strip()
    if not ciphertext:
        return ""
    try:
        raw = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise CredentialDecryptionError(f"Ciphertext is not valid base64: {e}") from e
    if len(raw) <= _NONCE_LENGTH:
        raise CredentialDecryptionError("Ciphertext is too short")

    aesgcm = AESGCM(key or load_key())
    try:
        plaintext = aesgcm.decrypt(raw[:_NONCE_LENGTH], raw[_NONCE_LENGTH:], None)
    except InvalidTag as e:
        raise CredentialDecryptionError(
            "Decryption failed: wrong key or tampered ciphertext"
        ) from e
    return plaintext.decode("utf-8")
