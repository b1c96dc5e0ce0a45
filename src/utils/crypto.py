"""Decryption of stored API keys.

Values are hex strings laid out as ``salt(64) | iv(16) | tag(16) | ciphertext``,
encrypted with AES-256-GCM under a PBKDF2-SHA512 key derived from the app
secret.  This is the format written by the settings editor, so keys saved
there decrypt here unchanged.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
PBKDF2_ITERATIONS = 100_000


class SecretDecryptionError(ValueError):
    """Raised when a stored value cannot be decrypted with the given secret."""


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(secret: str, value: str) -> str:
    """Encrypt ``value`` with ``secret`` (used by tests and setup tooling)."""
    if not secret:
        raise ValueError("A secret is required to encrypt values.")
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(secret, salt)).encrypt(iv, value.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return (salt + iv + tag + ciphertext).hex()


def decrypt(secret: str, value: str) -> str:
    """Decrypt a hex-encoded value produced by :func:`encrypt`.

    Raises:
        SecretDecryptionError: On a wrong secret, truncated or non-hex input.
    """
    if not secret:
        raise SecretDecryptionError("No secret configured.")
    try:
        raw = bytes.fromhex(value)
    except (TypeError, ValueError) as exc:
        raise SecretDecryptionError("Encrypted value is not valid hex.") from exc
    header = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
    if len(raw) < header:
        raise SecretDecryptionError("Encrypted value is truncated.")

    salt = raw[:SALT_LENGTH]
    iv = raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
    tag = raw[SALT_LENGTH + IV_LENGTH:header]
    ciphertext = raw[header:]
    try:
        plain = AESGCM(_derive_key(secret, salt)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise SecretDecryptionError("Secret does not match encrypted value.") from exc
    return plain.decode("utf-8")
