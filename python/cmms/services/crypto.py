"""Encryption of stored Google OAuth tokens.

Tokens are sealed with PyNaCl's SecretBox (XSalsa20-Poly1305) under a
master key from CMMS_TOKEN_ENCRYPTION_KEY. Ciphertext and the 24-byte
nonce are stored in separate columns.

Security invariants:
- Plaintext tokens and ciphertext are never logged
- Every encryption uses a fresh random nonce
- Decryption fails loudly on a wrong key, nonce or tampered data
- local/test without a configured key fall back to a fixed derived key;
  staging/prod refuse to start without one (see config.py)
"""

import base64
import binascii
import hashlib
import os
from functools import lru_cache

from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.secret import SecretBox

from cmms.config import Environment, get_settings
from cmms.logging import get_logger

logger = get_logger(__name__)

NONCE_SIZE = SecretBox.NONCE_SIZE
MASTER_KEY_SIZE = SecretBox.KEY_SIZE

_LOCAL_KEY_SEED = b"cmms-local-token-encryption-key"


class CryptoError(Exception):
    """Raised when token encryption or decryption fails."""

    pass


@lru_cache(maxsize=1)
def _get_master_key() -> bytes:
    """Load and validate the master key.

    Raises:
        CryptoError: If the key is missing in a deployed environment, is not
            valid base64, or has the wrong size.
    """
    settings = get_settings()
    key_b64 = settings.cmms_token_encryption_key
    if not key_b64:
        if settings.cmms_env in (Environment.LOCAL, Environment.TEST):
            return hashlib.sha256(_LOCAL_KEY_SEED).digest()
        raise CryptoError("CMMS_TOKEN_ENCRYPTION_KEY is not set")

    try:
        key = base64.b64decode(key_b64, validate=True)
    except binascii.Error as e:
        raise CryptoError(f"CMMS_TOKEN_ENCRYPTION_KEY is not valid base64: {e}") from e

    if len(key) != MASTER_KEY_SIZE:
        raise CryptoError(
            f"CMMS_TOKEN_ENCRYPTION_KEY must be {MASTER_KEY_SIZE} bytes, got {len(key)} bytes"
        )
    return key


def clear_master_key_cache() -> None:
    """Forget the cached master key. Useful for testing."""
    _get_master_key.cache_clear()


def encrypt_token(plaintext: str) -> tuple[bytes, bytes]:
    """Encrypt a token string.

    Returns:
        Tuple of (ciphertext, nonce).
    """
    nonce = os.urandom(NONCE_SIZE)
    box = SecretBox(_get_master_key())
    sealed = box.encrypt(plaintext.encode("utf-8"), nonce=nonce)
    # EncryptedMessage is nonce + ciphertext; the nonce is stored separately
    return sealed.ciphertext, nonce


def decrypt_token(ciphertext: bytes, nonce: bytes) -> str:
    """Decrypt a token sealed by encrypt_token().

    Raises:
        CryptoError: If authentication fails.
    """
    if len(nonce) != NONCE_SIZE:
        raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    box = SecretBox(_get_master_key())
    try:
        plaintext = box.decrypt(ciphertext, nonce=nonce)
    except NaclCryptoError as e:
        logger.error("token_decryption_failed")
        raise CryptoError("Token decryption failed") from e
    return plaintext.decode("utf-8")
