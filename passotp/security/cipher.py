"""
Encryption of TOTP secrets at rest.

Uses AES-256-GCM with a random 16-byte nonce per call and a 128-bit tag.
Stored bundle format (lowercase hex, colon-delimited):

    nonce:tag:ciphertext

Security Model:
- Master key from ENCRYPTION_KEY (64 hex chars used raw, anything else is
  hashed with SHA-256 to 32 bytes)
- Protects against store dumps (attacker sees only encrypted bundles)
- Decryption fails closed: every failure is the same DecryptionError
"""
import hashlib
import logging
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")

# Development-only fallback key (all zeros)
INSECURE_FALLBACK_KEY = "0" * 64


def derive_key(key: str) -> bytes:
    """
    Turn configured key material into 32 key bytes.

    A 64-character hex string is decoded as-is; any other passphrase is
    hashed with SHA-256.
    """
    if _HEX_KEY.match(key):
        return bytes.fromhex(key)
    return hashlib.sha256(key.encode('utf-8')).digest()


class SecretCipher:
    """
    Authenticated encryption for stored TOTP secrets.

    Example usage:
        cipher = SecretCipher(settings.encryption_key, hardened=settings.is_production)
        bundle = cipher.encrypt(secret)
        secret = cipher.decrypt(bundle)
    """

    def __init__(self, key: Optional[str], *, hardened: bool = False):
        """
        Args:
            key: Hex key or passphrase.
            hardened: If True a missing key is fatal.

        Raises:
            ConfigurationError: If key is missing in hardened mode.
        """
        if not key:
            if hardened:
                raise ConfigurationError("ENCRYPTION_KEY is required in production")
            logger.warning(
                "ENCRYPTION_KEY not set. Using insecure fallback key for DEVELOPMENT only."
            )
            key = INSECURE_FALLBACK_KEY

        # AESGCM appends the tag to the ciphertext; we store it separately
        self._aesgcm = AESGCM(derive_key(key))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Returns:
            Bundle "nonce:tag:ciphertext" in hex.
        """
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode('utf-8'), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, bundle: str) -> str:
        """
        Decrypt a bundle produced by ``encrypt``.

        Raises:
            DecryptionError: On any format, length or authentication failure.
        """
        try:
            parts = bundle.split(":")
            if len(parts) != 3:
                raise ValueError("Invalid bundle format")

            nonce = bytes.fromhex(parts[0])
            tag = bytes.fromhex(parts[1])
            ciphertext = bytes.fromhex(parts[2])

            if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
                raise ValueError("Invalid nonce or tag length")

            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
            return plaintext.decode('utf-8')
        except (ValueError, TypeError, AttributeError, InvalidTag, UnicodeDecodeError) as e:
            raise DecryptionError() from e
