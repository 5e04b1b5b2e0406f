"""
Multi-Factor Authentication (MFA) utilities for PassOTP.

Implements TOTP (Time-based One-Time Password) using RFC 6238.
Compatible with Google Authenticator, Authy, and other TOTP apps.

Also provides recovery code generation and hashing for account recovery.
"""
import base64
import io
import re
import secrets
import string
import time
from typing import List, Optional, Tuple

import bcrypt
import pyotp
import qrcode

DEFAULT_ISSUER = "PassOTP"
CODE_DIGITS = 6
_TOTP_CODE = re.compile(rf"[0-9]{{{CODE_DIGITS}}}")

RECOVERY_ALPHABET = string.ascii_uppercase + string.digits
RECOVERY_GROUP_LENGTH = 4
RECOVERY_CODE_COUNT = 10


def generate_totp_secret() -> str:
    """
    Generate a new TOTP secret for MFA enrollment.

    Returns:
        Base32-encoded secret (32 characters).
    """
    return pyotp.random_base32()


def get_totp_provisioning_uri(
    secret: str,
    account: str,
    issuer: str = DEFAULT_ISSUER
) -> str:
    """
    Generate a provisioning URI for TOTP apps.

    This URI can be encoded as a QR code for easy scanning.

    Args:
        secret: Base32-encoded TOTP secret.
        account: Account name (displayed in authenticator app).
        issuer: Application name (displayed in authenticator app).

    Returns:
        otpauth:// URI string.
    """
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(name=account, issuer_name=issuer)


def generate_qr_code(uri: str) -> bytes:
    """
    Generate a QR code image for the provisioning URI.

    Args:
        uri: otpauth:// provisioning URI.

    Returns:
        PNG image bytes.
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    buffer.seek(0)
    return buffer.read()


def generate_qr_code_base64(uri: str) -> str:
    """
    Generate a base64-encoded QR code for embedding in HTML.

    Returns:
        Base64-encoded PNG image string (data URI ready).
    """
    png_bytes = generate_qr_code(uri)
    b64 = base64.b64encode(png_bytes).decode('utf-8')
    return f"data:image/png;base64,{b64}"


def verify_totp(secret: str, code: str, window: int = 1, for_time: Optional[float] = None) -> bool:
    """
    Verify a TOTP code against the secret.

    Args:
        secret: Base32-encoded TOTP secret.
        code: 6-digit code entered by user.
        window: Number of 30-second windows to allow (default 1 = +-30s).
        for_time: Unix time to verify at (default: now).

    Returns:
        True if code is valid, False otherwise.
    """
    if not secret or not code:
        return False

    # Whitespace is the only accepted padding
    code = ''.join(code.split())

    if not _TOTP_CODE.fullmatch(code):
        return False

    totp = pyotp.TOTP(secret)
    if for_time is None:
        for_time = time.time()
    return totp.verify(code, for_time=for_time, valid_window=window)


def get_current_totp(secret: str, for_time: Optional[float] = None) -> str:
    """
    Get the TOTP code for a given time (for testing/debugging).

    Returns:
        6-digit TOTP code.
    """
    totp = pyotp.TOTP(secret)
    if for_time is None:
        return totp.now()
    return totp.at(for_time)


def generate_recovery_codes(count: int = RECOVERY_CODE_COUNT) -> List[str]:
    """
    Generate recovery codes for account recovery.

    Each code is two groups of 4 uppercase alphanumeric characters
    (e.g. "A1B2-C3D4") drawn from a cryptographically strong source.

    Args:
        count: Number of codes to generate.

    Returns:
        List of recovery codes.
    """
    codes = []
    for _ in range(count):
        raw = ''.join(
            secrets.choice(RECOVERY_ALPHABET)
            for _ in range(RECOVERY_GROUP_LENGTH * 2)
        )
        codes.append(f"{raw[:RECOVERY_GROUP_LENGTH]}-{raw[RECOVERY_GROUP_LENGTH:]}")
    return codes


def normalize_recovery_code(code: str) -> str:
    """Remove dashes/spaces and upper-case a recovery code."""
    return code.replace("-", "").replace(" ", "").upper()


def hash_recovery_code(code: str) -> str:
    """
    Hash a recovery code for secure storage.

    Returns:
        Bcrypt hash of the normalized code.
    """
    salt = bcrypt.gensalt(rounds=10)  # Lower than passwords, codes are single-use
    return bcrypt.hashpw(normalize_recovery_code(code).encode('utf-8'), salt).decode('utf-8')


def verify_recovery_code(code: str, hashed_code: str) -> bool:
    """
    Verify a recovery code against its hash.

    Returns:
        True if code matches, False otherwise (including malformed hashes).
    """
    try:
        return bcrypt.checkpw(
            normalize_recovery_code(code).encode('utf-8'),
            hashed_code.encode('utf-8')
        )
    except ValueError:
        return False


class TotpVerifier:
    """
    TOTP secret provisioning and skew-tolerant verification.

    Decrypted secrets passed to ``verify`` are used transiently only.
    """

    def __init__(self, issuer: str = DEFAULT_ISSUER, window: int = 1):
        self.issuer = issuer
        self.window = window

    def generate_secret(self) -> str:
        return generate_totp_secret()

    def provisioning_uri(self, account: str, secret: str) -> str:
        return get_totp_provisioning_uri(secret, account, self.issuer)

    def provision(self, account: str) -> Tuple[str, str, str]:
        """
        Complete TOTP provisioning: generate secret, URI, and QR code.

        Returns:
            Tuple of (secret, provisioning_uri, qr_code_base64).
        """
        secret = self.generate_secret()
        uri = self.provisioning_uri(account, secret)
        return secret, uri, generate_qr_code_base64(uri)

    def verify(self, code: str, secret: str, for_time: Optional[float] = None) -> bool:
        """True if ``code`` matches the current step or an adjacent one."""
        return verify_totp(secret, code, window=self.window, for_time=for_time)
