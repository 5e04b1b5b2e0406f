"""
PassOTP - Multi-Factor Authentication Backend

TOTP, passkeys and recovery codes.

This package provides the authentication security engine (secret custody,
TOTP verification with replay protection, rate limiting, recovery codes and
WebAuthn ceremonies) and a thin FastAPI layer that exposes it.
"""

__version__ = "0.1.0"
__author__ = "PassOTP Team"
