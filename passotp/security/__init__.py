"""
Security primitives for PassOTP.

This package provides:
- Secret encryption at rest (AES-256-GCM)
- Rate limiting with exponential bans
- TOTP replay protection
"""
from .cipher import SecretCipher
from .rate_limit import RateLimiter, RateLimitResult
from .replay import ReplayGuard

__all__ = [
    "SecretCipher",
    "RateLimiter",
    "RateLimitResult",
    "ReplayGuard",
]
