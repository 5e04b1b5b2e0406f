"""
API Routes for PassOTP.
"""
from .auth import router as auth_router
from .webauthn import router as webauthn_router
from .health import router as health_router

__all__ = [
    "auth_router",
    "webauthn_router",
    "health_router",
]
