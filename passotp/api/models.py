"""
Pydantic Models for PassOTP API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

USER_PATTERN = r"^[A-Za-z0-9_.@+-]+$"
TOKEN_PATTERN = r"^[0-9]{6}$|^[a-zA-Z0-9-]{9,}$"


# ============================================
# Setup / Login Models
# ============================================

class UserRequest(BaseModel):
    """Request naming an account."""
    user: str = Field(..., min_length=3, max_length=64, pattern=USER_PATTERN)

    model_config = ConfigDict(
        json_schema_extra={"example": {"user": "alice"}}
    )


class SetupResponse(BaseModel):
    """
    TOTP setup response.

    Recovery codes are shown exactly once. ``secret`` and ``otpauth`` are
    only included when debug output is enabled.
    """
    qr_code: str = Field(..., description="PNG data URI of the provisioning QR code")
    recovery_codes: List[str] = Field(..., description="One-time recovery codes (store securely!)")
    secret: Optional[str] = None
    otpauth: Optional[str] = None


class LoginRequest(BaseModel):
    """
    Login request.

    ``token`` is either a 6-digit TOTP code or a recovery code (XXXX-XXXX).
    """
    user: str = Field(..., min_length=3, max_length=64, pattern=USER_PATTERN)
    token: str = Field(..., max_length=64, pattern=TOKEN_PATTERN)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"user": "alice", "token": "123456"}
        }
    )


class LoginResponse(BaseModel):
    """Successful login."""
    success: bool = True
    message: str
    session_id: str
    meta: Dict[str, Any] = Field(default_factory=dict)


class VerifyRequest(BaseModel):
    """Debug-only code check against a plain secret."""
    token: str = Field(..., min_length=1, max_length=16)
    secret: str = Field(..., min_length=16, max_length=128)


class StatusResponse(BaseModel):
    """Generic success/failure response."""
    success: bool
    message: str


# ============================================
# Session Models
# ============================================

class SessionResponse(BaseModel):
    """Current session."""
    user: str
    method: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


# ============================================
# Health Models
# ============================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str
    version: str
    services: Dict[str, str]
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Error response."""
    success: bool = False
    message: str
    code: Optional[str] = None
