"""
FastAPI Dependencies for PassOTP API.

Provides:
- Settings, store and orchestrator handles (built in the app lifespan)
- Client address / user agent extraction
- Session authentication (bearer token or signed cookie)
"""
import logging
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..auth.orchestrator import AuthOrchestrator
from ..database.store import StoreConnection
from ..utils.config import Settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"

# Security scheme
security = HTTPBearer(auto_error=False)


# ============================================
# Application Handles
# ============================================

def get_settings(request: Request) -> Settings:
    """Settings the app was created with."""
    return request.app.state.settings


def get_store(request: Request) -> StoreConnection:
    """Lifecycled store connection."""
    return request.app.state.store


def get_orchestrator(request: Request) -> AuthOrchestrator:
    """Authentication flows bound to the connected store."""
    return request.app.state.orchestrator


# ============================================
# Request Context
# ============================================

def get_client_ip(request: Request) -> str:
    """Client address (honours X-Forwarded-For behind a trusted proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "unknown")


# ============================================
# Authentication Dependencies
# ============================================

def get_current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Validate the bearer token (or signed session cookie) and return the session.

    Raises:
        HTTPException: If the session is missing, invalid, or expired.
    """
    session_id = None
    if credentials is not None:
        session_id = credentials.credentials
    else:
        cookie = request.cookies.get(SESSION_COOKIE)
        if cookie:
            session_id = orchestrator.sessions.unsign(cookie)

    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    session = orchestrator.sessions.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return session
