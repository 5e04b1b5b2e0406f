"""
Authentication Endpoints.

Provides TOTP setup, login (TOTP or recovery code), session lookup and logout.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..models import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    SessionResponse,
    SetupResponse,
    StatusResponse,
    UserRequest,
    VerifyRequest,
)
from ..deps import (
    SESSION_COOKIE,
    get_client_ip,
    get_current_session,
    get_orchestrator,
    get_settings,
    get_user_agent,
)
from ...auth.orchestrator import AuthOrchestrator, LoginResult
from ...auth.sessions import METHOD_RECOVERY
from ...utils.audit import log_event
from ...utils.config import Settings

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Authentication"])


def set_session_cookie(response: Response, orchestrator: AuthOrchestrator, settings: Settings, session_id: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        orchestrator.sessions.sign(session_id),
        max_age=settings.session_ttl,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def login_response(
    response: Response,
    result: LoginResult,
    message: str,
    orchestrator: AuthOrchestrator,
    settings: Settings,
) -> LoginResponse:
    set_session_cookie(response, orchestrator, settings, result.session_id)
    return LoginResponse(
        success=True,
        message=message,
        session_id=result.session_id,
        meta=result.meta,
    )


@router.post(
    "/setup",
    response_model=SetupResponse,
    response_model_exclude_none=True,
)
def setup(
    body: UserRequest,
    ip: str = Depends(get_client_ip),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    Enroll an account in TOTP.

    Returns the provisioning QR code and 10 recovery codes, shown exactly once.
    The raw secret and otpauth URI are only returned when debug output is enabled.
    """
    log_event("SETUP_INIT", "Setup requested", user=body.user, ip=ip)

    result = orchestrator.setup(body.user)

    if not settings.debug_setup_enabled:
        return SetupResponse(qr_code=result.qr_code, recovery_codes=result.recovery_codes)

    if settings.is_production:
        log_event(
            "SECURITY_ALERT", "Debug output enabled in PRODUCTION",
            user=body.user, level=logging.WARNING,
        )

    return SetupResponse(
        qr_code=result.qr_code,
        recovery_codes=result.recovery_codes,
        secret=result.secret,
        otpauth=result.otpauth_uri,
    )


@router.post(
    "/verify",
    response_model=StatusResponse,
    responses={
        400: {"model": StatusResponse, "description": "Invalid code"},
        404: {"model": ErrorResponse, "description": "Endpoint disabled"},
    },
)
def verify(
    body: VerifyRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    Check a code against a plain secret (development helper).

    Disabled unless explicitly enabled with risk confirmation.
    """
    if not settings.dev_verify_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Endpoint disabled.",
        )

    if settings.is_production:
        log_event("SECURITY_ALERT", "Verify endpoint enabled in PRODUCTION", level=logging.WARNING)

    if orchestrator.verify_code(body.token, body.secret):
        return StatusResponse(success=True, message="Code verified successfully!")

    response.status_code = status.HTTP_400_BAD_REQUEST
    return StatusResponse(success=False, message="Invalid code.")


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
)
def login(
    body: LoginRequest,
    response: Response,
    ip: str = Depends(get_client_ip),
    user_agent: str = Depends(get_user_agent),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    Authenticate with a TOTP code or a recovery code.

    Recovery codes are consumed on use and cannot be reused.
    Every failure answers with the same generic message.
    """
    result = orchestrator.login(body.user, body.token, ip=ip, user_agent=user_agent)

    if result.method == METHOD_RECOVERY:
        message = "Login successful (Recovery Code)"
    else:
        message = "Login successful!"
    return login_response(response, result, message, orchestrator, settings)


@router.get("/session", response_model=SessionResponse)
def current_session(session: Dict = Depends(get_current_session)):
    """
    Get the current session.
    """
    return SessionResponse(
        user=session["user"],
        method=session["method"],
        ip=session.get("ip"),
        user_agent=session.get("user_agent"),
        created_at=session.get("created_at"),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    response: Response,
    session: Dict = Depends(get_current_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """
    Logout current session.

    Invalidates the current session token.
    """
    orchestrator.sessions.revoke(session["session_id"])
    response.delete_cookie(SESSION_COOKIE, path="/")
    logger.info(f"User logged out: {session['user']}")
    return None
