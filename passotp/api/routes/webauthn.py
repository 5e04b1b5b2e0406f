"""
Passkey (WebAuthn) Endpoints.

Challenge endpoints return the options the browser passes to
navigator.credentials.create()/get(); verify endpoints take the browser's
response together with the account name.
"""
import logging
import re
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Body, Depends, Response

from ..models import ErrorResponse, LoginResponse, StatusResponse, USER_PATTERN, UserRequest
from ..deps import get_client_ip, get_orchestrator, get_settings, get_user_agent
from .auth import login_response
from ...auth.orchestrator import AuthOrchestrator
from ...errors import ValidationError
from ...utils.config import Settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webauthn", tags=["WebAuthn"])

_USER = re.compile(USER_PATTERN)


def split_user(payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Separate the account name from the authenticator response.

    Raises:
        ValidationError: If the account name is missing or malformed.
    """
    body = dict(payload)
    user = body.pop("user", None)
    if not isinstance(user, str) or not 3 <= len(user) <= 64 or not _USER.match(user):
        raise ValidationError("A valid 'user' is required.")
    return user, body


@router.post("/register/challenge", responses={429: {"model": ErrorResponse}})
def register_challenge(
    body: UserRequest,
    ip: str = Depends(get_client_ip),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Start passkey registration.

    Credentials the user already owns are excluded.
    """
    return orchestrator.webauthn_register_options(body.user, ip=ip)


@router.post(
    "/register/verify",
    response_model=StatusResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed request"},
        401: {"model": ErrorResponse, "description": "Verification failed"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
)
def register_verify(
    payload: Dict[str, Any] = Body(...),
    ip: str = Depends(get_client_ip),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """
    Finish passkey registration and store the credential.
    """
    user, response = split_user(payload)
    orchestrator.webauthn_register_verify(user, response, ip=ip)
    return StatusResponse(success=True, message="Passkey saved!")


@router.post("/login/challenge", responses={429: {"model": ErrorResponse}})
def login_challenge(
    body: UserRequest,
    ip: str = Depends(get_client_ip),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Start a passkey login restricted to the user's registered passkeys.
    """
    return orchestrator.webauthn_login_options(body.user, ip=ip)


@router.post(
    "/login/verify",
    response_model=LoginResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed request"},
        401: {"model": ErrorResponse, "description": "Passkey validation failed"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
)
def login_verify(
    response: Response,
    payload: Dict[str, Any] = Body(...),
    ip: str = Depends(get_client_ip),
    user_agent: str = Depends(get_user_agent),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    Finish a passkey login and issue a session.
    """
    user, assertion = split_user(payload)
    result = orchestrator.webauthn_login_verify(user, assertion, ip=ip, user_agent=user_agent)
    return login_response(response, result, "Login with Passkey successful!", orchestrator, settings)
