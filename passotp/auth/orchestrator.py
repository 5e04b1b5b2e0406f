"""
Authentication flows for PassOTP.

The orchestrator composes the security components into the flows the HTTP
layer calls: TOTP setup, login (TOTP or recovery code) and the passkey
ceremonies. It holds no mutable state of its own; every component works on
the injected store handle, so several instances can serve behind a load
balancer.

Every "could not authenticate" branch (unknown user, undecryptable secret,
bad code, replay, bad recovery code, failed passkey) raises the same
AuthenticationFailed after the same fixed delay. The real cause is only
written to the audit log.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import redis

from .mfa import TotpVerifier, generate_qr_code_base64
from .recovery import RecoveryVault
from .sessions import METHOD_RECOVERY, METHOD_TOTP, METHOD_WEBAUTHN, SessionIssuer
from .webauthn import PyWebAuthnVerifier, WebAuthnCeremony, WebAuthnVerifier
from ..database.store import user_key
from ..errors import AuthenticationFailed, DecryptionError, RateLimited
from ..security.cipher import SecretCipher
from ..security.rate_limit import RateLimiter
from ..security.replay import ReplayGuard
from ..utils.audit import log_event
from ..utils.config import Settings

logger = logging.getLogger(__name__)

RECOVERY_SEPARATOR = "-"
TOTP_LENGTH = 6


def looks_like_recovery_code(token: str) -> bool:
    """Recovery codes contain a separator or are longer than a TOTP code."""
    return RECOVERY_SEPARATOR in token or len(token) > TOTP_LENGTH


@dataclass
class SetupResult:
    """Material shown to the user exactly once after setup."""
    qr_code: str
    recovery_codes: List[str]
    secret: str
    otpauth_uri: str


@dataclass
class LoginResult:
    """A successful login."""
    session_id: str
    method: str
    meta: Dict[str, Any] = field(default_factory=dict)


class AuthOrchestrator:
    """
    Setup and login flows.

    Example usage:
        orchestrator = build_orchestrator(settings, store.client)
        setup = orchestrator.setup("alice")
        result = orchestrator.login("alice", "123456", ip="10.0.0.1", user_agent="curl")
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        cipher: SecretCipher,
        rate_limiter: RateLimiter,
        replay_guard: ReplayGuard,
        vault: RecoveryVault,
        totp: TotpVerifier,
        ceremony: WebAuthnCeremony,
        sessions: SessionIssuer,
        failure_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.cipher = cipher
        self.rate_limiter = rate_limiter
        self.replay_guard = replay_guard
        self.vault = vault
        self.totp = totp
        self.ceremony = ceremony
        self.sessions = sessions
        self.failure_delay = failure_delay
        self._sleep = sleep
        self._clock = clock

    # ==========================================
    # Setup
    # ==========================================

    def setup(self, user_id: str) -> SetupResult:
        """
        Enroll (or re-enroll) a user in TOTP.

        Generates a secret, stores it encrypted, replaces the recovery codes
        and returns the provisioning material.
        """
        secret = self.totp.generate_secret()
        otpauth_uri = self.totp.provisioning_uri(user_id, secret)
        qr_code = generate_qr_code_base64(otpauth_uri)

        self.redis.hset(user_key(user_id), mapping={"secret": self.cipher.encrypt(secret)})
        recovery_codes = self.vault.issue(user_id)
        self.sessions.refresh_user_records(user_id)

        return SetupResult(
            qr_code=qr_code,
            recovery_codes=recovery_codes,
            secret=secret,
            otpauth_uri=otpauth_uri,
        )

    def verify_code(self, token: str, secret: str) -> bool:
        """Check a code against a plain secret (debug helper, no side effects)."""
        return self.totp.verify(token, secret, for_time=self._clock())

    # ==========================================
    # Login
    # ==========================================

    def enforce_rate_limits(self, ip: str, user_id: Optional[str] = None) -> None:
        """
        Consume one attempt for the client address and, if given, the account.

        Raises:
            RateLimited: If either identifier is over its limit.
        """
        try:
            self.rate_limiter.enforce(f"ip:{ip}", scope="ip")
        except RateLimited as e:
            log_event(
                "RATE_LIMIT_IP", "IP rate limit exceeded",
                user=user_id, ip=ip, level=logging.WARNING, retry_after=e.retry_after,
            )
            raise

        if user_id is None:
            return

        try:
            self.rate_limiter.enforce(f"user:{user_id}", scope="user")
        except RateLimited as e:
            log_event(
                "RATE_LIMIT_USER", "User rate limit exceeded",
                user=user_id, ip=ip, level=logging.WARNING, retry_after=e.retry_after,
            )
            raise

    def login(self, user_id: str, token: str, ip: str, user_agent: str = "unknown") -> LoginResult:
        """
        Authenticate with a TOTP code or a recovery code.

        Raises:
            RateLimited: Client address or account over its limit.
            AuthenticationFailed: Any other failure (generic).
        """
        log_event("AUTH_ATTEMPT", "Login attempt", user=user_id, ip=ip, user_agent=user_agent)
        self.enforce_rate_limits(ip, user_id)

        if looks_like_recovery_code(token) and self.vault.redeem(user_id, token):
            log_event(
                "RECOVERY_USE", "User logged in with recovery code",
                user=user_id, ip=ip, level=logging.WARNING,
            )
            return self._complete_login(user_id, ip, user_agent, METHOD_RECOVERY)

        secret_bundle = self.redis.hget(user_key(user_id), "secret")
        if not secret_bundle:
            self._fail("User not found", user_id, ip)

        try:
            secret = self.cipher.decrypt(secret_bundle)
        except DecryptionError:
            self._fail("Decryption error", user_id, ip, level=logging.ERROR)

        if not self.totp.verify(token, secret, for_time=self._clock()):
            self._fail("Invalid TOTP code", user_id, ip)

        if not self.replay_guard.claim(user_id, now=self._clock()):
            self._fail("Replay attack detected", user_id, ip, event="REPLAY_ATTACK")

        result = self._complete_login(user_id, ip, user_agent, METHOD_TOTP)
        log_event("AUTH_SUCCESS_TOTP", "User authenticated successfully", user=user_id, ip=ip)
        return result

    # ==========================================
    # Passkeys
    # ==========================================

    def webauthn_register_options(self, user_id: str, ip: str) -> Dict[str, Any]:
        self.enforce_rate_limits(ip)
        return self.ceremony.registration_options(user_id)

    def webauthn_register_verify(self, user_id: str, response: Dict[str, Any], ip: str) -> bool:
        """
        Finish passkey registration.

        Raises:
            AuthenticationFailed: Challenge missing or attestation rejected.
        """
        self.enforce_rate_limits(ip)
        try:
            self.ceremony.verify_registration(user_id, response)
        except AuthenticationFailed as e:
            self._delay()
            logger.debug(f"Passkey registration failed for {user_id}: {e.reason}")
            raise
        self.sessions.refresh_user_records(user_id)
        return True

    def webauthn_login_options(self, user_id: str, ip: str) -> Dict[str, Any]:
        self.enforce_rate_limits(ip)
        return self.ceremony.authentication_options(user_id)

    def webauthn_login_verify(
        self,
        user_id: str,
        response: Dict[str, Any],
        ip: str,
        user_agent: str = "unknown",
    ) -> LoginResult:
        """
        Finish a passkey login and issue a session.

        Raises:
            RateLimited: Client address or account over its limit.
            AuthenticationFailed: Challenge missing, unknown passkey or bad assertion.
        """
        self.enforce_rate_limits(ip, user_id)
        try:
            self.ceremony.verify_authentication(user_id, response)
        except AuthenticationFailed as e:
            self._delay()
            logger.debug(f"Passkey login failed for {user_id}: {e.reason}")
            raise

        result = self._complete_login(user_id, ip, user_agent, METHOD_WEBAUTHN)
        log_event("AUTH_SUCCESS_WEBAUTHN", "User authenticated via WebAuthn", user=user_id, ip=ip)
        return result

    # ==========================================
    # Helpers
    # ==========================================

    def _complete_login(self, user_id: str, ip: str, user_agent: str, method: str) -> LoginResult:
        session_id = self.sessions.issue(user_id, ip, user_agent, method)
        return LoginResult(
            session_id=session_id,
            method=method,
            meta={
                "method": method,
                "user": user_id,
                "ip": ip,
                "user_agent": user_agent,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    def _delay(self) -> None:
        if self.failure_delay > 0:
            self._sleep(self.failure_delay)

    def _fail(self, reason: str, user_id: str, ip: str, *, event: str = "AUTH_FAIL", level: int = logging.WARNING):
        log_event(event, reason, user=user_id, ip=ip, level=level)
        self._delay()
        raise AuthenticationFailed(reason)


def build_orchestrator(
    settings: Settings,
    redis_client: redis.Redis,
    verifier: Optional[WebAuthnVerifier] = None,
    **kwargs: Any,
) -> AuthOrchestrator:
    """
    Wire every component from settings and a connected store client.

    Args:
        settings: Static configuration.
        redis_client: Connected store client.
        verifier: WebAuthn verifier (defaults to the py_webauthn adapter).
        **kwargs: Passed to AuthOrchestrator (e.g. sleep, clock).
    """
    return AuthOrchestrator(
        redis_client=redis_client,
        cipher=SecretCipher(settings.encryption_key, hardened=settings.is_production),
        rate_limiter=RateLimiter(
            redis_client,
            limit=settings.rate_limit_attempts,
            window_seconds=settings.rate_limit_window,
        ),
        replay_guard=ReplayGuard(redis_client),
        vault=RecoveryVault(redis_client, ttl_seconds=settings.user_ttl),
        totp=TotpVerifier(issuer=settings.totp_issuer),
        ceremony=WebAuthnCeremony(
            redis_client,
            verifier or PyWebAuthnVerifier(),
            rp_id=settings.rp_id,
            rp_name=settings.rp_name,
            origin=settings.origin,
            require_user_verification=settings.require_uv,
            challenge_ttl=settings.temp_ttl,
            user_ttl=settings.user_ttl,
        ),
        sessions=SessionIssuer(
            redis_client,
            session_ttl=settings.session_ttl,
            user_ttl=settings.user_ttl,
            signing_secret=settings.session_secret,
        ),
        failure_delay=settings.failure_delay,
        **kwargs,
    )
