"""
Exception taxonomy for PassOTP.

Every "could not authenticate" outcome derives from AuthenticationFailed so
the HTTP layer can answer all of them with one generic message. The specific
cause travels in ``reason`` / ``context`` for the audit log only.
"""
from typing import Any, Dict, Optional

GENERIC_AUTH_ERROR = "Invalid credentials."


class PassOTPError(Exception):
    """Base error for PassOTP."""

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(PassOTPError):
    """Malformed input."""


class ConfigurationError(PassOTPError):
    """Required configuration is missing or invalid (fatal at startup)."""


class StoreUnavailable(PassOTPError):
    """The key-value store could not be reached."""


class DecryptionError(PassOTPError):
    """A stored bundle could not be decrypted. Never carries the cause."""

    def __init__(self) -> None:
        super().__init__("Decryption failed")


class RateLimited(PassOTPError):
    """Too many attempts for an identifier; retry after ``retry_after`` seconds."""

    def __init__(self, retry_after: int, *, scope: str = "ip") -> None:
        super().__init__(
            f"Too many attempts. Try again in {retry_after} seconds.",
            context={"scope": scope},
        )
        self.retry_after = retry_after
        self.scope = scope


class AuthenticationFailed(PassOTPError):
    """
    Authentication could not be completed.

    ``str(exc)`` is always the generic message; ``reason`` is internal.
    """

    def __init__(self, reason: str = "invalid_credentials", *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(GENERIC_AUTH_ERROR, context=context)
        self.reason = reason


class ChallengeExpired(AuthenticationFailed):
    """No pending WebAuthn challenge for the user."""

    def __init__(self, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("challenge_expired", context=context)


class CredentialNotFound(AuthenticationFailed):
    """The presented WebAuthn credential is not registered to the user."""

    def __init__(self, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("credential_not_found", context=context)


class WebAuthnFailed(AuthenticationFailed):
    """The external verifier rejected the ceremony response."""

    def __init__(self, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("webauthn_verification_failed", context=context)


class CorruptRecord(PassOTPError):
    """A stored record could not be parsed; it is left untouched."""
