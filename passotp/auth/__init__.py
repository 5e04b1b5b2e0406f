"""
Authentication for PassOTP.

This package provides:
- TOTP provisioning and verification
- Recovery code vault
- WebAuthn (passkey) ceremonies
- Session issuance
- The orchestrator composing them into setup/login flows
"""
from .mfa import (
    TotpVerifier,
    generate_totp_secret,
    get_totp_provisioning_uri,
    verify_totp,
    generate_recovery_codes,
    generate_qr_code_base64,
)
from .recovery import RecoveryVault
from .sessions import SessionIssuer
from .webauthn import (
    WebAuthnCeremony,
    WebAuthnVerifier,
    PyWebAuthnVerifier,
    StoredCredential,
    RegistrationVerification,
    VerificationError,
)
from .orchestrator import AuthOrchestrator, LoginResult, SetupResult, build_orchestrator

__all__ = [
    "TotpVerifier",
    "generate_totp_secret",
    "get_totp_provisioning_uri",
    "verify_totp",
    "generate_recovery_codes",
    "generate_qr_code_base64",
    "RecoveryVault",
    "SessionIssuer",
    "WebAuthnCeremony",
    "WebAuthnVerifier",
    "PyWebAuthnVerifier",
    "StoredCredential",
    "RegistrationVerification",
    "VerificationError",
    "AuthOrchestrator",
    "LoginResult",
    "SetupResult",
    "build_orchestrator",
]
