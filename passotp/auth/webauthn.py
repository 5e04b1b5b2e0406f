"""
WebAuthn (passkey) ceremonies for PassOTP.

Both flows have the same shape:

1. START: generate a challenge and relying-party options, persist the
   challenge in ``webauthn:challenge:{user}`` with a short TTL.
2. VERIFY: load the challenge (ChallengeExpired if absent), let the verifier
   check the authenticator response against the expected origin and rp id,
   then consume the challenge and persist the new passkey (registration) or
   its updated signature counter (authentication).

A failed verification leaves the challenge in place and raises a generic
error; which check failed is only logged.

Cryptographic verification is delegated to a ``WebAuthnVerifier``. The
production implementation wraps the ``webauthn`` library; tests inject a
scripted fake.
"""
import json
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import redis
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from ..database.store import challenge_key, credentials_key, user_key
from ..errors import ChallengeExpired, CorruptRecord, CredentialNotFound, WebAuthnFailed
from ..utils.audit import log_event

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 32
DEFAULT_CHALLENGE_TTL = 60

# ES256, RS256, EdDSA
SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
    COSEAlgorithmIdentifier.EDDSA,
]


def normalize_credential_id(credential_id: str) -> str:
    """Base64url ids compare without padding."""
    return credential_id.rstrip("=")


@dataclass
class StoredCredential:
    """A registered passkey."""
    id: str
    public_key: bytes
    sign_count: int = 0
    transports: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "public_key": bytes_to_base64url(self.public_key),
            "sign_count": self.sign_count,
            "transports": list(self.transports),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredCredential":
        return cls(
            id=data["id"],
            public_key=base64url_to_bytes(data["public_key"]),
            sign_count=int(data.get("sign_count", 0)),
            transports=list(data.get("transports") or []),
        )

    def descriptor(self) -> PublicKeyCredentialDescriptor:
        transports = []
        for value in self.transports:
            try:
                transports.append(AuthenticatorTransport(value))
            except ValueError:
                logger.debug(f"Ignoring unknown transport {value!r}")
        return PublicKeyCredentialDescriptor(
            id=base64url_to_bytes(self.id),
            transports=transports or None,
        )


@dataclass(frozen=True)
class RegistrationVerification:
    """Result of a successful attestation check."""
    credential_id: str
    public_key: bytes
    sign_count: int


class VerificationError(Exception):
    """The authenticator response did not verify."""


class WebAuthnVerifier(ABC):
    """Narrow interface to the cryptographic verification capability."""

    @abstractmethod
    def verify_attestation(
        self,
        response: Dict[str, Any],
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
        require_user_verification: bool = False,
    ) -> RegistrationVerification:
        """
        Verify a registration response.

        Raises:
            VerificationError: If any check fails.
        """

    @abstractmethod
    def verify_signature(
        self,
        response: Dict[str, Any],
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
        credential: StoredCredential,
        require_user_verification: bool = False,
    ) -> int:
        """
        Verify an authentication assertion.

        Returns:
            The authenticator's new signature counter.

        Raises:
            VerificationError: If any check fails.
        """


class PyWebAuthnVerifier(WebAuthnVerifier):
    """Verifier backed by the ``webauthn`` (py_webauthn) library."""

    def verify_attestation(
        self,
        response,
        expected_challenge,
        expected_origin,
        expected_rp_id,
        require_user_verification=False,
    ):
        try:
            verification = verify_registration_response(
                credential=response,
                expected_challenge=expected_challenge,
                expected_origin=expected_origin,
                expected_rp_id=expected_rp_id,
                require_user_verification=require_user_verification,
            )
        except Exception as e:
            raise VerificationError(str(e)) from e

        return RegistrationVerification(
            credential_id=bytes_to_base64url(verification.credential_id),
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
        )

    def verify_signature(
        self,
        response,
        expected_challenge,
        expected_origin,
        expected_rp_id,
        credential,
        require_user_verification=False,
    ):
        try:
            verification = verify_authentication_response(
                credential=response,
                expected_challenge=expected_challenge,
                expected_origin=expected_origin,
                expected_rp_id=expected_rp_id,
                credential_public_key=credential.public_key,
                credential_current_sign_count=credential.sign_count,
                require_user_verification=require_user_verification,
            )
        except Exception as e:
            raise VerificationError(str(e)) from e

        return verification.new_sign_count


class WebAuthnCeremony:
    """
    Challenge/response state machine for passkey registration and login.

    Example usage:
        ceremony = WebAuthnCeremony(store.client, PyWebAuthnVerifier(),
                                    rp_id="example.com", rp_name="Example",
                                    origin="https://example.com")
        options = ceremony.registration_options("alice")
        ceremony.verify_registration("alice", browser_response)
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        verifier: WebAuthnVerifier,
        rp_id: str,
        rp_name: str,
        origin: str,
        require_user_verification: bool = False,
        challenge_ttl: int = DEFAULT_CHALLENGE_TTL,
        user_ttl: Optional[int] = None,
    ):
        self.redis = redis_client
        self.verifier = verifier
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.origin = origin
        self.require_user_verification = require_user_verification
        self.challenge_ttl = challenge_ttl
        self.user_ttl = user_ttl

    @property
    def _user_verification(self) -> UserVerificationRequirement:
        if self.require_user_verification:
            return UserVerificationRequirement.REQUIRED
        return UserVerificationRequirement.PREFERRED

    # ==========================================
    # Registration
    # ==========================================

    def registration_options(self, user_id: str) -> Dict[str, Any]:
        """
        Start a registration ceremony.

        Returns:
            PublicKeyCredentialCreationOptions as a JSON-ready dict.
        """
        challenge = secrets.token_bytes(CHALLENGE_BYTES)
        owned = self.get_credentials(user_id)

        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=user_id.encode('utf-8'),
            user_name=user_id,
            challenge=challenge,
            exclude_credentials=[cred.descriptor() for cred in owned],
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=self._user_verification,
            ),
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )

        self._store_challenge(user_id, challenge)
        return json.loads(options_to_json(options))

    def verify_registration(self, user_id: str, response: Dict[str, Any]) -> StoredCredential:
        """
        Finish a registration ceremony and persist the new passkey.

        Raises:
            ChallengeExpired: No pending challenge.
            WebAuthnFailed: The attestation did not verify.
            CorruptRecord: The stored passkey list is unreadable.
        """
        expected_challenge = self._load_challenge(user_id)
        existing = self.get_credentials(user_id)

        try:
            result = self.verifier.verify_attestation(
                response,
                expected_challenge=expected_challenge,
                expected_origin=self.origin,
                expected_rp_id=self.rp_id,
                require_user_verification=self.require_user_verification,
            )
        except VerificationError as e:
            log_event(
                "AUTH_FAIL",
                "WebAuthn verification failed (register)",
                user=user_id,
                level=logging.ERROR,
                error=str(e),
            )
            raise WebAuthnFailed(context={"flow": "register"}) from e

        self._consume_challenge(user_id)

        transports = (response.get("response") or {}).get("transports") or []
        credential = StoredCredential(
            id=normalize_credential_id(result.credential_id),
            public_key=result.public_key,
            sign_count=result.sign_count,
            transports=list(transports),
        )
        credentials = [cred for cred in existing if cred.id != credential.id]
        credentials.append(credential)
        self._save_credentials(user_id, credentials)

        log_event("SETUP_COMPLETE", "Passkey registered successfully", user=user_id)
        return credential

    # ==========================================
    # Authentication
    # ==========================================

    def authentication_options(self, user_id: str) -> Dict[str, Any]:
        """
        Start an authentication ceremony restricted to the user's passkeys.

        Returns:
            PublicKeyCredentialRequestOptions as a JSON-ready dict.
        """
        challenge = secrets.token_bytes(CHALLENGE_BYTES)
        owned = self.get_credentials(user_id)

        options = generate_authentication_options(
            rp_id=self.rp_id,
            challenge=challenge,
            allow_credentials=[cred.descriptor() for cred in owned],
            user_verification=self._user_verification,
        )

        self._store_challenge(user_id, challenge)
        return json.loads(options_to_json(options))

    def verify_authentication(self, user_id: str, response: Dict[str, Any]) -> StoredCredential:
        """
        Finish an authentication ceremony and record the new counter.

        Raises:
            ChallengeExpired: No pending challenge.
            CredentialNotFound: The presented id is not one of the user's passkeys.
            WebAuthnFailed: The assertion did not verify.
        """
        expected_challenge = self._load_challenge(user_id)

        presented_id = normalize_credential_id(str(response.get("id") or ""))
        credentials = self.get_credentials(user_id)
        credential = next((c for c in credentials if c.id == presented_id), None)
        if credential is None:
            log_event("AUTH_FAIL", "Unknown passkey presented", user=user_id, level=logging.WARNING)
            raise CredentialNotFound()

        try:
            new_count = self.verifier.verify_signature(
                response,
                expected_challenge=expected_challenge,
                expected_origin=self.origin,
                expected_rp_id=self.rp_id,
                credential=credential,
                require_user_verification=self.require_user_verification,
            )
        except VerificationError as e:
            log_event(
                "AUTH_FAIL",
                "WebAuthn verification failed (login)",
                user=user_id,
                level=logging.ERROR,
                error=str(e),
            )
            raise WebAuthnFailed(context={"flow": "login"}) from e

        self._consume_challenge(user_id)

        # TODO: decide on a rejection policy for non-increasing counters;
        # for now a possible cloned authenticator is only reported.
        if (new_count or credential.sign_count) and new_count <= credential.sign_count:
            log_event(
                "CLONE_SUSPECTED",
                "Signature counter did not increase",
                user=user_id,
                level=logging.WARNING,
                stored=credential.sign_count,
                presented=new_count,
            )

        credential.sign_count = new_count
        self._save_credentials(
            user_id,
            [credential if c.id == credential.id else c for c in credentials],
        )
        return credential

    # ==========================================
    # Persistence Helpers
    # ==========================================

    def get_credentials(self, user_id: str) -> List[StoredCredential]:
        """
        Registered passkeys of a user.

        Raises:
            CorruptRecord: If the stored list cannot be parsed. Nothing is
                written back, so existing passkeys are never overwritten.
        """
        data = self.redis.get(credentials_key(user_id))
        if not data:
            return []
        try:
            return [StoredCredential.from_dict(item) for item in json.loads(data)]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Corrupt passkey list for {user_id}: {e}")
            raise CorruptRecord(
                "Stored passkey list is corrupt",
                context={"key": credentials_key(user_id)},
            ) from e

    def _save_credentials(self, user_id: str, credentials: List[StoredCredential]) -> None:
        key = credentials_key(user_id)
        payload = json.dumps([cred.to_dict() for cred in credentials])
        pipe = self.redis.pipeline(transaction=True)
        if self.user_ttl:
            pipe.set(key, payload, ex=self.user_ttl)
            pipe.expire(user_key(user_id), self.user_ttl)
        else:
            pipe.set(key, payload)
        pipe.execute()

    def _store_challenge(self, user_id: str, challenge: bytes) -> None:
        self.redis.set(
            challenge_key(user_id),
            bytes_to_base64url(challenge),
            ex=self.challenge_ttl,
        )

    def _load_challenge(self, user_id: str) -> bytes:
        stored = self.redis.get(challenge_key(user_id))
        if not stored:
            log_event("AUTH_FAIL", "WebAuthn challenge expired or not found", user=user_id, level=logging.WARNING)
            raise ChallengeExpired()
        return base64url_to_bytes(stored)

    def _consume_challenge(self, user_id: str) -> None:
        # Only the request that actually deletes the challenge may proceed
        if not self.redis.delete(challenge_key(user_id)):
            log_event("AUTH_FAIL", "WebAuthn challenge already consumed", user=user_id, level=logging.WARNING)
            raise ChallengeExpired()
