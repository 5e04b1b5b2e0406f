"""
Session issuance.

Sessions are JSON records in ``session:{id}`` with a fixed TTL. The session id
is an opaque bearer identifier (uuid4); when handed out as a cookie it is
HMAC-signed with SESSION_SECRET so tampered cookies are rejected before any
store lookup.

Issuing a session also refreshes the TTLs of the user's stored material
(encrypted secret, recovery codes, passkeys) so active accounts never expire
mid-use.
"""
import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

import redis

from ..database.store import credentials_key, recovery_key, session_key, user_key

logger = logging.getLogger(__name__)

# Authentication methods recorded on the session
METHOD_TOTP = "TOTP_APP"
METHOD_RECOVERY = "RECOVERY_CODE"
METHOD_WEBAUTHN = "WEBAUTHN_PASSKEY"


class SessionIssuer:
    """
    Create, read and revoke sessions.

    Example usage:
        sessions = SessionIssuer(store.client, session_ttl=86400, user_ttl=2592000)
        session_id = sessions.issue("alice", "10.0.0.1", "curl/8", METHOD_TOTP)
        record = sessions.get(session_id)
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        session_ttl: int,
        user_ttl: int,
        signing_secret: Optional[str] = None,
    ):
        self.redis = redis_client
        self.session_ttl = session_ttl
        self.user_ttl = user_ttl
        self._signing_key = (signing_secret or "").encode('utf-8')

    def issue(self, user_id: str, ip: str, user_agent: str, method: str) -> str:
        """
        Create a session for an authenticated user.

        Returns:
            Session id.
        """
        session_id = str(uuid.uuid4())
        record = {
            "user": user_id,
            "ip": ip,
            "user_agent": user_agent,
            "method": method,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.redis.set(session_key(session_id), json.dumps(record), ex=self.session_ttl)
        self.refresh_user_records(user_id)

        logger.debug(f"Created session for user {user_id} via {method}, ttl {self.session_ttl}s")
        return session_id

    def refresh_user_records(self, user_id: str) -> None:
        """Extend the TTL of every stored record of the user."""
        pipe = self.redis.pipeline(transaction=False)
        pipe.expire(user_key(user_id), self.user_ttl)
        pipe.expire(recovery_key(user_id), self.user_ttl)
        pipe.expire(credentials_key(user_id), self.user_ttl)
        pipe.execute()

    def get(self, session_id: str) -> Optional[Dict]:
        """
        Load a session.

        Returns:
            Session dict or None if unknown/expired.
        """
        data = self.redis.get(session_key(session_id))
        if not data:
            return None
        try:
            record = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed session record")
            return None
        record["session_id"] = session_id
        return record

    def revoke(self, session_id: str) -> bool:
        """
        Invalidate (logout) a session.

        Returns:
            True if a session was removed.
        """
        removed = self.redis.delete(session_key(session_id))
        logger.debug("Invalidated session")
        return bool(removed)

    def _signature(self, session_id: str) -> str:
        return hmac.new(self._signing_key, session_id.encode('utf-8'), hashlib.sha256).hexdigest()

    def sign(self, session_id: str) -> str:
        """Cookie value ``{session_id}.{hmac}``."""
        return f"{session_id}.{self._signature(session_id)}"

    def unsign(self, value: str) -> Optional[str]:
        """
        Verify a signed cookie value.

        Returns:
            The session id, or None if the signature does not match.
        """
        session_id, sep, signature = value.rpartition(".")
        if not sep or not session_id:
            return None
        if not hmac.compare_digest(signature, self._signature(session_id)):
            return None
        return session_id
