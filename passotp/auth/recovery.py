"""
Recovery code vault.

Codes are stored only as salted bcrypt hashes in the Redis set
``recovery:{user}``. Because each hash is salted, an input code cannot be
looked up directly: redemption scans the (at most 10) hashes and compares
each one. The matching hash is removed with SREM, and the redemption only
counts if that removal actually happened, so two concurrent requests with
the same code cannot both succeed.
"""
import logging
from typing import List, Optional

import redis

from .mfa import RECOVERY_CODE_COUNT, generate_recovery_codes, hash_recovery_code, verify_recovery_code
from ..database.store import recovery_key
from ..utils.audit import log_event

logger = logging.getLogger(__name__)


class RecoveryVault:
    """
    One-time recovery codes.

    Example usage:
        vault = RecoveryVault(store.client)
        codes = vault.issue("alice")      # show once, never stored in clear
        vault.redeem("alice", codes[0])   # True
        vault.redeem("alice", codes[0])   # False
    """

    def __init__(self, redis_client: redis.Redis, ttl_seconds: Optional[int] = None):
        """
        Args:
            redis_client: Store client.
            ttl_seconds: Expiry applied to a freshly issued set.
        """
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def issue(self, user_id: str, count: int = RECOVERY_CODE_COUNT) -> List[str]:
        """
        Generate ``count`` codes and replace the stored set with their hashes.

        Returns:
            The plain codes. They are not retrievable afterwards.
        """
        codes = generate_recovery_codes(count)
        hashes = [hash_recovery_code(code) for code in codes]
        key = recovery_key(user_id)

        pipe = self.redis.pipeline(transaction=True)
        pipe.delete(key)
        pipe.sadd(key, *hashes)
        if self.ttl_seconds:
            pipe.expire(key, self.ttl_seconds)
        pipe.execute()

        log_event(
            "SETUP_COMPLETE",
            f"Generated and secured {len(codes)} recovery codes",
            user=user_id,
        )
        return codes

    def redeem(self, user_id: str, code: str) -> bool:
        """
        Consume a recovery code.

        Returns:
            True if the code matched a stored hash and this call removed it.
        """
        key = recovery_key(user_id)
        hashes = self.redis.smembers(key)
        if not hashes:
            return False

        for hashed in hashes:
            if verify_recovery_code(code, hashed):
                removed = self.redis.srem(key, hashed)
                if removed != 1:
                    # Lost the race to a concurrent redemption of the same code
                    logger.debug(f"Recovery code already consumed for {user_id}")
                    return False

                log_event(
                    "RECOVERY_USE",
                    "Recovery code used successfully. Code invalidated.",
                    user=user_id,
                    level=logging.WARNING,
                    remaining=len(hashes) - 1,
                )
                return True

        return False

    def remaining(self, user_id: str) -> int:
        """Number of unused codes."""
        return int(self.redis.scard(recovery_key(user_id)))
