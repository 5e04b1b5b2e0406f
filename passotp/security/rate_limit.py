"""
Windowed rate limiting with exponential ban escalation.

Each identifier (e.g. "ip:10.0.0.1" or "user:alice") owns two keys:

    ratelimit:{identifier}  attempt counter, TTL = window (set on first hit)
    ban:{identifier}        ban marker, TTL = ban length

The ban is authoritative: while it exists the counter is not touched. Once
the counter passes the limit, every further attempt sets a ban of
30s * 2^(excess-1), with excess capped at 7 (~64 minutes).

The window is opened with SET NX EX and counted with INCR (which keeps the
TTL) in one MULTI/EXEC transaction, so concurrent attempts each observe a
distinct count and cannot all pass before a ban lands. Only commands
available since Redis 2.6.12 are used.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import redis

from ..errors import RateLimited

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_WINDOW = 300
BASE_BAN_SECONDS = 30
MAX_BAN_POWER = 7


def ban_duration(excess: int) -> int:
    """Ban length in seconds for ``excess`` attempts over the limit."""
    power = min(max(excess, 1), MAX_BAN_POWER)
    return BASE_BAN_SECONDS * 2 ** (power - 1)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check."""
    allowed: bool
    retry_after: Optional[int] = None


class RateLimiter:
    """
    Redis-backed attempt limiter.

    Example usage:
        limiter = RateLimiter(store.client)
        result = limiter.check_and_consume("ip:10.0.0.1")
        if not result.allowed:
            ...  # answer 429 with Retry-After: result.retry_after
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW,
    ):
        self.redis = redis_client
        self.limit = limit
        self.window_seconds = window_seconds

    def check_and_consume(self, identifier: str) -> RateLimitResult:
        """
        Record an attempt for ``identifier`` and decide whether it may proceed.

        Returns:
            RateLimitResult with ``retry_after`` seconds when denied.
        """
        key = f"ratelimit:{identifier}"
        ban_key = f"ban:{identifier}"

        # Active ban short-circuits the counter
        ban_ttl = self.redis.ttl(ban_key)
        if ban_ttl is not None and ban_ttl > 0:
            return RateLimitResult(allowed=False, retry_after=int(ban_ttl))

        pipe = self.redis.pipeline(transaction=True)
        pipe.set(key, 0, ex=self.window_seconds, nx=True)
        pipe.incr(key)
        current = int(pipe.execute()[1])

        if current > self.limit:
            ban_seconds = ban_duration(current - self.limit)
            self.redis.set(ban_key, "banned", ex=ban_seconds)
            logger.debug(f"Ban set for {identifier}: {ban_seconds}s (attempt {current})")
            return RateLimitResult(allowed=False, retry_after=ban_seconds)

        return RateLimitResult(allowed=True)

    def enforce(self, identifier: str, scope: str = "ip") -> None:
        """
        Like ``check_and_consume`` but raises when denied.

        Raises:
            RateLimited: If the identifier is over its limit or banned.
        """
        result = self.check_and_consume(identifier)
        if not result.allowed:
            raise RateLimited(result.retry_after or BASE_BAN_SECONDS, scope=scope)

    def reset(self, identifier: str) -> None:
        """Clear counter and ban for an identifier (administrative unlock)."""
        self.redis.delete(f"ratelimit:{identifier}", f"ban:{identifier}")
        logger.info(f"Rate limit reset for {identifier}")
