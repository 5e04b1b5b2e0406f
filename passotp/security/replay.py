"""
TOTP replay protection.

A TOTP code stays valid for its whole 30-second step (plus skew), so a
verified code must also be claimed: the first login in a step for a user
wins, any later one in the same step is a replay.
"""
import time
from typing import Callable, Optional

import redis

TIME_STEP = 30
MARKER_TTL = 60  # covers the step plus one step of skew


def time_step(now: float) -> int:
    return int(now // TIME_STEP)


class ReplayGuard:
    """Single-use claim per (user, time step) using SET NX EX."""

    def __init__(self, redis_client: redis.Redis, clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self._clock = clock

    def claim(self, user_id: str, now: Optional[float] = None) -> bool:
        """
        Claim the current time step for ``user_id``.

        Returns:
            True only for the first claim of the step.
        """
        step = time_step(self._clock() if now is None else now)
        key = f"replay:{user_id}:{step}"
        return bool(self.redis.set(key, "1", ex=MARKER_TTL, nx=True))
