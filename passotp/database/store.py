"""
Redis connection manager for PassOTP.

All durable authentication state lives in Redis (per-key TTL and atomic
primitives). The connection is an explicitly lifecycled resource: the
application connects it at startup, hands ``store.client`` to the core
components, and closes it at shutdown.

Key schema (colon-namespaced):
    user:{id}                  hash, field "secret" = encrypted TOTP secret
    recovery:{id}              set of bcrypt hashes
    webauthn:credentials:{id}  JSON list of passkeys
    webauthn:challenge:{id}    pending ceremony challenge
    session:{id}               JSON session record
    ratelimit:{scope:id}       attempt counter
    ban:{scope:id}             ban marker
    replay:{id}:{step}         TOTP replay marker
"""
import time
import logging
from typing import Optional

import redis

from ..errors import StoreUnavailable
from ..utils.config import Settings

logger = logging.getLogger(__name__)

# Linear reconnect backoff: attempt * 50ms, capped at 2s
BACKOFF_STEP = 0.05
BACKOFF_CAP = 2.0


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def recovery_key(user_id: str) -> str:
    return f"recovery:{user_id}"


def credentials_key(user_id: str) -> str:
    return f"webauthn:credentials:{user_id}"


def challenge_key(user_id: str) -> str:
    return f"webauthn:challenge:{user_id}"


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def backoff_delay(attempt: int) -> float:
    """Delay before reconnect attempt ``attempt`` (1-based)."""
    return min(attempt * BACKOFF_STEP, BACKOFF_CAP)


class StoreConnection:
    """
    Lifecycled Redis connection.

    Example usage:
        store = StoreConnection.from_settings(settings)
        store.connect()
        limiter = RateLimiter(store.client)
        ...
        store.close()

    Or as a context manager:
        with StoreConnection.from_settings(settings) as store:
            ...
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        *,
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
        max_retries: int = 10,
        sleep=time.sleep,
    ):
        """
        Args:
            client: Pre-built client (tests inject an in-memory double).
            url: redis:// URL; takes precedence over host/port.
            max_retries: Connection attempts before giving up.
            sleep: Sleep function used between attempts.
        """
        self._client = client
        self._url = url
        self._host = host
        self._port = port
        self._password = password
        self._db = db
        self.max_retries = max(1, max_retries)
        self._sleep = sleep
        self._connected = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoreConnection":
        return cls(
            url=settings.redis_url,
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password,
            db=settings.redis_db,
            max_retries=settings.redis_max_retries,
        )

    def _build_client(self) -> redis.Redis:
        if self._url:
            return redis.Redis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return redis.Redis(
            host=self._host,
            port=self._port,
            password=self._password,
            db=self._db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )

    def connect(self) -> redis.Redis:
        """
        Connect and ping, retrying with a bounded linear backoff.

        Returns:
            The connected client.

        Raises:
            StoreUnavailable: If every attempt failed.
        """
        if self._client is None:
            self._client = self._build_client()

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                self._client.ping()
                self._connected = True
                logger.info(f"Redis connected (attempt {attempt})")
                return self._client
            except redis.RedisError as e:
                last_error = e
                if attempt == self.max_retries:
                    break
                delay = backoff_delay(attempt)
                logger.warning(f"Redis connection failed: {e}. Retrying in {delay:.2f}s")
                self._sleep(delay)

        logger.error(f"Redis unavailable after {self.max_retries} attempts: {last_error}")
        raise StoreUnavailable(
            "Key-value store unavailable",
            context={"attempts": self.max_retries},
        ) from last_error

    @property
    def client(self) -> redis.Redis:
        """The connected client. Raises if ``connect()`` was not called."""
        if self._client is None or not self._connected:
            raise StoreUnavailable("Store is not connected")
        return self._client

    @property
    def connected(self) -> bool:
        return self._connected

    def ping(self) -> float:
        """Round-trip latency in milliseconds."""
        start = time.time()
        self.client.ping()
        return (time.time() - start) * 1000

    def close(self) -> None:
        """Release the connection pool."""
        if self._client is not None:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
        self._connected = False
        logger.info("Redis connection closed")

    def __enter__(self) -> "StoreConnection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
