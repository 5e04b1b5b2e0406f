"""
Pytest configuration and shared fixtures for PassOTP tests.

This module provides common test fixtures for:
- A controllable clock
- An in-memory Redis double with TTL and atomic primitives
- A scripted WebAuthn verifier
- Wired components and a FastAPI test client
"""
import math
import sys
from pathlib import Path

import pytest

# Add project root to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from passotp.auth import mfa
from passotp.auth.orchestrator import build_orchestrator
from passotp.auth.webauthn import RegistrationVerification, VerificationError, WebAuthnVerifier
from passotp.database.store import StoreConnection
from passotp.utils.config import Settings

# A 30-second step boundary
START_TIME = 1_700_000_010.0


# ============================================
# Clock and Store Fixtures
# ============================================

class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockPipeline:
    """Buffers commands and runs them back to back on execute()."""

    def __init__(self, client):
        self._client = client
        self._ops = []

    def __getattr__(self, name):
        def command(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self
        return command

    def execute(self):
        results = [getattr(self._client, name)(*args, **kwargs) for name, args, kwargs in self._ops]
        self._ops = []
        return results


class MockRedisClient:
    """
    In-memory Redis double for sessions, rate limiting and vault tests.

    Implements the subset of commands the core uses, with per-key TTLs
    driven by a FakeClock.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.store = {}
        self.expiry = {}
        self.closed = False
        self.ping_failures = 0

    def _purge(self, key):
        expires_at = self.expiry.get(key)
        if expires_at is not None and self.clock() >= expires_at:
            self.store.pop(key, None)
            self.expiry.pop(key, None)

    def _live(self, key):
        self._purge(key)
        return key in self.store

    def ping(self):
        import redis
        if self.ping_failures > 0:
            self.ping_failures -= 1
            raise redis.ConnectionError("connection refused")
        return True

    def close(self):
        self.closed = True

    def pipeline(self, transaction=True):
        return MockPipeline(self)

    # Strings

    def get(self, key):
        return self.store.get(key) if self._live(key) else None

    def set(self, key, value, ex=None, nx=False):
        if nx and self._live(key):
            return None
        self.store[key] = str(value)
        if ex:
            self.expiry[key] = self.clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    def incr(self, key):
        value = int(self.store[key]) + 1 if self._live(key) else 1
        self.store[key] = str(value)
        return value

    # Keys

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._live(key):
                removed += 1
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    def exists(self, key):
        return int(self._live(key))

    def expire(self, key, seconds, nx=False):
        if not self._live(key):
            return False
        if nx and key in self.expiry:
            return False
        self.expiry[key] = self.clock() + seconds
        return True

    def ttl(self, key):
        if not self._live(key):
            return -2
        if key not in self.expiry:
            return -1
        return int(math.ceil(self.expiry[key] - self.clock()))

    # Hashes

    def hset(self, key, field=None, value=None, mapping=None):
        data = self.store.get(key) if self._live(key) else None
        if not isinstance(data, dict):
            data = {}
        if field is not None:
            data[field] = str(value)
        for k, v in (mapping or {}).items():
            data[k] = str(v)
        self.store[key] = data
        return len(data)

    def hget(self, key, field):
        data = self.store.get(key) if self._live(key) else None
        return data.get(field) if isinstance(data, dict) else None

    def hgetall(self, key):
        data = self.store.get(key) if self._live(key) else None
        return dict(data) if isinstance(data, dict) else {}

    # Sets

    def sadd(self, key, *values):
        data = self.store.get(key) if self._live(key) else None
        if not isinstance(data, set):
            data = set()
        before = len(data)
        data.update(values)
        self.store[key] = data
        return len(data) - before

    def smembers(self, key):
        data = self.store.get(key) if self._live(key) else None
        return set(data) if isinstance(data, set) else set()

    def srem(self, key, *values):
        data = self.store.get(key) if self._live(key) else None
        if not isinstance(data, set):
            return 0
        removed = len(data & set(values))
        data.difference_update(values)
        if not data:
            self.delete(key)
        return removed

    def scard(self, key):
        return len(self.smembers(key))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_redis_client(clock):
    """
    Mock Redis client for testing sessions, rate limiting and the vault.
    """
    return MockRedisClient(clock)


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Cheap bcrypt work factor so vault tests stay fast."""
    real_gensalt = mfa.bcrypt.gensalt
    monkeypatch.setattr(mfa.bcrypt, "gensalt", lambda rounds=10, prefix=b"2b": real_gensalt(4, prefix))


# ============================================
# WebAuthn Fixtures
# ============================================

class ScriptedVerifier(WebAuthnVerifier):
    """
    WebAuthn verifier with scripted outcomes.

    Set ``fail`` to make the next verification raise, and ``sign_count`` to
    choose the counter reported by assertions.
    """

    def __init__(self):
        self.fail = False
        self.sign_count = 1
        self.credential_id = "Y3JlZGVudGlhbC0x"
        self.public_key = b"\x01\x02public-key"
        self.calls = []

    def verify_attestation(self, response, expected_challenge, expected_origin, expected_rp_id,
                           require_user_verification=False):
        self.calls.append(("attestation", expected_challenge, expected_origin, expected_rp_id))
        if self.fail:
            raise VerificationError("attestation rejected")
        return RegistrationVerification(
            credential_id=self.credential_id,
            public_key=self.public_key,
            sign_count=0,
        )

    def verify_signature(self, response, expected_challenge, expected_origin, expected_rp_id,
                         credential, require_user_verification=False):
        self.calls.append(("signature", expected_challenge, expected_origin, expected_rp_id))
        if self.fail:
            raise VerificationError("signature rejected")
        return self.sign_count


@pytest.fixture
def verifier():
    return ScriptedVerifier()


# ============================================
# Component Fixtures
# ============================================

@pytest.fixture
def settings():
    """Development settings with debug output enabled. Delays are recorded by `sleeps`, never slept."""
    return Settings(
        encryption_key="a" * 64,
        session_secret="test-session-secret",
        failure_delay=0.2,
        rp_id="localhost",
        rp_name="PassOTP",
        origin="http://localhost:3000",
        allow_debug_setup=True,
        enable_dev_verify=True,
        confirms_risk=True,
    )


@pytest.fixture
def sleeps():
    """Records every anti-enumeration delay instead of sleeping."""
    return []


@pytest.fixture
def orchestrator(settings, mock_redis_client, verifier, sleeps, clock):
    return build_orchestrator(
        settings,
        mock_redis_client,
        verifier=verifier,
        sleep=sleeps.append,
        clock=clock,
    )


@pytest.fixture
def client(settings, mock_redis_client, verifier, sleeps):
    """FastAPI test client wired to the in-memory store."""
    from fastapi.testclient import TestClient
    from passotp.api.main import create_app

    app = create_app(
        settings=settings,
        store=StoreConnection(client=mock_redis_client),
        verifier=verifier,
        sleep=sleeps.append,
    )
    with TestClient(app) as test_client:
        yield test_client
