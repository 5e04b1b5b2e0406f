"""
Tests for configuration loading, secrets and audit logging.
"""
import logging

import pytest

from passotp.errors import ConfigurationError
from passotp.utils.audit import log_event, redact
from passotp.utils.config import Settings, getenv_bool, getenv_int
from passotp.utils.secrets import get_secret, mask_secret

ENV_KEYS = [
    "APP_ENV",
    "ENCRYPTION_KEY",
    "ENCRYPTION_KEY_FILE",
    "SESSION_SECRET",
    "SESSION_SECRET_FILE",
    "REDIS_PASSWORD",
    "RATE_LIMIT_ATTEMPTS",
    "FAILURE_DELAY_MS",
    "ALLOW_DEBUG_SETUP",
    "ENABLE_DEV_VERIFY",
    "I_UNDERSTAND_THE_RISK",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Empty environment and a fresh secrets cache."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_secret.cache_clear()
    yield monkeypatch
    get_secret.cache_clear()


class TestSecrets:

    def test_env_value(self, clean_env):
        clean_env.setenv("SESSION_SECRET", "from-env")
        assert get_secret("SESSION_SECRET") == "from-env"

    def test_file_takes_precedence(self, clean_env, tmp_path):
        secret_file = tmp_path / "key"
        secret_file.write_text("from-file\n")
        clean_env.setenv("ENCRYPTION_KEY", "from-env")
        clean_env.setenv("ENCRYPTION_KEY_FILE", str(secret_file))

        assert get_secret("ENCRYPTION_KEY") == "from-file"

    def test_default(self, clean_env):
        assert get_secret("PASSOTP_TEST_MISSING", "fallback") == "fallback"

    def test_mask_secret(self):
        assert mask_secret("abcdefghijkl") == "abcd...ijkl"
        assert mask_secret("short") == "***"


class TestSettings:

    def test_development_defaults(self, clean_env):
        settings = Settings.from_env()

        assert not settings.is_production
        assert settings.rate_limit_attempts == 5
        assert settings.rate_limit_window == 300
        assert settings.failure_delay == 0.2
        assert not settings.debug_setup_enabled
        assert not settings.dev_verify_enabled

    def test_production_requires_encryption_key(self, clean_env):
        clean_env.setenv("APP_ENV", "production")
        clean_env.setenv("SESSION_SECRET", "s")

        with pytest.raises(ConfigurationError, match="ENCRYPTION_KEY"):
            Settings.from_env()

    def test_production_requires_session_secret(self, clean_env):
        clean_env.setenv("APP_ENV", "production")
        clean_env.setenv("ENCRYPTION_KEY", "k")

        with pytest.raises(ConfigurationError, match="SESSION_SECRET"):
            Settings.from_env()

    def test_production_debug_gates(self, clean_env):
        clean_env.setenv("APP_ENV", "production")
        clean_env.setenv("ENCRYPTION_KEY", "k")
        clean_env.setenv("SESSION_SECRET", "s")
        clean_env.setenv("ALLOW_DEBUG_SETUP", "true")

        assert not Settings.from_env().debug_setup_enabled

        clean_env.setenv("I_UNDERSTAND_THE_RISK", "yes")
        settings = Settings.from_env()
        assert settings.debug_setup_enabled
        assert not settings.dev_verify_enabled

    def test_numeric_overrides(self, clean_env):
        clean_env.setenv("RATE_LIMIT_ATTEMPTS", "3")
        clean_env.setenv("FAILURE_DELAY_MS", "50")

        settings = Settings.from_env()
        assert settings.rate_limit_attempts == 3
        assert settings.failure_delay == 0.05

    def test_non_integer_rejected(self, clean_env):
        clean_env.setenv("RATE_LIMIT_ATTEMPTS", "many")

        with pytest.raises(ConfigurationError):
            Settings.from_env()

    def test_env_helpers(self, clean_env):
        clean_env.setenv("ALLOW_DEBUG_SETUP", "On")

        assert getenv_bool("ALLOW_DEBUG_SETUP")
        assert not getenv_bool("I_UNDERSTAND_THE_RISK")
        assert getenv_int("RATE_LIMIT_ATTEMPTS", 9) == 9


class TestAuditLog:

    def test_credentials_are_redacted(self, caplog):
        with caplog.at_level(logging.INFO, logger="passotp.audit"):
            log_event("AUTH_ATTEMPT", "Login attempt", user="alice", ip="10.0.0.1", token="123456")

        assert "[AUTH_ATTEMPT] Login attempt user=alice ip=10.0.0.1" in caplog.text
        assert "123456" not in caplog.text
        assert caplog.records[0].event == "AUTH_ATTEMPT"

    def test_redact(self):
        clean = redact({"secret": "JBSWY3DP", "codes": ["A", "B"], "remaining": 9})

        assert clean == {"secret": "***", "codes": "***", "remaining": 9}
