"""
Runtime configuration for PassOTP.

Settings are read once from the environment (secrets may also come from
``{NAME}_FILE`` or Docker secret files, see ``secrets.get_secret``).
Components never read the environment themselves; they receive a
``Settings`` instance.
"""
import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .secrets import get_secret
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Default TTLs (seconds)
SESSION_TTL = 24 * 3600
USER_TTL = 30 * 24 * 3600
TEMP_TTL = 60


def getenv_bool(key: str, default: bool = False) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def getenv_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """Static configuration shared by every component."""

    env: str = "development"

    # Secrets
    encryption_key: Optional[str] = None
    session_secret: Optional[str] = None

    # Store
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_max_retries: int = 10

    # TTLs
    session_ttl: int = SESSION_TTL
    user_ttl: int = USER_TTL
    temp_ttl: int = TEMP_TTL

    # Rate limiting
    rate_limit_attempts: int = 5
    rate_limit_window: int = 300

    # Anti-enumeration delay on failed logins
    failure_delay: float = 0.2

    # TOTP
    totp_issuer: str = "PassOTP"

    # WebAuthn relying party
    rp_id: str = "localhost"
    rp_name: str = "PassOTP"
    origin: str = "http://localhost:3000"
    require_uv: bool = False

    # Debug output gates (both flags AND the risk confirmation are required)
    allow_debug_setup: bool = False
    enable_dev_verify: bool = False
    confirms_risk: bool = False

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def debug_setup_enabled(self) -> bool:
        """Whether /setup may return the raw secret and otpauth URI."""
        return self.allow_debug_setup and self.confirms_risk

    @property
    def dev_verify_enabled(self) -> bool:
        """Whether the /verify helper endpoint is exposed."""
        return self.enable_dev_verify and self.confirms_risk

    def validate(self) -> "Settings":
        """
        Fail fast on missing secrets in hardened deployments.

        Raises:
            ConfigurationError: If a required secret is absent in production.
        """
        if self.is_production:
            if not self.encryption_key:
                raise ConfigurationError("ENCRYPTION_KEY is required in production")
            if not self.session_secret:
                raise ConfigurationError("SESSION_SECRET is required in production")
        if self.rate_limit_attempts < 1 or self.rate_limit_window < 1:
            raise ConfigurationError("Rate limit attempts and window must be positive")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables and secret files."""
        settings = cls(
            env=os.getenv("APP_ENV", "development"),
            encryption_key=get_secret("ENCRYPTION_KEY"),
            session_secret=get_secret("SESSION_SECRET"),
            redis_url=os.getenv("REDIS_URL") or None,
            redis_host=os.getenv("REDIS_HOST", "localhost"),
            redis_port=getenv_int("REDIS_PORT", 6379),
            redis_password=get_secret("REDIS_PASSWORD") or None,
            redis_db=getenv_int("REDIS_DB", 0),
            redis_max_retries=getenv_int("REDIS_MAX_RETRIES", 10),
            session_ttl=getenv_int("SESSION_TTL", SESSION_TTL),
            user_ttl=getenv_int("USER_TTL", USER_TTL),
            temp_ttl=getenv_int("TEMP_TTL", TEMP_TTL),
            rate_limit_attempts=getenv_int("RATE_LIMIT_ATTEMPTS", 5),
            rate_limit_window=getenv_int("RATE_LIMIT_WINDOW", 300),
            failure_delay=getenv_int("FAILURE_DELAY_MS", 200) / 1000.0,
            totp_issuer=os.getenv("TOTP_ISSUER", "PassOTP"),
            rp_id=os.getenv("WEBAUTHN_RP_ID", "localhost"),
            rp_name=os.getenv("WEBAUTHN_RP_NAME", "PassOTP"),
            origin=os.getenv("WEBAUTHN_ORIGIN", "http://localhost:3000"),
            require_uv=getenv_bool("WEBAUTHN_REQUIRE_UV"),
            allow_debug_setup=getenv_bool("ALLOW_DEBUG_SETUP"),
            enable_dev_verify=getenv_bool("ENABLE_DEV_VERIFY"),
            confirms_risk=getenv_bool("I_UNDERSTAND_THE_RISK"),
        )
        return settings.validate()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (loaded once)."""
    settings = Settings.from_env()
    logger.info(f"Loaded settings (env={settings.env}, rp_id={settings.rp_id})")
    return settings
