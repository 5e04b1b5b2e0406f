"""
Audit logging for security-relevant outcomes.

Events are classified (AUTH_FAIL, REPLAY_ATTACK, ...) and logged through the
standard ``logging`` tree under the ``passotp.audit`` logger. The event name
and metadata are attached as record attributes so a JSON formatter can pick
them up; the rendered message stays human readable.

Credential material never reaches the log: keys listed in ``REDACTED_KEYS``
are replaced before the record is built.
"""
import logging
from typing import Any, Dict, Optional

from .secrets import mask_secret

audit_logger = logging.getLogger("passotp.audit")

# Metadata keys that must never be logged in clear
REDACTED_KEYS = frozenset({
    "token",
    "secret",
    "code",
    "codes",
    "recovery_codes",
    "password",
    "encryption_key",
    "session_secret",
    "session_id",
})


def redact(meta: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``meta`` with credential material masked."""
    clean = {}
    for key, value in meta.items():
        if key.lower() in REDACTED_KEYS:
            clean[key] = mask_secret(value) if key == "session_id" and isinstance(value, str) else "***"
        else:
            clean[key] = value
    return clean


def log_event(
    event: str,
    message: str,
    *,
    user: Optional[str] = None,
    ip: Optional[str] = None,
    level: int = logging.INFO,
    **meta: Any,
) -> None:
    """
    Log a classified security event.

    Args:
        event: Event class (e.g. "AUTH_FAIL").
        message: Human readable description.
        user: Account identifier, if known.
        ip: Client address, if known.
        level: Logging level.
        **meta: Extra context; credential keys are redacted.
    """
    meta = redact(meta)
    parts = [f"[{event}] {message}"]
    if user is not None:
        parts.append(f"user={user}")
    if ip is not None:
        parts.append(f"ip={ip}")
    if meta:
        parts.append(" ".join(f"{k}={v}" for k, v in meta.items()))

    audit_logger.log(
        level,
        " ".join(parts),
        extra={"event": event, "user": user, "ip": ip, "meta": meta},
    )
