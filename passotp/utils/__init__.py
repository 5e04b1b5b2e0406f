"""
Shared utilities for PassOTP.

This package provides:
- Configuration management
- Audit logging utilities
- Secrets management
"""
from .secrets import get_secret, mask_secret
from .config import Settings, get_settings
from .audit import log_event

__all__ = [
    "get_secret",
    "mask_secret",
    "Settings",
    "get_settings",
    "log_event",
]
