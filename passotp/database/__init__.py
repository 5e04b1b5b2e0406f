"""
Storage layer for PassOTP.

This package provides:
- store: lifecycled Redis connection shared by every core component
"""
from .store import StoreConnection, StoreUnavailable

__all__ = ["StoreConnection", "StoreUnavailable"]
