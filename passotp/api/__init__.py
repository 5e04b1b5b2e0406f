"""
PassOTP REST API.

FastAPI-based REST API exposing setup, login and passkey ceremonies.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
