"""
PassOTP REST API - Main Application.

FastAPI-based REST API for multi-factor login (TOTP, passkeys, recovery codes).

Usage:
    # Development
    uvicorn passotp.api.main:app --reload --port 8000

    # Production
    APP_ENV=production ENCRYPTION_KEY=... SESSION_SECRET=... \
        uvicorn passotp.api.main:app --host 0.0.0.0 --port 8000 --workers 4
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .routes import auth_router, webauthn_router, health_router
from ..auth.orchestrator import build_orchestrator
from ..auth.webauthn import WebAuthnVerifier
from ..database.store import StoreConnection
from ..errors import AuthenticationFailed, RateLimited, StoreUnavailable, ValidationError
from ..utils.config import Settings, get_settings as load_settings

# Configure logging with request context support
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)


# Custom filter to add request_id to all log records
class RequestIdFilter(logging.Filter):
    """Add request_id to log records."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

API_TITLE = "PassOTP API"
API_DESCRIPTION = """
**Multi-factor authentication backend**

- **TOTP** - authenticator app codes with replay protection
- **Passkeys** - WebAuthn registration and login
- **Recovery codes** - 10 one-time codes issued at setup

## Flow

1. Setup: `POST /setup`
2. Login: `POST /login` (TOTP code or recovery code)
3. Use session: `Authorization: Bearer <session_id>` or the `session` cookie

## Rate Limits

5 attempts per 5 minutes per client address and per account, then
exponentially growing bans (30s up to ~64 minutes).
"""
API_VERSION = os.getenv("APP_VERSION", "0.1.0")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[StoreConnection] = None,
    verifier: Optional[WebAuthnVerifier] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Static configuration (default: loaded from the environment
            at startup).
        store: Store connection (default: built from settings at startup).
        verifier: WebAuthn verifier (default: py_webauthn adapter).
        sleep: Sleep function for the anti-enumeration delay.

    Returns:
        Configured FastAPI instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Loads settings (fatal on missing secrets in production), connects the
        store and wires the orchestrator; closes the store on shutdown.
        """
        app_settings = settings.validate() if settings is not None else load_settings()
        app_store = store or StoreConnection.from_settings(app_settings)
        if not app_store.connected:
            app_store.connect()

        extra = {"sleep": sleep} if sleep is not None else {}
        app.state.settings = app_settings
        app.state.store = app_store
        app.state.orchestrator = build_orchestrator(
            app_settings, app_store.client, verifier=verifier, **extra
        )
        logger.info(f"Starting PassOTP API v{API_VERSION} (env={app_settings.env})")

        yield

        logger.info("Shutting down PassOTP API")
        app_store.close()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Request tracking and security headers middleware
    @app.middleware("http")
    async def add_request_tracking_and_security(request: Request, call_next):
        # Generate or extract request ID for tracing
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id

        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"[{request_id}] Request failed: {e}", exc_info=True)
            raise

        process_time = (time.time() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"

        if not request.url.path.startswith("/health"):
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} "
                f"-> {response.status_code} ({process_time:.1f}ms)"
            )

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = " -> ".join(str(l) for l in error["loc"])
            errors.append(f"{loc}: {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "message": "; ".join(errors),
                "code": "VALIDATION_ERROR",
            },
        )

    @app.exception_handler(ValidationError)
    async def bad_request_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": exc.message, "code": "BAD_REQUEST"},
        )

    @app.exception_handler(RateLimited)
    async def rate_limited_handler(request: Request, exc: RateLimited):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "success": False,
                "message": exc.message,
                "code": "RATE_LIMITED",
                "retry_after": exc.retry_after,
            },
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(AuthenticationFailed)
    async def authentication_failed_handler(request: Request, exc: AuthenticationFailed):
        # exc.message is always the generic text; exc.reason stays internal
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"success": False, "message": exc.message, "code": "AUTH_FAILED"},
        )

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error(f"Store unavailable: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "message": "Service temporarily unavailable.", "code": "STORE_UNAVAILABLE"},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "Internal Server Error",
                "request_id": request_id,
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(webauthn_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "passotp.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
