"""
Health Check Endpoints.

Provides health status for the API and its store.
"""
import os
import logging
from datetime import datetime, timezone

import redis
from fastapi import APIRouter, Depends

from ..models import HealthStatus
from ..deps import get_store
from ...database.store import StoreConnection
from ...errors import StoreUnavailable

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

# Version from environment or default
VERSION = os.getenv("APP_VERSION", "0.1.0")


@router.get("", response_model=HealthStatus)
def health_check(store: StoreConnection = Depends(get_store)):
    """
    Basic health check endpoint.

    Returns overall system status. The store is required: without it no
    authentication can happen.
    """
    services = {}
    overall_healthy = True

    try:
        latency = store.ping()
        services["redis"] = f"healthy ({latency:.1f}ms)"
    except (redis.RedisError, StoreUnavailable) as e:
        services["redis"] = f"unhealthy: {e}"
        overall_healthy = False

    return HealthStatus(
        status="healthy" if overall_healthy else "unhealthy",
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )
