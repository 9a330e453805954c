"""Health check endpoint for the CMDB Engine."""
from __future__ import annotations
import asyncio
import time

from fastapi import APIRouter, Request

from src.shared.models.common import HealthStatus
from src.shared.constants import VERSION, CMDB_ENGINE_SERVICE_NAME

router = APIRouter(prefix="/api", tags=["health"])


def _store_status(store) -> str:
    if not store.available:
        return "unavailable"
    return "connected" if store.ping() else "disconnected"


@router.get("/health", response_model=HealthStatus)
async def health(request: Request) -> HealthStatus:
    """Health check endpoint."""

    def _check() -> HealthStatus:
        services = getattr(request.app.state, "services", None)
        if services is None:
            db_status = inventory_status = "unavailable"
        else:
            db_status = _store_status(services.ci_store)
            inventory_status = _store_status(services.inventory_store)

        start_time = getattr(request.app.state, "start_time", time.time())

        if db_status == "connected" and inventory_status == "connected":
            status = "healthy"
        elif db_status == "connected":
            status = "degraded"
        else:
            status = "unhealthy"

        return HealthStatus(
            status=status,
            service_name=CMDB_ENGINE_SERVICE_NAME,
            version=VERSION,
            database=db_status,
            inventory_database=inventory_status,
            uptime_seconds=time.time() - start_time,
        )

    return await asyncio.to_thread(_check)
