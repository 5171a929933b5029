"""Health check endpoint - public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from ultraplan.dependencies import AppSettings, Container

router = APIRouter(tags=["system"])
logger = logging.getLogger("ultraplan.health")


@router.get("/health")
async def health_check(settings: AppSettings, container: Container) -> dict:
    """Liveness probe. Returns 200 if the process is up.

    Also probes the local store and, when configured, the remote database.
    """
    store_ok = await container.store.ping()
    remote_state = "disabled"
    if container.remote is not None:
        remote_state = "connected" if await container.remote.ping() else "unreachable"
    if not store_ok:
        logger.warning("Health check: local store unreachable")

    healthy = store_ok and remote_state != "unreachable"
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "local_store": "ok" if store_ok else "unreachable",
        "database": remote_state,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
