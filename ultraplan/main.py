"""Ultra Planner Sync - FastAPI application entry point.

Run locally:
    uvicorn ultraplan.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ultraplan.config import get_settings
from ultraplan.dependencies import SyncContainer, build_container, default_store
from ultraplan.routers import health, sync
from ultraplan.services.supabase import SupabaseRemote, close_pool, init_pool
from ultraplan.sync.session import SyncSession

# ---------- Logging ----------

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("ultraplan")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks.

    A container placed on ``app.state`` before startup is used as-is;
    otherwise one is built from settings.
    """
    settings = get_settings()
    logger.info(
        "Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment
    )
    owns_pool = False
    if getattr(app.state, "container", None) is None:
        session = SyncSession()
        remote = None
        if settings.supabase_db_url:
            await init_pool(settings)
            owns_pool = True
            remote = SupabaseRemote(lambda: session.account_id)
        else:
            logger.warning("SUPABASE_DB_URL not set; running local-only")
        app.state.container = build_container(
            default_store(settings), remote=remote, session=session
        )

    yield

    await app.state.container.orchestrator.drain()
    if owns_pool:
        await close_pool()
    logger.info("%s shut down", settings.app_name)


# ---------- App factory ----------

def create_app(container: SyncContainer | None = None) -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Ultra Planner Sync API",
        description=(
            "Local-first race planner storage with subscription-gated "
            "backup and restore to Supabase."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix - always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)

    return app


app = create_app()
