"""Sync control endpoints: session transitions, status, forced backup/restore."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query

from ultraplan.dependencies import Container
from ultraplan.models.sync import RestoreRead, SessionRead, SessionUpdate, SyncStatusRead
from ultraplan.sync.base import NOT_ENTITLED, Collection

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("ultraplan.routers.sync")


def _status(container) -> SyncStatusRead:
    session = container.session
    return SyncStatusRead(
        account_id=session.account_id,
        is_entitled=session.is_entitled,
        started_at=session.started_at,
        last_backup_at=session.last_backup_at,
        fetched=sorted(c.value for c in session.fetched),
        pending_tasks=container.orchestrator.pending_tasks,
    )


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(container: Container) -> Any:
    return _status(container)


@router.post("/session", response_model=SessionRead)
async def update_session(container: Container, body: SessionUpdate) -> Any:
    """Apply a sign-in / entitlement change; activation restores every collection."""
    results = await container.orchestrator.on_entitlement_changed(
        body.account_id, body.is_entitled
    )
    return SessionRead(
        status=_status(container),
        restored={c.value: (r.to_dict() if r else None) for c, r in results.items()},
    )


@router.delete("/session", response_model=SyncStatusRead)
async def end_session(container: Container) -> Any:
    await container.orchestrator.sign_out()
    return _status(container)


@router.post("/{collection}/backup")
async def backup_collection(container: Container, collection: Collection) -> dict:
    report = await container.orchestrator.force_backup(collection)
    return report.to_dict()


@router.post("/{collection}/restore", response_model=RestoreRead)
async def restore_collection(
    container: Container,
    collection: Collection,
    force: bool = Query(default=False, description="Re-run even if already fetched"),
) -> Any:
    session = container.session
    if force:
        session.clear_fetched(collection)
    result = await container.orchestrator.ensure_fetched(collection)
    if result is None:
        reason = NOT_ENTITLED if not session.is_entitled else "already-fetched"
        return RestoreRead(collection=collection.value, ran=False, reason=reason)
    return RestoreRead(collection=collection.value, ran=True, result=result.to_dict())
