"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from ultraplan.config import Settings, get_settings
from ultraplan.services.local_store import CollectionRepository, JsonFileStore, LocalStore
from ultraplan.stores import GearStore, NoteStore, PlanStore, RaceStore
from ultraplan.sync.backup import BackupPipeline
from ultraplan.sync.base import RemoteBackend
from ultraplan.sync.config_loader import SyncConfig, get_sync_config
from ultraplan.sync.identity import IdentityMapper
from ultraplan.sync.orchestrator import SyncOrchestrator
from ultraplan.sync.restore import RestorePipeline
from ultraplan.sync.session import SyncSession


@dataclass
class SyncContainer:
    """Everything the routes need, built once per process."""

    store: LocalStore
    repository: CollectionRepository
    session: SyncSession
    remote: RemoteBackend | None
    mapper: IdentityMapper
    orchestrator: SyncOrchestrator
    races: RaceStore
    gear: GearStore
    notes: NoteStore
    plans: PlanStore


def build_container(
    store: LocalStore,
    remote: RemoteBackend | None = None,
    session: SyncSession | None = None,
    config: SyncConfig | None = None,
) -> SyncContainer:
    """Wire the sync core around a local store and an optional remote."""
    config = config or get_sync_config()
    session = session or SyncSession()
    repository = CollectionRepository(store)
    mapper = IdentityMapper(store, session, remote, config)
    orchestrator = SyncOrchestrator(
        session,
        BackupPipeline(repository, mapper, remote, session),
        RestorePipeline(repository, mapper, remote, session),
        repository,
        config,
    )
    return SyncContainer(
        store=store,
        repository=repository,
        session=session,
        remote=remote,
        mapper=mapper,
        orchestrator=orchestrator,
        races=RaceStore(repository, orchestrator),
        gear=GearStore(repository, orchestrator),
        notes=NoteStore(repository, orchestrator),
        plans=PlanStore(repository, orchestrator, remote, session, config),
    )


def default_store(settings: Settings) -> LocalStore:
    return JsonFileStore(Path(settings.local_store_path))


async def get_container(request: Request) -> SyncContainer:
    """Return the container the lifespan hook stored on ``app.state``."""
    container: SyncContainer | None = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Sync core not initialized")
    return container


# Annotated shortcuts for route signatures
Container = Annotated[SyncContainer, Depends(get_container)]
AppSettings = Annotated[Settings, Depends(get_settings)]
