"""Shared fixtures for the sync core tests."""

from __future__ import annotations

import dataclasses

import pytest

from ultraplan.services.local_store import CollectionRepository, MemoryStore
from ultraplan.sync.backup import BackupPipeline
from ultraplan.sync.config_loader import SyncConfig, load_sync_config
from ultraplan.sync.identity import IdentityMapper
from ultraplan.sync.orchestrator import SyncOrchestrator
from ultraplan.sync.restore import RestorePipeline
from ultraplan.sync.session import StaticEntitlement, SyncSession
from ultraplan.sync.tests.fakes import InMemoryRemote

# Canonical test account
ACCOUNT_ID = "a0000000-0000-4000-8000-000000000001"
OTHER_ACCOUNT_ID = "b0000000-0000-4000-8000-000000000002"


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """The bundled config, with deferred work running immediately."""
    return dataclasses.replace(load_sync_config(), backup_delay_seconds=0.0)


# ---------------------------------------------------------------------------
# Core objects
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def repository(store: MemoryStore) -> CollectionRepository:
    return CollectionRepository(store)


@pytest.fixture
def remote() -> InMemoryRemote:
    return InMemoryRemote()


@pytest.fixture
def session() -> SyncSession:
    """An entitled session for ACCOUNT_ID."""
    return SyncSession(entitlement=StaticEntitlement(is_entitled=True, account_id=ACCOUNT_ID))


@pytest.fixture
def mapper(store, session, remote, sync_config) -> IdentityMapper:
    return IdentityMapper(store, session, remote, sync_config)


@pytest.fixture
def backup(repository, mapper, remote, session) -> BackupPipeline:
    return BackupPipeline(repository, mapper, remote, session)


@pytest.fixture
def restore(repository, mapper, remote, session) -> RestorePipeline:
    return RestorePipeline(repository, mapper, remote, session)


@pytest.fixture
def orchestrator(session, backup, restore, repository, sync_config) -> SyncOrchestrator:
    return SyncOrchestrator(session, backup, restore, repository, sync_config)


# ---------------------------------------------------------------------------
# Sample records (on-device JSON)
# ---------------------------------------------------------------------------


@pytest.fixture
def boston_race() -> dict:
    return {
        "id": "r1",
        "name": "Boston",
        "distance": 26.2,
        "distanceUnit": "miles",
        "date": "2026-04-20",
        "aidStations": [
            {"id": "as1", "name": "Mile 6", "distance": 6},
            {"id": "as2", "name": "Mile 13", "distance": 13.1},
        ],
    }


@pytest.fixture
def utmb_race() -> dict:
    return {
        "id": "r9",
        "name": "UTMB",
        "distance": 171,
        "distanceUnit": "km",
        "aidStations": [{"id": "as9", "name": "Courmayeur", "distance": 80}],
        "preparation": {
            "gearItems": [{"name": "Poles"}],
            "dropBags": [{"id": "db9", "name": "Courmayeur bag", "aidStationId": "as9"}],
        },
        "crewMembers": [{"id": "cm9", "name": "Sam", "role": "crew chief"}],
    }
