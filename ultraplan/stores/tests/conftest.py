"""Shared fixtures for store, local store and router tests."""

from __future__ import annotations

import dataclasses

import pytest

from ultraplan.dependencies import SyncContainer, build_container
from ultraplan.services.local_store import MemoryStore
from ultraplan.sync.config_loader import SyncConfig, load_sync_config
from ultraplan.sync.session import StaticEntitlement, SyncSession
from ultraplan.sync.tests.fakes import InMemoryRemote

ACCOUNT_ID = "a0000000-0000-4000-8000-000000000001"
TEMPLATE_ACCOUNT_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def sync_config() -> SyncConfig:
    return dataclasses.replace(load_sync_config(), backup_delay_seconds=0.0)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def remote() -> InMemoryRemote:
    return InMemoryRemote()


@pytest.fixture
def container(store, remote, sync_config) -> SyncContainer:
    """Container for an entitled account."""
    session = SyncSession(entitlement=StaticEntitlement(is_entitled=True, account_id=ACCOUNT_ID))
    return build_container(store, remote=remote, session=session, config=sync_config)


@pytest.fixture
def offline_container(store, remote, sync_config) -> SyncContainer:
    """Container for a signed-out / non-subscribed user."""
    return build_container(store, remote=remote, session=SyncSession(), config=sync_config)
