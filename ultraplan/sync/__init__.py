"""Ultra Planner reconciliation core.

Keeps the on-device store and the remote relational store in step for
entitled accounts.

Core modules:
    base          - Collections, result models, RemoteBackend ABC
    session       - Entitlement gate and per-session fetched flags
    identity      - Local-id to remote-id mapping and reconciliation strategies
    codecs        - Row translation between local records and remote tables
    backup        - Upload pipeline (upsert + replace-all children)
    restore       - Download pipeline with non-destructive merge
    orchestrator  - Once-per-session restores, deferred backups, per-collection locks
    config_loader - Load/validate/reload sync_config.yaml
"""

from ultraplan.sync.backup import BackupPipeline
from ultraplan.sync.base import (
    NOT_ENTITLED,
    BackupReport,
    Collection,
    EntityOutcome,
    RemoteBackend,
    RemoteError,
    RestoreResult,
)
from ultraplan.sync.config_loader import SyncConfig, get_sync_config
from ultraplan.sync.identity import IdentityMapper
from ultraplan.sync.orchestrator import SyncOrchestrator
from ultraplan.sync.restore import RestorePipeline, merge_entity
from ultraplan.sync.session import StaticEntitlement, SyncSession

__all__ = [
    "NOT_ENTITLED",
    "BackupPipeline",
    "BackupReport",
    "Collection",
    "EntityOutcome",
    "IdentityMapper",
    "RemoteBackend",
    "RemoteError",
    "RestorePipeline",
    "RestoreResult",
    "StaticEntitlement",
    "SyncConfig",
    "SyncOrchestrator",
    "SyncSession",
    "get_sync_config",
    "merge_entity",
]
