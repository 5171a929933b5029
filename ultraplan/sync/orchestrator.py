"""Sync orchestrator: decides when restores and backups run.

- Restores run at most once per collection per session (``ensure_fetched``),
  even if the restore failed; a retry needs a new session or ``force``.
- Mutations schedule a deferred backup (or remote delete) as a detached
  asyncio task.  Callers never await it; pending backups of the same
  collection coalesce into one.
- One ``asyncio.Lock`` per collection serializes backup, delete and restore
  of that collection, so two passes never mint for the same entity at once.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from ultraplan.models.base import utc_now
from ultraplan.services.local_store import CollectionRepository
from ultraplan.sync.backup import BackupPipeline
from ultraplan.sync.base import (
    NOT_ENTITLED,
    RESTORE_ORDER,
    BackupReport,
    Collection,
    RestoreResult,
)
from ultraplan.sync.config_loader import SyncConfig, get_sync_config
from ultraplan.sync.restore import RestorePipeline
from ultraplan.sync.session import SyncSession

logger = logging.getLogger("ultraplan.sync.orchestrator")

LAST_BACKUP_KEY = "lastBackupDate"


class SyncOrchestrator:
    """Glue between the stores, the session and the two pipelines."""

    def __init__(
        self,
        session: SyncSession,
        backup: BackupPipeline,
        restore: RestorePipeline,
        repository: CollectionRepository,
        config: SyncConfig | None = None,
    ) -> None:
        self.session = session
        self.backup_pipeline = backup
        self.restore_pipeline = restore
        self.repository = repository
        self.config = config or get_sync_config()
        self._locks: dict[Collection, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pending_backups: dict[Collection, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def ensure_fetched(self, collection: Collection) -> RestoreResult | None:
        """Restore ``collection`` unless it was already fetched this session.

        Returns None when nothing ran (already fetched or not entitled).
        """
        if not self.session.is_entitled:
            logger.debug("ensure_fetched(%s): %s", collection.value, NOT_ENTITLED)
            return None
        if self.session.was_fetched(collection):
            return None

        async with self._locks[collection]:
            if self.session.was_fetched(collection):
                return None
            result = await self.restore_pipeline.restore(collection)
            # Marked even on failure: no automatic retry within a session.
            self.session.mark_fetched(collection)
        if not result.success:
            logger.warning(
                "Restore of %s failed: %s", collection.value, result.error or result.reason
            )
        return result

    async def ensure_fetched_all(self) -> dict[Collection, RestoreResult | None]:
        results: dict[Collection, RestoreResult | None] = {}
        for collection in RESTORE_ORDER:
            results[collection] = await self.ensure_fetched(collection)
        return results

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    async def force_backup(self, collection: Collection) -> BackupReport:
        """Back up the entire local collection now."""
        async with self._locks[collection]:
            report = await self.backup_pipeline.backup(collection)
        if report.success:
            await self._record_backup_time()
        return report

    async def delete_remote(self, collection: Collection, local_ids: list[str]) -> BackupReport:
        async with self._locks[collection]:
            return await self.backup_pipeline.delete_remote(collection, local_ids)

    def schedule_backup(self, collection: Collection) -> asyncio.Task | None:
        """Schedule a deferred backup of ``collection``.

        A backup already waiting for the same collection absorbs this
        request.  Returns the task, or None when sync is not allowed.
        """
        if not self.session.is_entitled:
            return None
        pending = self._pending_backups.get(collection)
        if pending is not None and not pending.done():
            return pending
        task = self._spawn(self._deferred_backup(collection), f"backup-{collection.value}")
        self._pending_backups[collection] = task
        return task

    def schedule_delete(self, collection: Collection, local_ids: list[str]) -> asyncio.Task | None:
        if not self.session.is_entitled or not local_ids:
            return None
        return self._spawn(
            self._deferred_delete(collection, list(local_ids)), f"delete-{collection.value}"
        )

    async def _deferred_backup(self, collection: Collection) -> BackupReport:
        await asyncio.sleep(self.config.backup_delay_seconds)
        # Requests arriving from here on need a fresh pass.
        self._pending_backups.pop(collection, None)
        return await self.force_backup(collection)

    async def _deferred_delete(self, collection: Collection, local_ids: list[str]) -> BackupReport:
        await asyncio.sleep(self.config.backup_delay_seconds)
        return await self.delete_remote(collection, local_ids)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Deferred sync task %s failed: %s", task.get_name(), exc)
            return
        report = task.result()
        if isinstance(report, BackupReport) and not report.success:
            logger.warning(
                "Deferred %s for %s finished with status %s: %s",
                task.get_name(), report.collection.value, report.status,
                report.error or report.reason,
            )

    async def drain(self) -> None:
        """Wait for every deferred task scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def _record_backup_time(self) -> None:
        now = utc_now()
        self.session.last_backup_at = now
        await self.repository.set_value(LAST_BACKUP_KEY, now.isoformat())

    # ------------------------------------------------------------------
    # Session transitions
    # ------------------------------------------------------------------

    async def on_entitlement_changed(
        self, account_id: str | None, is_entitled: bool
    ) -> dict[Collection, RestoreResult | None]:
        """Apply an entitlement/sign-in transition.

        Activation restores every collection not yet fetched this session.
        """
        self.session.start(account_id, is_entitled)
        if not self.session.is_entitled:
            return {}
        return await self.ensure_fetched_all()

    async def sign_out(self) -> None:
        """End the session.  Deferred tasks already running finish first."""
        await self.drain()
        self.session.end()
