"""Backup pipeline: push a local collection to the remote store.

For each entity:

1. Resolve its remote id through the identity mapper (lazily minting, or
   binding to an existing remote row for kinds with a matching strategy).
2. Probe for the remote row and update it, or insert it with ``created_at``.
3. Replace its children: delete every remote child row by parent key, then
   insert the current local set.  Child ids are mapped too, so they stay
   stable from one backup to the next.

Entities are isolated from each other: a failure is recorded in that
entity's outcome and the pass continues with the next one.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from ultraplan.models.base import Entity, utc_now
from ultraplan.services.local_store import CollectionRepository
from ultraplan.sync.base import (
    NOT_ENTITLED,
    BackupReport,
    Collection,
    EntityOutcome,
    RemoteBackend,
)
from ultraplan.sync.codecs import (
    CollectionCodec,
    DataIntegrityError,
    OutboundRefs,
    get_codec,
)
from ultraplan.sync.identity import IdentityMapper
from ultraplan.sync.session import SyncSession

logger = logging.getLogger("ultraplan.sync.backup")

NO_REMOTE = "remote-unavailable"


class BackupPipeline:
    """Upload collections entity by entity."""

    def __init__(
        self,
        repository: CollectionRepository,
        mapper: IdentityMapper,
        remote: RemoteBackend | None,
        session: SyncSession,
    ) -> None:
        self.repository = repository
        self.mapper = mapper
        self.remote = remote
        self.session = session

    def _gate(self, collection: Collection) -> BackupReport | None:
        if not self.session.is_entitled:
            logger.debug("Skipping %s backup: not entitled", collection.value)
            return BackupReport.skipped(collection, NOT_ENTITLED)
        if self.remote is None:
            logger.debug("Skipping %s backup: no remote configured", collection.value)
            return BackupReport.skipped(collection, NO_REMOTE)
        return None

    async def backup(
        self,
        collection: Collection,
        entities: Iterable[Entity] | None = None,
    ) -> BackupReport:
        """Back up ``entities`` (default: the whole local collection).

        Returns:
            A finalized BackupReport; never raises.
        """
        skipped = self._gate(collection)
        if skipped is not None:
            return skipped

        codec = get_codec(collection)
        if entities is None:
            loaded = await self.repository.load(collection.storage_key, codec.model)
            entities = list(loaded.values())

        report = BackupReport(collection=collection)
        refs = self._outbound_refs()
        for entity in entities:
            report.outcomes.append(await self._backup_entity(codec, entity, refs))

        report.finalize()
        logger.info(
            "Backed up %s: %s (%d entities, %d failed)",
            collection.value, report.status, len(report.outcomes), len(report.failed),
        )
        return report

    def _outbound_refs(self) -> OutboundRefs:
        return OutboundRefs(self.mapper, self.repository, self._upload_reference)

    async def _upload_reference(self, collection: Collection, entity: Entity) -> str | None:
        """Back up an entity another record points at; return its remote id."""
        logger.info("Backing up referenced %s %s first", collection.value, entity.id)
        outcome = await self._backup_entity(get_codec(collection), entity, self._outbound_refs())
        if outcome.action in ("inserted", "updated"):
            return outcome.remote_id
        return None

    async def _backup_entity(
        self, codec: CollectionCodec, entity: Entity, refs: OutboundRefs
    ) -> EntityOutcome:
        outcome = EntityOutcome(local_id=entity.id)
        account_id = self.session.account_id
        try:
            remote_id = await self.mapper.map_local_to_remote(codec.kind, entity.id, entity)
            outcome.remote_id = remote_id

            row = await codec.to_row(entity, remote_id, account_id, refs)
            row["updated_at"] = utc_now().isoformat()

            existing = await self.remote.select(codec.table, ["id"], eq={"id": remote_id})
            if existing:
                values = {k: v for k, v in row.items() if k != "id"}
                await self.remote.update(codec.table, values, eq={"id": remote_id})
                outcome.action = "updated"
            else:
                created_at = getattr(entity, "created_at", None)
                row["created_at"] = created_at.isoformat() if created_at else row["updated_at"]
                await self.remote.insert(codec.table, [row])
                outcome.action = "inserted"

            outcome.children = await self._replace_children(codec, entity, remote_id)
        except DataIntegrityError as exc:
            logger.warning("Skipping %s %s: %s", codec.kind, entity.id, exc)
            outcome.action = "skipped"
            outcome.error = str(exc)
        except Exception as exc:
            logger.exception("Backup of %s %s failed", codec.kind, entity.id)
            outcome.action = "failed"
            outcome.error = str(exc)
        return outcome

    async def _replace_children(
        self, codec: CollectionCodec, parent: Entity, parent_remote_id: str
    ) -> int:
        if not codec.children:
            return 0

        previous = await self._child_ids(codec, parent_remote_id)
        # Dependent child tables (drop bags before aid stations) go first.
        for spec in reversed(codec.children):
            await self.remote.delete(spec.table, eq={spec.foreign_key: parent_remote_id})

        sibling_ids: dict[str, dict[str, str]] = {}
        written = 0
        for spec in codec.children:
            rows = []
            for position, child in enumerate(spec.items(parent)):
                child_remote_id = await self.mapper.map_local_to_remote(
                    spec.kind, child.id, child
                )
                sibling_ids.setdefault(spec.kind, {})[child.id] = child_remote_id

                row = spec.to_row(child)
                for column, kind in spec.references.items():
                    local_ref = row.get(column)
                    row[column] = sibling_ids.get(kind, {}).get(local_ref) if local_ref else None
                row["id"] = child_remote_id
                row["position"] = position
                row[spec.foreign_key] = parent_remote_id
                rows.append(row)

            if rows:
                await self.remote.insert(spec.table, rows)
            written += len(rows)
            kept = set(sibling_ids.get(spec.kind, {}).values())
            await self._forget_children(spec.kind, previous[spec.kind] - kept)
        return written

    async def _child_ids(
        self, codec: CollectionCodec, parent_remote_id: str
    ) -> dict[str, set[str]]:
        """Return ``{child kind: remote ids}`` currently stored under a parent."""
        ids: dict[str, set[str]] = {}
        for spec in codec.children:
            rows = await self.remote.select(
                spec.table, ["id"], eq={spec.foreign_key: parent_remote_id}
            )
            ids[spec.kind] = {str(row["id"]) for row in rows}
        return ids

    async def _forget_children(self, kind: str, remote_ids: set[str]) -> None:
        """Drop the mappings of child rows that no longer exist remotely."""
        if not remote_ids:
            return
        index = await self.mapper.build_reverse_index(kind)
        for remote_id in remote_ids:
            local_id = index.get(remote_id)
            if local_id:
                await self.mapper.forget(kind, local_id)

    async def delete_remote(
        self, collection: Collection, local_ids: Sequence[str]
    ) -> BackupReport:
        """Delete the remote rows behind ``local_ids`` and forget their mappings.

        Ids that were never synced are reported as skipped, with no remote call.
        """
        skipped = self._gate(collection)
        if skipped is not None:
            return skipped

        codec = get_codec(collection)
        report = BackupReport(collection=collection)
        for local_id in local_ids:
            outcome = EntityOutcome(local_id=local_id)
            try:
                remote_id = await self.mapper.lookup(codec.kind, local_id)
                if remote_id is None:
                    logger.debug("No remote row for %s %s; nothing to delete", codec.kind, local_id)
                else:
                    outcome.remote_id = remote_id
                    children = await self._child_ids(codec, remote_id)
                    for spec in reversed(codec.children):
                        await self.remote.delete(spec.table, eq={spec.foreign_key: remote_id})
                    await self.remote.delete(codec.table, eq={"id": remote_id})
                    for kind, child_ids in children.items():
                        await self._forget_children(kind, child_ids)
                    await self.mapper.forget(codec.kind, local_id)
                    outcome.action = "deleted"
            except Exception as exc:
                logger.exception("Remote delete of %s %s failed", codec.kind, local_id)
                outcome.action = "failed"
                outcome.error = str(exc)
            report.outcomes.append(outcome)

        report.finalize()
        logger.info(
            "Deleted %d remote %s rows (%s)",
            sum(1 for o in report.outcomes if o.action == "deleted"),
            collection.value,
            report.status,
        )
        return report
