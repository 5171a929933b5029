"""Restore pipeline: pull a collection from the remote store and merge it locally.

Everything remote is read before anything local is written; a read failure
leaves local state exactly as it was.  The merge is non-destructive:

- a remote row with a local counterpart replaces its scalar fields, but a
  nested list present locally and empty or absent remotely is kept
  (recursively through nested objects such as ``preparation``);
- a remote row without a local counterpart is inserted under a freshly
  minted local id (and the mapping is recorded);
- a local entity without a remote counterpart is never removed.

The merged collection is written back in one ``set``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ultraplan.models.base import new_local_id
from ultraplan.services.local_store import CollectionRepository, StoreError
from ultraplan.sync.backup import NO_REMOTE
from ultraplan.sync.base import NOT_ENTITLED, Collection, RemoteBackend, RestoreResult
from ultraplan.sync.codecs import (
    ChildSpec,
    CollectionCodec,
    DataIntegrityError,
    InboundRefs,
    get_codec,
    row_to_local,
)
from ultraplan.sync.identity import IdentityMapper
from ultraplan.sync.session import SyncSession

logger = logging.getLogger("ultraplan.sync.restore")


def merge_entity(local: Mapping[str, Any], remote: Mapping[str, Any]) -> dict[str, Any]:
    """Merge a remote record over a local one.

    Remote values win, except that a remote empty list never wipes a
    non-empty local list.  Nested objects merge recursively; keys only the
    local record has are kept.
    """
    merged = dict(local)
    for key, remote_value in remote.items():
        local_value = merged.get(key)
        if isinstance(remote_value, Mapping) and isinstance(local_value, Mapping):
            merged[key] = merge_entity(local_value, remote_value)
        elif isinstance(remote_value, list) and not remote_value and local_value:
            continue
        else:
            merged[key] = remote_value
    return merged


def _get_path(document: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = document
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def _set_path(document: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = document
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


class RestorePipeline:
    """Fetch remote rows for one collection and merge them into the local store."""

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

    async def _local_snapshot(self, collection: Collection) -> dict[str, Any]:
        codec = get_codec(collection)
        items = await self.repository.load(collection.storage_key, codec.model)
        return {local_id: item.to_json() for local_id, item in items.items()}

    async def restore(self, collection: Collection) -> RestoreResult:
        """Restore ``collection``; never raises.

        ``RestoreResult.data`` holds the collection as it stands locally
        afterwards, whether or not the restore went through.
        """
        if not self.session.is_entitled:
            logger.debug("Skipping %s restore: not entitled", collection.value)
            return RestoreResult(
                collection=collection,
                success=False,
                reason=NOT_ENTITLED,
                data=await self._local_snapshot(collection),
            )
        if self.remote is None:
            return RestoreResult(
                collection=collection,
                success=False,
                reason=NO_REMOTE,
                data=await self._local_snapshot(collection),
            )

        codec = get_codec(collection)
        try:
            local = await self.repository.load(collection.storage_key, codec.model, strict=True)
        except StoreError as exc:
            logger.error("Cannot restore %s: local read failed: %s", collection.value, exc)
            return RestoreResult(collection=collection, success=False, error=str(exc))
        documents = {local_id: item.to_json() for local_id, item in local.items()}

        # Read phase: nothing local is written until every read has succeeded.
        try:
            rows = await codec.fetch_rows(self.remote, self.session.account_id)
            children = await self._fetch_children(codec, rows)
            refs = await self._build_refs(codec)
        except Exception as exc:
            logger.error("Restore of %s aborted during read: %s", collection.value, exc)
            return RestoreResult(
                collection=collection, success=False, error=str(exc), data=documents
            )

        result = RestoreResult(collection=collection)
        new_mappings: list[tuple[str, str, str]] = []
        for row in rows:
            remote_id = str(row["id"])
            pending: list[tuple[str, str, str]] = []
            try:
                remote_doc = codec.from_row(row, refs)
            except DataIntegrityError as exc:
                logger.warning("Skipping remote %s %s: %s", codec.kind, remote_id, exc)
                result.skipped += 1
                continue

            local_id = refs.local_id(codec.kind, remote_id)
            if local_id is None:
                local_id = new_local_id()
                pending.append((codec.kind, local_id, remote_id))
            existing = documents.get(local_id)

            for spec in codec.children:
                child_docs = self._child_documents(
                    spec, children.get(spec.table, {}).get(remote_id, []),
                    existing, refs, pending,
                )
                _set_path(remote_doc, spec.json_path, child_docs)

            remote_doc["id"] = local_id
            merged = merge_entity(existing, remote_doc) if existing else remote_doc
            try:
                entity = codec.model.model_validate(merged)
            except ValidationError as exc:
                logger.warning(
                    "Skipping remote %s %s: %d validation error(s)",
                    codec.kind, remote_id, exc.error_count(),
                )
                result.skipped += 1
                continue

            documents[local_id] = entity.to_json()
            if existing:
                result.merged += 1
            else:
                result.inserted += 1
            for kind, child_local, child_remote in pending:
                refs.remember(kind, child_remote, child_local)
            new_mappings.extend(pending)

        # Write phase: mappings first so a failed collection write can be retried
        # without minting duplicate local ids.
        try:
            for kind, local_id, remote_id in new_mappings:
                await self.mapper.record_mapping(kind, local_id, remote_id)
        except StoreError as exc:
            logger.error("Failed to record %s mappings: %s", collection.value, exc)
            return RestoreResult(
                collection=collection,
                success=False,
                error=str(exc),
                data=await self._local_snapshot(collection),
            )

        validated = {
            local_id: codec.model.model_validate(doc) for local_id, doc in documents.items()
        }
        if not await self.repository.save(collection.storage_key, validated):
            result.success = False
            result.error = f"failed to write {collection.storage_key}"
            result.data = await self._local_snapshot(collection)
            return result

        result.data = documents
        logger.info(
            "Restored %s: %d inserted, %d merged, %d skipped",
            collection.value, result.inserted, result.merged, result.skipped,
        )
        return result

    async def _fetch_children(
        self, codec: CollectionCodec, rows: list[dict[str, Any]]
    ) -> dict[str, dict[str, list[dict[str, Any]]]]:
        """Return ``{table: {parent_remote_id: [rows ordered by position]}}``."""
        parent_ids = [row["id"] for row in rows]
        grouped: dict[str, dict[str, list[dict[str, Any]]]] = {}
        if not parent_ids:
            return grouped
        for spec in codec.children:
            child_rows = await self.remote.select(
                spec.table, in_={spec.foreign_key: parent_ids}
            )
            by_parent = grouped.setdefault(spec.table, {})
            for child in child_rows:
                by_parent.setdefault(str(child[spec.foreign_key]), []).append(child)
            for siblings in by_parent.values():
                siblings.sort(key=lambda r: r.get("position") or 0)
        return grouped

    async def _build_refs(self, codec: CollectionCodec) -> InboundRefs:
        kinds = {codec.kind} | {spec.kind for spec in codec.children} | codec.reference_kinds
        refs = InboundRefs()
        for kind in sorted(kinds):
            refs.indexes[kind] = await self.mapper.build_reverse_index(kind)
        return refs

    @staticmethod
    def _child_documents(
        spec: ChildSpec,
        child_rows: list[dict[str, Any]],
        parent: Mapping[str, Any] | None,
        refs: InboundRefs,
        pending: list[tuple[str, str, str]],
    ) -> list[dict[str, Any]]:
        local_children = {
            child.get("id"): child
            for child in (_get_path(parent, spec.json_path) if parent else None) or []
            if isinstance(child, Mapping)
        }
        docs = []
        for row in child_rows:
            child_remote = str(row["id"])
            child_local = refs.local_id(spec.kind, child_remote)
            if child_local is None:
                child_local = new_local_id()
                pending.append((spec.kind, child_local, child_remote))

            values = row_to_local(row, spec.columns, spec.model)
            for column, kind in spec.references.items():
                key = to_camel(column)
                if values.get(key) is not None:
                    ref_remote = str(values[key])
                    values[key] = refs.local_id(kind, ref_remote) or _minted_sibling(
                        pending, kind, ref_remote
                    )
            values["id"] = child_local
            local_child = local_children.get(child_local)
            docs.append(merge_entity(local_child, values) if local_child else values)
        return docs


def _minted_sibling(
    pending: list[tuple[str, str, str]], kind: str, remote_id: str
) -> str | None:
    for pending_kind, local_id, pending_remote in pending:
        if pending_kind == kind and pending_remote == remote_id:
            return local_id
    return None
