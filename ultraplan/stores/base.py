"""Shared plumbing for the collection stores.

A store owns one local collection.  Mutations write the local store first
and then hand the remote side to the orchestrator as a deferred task; the
caller gets a ``StoreResult`` as soon as the local write is done.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, Mapping, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ultraplan.models.base import Entity, utc_now
from ultraplan.services.local_store import CollectionRepository
from ultraplan.sync.base import Collection
from ultraplan.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger("ultraplan.stores")

EntityT = TypeVar("EntityT", bound=Entity)


@dataclass
class StoreResult:
    """Outcome of a store mutation.

    Attributes:
        success: True when the local write went through.
        id:      Local id of the affected entity.
        error:   Human-readable reason when ``success`` is False.
    """

    success: bool
    id: str | None = None
    error: str | None = None


def camelize(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize snake_case keys to the on-device camelCase keys."""
    return {(to_camel(k) if "_" in k else k): v for k, v in changes.items()}


def validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(p) for p in first.get("loc", ()))
    return f"invalid {location or 'record'}: {first.get('msg')}"


class CollectionStore(Generic[EntityT]):
    """Load/modify/save one collection and schedule its sync."""

    collection: Collection
    model: type[EntityT]

    def __init__(
        self,
        repository: CollectionRepository,
        orchestrator: SyncOrchestrator | None = None,
    ) -> None:
        self.repository = repository
        self.orchestrator = orchestrator

    async def _load(self) -> dict[str, EntityT]:
        if self.orchestrator is not None:
            await self.orchestrator.ensure_fetched(self.collection)
        return await self.repository.load(self.collection.storage_key, self.model)

    async def _save(self, items: dict[str, EntityT], entity_id: str | None) -> StoreResult:
        if not await self.repository.save(self.collection.storage_key, items):
            return StoreResult(
                success=False, id=entity_id, error=f"failed to write {self.collection.storage_key}"
            )
        if self.orchestrator is not None:
            self.orchestrator.schedule_backup(self.collection)
        return StoreResult(success=True, id=entity_id)

    async def _remove(self, items: dict[str, EntityT], entity_id: str) -> StoreResult:
        if entity_id not in items:
            return StoreResult(success=False, id=entity_id, error="not found")
        del items[entity_id]
        if not await self.repository.save(self.collection.storage_key, items):
            return StoreResult(
                success=False, id=entity_id, error=f"failed to write {self.collection.storage_key}"
            )
        if self.orchestrator is not None:
            self.orchestrator.schedule_delete(self.collection, [entity_id])
        return StoreResult(success=True, id=entity_id)

    def _build(self, data: Mapping[str, Any] | EntityT) -> EntityT:
        if isinstance(data, self.model):
            return data
        return self.model.model_validate(camelize(data))

    @staticmethod
    def _patched(entity: EntityT, changes: Mapping[str, Any]) -> EntityT:
        """Apply a partial update and bump ``updatedAt``.  Ids never change."""
        document = {**entity.to_json(), **camelize(changes)}
        document["id"] = entity.id
        if "updatedAt" in document:
            document["updatedAt"] = utc_now().isoformat()
        return type(entity).model_validate(document)

    async def get(self, entity_id: str) -> EntityT | None:
        return (await self._load()).get(entity_id)

    async def add(self, data: Mapping[str, Any] | EntityT) -> StoreResult:
        try:
            entity = self._build(data)
        except ValidationError as exc:
            return StoreResult(success=False, error=validation_message(exc))
        items = await self._load()
        items[entity.id] = entity
        logger.debug("Adding %s %s", self.collection.value, entity.id)
        return await self._save(items, entity.id)

    async def update(self, entity_id: str, changes: Mapping[str, Any]) -> StoreResult:
        items = await self._load()
        entity = items.get(entity_id)
        if entity is None:
            return StoreResult(success=False, id=entity_id, error="not found")
        try:
            items[entity_id] = self._patched(entity, changes)
        except ValidationError as exc:
            return StoreResult(success=False, id=entity_id, error=validation_message(exc))
        return await self._save(items, entity_id)

    async def delete(self, entity_id: str) -> StoreResult:
        return await self._remove(await self._load(), entity_id)
