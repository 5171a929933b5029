"""Gear store."""

from __future__ import annotations

from typing import Any, Mapping

from ultraplan.models.gear import GearItem
from ultraplan.stores.base import CollectionStore, StoreResult
from ultraplan.sync.base import Collection


class GearStore(CollectionStore[GearItem]):
    collection = Collection.GEAR
    model = GearItem

    async def list_gear(self, include_retired: bool = False) -> list[GearItem]:
        items = (await self._load()).values()
        return sorted(
            (g for g in items if include_retired or not g.retired),
            key=lambda g: (g.category, g.name),
        )

    async def add_gear_item(self, data: Mapping[str, Any] | GearItem) -> StoreResult:
        return await self.add(data)

    async def update_gear_item(self, item_id: str, changes: Mapping[str, Any]) -> StoreResult:
        return await self.update(item_id, changes)

    async def retire_gear_item(self, item_id: str, retired: bool = True) -> StoreResult:
        """Retired gear stays stored (and synced) but drops out of ``list_gear``."""
        return await self.update(item_id, {"retired": retired})

    async def delete_gear_item(self, item_id: str) -> StoreResult:
        return await self.delete(item_id)
