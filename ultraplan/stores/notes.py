"""Note store."""

from __future__ import annotations

from typing import Any, Mapping

from ultraplan.models.notes import Note, NoteEntityType
from ultraplan.stores.base import CollectionStore, StoreResult
from ultraplan.sync.base import Collection


class NoteStore(CollectionStore[Note]):
    collection = Collection.NOTES
    model = Note

    async def list_notes(self) -> list[Note]:
        return sorted((await self._load()).values(), key=lambda n: n.updated_at, reverse=True)

    async def add_note(self, data: Mapping[str, Any] | Note) -> StoreResult:
        return await self.add(data)

    async def update_note(self, note_id: str, changes: Mapping[str, Any]) -> StoreResult:
        return await self.update(note_id, changes)

    async def delete_note(self, note_id: str) -> StoreResult:
        return await self.delete(note_id)

    async def notes_for_entity(
        self, entity_type: NoteEntityType | str, entity_id: str | None = None
    ) -> list[Note]:
        """Notes attached to one entity (or to every entity of a type when ``entity_id`` is None)."""
        entity_type = NoteEntityType(entity_type)
        return [
            note
            for note in await self.list_notes()
            if note.entity_type == entity_type
            and (entity_id is None or note.entity_id == entity_id)
        ]
