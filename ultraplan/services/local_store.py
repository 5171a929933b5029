"""On-device key-value persistence.

The local store is the single source of truth when offline.  Values are
JSON documents addressed by string keys; each key is written atomically but
nothing is atomic across keys.

``CollectionRepository`` sits on top and owns the collection documents
(``races``, ``gearItems``, ...): it validates records through the pydantic
models on the way in and out, and turns storage failures into soft results
so that no caller ever crashes on a bad read or write.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import quote, unquote

from pydantic import ValidationError

from ultraplan.models.base import Entity, new_local_id

logger = logging.getLogger("ultraplan.local_store")

EntityT = TypeVar("EntityT", bound=Entity)


class StoreError(RuntimeError):
    """Raised when the local store backend cannot complete an operation."""


class LocalStore(ABC):
    """String-keyed JSON document store."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the decoded value for ``key`` or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key`` (replacing any previous value)."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete ``key``.  Removing a missing key is a no-op."""

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """Return every key currently stored."""

    async def ping(self) -> bool:
        try:
            await self.list_keys()
        except StoreError:
            return False
        return True


class MemoryStore(LocalStore):
    """Process-local store.  Values are JSON round-tripped so callers never share references."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Value for {key!r} is not JSON-serializable") from exc

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(LocalStore):
    """One JSON file per key inside ``root``.

    Writes go to a temporary sibling first and are moved into place with
    ``Path.replace`` so a crash never leaves a half-written document.
    Blocking file I/O runs in a worker thread.
    """

    SUFFIX = ".json"

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{self.SUFFIX}"

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._unlink, key)

    async def list_keys(self) -> list[str]:
        return await asyncio.to_thread(self._scan)

    def _read(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            raise StoreError(f"Failed to read {key!r}: {exc}") from exc

    def _write(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Value for {key!r} is not JSON-serializable") from exc
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise StoreError(f"Failed to write {key!r}: {exc}") from exc

    def _unlink(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Failed to remove {key!r}: {exc}") from exc

    def _scan(self) -> list[str]:
        try:
            return [
                unquote(p.name[: -len(self.SUFFIX)])
                for p in self.root.iterdir()
                if p.is_file() and p.name.endswith(self.SUFFIX)
            ]
        except OSError as exc:
            raise StoreError(f"Failed to list {self.root}: {exc}") from exc


# ---------------------------------------------------------------------------
# Typed collections
# ---------------------------------------------------------------------------


class CollectionRepository:
    """Load and save whole entity collections.

    Every collection is stored as a single JSON object keyed by local id.
    Reads never raise: a failed or malformed document yields an empty
    collection and invalid records are dropped individually.  Writes return
    False instead of raising.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    async def load(
        self, key: str, model: type[EntityT], *, strict: bool = False
    ) -> dict[str, EntityT]:
        """Return the collection under ``key`` keyed by local id.

        With ``strict=True`` a backend failure raises ``StoreError`` instead
        of yielding an empty collection (restore must not mistake an
        unreadable document for an empty one).
        """
        try:
            raw = await self.store.get(key)
        except StoreError as exc:
            if strict:
                raise
            logger.error("Failed to load %s from local store: %s", key, exc)
            return {}
        if raw is None:
            return {}

        if isinstance(raw, list):
            raw = self._migrate_array(key, raw)
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed %s document (%s)", key, type(raw).__name__)
            return {}

        items: dict[str, EntityT] = {}
        for local_id, record in raw.items():
            if not isinstance(record, dict):
                logger.warning("Skipping malformed %s record %s", key, local_id)
                continue
            try:
                entity = model.model_validate({**record, "id": str(record.get("id") or local_id)})
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid %s record %s: %d error(s)",
                    key, local_id, exc.error_count(),
                )
                continue
            items[entity.id] = entity
        return items

    async def save(self, key: str, items: dict[str, Entity]) -> bool:
        document = {local_id: item.to_json() for local_id, item in items.items()}
        try:
            await self.store.set(key, document)
        except StoreError as exc:
            logger.error("Failed to save %s to local store: %s", key, exc)
            return False
        return True

    async def set_value(self, key: str, value: Any) -> bool:
        try:
            await self.store.set(key, value)
        except StoreError as exc:
            logger.error("Failed to write %s to local store: %s", key, exc)
            return False
        return True

    @staticmethod
    def _migrate_array(key: str, records: list[Any]) -> dict[str, Any]:
        """Convert a legacy ordinal array into an id-keyed mapping.

        Older builds stored gear as a plain list and addressed items by
        index.  Items without an id get a fresh one here; the mapping is
        persisted on the next save.
        """
        migrated: dict[str, Any] = {}
        for record in records:
            if not isinstance(record, dict):
                continue
            local_id = record.get("id") or new_local_id()
            migrated[str(local_id)] = {**record, "id": str(local_id)}
        logger.info("Migrated %d %s records from array storage", len(migrated), key)
        return migrated
