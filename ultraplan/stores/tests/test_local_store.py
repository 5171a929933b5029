"""Tests for the key-value backends and CollectionRepository."""

from __future__ import annotations

from pathlib import Path

import pytest

from ultraplan.models.gear import GearItem
from ultraplan.models.races import Race
from ultraplan.services.local_store import (
    CollectionRepository,
    JsonFileStore,
    MemoryStore,
    StoreError,
)


class _BrokenStore(MemoryStore):
    async def get(self, key):
        raise StoreError("read failed")

    async def set(self, key, value):
        raise StoreError("write failed")


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_round_trip_and_listing(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path)
        await store.set("race_uuid_r1", "R1")
        await store.set("races", {"r1": {"name": "Boston"}})

        assert await store.get("race_uuid_r1") == "R1"
        assert await store.get("races") == {"r1": {"name": "Boston"}}
        assert sorted(await store.list_keys()) == ["race_uuid_r1", "races"]

    @pytest.mark.asyncio
    async def test_keys_with_path_characters(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path)
        await store.set("notes/../x", 1)
        assert await store.list_keys() == ["notes/../x"]
        assert await store.get("notes/../x") == 1

    @pytest.mark.asyncio
    async def test_missing_key_and_remove(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path)
        assert await store.get("nothing") is None
        await store.set("k", 1)
        await store.remove("k")
        await store.remove("k")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_corrupt_document_raises(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path)
        (tmp_path / "races.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(StoreError):
            await store.get("races")

    @pytest.mark.asyncio
    async def test_undecodable_document_raises_store_error(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path)
        (tmp_path / "races.json").write_bytes(b'{"r1": {"name": "\xff\xfe"}}')

        with pytest.raises(StoreError):
            await store.get("races")
        assert await CollectionRepository(store).load("races", Race) == {}

    @pytest.mark.asyncio
    async def test_unserializable_value_raises(self, tmp_path: Path) -> None:
        with pytest.raises(StoreError):
            await JsonFileStore(tmp_path).set("k", object())

    @pytest.mark.asyncio
    async def test_ping(self, tmp_path: Path) -> None:
        assert await JsonFileStore(tmp_path).ping()


class TestCollectionRepository:
    @pytest.mark.asyncio
    async def test_failed_read_is_an_empty_collection(self) -> None:
        repo = CollectionRepository(_BrokenStore())
        assert await repo.load("races", Race) == {}

    @pytest.mark.asyncio
    async def test_strict_read_raises(self) -> None:
        repo = CollectionRepository(_BrokenStore())
        with pytest.raises(StoreError):
            await repo.load("races", Race, strict=True)

    @pytest.mark.asyncio
    async def test_failed_write_returns_false(self) -> None:
        repo = CollectionRepository(_BrokenStore())
        assert await repo.save("races", {"r1": Race(id="r1", name="Boston")}) is False
        assert await repo.set_value("lastBackupDate", "x") is False

    @pytest.mark.asyncio
    async def test_invalid_records_are_skipped(self) -> None:
        store = MemoryStore({
            "races": {
                "r1": {"id": "r1", "name": "Boston"},
                "r2": {"id": "r2", "distance": "very far"},
                "r3": "not a record",
            }
        })
        races = await CollectionRepository(store).load("races", Race)
        assert list(races) == ["r1"]

    @pytest.mark.asyncio
    async def test_id_falls_back_to_key(self) -> None:
        store = MemoryStore({"races": {"r1": {"name": "Boston"}}})
        races = await CollectionRepository(store).load("races", Race)
        assert races["r1"].id == "r1"

    @pytest.mark.asyncio
    async def test_unknown_fields_survive_round_trip(self) -> None:
        store = MemoryStore({"races": {"r1": {"id": "r1", "name": "Boston", "bibNumber": 1234}}})
        repo = CollectionRepository(store)
        await repo.save("races", await repo.load("races", Race))
        assert (await store.get("races"))["r1"]["bibNumber"] == 1234

    @pytest.mark.asyncio
    async def test_legacy_gear_array_is_migrated(self) -> None:
        store = MemoryStore({
            "gearItems": [
                {"id": "g1", "name": "Vest"},
                {"name": "Headlamp"},
            ]
        })
        repo = CollectionRepository(store)

        gear = await repo.load("gearItems", GearItem)

        assert len(gear) == 2
        assert gear["g1"].name == "Vest"
        headlamp = next(g for g in gear.values() if g.name == "Headlamp")
        assert headlamp.id
        assert headlamp.quantity == 1
        assert headlamp.retired is False

        await repo.save("gearItems", gear)
        saved = await store.get("gearItems")
        assert isinstance(saved, dict)
        assert saved[headlamp.id]["name"] == "Headlamp"
