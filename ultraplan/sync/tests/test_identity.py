"""Tests for the local-id to remote-id mapper."""

from __future__ import annotations

import pytest

from ultraplan.services.local_store import MemoryStore, StoreError
from ultraplan.sync.identity import (
    AlwaysMintStrategy,
    ByNameStrategy,
    IdentityMapper,
    build_strategy,
    mapping_key,
)
from ultraplan.sync.tests.conftest import ACCOUNT_ID, OTHER_ACCOUNT_ID
from ultraplan.sync.tests.fakes import InMemoryRemote


class _ReadOnlyStore(MemoryStore):
    async def set(self, key, value):
        raise StoreError("disk full")


class TestMappingKeys:
    def test_key_format(self) -> None:
        assert mapping_key("race", "r1") == "race_uuid_r1"
        assert mapping_key("nutrition_entry", "e7") == "nutrition_entry_uuid_e7"

    def test_build_strategy(self) -> None:
        assert isinstance(build_strategy("by_name", "name"), ByNameStrategy)
        assert isinstance(build_strategy("always_mint"), AlwaysMintStrategy)
        with pytest.raises(KeyError):
            build_strategy("fuzzy")


class TestMapLocalToRemote:
    @pytest.mark.asyncio
    async def test_mapping_is_stable(self, mapper: IdentityMapper, store: MemoryStore) -> None:
        """The same local id always resolves to the same remote id."""
        first = await mapper.map_local_to_remote("gear", "g1")
        second = await mapper.map_local_to_remote("gear", "g1")
        assert first == second
        assert await store.get("gear_uuid_g1") == first

    @pytest.mark.asyncio
    async def test_distinct_local_ids_get_distinct_remote_ids(self, mapper: IdentityMapper) -> None:
        a = await mapper.map_local_to_remote("gear", "g1")
        b = await mapper.map_local_to_remote("gear", "g2")
        assert a != b

    @pytest.mark.asyncio
    async def test_race_binds_to_existing_remote_row_by_name(
        self, mapper: IdentityMapper, remote: InMemoryRemote
    ) -> None:
        remote.tables["races"] = [
            {"id": "remote-boston", "user_id": ACCOUNT_ID, "name": "Boston"},
        ]
        remote_id = await mapper.map_local_to_remote("race", "r1", {"name": "Boston"})
        assert remote_id == "remote-boston"

    @pytest.mark.asyncio
    async def test_by_name_skips_rows_mapped_to_other_races(
        self, mapper: IdentityMapper, remote: InMemoryRemote
    ) -> None:
        """Two local races sharing a name never bind to the same remote row."""
        remote.tables["races"] = [
            {"id": "ws-2025", "user_id": ACCOUNT_ID, "name": "Western States"},
        ]
        first = await mapper.map_local_to_remote("race", "r1", {"name": "Western States"})
        second = await mapper.map_local_to_remote("race", "r2", {"name": "Western States"})

        assert first == "ws-2025"
        assert second != "ws-2025"

    @pytest.mark.asyncio
    async def test_by_name_ignores_other_accounts(
        self, mapper: IdentityMapper, remote: InMemoryRemote
    ) -> None:
        remote.tables["races"] = [
            {"id": "someone-else", "user_id": OTHER_ACCOUNT_ID, "name": "Boston"},
        ]
        remote_id = await mapper.map_local_to_remote("race", "r1", {"name": "Boston"})
        assert remote_id != "someone-else"

    @pytest.mark.asyncio
    async def test_name_dedup_is_race_only(
        self, mapper: IdentityMapper, remote: InMemoryRemote
    ) -> None:
        """Gear with a matching remote name still gets a fresh id."""
        remote.tables["gear_items"] = [
            {"id": "remote-shoes", "user_id": ACCOUNT_ID, "name": "Shoes"},
        ]
        remote_id = await mapper.map_local_to_remote("gear", "g1", {"name": "Shoes"})
        assert remote_id != "remote-shoes"

    @pytest.mark.asyncio
    async def test_remote_lookup_failure_falls_back_to_minting(
        self, mapper: IdentityMapper, remote: InMemoryRemote, store: MemoryStore
    ) -> None:
        remote.fail("select", "races")
        remote_id = await mapper.map_local_to_remote("race", "r1", {"name": "Boston"})
        assert remote_id
        assert await store.get("race_uuid_r1") == remote_id

    @pytest.mark.asyncio
    async def test_unpersistable_mapping_raises(self, session, sync_config) -> None:
        mapper = IdentityMapper(_ReadOnlyStore(), session, None, sync_config)
        with pytest.raises(StoreError):
            await mapper.map_local_to_remote("gear", "g1")

    @pytest.mark.asyncio
    async def test_strategy_override(self, mapper: IdentityMapper, remote: InMemoryRemote) -> None:
        remote.tables["races"] = [{"id": "remote-boston", "user_id": ACCOUNT_ID, "name": "Boston"}]
        mapper.set_strategy("race", AlwaysMintStrategy())
        remote_id = await mapper.map_local_to_remote("race", "r1", {"name": "Boston"})
        assert remote_id != "remote-boston"


class TestLookupAndIndex:
    @pytest.mark.asyncio
    async def test_lookup_never_mints(self, mapper: IdentityMapper, store: MemoryStore) -> None:
        assert await mapper.lookup("race", "r1") is None
        assert await store.list_keys() == []

    @pytest.mark.asyncio
    async def test_record_mapping_is_idempotent(self, mapper: IdentityMapper) -> None:
        await mapper.record_mapping("note", "n1", "remote-n1")
        await mapper.record_mapping("note", "n1", "remote-n1")
        assert await mapper.lookup("note", "n1") == "remote-n1"

    @pytest.mark.asyncio
    async def test_forget(self, mapper: IdentityMapper) -> None:
        await mapper.record_mapping("note", "n1", "remote-n1")
        await mapper.forget("note", "n1")
        assert await mapper.lookup("note", "n1") is None

    @pytest.mark.asyncio
    async def test_reverse_index_is_scoped_to_kind(self, mapper: IdentityMapper) -> None:
        """``race_uuid_`` keys must not pick up ``race_plan_uuid_`` keys."""
        await mapper.record_mapping("race", "r1", "R1")
        await mapper.record_mapping("race", "r2", "R2")
        await mapper.record_mapping("race_plan", "rp1", "RP1")
        assert await mapper.build_reverse_index("race") == {"R1": "r1", "R2": "r2"}
        assert await mapper.build_reverse_index("race_plan") == {"RP1": "rp1"}
