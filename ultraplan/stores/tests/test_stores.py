"""Tests for the collection stores (local-first CRUD + scheduled sync)."""

from __future__ import annotations

import pytest

from ultraplan.dependencies import SyncContainer
from ultraplan.models.notes import NoteEntityType
from ultraplan.stores.plans import PlanKind
from ultraplan.stores.tests.conftest import ACCOUNT_ID, TEMPLATE_ACCOUNT_ID
from ultraplan.sync.tests.fakes import InMemoryRemote


class TestRaceStore:
    @pytest.mark.asyncio
    async def test_add_and_get(self, container: SyncContainer) -> None:
        result = await container.races.add_race({"name": "Boston", "distance": 26.2})

        assert result.success
        race = await container.races.get_race(result.id)
        assert race.name == "Boston"
        assert race.race_status == "upcoming"

    @pytest.mark.asyncio
    async def test_add_accepts_snake_case_keys(self, container: SyncContainer) -> None:
        result = await container.races.add_race({"name": "Leadville", "event_type": "trail"})
        race = await container.races.get_race(result.id)
        assert race.event_type == "trail"

    @pytest.mark.asyncio
    async def test_invalid_race_is_rejected(self, container: SyncContainer, store) -> None:
        result = await container.races.add_race({"name": "Bad", "distance": "far"})

        assert not result.success
        assert "distance" in result.error
        assert await store.get("races") is None

    @pytest.mark.asyncio
    async def test_list_is_ordered_by_date(self, container: SyncContainer) -> None:
        await container.races.add_race({"name": "Later", "date": "2026-09-01"})
        await container.races.add_race({"name": "Undated"})
        await container.races.add_race({"name": "Sooner", "date": "2026-04-20"})

        names = [r.name for r in await container.races.list_races()]

        assert names == ["Sooner", "Later", "Undated"]

    @pytest.mark.asyncio
    async def test_update_is_partial(self, container: SyncContainer) -> None:
        result = await container.races.add_race({"name": "Boston", "distance": 26.2})

        updated = await container.races.update_race(result.id, {"raceStatus": "completed"})

        assert updated.success
        race = await container.races.get_race(result.id)
        assert race.race_status == "completed"
        assert race.distance == 26.2
        assert race.updated_at >= race.created_at

    @pytest.mark.asyncio
    async def test_update_missing_race(self, container: SyncContainer) -> None:
        result = await container.races.update_race("nope", {"name": "x"})
        assert not result.success
        assert result.error == "not found"

    @pytest.mark.asyncio
    async def test_aid_station_add_and_remove(self, container: SyncContainer) -> None:
        race_id = (await container.races.add_race({"name": "UTMB"})).id
        station = await container.races.add_aid_station(race_id, {"name": "Courmayeur"})
        await container.races.update_race(race_id, {
            "preparation": {"dropBags": [{"id": "db1", "name": "Bag", "aidStationId": station.id}]},
        })

        removed = await container.races.remove_aid_station(race_id, station.id)

        assert removed.success
        race = await container.races.get_race(race_id)
        assert race.aid_stations == []
        assert race.preparation.drop_bags[0].aid_station_id is None

    @pytest.mark.asyncio
    async def test_mutation_schedules_backup(
        self, container: SyncContainer, remote: InMemoryRemote
    ) -> None:
        result = await container.races.add_race({"name": "Boston"})
        await container.orchestrator.drain()

        rows = remote.rows("races")
        assert [r["name"] for r in rows] == ["Boston"]
        assert rows[0]["user_id"] == ACCOUNT_ID
        assert await container.mapper.lookup("race", result.id) == rows[0]["id"]

    @pytest.mark.asyncio
    async def test_delete_schedules_remote_delete(
        self, container: SyncContainer, remote: InMemoryRemote
    ) -> None:
        race_id = (await container.races.add_race({"name": "Boston"})).id
        await container.orchestrator.drain()

        result = await container.races.delete_race(race_id)
        await container.orchestrator.drain()

        assert result.success
        assert await container.races.get_race(race_id) is None
        assert remote.rows("races") == []

    @pytest.mark.asyncio
    async def test_offline_mutation_stays_local(
        self, offline_container: SyncContainer, remote: InMemoryRemote
    ) -> None:
        result = await offline_container.races.add_race({"name": "Boston"})
        await offline_container.orchestrator.drain()

        assert result.success
        assert remote.calls == []


class TestGearStore:
    @pytest.mark.asyncio
    async def test_defaults(self, container: SyncContainer) -> None:
        result = await container.gear.add_gear_item({"name": "Vest"})
        item = await container.gear.get(result.id)
        assert item.quantity == 1
        assert item.retired is False

    @pytest.mark.asyncio
    async def test_retired_gear_is_hidden_by_default(self, container: SyncContainer) -> None:
        keep = await container.gear.add_gear_item({"name": "Vest", "category": "packs"})
        old = await container.gear.add_gear_item({"name": "Old shoes", "category": "shoes"})

        await container.gear.retire_gear_item(old.id)

        assert [g.id for g in await container.gear.list_gear()] == [keep.id]
        assert len(await container.gear.list_gear(include_retired=True)) == 2

    @pytest.mark.asyncio
    async def test_update_and_delete(self, container: SyncContainer) -> None:
        item_id = (await container.gear.add_gear_item({"name": "Poles"})).id

        await container.gear.update_gear_item(item_id, {"brand": "Black Diamond"})
        assert (await container.gear.get(item_id)).brand == "Black Diamond"

        assert (await container.gear.delete_gear_item(item_id)).success
        assert not (await container.gear.delete_gear_item(item_id)).success


class TestNoteStore:
    @pytest.mark.asyncio
    async def test_notes_for_entity(self, container: SyncContainer) -> None:
        await container.notes.add_note({"entityType": "race", "entityId": "r1", "content": "Taper"})
        await container.notes.add_note({"entityType": "race", "entityId": "r2", "content": "Other"})
        await container.notes.add_note({"entityType": "gear", "entityId": "g1", "content": "Wash"})

        for_r1 = await container.notes.notes_for_entity(NoteEntityType.RACE, "r1")
        all_race = await container.notes.notes_for_entity("race")

        assert [n.content for n in for_r1] == ["Taper"]
        assert len(all_race) == 2

    @pytest.mark.asyncio
    async def test_update_and_delete(self, container: SyncContainer) -> None:
        note_id = (await container.notes.add_note({"content": "draft"})).id

        await container.notes.update_note(note_id, {"content": "final"})
        assert (await container.notes.get(note_id)).content == "final"
        assert (await container.notes.get(note_id)).entity_type == NoteEntityType.GENERAL

        await container.notes.delete_note(note_id)
        assert await container.notes.list_notes() == []


class TestPlanStore:
    @pytest.mark.asyncio
    async def test_entries_crud(self, container: SyncContainer) -> None:
        plans = container.plans
        plan_id = (await plans.add_plan("nutrition", {"name": "Race day"})).id

        entry = await plans.add_entry(PlanKind.NUTRITION, plan_id, {"foodType": "Gel", "calories": 100})
        await plans.add_entry(PlanKind.NUTRITION, plan_id, {"foodType": "Bar", "calories": 250})
        await plans.update_entry(PlanKind.NUTRITION, plan_id, entry.id, {"calories": 110})

        plan = await plans.get_plan(PlanKind.NUTRITION, plan_id)
        assert [(e.food_type, e.calories) for e in plan.entries] == [("Gel", 110), ("Bar", 250)]

        await plans.remove_entry(PlanKind.NUTRITION, plan_id, entry.id)
        plan = await plans.get_plan(PlanKind.NUTRITION, plan_id)
        assert [e.food_type for e in plan.entries] == ["Bar"]

    @pytest.mark.asyncio
    async def test_entry_on_missing_plan(self, container: SyncContainer) -> None:
        result = await container.plans.add_entry("hydration", "missing", {"liquidType": "water"})
        assert not result.success

    @pytest.mark.asyncio
    async def test_assign_and_unassign(self, container: SyncContainer) -> None:
        plans = container.plans
        nutrition_id = (await plans.add_plan("nutrition", {"name": "Gels"})).id
        hydration_id = (await plans.add_plan("hydration", {"name": "Water"})).id

        first = await plans.assign_plans("r1", nutrition_plan_id=nutrition_id)
        second = await plans.assign_plans("r1", hydration_plan_id=hydration_id)

        assert first.id == second.id
        race_plan = await plans.get_race_plan("r1")
        assert race_plan.nutrition_plan_id == nutrition_id
        assert race_plan.hydration_plan_id == hydration_id

        assert (await plans.unassign("r1")).success
        assert await plans.get_race_plan("r1") is None

    @pytest.mark.asyncio
    async def test_deleting_plan_detaches_it(self, container: SyncContainer) -> None:
        plans = container.plans
        plan_id = (await plans.add_plan("hydration", {"name": "Water"})).id
        await plans.assign_plans("r1", hydration_plan_id=plan_id)

        await plans.delete_plan("hydration", plan_id)

        assert (await plans.get_race_plan("r1")).hydration_plan_id is None

    @pytest.mark.asyncio
    async def test_templates(self, container: SyncContainer, remote: InMemoryRemote) -> None:
        remote.tables["nutrition_plans"] = [
            {"id": "T1", "user_id": TEMPLATE_ACCOUNT_ID, "name": "100 Mile Fueling",
             "race_duration": "24 hours"},
            {"id": "U1", "user_id": ACCOUNT_ID, "name": "Mine"},
        ]
        remote.tables["nutrition_entries"] = [
            {"id": "TE1", "plan_id": "T1", "food_type": "Gel", "calories": 100},
        ]

        templates = await container.plans.list_templates("nutrition")
        assert [t.name for t in templates] == ["100 Mile Fueling"]

        result = await container.plans.create_plan_from_template("nutrition", "T1")

        assert result.success
        copy = await container.plans.get_plan("nutrition", result.id)
        assert copy.name == "100 Mile Fueling (Copy)"
        assert copy.race_duration == "24 hours"
        assert [e.food_type for e in copy.entries] == ["Gel"]
        assert copy.id != "T1"
        assert copy.entries[0].id != "TE1"

    @pytest.mark.asyncio
    async def test_template_overrides(self, container: SyncContainer, remote: InMemoryRemote) -> None:
        remote.tables["hydration_plans"] = [
            {"id": "T2", "user_id": TEMPLATE_ACCOUNT_ID, "name": "Hot weather"},
        ]
        result = await container.plans.create_plan_from_template(
            "hydration", "T2", {"name": "Badwater"}
        )
        assert (await container.plans.get_plan("hydration", result.id)).name == "Badwater"

    @pytest.mark.asyncio
    async def test_templates_require_entitlement(
        self, offline_container: SyncContainer, remote: InMemoryRemote
    ) -> None:
        assert await offline_container.plans.list_templates("nutrition") == []
        result = await offline_container.plans.create_plan_from_template("nutrition", "T1")
        assert not result.success
        assert remote.calls == []
