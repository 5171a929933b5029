"""Nutrition / hydration plan store, race-plan assignments and plan templates.

Templates are ordinary remote plans owned by a reserved account id
(``templates.account_id`` in sync_config.yaml).  They are read-only: using
one copies it into the local collection as a new plan.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from ultraplan.models.base import new_local_id, utc_now
from ultraplan.models.plans import (
    HydrationEntry,
    HydrationPlan,
    NutritionEntry,
    NutritionPlan,
    PlanBase,
    RacePlan,
)
from ultraplan.services.local_store import CollectionRepository
from ultraplan.stores.base import CollectionStore, StoreResult, camelize, validation_message
from ultraplan.sync.base import NOT_ENTITLED, Collection, RemoteBackend, RemoteError
from ultraplan.sync.codecs import InboundRefs, get_codec, row_to_local
from ultraplan.sync.config_loader import SyncConfig, get_sync_config
from ultraplan.sync.orchestrator import SyncOrchestrator
from ultraplan.sync.session import SyncSession

logger = logging.getLogger("ultraplan.stores.plans")


class PlanKind(str, Enum):
    NUTRITION = "nutrition"
    HYDRATION = "hydration"


class _NutritionPlans(CollectionStore[NutritionPlan]):
    collection = Collection.NUTRITION_PLANS
    model = NutritionPlan


class _HydrationPlans(CollectionStore[HydrationPlan]):
    collection = Collection.HYDRATION_PLANS
    model = HydrationPlan


class _RacePlans(CollectionStore[RacePlan]):
    collection = Collection.RACE_PLANS
    model = RacePlan


ENTRY_MODELS: dict[PlanKind, type] = {
    PlanKind.NUTRITION: NutritionEntry,
    PlanKind.HYDRATION: HydrationEntry,
}

# Race-plan column that points at a plan of each kind.
PLAN_LINKS: dict[PlanKind, str] = {
    PlanKind.NUTRITION: "nutritionPlanId",
    PlanKind.HYDRATION: "hydrationPlanId",
}


class PlanStore:
    """CRUD for both plan kinds, their entries, and race assignments."""

    def __init__(
        self,
        repository: CollectionRepository,
        orchestrator: SyncOrchestrator | None = None,
        remote: RemoteBackend | None = None,
        session: SyncSession | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        self._plans: dict[PlanKind, CollectionStore] = {
            PlanKind.NUTRITION: _NutritionPlans(repository, orchestrator),
            PlanKind.HYDRATION: _HydrationPlans(repository, orchestrator),
        }
        self._race_plans = _RacePlans(repository, orchestrator)
        self.remote = remote
        self.session = session
        self.config = config or get_sync_config()

    def _store(self, kind: PlanKind | str) -> CollectionStore:
        return self._plans[PlanKind(kind)]

    # ---------- Plans ----------

    async def list_plans(self, kind: PlanKind | str) -> list[PlanBase]:
        plans = (await self._store(kind)._load()).values()
        return sorted(plans, key=lambda p: p.name.lower())

    async def get_plan(self, kind: PlanKind | str, plan_id: str) -> PlanBase | None:
        return await self._store(kind).get(plan_id)

    async def add_plan(self, kind: PlanKind | str, data: Mapping[str, Any]) -> StoreResult:
        return await self._store(kind).add(data)

    async def update_plan(
        self, kind: PlanKind | str, plan_id: str, changes: Mapping[str, Any]
    ) -> StoreResult:
        return await self._store(kind).update(plan_id, changes)

    async def delete_plan(self, kind: PlanKind | str, plan_id: str) -> StoreResult:
        """Delete a plan and detach it from any race that uses it."""
        kind = PlanKind(kind)
        result = await self._store(kind).delete(plan_id)
        if not result.success:
            return result

        link = PLAN_LINKS[kind]
        race_plans = await self._race_plans._load()
        detached = False
        for race_plan_id, race_plan in race_plans.items():
            if race_plan.to_json().get(link) == plan_id:
                race_plans[race_plan_id] = self._race_plans._patched(race_plan, {link: None})
                detached = True
        if detached:
            await self._race_plans._save(race_plans, None)
        return result

    # ---------- Entries ----------

    async def add_entry(
        self, kind: PlanKind | str, plan_id: str, data: Mapping[str, Any]
    ) -> StoreResult:
        """Append an entry; ``StoreResult.id`` is the new entry's id."""
        kind = PlanKind(kind)
        store = self._store(kind)
        plans = await store._load()
        plan = plans.get(plan_id)
        if plan is None:
            return StoreResult(success=False, id=plan_id, error="plan not found")
        try:
            entry = ENTRY_MODELS[kind].model_validate(camelize(data))
        except ValidationError as exc:
            return StoreResult(success=False, error=validation_message(exc))

        entries = [e.to_json() for e in plan.entries] + [entry.to_json()]
        plans[plan_id] = store._patched(plan, {"entries": entries})
        result = await store._save(plans, plan_id)
        return StoreResult(success=result.success, id=entry.id, error=result.error)

    async def update_entry(
        self,
        kind: PlanKind | str,
        plan_id: str,
        entry_id: str,
        changes: Mapping[str, Any],
    ) -> StoreResult:
        store = self._store(kind)
        plans = await store._load()
        plan = plans.get(plan_id)
        if plan is None:
            return StoreResult(success=False, id=plan_id, error="plan not found")

        entries = []
        found = False
        for entry in plan.entries:
            if entry.id == entry_id:
                entries.append({**entry.to_json(), **camelize(changes), "id": entry_id})
                found = True
            else:
                entries.append(entry.to_json())
        if not found:
            return StoreResult(success=False, id=entry_id, error="entry not found")
        try:
            plans[plan_id] = store._patched(plan, {"entries": entries})
        except ValidationError as exc:
            return StoreResult(success=False, id=entry_id, error=validation_message(exc))
        result = await store._save(plans, plan_id)
        return StoreResult(success=result.success, id=entry_id, error=result.error)

    async def remove_entry(self, kind: PlanKind | str, plan_id: str, entry_id: str) -> StoreResult:
        store = self._store(kind)
        plans = await store._load()
        plan = plans.get(plan_id)
        if plan is None:
            return StoreResult(success=False, id=plan_id, error="plan not found")
        entries = [e.to_json() for e in plan.entries if e.id != entry_id]
        if len(entries) == len(plan.entries):
            return StoreResult(success=False, id=entry_id, error="entry not found")
        plans[plan_id] = store._patched(plan, {"entries": entries})
        result = await store._save(plans, plan_id)
        return StoreResult(success=result.success, id=entry_id, error=result.error)

    # ---------- Race assignments ----------

    async def get_race_plan(self, race_id: str) -> RacePlan | None:
        for race_plan in (await self._race_plans._load()).values():
            if race_plan.race_id == race_id:
                return race_plan
        return None

    async def assign_plans(
        self,
        race_id: str,
        nutrition_plan_id: str | None = None,
        hydration_plan_id: str | None = None,
    ) -> StoreResult:
        """Attach plans to a race.  A race has at most one race plan; ids left
        as None keep the current assignment."""
        race_plans = await self._race_plans._load()
        current = next((rp for rp in race_plans.values() if rp.race_id == race_id), None)
        if current is None:
            race_plan = RacePlan(
                race_id=race_id,
                nutrition_plan_id=nutrition_plan_id,
                hydration_plan_id=hydration_plan_id,
            )
        else:
            changes: dict[str, Any] = {"isActive": True}
            if nutrition_plan_id is not None:
                changes["nutritionPlanId"] = nutrition_plan_id
            if hydration_plan_id is not None:
                changes["hydrationPlanId"] = hydration_plan_id
            race_plan = self._race_plans._patched(current, changes)
        race_plans[race_plan.id] = race_plan
        return await self._race_plans._save(race_plans, race_plan.id)

    async def unassign(self, race_id: str) -> StoreResult:
        race_plan = await self.get_race_plan(race_id)
        if race_plan is None:
            return StoreResult(success=False, id=race_id, error="no plans assigned")
        return await self._race_plans.delete(race_plan.id)

    # ---------- Templates ----------

    async def list_templates(self, kind: PlanKind | str) -> list[PlanBase]:
        """Remote template plans of ``kind``; empty when sync is unavailable."""
        return await self._fetch_templates(PlanKind(kind))

    async def create_plan_from_template(
        self,
        kind: PlanKind | str,
        template_id: str,
        overrides: Mapping[str, Any] | None = None,
    ) -> StoreResult:
        """Copy a template into the local collection as a new plan.

        The copy gets fresh ids (plan and entries) and is named
        "<template name> (Copy)" unless ``overrides`` names it.
        """
        kind = PlanKind(kind)
        if self.session is None or not self.session.is_entitled:
            return StoreResult(success=False, error=NOT_ENTITLED)
        templates = await self._fetch_templates(kind, template_id)
        if not templates:
            return StoreResult(success=False, id=template_id, error="template not found")

        template = templates[0].to_json()
        now = utc_now().isoformat()
        document = {
            **template,
            "id": new_local_id(),
            "name": f"{template.get('name') or 'Plan'} (Copy)",
            "createdAt": now,
            "updatedAt": now,
            "entries": [{**e, "id": new_local_id()} for e in template.get("entries", [])],
        }
        document.update(camelize(overrides or {}))
        logger.info("Creating %s plan from template %s", kind.value, template_id)
        return await self._store(kind).add(document)

    async def _fetch_templates(
        self, kind: PlanKind, template_id: str | None = None
    ) -> list[PlanBase]:
        if self.remote is None or self.session is None or not self.session.is_entitled:
            return []

        store = self._store(kind)
        codec = get_codec(store.collection)
        entry_spec = codec.children[0]
        eq = {"user_id": self.config.template_account_id}
        if template_id:
            eq["id"] = template_id
        try:
            rows = await self.remote.select(codec.table, eq=eq)
            entry_rows = (
                await self.remote.select(
                    entry_spec.table,
                    in_={entry_spec.foreign_key: [r["id"] for r in rows]},
                )
                if rows
                else []
            )
        except RemoteError as exc:
            logger.error("Failed to load %s templates: %s", kind.value, exc)
            return []

        entries_by_plan: dict[str, list[dict[str, Any]]] = {}
        for entry in sorted(entry_rows, key=lambda r: r.get("position") or 0):
            entries_by_plan.setdefault(str(entry[entry_spec.foreign_key]), []).append(
                {
                    **row_to_local(entry, entry_spec.columns, entry_spec.model),
                    "id": str(entry["id"]),
                }
            )

        templates = []
        for row in rows:
            document = codec.from_row(row, InboundRefs())
            document["id"] = str(row["id"])
            document["entries"] = entries_by_plan.get(document["id"], [])
            try:
                templates.append(codec.model.model_validate(document))
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid template %s: %d error(s)", row["id"], exc.error_count()
                )
        return sorted(templates, key=lambda p: p.name.lower())
