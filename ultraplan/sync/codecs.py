"""Row codecs: translate between on-device records and remote table rows.

Each synced collection has one ``CollectionCodec`` describing its remote
table, the columns it mirrors, its nested child tables, and how foreign
references (note owners, race-plan links) cross the id boundary.  Remote
rows use snake_case columns; on-device JSON uses camelCase.

Only the fields listed here are represented remotely.  Everything else on a
local record (e.g. a race's preparation gear list) is local-only and is kept
by the restore merge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping
from uuid import UUID

from pydantic.alias_generators import to_camel

from ultraplan.models.base import Entity
from ultraplan.models.gear import GearItem
from ultraplan.models.notes import Note
from ultraplan.models.plans import (
    HydrationEntry,
    HydrationPlan,
    NutritionEntry,
    NutritionPlan,
    RacePlan,
)
from ultraplan.models.races import AidStation, CrewMember, DropBag, Race
from ultraplan.sync.base import Collection, RemoteBackend

logger = logging.getLogger("ultraplan.sync.codecs")


class DataIntegrityError(ValueError):
    """A record references something that no longer exists locally."""


# ---------------------------------------------------------------------------
# Reference resolution contexts
# ---------------------------------------------------------------------------


class OutboundRefs:
    """Translate local references to remote ids during backup.

    ``resolve`` only reads existing mappings.  ``ensure`` additionally uploads
    a referenced entity that exists locally but has never been synced, through
    ``upload(collection, entity) -> remote id | None``, so the reference never
    points at a row the remote store does not have.
    """

    def __init__(
        self,
        mapper: Any,
        repository: Any,
        upload: Callable[[Collection, Entity], Awaitable[str | None]] | None = None,
    ) -> None:
        self.mapper = mapper
        self.repository = repository
        self.upload = upload

    async def resolve(self, kind: str, local_id: str | None) -> str | None:
        if not local_id:
            return None
        return await self.mapper.lookup(kind, local_id)

    async def ensure(
        self, kind: str, local_id: str | None, collection: Collection
    ) -> str | None:
        if not local_id:
            return None
        remote_id = await self.mapper.lookup(kind, local_id)
        if remote_id:
            return remote_id
        codec = get_codec(collection)
        items = await self.repository.load(collection.storage_key, codec.model)
        entity = items.get(local_id)
        if entity is None:
            return None
        remote_id = await self.upload(collection, entity) if self.upload else None
        if remote_id is None:
            raise DataIntegrityError(
                f"referenced {kind} {local_id} could not be backed up first"
            )
        return remote_id


@dataclass
class InboundRefs:
    """Translate remote references back to local ids during restore.

    Indexes are ``{kind: {remote_id: local_id}}``; restore keeps them current
    as it mints new local ids.
    """

    indexes: dict[str, dict[str, str]] = field(default_factory=dict)

    def local_id(self, kind: str, remote_id: Any) -> str | None:
        if remote_id is None:
            return None
        return self.indexes.get(kind, {}).get(str(remote_id))

    def remember(self, kind: str, remote_id: str, local_id: str) -> None:
        self.indexes.setdefault(kind, {})[str(remote_id)] = local_id


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _as_number(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _local_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    return value


def row_to_local(
    row: Mapping[str, Any], columns: tuple[str, ...], model: type[Entity]
) -> dict[str, Any]:
    """Return the camelCase fields represented by ``columns``.

    A NULL column clears the field: it becomes the field's declared default
    (None for optional fields).  NULLs for fields built by a factory, or with
    no default, are dropped so the local value or the factory applies.
    """
    fields = {to_camel(name): info for name, info in model.model_fields.items()}
    out: dict[str, Any] = {}
    for column in columns + ("created_at", "updated_at"):
        if column not in row:
            continue
        key = to_camel(column)
        value = row[column]
        if value is None:
            info = fields.get(key)
            if info is None or info.default_factory is not None or info.is_required():
                continue
            value = info.default
        out[key] = _local_value(value)
    return out


def entity_values(entity: Entity, columns: tuple[str, ...]) -> dict[str, Any]:
    """Dump ``columns`` of an entity as JSON-compatible snake_case values."""
    return entity.model_dump(mode="json", include=set(columns))


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChildSpec:
    """A nested collection mirrored to its own table (replace-all on backup).

    Attributes:
        kind:        Mapping kind of the child entity.
        table:       Remote table.
        foreign_key: Column holding the parent's remote id.
        model:       Child model class.
        columns:     Mirrored columns (also attribute names on the model).
        path:        Attribute path from the parent model to the child list.
        references:  Child column → mapping kind, resolved against siblings
                     of the same parent (e.g. a drop bag's aid station).
    """

    kind: str
    table: str
    foreign_key: str
    model: type[Entity]
    columns: tuple[str, ...]
    path: tuple[str, ...]
    references: Mapping[str, str] = field(default_factory=dict)

    def items(self, parent: Entity) -> list[Entity]:
        node: Any = parent
        for attr in self.path:
            node = getattr(node, attr, None)
            if node is None:
                return []
        return list(node)

    @property
    def json_path(self) -> tuple[str, ...]:
        return tuple(to_camel(p) for p in self.path)

    def to_row(self, child: Entity) -> dict[str, Any]:
        return entity_values(child, self.columns)


class AidStationSpec(ChildSpec):
    def to_row(self, child: Entity) -> dict[str, Any]:
        values = entity_values(child, self.columns)
        values["distance"] = _as_number(values.get("distance"))
        return values


# ---------------------------------------------------------------------------
# Collection codecs
# ---------------------------------------------------------------------------


class CollectionCodec:
    """Describe how one collection maps onto the remote schema."""

    collection: Collection
    kind: str
    table: str
    model: type[Entity]
    columns: tuple[str, ...] = ()
    children: tuple[ChildSpec, ...] = ()
    #: Parent rows carry the account id in ``user_id``.
    user_scoped: bool = True

    def __init__(self) -> None:
        self.reference_kinds: set[str] = set()

    async def fetch_rows(self, remote: RemoteBackend, account_id: str) -> list[dict[str, Any]]:
        """Read every remote row of this collection belonging to the account."""
        return await remote.select(self.table, eq={"user_id": account_id})

    async def to_row(
        self, entity: Entity, remote_id: str, account_id: str, refs: OutboundRefs
    ) -> dict[str, Any]:
        row = entity_values(entity, self.columns)
        row["id"] = remote_id
        if self.user_scoped:
            row["user_id"] = account_id
        return row

    def from_row(self, row: Mapping[str, Any], refs: InboundRefs) -> dict[str, Any]:
        return row_to_local(row, self.columns, self.model)


class RaceCodec(CollectionCodec):
    collection = Collection.RACES
    kind = "race"
    table = "races"
    model = Race
    columns = (
        "name", "event_type", "distance", "distance_unit", "elevation",
        "elevation_unit", "date", "start_time", "finish_time", "cutoff_time",
        "goal_time", "location", "race_status", "result_time", "result_notes",
        "mandatory_equipment", "drop_bags_allowed", "crew_allowed",
        "hiking_poles_allowed", "pacer_allowed",
    )
    # Aid stations come first: drop bags reference them.
    children = (
        AidStationSpec(
            kind="aid_station",
            table="aid_stations",
            foreign_key="race_id",
            model=AidStation,
            columns=(
                "name", "distance", "distance_unit", "cutoff_time",
                "cutoff_time_specific", "supplies", "drop_bag_allowed",
                "crew_allowed", "notes",
            ),
            path=("aid_stations",),
        ),
        ChildSpec(
            kind="drop_bag",
            table="drop_bags",
            foreign_key="race_id",
            model=DropBag,
            columns=("name", "aid_station_id", "items", "notes"),
            path=("preparation", "drop_bags"),
            references={"aid_station_id": "aid_station"},
        ),
        ChildSpec(
            kind="crew_member",
            table="crew_members",
            foreign_key="race_id",
            model=CrewMember,
            columns=("name", "role", "phone", "email", "notes"),
            path=("crew_members",),
        ),
    )


class GearCodec(CollectionCodec):
    collection = Collection.GEAR
    kind = "gear"
    table = "gear_items"
    model = GearItem
    columns = (
        "name", "brand", "category", "weight", "weight_unit", "quantity",
        "retired", "is_nutrition", "is_hydration", "notes",
    )


# Which mapping kind a note's owner id belongs to.
NOTE_OWNER_KINDS: dict[str, str] = {
    "race": "race",
    "gear": "gear",
    "nutrition": "nutrition_plan",
    "hydration": "hydration_plan",
    "drop_bag": "drop_bag",
    "crew": "crew_member",
    "aid_station": "aid_station",
}


class NoteCodec(CollectionCodec):
    """Notes store their owner's remote id when the owner has been synced.

    Owners that were never synced (or course/general notes) keep the raw
    local id so nothing is lost; restore translates back where it can.
    """

    collection = Collection.NOTES
    kind = "note"
    table = "notes"
    model = Note
    columns = ("entity_type", "entity_id", "title", "content")

    def __init__(self) -> None:
        super().__init__()
        self.reference_kinds = set(NOTE_OWNER_KINDS.values())

    async def to_row(self, entity, remote_id, account_id, refs) -> dict[str, Any]:
        row = await super().to_row(entity, remote_id, account_id, refs)
        owner_kind = NOTE_OWNER_KINDS.get(row.get("entity_type") or "")
        if owner_kind and row.get("entity_id"):
            owner_remote = await refs.resolve(owner_kind, row["entity_id"])
            if owner_remote:
                row["entity_id"] = owner_remote
        return row

    def from_row(self, row, refs) -> dict[str, Any]:
        local = super().from_row(row, refs)
        owner_kind = NOTE_OWNER_KINDS.get(local.get("entityType") or "")
        if owner_kind and local.get("entityId"):
            local["entityId"] = refs.local_id(owner_kind, local["entityId"]) or local["entityId"]
        return local


class PlanCodec(CollectionCodec):
    columns = (
        "name", "description", "race_type", "race_duration", "terrain_type",
        "weather_condition", "intensity_level",
    )

    async def to_row(self, entity, remote_id, account_id, refs) -> dict[str, Any]:
        row = await super().to_row(entity, remote_id, account_id, refs)
        if row.get("race_duration") is not None:
            row["race_duration"] = str(row["race_duration"])
        return row


class NutritionPlanCodec(PlanCodec):
    collection = Collection.NUTRITION_PLANS
    kind = "nutrition_plan"
    table = "nutrition_plans"
    model = NutritionPlan
    children = (
        ChildSpec(
            kind="nutrition_entry",
            table="nutrition_entries",
            foreign_key="plan_id",
            model=NutritionEntry,
            columns=(
                "food_type", "calories", "carbs", "protein", "fat", "sodium",
                "potassium", "magnesium", "timing", "frequency", "quantity",
                "is_essential", "source_location", "notes",
            ),
            path=("entries",),
        ),
    )


class HydrationPlanCodec(PlanCodec):
    collection = Collection.HYDRATION_PLANS
    kind = "hydration_plan"
    table = "hydration_plans"
    model = HydrationPlan
    children = (
        ChildSpec(
            kind="hydration_entry",
            table="hydration_entries",
            foreign_key="plan_id",
            model=HydrationEntry,
            columns=(
                "liquid_type", "volume", "electrolytes", "timing", "frequency",
                "consumption_rate", "temperature", "source_location",
                "container_type",
            ),
            path=("entries",),
        ),
    )


class RacePlanCodec(CollectionCodec):
    """Race plans have no ``user_id``; they are scoped through the account's races."""

    collection = Collection.RACE_PLANS
    kind = "race_plan"
    table = "race_plans"
    model = RacePlan
    columns = (
        "race_id", "nutrition_plan_id", "hydration_plan_id", "is_active",
        "start_time", "end_time",
    )
    user_scoped = False

    # column → (mapping kind, owning collection)
    LINKS: dict[str, tuple[str, Collection]] = {
        "race_id": ("race", Collection.RACES),
        "nutrition_plan_id": ("nutrition_plan", Collection.NUTRITION_PLANS),
        "hydration_plan_id": ("hydration_plan", Collection.HYDRATION_PLANS),
    }

    def __init__(self) -> None:
        super().__init__()
        self.reference_kinds = {kind for kind, _ in self.LINKS.values()}

    async def fetch_rows(self, remote, account_id) -> list[dict[str, Any]]:
        races = await remote.select("races", ["id"], eq={"user_id": account_id})
        race_ids = [r["id"] for r in races]
        if not race_ids:
            return []
        return await remote.select(self.table, in_={"race_id": race_ids})

    async def to_row(self, entity, remote_id, account_id, refs) -> dict[str, Any]:
        row = await super().to_row(entity, remote_id, account_id, refs)
        for column, (kind, collection) in self.LINKS.items():
            local_ref = row.get(column)
            remote_ref = await refs.ensure(kind, local_ref, collection)
            if column == "race_id" and remote_ref is None:
                raise DataIntegrityError(
                    f"race plan {entity.id} references missing race {local_ref!r}"
                )
            row[column] = remote_ref
        return row

    def from_row(self, row, refs) -> dict[str, Any]:
        local = super().from_row(row, refs)
        for column, (kind, _) in self.LINKS.items():
            key = to_camel(column)
            if key in local:
                local[key] = refs.local_id(kind, local[key])
        if not local.get("raceId"):
            raise DataIntegrityError(
                f"remote race plan {row.get('id')} references an unknown race"
            )
        return local


_CODECS: dict[Collection, CollectionCodec] = {}


def get_codec(collection: Collection) -> CollectionCodec:
    """Return the codec registered for ``collection``."""
    if not _CODECS:
        for codec_cls in (
            RaceCodec,
            GearCodec,
            NoteCodec,
            NutritionPlanCodec,
            HydrationPlanCodec,
            RacePlanCodec,
        ):
            codec = codec_cls()
            _CODECS[codec.collection] = codec
    return _CODECS[collection]
