"""Pydantic models for races and their nested structures: aid stations, drop bags, crew."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from ultraplan.models.base import Entity, PlannerBase, TimestampMixin


class DistanceUnit(str, Enum):
    MILES = "miles"
    KM = "km"


class ElevationUnit(str, Enum):
    FEET = "ft"
    METERS = "m"


class TimeTarget(PlannerBase):
    """A duration such as a cutoff or goal, e.g. ``{"value": 30, "unit": "hours"}``."""

    value: float
    unit: str = "hours"


# ---------- Nested children ----------

class AidStation(Entity):
    name: str = ""
    distance: float | str | None = None
    distance_unit: DistanceUnit | None = None
    cutoff_time: str | None = None
    cutoff_time_specific: str | None = None
    supplies: dict[str, Any] = Field(default_factory=dict)
    drop_bag_allowed: bool = False
    crew_allowed: bool = False
    notes: str = ""


class DropBag(Entity):
    name: str = ""
    aid_station_id: str | None = None
    items: list[Any] = Field(default_factory=list)
    notes: str = ""


class CrewMember(Entity):
    name: str = ""
    role: str = ""
    phone: str = ""
    email: str = ""
    notes: str = ""


class Preparation(PlannerBase):
    """Race-day preparation.  Only ``drop_bags`` is mirrored remotely."""

    drop_bags: list[DropBag] = Field(default_factory=list)
    gear_items: list[dict[str, Any]] = Field(default_factory=list)
    nutrition_plans: list[dict[str, Any]] = Field(default_factory=list)
    hydration_plans: list[dict[str, Any]] = Field(default_factory=list)


# ---------- Race ----------

class Race(Entity, TimestampMixin):
    name: str = ""
    event_type: str | None = None
    distance: float = 0
    distance_unit: DistanceUnit = DistanceUnit.MILES
    elevation: float = 0
    elevation_unit: ElevationUnit = ElevationUnit.FEET
    date: str | None = None
    start_time: str | None = None
    finish_time: str | None = None
    cutoff_time: TimeTarget | None = None
    goal_time: TimeTarget | None = None
    location: Any = None
    race_status: str = "upcoming"
    result_time: str | None = None
    result_notes: str = ""
    mandatory_equipment: list[Any] = Field(default_factory=list)
    drop_bags_allowed: bool = False
    crew_allowed: bool = False
    hiking_poles_allowed: bool = False
    pacer_allowed: bool = False
    aid_stations: list[AidStation] = Field(default_factory=list)
    preparation: Preparation = Field(default_factory=Preparation)
    crew_members: list[CrewMember] = Field(default_factory=list)
