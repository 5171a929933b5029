"""Pydantic model for free-form notes attached to any planner entity."""

from __future__ import annotations

from enum import Enum

from ultraplan.models.base import Entity, TimestampMixin


class NoteEntityType(str, Enum):
    RACE = "race"
    GEAR = "gear"
    NUTRITION = "nutrition"
    HYDRATION = "hydration"
    DROP_BAG = "drop_bag"
    CREW = "crew"
    AID_STATION = "aid_station"
    COURSE = "course"
    GENERAL = "general"


class Note(Entity, TimestampMixin):
    entity_type: NoteEntityType = NoteEntityType.GENERAL
    entity_id: str | None = None
    title: str = ""
    content: str = ""
