"""Pydantic models for nutrition / hydration plans and race-plan assignments."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from ultraplan.models.base import Entity, TimestampMixin


# ---------- Entries ----------

class NutritionEntry(Entity, TimestampMixin):
    food_type: str = ""
    calories: float = 0
    carbs: float = 0
    protein: float = 0
    fat: float = 0
    sodium: float = 0
    potassium: float = 0
    magnesium: float = 0
    timing: str | float = ""
    frequency: str = ""
    quantity: float = 1
    is_essential: bool = False
    source_location: str = ""
    notes: str = ""


class HydrationEntry(Entity, TimestampMixin):
    liquid_type: str = ""
    volume: float = 0
    electrolytes: Any = None
    timing: str | float = ""
    frequency: str = ""
    consumption_rate: float = 0
    temperature: str = ""
    source_location: str = ""
    container_type: str = ""


# ---------- Plans ----------

class PlanBase(Entity, TimestampMixin):
    name: str = "Unnamed Plan"
    description: str = ""
    race_type: str = ""
    race_duration: str | float | None = None
    terrain_type: str = ""
    weather_condition: str = ""
    intensity_level: str = ""


class NutritionPlan(PlanBase):
    entries: list[NutritionEntry] = Field(default_factory=list)


class HydrationPlan(PlanBase):
    entries: list[HydrationEntry] = Field(default_factory=list)


# ---------- Race plan association ----------

class RacePlan(Entity, TimestampMixin):
    race_id: str | None = None
    nutrition_plan_id: str | None = None
    hydration_plan_id: str | None = None
    is_active: bool = True
    start_time: str | None = None
    end_time: str | None = None
