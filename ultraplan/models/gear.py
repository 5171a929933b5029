"""Pydantic model for gear items."""

from __future__ import annotations

from ultraplan.models.base import Entity, TimestampMixin


class GearItem(Entity, TimestampMixin):
    name: str = ""
    brand: str = ""
    category: str = ""
    weight: float | None = None
    weight_unit: str = "g"
    quantity: int = 1
    retired: bool = False
    is_nutrition: bool = False
    is_hydration: bool = False
    notes: str = ""
