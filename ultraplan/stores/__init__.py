"""Collection stores: local-first CRUD that schedules background sync."""

from ultraplan.stores.base import StoreResult
from ultraplan.stores.gear import GearStore
from ultraplan.stores.notes import NoteStore
from ultraplan.stores.plans import PlanKind, PlanStore
from ultraplan.stores.races import RaceStore

__all__ = [
    "GearStore",
    "NoteStore",
    "PlanKind",
    "PlanStore",
    "RaceStore",
    "StoreResult",
]
