"""Base interfaces and result models for the Ultra Planner reconciliation core.

Every remote backend subclasses ``RemoteBackend``.  Every public sync
operation returns one of the result dataclasses below rather than raising:
callers (UI, HTTP layer) decide whether to surface, retry or ignore a
failure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Sequence

logger = logging.getLogger("ultraplan.sync")

NOT_ENTITLED = "not-entitled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class Collection(str, Enum):
    """Independently synced entity collections."""

    RACES = "races"
    GEAR = "gear"
    NOTES = "notes"
    NUTRITION_PLANS = "nutrition_plans"
    HYDRATION_PLANS = "hydration_plans"
    RACE_PLANS = "race_plans"

    @property
    def storage_key(self) -> str:
        """Local store key holding this collection's document."""
        return _STORAGE_KEYS[self]


_STORAGE_KEYS: dict[Collection, str] = {
    Collection.RACES: "races",
    Collection.GEAR: "gearItems",
    Collection.NOTES: "notes",
    Collection.NUTRITION_PLANS: "nutritionPlans",
    Collection.HYDRATION_PLANS: "hydrationPlans",
    Collection.RACE_PLANS: "racePlans",
}

# Restore order matters for race plans: their references resolve through the
# mappings that race and plan restores record.
RESTORE_ORDER: tuple[Collection, ...] = (
    Collection.RACES,
    Collection.GEAR,
    Collection.NUTRITION_PLANS,
    Collection.HYDRATION_PLANS,
    Collection.RACE_PLANS,
    Collection.NOTES,
)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class EntityOutcome:
    """What happened to one entity during a backup or remote delete.

    Attributes:
        local_id:  Local id of the entity.
        remote_id: Resolved remote id (None if resolution never happened).
        action:    'inserted', 'updated', 'deleted', 'skipped' or 'failed'.
        children:  Number of child rows written.
        error:     Error message when action == 'failed' or 'skipped'.
    """

    local_id: str
    remote_id: str | None = None
    action: str = "skipped"
    children: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.action != "failed"


@dataclass
class BackupReport:
    """Result of one backup (or remote delete) pass over a collection.

    Attributes:
        collection: Collection that was processed.
        status:     'success', 'partial', 'error' or 'skipped'.
        reason:     Short machine-readable reason when skipped (e.g. 'not-entitled').
        error:      Summary of errors when status is 'partial' or 'error'.
        outcomes:   Per-entity outcomes in processing order.
        synced_at:  UTC timestamp of completion.
    """

    collection: Collection
    status: str = "success"
    reason: str | None = None
    error: str | None = None
    outcomes: list[EntityOutcome] = field(default_factory=list)
    synced_at: datetime = field(default_factory=_utcnow)

    @property
    def success(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> list[EntityOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def finalize(self) -> "BackupReport":
        """Derive ``status``/``error`` from the collected outcomes."""
        failures = self.failed
        if not failures:
            self.status = "success"
            self.error = None
        elif len(failures) == len(self.outcomes):
            self.status = "error"
        else:
            self.status = "partial"
        if failures:
            self.error = "; ".join(
                f"{o.local_id}: {o.error}" for o in failures[:3]
            )
        self.synced_at = _utcnow()
        return self

    @classmethod
    def skipped(cls, collection: Collection, reason: str) -> "BackupReport":
        return cls(collection=collection, status="skipped", reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection.value,
            "success": self.success,
            "status": self.status,
            "reason": self.reason,
            "error": self.error,
            "outcomes": [vars(o).copy() for o in self.outcomes],
            "synced_at": self.synced_at.isoformat(),
        }


@dataclass
class RestoreResult:
    """Result of one restore/merge pass over a collection.

    ``data`` always holds the collection as it stands locally after the call
    (unchanged when the restore was skipped or failed), as on-device JSON.
    """

    collection: Collection
    success: bool = True
    reason: str | None = None
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    inserted: int = 0
    merged: int = 0
    skipped: int = 0
    restored_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection.value,
            "success": self.success,
            "reason": self.reason,
            "error": self.error,
            "inserted": self.inserted,
            "merged": self.merged,
            "skipped": self.skipped,
            "restored_at": self.restored_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Remote backend
# ---------------------------------------------------------------------------


class RemoteError(RuntimeError):
    """Raised by a remote backend when a table operation fails."""


class RemoteBackend(ABC):
    """Per-table relational operations with equality and ``in`` filters.

    Implementations are scoped to one account by their constructor; row
    level security on the server enforces it, and callers additionally
    filter on ``user_id`` where the table has one.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        columns: Sequence[str] = ("*",),
        *,
        eq: Mapping[str, Any] | None = None,
        in_: Mapping[str, Sequence[Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Return matching rows as dicts."""

    @abstractmethod
    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Insert one or more rows."""

    @abstractmethod
    async def update(
        self, table: str, values: Mapping[str, Any], *, eq: Mapping[str, Any]
    ) -> None:
        """Update rows matching every ``eq`` filter."""

    @abstractmethod
    async def delete(
        self,
        table: str,
        *,
        eq: Mapping[str, Any] | None = None,
        in_: Mapping[str, Sequence[Any]] | None = None,
    ) -> None:
        """Delete matching rows.  At least one filter is required."""

    async def ping(self) -> bool:
        """Return True when the backend is reachable."""
        return True
