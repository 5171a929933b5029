"""Shared Pydantic base models and utilities."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id() -> str:
    """Generate a client-side entity id (RFC 4122 v4, stable for the entity's lifetime)."""
    return str(uuid.uuid4())


class PlannerBase(BaseModel):
    """Base model with shared config for all on-device records.

    Records are persisted as camelCase JSON.  Fields written by other app
    versions are kept (``extra="allow"``) so a load/save cycle never drops them.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="allow",
    )

    def to_json(self) -> dict[str, Any]:
        """Serialize to the on-device JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


class TimestampMixin(PlannerBase):
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Entity(PlannerBase):
    """A record with a stable local id."""

    id: str = Field(default_factory=new_local_id)
