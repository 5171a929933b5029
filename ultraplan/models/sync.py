"""Request / response schemas for the sync control endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class SessionUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: str | None = None
    is_entitled: bool = False


class SyncStatusRead(BaseModel):
    account_id: str | None = None
    is_entitled: bool
    started_at: datetime | None = None
    last_backup_at: datetime | None = None
    fetched: list[str]
    pending_tasks: int = 0


class SessionRead(BaseModel):
    status: SyncStatusRead
    restored: dict[str, dict[str, Any] | None] = {}


class RestoreRead(BaseModel):
    collection: str
    ran: bool
    reason: str | None = None
    result: dict[str, Any] | None = None
