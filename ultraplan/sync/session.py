"""Entitlement gate and per-session sync state.

Entitlement verification itself (store receipts, subscription backend) is
owned by an external collaborator; this module only consumes its answer.
``SyncSession`` replaces ambient "already fetched" flags with an explicit
object whose lifetime runs from sign-in / entitlement activation to sign-out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ultraplan.sync.base import Collection

logger = logging.getLogger("ultraplan.sync.session")


@dataclass
class StaticEntitlement:
    """Plain-value entitlement, updated by whoever observes the subscription state."""

    is_entitled: bool = False
    account_id: str | None = None


@dataclass
class SyncSession:
    """Process-wide sync state for one signed-in account.

    Attributes:
        entitlement:     Current entitlement answer.
        fetched:         Collections already restored this session.
        started_at:      When the session began (None before sign-in).
        last_backup_at:  Completion time of the last successful backup.
    """

    entitlement: StaticEntitlement = field(default_factory=StaticEntitlement)
    fetched: set[Collection] = field(default_factory=set)
    started_at: datetime | None = None
    last_backup_at: datetime | None = None

    @property
    def account_id(self) -> str | None:
        return self.entitlement.account_id

    @property
    def is_entitled(self) -> bool:
        return bool(self.entitlement.is_entitled and self.entitlement.account_id)

    def start(self, account_id: str | None, is_entitled: bool) -> None:
        """Begin a session (app start, sign-in, or entitlement change).

        Switching accounts clears the fetched flags; re-asserting the same
        account keeps them.
        """
        if account_id != self.entitlement.account_id:
            self.fetched.clear()
        self.entitlement.account_id = account_id
        self.entitlement.is_entitled = is_entitled
        self.started_at = datetime.now(timezone.utc)
        logger.info(
            "Sync session started (account=%s, entitled=%s)", account_id, is_entitled
        )

    def end(self) -> None:
        """Tear the session down on sign-out."""
        logger.info("Sync session ended (account=%s)", self.entitlement.account_id)
        self.entitlement.account_id = None
        self.entitlement.is_entitled = False
        self.fetched.clear()
        self.started_at = None
        self.last_backup_at = None

    def was_fetched(self, collection: Collection) -> bool:
        return collection in self.fetched

    def mark_fetched(self, collection: Collection) -> None:
        self.fetched.add(collection)

    def clear_fetched(self, collection: Collection | None = None) -> None:
        if collection is None:
            self.fetched.clear()
        else:
            self.fetched.discard(collection)
