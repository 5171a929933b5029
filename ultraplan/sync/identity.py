"""Identity mapping between local ids and remote ids.

Local ids are generated on the device; the remote store has its own primary
keys.  The association is persisted in the local store as one key per
entity::

    "{kind}_uuid_{local_id}" -> "<remote id>"

Mappings are created lazily, on the first sync attempt for an entity.  Before
minting a fresh remote id the mapper asks the kind's reconciliation strategy
whether a matching remote row already exists (races match by name, so a race
created on two devices does not end up duplicated remotely).
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

from ultraplan.services.local_store import LocalStore, StoreError
from ultraplan.sync.base import RemoteBackend
from ultraplan.sync.config_loader import SyncConfig, get_sync_config
from ultraplan.sync.session import SyncSession

logger = logging.getLogger("ultraplan.sync.identity")

MAPPING_INFIX = "_uuid_"

# Remote table behind each mapping kind (used by lookups that query rows).
KIND_TABLES: dict[str, str] = {
    "race": "races",
    "aid_station": "aid_stations",
    "drop_bag": "drop_bags",
    "crew_member": "crew_members",
    "gear": "gear_items",
    "note": "notes",
    "nutrition_plan": "nutrition_plans",
    "nutrition_entry": "nutrition_entries",
    "hydration_plan": "hydration_plans",
    "hydration_entry": "hydration_entries",
    "race_plan": "race_plans",
}


def mapping_key(kind: str, local_id: str) -> str:
    """Return the local store key holding the mapping for ``local_id``."""
    return f"{kind}{MAPPING_INFIX}{local_id}"


def mint_remote_id() -> str:
    return str(uuid.uuid4())


def _field_value(entity: Any, name: str) -> Any:
    if entity is None:
        return None
    if isinstance(entity, dict):
        return entity.get(name)
    return getattr(entity, name, None)


# ---------------------------------------------------------------------------
# Reconciliation strategies
# ---------------------------------------------------------------------------


class ReconciliationStrategy(ABC):
    """Decide whether an unmapped local entity already exists remotely."""

    STRATEGY_ID: str = "unknown"

    @abstractmethod
    async def find_existing(
        self,
        kind: str,
        entity: Any,
        *,
        remote: RemoteBackend,
        account_id: str,
        taken: frozenset[str] = frozenset(),
    ) -> str | None:
        """Return the remote id to bind to, or None to mint a new one.

        ``taken`` holds remote ids already mapped to other local entities of
        the same kind; they are never returned.
        """


class AlwaysMintStrategy(ReconciliationStrategy):
    STRATEGY_ID = "always_mint"

    async def find_existing(
        self, kind, entity, *, remote, account_id, taken=frozenset()
    ) -> str | None:
        return None


class ByNameStrategy(ReconciliationStrategy):
    """Bind to the account's remote row whose ``match_field`` equals the local value."""

    STRATEGY_ID = "by_name"

    def __init__(self, match_field: str = "name") -> None:
        self.match_field = match_field

    async def find_existing(
        self, kind, entity, *, remote, account_id, taken=frozenset()
    ) -> str | None:
        value = _field_value(entity, self.match_field)
        if value in (None, ""):
            return None
        rows = await remote.select(
            KIND_TABLES[kind],
            ["id"],
            eq={"user_id": account_id, self.match_field: value},
        )
        free = [str(row["id"]) for row in rows if str(row["id"]) not in taken]
        if not free:
            return None
        if len(free) > 1:
            logger.warning(
                "%d unmapped remote %s rows share %s=%r; binding to the first",
                len(free), kind, self.match_field, value,
            )
        return free[0]


def build_strategy(strategy: str, match_field: str | None = None) -> ReconciliationStrategy:
    if strategy == ByNameStrategy.STRATEGY_ID:
        return ByNameStrategy(match_field or "name")
    if strategy == AlwaysMintStrategy.STRATEGY_ID:
        return AlwaysMintStrategy()
    raise KeyError(f"Unknown reconciliation strategy '{strategy}'")


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


class IdentityMapper:
    """Persistent local-id to remote-id association.

    Lookups only ever write to the mapping keys; entity documents are never
    touched here.
    """

    def __init__(
        self,
        store: LocalStore,
        session: SyncSession,
        remote: RemoteBackend | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        self.store = store
        self.session = session
        self.remote = remote
        self._config = config or get_sync_config()
        self._strategies: dict[str, ReconciliationStrategy] = {}

    def strategy_for(self, kind: str) -> ReconciliationStrategy:
        if kind not in self._strategies:
            rule = self._config.reconciliation_for(kind)
            self._strategies[kind] = build_strategy(rule.strategy, rule.match_field)
        return self._strategies[kind]

    def set_strategy(self, kind: str, strategy: ReconciliationStrategy) -> None:
        """Override the configured strategy for ``kind``."""
        self._strategies[kind] = strategy

    async def lookup(self, kind: str, local_id: str) -> str | None:
        """Return the mapped remote id without creating one."""
        try:
            value = await self.store.get(mapping_key(kind, local_id))
        except StoreError as exc:
            logger.warning("Mapping lookup failed for %s %s: %s", kind, local_id, exc)
            return None
        return str(value) if value else None

    async def map_local_to_remote(
        self, kind: str, local_id: str, entity: Any = None
    ) -> str:
        """Resolve (or lazily create) the remote id for a local entity.

        Args:
            kind:     Mapping kind (e.g. 'race', 'nutrition_entry').
            local_id: Local id of the entity.
            entity:   The entity itself, consulted by matching strategies.

        Returns:
            The remote id, stable across calls for the same ``local_id``.

        Raises:
            StoreError: If a newly created mapping cannot be persisted.
        """
        existing = await self.lookup(kind, local_id)
        if existing:
            return existing

        remote_id: str | None = None
        account_id = self.session.account_id
        strategy = self.strategy_for(kind)
        if (
            self.remote is not None
            and account_id
            and not isinstance(strategy, AlwaysMintStrategy)
        ):
            try:
                taken = frozenset(await self.build_reverse_index(kind))
                remote_id = await strategy.find_existing(
                    kind, entity, remote=self.remote, account_id=account_id, taken=taken
                )
            except Exception as exc:
                logger.warning(
                    "Remote %s lookup for %s %s failed, minting a new id: %s",
                    strategy.STRATEGY_ID, kind, local_id, exc,
                )
                remote_id = None
            if remote_id:
                logger.info(
                    "Bound local %s %s to existing remote row %s (%s)",
                    kind, local_id, remote_id, strategy.STRATEGY_ID,
                )

        if not remote_id:
            remote_id = mint_remote_id()
            logger.debug("Minted remote id %s for %s %s", remote_id, kind, local_id)

        await self.store.set(mapping_key(kind, local_id), remote_id)
        return remote_id

    async def record_mapping(self, kind: str, local_id: str, remote_id: str) -> None:
        """Upsert a mapping.  Re-recording the same pair is a no-op."""
        key = mapping_key(kind, local_id)
        if await self.store.get(key) == remote_id:
            return
        await self.store.set(key, remote_id)

    async def forget(self, kind: str, local_id: str) -> None:
        await self.store.remove(mapping_key(kind, local_id))

    async def build_reverse_index(self, kind: str) -> dict[str, str]:
        """Return ``{remote_id: local_id}`` for every stored mapping of ``kind``.

        One scan over all keys instead of a lookup per remote row.

        Raises:
            StoreError: If the key listing fails.
        """
        prefix = f"{kind}{MAPPING_INFIX}"
        index: dict[str, str] = {}
        for key in await self.store.list_keys():
            if not key.startswith(prefix):
                continue
            remote_id = await self.store.get(key)
            if remote_id:
                index[str(remote_id)] = key[len(prefix):]
        return index
