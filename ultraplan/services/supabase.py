"""Supabase Postgres access with RLS context.

Every operation runs on a pooled connection inside a transaction where
``app.current_account_id`` is set via ``SET LOCAL``, so Row-Level Security
policies see the signed-in account.

Uses ``asyncpg`` directly; ``SupabaseRemote`` adapts it to the
``RemoteBackend`` interface used by the sync pipelines.
"""

from __future__ import annotations

import json
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Mapping, Sequence

import asyncpg

from ultraplan.config import Settings, get_settings
from ultraplan.sync.base import RemoteBackend, RemoteError

logger = logging.getLogger("ultraplan.db")

# Module-level connection pool - initialized once at app startup
_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    for pg_type in ("json", "jsonb"):
        await conn.set_type_codec(
            pg_type, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.supabase_db_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
        init=_init_connection,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.db_pool_min_size, s.db_pool_max_size
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized - call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    account_id: str | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection with the RLS account variable set.

    The ``SET LOCAL`` is scoped to the transaction, so it disappears when
    the connection goes back to the pool.
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if account_id:
                await conn.execute(
                    "SELECT set_config('app.current_account_id', $1, true)", str(account_id)
                )
            yield conn


# ---------------------------------------------------------------------------
# RemoteBackend adapter
# ---------------------------------------------------------------------------

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise RemoteError(f"Invalid identifier {name!r}")
    return f'"{name}"'


def _param(column: str, value: Any) -> Any:
    # Timestamps travel as ISO strings in row dicts; asyncpg wants datetimes.
    if column.endswith("_at") and isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _where(
    eq: Mapping[str, Any] | None,
    in_: Mapping[str, Sequence[Any]] | None,
    args: list[Any],
) -> str:
    clauses = []
    for column, value in (eq or {}).items():
        args.append(_param(column, value))
        clauses.append(f"{_ident(column)} = ${len(args)}")
    for column, values in (in_ or {}).items():
        args.append([_param(column, v) for v in values])
        clauses.append(f"{_ident(column)} = ANY(${len(args)})")
    return " AND ".join(clauses)


class SupabaseRemote(RemoteBackend):
    """``RemoteBackend`` over the shared asyncpg pool.

    Args:
        account_provider: Returns the account id to bind RLS to for each call.
    """

    def __init__(self, account_provider: Callable[[], str | None]) -> None:
        self.account_provider = account_provider

    @asynccontextmanager
    async def _connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        try:
            async with get_connection(self.account_provider()) as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError) as exc:
            raise RemoteError(str(exc)) from exc

    async def select(self, table, columns=("*",), *, eq=None, in_=None) -> list[dict[str, Any]]:
        args: list[Any] = []
        cols = ", ".join(c if c == "*" else _ident(c) for c in columns)
        query = f"SELECT {cols} FROM {_ident(table)}"
        where = _where(eq, in_, args)
        if where:
            query += f" WHERE {where}"
        async with self._connection() as conn:
            records = await conn.fetch(query, *args)
        return [dict(r) for r in records]

    async def insert(self, table, rows) -> None:
        if not rows:
            return
        columns: list[str] = []
        for row in rows:
            columns.extend(c for c in row if c not in columns)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {_ident(table)} ({', '.join(_ident(c) for c in columns)}) "
            f"VALUES ({placeholders})"
        )
        values = [[_param(c, row.get(c)) for c in columns] for row in rows]
        async with self._connection() as conn:
            await conn.executemany(query, values)

    async def update(self, table, values, *, eq) -> None:
        if not eq:
            raise RemoteError("update requires at least one filter")
        args: list[Any] = []
        assignments = []
        for column, value in values.items():
            args.append(_param(column, value))
            assignments.append(f"{_ident(column)} = ${len(args)}")
        query = (
            f"UPDATE {_ident(table)} SET {', '.join(assignments)} "
            f"WHERE {_where(eq, None, args)}"
        )
        async with self._connection() as conn:
            await conn.execute(query, *args)

    async def delete(self, table, *, eq=None, in_=None) -> None:
        args: list[Any] = []
        where = _where(eq, in_, args)
        if not where:
            raise RemoteError("delete requires at least one filter")
        async with self._connection() as conn:
            await conn.execute(f"DELETE FROM {_ident(table)} WHERE {where}", *args)

    async def ping(self) -> bool:
        try:
            async with self._connection() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except RemoteError as exc:
            logger.warning("Remote ping failed: %s", exc)
            return False
