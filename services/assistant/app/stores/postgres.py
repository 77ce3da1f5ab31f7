"""PostgreSQL record store backed by a psycopg async connection pool."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from .base import ChangeCallback, ChangeFeed, Filters, RecordStore, RecordStoreError, Row

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS research_items (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    project_id TEXT NOT NULL,
    section TEXT NOT NULL,
    name TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS research_items_project_name_idx
    ON research_items (project_id, name);

CREATE TABLE IF NOT EXISTS research_chat_messages (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    project_id TEXT NOT NULL,
    phase SMALLINT NOT NULL CHECK (phase BETWEEN 1 AND 3),
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    is_summary BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS research_chat_messages_project_phase_idx
    ON research_chat_messages (project_id, phase, created_at);

CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    user_id TEXT NOT NULL UNIQUE,
    active BOOLEAN NOT NULL DEFAULT FALSE,
    tokens_used BIGINT NOT NULL DEFAULT 0,
    tokens_limit BIGINT NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Jsonb(value)
    return value


def _where(filters: Optional[Filters]) -> tuple[sql.Composable, list[Any]]:
    if not filters:
        return sql.SQL(""), []
    clauses: list[sql.Composable] = []
    params: list[Any] = []
    for key, expected in filters.items():
        column = sql.Identifier(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            clauses.append(sql.SQL("{} = ANY(%s)").format(column))
            params.append(list(expected))
        elif expected is None:
            clauses.append(sql.SQL("{} IS NULL").format(column))
        else:
            clauses.append(sql.SQL("{} = %s").format(column))
            params.append(expected)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


class PostgresRecordStore(RecordStore):
    """Record store where each collection is a table of the same name.

    Change notifications are published in-process after this store's own
    writes; writes made by other processes are not observed.
    """

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self._pool = AsyncConnectionPool(
            conninfo.replace("+psycopg", ""), min_size=min_size, max_size=max_size, open=False
        )
        self._feed = ChangeFeed()

    async def open(self, *, ensure_schema: bool = True) -> None:
        await self._pool.open()
        if ensure_schema:
            await self._run(sql.SQL(SCHEMA_SQL), [], fetch=False)
            logger.info("Record store schema ensured")

    async def close(self) -> None:
        await self._pool.close()

    async def _run(self, query: sql.Composable, params: Sequence[Any], *, fetch: bool = True) -> list[Row]:
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, list(params) or None)
                    if not fetch:
                        return []
                    return list(await cur.fetchall())
        except psycopg.Error as exc:
            raise RecordStoreError(f"Database operation failed: {exc}") from exc

    async def insert(self, collection: str, rows: Sequence[Row]) -> list[Row]:
        if not rows:
            return []
        stored: list[Row] = []
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    for row in rows:
                        columns = list(row.keys())
                        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                            sql.Identifier(collection),
                            sql.SQL(", ").join(sql.Identifier(column) for column in columns),
                            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
                        )
                        await cur.execute(query, [_adapt(row[column]) for column in columns])
                        stored.append(await cur.fetchone())
        except psycopg.Error as exc:
            raise RecordStoreError(f"Database insert into {collection} failed: {exc}") from exc
        self._feed.publish(collection, "INSERT", stored)
        return stored

    async def select(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        order_by: Sequence[str] = (),
    ) -> list[Row]:
        where, params = _where(filters)
        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(collection)) + where
        if order_by:
            query += sql.SQL(" ORDER BY ") + sql.SQL(", ").join(
                sql.Identifier(column) for column in order_by
            )
        return await self._run(query, params)

    async def update(self, collection: str, filters: Filters, values: Mapping[str, Any]) -> list[Row]:
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in values
        )
        where, params = _where(filters)
        query = (
            sql.SQL("UPDATE {} SET ").format(sql.Identifier(collection))
            + assignments
            + where
            + sql.SQL(" RETURNING *")
        )
        updated = await self._run(query, [_adapt(value) for value in values.values()] + params)
        self._feed.publish(collection, "UPDATE", updated)
        return updated

    async def delete(self, collection: str, filters: Filters) -> int:
        where, params = _where(filters)
        query = sql.SQL("DELETE FROM {}").format(sql.Identifier(collection)) + where + sql.SQL(" RETURNING *")
        removed = await self._run(query, params)
        self._feed.publish(collection, "DELETE", removed)
        return len(removed)

    def subscribe(
        self, collection: str, filters: Optional[Filters], callback: ChangeCallback
    ) -> Callable[[], None]:
        return self._feed.subscribe(collection, filters, callback)
