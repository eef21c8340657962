"""
Local durable store backed by SQLite.

One table per entity namespace plus ``sync_queue``. Every row keeps the
full record as JSON in ``data``; ``synced`` and the per-entity lookup
columns (``branch_id``, ``rental_id``, ...) are duplicated into real
columns so they can be indexed.

Storage-engine failures never escape to callers once the store is open:
they are logged, the store is flagged as degraded and the operation
returns an empty/falsy result. The rest of the system keeps working with
whatever was already persisted.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite

from ..entities.records import RECORD_TYPES, EntityTable
from ..exceptions import LocalStoreError, StorageConnectionError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 5

SYNC_QUEUE = "sync_queue"

# Indexed columns per namespace, duplicated out of the JSON payload
TABLE_INDEXES: dict[str, tuple[str, ...]] = {
    table.value: rtype.INDEXES for table, rtype in RECORD_TYPES.items()
}
TABLE_INDEXES[SYNC_QUEUE] = ()

_STORAGE_ERRORS = (aiosqlite.Error, OSError)

TableName = EntityTable | str


def _table_name(table: TableName) -> str:
    name = table.value if isinstance(table, EntityTable) else table
    if name not in TABLE_INDEXES:
        raise ValueError(f"Unknown local table: {name}")
    return name


@dataclass
class TransactionState:
    """Outcome of a ``LocalStore.transaction()`` block."""

    committed: bool = False
    error: LocalStoreError | None = None


class LocalStore:
    """Keyed, table-oriented on-device storage.

    Each logical operation is a single atomic statement against SQLite.
    Multi-table mutations that must not be left half-applied can be
    grouped with ``transaction()``.
    """

    def __init__(self, db_path: str | Path = ":memory:", bulk_chunk_size: int = 500):
        """Initialize the store.

        Args:
            db_path: SQLite database file, or ":memory:"
            bulk_chunk_size: Rows per commit in ``bulk_put``
        """
        self.db_path = db_path
        self.bulk_chunk_size = bulk_chunk_size
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False
        self._degraded_tables: set[str] = set()
        self._lock = asyncio.Lock()
        self._tx_owner: asyncio.Task[Any] | None = None

    @classmethod
    async def create(cls, db_path: str | Path = ":memory:", bulk_chunk_size: int = 500) -> LocalStore:
        """Create and initialize a local store."""
        store = cls(db_path, bulk_chunk_size)
        await store.initialize()
        return store

    @property
    def degraded(self) -> bool:
        """True once any storage operation has failed since opening."""
        return bool(self._degraded_tables)

    @property
    def degraded_tables(self) -> set[str]:
        return set(self._degraded_tables)

    async def initialize(self) -> None:
        """Open the database and create or migrate the schema."""
        if self._initialized:
            return

        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = await aiosqlite.connect(str(self.db_path))

            await self.conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            version = await self._get_schema_version()
            for table, indexes in TABLE_INDEXES.items():
                await self._create_table(table, indexes)
            if 0 < version < SCHEMA_VERSION:
                await self._migrate(version)
            for table, indexes in TABLE_INDEXES.items():
                await self._create_indexes(table, indexes)

            await self._set_schema_version(SCHEMA_VERSION)
            await self.conn.commit()
            self._initialized = True
            logger.info(f"Local store initialized: {self.db_path} (schema v{SCHEMA_VERSION})")

        except _STORAGE_ERRORS as e:
            raise StorageConnectionError(str(self.db_path), e) from e

    async def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    # =========================================================================
    # Schema Management
    # =========================================================================

    async def _create_table(self, table: str, indexes: tuple[str, ...]) -> None:
        extra = "".join(f', "{col}" TEXT' for col in indexes)
        await self.conn.execute(
            f'CREATE TABLE IF NOT EXISTS "{table}" ('
            "id TEXT NOT NULL PRIMARY KEY, "
            "synced INTEGER, "
            f"data TEXT NOT NULL{extra})"
        )

    async def _create_indexes(self, table: str, indexes: tuple[str, ...]) -> None:
        if table != SYNC_QUEUE:
            await self.conn.execute(
                f'CREATE INDEX IF NOT EXISTS "idx_{table}_synced" ON "{table}" (synced)'
            )
        for col in indexes:
            await self.conn.execute(
                f'CREATE INDEX IF NOT EXISTS "idx_{table}_{col}" ON "{table}" ("{col}")'
            )

    async def _get_schema_version(self) -> int:
        """Get the stored schema version (0 for a fresh database)."""
        async with self.conn.execute(
            "SELECT value FROM schema_meta WHERE key = 'version'"
        ) as cursor:
            result = await cursor.fetchone()
            return int(result[0]) if result else 0

    async def _set_schema_version(self, version: int) -> None:
        await self.conn.execute(
            """
            INSERT INTO schema_meta (key, value) VALUES ('version', ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (str(version),),
        )

    async def _migrate(self, from_version: int) -> None:
        """Bring an older layout up to date.

        Older layouts lack some lookup columns; they are added and
        backfilled from the JSON payload. Safe to run more than once.
        """
        logger.info(f"Migrating local store from schema v{from_version} to v{SCHEMA_VERSION}")
        for table, indexes in TABLE_INDEXES.items():
            async with self.conn.execute(f'PRAGMA table_info("{table}")') as cursor:
                existing = {row[1] for row in await cursor.fetchall()}
            for col in indexes:
                if col in existing:
                    continue
                await self.conn.execute(f'ALTER TABLE "{table}" ADD COLUMN "{col}" TEXT')
                await self.conn.execute(
                    f'UPDATE "{table}" SET "{col}" = json_extract(data, ?)', (f"$.{col}",)
                )
                logger.info(f"Added lookup column {table}.{col}")

    # =========================================================================
    # Write helpers
    # =========================================================================

    def _in_own_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    def _mark_degraded(self, operation: str, table: str, error: Exception) -> LocalStoreError:
        self._degraded_tables.add(table)
        logger.error(f"Local cache degraded during {operation} on {table}: {error}")
        return LocalStoreError(operation, table, error)

    async def _execute_write(
        self,
        operation: str,
        table: str,
        sql: str,
        params: Iterable[Any] | Iterable[Iterable[Any]],
        many: bool = False,
    ) -> bool:
        if self._in_own_transaction():
            # Errors propagate so the enclosing transaction rolls back
            try:
                if many:
                    await self.conn.executemany(sql, params)
                else:
                    await self.conn.execute(sql, params)
            except _STORAGE_ERRORS as e:
                raise self._mark_degraded(operation, table, e) from e
            return True

        async with self._lock:
            try:
                if many:
                    await self.conn.executemany(sql, params)
                else:
                    await self.conn.execute(sql, params)
                await self.conn.commit()
                return True
            except _STORAGE_ERRORS as e:
                self._mark_degraded(operation, table, e)
                try:
                    await self.conn.rollback()
                except _STORAGE_ERRORS:
                    pass
                return False

    def _row_params(self, table: str, record: dict[str, Any]) -> tuple[Any, ...]:
        synced = record.get("synced")
        return (
            str(record["id"]),
            None if synced is None else int(bool(synced)),
            json.dumps(record, default=str),
            *(record.get(col) for col in TABLE_INDEXES[table]),
        )

    def _upsert_sql(self, table: str) -> str:
        cols = ["id", "synced", "data", *TABLE_INDEXES[table]]
        quoted = ", ".join(f'"{c}"' for c in cols)
        placeholders = ", ".join("?" for _ in cols)
        return f'INSERT OR REPLACE INTO "{table}" ({quoted}) VALUES ({placeholders})'

    # =========================================================================
    # Public operations
    # =========================================================================

    async def put(self, table: TableName, record: dict[str, Any]) -> bool:
        """Upsert a record by its ``id``.

        Returns:
            True if the write was persisted
        """
        name = _table_name(table)
        return await self._execute_write(
            "put", name, self._upsert_sql(name), self._row_params(name, record)
        )

    async def bulk_put(
        self,
        table: TableName,
        records: list[dict[str, Any]],
        chunk_size: int | None = None,
    ) -> int:
        """Upsert many records, committing in chunks.

        A failing chunk stops the bulk write; rows from earlier chunks stay
        persisted.

        Returns:
            Number of records written
        """
        name = _table_name(table)
        if not records:
            return 0

        size = max(1, chunk_size or self.bulk_chunk_size)
        sql = self._upsert_sql(name)
        written = 0
        for start in range(0, len(records), size):
            chunk = records[start : start + size]
            ok = await self._execute_write(
                "bulk_put", name, sql, [self._row_params(name, r) for r in chunk], many=True
            )
            if not ok:
                logger.warning(
                    f"Bulk write to {name} stopped after {written}/{len(records)} rows"
                )
                break
            written += len(chunk)
        return written

    async def get(self, table: TableName, record_id: str) -> dict[str, Any] | None:
        """Get a record by id, or None if absent (or unreadable)."""
        name = _table_name(table)
        try:
            async with self.conn.execute(
                f'SELECT data FROM "{name}" WHERE id = ?', (record_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except _STORAGE_ERRORS as e:
            self._mark_degraded("get", name, e)
            return None
        return json.loads(row[0]) if row else None

    async def get_all(self, table: TableName) -> list[dict[str, Any]]:
        """Get every record of a table.

        Order is not meaningful; callers sort and filter.
        """
        name = _table_name(table)
        return await self._select(name, "get_all", f'SELECT data FROM "{name}"', ())

    async def find(self, table: TableName, **equals: Any) -> list[dict[str, Any]]:
        """Get records whose fields equal the given values.

        Indexed columns are filtered in SQL, anything else in Python.
        """
        name = _table_name(table)
        indexed = {"id", "synced", *TABLE_INDEXES[name]}
        clauses: list[str] = []
        params: list[Any] = []
        rest: dict[str, Any] = {}
        for key, value in equals.items():
            if key in indexed and value is not None:
                clauses.append(f'"{key}" = ?')
                params.append(int(bool(value)) if key == "synced" else value)
            else:
                rest[key] = value

        sql = f'SELECT data FROM "{name}"'
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        rows = await self._select(name, "find", sql, tuple(params))
        if not rest:
            return rows
        return [r for r in rows if all(r.get(k) == v for k, v in rest.items())]

    async def delete(self, table: TableName, record_id: str) -> bool:
        """Delete a record by id. Deleting a missing id is not an error."""
        name = _table_name(table)
        return await self._execute_write(
            "delete", name, f'DELETE FROM "{name}" WHERE id = ?', (record_id,)
        )

    async def clear(self, table: TableName) -> bool:
        """Delete every record of a table."""
        name = _table_name(table)
        return await self._execute_write("clear", name, f'DELETE FROM "{name}"', ())

    async def count_unsynced(self, table: TableName | None = None) -> int:
        """Count records with ``synced`` false, in one table or all entity tables."""
        names = [_table_name(table)] if table else [t.value for t in EntityTable]
        total = 0
        for name in names:
            try:
                async with self.conn.execute(
                    f'SELECT COUNT(*) FROM "{name}" WHERE synced = 0'
                ) as cursor:
                    row = await cursor.fetchone()
                    total += row[0] if row else 0
            except _STORAGE_ERRORS as e:
                self._mark_degraded("count_unsynced", name, e)
        return total

    async def _select(
        self, table: str, operation: str, sql: str, params: tuple[Any, ...]
    ) -> list[dict[str, Any]]:
        try:
            async with self.conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except _STORAGE_ERRORS as e:
            self._mark_degraded(operation, table, e)
            return []
        return [json.loads(row[0]) for row in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionState]:
        """Group several writes into one commit.

        A storage failure inside the block rolls everything back, is
        logged and reported on the yielded state instead of raised. Any
        other exception rolls back and propagates.

        Example:
            >>> async with store.transaction() as tx:
            ...     await store.delete("rental_items", item_id)
            ...     await store.delete("rentals", rental_id)
            >>> tx.committed
            True
        """
        state = TransactionState()
        if self._in_own_transaction():
            # Nested blocks join the outer transaction
            yield state
            state.committed = True
            return

        async with self._lock:
            self._tx_owner = asyncio.current_task()
            try:
                yield state
                await self.conn.commit()
                state.committed = True
            except LocalStoreError as e:
                state.error = e
                await self._safe_rollback()
                logger.error(f"Local transaction rolled back: {e}")
            except BaseException:
                await self._safe_rollback()
                raise
            finally:
                self._tx_owner = None

    async def _safe_rollback(self) -> None:
        try:
            await self.conn.rollback()
        except _STORAGE_ERRORS as e:
            logger.error(f"Rollback failed: {e}")
