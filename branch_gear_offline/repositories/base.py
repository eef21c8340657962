"""
Local-first entity repository.

Every mutation is committed to the local store first. Then:

- create: queue an insert; when online, also insert immediately and
  reconcile the temporary id with the server id
- update/delete: always queue the operation; when online, also call the
  remote immediately and mark the local copy synced

A failing immediate call is not an error for the caller: the change stays
queued and the outcome says so.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from ..connectivity import ConnectivityMonitor
from ..entities.graph import DEFAULT_GRAPH
from ..entities.ids import is_temporary, new_temporary_id
from ..entities.records import BaseRecord, EntityTable, record_type
from ..exceptions import RecordNotFoundError, ReferentialIntegrityError, RemoteServiceError
from ..local.context import ContextResolver
from ..local.queue import OperationQueue, OperationType
from ..local.store import LocalStore
from ..remote.base import RemoteService
from ..sync.engine import DrainGuard
from ..sync.reconcile import IdReconciler

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "saved locally, will sync"


class MutationStatus(Enum):
    """Where a mutation stands after the call returns."""

    SYNCED = "synced"  # confirmed by the remote service
    QUEUED = "queued"  # committed locally, waiting in the queue
    LOCAL = "local"  # never needed the remote (record was never synced)


@dataclass
class MutationOutcome:
    """Result of a repository mutation."""

    record: dict[str, Any]
    status: MutationStatus
    message: str | None = None

    @property
    def synced(self) -> bool:
        return self.status == MutationStatus.SYNCED

    @property
    def id(self) -> str:
        return self.record["id"]


def queued(record: dict[str, Any]) -> MutationOutcome:
    return MutationOutcome(record, MutationStatus.QUEUED, QUEUED_MESSAGE)


def _sort_value(value: Any) -> tuple[int, Any]:
    # Missing values sort last in ascending order
    return (1, "") if value is None else (0, value)


class EntityRepository:
    """Repository for one entity table.

    Subclasses set ``TABLE`` and may override ``SEARCH_FIELDS``,
    ``DEFAULT_ORDER``, ``CASCADE_TABLES``, ``prepare_create`` and
    ``enrich``. Delete blockers follow the dependency graph: every table
    with a foreign key to ``TABLE`` blocks the delete unless it cascades.
    """

    TABLE: ClassVar[EntityTable]
    SEARCH_FIELDS: ClassVar[tuple[str, ...]] = ()
    # (column, ascending)
    DEFAULT_ORDER: ClassVar[tuple[str, bool]] = ("created_at", False)
    # Dependent tables deleted together with the record instead of blocking it
    CASCADE_TABLES: ClassVar[tuple[EntityTable, ...]] = ()

    def __init__(
        self,
        store: LocalStore,
        queue: OperationQueue,
        remote: RemoteService,
        monitor: ConnectivityMonitor,
        reconciler: IdReconciler,
        context: ContextResolver | None = None,
        guard: DrainGuard | None = None,
    ):
        """Initialize the repository.

        Args:
            guard: The sync engine's drain guard. Immediate pushes hold it
                so a drain pass never replays an insert already in flight.
        """
        self.store = store
        self.queue = queue
        self.remote = remote
        self.monitor = monitor
        self.reconciler = reconciler
        self.context = context
        self.guard = guard or DrainGuard()

    @property
    def record_class(self) -> type[BaseRecord]:
        return record_type(self.TABLE)

    def can_push(self, record: BaseRecord | None = None) -> bool:
        """Whether an immediate remote call is worth attempting."""
        if not self.monitor.is_online or not self.remote.is_authenticated():
            return False
        if record is not None:
            # The server cannot resolve foreign keys to unconfirmed parents
            return not any(is_temporary(v) for v in record.foreign_keys().values())
        return True

    # =========================================================================
    # Reads
    # =========================================================================

    async def list(
        self,
        filters: dict[str, Any] | None = None,
        search: str | None = None,
        order_by: str | None = None,
        ascending: bool | None = None,
    ) -> list[dict[str, Any]]:
        """List records from the local store.

        Args:
            filters: Field equality filters
            search: Case-insensitive substring matched against ``SEARCH_FIELDS``
            order_by: Field to sort by (default ``DEFAULT_ORDER``)
            ascending: Sort direction

        Returns:
            Enriched records
        """
        if filters:
            rows = await self.store.find(self.TABLE, **filters)
        else:
            rows = await self.store.get_all(self.TABLE)

        if search:
            needle = search.lower()
            rows = [
                row
                for row in rows
                if any(needle in str(row.get(f) or "").lower() for f in self.SEARCH_FIELDS)
            ]

        column = order_by or self.DEFAULT_ORDER[0]
        direction = self.DEFAULT_ORDER[1] if ascending is None else ascending
        present = [r for r in rows if r.get(column) is not None]
        missing = [r for r in rows if r.get(column) is None]
        present.sort(key=lambda r: _sort_value(r.get(column)), reverse=not direction)
        return await self.enrich(present + missing)

    async def get(self, record_id: str) -> dict[str, Any] | None:
        row = await self.store.get(self.TABLE, record_id)
        if row is None:
            return None
        return (await self.enrich([row]))[0]

    async def require(self, record_id: str) -> dict[str, Any]:
        """Get the raw local row or raise ``RecordNotFoundError``."""
        row = await self.store.get(self.TABLE, record_id)
        if row is None:
            raise RecordNotFoundError(self.TABLE.value, record_id)
        return row

    async def enrich(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Attach related rows for display. Default: nothing."""
        return rows

    async def lookup(self, table: EntityTable, ids: set[str]) -> dict[str, dict[str, Any]]:
        """Fetch related rows by id for enrichment."""
        found = {}
        for record_id in ids:
            if record_id:
                row = await self.store.get(table, record_id)
                if row is not None:
                    found[record_id] = row
        return found

    async def attach(
        self,
        rows: list[dict[str, Any]],
        column: str,
        table: EntityTable,
        key: str,
    ) -> None:
        """Set ``row[key]`` to the related row referenced by ``row[column]``."""
        related = await self.lookup(table, {r.get(column) for r in rows if r.get(column)})
        for row in rows:
            row[key] = related.get(row.get(column))

    # =========================================================================
    # Mutations
    #
    # Each mutation is split in two steps so that multi-record operations
    # can stage every local write inside one transaction and push afterwards:
    # stage_* commits locally and queues, push_* tries the remote call.
    # =========================================================================

    async def prepare_create(self, data: dict[str, Any]) -> dict[str, Any]:
        """Fill context-derived fields before validation."""
        return data

    async def create(self, data: dict[str, Any]) -> MutationOutcome:
        data = await self.prepare_create(dict(data))
        record = await self.stage_insert(self.record_class, data)
        return await self.push_insert(record)

    async def update(self, record_id: str, changes: dict[str, Any]) -> MutationOutcome:
        current = self.record_class.from_dict(await self.require(record_id))
        record = await self.stage_update(current, changes)
        return await self.push_update(record)

    async def delete(self, record_id: str) -> MutationOutcome:
        row = await self.require(record_id)
        await self.check_delete(row)
        queued_delete = await self.stage_delete(self.TABLE, row)
        return await self.push_delete(self.TABLE, row, queued_delete)

    async def stage_insert(self, cls: type[BaseRecord], data: dict[str, Any]) -> BaseRecord:
        """Write a new record locally and queue its insert."""
        if not data.get("id"):
            data["id"] = str(new_temporary_id())
        record = cls.from_dict({**data, "synced": False})
        await self.store.put(record.TABLE, record.to_local())
        await self.queue.enqueue(record.TABLE, OperationType.INSERT, record.to_local())
        return record

    async def push_insert(self, record: BaseRecord) -> MutationOutcome:
        """Try the immediate remote insert for a record already queued."""
        table = record.TABLE
        if not self.can_push(record):
            return queued(record.to_local())

        async with self.guard.attempt() as acquired:
            if not acquired:
                # A drain pass owns the queue and will replay this insert
                return queued(record.to_local())

            if not await self.queue.items_for(table, record.id, OperationType.INSERT):
                # Already replayed by an earlier drain
                stored = await self.store.get(table, self.reconciler.resolve(table, record.id))
                if stored is None or not stored.get("synced"):
                    return queued(stored or record.to_local())
                return MutationOutcome(stored, MutationStatus.SYNCED)

            try:
                returned = await self.remote.insert(table.value, record.to_remote())
            except RemoteServiceError as e:
                logger.warning(f"Immediate insert into {table.value} failed, queued: {e}")
                return queued(record.to_local())

            new_id = await self.reconciler.confirm_insert(table, record.id, returned)
        stored = await self.store.get(table, new_id)
        return MutationOutcome(stored or {**record.to_local(), **returned}, MutationStatus.SYNCED)

    async def stage_update(self, current: BaseRecord, changes: dict[str, Any]) -> BaseRecord:
        """Apply changes locally and queue the update."""
        record = current.merged({**changes, "synced": False})
        await self.store.put(record.TABLE, record.to_local())
        await self.queue.enqueue(record.TABLE, OperationType.UPDATE, record.to_local())
        return record

    async def push_update(self, record: BaseRecord) -> MutationOutcome:
        """Try the immediate remote update; the queued copy stays either way."""
        table = record.TABLE
        if is_temporary(record.id) or not self.can_push(record):
            return queued(record.to_local())

        async with self.guard.attempt() as acquired:
            if not acquired:
                return queued(record.to_local())
            try:
                await self.remote.update(table.value, record.id, record.to_remote())
            except RemoteServiceError as e:
                logger.warning(f"Immediate update of {table.value}/{record.id} failed, queued: {e}")
                return queued(record.to_local())

        # Skip the write-back if the row changed again while we were waiting
        local = await self.store.get(table, record.id)
        if local is not None and local.get("updated_at") == record.updated_at:
            await self.store.put(table, {**local, "synced": True})
        record.synced = True
        return MutationOutcome(record.to_local(), MutationStatus.SYNCED)

    @classmethod
    def delete_dependencies(cls) -> list[tuple[EntityTable, str]]:
        """Dependent (table, column) pairs that must be empty before a delete."""
        return [
            (child, column)
            for child in DEFAULT_GRAPH.dependents_of(cls.TABLE)
            if child not in cls.CASCADE_TABLES
            for column, parent in record_type(child).FOREIGN_KEYS.items()
            if parent == cls.TABLE
        ]

    async def delete_blockers(self, row: dict[str, Any]) -> list[str]:
        """Names of dependent tables still referencing ``row``."""
        blockers: list[str] = []
        for table, column in self.delete_dependencies():
            if table.value in blockers:
                continue
            if await self.store.find(table, **{column: row["id"]}):
                blockers.append(table.value)
        return blockers

    async def check_delete(self, row: dict[str, Any]) -> None:
        """Raise ``ReferentialIntegrityError`` if ``row`` is still referenced."""
        blockers = await self.delete_blockers(row)
        if blockers:
            raise ReferentialIntegrityError(self.TABLE.value, row["id"], blockers)

    async def stage_delete(self, table: EntityTable, row: dict[str, Any]) -> bool:
        """Remove a row locally and queue its delete.

        Returns:
            True if a delete was queued, False if the row never reached the
            server and its pending writes were dropped instead
        """
        await self.store.delete(table, row["id"])
        if is_temporary(row["id"]):
            await self.reconciler.purge(table, row["id"])
            return False
        await self.queue.enqueue(table, OperationType.DELETE, row)
        return True

    async def push_delete(
        self,
        table: EntityTable,
        row: dict[str, Any],
        queued_delete: bool = True,
    ) -> MutationOutcome:
        """Try the immediate remote delete; the queued copy stays either way."""
        if not queued_delete:
            return MutationOutcome(row, MutationStatus.LOCAL)
        if not self.can_push():
            return queued(row)

        async with self.guard.attempt() as acquired:
            if not acquired:
                return queued(row)
            try:
                await self.remote.delete(table.value, row["id"])
            except RemoteServiceError as e:
                logger.warning(f"Immediate delete of {table.value}/{row['id']} failed, queued: {e}")
                return queued(row)
        return MutationOutcome(row, MutationStatus.SYNCED)
