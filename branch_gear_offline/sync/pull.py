"""
Pull and preload: replace local snapshots with remote state.

Every table is fetched first and written afterwards, so a remote failure
leaves the local store untouched. Writing a table:

1. drop incoming rows with a pending local delete
2. keep the local copy of rows with a pending local insert/update
3. clear the table and bulk-write the result in chunks
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..entities.graph import DEFAULT_GRAPH, DependencyGraph
from ..entities.records import EntityTable, record_type
from ..exceptions import RemoteServiceError, SyncError, ValidationError
from ..local.queue import OperationQueue
from ..local.store import LocalStore
from ..remote.base import Filter, RemoteService, eq, in_

logger = logging.getLogger(__name__)

# Tables scoped to a branch by their own branch_id column during preload
BRANCH_SCOPED = (
    EntityTable.CUSTOMERS,
    EntityTable.EQUIPMENT,
    EntityTable.EXPENSES,
    EntityTable.RENTALS,
    EntityTable.MAINTENANCE_REQUESTS,
)


@dataclass
class PullReport:
    """Outcome of a pull or preload."""

    written: dict[str, int] = field(default_factory=dict)
    excluded: int = 0
    preserved: int = 0
    degraded_tables: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.written.values())

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_tables)


class PullService:
    """Fetches authoritative snapshots and overwrites the local store."""

    def __init__(
        self,
        store: LocalStore,
        queue: OperationQueue,
        remote: RemoteService,
        graph: DependencyGraph = DEFAULT_GRAPH,
        chunk_size: int | None = None,
    ):
        self.store = store
        self.queue = queue
        self.remote = remote
        self.graph = graph
        self.chunk_size = chunk_size

    async def pull_all(self) -> PullReport:
        """Replace every table with the full remote snapshot.

        Raises:
            SyncError: If a table could not be fetched
        """
        snapshots = {}
        for table in self.graph.topological_order():
            snapshots[table] = await self._fetch(table, [])
        return await self._write_all(snapshots)

    async def preload(self, branch_id: str) -> PullReport:
        """Replace every table with the remote rows of one branch.

        Raises:
            SyncError: If a table could not be fetched
        """
        snapshots: dict[EntityTable, list[dict[str, Any]]] = {}
        snapshots[EntityTable.BRANCHES] = await self._fetch(
            EntityTable.BRANCHES, [eq("id", branch_id)]
        )
        for table in BRANCH_SCOPED:
            snapshots[table] = await self._fetch(table, [eq("branch_id", branch_id)])

        rental_ids = [r["id"] for r in snapshots[EntityTable.RENTALS] if r.get("id")]
        if rental_ids:
            snapshots[EntityTable.RENTAL_ITEMS] = await self._fetch(
                EntityTable.RENTAL_ITEMS, [in_("rental_id", rental_ids)]
            )
        else:
            snapshots[EntityTable.RENTAL_ITEMS] = []

        return await self._write_all(snapshots)

    async def _fetch(self, table: EntityTable, filters: list[Filter]) -> list[dict[str, Any]]:
        try:
            return await self.remote.select(table.value, filters)
        except RemoteServiceError as e:
            raise SyncError(f"Could not fetch {table.value}", table.value, e) from e

    async def _write_all(self, snapshots: dict[EntityTable, list[dict[str, Any]]]) -> PullReport:
        report = PullReport()
        for table in self.graph.topological_order():
            if table in snapshots:
                await self._write_table(table, snapshots[table], report)

        logger.info(
            f"Pulled {report.total} rows ({report.excluded} excluded, "
            f"{report.preserved} local changes kept)"
        )
        return report

    async def _write_table(
        self,
        table: EntityTable,
        rows: list[dict[str, Any]],
        report: PullReport,
    ) -> None:
        pending_deletes = await self.queue.pending_delete_ids(table)
        pending_writes = await self.queue.pending_write_ids(table)
        cls = record_type(table)

        records: dict[str, dict[str, Any]] = {}
        for row in rows:
            row_id = row.get("id")
            if row_id in pending_deletes:
                report.excluded += 1
                continue
            try:
                records[row_id] = cls.from_dict({**row, "synced": True}).to_local()
            except (ValidationError, TypeError) as e:
                logger.warning(f"Skipping malformed {table.value} row {row_id}: {e}")

        for record_id in pending_writes - pending_deletes:
            local = await self.store.get(table, record_id)
            if local is not None:
                records[record_id] = {**local, "synced": False}
                report.preserved += 1

        to_write = list(records.values())
        cleared = await self.store.clear(table)
        written = await self.store.bulk_put(table, to_write, self.chunk_size) if cleared else 0
        report.written[table.value] = written
        if not cleared or written < len(to_write):
            report.degraded_tables.append(table.value)
