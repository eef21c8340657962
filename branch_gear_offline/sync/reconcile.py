"""
Identifier reconciliation.

When the remote service accepts an insert it may assign its own id. The
temporary id then has to disappear from everywhere at once: the record
itself, foreign keys in dependent local rows, queued operations, and any
queue snapshot a drain is currently walking through.
"""

from __future__ import annotations

import logging
from typing import Any

from ..entities.graph import DEFAULT_GRAPH, DependencyGraph
from ..entities.records import EntityTable, record_type
from ..exceptions import ValidationError
from ..local.queue import OperationQueue, OperationType
from ..local.store import LocalStore

logger = logging.getLogger(__name__)


class IdReconciler:
    """Single place where a temporary id is replaced by a server id."""

    def __init__(
        self,
        store: LocalStore,
        queue: OperationQueue,
        graph: DependencyGraph = DEFAULT_GRAPH,
    ):
        self.store = store
        self.queue = queue
        self.graph = graph
        self._mapping: dict[tuple[EntityTable, str], str] = {}

    def resolve(self, table: EntityTable, record_id: str | None) -> str | None:
        """Follow recorded remaps to the current id."""
        seen = set()
        while record_id is not None and (table, record_id) in self._mapping:
            if record_id in seen:
                break
            seen.add(record_id)
            record_id = self._mapping[(table, record_id)]
        return record_id

    def apply(self, table: EntityTable, data: dict[str, Any]) -> dict[str, Any]:
        """Rewrite a record snapshot's own id and foreign keys to current ids."""
        if not self._mapping:
            return data

        updated = dict(data)
        if updated.get("id"):
            updated["id"] = self.resolve(table, updated["id"])
        for column, parent in record_type(table).FOREIGN_KEYS.items():
            if updated.get(column):
                updated[column] = self.resolve(parent, updated[column])
        return updated

    async def remap(
        self,
        table: EntityTable,
        old_id: str,
        new_id: str,
        server_record: dict[str, Any] | None = None,
    ) -> bool:
        """Replace ``old_id`` with ``new_id`` in one local transaction.

        Args:
            table: Table of the record whose id changed
            old_id: Temporary id used so far
            new_id: Id assigned by the server
            server_record: Row returned by the server, merged over the local copy

        Returns:
            True if the local transaction committed
        """
        if old_id == new_id:
            return True

        self._mapping[(table, old_id)] = new_id

        async with self.store.transaction() as tx:
            local = await self.store.get(table, old_id)
            if local is not None:
                fresh = server_record or {}
                if fresh.get("updated_at") and (local.get("updated_at") or "") > fresh["updated_at"]:
                    # Edited again after the insert was queued; the queued update carries it
                    merged = {**local, "id": new_id}
                else:
                    merged = {**local, **fresh, "id": new_id, "synced": True}
                try:
                    merged = record_type(table).from_dict(merged).to_local()
                except ValidationError as e:
                    logger.warning(f"Server row for {table.value}/{new_id} incomplete: {e}")
                await self.store.put(table, merged)
                await self.store.delete(table, old_id)

            for dependent in self.graph.dependents_of(table):
                for column, parent in record_type(dependent).FOREIGN_KEYS.items():
                    if parent != table:
                        continue
                    for row in await self.store.find(dependent, **{column: old_id}):
                        row[column] = new_id
                        await self.store.put(dependent, row)

            for item in await self.queue.list_all():
                rewritten = self.apply(item.table, item.data)
                if rewritten != item.data:
                    item.data = rewritten
                    await self.queue.replace(item)

        if tx.committed:
            logger.info(f"Remapped {table.value} id {old_id} -> {new_id}")
        return tx.committed

    async def confirm_insert(
        self,
        table: EntityTable,
        old_id: str,
        server_record: dict[str, Any],
    ) -> str:
        """Record a successful immediate insert.

        Removes the queued insert that the immediate call superseded,
        then moves the record (and everything pointing at it) to the
        server id with ``synced=True``.

        Returns:
            The id the record now lives under
        """
        new_id = str(server_record.get("id") or old_id)

        for item in await self.queue.items_for(table, old_id, OperationType.INSERT):
            await self.queue.remove(item.id)

        if new_id != old_id:
            await self.remap(table, old_id, new_id, server_record)
        else:
            local = await self.store.get(table, old_id) or {}
            merged = {**local, **server_record, "synced": True}
            await self.store.put(table, record_type(table).from_dict(merged).to_local())

        return new_id

    async def purge(self, table: EntityTable, record_id: str) -> int:
        """Drop every queued operation for a record that never reached the server.

        Returns:
            Number of queue items removed
        """
        items = await self.queue.items_for(table, record_id)
        for item in items:
            await self.queue.remove(item.id)
        return len(items)
