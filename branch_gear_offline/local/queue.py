"""
Operation queue.

Append-only log of mutations that still have to be replayed against the
remote service. Items live in the ``sync_queue`` table of the local store
so they survive restarts, and are consumed by the sync engine.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..entities.records import EntityTable
from .store import SYNC_QUEUE, LocalStore

logger = logging.getLogger(__name__)


class OperationType(Enum):
    """Kind of remote mutation recorded in the queue."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class QueueItem:
    """A pending remote mutation.

    Attributes:
        id: Unique queue-entry id
        table: Entity table the mutation targets
        operation: insert, update or delete
        data: Full record snapshot at enqueue time
        timestamp: Creation time in epoch milliseconds
        retries: Number of failed replay attempts so far
    """

    id: str
    table: EntityTable
    operation: OperationType
    data: dict[str, Any]
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    retries: int = 0

    @property
    def record_id(self) -> str | None:
        return self.data.get("id")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "table": self.table.value,
            "operation": self.operation.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "retries": self.retries,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueItem:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            table=EntityTable(data["table"]),
            operation=OperationType(data["operation"]),
            data=data.get("data") or {},
            timestamp=float(data.get("timestamp") or 0),
            retries=int(data.get("retries", 0)),
        )


class OperationQueue:
    """Persistent queue of pending remote mutations.

    The queue is never read partially: every drain takes the full current
    snapshot via ``list_all`` and sorts it itself.
    """

    def __init__(self, store: LocalStore):
        self.store = store

    async def enqueue(
        self,
        table: EntityTable,
        operation: OperationType,
        record: dict[str, Any],
    ) -> QueueItem:
        """Append a mutation with ``retries=0``.

        Always returns the item; if the store is degraded the failure is
        logged by the store and the item only lives for this call.
        """
        item = QueueItem(
            id=str(uuid.uuid4()),
            table=table,
            operation=operation,
            data=dict(record),
        )
        if not await self.store.put(SYNC_QUEUE, item.to_dict()):
            logger.warning(
                f"Queued {operation.value} on {table.value}/{item.record_id} could not be persisted"
            )
        return item

    async def list_all(self) -> list[QueueItem]:
        """Return the full queue, unordered."""
        items = []
        for raw in await self.store.get_all(SYNC_QUEUE):
            try:
                items.append(QueueItem.from_dict(raw))
            except (KeyError, ValueError) as e:
                # A row we cannot parse can never be replayed
                logger.error(f"Dropping unreadable queue entry {raw.get('id')}: {e}")
                if raw.get("id"):
                    await self.store.delete(SYNC_QUEUE, raw["id"])
        return items

    async def get(self, queue_id: str) -> QueueItem | None:
        raw = await self.store.get(SYNC_QUEUE, queue_id)
        return QueueItem.from_dict(raw) if raw else None

    async def remove(self, queue_id: str) -> bool:
        return await self.store.delete(SYNC_QUEUE, queue_id)

    async def update_retry_count(self, queue_id: str, retries: int) -> bool:
        """Persist a new retry count for an item.

        Returns:
            True if the item was found and updated
        """
        item = await self.get(queue_id)
        if item is None:
            return False
        item.retries = retries
        return await self.store.put(SYNC_QUEUE, item.to_dict())

    async def replace(self, item: QueueItem) -> bool:
        """Overwrite a queued item (used when its payload is remapped)."""
        return await self.store.put(SYNC_QUEUE, item.to_dict())

    async def pending_count(self) -> int:
        return len(await self.store.get_all(SYNC_QUEUE))

    async def items_for(
        self,
        table: EntityTable,
        record_id: str,
        operation: OperationType | None = None,
    ) -> list[QueueItem]:
        """Queued items targeting one record, optionally of one operation."""
        return [
            item
            for item in await self.list_all()
            if item.table == table
            and item.record_id == record_id
            and (operation is None or item.operation == operation)
        ]

    async def pending_delete_ids(self, table: EntityTable) -> set[str]:
        """Ids of records of ``table`` with a queued delete."""
        return {
            item.record_id
            for item in await self.list_all()
            if item.table == table
            and item.operation == OperationType.DELETE
            and item.record_id
        }

    async def pending_write_ids(self, table: EntityTable) -> set[str]:
        """Ids of records of ``table`` with a queued insert or update."""
        return {
            item.record_id
            for item in await self.list_all()
            if item.table == table
            and item.operation != OperationType.DELETE
            and item.record_id
        }

    async def clear(self) -> int:
        """Drop every queued item.

        Returns:
            Number of items removed
        """
        count = await self.pending_count()
        await self.store.clear(SYNC_QUEUE)
        return count
