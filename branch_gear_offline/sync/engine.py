"""
Sync engine: drains the operation queue against the remote service.

One drain pass:
- Takes the full queue snapshot and sorts it by dependency order
- Replays items one at a time (later items may need ids created by earlier ones)
- Writes confirmed records back locally with ``synced=True``
- Retries failing items up to ``max_retries`` times, then drops them
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..entities.graph import DEFAULT_GRAPH, DependencyGraph
from ..entities.ids import is_temporary
from ..entities.records import EntityTable, record_type
from ..exceptions import DeleteNotAppliedError, SyncError
from ..local.queue import OperationQueue, OperationType, QueueItem
from ..local.store import LocalStore
from ..logging_utils import SyncLoggerAdapter
from ..remote.base import RemoteService
from .ordering import sort_queue
from .reconcile import IdReconciler

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


class SyncState(Enum):
    """Current state of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass
class SyncResult:
    """Result of a drain pass.

    ``failed`` counts every item that failed in this pass, including the
    ones dropped for good (``dropped``). A skipped pass did nothing.
    """

    synced: int = 0
    failed: int = 0
    dropped: int = 0
    skipped: bool = False
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    notice: str | None = None

    @property
    def success(self) -> bool:
        return not self.skipped and self.failed == 0


@dataclass
class SyncConfig:
    """Configuration for the sync engine."""

    max_retries: int = MAX_RETRIES
    # Confirm remote deletes with a follow-up existence check
    verify_deletes: bool = True


class DrainGuard:
    """Single-slot, non-blocking guard against overlapping drains.

    Repositories share it for their immediate pushes, so a drain never
    replays an operation whose remote call is still in flight.

    Example:
        >>> async with guard.attempt() as acquired:
        ...     if not acquired:
        ...         return SyncResult(skipped=True)
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def attempt(self) -> AsyncIterator[bool]:
        if self._lock.locked():
            yield False
            return
        async with self._lock:
            yield True


class SyncEngine:
    """Replays queued mutations in dependency order."""

    def __init__(
        self,
        store: LocalStore,
        queue: OperationQueue,
        remote: RemoteService,
        reconciler: IdReconciler | None = None,
        graph: DependencyGraph = DEFAULT_GRAPH,
        config: SyncConfig | None = None,
        guard: DrainGuard | None = None,
    ):
        """Initialize the sync engine.

        Args:
            store: Local store holding entity tables
            queue: Operation queue to drain
            remote: Remote data service
            reconciler: Id reconciler (created if not provided)
            graph: Table dependency graph used for ordering
            config: Engine configuration
            guard: Drain guard, shared with any other scheduler of this engine
        """
        self.store = store
        self.queue = queue
        self.remote = remote
        self.reconciler = reconciler or IdReconciler(store, queue, graph)
        self.graph = graph
        self.config = config or SyncConfig()
        self.guard = guard or DrainGuard()

        self._state = SyncState.IDLE
        self._last_sync: datetime | None = None
        self._last_result: SyncResult | None = None

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    @property
    def is_draining(self) -> bool:
        return self.guard.running

    async def pending_count(self) -> int:
        """Number of queued operations still waiting for the remote."""
        return await self.queue.pending_count()

    async def perform_sync(self) -> SyncResult:
        """Run one drain pass.

        Returns immediately with ``skipped=True`` if another pass is
        running or the remote session is not authenticated.
        """
        async with self.guard.attempt() as acquired:
            if not acquired:
                return SyncResult(skipped=True, errors=["Sync already in progress"])

            if not self.remote.is_authenticated():
                return SyncResult(skipped=True, errors=["Not authenticated"])

            self._state = SyncState.SYNCING
            start_time = datetime.now(UTC)
            log = SyncLoggerAdapter(logger, {"pass_id": uuid.uuid4().hex[:12]})

            try:
                result = await self._drain(log)
            except Exception as e:
                self._state = SyncState.ERROR
                log.error(f"Drain pass aborted: {e}")
                result = SyncResult(errors=[str(e)])
            else:
                self._state = SyncState.IDLE
                self._last_sync = datetime.now(UTC)

            result.duration_ms = int((datetime.now(UTC) - start_time).total_seconds() * 1000)
            self._last_result = result
            return result

    async def _drain(self, log: SyncLoggerAdapter) -> SyncResult:
        result = SyncResult()
        items = sort_queue(await self.queue.list_all(), self.graph)
        if not items:
            return result

        log.info(f"Draining {len(items)} queued operations")

        for item in items:
            # Items consumed earlier in this pass (superseded inserts) are skipped
            if await self.queue.get(item.id) is None:
                continue

            log.for_item(item).debug("Replaying queued operation")
            try:
                await self._replay(item)
            except Exception as e:
                await self._record_failure(item, e, result, log)
            else:
                await self.queue.remove(item.id)
                result.synced += 1

        log.info(
            f"Drain finished: {result.synced} synced, {result.failed} failed, "
            f"{result.dropped} dropped"
        )
        return result

    async def _replay(self, item: QueueItem) -> None:
        data = self.reconciler.apply(item.table, item.data)
        record = record_type(item.table).from_dict(data)
        table = item.table.value

        if item.operation == OperationType.INSERT:
            returned = await self.remote.insert(table, record.to_remote())
            new_id = str(returned.get("id") or record.id)
            if new_id != record.id:
                await self.reconciler.remap(item.table, record.id, new_id, returned)
            else:
                await self._write_back(item.table, record.to_local(), returned)

        elif item.operation == OperationType.UPDATE:
            if is_temporary(record.id):
                raise SyncError("parent insert not confirmed yet", table)
            await self.remote.update(table, record.id, record.to_remote())
            await self._write_back(item.table, record.to_local(), None)

        elif item.operation == OperationType.DELETE:
            if is_temporary(record.id):
                # Never reached the server; only stale queued writes remain
                await self.reconciler.purge(item.table, record.id)
                return
            await self.remote.delete(table, record.id)
            if self.config.verify_deletes and await self.remote.exists(table, record.id):
                raise DeleteNotAppliedError(table, record.id)

    async def _write_back(
        self,
        table: EntityTable,
        submitted: dict[str, Any],
        returned: dict[str, Any] | None,
    ) -> None:
        local = await self.store.get(table, submitted["id"])
        if local is None:
            # Deleted locally after the snapshot; its queued delete follows
            return
        if (local.get("updated_at") or "") > (submitted.get("updated_at") or ""):
            # Edited locally after the snapshot; its own queued update follows
            return

        merged = {**submitted, **(returned or {}), "id": submitted["id"], "synced": True}
        await self.store.put(table, record_type(table).from_dict(merged).to_local())

    async def _record_failure(
        self,
        item: QueueItem,
        error: Exception,
        result: SyncResult,
        log: SyncLoggerAdapter,
    ) -> None:
        result.failed += 1
        result.errors.append(
            f"{item.operation.value} {item.table.value}/{item.record_id}: {error}"
        )

        if item.retries >= self.config.max_retries:
            await self.queue.remove(item.id)
            result.dropped += 1
            log.for_item(item).error(
                f"Dropping {item.operation.value} on {item.table.value}/{item.record_id} "
                f"after {item.retries} retries: {error}",
            )
        else:
            await self.queue.update_retry_count(item.id, item.retries + 1)
            log.for_item(item).warning(
                f"Replay of {item.operation.value} on {item.table.value}/{item.record_id} "
                f"failed (attempt {item.retries + 1}): {error}",
            )
