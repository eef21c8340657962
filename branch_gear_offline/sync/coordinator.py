"""
Sync coordinator.

Glue between connectivity, the sync engine and the pull service:
- drains the queue when the device comes back online
- tells interactive lists to refresh afterwards
- optionally runs a background drain loop with exponential backoff
- turns results into the short notices shown to the user
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from ..config import OfflineConfig
from ..connectivity import ConnectivityMonitor
from ..exceptions import SyncError
from .engine import SyncEngine, SyncResult, SyncState
from .pull import PullReport, PullService

logger = logging.getLogger(__name__)

RefreshListener = Callable[[], Awaitable[None] | None]


def sync_notice(result: SyncResult) -> str | None:
    """User-facing summary of a drain pass, or None when nothing happened."""
    if result.failed:
        return f"{result.failed} operations failed to sync"
    if result.synced:
        return f"Synced {result.synced} changes"
    return None


class SyncCoordinator:
    """Decides when to drain and pull."""

    def __init__(
        self,
        engine: SyncEngine,
        pull: PullService,
        monitor: ConnectivityMonitor,
        config: OfflineConfig | None = None,
    ):
        self.engine = engine
        self.pull = pull
        self.monitor = monitor
        self.config = config or OfflineConfig()

        self._refresh_listeners: list[RefreshListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._consecutive_failures = 0

    @property
    def last_sync(self) -> datetime | None:
        return self.engine.last_sync

    @property
    def state(self) -> SyncState:
        if not self.monitor.is_online:
            return SyncState.OFFLINE
        return self.engine.state

    async def pending_count(self) -> int:
        return await self.engine.pending_count()

    def start(self) -> None:
        """React to connectivity transitions from now on."""
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_connectivity_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def add_refresh_listener(self, listener: RefreshListener) -> Callable[[], None]:
        """Register a callback run after data may have changed remotely.

        Returns:
            Function that removes the listener again
        """
        self._refresh_listeners.append(listener)

        def remove() -> None:
            if listener in self._refresh_listeners:
                self._refresh_listeners.remove(listener)

        return remove

    async def perform_sync(self) -> SyncResult:
        """Drain the queue now, if online."""
        if not self.monitor.is_online:
            return SyncResult(skipped=True, errors=["No network connectivity"])

        result = await self.engine.perform_sync()
        result.notice = sync_notice(result)
        if result.failed:
            logger.error(result.notice)
        elif result.notice:
            logger.info(result.notice)
        return result

    async def pull_data(self) -> PullReport:
        """Replace local snapshots with the full remote state.

        Raises:
            SyncError: If offline or a table could not be fetched
        """
        if not self.monitor.is_online:
            raise SyncError("Cannot pull data while offline")
        report = await self.pull.pull_all()
        await self._notify_refresh()
        return report

    async def _on_connectivity_change(self, online: bool) -> None:
        if not online:
            return

        if await self.engine.pending_count() > 0:
            await self.perform_sync()
        await self._notify_refresh()

    async def _notify_refresh(self) -> None:
        for listener in list(self._refresh_listeners):
            try:
                outcome = listener()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Refresh listener failed: {e}")

    def next_delay(self) -> float:
        """Seconds until the next background pass."""
        if self._consecutive_failures == 0:
            return self.config.auto_sync_interval
        delay = self.config.backoff_initial * (
            self.config.backoff_multiplier ** (self._consecutive_failures - 1)
        )
        return min(delay, self.config.backoff_max)

    async def run_auto_sync_pass(self) -> SyncResult | None:
        """One background pass: drain only if online with work queued."""
        if not self.monitor.is_online or await self.engine.pending_count() == 0:
            return None

        result = await self.perform_sync()
        if result.skipped:
            return result
        if result.failed:
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0
        return result

    async def start_auto_sync(self) -> None:
        """Start automatic background sync."""
        if self._sync_task is not None:
            return

        async def sync_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(self.next_delay())
                    await self.run_auto_sync_pass()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    # Log error but continue
                    logger.error(f"Background sync pass failed: {e}")

        self._sync_task = asyncio.create_task(sync_loop())

    async def stop_auto_sync(self) -> None:
        """Stop automatic background sync."""
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
