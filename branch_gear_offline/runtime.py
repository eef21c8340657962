"""
Runtime facade.

Wires the local store, queue, remote service, sync machinery and
repositories together.

Example:
    >>> config = OfflineConfig.from_env()
    >>> async with await create_runtime(config) as runtime:
    ...     await runtime.customers.create({"full_name": "Sara", "phone": "0551"})
    ...     result = await runtime.perform_sync()
"""

from __future__ import annotations

import logging
from typing import Any

from .config import OfflineConfig
from .connectivity import ConnectivityMonitor
from .entities.graph import DEFAULT_GRAPH
from .local.context import ContextCache, ContextResolver, SessionContext
from .local.queue import OperationQueue
from .local.store import LocalStore
from .logging_utils import configure_structured_logging
from .remote.base import RemoteService
from .remote.rest import RestRemoteService
from .repositories import (
    BranchRepository,
    CustomerRepository,
    EquipmentRepository,
    ExpenseRepository,
    MaintenanceRepository,
    RentalRepository,
)
from .sync.coordinator import SyncCoordinator
from .sync.engine import SyncConfig, SyncEngine, SyncResult
from .sync.pull import PullReport, PullService
from .sync.reconcile import IdReconciler

logger = logging.getLogger(__name__)


class OfflineRuntime:
    """Everything an application needs to work offline-first."""

    def __init__(
        self,
        config: OfflineConfig,
        store: LocalStore,
        remote: RemoteService,
        monitor: ConnectivityMonitor | None = None,
    ):
        self.config = config
        self.store = store
        self.remote = remote
        self.monitor = monitor or ConnectivityMonitor(interval=config.connectivity_interval)

        self.queue = OperationQueue(store)
        self.reconciler = IdReconciler(store, self.queue, DEFAULT_GRAPH)
        self.context_cache = ContextCache(config.context_path)
        self.context = ContextResolver(
            self.context_cache, store, remote, lookup_timeout=config.context_lookup_timeout
        )

        self.engine = SyncEngine(
            store,
            self.queue,
            remote,
            self.reconciler,
            DEFAULT_GRAPH,
            SyncConfig(max_retries=config.max_retries),
        )
        self.pull = PullService(
            store, self.queue, remote, DEFAULT_GRAPH, chunk_size=config.bulk_chunk_size
        )
        self.coordinator = SyncCoordinator(self.engine, self.pull, self.monitor, config)

        repo_args: tuple[Any, ...] = (store, self.queue, remote, self.monitor, self.reconciler)
        repo_kwargs: dict[str, Any] = {"context": self.context, "guard": self.engine.guard}
        self.branches = BranchRepository(*repo_args, **repo_kwargs)
        self.customers = CustomerRepository(*repo_args, **repo_kwargs)
        self.equipment = EquipmentRepository(*repo_args, **repo_kwargs)
        self.rentals = RentalRepository(*repo_args, **repo_kwargs)
        self.maintenance = MaintenanceRepository(*repo_args, **repo_kwargs)
        self.expenses = ExpenseRepository(*repo_args, **repo_kwargs)

        self._started = False

    async def start(self, auto_sync: bool = True, probe: bool = True) -> None:
        """React to connectivity changes, and optionally poll and sync in the background."""
        if self._started:
            return
        self._started = True
        self.coordinator.start()
        if probe:
            await self.monitor.start(self.remote.ping)
        if auto_sync:
            await self.coordinator.start_auto_sync()

    async def sign_in(self, context: SessionContext, preload: bool = True) -> PullReport | None:
        """Remember the signed-in user and load their branch's data.

        Returns:
            The preload report, or None if nothing was preloaded
        """
        await self.context_cache.save(context)
        if not preload or not self.monitor.is_online:
            return None
        return await self.preload()

    async def sign_out(self) -> None:
        await self.context_cache.clear()

    async def perform_sync(self) -> SyncResult:
        return await self.coordinator.perform_sync()

    async def pull_data(self) -> PullReport:
        return await self.coordinator.pull_data()

    async def preload(self) -> PullReport:
        """Load the current user's branch from the remote service."""
        branch_id = await self.context.resolve_branch_id()
        report = await self.pull.preload(branch_id)
        logger.info(f"Preloaded branch {branch_id}: {report.total} rows")
        return report

    async def pending_count(self) -> int:
        return await self.coordinator.pending_count()

    async def close(self) -> None:
        """Stop background tasks and release the store and remote session."""
        await self.coordinator.stop_auto_sync()
        self.coordinator.stop()
        await self.monitor.stop()
        await self.remote.close()
        await self.store.close()
        self._started = False

    async def __aenter__(self) -> OfflineRuntime:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def create_runtime(
    config: OfflineConfig | None = None,
    remote: RemoteService | None = None,
    monitor: ConnectivityMonitor | None = None,
) -> OfflineRuntime:
    """Create and initialize an offline runtime.

    Args:
        config: Runtime configuration (default: from environment)
        remote: Remote service (default: REST service built from config)
        monitor: Connectivity monitor (default: starts offline)

    Returns:
        Initialized OfflineRuntime

    Raises:
        StorageConnectionError: If the local database cannot be opened
        ValueError: If no remote is given and the config lacks its URL or key
    """
    config = config or OfflineConfig.from_env()
    if config.json_logs:
        configure_structured_logging(logger_name="branch_gear_offline")

    if remote is None:
        remote = RestRemoteService.from_config(config)

    store = await LocalStore.create(config.db_path, config.bulk_chunk_size)
    return OfflineRuntime(config, store, remote, monitor)
