"""
Branch Gear Offline

Offline-first data layer for an equipment rental business.

Provides:
- A durable local store (SQLite) holding every business table
- An operation queue of mutations waiting for the remote service
- A sync engine replaying the queue in foreign-key-safe order
- Pull/preload of authoritative remote snapshots
- Local-first repositories for branches, customers, equipment, rentals,
  maintenance requests and expenses

Usage:

    >>> from branch_gear_offline import OfflineConfig, create_runtime
    >>> async with await create_runtime(OfflineConfig.from_env()) as runtime:
    ...     outcome = await runtime.customers.create({"full_name": "Sara", "phone": "0551"})
    ...     print(outcome.status, outcome.message)
    ...     result = await runtime.perform_sync()

Lower-level pieces:

    # Local persistence
    from branch_gear_offline.local import LocalStore, OperationQueue

    # Sync machinery
    from branch_gear_offline.sync import SyncEngine, PullService, IdReconciler

    # Remote service
    from branch_gear_offline.remote import RestRemoteService
"""

# Configuration
from .config import OfflineConfig

# Connectivity
from .connectivity import ConnectivityMonitor

# Entities
from .entities import (
    DEFAULT_GRAPH,
    BaseRecord,
    Branch,
    ConfirmedId,
    Customer,
    DependencyGraph,
    EntityTable,
    Equipment,
    Expense,
    MaintenanceRequest,
    Rental,
    RentalItem,
    TemporaryId,
)

# Exceptions
from .exceptions import (
    AuthenticationError,
    AuthenticationRequiredError,
    DeleteNotAppliedError,
    LocalStoreError,
    OfflineStoreError,
    PermissionDeniedError,
    RecordNotFoundError,
    ReferentialIntegrityError,
    RemoteServiceError,
    StorageConnectionError,
    SyncError,
    ValidationError,
)

# Local persistence
from .local import (
    ContextCache,
    ContextResolver,
    LocalStore,
    OperationQueue,
    OperationType,
    QueueItem,
    SessionContext,
)

# Remote service
from .remote import Filter, Order, RemoteService, RestRemoteService

# Repositories
from .repositories import (
    BranchRepository,
    CustomerRepository,
    EntityRepository,
    EquipmentRepository,
    ExpenseRepository,
    MaintenanceRepository,
    MutationOutcome,
    MutationStatus,
    RentalRepository,
)

# Runtime
from .runtime import OfflineRuntime, create_runtime

# Sync
from .sync import (
    DrainGuard,
    IdReconciler,
    PullReport,
    PullService,
    SyncConfig,
    SyncCoordinator,
    SyncEngine,
    SyncResult,
    SyncState,
    sort_queue,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "OfflineConfig",
    # Connectivity
    "ConnectivityMonitor",
    # Entities
    "DEFAULT_GRAPH",
    "BaseRecord",
    "Branch",
    "ConfirmedId",
    "Customer",
    "DependencyGraph",
    "EntityTable",
    "Equipment",
    "Expense",
    "MaintenanceRequest",
    "Rental",
    "RentalItem",
    "TemporaryId",
    # Exceptions
    "AuthenticationError",
    "AuthenticationRequiredError",
    "DeleteNotAppliedError",
    "LocalStoreError",
    "OfflineStoreError",
    "PermissionDeniedError",
    "RecordNotFoundError",
    "ReferentialIntegrityError",
    "RemoteServiceError",
    "StorageConnectionError",
    "SyncError",
    "ValidationError",
    # Local persistence
    "ContextCache",
    "ContextResolver",
    "LocalStore",
    "OperationQueue",
    "OperationType",
    "QueueItem",
    "SessionContext",
    # Remote service
    "Filter",
    "Order",
    "RemoteService",
    "RestRemoteService",
    # Repositories
    "BranchRepository",
    "CustomerRepository",
    "EntityRepository",
    "EquipmentRepository",
    "ExpenseRepository",
    "MaintenanceRepository",
    "MutationOutcome",
    "MutationStatus",
    "RentalRepository",
    # Runtime
    "OfflineRuntime",
    "create_runtime",
    # Sync
    "DrainGuard",
    "IdReconciler",
    "PullReport",
    "PullService",
    "SyncConfig",
    "SyncCoordinator",
    "SyncEngine",
    "SyncResult",
    "SyncState",
    "sort_queue",
]
