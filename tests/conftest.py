"""
Shared test configuration and fixtures.

Provides an in-memory remote service that behaves like the real backend
where it matters for sync: server-assigned ids, foreign-key enforcement,
injectable failures, and deletes that report success but leave the row
behind.
"""

import logging
from collections import defaultdict
from typing import Any

import pytest

from branch_gear_offline.connectivity import ConnectivityMonitor
from branch_gear_offline.entities.records import EntityTable, record_type
from branch_gear_offline.exceptions import RemoteServiceError
from branch_gear_offline.local.context import ContextCache, ContextResolver, SessionContext
from branch_gear_offline.local.queue import OperationQueue
from branch_gear_offline.local.store import LocalStore
from branch_gear_offline.remote.base import Filter, Order, RemoteService
from branch_gear_offline.sync.engine import SyncEngine
from branch_gear_offline.sync.pull import PullService
from branch_gear_offline.sync.reconcile import IdReconciler

logger = logging.getLogger(__name__)

ENTITY_TABLES = {t.value for t in EntityTable}


class InMemoryRemoteService(RemoteService):
    """
    Fake remote service for testing without a backend.

    Rows live in plain dicts; every call is recorded in ``calls``.
    """

    def __init__(self, authenticated: bool = True):
        self.tables: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple[str, str, str | None]] = []
        self.authenticated = authenticated
        self.reachable = True
        self.enforce_foreign_keys = True
        # (table, operation) pairs that always fail; operation None means all
        self.failures: set[tuple[str, str | None]] = set()
        # Tables whose deletes report success but keep the row
        self.surviving_deletes: set[str] = set()
        self._next_id = 0

    def fail(self, table: str, operation: str | None = None) -> None:
        self.failures.add((table, operation))

    def heal(self) -> None:
        self.failures.clear()

    def seed(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Put a row straight into the remote tables."""
        self.tables[table][row["id"]] = dict(row)
        return row

    def calls_for(self, operation: str) -> list[tuple[str, str, str | None]]:
        return [c for c in self.calls if c[0] == operation]

    def _check(self, table: str, operation: str) -> None:
        if (table, operation) in self.failures or (table, None) in self.failures:
            raise RemoteServiceError(table, operation, 500, "injected failure")

    def _check_parents(self, table: str, row: dict[str, Any]) -> None:
        if not self.enforce_foreign_keys or table not in ENTITY_TABLES:
            return
        for column, parent in record_type(table).FOREIGN_KEYS.items():
            value = row.get(column)
            if value and value not in self.tables[parent.value]:
                raise RemoteServiceError(table, "insert", 409, f"foreign key {column}={value}")

    def _check_children(self, table: str, record_id: str) -> None:
        if not self.enforce_foreign_keys:
            return
        for child in EntityTable:
            for column, parent in record_type(child).FOREIGN_KEYS.items():
                if parent.value != table:
                    continue
                if any(r.get(column) == record_id for r in self.tables[child.value].values()):
                    raise RemoteServiceError(table, "delete", 409, f"still referenced by {child.value}")

    async def select(
        self,
        table: str,
        filters: list[Filter] | None = None,
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("select", table, None))
        self._check(table, "select")
        rows = [
            dict(r) for r in self.tables[table].values() if all(f.matches(r) for f in filters or [])
        ]
        if order:
            rows.sort(key=lambda r: r.get(order.column) or "", reverse=not order.ascending)
        return rows[:limit] if limit else rows

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("insert", table, record.get("id")))
        self._check(table, "insert")
        row = dict(record)
        if not row.get("id"):
            self._next_id += 1
            row["id"] = f"srv-{self._next_id}"
        if row["id"] in self.tables[table]:
            raise RemoteServiceError(table, "insert", 409, "duplicate key")
        self._check_parents(table, row)
        self.tables[table][row["id"]] = row
        return dict(row)

    async def update(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        self.calls.append(("update", table, record_id))
        self._check(table, "update")
        if record_id in self.tables[table]:
            self.tables[table][record_id].update({k: v for k, v in changes.items() if k != "id"})

    async def delete(self, table: str, record_id: str) -> None:
        self.calls.append(("delete", table, record_id))
        self._check(table, "delete")
        if table in self.surviving_deletes:
            return
        self._check_children(table, record_id)
        self.tables[table].pop(record_id, None)

    async def ping(self) -> bool:
        return self.reachable

    def is_authenticated(self) -> bool:
        return self.authenticated


@pytest.fixture
async def store():
    """Fixture providing an initialized in-memory local store."""
    local_store = await LocalStore.create(":memory:", bulk_chunk_size=2)
    yield local_store
    await local_store.close()


@pytest.fixture
def queue(store):
    return OperationQueue(store)


@pytest.fixture
def remote():
    return InMemoryRemoteService()


@pytest.fixture
def reconciler(store, queue):
    return IdReconciler(store, queue)


@pytest.fixture
def engine(store, queue, remote, reconciler):
    return SyncEngine(store, queue, remote, reconciler)


@pytest.fixture
def pull_service(store, queue, remote):
    return PullService(store, queue, remote, chunk_size=2)


@pytest.fixture
def monitor():
    """Monitor that starts offline."""
    return ConnectivityMonitor(online=False)


@pytest.fixture
async def context(tmp_path, store, remote):
    """Context resolver with a signed-in staff user assigned to branch-1."""
    cache = ContextCache(tmp_path / "context.yaml")
    await cache.save(
        SessionContext(user_id="user-1", email="clerk@example.com", role="staff", branch_id="branch-1")
    )
    return ContextResolver(cache, store, remote, lookup_timeout=0.2)


@pytest.fixture
def make_repo(store, queue, remote, monitor, reconciler, context, engine):
    """Factory building a repository wired to the shared fixtures."""

    def factory(repo_class):
        return repo_class(store, queue, remote, monitor, reconciler, context, guard=engine.guard)

    return factory


async def seed_everywhere(store, remote, table: EntityTable, row: dict[str, Any]) -> dict[str, Any]:
    """Put a confirmed row both in the remote tables and the local store."""
    remote.seed(table.value, row)
    local = record_type(table).from_dict({**row, "synced": True}).to_local()
    await store.put(table, local)
    return local


def branch_row(branch_id: str = "branch-1", **fields: Any) -> dict[str, Any]:
    return {"id": branch_id, "name": f"Branch {branch_id}", **fields}


def customer_row(customer_id: str, branch_id: str = "branch-1", **fields: Any) -> dict[str, Any]:
    return {
        "id": customer_id,
        "full_name": f"Customer {customer_id}",
        "phone": "0550000000",
        "branch_id": branch_id,
        **fields,
    }


def equipment_row(equipment_id: str, branch_id: str = "branch-1", **fields: Any) -> dict[str, Any]:
    return {
        "id": equipment_id,
        "name": f"Mixer {equipment_id}",
        "code": equipment_id.upper(),
        "branch_id": branch_id,
        "daily_rate": 50.0,
        **fields,
    }
