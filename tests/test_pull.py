"""
Tests for pull and preload.
"""

import pytest

from branch_gear_offline.entities.records import EntityTable
from branch_gear_offline.exceptions import SyncError
from branch_gear_offline.local.queue import OperationType

from conftest import branch_row, customer_row, equipment_row


def rental_row(rental_id, branch_id="branch-1"):
    return {
        "id": rental_id,
        "customer_id": "c1",
        "equipment_id": "e1",
        "branch_id": branch_id,
        "start_date": "2024-03-01",
        "created_by": "user-1",
    }


def item_row(item_id, rental_id):
    return {"id": item_id, "rental_id": rental_id, "equipment_id": "e1", "start_date": "2024-03-01"}


class TestPullAll:
    """Full snapshot replacement."""

    @pytest.mark.asyncio
    async def test_replaces_local_snapshot(self, store, remote, pull_service):
        remote.seed("branches", branch_row())
        for i in range(5):
            remote.seed("customers", customer_row(f"c{i}"))
        await store.put(EntityTable.CUSTOMERS, customer_row("stale", synced=True))

        report = await pull_service.pull_all()

        local = await store.get_all(EntityTable.CUSTOMERS)
        assert sorted(r["id"] for r in local) == [f"c{i}" for i in range(5)]
        assert all(r["synced"] is True for r in local)
        assert report.written["customers"] == 5
        assert report.total == 6
        assert report.degraded is False

    @pytest.mark.asyncio
    async def test_pending_delete_is_not_resurrected(self, store, queue, remote, pull_service):
        remote.seed("branches", branch_row())
        remote.seed("customers", customer_row("c1"))
        remote.seed("customers", customer_row("c2"))
        await queue.enqueue(EntityTable.CUSTOMERS, OperationType.DELETE, customer_row("c1"))

        report = await pull_service.pull_all()

        assert await store.get(EntityTable.CUSTOMERS, "c1") is None
        assert await store.get(EntityTable.CUSTOMERS, "c2") is not None
        assert report.excluded == 1

    @pytest.mark.asyncio
    async def test_pending_local_writes_are_kept(self, store, queue, remote, pull_service):
        remote.seed("branches", branch_row())
        remote.seed("customers", customer_row("c1", phone="old"))
        edited = customer_row("c1", phone="new", synced=False)
        created = customer_row("tmp-c9", synced=False)
        for row, operation in ((edited, OperationType.UPDATE), (created, OperationType.INSERT)):
            await store.put(EntityTable.CUSTOMERS, row)
            await queue.enqueue(EntityTable.CUSTOMERS, operation, row)

        report = await pull_service.pull_all()

        assert (await store.get(EntityTable.CUSTOMERS, "c1"))["phone"] == "new"
        assert (await store.get(EntityTable.CUSTOMERS, "tmp-c9"))["synced"] is False
        assert report.preserved == 2

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_local_data(self, store, remote, pull_service):
        await store.put(EntityTable.CUSTOMERS, customer_row("c1", synced=True))
        remote.seed("branches", branch_row())
        remote.fail("rentals", "select")

        with pytest.raises(SyncError) as exc_info:
            await pull_service.pull_all()

        assert exc_info.value.table == "rentals"
        assert await store.get(EntityTable.CUSTOMERS, "c1") is not None
        assert await store.get_all(EntityTable.BRANCHES) == []

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, store, remote, pull_service):
        remote.seed("branches", branch_row())
        remote.seed("customers", {"id": "broken", "branch_id": "branch-1"})
        remote.seed("customers", customer_row("c1"))

        await pull_service.pull_all()

        assert [r["id"] for r in await store.get_all(EntityTable.CUSTOMERS)] == ["c1"]

    @pytest.mark.asyncio
    async def test_failed_table_write_is_reported(self, store, remote, pull_service):
        remote.seed("branches", branch_row())
        remote.seed("equipment", equipment_row("e1"))
        await store.conn.execute('DROP TABLE "equipment"')
        await store.conn.commit()

        report = await pull_service.pull_all()

        assert report.degraded_tables == ["equipment"]
        assert await store.get(EntityTable.BRANCHES, "branch-1") is not None


class TestPreload:
    """Branch-scoped preload."""

    @pytest.mark.asyncio
    async def test_only_branch_rows_are_loaded(self, store, remote, pull_service):
        remote.seed("branches", branch_row("branch-1"))
        remote.seed("branches", branch_row("branch-2"))
        remote.seed("customers", customer_row("c1"))
        remote.seed("customers", customer_row("c2", branch_id="branch-2"))
        remote.seed("equipment", equipment_row("e1"))
        remote.seed("rentals", rental_row("r1"))
        remote.seed("rentals", rental_row("r2", branch_id="branch-2"))
        remote.seed("rental_items", item_row("i1", "r1"))
        remote.seed("rental_items", item_row("i2", "r2"))

        report = await pull_service.preload("branch-1")

        assert [r["id"] for r in await store.get_all(EntityTable.BRANCHES)] == ["branch-1"]
        assert [r["id"] for r in await store.get_all(EntityTable.CUSTOMERS)] == ["c1"]
        assert [r["id"] for r in await store.get_all(EntityTable.RENTALS)] == ["r1"]
        assert [r["id"] for r in await store.get_all(EntityTable.RENTAL_ITEMS)] == ["i1"]
        assert report.written["rental_items"] == 1

    @pytest.mark.asyncio
    async def test_branch_without_rentals_skips_item_query(self, store, remote, pull_service):
        remote.seed("branches", branch_row())
        await store.put(EntityTable.RENTAL_ITEMS, item_row("old", "r0"))

        await pull_service.preload("branch-1")

        assert ("select", "rental_items", None) not in remote.calls
        assert await store.get_all(EntityTable.RENTAL_ITEMS) == []
