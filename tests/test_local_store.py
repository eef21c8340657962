"""
Tests for the SQLite local store.

Uses real SQLite (in-memory) for accurate testing.
"""

import aiosqlite
import pytest

from branch_gear_offline.entities.records import EntityTable
from branch_gear_offline.exceptions import LocalStoreError, StorageConnectionError
from branch_gear_offline.local.store import SCHEMA_VERSION, SYNC_QUEUE, LocalStore

from conftest import customer_row


class TestLocalStoreInitialization:
    """Tests for store initialization and schema."""

    @pytest.mark.asyncio
    async def test_create_with_defaults(self):
        """Store creates an in-memory database by default."""
        store = await LocalStore.create()
        assert store._initialized is True
        assert store.degraded is False
        await store.close()

    @pytest.mark.asyncio
    async def test_schema_version_recorded(self, store):
        """Schema version is written to schema_meta."""
        assert await store._get_schema_version() == SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_file_database_persists(self, tmp_path):
        """Records survive closing and reopening a file database."""
        db_path = tmp_path / "nested" / "offline.db"
        store = await LocalStore.create(db_path)
        await store.put(EntityTable.CUSTOMERS, customer_row("c1"))
        await store.close()

        reopened = await LocalStore.create(db_path)
        assert (await reopened.get(EntityTable.CUSTOMERS, "c1"))["full_name"] == "Customer c1"
        await reopened.close()

    @pytest.mark.asyncio
    async def test_unopenable_database_raises(self, tmp_path):
        """A path that cannot hold a database raises StorageConnectionError."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        with pytest.raises(StorageConnectionError):
            await LocalStore.create(blocker / "offline.db")

    @pytest.mark.asyncio
    async def test_migration_adds_missing_lookup_column(self, tmp_path):
        """Older layouts get lookup columns added and backfilled."""
        db_path = tmp_path / "old.db"
        async with aiosqlite.connect(db_path) as conn:
            await conn.execute("CREATE TABLE schema_meta (key TEXT PRIMARY KEY, value TEXT)")
            await conn.execute("INSERT INTO schema_meta VALUES ('version', '4')")
            await conn.execute(
                "CREATE TABLE customers (id TEXT NOT NULL PRIMARY KEY, synced INTEGER, data TEXT NOT NULL)"
            )
            await conn.execute(
                "INSERT INTO customers (id, synced, data) VALUES "
                """('c1', 1, '{"id": "c1", "branch_id": "b9", "full_name": "A", "phone": "1"}')"""
            )
            await conn.commit()

        store = await LocalStore.create(db_path)
        found = await store.find(EntityTable.CUSTOMERS, branch_id="b9")
        assert [r["id"] for r in found] == ["c1"]
        assert await store._get_schema_version() == SCHEMA_VERSION
        await store.close()

    @pytest.mark.asyncio
    async def test_unknown_table_rejected(self, store):
        with pytest.raises(ValueError):
            await store.put("invoices", {"id": "x"})


class TestLocalStoreOperations:
    """Tests for put/get/getAll/delete/clear."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        """Put upserts by id and get returns the stored record."""
        assert await store.put(EntityTable.CUSTOMERS, customer_row("c1")) is True
        record = await store.get(EntityTable.CUSTOMERS, "c1")
        assert record["phone"] == "0550000000"

    @pytest.mark.asyncio
    async def test_put_overwrites_existing(self, store):
        await store.put(EntityTable.CUSTOMERS, customer_row("c1"))
        await store.put(EntityTable.CUSTOMERS, customer_row("c1", phone="999"))
        assert (await store.get(EntityTable.CUSTOMERS, "c1"))["phone"] == "999"
        assert len(await store.get_all(EntityTable.CUSTOMERS)) == 1

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get(EntityTable.CUSTOMERS, "nope") is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_an_error(self, store):
        assert await store.delete(EntityTable.CUSTOMERS, "nope") is True

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.put(EntityTable.CUSTOMERS, customer_row("c1"))
        await store.put(EntityTable.CUSTOMERS, customer_row("c2"))
        await store.clear(EntityTable.CUSTOMERS)
        assert await store.get_all(EntityTable.CUSTOMERS) == []

    @pytest.mark.asyncio
    async def test_find_by_indexed_and_plain_fields(self, store):
        """find filters indexed columns in SQL and other fields in Python."""
        await store.put(EntityTable.CUSTOMERS, customer_row("c1", branch_id="b1", phone="1"))
        await store.put(EntityTable.CUSTOMERS, customer_row("c2", branch_id="b1", phone="2"))
        await store.put(EntityTable.CUSTOMERS, customer_row("c3", branch_id="b2", phone="1"))

        by_branch = await store.find(EntityTable.CUSTOMERS, branch_id="b1")
        assert sorted(r["id"] for r in by_branch) == ["c1", "c2"]

        both = await store.find(EntityTable.CUSTOMERS, branch_id="b1", phone="1")
        assert [r["id"] for r in both] == ["c1"]

    @pytest.mark.asyncio
    async def test_count_unsynced(self, store):
        await store.put(EntityTable.CUSTOMERS, customer_row("c1", synced=False))
        await store.put(EntityTable.CUSTOMERS, customer_row("c2", synced=True))
        await store.put(EntityTable.BRANCHES, {"id": "b1", "name": "B", "synced": False})

        assert await store.count_unsynced(EntityTable.CUSTOMERS) == 1
        assert await store.count_unsynced() == 2

    @pytest.mark.asyncio
    async def test_bulk_put_in_chunks(self, store):
        """bulk_put writes every record across several chunks."""
        rows = [customer_row(f"c{i}") for i in range(5)]
        written = await store.bulk_put(EntityTable.CUSTOMERS, rows, chunk_size=2)
        assert written == 5
        assert len(await store.get_all(EntityTable.CUSTOMERS)) == 5

    @pytest.mark.asyncio
    async def test_queue_table_is_available(self, store):
        await store.put(SYNC_QUEUE, {"id": "q1", "table": "customers"})
        assert (await store.get(SYNC_QUEUE, "q1"))["table"] == "customers"


class TestLocalStoreDegradation:
    """Storage failures are logged and reported, never raised."""

    @pytest.mark.asyncio
    async def test_failed_write_marks_degraded(self, store):
        await store.conn.execute('DROP TABLE "customers"')

        assert await store.put(EntityTable.CUSTOMERS, customer_row("c1")) is False
        assert store.degraded is True
        assert "customers" in store.degraded_tables

    @pytest.mark.asyncio
    async def test_failed_read_returns_empty(self, store):
        await store.conn.execute('DROP TABLE "equipment"')

        assert await store.get_all(EntityTable.EQUIPMENT) == []
        assert await store.get(EntityTable.EQUIPMENT, "e1") is None
        assert "equipment" in store.degraded_tables

    @pytest.mark.asyncio
    async def test_other_tables_keep_working(self, store):
        await store.conn.execute('DROP TABLE "equipment"')
        await store.put(EntityTable.EQUIPMENT, {"id": "e1"})

        assert await store.put(EntityTable.CUSTOMERS, customer_row("c1")) is True
        assert await store.get(EntityTable.CUSTOMERS, "c1") is not None

    @pytest.mark.asyncio
    async def test_bulk_put_keeps_earlier_chunks(self, store):
        """A failing chunk stops the bulk write; earlier chunks stay."""
        await store.conn.execute(
            "CREATE TRIGGER reject_c3 BEFORE INSERT ON customers WHEN NEW.id = 'c3' "
            "BEGIN SELECT RAISE(ABORT, 'disk full'); END"
        )
        rows = [customer_row(f"c{i}") for i in range(1, 6)]

        written = await store.bulk_put(EntityTable.CUSTOMERS, rows, chunk_size=2)

        assert written == 2
        assert sorted(r["id"] for r in await store.get_all(EntityTable.CUSTOMERS)) == ["c1", "c2"]
        assert store.degraded is True


class TestLocalStoreTransactions:
    """Tests for grouped writes."""

    @pytest.mark.asyncio
    async def test_commit(self, store):
        async with store.transaction() as tx:
            await store.put(EntityTable.CUSTOMERS, customer_row("c1"))
            await store.put(EntityTable.CUSTOMERS, customer_row("c2"))
        assert tx.committed is True
        assert len(await store.get_all(EntityTable.CUSTOMERS)) == 2

    @pytest.mark.asyncio
    async def test_storage_failure_rolls_back(self, store):
        """A storage error inside the block undoes every write and is reported."""
        await store.conn.execute('DROP TABLE "rentals"')
        await store.conn.commit()

        async with store.transaction() as tx:
            await store.put(EntityTable.CUSTOMERS, customer_row("c1"))
            await store.put(EntityTable.RENTALS, {"id": "r1"})

        assert tx.committed is False
        assert isinstance(tx.error, LocalStoreError)
        assert await store.get(EntityTable.CUSTOMERS, "c1") is None

    @pytest.mark.asyncio
    async def test_other_errors_roll_back_and_propagate(self, store):
        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.put(EntityTable.CUSTOMERS, customer_row("c1"))
                raise RuntimeError("boom")
        assert await store.get(EntityTable.CUSTOMERS, "c1") is None

    @pytest.mark.asyncio
    async def test_nested_blocks_join_outer(self, store):
        async with store.transaction() as outer:
            await store.put(EntityTable.CUSTOMERS, customer_row("c1"))
            async with store.transaction() as inner:
                await store.put(EntityTable.CUSTOMERS, customer_row("c2"))
            assert inner.committed is True
        assert outer.committed is True
        assert len(await store.get_all(EntityTable.CUSTOMERS)) == 2
