"""
Rental repository.

A rental owns one or more rental items, each putting a piece of equipment
out on hire. Creating, returning and deleting rentals touches several
tables, so the local writes of each operation are staged in one local
transaction and the immediate remote calls are made after it commits.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Any

from ..entities.records import BaseRecord, EntityTable, Equipment, Rental, RentalItem, record_type
from ..exceptions import LocalStoreError, RecordNotFoundError, ValidationError
from ..local.store import TransactionState
from .base import EntityRepository, MutationOutcome
from .equipment import AVAILABLE, RENTED

logger = logging.getLogger(__name__)

COMPLETED = "completed"
MONTHLY = "monthly"
DAYS_PER_MONTH = 30


def _parse_day(value: str) -> datetime:
    if len(value) == 10:
        return datetime.combine(date.fromisoformat(value), datetime.min.time())
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed.replace(tzinfo=None)


def days_between(start: str, end: str) -> int:
    """Whole days from ``start`` to ``end``, rounded up, at least 1."""
    seconds = (_parse_day(end) - _parse_day(start)).total_seconds()
    return max(1, math.ceil(seconds / 86400))


def compute_item_charge(
    item: dict[str, Any],
    rental: dict[str, Any],
    daily_rate: float | None,
) -> tuple[int, float]:
    """Billable units and amount for a returned rental item.

    Daily rentals bill per day. Monthly rentals bill per started 30-day
    month, at least one. Items not yet returned cost nothing so far.

    Returns:
        (units, amount) where units are days or months
    """
    if not item.get("return_date"):
        return 0, 0.0

    quantity = item.get("quantity") or 1
    days = days_between(item["start_date"], item["return_date"])
    if rental.get("rental_type") == MONTHLY:
        units = max(1, math.ceil(days / DAYS_PER_MONTH))
    else:
        units = days
    return units, units * (daily_rate or 0) * quantity


class RentalRepository(EntityRepository):
    TABLE = EntityTable.RENTALS
    SEARCH_FIELDS = ("invoice_number", "status", "notes")
    CASCADE_TABLES = (EntityTable.RENTAL_ITEMS,)

    async def enrich(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        await self.attach(rows, "customer_id", EntityTable.CUSTOMERS, "customers")
        await self.attach(rows, "branch_id", EntityTable.BRANCHES, "branches")
        return rows

    async def list_items(self, rental_id: str | None = None) -> list[dict[str, Any]]:
        """Rental items (of one rental, or all) with their equipment attached."""
        if rental_id:
            rows = await self.store.find(EntityTable.RENTAL_ITEMS, rental_id=rental_id)
        else:
            rows = await self.store.get_all(EntityTable.RENTAL_ITEMS)
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        await self.attach(rows, "equipment_id", EntityTable.EQUIPMENT, "equipment")
        return rows

    async def _daily_rate(self, equipment_id: str) -> float:
        equipment = await self.store.get(EntityTable.EQUIPMENT, equipment_id)
        return float((equipment or {}).get("daily_rate") or 0)

    async def _reload(self, record: BaseRecord) -> BaseRecord | None:
        record_id = self.reconciler.resolve(record.TABLE, record.id)
        row = await self.store.get(record.TABLE, record_id)
        return record_type(record.TABLE).from_dict(row) if row else None

    async def _push_staged(self, inserts: list[BaseRecord], updates: list[BaseRecord]) -> None:
        for record in inserts:
            current = await self._reload(record)
            if current is not None and not current.synced:
                await self.push_insert(current)
        for record in updates:
            current = await self._reload(record)
            if current is not None and not current.synced:
                await self.push_update(current)

    async def _set_equipment_status(
        self, equipment_id: str, status: str, updates: list[BaseRecord]
    ) -> None:
        row = await self.store.get(EntityTable.EQUIPMENT, equipment_id)
        if row is not None and row.get("status") != status:
            updates.append(await self.stage_update(Equipment.from_dict(row), {"status": status}))

    @staticmethod
    def _raise_if_rolled_back(tx: TransactionState, operation: str) -> None:
        if not tx.committed:
            raise tx.error or LocalStoreError(operation, EntityTable.RENTALS.value)

    async def create_rental(
        self,
        data: dict[str, Any],
        items: list[dict[str, Any]],
    ) -> MutationOutcome:
        """Create a rental with its items and mark the equipment rented.

        Args:
            data: Rental fields; ``start_date`` defaults to today
            items: Items with ``equipment_id`` (or ``equipmentId``), and
                optional ``quantity``, ``notes``, ``start_date``

        Raises:
            ValidationError: If no item names a piece of equipment
            LocalStoreError: If the local writes were rolled back
        """
        normalized = [
            {
                "equipment_id": item.get("equipment_id") or item.get("equipmentId"),
                "quantity": item.get("quantity") or 1,
                "notes": item.get("notes"),
                "start_date": item.get("start_date"),
            }
            for item in items or []
        ]
        normalized = [item for item in normalized if item["equipment_id"]]
        if not normalized:
            raise ValidationError("equipment_id", "at least one equipment item is required")

        data = dict(data)
        start_date = data.get("start_date") or date.today().isoformat()
        data["start_date"] = start_date
        data["equipment_id"] = normalized[0]["equipment_id"]
        data["deposit_amount"] = data.get("deposit_amount") or 0
        if self.context is not None:
            if not data.get("created_by"):
                data["created_by"] = await self.context.current_user_id()
            if not data.get("branch_id"):
                data["branch_id"] = await self.context.resolve_branch_id()

        inserts: list[BaseRecord] = []
        updates: list[BaseRecord] = []
        async with self.store.transaction() as tx:
            rental = await self.stage_insert(Rental, data)
            for item in normalized:
                inserts.append(
                    await self.stage_insert(
                        RentalItem,
                        {
                            "rental_id": rental.id,
                            "equipment_id": item["equipment_id"],
                            "start_date": item["start_date"] or start_date,
                            "quantity": item["quantity"],
                            "notes": item["notes"],
                        },
                    )
                )
                await self._set_equipment_status(item["equipment_id"], RENTED, updates)
        self._raise_if_rolled_back(tx, "create_rental")

        outcome = await self.push_insert(rental)
        await self._push_staged(inserts, updates)
        return outcome

    async def return_rental(self, rental_id: str, return_date: str) -> MutationOutcome:
        """Return every outstanding item and complete the rental.

        Returned items are charged, their equipment becomes available and
        the rental total is the sum of all item charges.
        """
        rental_row = await self.require(rental_id)
        items = await self.store.find(EntityTable.RENTAL_ITEMS, rental_id=rental_id)

        updates: list[BaseRecord] = []
        total = 0.0
        async with self.store.transaction() as tx:
            for row in items:
                if row.get("return_date"):
                    _, amount = compute_item_charge(
                        row, rental_row, await self._daily_rate(row["equipment_id"])
                    )
                    total += amount
                    continue

                returned = {**row, "return_date": return_date}
                units, amount = compute_item_charge(
                    returned, rental_row, await self._daily_rate(row["equipment_id"])
                )
                total += amount
                updates.append(
                    await self.stage_update(
                        RentalItem.from_dict(row),
                        {"return_date": return_date, "days_count": units, "amount": amount},
                    )
                )
                await self._set_equipment_status(row["equipment_id"], AVAILABLE, updates)

            rental = await self.stage_update(
                Rental.from_dict(rental_row),
                {"status": COMPLETED, "end_date": return_date, "total_amount": total},
            )
        self._raise_if_rolled_back(tx, "return_rental")

        await self._push_staged([], updates)
        return await self.push_update(rental)

    async def return_item(self, item_id: str, return_date: str) -> MutationOutcome:
        """Return one rental item.

        When it was the last outstanding item, the rental is completed
        with the total of all item charges.
        """
        item_row = await self.store.get(EntityTable.RENTAL_ITEMS, item_id)
        if item_row is None:
            raise RecordNotFoundError(EntityTable.RENTAL_ITEMS.value, item_id)
        rental_row = await self.require(item_row["rental_id"])
        siblings = await self.store.find(EntityTable.RENTAL_ITEMS, rental_id=rental_row["id"])

        updates: list[BaseRecord] = []
        async with self.store.transaction() as tx:
            returned = {**item_row, "return_date": return_date}
            units, amount = compute_item_charge(
                returned, rental_row, await self._daily_rate(item_row["equipment_id"])
            )
            item = await self.stage_update(
                RentalItem.from_dict(item_row),
                {"return_date": return_date, "days_count": units, "amount": amount},
            )
            await self._set_equipment_status(item_row["equipment_id"], AVAILABLE, updates)

            others = [s for s in siblings if s["id"] != item_id]
            if all(s.get("return_date") for s in others):
                total = amount
                for sibling in others:
                    _, sibling_amount = compute_item_charge(
                        sibling, rental_row, await self._daily_rate(sibling["equipment_id"])
                    )
                    total += sibling_amount
                updates.append(
                    await self.stage_update(
                        Rental.from_dict(rental_row),
                        {"status": COMPLETED, "end_date": return_date, "total_amount": total},
                    )
                )
        self._raise_if_rolled_back(tx, "return_item")

        outcome = await self.push_update(item)
        await self._push_staged([], updates)
        return outcome

    async def delete(self, record_id: str) -> MutationOutcome:
        """Delete a rental with its items, freeing unreturned equipment.

        Item deletes are queued before the rental delete.
        """
        rental_row = await self.require(record_id)
        await self.check_delete(rental_row)
        items = await self.store.find(EntityTable.RENTAL_ITEMS, rental_id=record_id)

        updates: list[BaseRecord] = []
        item_deletes: list[tuple[dict[str, Any], bool]] = []
        async with self.store.transaction() as tx:
            for row in items:
                if not row.get("return_date"):
                    await self._set_equipment_status(row["equipment_id"], AVAILABLE, updates)
            for row in items:
                item_deletes.append((row, await self.stage_delete(EntityTable.RENTAL_ITEMS, row)))
            rental_queued = await self.stage_delete(EntityTable.RENTALS, rental_row)
        self._raise_if_rolled_back(tx, "delete_rental")
        logger.info(f"Deleted rental {record_id} with {len(items)} items locally")

        await self._push_staged([], updates)
        for row, item_queued in item_deletes:
            await self.push_delete(EntityTable.RENTAL_ITEMS, row, item_queued)
        return await self.push_delete(EntityTable.RENTALS, rental_row, rental_queued)
