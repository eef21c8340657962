"""Equipment repository."""

from __future__ import annotations

from typing import Any

from ..entities.records import EntityTable
from .base import EntityRepository

RENTED = "rented"
AVAILABLE = "available"


class EquipmentRepository(EntityRepository):
    TABLE = EntityTable.EQUIPMENT
    SEARCH_FIELDS = ("name", "code", "category")

    async def prepare_create(self, data: dict[str, Any]) -> dict[str, Any]:
        if not data.get("branch_id") and self.context is not None:
            data["branch_id"] = await self.context.resolve_branch_id()
        return data

    async def delete_blockers(self, row: dict[str, Any]) -> list[str]:
        """Rented equipment stays even when its rental rows are not local yet."""
        blockers = await super().delete_blockers(row)
        if row.get("status") == RENTED and EntityTable.RENTALS.value not in blockers:
            blockers.append(EntityTable.RENTALS.value)
        return blockers

    async def available(self, branch_id: str | None = None) -> list[dict[str, Any]]:
        """Equipment that can be put on a new rental."""
        filters: dict[str, Any] = {"status": AVAILABLE}
        if branch_id:
            filters["branch_id"] = branch_id
        return await self.list(filters=filters, order_by="name", ascending=True)
