"""Maintenance request repository."""

from __future__ import annotations

from typing import Any

from ..entities.records import EntityTable, utc_now_iso
from .base import EntityRepository


class MaintenanceRepository(EntityRepository):
    TABLE = EntityTable.MAINTENANCE_REQUESTS
    SEARCH_FIELDS = ("description", "notes", "status")
    DEFAULT_ORDER = ("request_date", False)

    async def prepare_create(self, data: dict[str, Any]) -> dict[str, Any]:
        if self.context is not None:
            if not data.get("branch_id"):
                data["branch_id"] = await self.context.resolve_branch_id()
            if not data.get("created_by"):
                data["created_by"] = await self.context.current_user_id()
        data.setdefault("request_date", utc_now_iso()[:10])
        return data

    async def enrich(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        await self.attach(rows, "customer_id", EntityTable.CUSTOMERS, "customers")
        await self.attach(rows, "equipment_id", EntityTable.EQUIPMENT, "equipment")
        await self.attach(rows, "branch_id", EntityTable.BRANCHES, "branches")
        return rows
