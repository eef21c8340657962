"""Customer repository."""

from __future__ import annotations

from typing import Any

from ..entities.records import EntityTable
from .base import EntityRepository


class CustomerRepository(EntityRepository):
    TABLE = EntityTable.CUSTOMERS
    SEARCH_FIELDS = ("full_name", "phone", "id_number")

    async def prepare_create(self, data: dict[str, Any]) -> dict[str, Any]:
        if not data.get("branch_id") and self.context is not None:
            data["branch_id"] = await self.context.resolve_branch_id()
        return data
