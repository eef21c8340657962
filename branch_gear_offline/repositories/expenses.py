"""Expense repository."""

from __future__ import annotations

from typing import Any

from ..entities.records import EntityTable
from .base import EntityRepository


class ExpenseRepository(EntityRepository):
    TABLE = EntityTable.EXPENSES
    SEARCH_FIELDS = ("category", "description", "notes")
    DEFAULT_ORDER = ("expense_date", False)

    async def prepare_create(self, data: dict[str, Any]) -> dict[str, Any]:
        if self.context is not None:
            if not data.get("branch_id"):
                data["branch_id"] = await self.context.resolve_branch_id()
            if not data.get("created_by"):
                data["created_by"] = await self.context.current_user_id()
        return data

    async def total(self, branch_id: str | None = None) -> float:
        """Sum of expense amounts, optionally for one branch."""
        rows = await self.list(filters={"branch_id": branch_id} if branch_id else None)
        return sum(float(row.get("amount") or 0) for row in rows)
