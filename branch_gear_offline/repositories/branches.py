"""Branch repository."""

from __future__ import annotations

from ..entities.records import EntityTable
from .base import EntityRepository


class BranchRepository(EntityRepository):
    TABLE = EntityTable.BRANCHES
    SEARCH_FIELDS = ("name", "company_name", "phone")
