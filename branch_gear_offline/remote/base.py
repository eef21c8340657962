"""
Remote data service interface.

The backend is an opaque row-oriented CRUD service over named tables.
Its schema and authorization rules are its own business; the offline
runtime only relies on the operations below.
"""

from __future__ import annotations

import fnmatch
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

FILTER_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "in")


@dataclass(frozen=True)
class Filter:
    """A single column filter for ``select``.

    ``in`` expects a list/tuple value; ``like``/``ilike`` use ``%``
    wildcards.
    """

    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate the filter against a row held in memory."""
        actual = row.get(self.column)
        if self.op == "eq":
            return actual == self.value
        if self.op == "neq":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if actual is None:
            return False
        if self.op == "gt":
            return actual > self.value
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lt":
            return actual < self.value
        if self.op == "lte":
            return actual <= self.value
        return _like(str(actual), str(self.value), self.op == "ilike")


@dataclass(frozen=True)
class Order:
    column: str
    ascending: bool = True


def _like(text: str, pattern: str, case_insensitive: bool) -> bool:
    if case_insensitive:
        text, pattern = text.lower(), pattern.lower()
    return fnmatch.fnmatchcase(text, pattern.replace("%", "*").replace("_", "?"))


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def in_(column: str, values: list[Any] | tuple[Any, ...]) -> Filter:
    return Filter(column, "in", tuple(values))


class RemoteService(ABC):
    """Abstract row-oriented CRUD service.

    Implementations raise ``RemoteServiceError`` (or a subclass) for any
    failed call so callers can treat every failure uniformly.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: list[Filter] | None = None,
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows matching all filters."""
        ...

    @abstractmethod
    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored, including the server id."""
        ...

    @abstractmethod
    async def update(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        """Partially update a row by primary key."""
        ...

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> None:
        """Delete a row by primary key."""
        ...

    async def exists(self, table: str, record_id: str) -> bool:
        """Check whether a row is (still) present."""
        rows = await self.select(table, [eq("id", record_id)], limit=1)
        return len(rows) > 0

    @abstractmethod
    async def ping(self) -> bool:
        """Cheap reachability probe; never raises."""
        ...

    @abstractmethod
    def is_authenticated(self) -> bool:
        """True when the service holds credentials for the current user."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
