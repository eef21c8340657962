"""
Static dependency graph between entity tables.

Parents must exist remotely before children are inserted, and children
must be gone before parents are deleted. The graph is small and
hand-declared (through each record's ``FOREIGN_KEYS``); it is never
discovered at runtime.

    branches -> {customers, equipment, expenses}
             -> {rentals, maintenance_requests}
             -> rental_items
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .records import RECORD_TYPES, EntityTable


class DependencyGraph:
    """Directed acyclic graph of parent -> child table dependencies."""

    def __init__(self, parents: Mapping[EntityTable, Iterable[EntityTable]]):
        """Initialize the graph.

        Args:
            parents: For each table, the tables it references
        """
        self._parents: dict[EntityTable, frozenset[EntityTable]] = {}
        for table, refs in parents.items():
            self._parents[table] = frozenset(ref for ref in refs if ref != table)
            for ref in self._parents[table]:
                self._parents.setdefault(ref, frozenset())

        self._order = self._topological_sort()
        self._ranks = self._compute_ranks()

    @classmethod
    def from_records(cls) -> DependencyGraph:
        """Build the graph from the foreign keys declared on record types."""
        return cls(
            {table: set(rtype.FOREIGN_KEYS.values()) for table, rtype in RECORD_TYPES.items()}
        )

    @property
    def tables(self) -> list[EntityTable]:
        return list(self._order)

    def parents_of(self, table: EntityTable) -> frozenset[EntityTable]:
        return self._parents.get(table, frozenset())

    def dependents_of(self, table: EntityTable) -> list[EntityTable]:
        """Tables that directly reference ``table``, in topological order."""
        return [t for t in self._order if table in self._parents[t]]

    def topological_order(self) -> list[EntityTable]:
        """Parents before children; ties broken by table name."""
        return list(self._order)

    def rank(self, table: EntityTable) -> int:
        """Longest path from a root table; roots have rank 0."""
        return self._ranks[table]

    def insert_rank(self, table: EntityTable) -> int:
        return self.rank(table)

    def delete_rank(self, table: EntityTable) -> int:
        return -self.rank(table)

    def _topological_sort(self) -> list[EntityTable]:
        remaining = {t: set(p) for t, p in self._parents.items()}
        order: list[EntityTable] = []

        while remaining:
            ready = sorted((t for t, p in remaining.items() if not p), key=lambda t: t.value)
            if not ready:
                cycle = ", ".join(sorted(t.value for t in remaining))
                raise ValueError(f"Dependency cycle between tables: {cycle}")
            for table in ready:
                order.append(table)
                del remaining[table]
            for parents in remaining.values():
                parents.difference_update(ready)

        return order

    def _compute_ranks(self) -> dict[EntityTable, int]:
        ranks: dict[EntityTable, int] = {}
        for table in self._order:
            parents = self._parents[table]
            ranks[table] = 1 + max(ranks[p] for p in parents) if parents else 0
        return ranks


DEFAULT_GRAPH = DependencyGraph.from_records()
