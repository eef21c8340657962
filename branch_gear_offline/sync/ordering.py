"""
Replay ordering for queued operations.

The remote service enforces foreign keys, so a drain must send parent
inserts before child inserts and child deletes before parent deletes:

    inserts  (by ascending table rank, then enqueue time)
    updates  (by enqueue time only)
    deletes  (by descending table rank, then enqueue time)
"""

from __future__ import annotations

from ..entities.graph import DEFAULT_GRAPH, DependencyGraph
from ..local.queue import OperationType, QueueItem

OPERATION_CLASS = {
    OperationType.INSERT: 0,
    OperationType.UPDATE: 1,
    OperationType.DELETE: 2,
}


def sort_key(item: QueueItem, graph: DependencyGraph = DEFAULT_GRAPH) -> tuple[int, int, float, str]:
    if item.operation == OperationType.INSERT:
        table_rank = graph.insert_rank(item.table)
    elif item.operation == OperationType.DELETE:
        table_rank = graph.delete_rank(item.table)
    else:
        table_rank = 0
    return (OPERATION_CLASS[item.operation], table_rank, item.timestamp, item.id)


def sort_queue(items: list[QueueItem], graph: DependencyGraph = DEFAULT_GRAPH) -> list[QueueItem]:
    """Return queue items in safe replay order."""
    return sorted(items, key=lambda item: sort_key(item, graph))
