"""
On-device persistence: the local store, the operation queue and the
cached session context.
"""

from .context import ContextCache, ContextResolver, SessionContext
from .queue import OperationQueue, OperationType, QueueItem
from .store import SCHEMA_VERSION, SYNC_QUEUE, LocalStore, TransactionState

__all__ = [
    "ContextCache",
    "ContextResolver",
    "SessionContext",
    "OperationQueue",
    "OperationType",
    "QueueItem",
    "SCHEMA_VERSION",
    "SYNC_QUEUE",
    "LocalStore",
    "TransactionState",
]
