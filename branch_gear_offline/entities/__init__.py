"""
Entity records, identifiers and the table dependency graph.
"""

from .graph import DEFAULT_GRAPH, DependencyGraph
from .ids import ConfirmedId, RecordId, TemporaryId, is_temporary, new_temporary_id, parse_id
from .records import (
    LOCAL_ONLY_FIELDS,
    RECORD_TYPES,
    BaseRecord,
    Branch,
    Customer,
    EntityRecord,
    EntityTable,
    Equipment,
    Expense,
    MaintenanceRequest,
    Rental,
    RentalItem,
    record_from_dict,
    record_type,
    utc_now_iso,
)

__all__ = [
    "DEFAULT_GRAPH",
    "DependencyGraph",
    "ConfirmedId",
    "RecordId",
    "TemporaryId",
    "is_temporary",
    "new_temporary_id",
    "parse_id",
    "LOCAL_ONLY_FIELDS",
    "RECORD_TYPES",
    "BaseRecord",
    "Branch",
    "Customer",
    "EntityRecord",
    "EntityTable",
    "Equipment",
    "Expense",
    "MaintenanceRequest",
    "Rental",
    "RentalItem",
    "record_from_dict",
    "record_type",
    "utc_now_iso",
]
