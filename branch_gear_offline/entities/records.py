"""
Entity record types.

Each business table has one dataclass carrying its typed fields plus the
local-only ``synced`` flag. Records know which of their fields are foreign
keys, which makes the dependency graph and id remapping declarative.

Join fields added for display (``customers``, ``branches``, ``equipment``)
are never part of a record: ``from_dict`` drops them and ``to_remote``
only ever emits declared fields.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from ..exceptions import ValidationError
from .ids import is_temporary


class EntityTable(Enum):
    """Business tables mirrored in the local store."""

    BRANCHES = "branches"
    CUSTOMERS = "customers"
    EQUIPMENT = "equipment"
    RENTALS = "rentals"
    RENTAL_ITEMS = "rental_items"
    MAINTENANCE_REQUESTS = "maintenance_requests"
    EXPENSES = "expenses"


# Fields that only exist on the device and are never sent to the remote service
LOCAL_ONLY_FIELDS = frozenset({"synced"})


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(kw_only=True)
class BaseRecord:
    """Fields shared by every entity record."""

    TABLE: ClassVar[EntityTable]
    FOREIGN_KEYS: ClassVar[dict[str, EntityTable]] = {}
    # Columns indexed in the local store for lookups without a full scan
    INDEXES: ClassVar[tuple[str, ...]] = ()

    id: str = ""
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    synced: bool = False

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in dataclasses.fields(cls)]

    @classmethod
    def required_fields(cls) -> list[str]:
        return [
            f.name
            for f in dataclasses.fields(cls)
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        ]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaseRecord:
        """Create from dictionary, ignoring unknown and join keys."""
        known = set(cls.field_names())
        values = {k: v for k, v in data.items() if k in known}
        for name in cls.required_fields():
            if values.get(name) is None:
                raise ValidationError(name, f"required for {cls.TABLE.value}")
        if values.get("synced") is not None:
            values["synced"] = bool(values["synced"])
        else:
            values.pop("synced", None)
        if values.get("created_at") is None:
            values.pop("created_at", None)
        if values.get("updated_at") is None:
            values.pop("updated_at", None)
        return cls(**values)

    def to_local(self) -> dict[str, Any]:
        """Convert to the dictionary persisted in the local store."""
        return dataclasses.asdict(self)

    def to_remote(self) -> dict[str, Any]:
        """Convert to the payload sent to the remote service.

        Local-only fields are stripped and a temporary id is omitted so the
        server assigns its own.
        """
        payload = {k: v for k, v in dataclasses.asdict(self).items() if k not in LOCAL_ONLY_FIELDS}
        if not payload.get("id") or is_temporary(payload["id"]):
            payload.pop("id", None)
        return payload

    def merged(self, changes: dict[str, Any]) -> BaseRecord:
        """Return a copy with ``changes`` applied and ``updated_at`` bumped.

        The id cannot be changed this way.
        """
        data = self.to_local()
        data.update({k: v for k, v in changes.items() if k != "id"})
        data["updated_at"] = utc_now_iso()
        return type(self).from_dict(data)

    def foreign_keys(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in self.FOREIGN_KEYS}


@dataclass(kw_only=True)
class Branch(BaseRecord):
    TABLE: ClassVar[EntityTable] = EntityTable.BRANCHES

    name: str
    address: str | None = None
    phone: str | None = None
    company_name: str | None = None
    tax_number: str | None = None
    commercial_registration: str | None = None


@dataclass(kw_only=True)
class Customer(BaseRecord):
    TABLE: ClassVar[EntityTable] = EntityTable.CUSTOMERS
    FOREIGN_KEYS: ClassVar[dict[str, EntityTable]] = {"branch_id": EntityTable.BRANCHES}
    INDEXES: ClassVar[tuple[str, ...]] = ("branch_id",)

    full_name: str
    phone: str
    branch_id: str
    id_number: str | None = None
    id_source: str | None = None
    address: str | None = None
    notes: str | None = None


@dataclass(kw_only=True)
class Equipment(BaseRecord):
    TABLE: ClassVar[EntityTable] = EntityTable.EQUIPMENT
    FOREIGN_KEYS: ClassVar[dict[str, EntityTable]] = {"branch_id": EntityTable.BRANCHES}
    INDEXES: ClassVar[tuple[str, ...]] = ("branch_id",)

    name: str
    code: str
    branch_id: str
    category: str | None = None
    daily_rate: float = 0.0
    quantity: int | None = None
    status: str = "available"
    notes: str | None = None


@dataclass(kw_only=True)
class Rental(BaseRecord):
    TABLE: ClassVar[EntityTable] = EntityTable.RENTALS
    FOREIGN_KEYS: ClassVar[dict[str, EntityTable]] = {
        "customer_id": EntityTable.CUSTOMERS,
        "equipment_id": EntityTable.EQUIPMENT,
        "branch_id": EntityTable.BRANCHES,
    }
    INDEXES: ClassVar[tuple[str, ...]] = ("branch_id",)

    customer_id: str
    equipment_id: str
    branch_id: str
    start_date: str
    created_by: str
    end_date: str | None = None
    status: str = "active"
    rental_type: str = "daily"
    days_count: int | None = None
    total_amount: float | None = None
    deposit_amount: float = 0.0
    discount_amount: float | None = None
    invoice_number: int | None = None
    notes: str | None = None


@dataclass(kw_only=True)
class RentalItem(BaseRecord):
    TABLE: ClassVar[EntityTable] = EntityTable.RENTAL_ITEMS
    FOREIGN_KEYS: ClassVar[dict[str, EntityTable]] = {
        "rental_id": EntityTable.RENTALS,
        "equipment_id": EntityTable.EQUIPMENT,
    }
    INDEXES: ClassVar[tuple[str, ...]] = ("rental_id",)

    rental_id: str
    equipment_id: str
    start_date: str
    quantity: int = 1
    return_date: str | None = None
    days_count: int | None = None
    amount: float | None = None
    notes: str | None = None


@dataclass(kw_only=True)
class MaintenanceRequest(BaseRecord):
    TABLE: ClassVar[EntityTable] = EntityTable.MAINTENANCE_REQUESTS
    FOREIGN_KEYS: ClassVar[dict[str, EntityTable]] = {
        "customer_id": EntityTable.CUSTOMERS,
        "equipment_id": EntityTable.EQUIPMENT,
        "branch_id": EntityTable.BRANCHES,
    }
    INDEXES: ClassVar[tuple[str, ...]] = ("branch_id", "status")

    customer_id: str
    branch_id: str
    created_by: str
    request_date: str
    description: str
    equipment_id: str | None = None
    status: str = "pending"
    cost: float | None = None
    notes: str | None = None
    completed_date: str | None = None


@dataclass(kw_only=True)
class Expense(BaseRecord):
    TABLE: ClassVar[EntityTable] = EntityTable.EXPENSES
    FOREIGN_KEYS: ClassVar[dict[str, EntityTable]] = {"branch_id": EntityTable.BRANCHES}
    INDEXES: ClassVar[tuple[str, ...]] = ("branch_id", "expense_date")

    branch_id: str
    created_by: str
    expense_date: str
    category: str
    description: str
    amount: float
    notes: str | None = None


EntityRecord = Branch | Customer | Equipment | Rental | RentalItem | MaintenanceRequest | Expense

RECORD_TYPES: dict[EntityTable, type[BaseRecord]] = {
    EntityTable.BRANCHES: Branch,
    EntityTable.CUSTOMERS: Customer,
    EntityTable.EQUIPMENT: Equipment,
    EntityTable.RENTALS: Rental,
    EntityTable.RENTAL_ITEMS: RentalItem,
    EntityTable.MAINTENANCE_REQUESTS: MaintenanceRequest,
    EntityTable.EXPENSES: Expense,
}


def record_type(table: EntityTable | str) -> type[BaseRecord]:
    """Look up the record class for a table (enum or table name)."""
    return RECORD_TYPES[EntityTable(table)]


def record_from_dict(table: EntityTable | str, data: dict[str, Any]) -> BaseRecord:
    return record_type(table).from_dict(data)
