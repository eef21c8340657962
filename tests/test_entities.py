"""
Tests for entity records, identifiers and the dependency graph.
"""

import pytest

from branch_gear_offline.entities.graph import DEFAULT_GRAPH, DependencyGraph
from branch_gear_offline.entities.ids import (
    TEMPORARY_PREFIX,
    ConfirmedId,
    TemporaryId,
    is_temporary,
    new_temporary_id,
    parse_id,
)
from branch_gear_offline.entities.records import (
    Customer,
    EntityTable,
    Rental,
    RentalItem,
    record_from_dict,
    record_type,
)
from branch_gear_offline.exceptions import ValidationError


class TestIds:
    """Tests for temporary and confirmed ids."""

    def test_new_temporary_id_is_unique(self):
        first, second = new_temporary_id(), new_temporary_id()
        assert first != second
        assert str(first).startswith(TEMPORARY_PREFIX)

    def test_parse_id(self):
        assert isinstance(parse_id("tmp-123"), TemporaryId)
        assert isinstance(parse_id("8c1f6a52-0000"), ConfirmedId)

    def test_is_temporary(self):
        assert is_temporary(str(new_temporary_id())) is True
        assert is_temporary("srv-1") is False
        assert is_temporary(None) is False
        assert is_temporary("") is False


class TestRecords:
    """Tests for typed record conversion."""

    def test_from_dict_drops_join_fields(self):
        """Display joins are not part of the record."""
        record = Customer.from_dict(
            {
                "id": "c1",
                "full_name": "Sara",
                "phone": "055",
                "branch_id": "b1",
                "branches": {"name": "Main"},
            }
        )
        assert "branches" not in record.to_local()

    def test_missing_required_field_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            Customer.from_dict({"id": "c1", "full_name": "Sara", "branch_id": "b1"})
        assert exc_info.value.field == "phone"

    def test_to_remote_strips_local_fields(self):
        record = Customer.from_dict(
            {"id": "c1", "full_name": "Sara", "phone": "055", "branch_id": "b1", "synced": True}
        )
        payload = record.to_remote()
        assert "synced" not in payload
        assert payload["id"] == "c1"

    def test_to_remote_omits_temporary_id(self):
        """The server assigns its own id for records created offline."""
        record = Customer.from_dict(
            {"id": "tmp-1", "full_name": "Sara", "phone": "055", "branch_id": "b1"}
        )
        assert "id" not in record.to_remote()

    def test_merged_keeps_id_and_bumps_updated_at(self):
        record = Customer.from_dict(
            {
                "id": "c1",
                "full_name": "Sara",
                "phone": "055",
                "branch_id": "b1",
                "updated_at": "2024-01-01T00:00:00+00:00",
            }
        )
        changed = record.merged({"id": "other", "phone": "066"})
        assert changed.id == "c1"
        assert changed.phone == "066"
        assert changed.updated_at > record.updated_at

    def test_foreign_keys(self):
        item = RentalItem.from_dict(
            {"id": "i1", "rental_id": "r1", "equipment_id": "e1", "start_date": "2024-01-01"}
        )
        assert item.foreign_keys() == {"rental_id": "r1", "equipment_id": "e1"}

    def test_record_type_lookup(self):
        assert record_type("rentals") is Rental
        assert record_type(EntityTable.CUSTOMERS) is Customer
        assert isinstance(
            record_from_dict(
                "rental_items",
                {"id": "i1", "rental_id": "r1", "equipment_id": "e1", "start_date": "2024-01-01"},
            ),
            RentalItem,
        )


class TestDependencyGraph:
    """Tests for the static table graph."""

    def test_ranks(self):
        graph = DEFAULT_GRAPH
        assert graph.rank(EntityTable.BRANCHES) == 0
        assert graph.rank(EntityTable.CUSTOMERS) == 1
        assert graph.rank(EntityTable.EQUIPMENT) == 1
        assert graph.rank(EntityTable.EXPENSES) == 1
        assert graph.rank(EntityTable.RENTALS) == 2
        assert graph.rank(EntityTable.MAINTENANCE_REQUESTS) == 2
        assert graph.rank(EntityTable.RENTAL_ITEMS) == 3

    def test_delete_rank_is_reversed(self):
        graph = DEFAULT_GRAPH
        assert graph.delete_rank(EntityTable.RENTAL_ITEMS) < graph.delete_rank(EntityTable.BRANCHES)

    def test_topological_order_puts_parents_first(self):
        order = DEFAULT_GRAPH.topological_order()
        for table in order:
            for parent in DEFAULT_GRAPH.parents_of(table):
                assert order.index(parent) < order.index(table)

    def test_dependents_of(self):
        dependents = DEFAULT_GRAPH.dependents_of(EntityTable.CUSTOMERS)
        assert set(dependents) == {EntityTable.RENTALS, EntityTable.MAINTENANCE_REQUESTS}

    def test_cycle_rejected(self):
        with pytest.raises(ValueError):
            DependencyGraph(
                {
                    EntityTable.CUSTOMERS: [EntityTable.RENTALS],
                    EntityTable.RENTALS: [EntityTable.CUSTOMERS],
                }
            )

    def test_new_table_slots_in_by_declaration(self):
        """A graph over a subset still ranks by declared parents."""
        graph = DependencyGraph({EntityTable.EXPENSES: [EntityTable.BRANCHES]})
        assert graph.tables == [EntityTable.BRANCHES, EntityTable.EXPENSES]
        assert graph.rank(EntityTable.EXPENSES) == 1
