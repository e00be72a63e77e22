"""
Unit tests for Comparer classes
Kent Beck approves: "Test-Driven Development is a design technique, not a testing technique."
"""

import pytest
from typing import List

from services.comparers.base_comparer import DEFINITION_ATTRIBUTE, normalize_definition
from services.comparers.table_comparer import TableComparer, is_widening, parse_type
from services.comparers.index_comparer import IndexComparer
from services.comparers.constraint_comparer import ConstraintComparer
from services.comparers.routine_comparer import FunctionComparer, TriggerComparer, ViewComparer
from services.comparers.sequence_comparer import SequenceComparer
from services.comparers.type_comparer import ExtensionComparer, TypeComparer
from core.errors import UnsupportedDefinitionError
from models.base import DifferenceType, ObjectKey, ObjectType
from models.snapshot import (
    ColumnDefinition, CompositeAttribute, ConstraintDefinition, ExtensionDefinition,
    IndexDefinition, RoutineDefinition, SequenceDefinition, TableDefinition,
    TriggerDefinition, TypeDefinition, ViewDefinition
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def column_key() -> ObjectKey:
    return ObjectKey("public", ObjectType.COLUMN, "status", "orders")


@pytest.fixture
def table_key() -> ObjectKey:
    return ObjectKey("public", ObjectType.TABLE, "orders")


def _attribute_names(diff) -> List[str]:
    return [a.attribute_name for a in diff.attribute_differences]


# ============================================================================
# Definition normalisation
# ============================================================================

class TestNormalizeDefinition:
    """Tests for whitespace/case/semicolon normalisation"""

    def test_collapses_whitespace_and_case(self):
        assert normalize_definition("SELECT  id\n\tFROM   Orders;") == "select id from orders"

    def test_strips_trailing_semicolons(self):
        assert normalize_definition("select 1 ;") == "select 1"

    def test_none_stays_none(self):
        assert normalize_definition(None) is None


# ============================================================================
# Data type compatibility
# ============================================================================

class TestTypeWidening:
    """Tests for the widening rules behind breaking flags"""

    def test_aliases_parse_to_same_type(self):
        assert parse_type("character varying(20)") == parse_type("varchar(20)")
        assert parse_type("int4") == parse_type("integer")

    def test_varchar_growth_is_widening(self):
        assert is_widening("varchar(20)", "varchar(50)")
        assert is_widening("varchar(20)", "text")
        assert is_widening("varchar(20)", "varchar")

    def test_varchar_shrink_is_narrowing(self):
        assert not is_widening("varchar(50)", "varchar(20)")
        assert not is_widening("text", "varchar(200)")

    def test_integer_ranks(self):
        assert is_widening("smallint", "bigint")
        assert is_widening("integer", "numeric")
        assert not is_widening("bigint", "integer")

    def test_numeric_precision_and_scale(self):
        assert is_widening("numeric(10,2)", "numeric(12,2)")
        assert not is_widening("numeric(10,2)", "numeric(10,1)")
        assert not is_widening("numeric(10,2)", "numeric(10,4)")

    def test_array_change_is_never_widening(self):
        assert not is_widening("text", "text[]")

    def test_unrelated_types(self):
        assert not is_widening("text", "integer")


# ============================================================================
# BaseComparer behaviour (via TableComparer)
# ============================================================================

class TestBaseComparer:
    """Tests for the shared MISSING / EXTRA / MODIFIED handling"""

    @pytest.fixture
    def comparer(self) -> TableComparer:
        return TableComparer()

    def test_both_absent_returns_none(self, comparer, column_key):
        assert comparer.compare(column_key, None, None) is None

    def test_source_only_is_missing_without_attributes(self, comparer, column_key):
        diff = comparer.compare(column_key, self._create_column("varchar(20)"), None)

        assert diff.difference_type == DifferenceType.MISSING
        assert diff.attribute_differences == []
        assert diff.parent_object_name == "orders"
        assert diff.qualified_name == "public.orders.status"

    def test_destination_only_is_extra(self, comparer, column_key):
        diff = comparer.compare(column_key, None, self._create_column("varchar(20)"))

        assert diff.difference_type == DifferenceType.EXTRA
        assert diff.source_definition is None

    def test_identical_definitions_match(self, comparer, column_key):
        assert comparer.compare(
            column_key, self._create_column("varchar(20)"), self._create_column("character varying(20)")
        ) is None

    def test_text_definitions_ignore_formatting(self, comparer, table_key):
        source = "CREATE TABLE orders (id integer);"
        destination = "create table   orders\n    (id integer)"

        assert comparer.compare(table_key, source, destination) is None

    def test_text_definitions_differ_as_single_breaking_attribute(self, comparer, table_key):
        diff = comparer.compare(
            table_key, "CREATE TABLE orders (id integer)", "CREATE TABLE orders (id bigint)"
        )

        assert diff.difference_type == DifferenceType.MODIFIED
        assert len(diff.attribute_differences) == 1
        assert diff.attribute_differences[0].attribute_name == DEFINITION_ATTRIBUTE
        assert diff.attribute_differences[0].breaking

    def test_text_against_structured_is_unsupported(self, comparer, column_key):
        with pytest.raises(UnsupportedDefinitionError):
            comparer.compare(column_key, "status varchar(20)", self._create_column("varchar(20)"))

    def test_wrong_model_is_unsupported(self, comparer, column_key):
        with pytest.raises(UnsupportedDefinitionError) as exc_info:
            comparer.compare(column_key, IndexDefinition(name="status"), None)

        assert exc_info.value.object_key == str(column_key)

    def test_empty_text_is_unsupported(self, comparer, table_key):
        with pytest.raises(UnsupportedDefinitionError):
            comparer.compare(table_key, "   ", None)

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _create_column(self, data_type: str, nullable: bool = True) -> ColumnDefinition:
        return ColumnDefinition(name="status", table_name="orders", data_type=data_type, nullable=nullable)


# ============================================================================
# TableComparer Tests
# ============================================================================

class TestTableComparer:
    """Tests for TableComparer"""

    @pytest.fixture
    def table_comparer(self) -> TableComparer:
        return TableComparer()

    def test_object_types(self, table_comparer: TableComparer):
        """TableComparer handles tables and columns"""
        assert table_comparer.object_types == (ObjectType.TABLE, ObjectType.COLUMN)

    def test_detect_widened_column_type(self, table_comparer, column_key):
        """varchar(20) -> varchar(50) is a non-breaking data_type change"""
        diff = table_comparer.compare(
            column_key, self._create_column("status", "varchar(20)"), self._create_column("status", "varchar(50)")
        )

        assert diff.difference_type == DifferenceType.MODIFIED
        assert len(diff.attribute_differences) == 1
        attr = diff.attribute_differences[0]
        assert attr.attribute_name == "data_type"
        assert attr.source_value == "varchar(20)"
        assert attr.destination_value == "varchar(50)"
        assert attr.breaking is False
        assert attr.is_modified()

    def test_detect_narrowed_column_type(self, table_comparer, column_key):
        diff = table_comparer.compare(
            column_key, self._create_column("status", "varchar(50)"), self._create_column("status", "varchar(20)")
        )

        assert diff.attribute_differences[0].breaking is True

    def test_detect_nullable_change(self, table_comparer, column_key):
        diff = table_comparer.compare(
            column_key,
            self._create_column("status", "text", nullable=True),
            self._create_column("status", "text", nullable=False),
        )

        assert _attribute_names(diff) == ["nullable"]
        assert diff.attribute_differences[0].description == "Column becomes NOT NULL"

    def test_detect_default_removed(self, table_comparer, column_key):
        source = self._create_column("status", "text", default_value="'new'::text")
        destination = self._create_column("status", "text")

        diff = table_comparer.compare(column_key, source, destination)

        attr = diff.attribute_differences[0]
        assert attr.attribute_name == "default_value"
        assert attr.is_removed()

    def test_default_whitespace_is_ignored(self, table_comparer, column_key):
        source = self._create_column("status", "text", default_value="'new'::text")
        destination = self._create_column("status", "text", default_value="  'NEW'::text ")

        assert table_comparer.compare(column_key, source, destination) is None

    def test_table_attributes(self, table_comparer, table_key):
        source = TableDefinition(name="orders", owner="app", comment="Orders")
        destination = TableDefinition(name="orders", owner="admin", comment="Customer orders",
                                      partition_key="RANGE (created_at)")

        diff = table_comparer.compare(table_key, source, destination)

        assert _attribute_names(diff) == ["partition_key", "owner", "comment"]
        assert diff.attribute_differences[0].breaking

    def test_columns_are_not_compared_on_the_table(self, table_comparer, table_key):
        source = TableDefinition(name="orders", columns=[self._create_column("id", "integer")])
        destination = TableDefinition(name="orders", columns=[self._create_column("id", "bigint")])

        assert table_comparer.compare(table_key, source, destination) is None

    def test_references_types_and_sequences(self, table_comparer):
        key = ObjectKey("public", ObjectType.COLUMN, "id", "orders")
        column = self._create_column("id", "order_status", default_value="nextval('orders_id_seq'::regclass)")

        diff = table_comparer.compare(key, None, column)

        assert "public.order_status" in diff.referenced_objects
        assert "public.orders_id_seq" in diff.referenced_objects

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _create_column(
        self,
        name: str,
        data_type: str,
        nullable: bool = True,
        default_value: str = None
    ) -> ColumnDefinition:
        return ColumnDefinition(
            name=name,
            table_name="orders",
            data_type=data_type,
            nullable=nullable,
            default_value=default_value,
        )


# ============================================================================
# IndexComparer Tests
# ============================================================================

class TestIndexComparer:
    """Tests for IndexComparer"""

    @pytest.fixture
    def index_key(self) -> ObjectKey:
        return ObjectKey("public", ObjectType.INDEX, "idx_orders_customer", "orders")

    def test_identical_indexes(self, index_key):
        index = IndexDefinition(name="idx_orders_customer", columns=["customer_id"])
        assert IndexComparer().compare(index_key, index, index.model_copy()) is None

    def test_detect_column_and_unique_change(self, index_key):
        source = IndexDefinition(name="idx_orders_customer", columns=["customer_id"])
        destination = IndexDefinition(name="idx_orders_customer", columns=["customer_id", "created_at"], unique=True)

        diff = IndexComparer().compare(index_key, source, destination)

        assert _attribute_names(diff) == ["columns", "unique"]

    def test_definition_only_indexes_compare_text(self, index_key):
        source = IndexDefinition(
            name="idx_orders_customer",
            definition="CREATE INDEX idx_orders_customer ON public.orders USING btree (customer_id)",
        )
        destination = IndexDefinition(
            name="idx_orders_customer",
            definition="CREATE INDEX idx_orders_customer ON public.orders USING hash (customer_id)",
        )

        diff = IndexComparer().compare(index_key, source, destination)

        assert _attribute_names(diff) == [DEFINITION_ATTRIBUTE]


# ============================================================================
# ConstraintComparer Tests
# ============================================================================

class TestConstraintComparer:
    """Tests for ConstraintComparer"""

    def test_primary_key_column_change_is_breaking(self):
        key = ObjectKey("public", ObjectType.CONSTRAINT_PRIMARY, "orders_pkey", "orders")
        source = ConstraintDefinition(name="orders_pkey", constraint_type="primary_key", columns=["id"])
        destination = ConstraintDefinition(name="orders_pkey", constraint_type="primary_key",
                                           columns=["id", "region"])

        diff = ConstraintComparer().compare(key, source, destination)

        assert diff.attribute_differences[0].breaking

    def test_foreign_key_default_action_matches_no_action(self):
        key = ObjectKey("public", ObjectType.CONSTRAINT_FOREIGN, "fk_items_order", "order_items")
        source = self._create_foreign_key(on_delete=None)
        destination = self._create_foreign_key(on_delete="no action")

        assert ConstraintComparer().compare(key, source, destination) is None

    def test_foreign_key_action_change(self):
        key = ObjectKey("public", ObjectType.CONSTRAINT_FOREIGN, "fk_items_order", "order_items")

        diff = ConstraintComparer().compare(
            key, self._create_foreign_key(), self._create_foreign_key(on_delete="CASCADE")
        )

        assert _attribute_names(diff) == ["on_delete"]
        assert not diff.attribute_differences[0].breaking

    def test_foreign_key_references_target_table(self):
        key = ObjectKey("public", ObjectType.CONSTRAINT_FOREIGN, "fk_items_order", "order_items")

        diff = ConstraintComparer().compare(key, None, self._create_foreign_key())

        assert diff.referenced_objects == ["public.orders"]

    def test_check_expression_change(self):
        key = ObjectKey("public", ObjectType.CONSTRAINT_CHECK, "orders_total_check", "orders")
        source = ConstraintDefinition(name="orders_total_check", constraint_type="check", expression="total >= 0")
        destination = ConstraintDefinition(name="orders_total_check", constraint_type="check", expression="total > 0")

        diff = ConstraintComparer().compare(key, source, destination)

        assert _attribute_names(diff) == ["expression"]

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _create_foreign_key(self, on_delete: str = None) -> ConstraintDefinition:
        return ConstraintDefinition(
            name="fk_items_order",
            constraint_type="foreign_key",
            columns=["order_id"],
            referenced_table="orders",
            referenced_columns=["id"],
            on_delete=on_delete,
        )


# ============================================================================
# View / Function / Trigger Tests
# ============================================================================

class TestRoutineComparers:
    """Tests for definitional objects"""

    def test_view_body_change_is_single_definition_attribute(self):
        key = ObjectKey("public", ObjectType.VIEW, "order_totals")
        source = ViewDefinition(name="order_totals", definition="SELECT id, total FROM orders")
        destination = ViewDefinition(name="order_totals", definition="SELECT id, total, status FROM orders")

        diff = ViewComparer().compare(key, source, destination)

        assert _attribute_names(diff) == [DEFINITION_ATTRIBUTE]
        assert diff.attribute_differences[0].breaking

    def test_view_references_dependencies(self):
        key = ObjectKey("public", ObjectType.VIEW, "order_totals")
        view = ViewDefinition(name="order_totals", definition="SELECT 1", depends_on=["orders", "sales.regions"])

        diff = ViewComparer().compare(key, view, None)

        assert diff.referenced_objects == ["public.orders", "sales.regions"]

    def test_function_return_type_change(self):
        key = ObjectKey("public", ObjectType.FUNCTION, "order_total(integer)")
        source = self._create_function(return_type="integer")
        destination = self._create_function(return_type="numeric")

        diff = FunctionComparer().compare(key, source, destination)

        assert _attribute_names(diff) == ["return_type"]

    def test_function_volatility_change_is_not_breaking(self):
        key = ObjectKey("public", ObjectType.FUNCTION, "order_total(integer)")

        diff = FunctionComparer().compare(
            key, self._create_function(volatility="VOLATILE"), self._create_function(volatility="STABLE")
        )

        assert not diff.attribute_differences[0].breaking

    def test_trigger_enabled_only(self):
        key = ObjectKey("public", ObjectType.TRIGGER, "orders_audit", "orders")
        source = self._create_trigger(enabled=True)
        destination = self._create_trigger(enabled=False)

        diff = TriggerComparer().compare(key, source, destination)

        assert _attribute_names(diff) == ["enabled"]

    def test_trigger_event_order_is_ignored(self):
        key = ObjectKey("public", ObjectType.TRIGGER, "orders_audit", "orders")
        source = self._create_trigger(events=["INSERT", "UPDATE"])
        destination = self._create_trigger(events=["update", "insert"])

        assert TriggerComparer().compare(key, source, destination) is None

    def test_trigger_references_its_function(self):
        key = ObjectKey("public", ObjectType.TRIGGER, "orders_audit", "orders")

        diff = TriggerComparer().compare(key, self._create_trigger(), None)

        assert diff.referenced_objects == ["public.audit_fn"]

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _create_function(self, return_type: str = "integer", volatility: str = "STABLE") -> RoutineDefinition:
        return RoutineDefinition(
            name="order_total",
            arguments="integer",
            language="sql",
            return_type=return_type,
            volatility=volatility,
            definition="SELECT sum(total) FROM orders WHERE customer_id = $1",
        )

    def _create_trigger(self, enabled: bool = True, events: List[str] = None) -> TriggerDefinition:
        return TriggerDefinition(
            name="orders_audit",
            table_name="orders",
            timing="AFTER",
            events=events or ["INSERT", "UPDATE"],
            function_name="audit_fn()",
            enabled=enabled,
        )


# ============================================================================
# Sequence / Type / Extension Tests
# ============================================================================

class TestSequenceComparer:
    """Tests for SequenceComparer"""

    def test_detect_option_changes(self):
        key = ObjectKey("public", ObjectType.SEQUENCE, "orders_id_seq")
        source = SequenceDefinition(name="orders_id_seq", increment=1, cache_size=1)
        destination = SequenceDefinition(name="orders_id_seq", increment=10, cache_size=20)

        diff = SequenceComparer().compare(key, source, destination)

        assert _attribute_names(diff) == ["increment", "cache_size"]

    def test_data_type_narrowing_is_breaking(self):
        key = ObjectKey("public", ObjectType.SEQUENCE, "orders_id_seq")
        source = SequenceDefinition(name="orders_id_seq", data_type="bigint")
        destination = SequenceDefinition(name="orders_id_seq", data_type="integer")

        diff = SequenceComparer().compare(key, source, destination)

        assert diff.attribute_differences[0].breaking


class TestTypeComparer:
    """Tests for TypeComparer and ExtensionComparer"""

    def test_enum_label_added_is_not_breaking(self):
        key = ObjectKey("public", ObjectType.TYPE_ENUM, "order_status")

        diff = TypeComparer().compare(
            key, self._create_enum(["new", "paid"]), self._create_enum(["new", "paid", "shipped"])
        )

        attr = diff.attribute_differences[0]
        assert attr.attribute_name == "enum_values"
        assert not attr.breaking
        assert attr.description == "Labels added: shipped"

    def test_enum_label_removed_is_breaking(self):
        key = ObjectKey("public", ObjectType.TYPE_ENUM, "order_status")

        diff = TypeComparer().compare(
            key, self._create_enum(["new", "paid", "shipped"]), self._create_enum(["new", "paid"])
        )

        assert diff.attribute_differences[0].breaking

    def test_enum_reorder_is_breaking(self):
        key = ObjectKey("public", ObjectType.TYPE_ENUM, "order_status")

        diff = TypeComparer().compare(key, self._create_enum(["new", "paid"]), self._create_enum(["paid", "new"]))

        assert diff.attribute_differences[0].breaking
        assert diff.attribute_differences[0].description == "Label order changed"

    def test_composite_attributes(self):
        key = ObjectKey("public", ObjectType.TYPE_COMPOSITE, "address")
        source = TypeDefinition(name="address", kind="composite", attributes=[
            CompositeAttribute(name="street", data_type="varchar(50)"),
            CompositeAttribute(name="zip", data_type="text"),
        ])
        destination = TypeDefinition(name="address", kind="composite", attributes=[
            CompositeAttribute(name="street", data_type="varchar(100)"),
            CompositeAttribute(name="city", data_type="text"),
        ])

        diff = TypeComparer().compare(key, source, destination)

        by_name = {a.attribute_name: a for a in diff.attribute_differences}
        assert not by_name["attribute:street"].breaking
        assert by_name["attribute:zip"].is_removed() and by_name["attribute:zip"].breaking
        assert by_name["attribute:city"].is_added() and not by_name["attribute:city"].breaking

    def test_domain_references_base_type(self):
        key = ObjectKey("public", ObjectType.TYPE_DOMAIN, "money_amount")
        domain = TypeDefinition(name="money_amount", kind="domain", base_type="numeric(12,2)")

        diff = TypeComparer().compare(key, None, domain)

        assert diff.referenced_objects == ["public.numeric"]

    def test_extension_version(self):
        key = ObjectKey("public", ObjectType.EXTENSION, "pgcrypto")
        diff = ExtensionComparer().compare(
            key, ExtensionDefinition(name="pgcrypto", version="1.2"), ExtensionDefinition(name="pgcrypto", version="1.3")
        )

        assert _attribute_names(diff) == ["version"]

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _create_enum(self, values: List[str]) -> TypeDefinition:
        return TypeDefinition(name="order_status", kind="enum", enum_values=values)
