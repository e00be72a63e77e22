"""
Unit tests for DependencyResolver
"""

import pytest
from typing import List, Optional

from services.dependency_resolver import DependencyResolver
from core.errors import ErrorKind
from models.base import DifferenceType, ObjectDifference, ObjectType


# ============================================================================
# Helpers
# ============================================================================

def _create_difference(
    object_type: ObjectType,
    name: str,
    parent: Optional[str] = None,
    references: Optional[List[str]] = None,
    difference_type: DifferenceType = DifferenceType.MISSING
) -> ObjectDifference:
    return ObjectDifference(
        object_name=name,
        schema_name="public",
        object_type=object_type,
        difference_type=difference_type,
        parent_object_name=parent,
        referenced_objects=references or [],
    )


def _names(differences: List[ObjectDifference]) -> List[str]:
    return [d.qualified_name for d in differences]


# ============================================================================
# Ordering
# ============================================================================

class TestDependencyResolver:
    """Tests for apply / teardown ordering"""

    @pytest.fixture
    def table_index_fk(self) -> List[ObjectDifference]:
        """T, index I on T, foreign key FK from T2 to T (given out of order)"""
        return [
            _create_difference(ObjectType.CONSTRAINT_FOREIGN, "fk_items_order", parent="order_items",
                               references=["public.orders"]),
            _create_difference(ObjectType.INDEX, "idx_orders_customer", parent="orders"),
            _create_difference(ObjectType.TABLE, "orders"),
            _create_difference(ObjectType.TABLE, "order_items"),
        ]

    def test_apply_order_puts_table_first(self, table_index_fk):
        order = _names(DependencyResolver(table_index_fk).resolve().apply_order)

        assert order.index("public.orders") < order.index("public.orders.idx_orders_customer")
        assert order.index("public.orders") < order.index("public.order_items.fk_items_order")
        assert order.index("public.order_items") < order.index("public.order_items.fk_items_order")

    def test_teardown_order_puts_dependents_first(self, table_index_fk):
        order = _names(DependencyResolver(table_index_fk).resolve().teardown_order)

        assert order.index("public.orders.idx_orders_customer") < order.index("public.orders")
        assert order.index("public.order_items.fk_items_order") < order.index("public.orders")

    def test_unrelated_objects_follow_rank_then_name(self):
        differences = [
            _create_difference(ObjectType.VIEW, "b_view"),
            _create_difference(ObjectType.TABLE, "b_table"),
            _create_difference(ObjectType.TABLE, "a_table"),
            _create_difference(ObjectType.EXTENSION, "pgcrypto"),
        ]

        resolved = DependencyResolver(differences).resolve()

        assert _names(resolved.apply_order) == [
            "public.pgcrypto", "public.a_table", "public.b_table", "public.b_view"
        ]
        assert _names(resolved.teardown_order) == [
            "public.b_view", "public.a_table", "public.b_table", "public.pgcrypto"
        ]

    def test_view_after_the_table_it_reads(self):
        differences = [
            _create_difference(ObjectType.VIEW, "active_orders", references=["public.z_orders"]),
            _create_difference(ObjectType.TABLE, "z_orders"),
        ]

        order = _names(DependencyResolver(differences).resolve().apply_order)

        assert order == ["public.z_orders", "public.active_orders"]

    def test_dependent_objects_add_edges(self):
        view = _create_difference(ObjectType.VIEW, "order_report")
        function = _create_difference(ObjectType.FUNCTION, "report_rows()")
        function.dependent_objects.append("public.order_report")

        order = _names(DependencyResolver([view, function]).resolve().apply_order)

        assert order == ["public.report_rows()", "public.order_report"]

    def test_routine_base_name_lookup(self):
        function = _create_difference(ObjectType.FUNCTION, "audit_fn()")
        resolver = DependencyResolver([function])

        assert resolver.lookup("public.audit_fn") == [0]
        assert resolver.lookup("public.audit_fn()") == [0]
        assert resolver.lookup("public.missing") == []

    def test_references_outside_the_difference_set_are_ignored(self):
        differences = [
            _create_difference(ObjectType.CONSTRAINT_FOREIGN, "fk_items_order", parent="order_items",
                               references=["public.unchanged_table"]),
        ]

        resolved = DependencyResolver(differences).resolve()

        assert len(resolved.apply_order) == 1
        assert not resolved.has_cycles


# ============================================================================
# Cycles
# ============================================================================

class TestDependencyCycles:
    """Tests for cycle detection and partial ordering"""

    @pytest.fixture
    def cyclic(self) -> List[ObjectDifference]:
        return [
            _create_difference(ObjectType.VIEW, "view_a", references=["public.view_b"]),
            _create_difference(ObjectType.VIEW, "view_b", references=["public.view_a"]),
            _create_difference(ObjectType.VIEW, "view_c", references=["public.view_b"]),
            _create_difference(ObjectType.TABLE, "orders"),
        ]

    def test_cycle_is_reported(self, cyclic):
        resolved = DependencyResolver(cyclic).resolve()

        assert resolved.has_cycles
        assert resolved.cycles == [["public.view_a", "public.view_b"]]

    def test_dependents_of_a_cycle_are_skipped(self, cyclic):
        resolved = DependencyResolver(cyclic).resolve()

        assert _names(resolved.skipped) == ["public.view_a", "public.view_b", "public.view_c"]

    def test_unaffected_objects_are_still_ordered(self, cyclic):
        resolved = DependencyResolver(cyclic).resolve()

        assert _names(resolved.apply_order) == ["public.orders"]
        assert _names(resolved.teardown_order) == ["public.orders"]

    def test_cycle_error(self, cyclic):
        error = DependencyResolver(cyclic).resolve().cycle_error()

        assert error.kind == ErrorKind.DEPENDENCY_CYCLE
        assert error.context["skipped"] == ["public.view_a", "public.view_b", "public.view_c"]
        assert error.to_issue().kind == ErrorKind.DEPENDENCY_CYCLE

    def test_no_cycle_error_without_cycles(self):
        resolved = DependencyResolver([_create_difference(ObjectType.TABLE, "orders")]).resolve()
        assert resolved.cycle_error() is None

    def test_self_reference_is_not_a_cycle(self):
        diff = _create_difference(ObjectType.TABLE, "orders", references=["public.orders"])

        resolved = DependencyResolver([diff]).resolve()

        assert not resolved.has_cycles
        assert _names(resolved.apply_order) == ["public.orders"]
