"""
Unit tests for SchemaSnapshot loading and serialization
"""

import json
import pytest

from models.base import ObjectKey, ObjectType
from models.snapshot import (
    ColumnDefinition, ConstraintDefinition, RoutineDefinition, SchemaSnapshot,
    TableDefinition, TriggerDefinition, TypeDefinition, ViewDefinition, key_for, rebase_definition
)


SNAPSHOT = {
    "instance": "prod",
    "captured_at": "2024-05-01T12:00:00",
    "schemas": {
        "public": {
            "tables": [{
                "name": "orders",
                "columns": [{"name": "id", "data_type": "integer", "nullable": False}],
                "indexes": [{"name": "idx_orders_id", "columns": ["id"]}],
                "constraints": [{"name": "orders_pkey", "constraint_type": "p", "columns": ["id"]}],
                "triggers": [{"name": "orders_audit", "events": ["INSERT"], "function_name": "audit_fn"}],
            }],
            "materialized_views": [{"name": "order_stats", "definition": "SELECT count(*) FROM orders"}],
            "functions": [{"name": "audit_fn", "return_type": "trigger", "language": "plpgsql",
                           "definition": "BEGIN RETURN NEW; END"}],
            "procedures": [{"name": "archive", "arguments": "days integer", "definition": "SELECT 1"}],
            "types": [{"name": "order_status", "kind": "enum", "enum_values": ["new", "paid"]}],
            "views": [{"name": "v_raw", "ddl": "CREATE VIEW v_raw AS SELECT 1"}],
        },
    },
}


class TestFromDict:
    """Tests for building snapshots from their JSON form"""

    @pytest.fixture
    def snapshot(self) -> SchemaSnapshot:
        return SchemaSnapshot.from_dict(SNAPSHOT)

    def test_tables_are_flattened(self, snapshot):
        assert ObjectKey("public", ObjectType.TABLE, "orders") in snapshot
        assert ObjectKey("public", ObjectType.COLUMN, "id", "orders") in snapshot
        assert ObjectKey("public", ObjectType.INDEX, "idx_orders_id", "orders") in snapshot
        assert ObjectKey("public", ObjectType.CONSTRAINT_PRIMARY, "orders_pkey", "orders") in snapshot
        assert ObjectKey("public", ObjectType.TRIGGER, "orders_audit", "orders") in snapshot

        table = snapshot.get(ObjectKey("public", ObjectType.TABLE, "orders"))
        assert table.indexes == [] and table.constraints == [] and table.triggers == []
        assert [c.name for c in table.columns] == ["id"]

    def test_children_know_their_table(self, snapshot):
        column = snapshot.get(ObjectKey("public", ObjectType.COLUMN, "id", "orders"))
        assert column.table_name == "orders"

    def test_section_implies_kind(self, snapshot):
        matview = snapshot.get(ObjectKey("public", ObjectType.MATERIALIZED_VIEW, "order_stats"))
        assert matview.materialized

        procedure = snapshot.get(ObjectKey("public", ObjectType.PROCEDURE, "archive(days integer)"))
        assert procedure.kind == "procedure"

        assert ObjectKey("public", ObjectType.FUNCTION, "audit_fn()") in snapshot
        assert ObjectKey("public", ObjectType.TYPE_ENUM, "order_status") in snapshot

    def test_ddl_items_are_kept_as_text(self, snapshot):
        assert snapshot.get(ObjectKey("public", ObjectType.VIEW, "v_raw")) == "CREATE VIEW v_raw AS SELECT 1"

    def test_metadata(self, snapshot):
        assert snapshot.instance == "prod"
        assert snapshot.captured_at.year == 2024
        assert snapshot.schemas == ["public"]
        assert len(snapshot) == 10

    def test_ddl_without_type_needs_object_type(self):
        data = {"schemas": {"public": {"types": [{"name": "mood", "ddl": "CREATE TYPE mood AS ENUM ('ok')"}]}}}
        with pytest.raises(ValueError):
            SchemaSnapshot.from_dict(data)

        data["schemas"]["public"]["types"][0]["object_type"] = "type_enum"
        snapshot = SchemaSnapshot.from_dict(data)
        assert ObjectKey("public", ObjectType.TYPE_ENUM, "mood") in snapshot

    def test_unknown_section(self):
        with pytest.raises(ValueError):
            SchemaSnapshot.from_dict({"schemas": {"public": {"synonyms": [{"name": "s"}]}}})

    def test_keys_by_schema(self):
        snapshot = SchemaSnapshot()
        snapshot.add("public", TableDefinition(name="orders"))
        snapshot.add("audit", TableDefinition(name="events"))

        assert snapshot.keys("audit") == [ObjectKey("audit", ObjectType.TABLE, "events")]
        assert len(snapshot.keys()) == 2


class TestSerialization:
    """Tests for to_dict and snapshot files"""

    def test_round_trip_through_a_file(self, tmp_path):
        original = SchemaSnapshot.from_dict(SNAPSHOT)
        path = tmp_path / "prod.json"
        path.write_text(json.dumps(original.to_dict()))

        loaded = SchemaSnapshot.from_json_file(path)

        assert set(loaded) == set(original)
        for key in original:
            assert loaded.get(key) == original.get(key)

    def test_text_definitions_go_to_the_ddl_section(self):
        snapshot = SchemaSnapshot()
        snapshot.add_text("public", ObjectType.TRIGGER, "t_audit", "CREATE TRIGGER t_audit ...", "orders")

        section = snapshot.to_dict()["schemas"]["public"]["ddl"]
        assert section == [{
            "name": "t_audit",
            "object_type": "trigger",
            "ddl": "CREATE TRIGGER t_audit ...",
            "table_name": "orders",
        }]

    def test_instance_defaults_to_file_name(self, tmp_path):
        path = tmp_path / "staging.json"
        path.write_text(json.dumps({"schemas": {}}))

        assert SchemaSnapshot.from_json_file(path).instance == "staging"


class TestKeyFor:

    def test_structured_definitions(self):
        assert key_for("public", ColumnDefinition(name="id", data_type="int", table_name="orders")) == \
            ObjectKey("public", ObjectType.COLUMN, "id", "orders")
        assert key_for("public", ConstraintDefinition(name="fk", constraint_type="FOREIGN KEY")).object_type == \
            ObjectType.CONSTRAINT_FOREIGN
        assert key_for("public", ViewDefinition(name="v", definition="SELECT 1", materialized=True)).object_type == \
            ObjectType.MATERIALIZED_VIEW
        assert key_for("public", RoutineDefinition(name="f", arguments="a int")).object_name == "f(a int)"
        assert key_for("public", TypeDefinition(name="d", kind="domain")).object_type == ObjectType.TYPE_DOMAIN

    def test_unknown_definition(self):
        with pytest.raises(TypeError):
            key_for("public", object())


class TestRebaseDefinition:
    """Tests for moving references from one schema name to another"""

    def test_foreign_key_reference(self):
        constraint = ConstraintDefinition(name="fk_c", constraint_type="foreign_key", columns=["customer_id"],
                                          referenced_schema="app_copy", referenced_table="customers")

        rebased = rebase_definition(constraint, "app_copy", "app")

        assert rebased.referenced_schema == "app"
        assert constraint.referenced_schema == "app_copy"

    def test_reference_to_another_schema_is_kept(self):
        constraint = ConstraintDefinition(name="fk_r", constraint_type="foreign_key",
                                          referenced_schema="shared", referenced_table="regions")

        assert rebase_definition(constraint, "app_copy", "app").referenced_schema == "shared"

    def test_column_type_and_sequence_default(self):
        table = TableDefinition(name="orders", columns=[
            ColumnDefinition(name="id", data_type="integer",
                             default_value="nextval('app_copy.orders_id_seq'::regclass)"),
            ColumnDefinition(name="state", data_type="app_copy.order_state"),
        ])

        rebased = rebase_definition(table, "app_copy", "app")

        assert rebased.columns[0].default_value == "nextval('app.orders_id_seq'::regclass)"
        assert rebased.columns[1].data_type == "app.order_state"

    def test_trigger_function_and_view_dependencies(self):
        trigger = TriggerDefinition(name="orders_audit", function_name="app_copy.audit_fn")
        view = ViewDefinition(name="v", definition="SELECT 1", depends_on=["app_copy.orders", "orders"])

        assert rebase_definition(trigger, "app_copy", "app").function_name == "app.audit_fn"
        assert rebase_definition(view, "app_copy", "app").depends_on == ["app.orders", "orders"]

    def test_text_and_same_schema_are_unchanged(self):
        constraint = ConstraintDefinition(name="fk", constraint_type="foreign_key", referenced_schema="app")

        assert rebase_definition("CREATE VIEW v AS SELECT 1", "app_copy", "app") == "CREATE VIEW v AS SELECT 1"
        assert rebase_definition(constraint, "app", "app") is constraint
