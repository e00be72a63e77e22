"""
Point-in-time capture of schema object definitions.

A snapshot maps ObjectKey -> definition. A definition is either one of the
structured models below or literal DDL text.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, Field

from models.base import ObjectKey, ObjectType


class ColumnDefinition(BaseModel):
    name: str
    table_name: Optional[str] = None
    data_type: str
    nullable: bool = True
    default_value: Optional[str] = None
    collation: Optional[str] = None
    identity: Optional[str] = None  # "ALWAYS" / "BY DEFAULT"
    comment: Optional[str] = None
    position: Optional[int] = None


class IndexDefinition(BaseModel):
    name: str
    table_name: Optional[str] = None
    columns: List[str] = Field(default_factory=list)
    include_columns: List[str] = Field(default_factory=list)
    unique: bool = False
    index_type: str = "btree"
    where_clause: Optional[str] = None
    definition: Optional[str] = None


class ConstraintDefinition(BaseModel):
    name: str
    table_name: Optional[str] = None
    constraint_type: str  # primary_key / foreign_key / unique / check
    columns: List[str] = Field(default_factory=list)
    referenced_schema: Optional[str] = None
    referenced_table: Optional[str] = None
    referenced_columns: List[str] = Field(default_factory=list)
    on_update: Optional[str] = None
    on_delete: Optional[str] = None
    expression: Optional[str] = None
    deferrable: bool = False

    @property
    def object_type(self) -> ObjectType:
        return CONSTRAINT_TYPES[self.constraint_type.lower()]


CONSTRAINT_TYPES: Dict[str, ObjectType] = {
    "primary_key": ObjectType.CONSTRAINT_PRIMARY,
    "primary key": ObjectType.CONSTRAINT_PRIMARY,
    "p": ObjectType.CONSTRAINT_PRIMARY,
    "foreign_key": ObjectType.CONSTRAINT_FOREIGN,
    "foreign key": ObjectType.CONSTRAINT_FOREIGN,
    "f": ObjectType.CONSTRAINT_FOREIGN,
    "unique": ObjectType.CONSTRAINT_UNIQUE,
    "u": ObjectType.CONSTRAINT_UNIQUE,
    "check": ObjectType.CONSTRAINT_CHECK,
    "c": ObjectType.CONSTRAINT_CHECK,
}


class TriggerDefinition(BaseModel):
    name: str
    table_name: Optional[str] = None
    timing: str = "AFTER"  # BEFORE / AFTER / INSTEAD OF
    events: List[str] = Field(default_factory=list)
    level: str = "ROW"  # ROW / STATEMENT
    function_name: Optional[str] = None
    condition: Optional[str] = None
    enabled: bool = True
    definition: Optional[str] = None


class TableDefinition(BaseModel):
    name: str
    owner: Optional[str] = None
    comment: Optional[str] = None
    partition_key: Optional[str] = None
    columns: List[ColumnDefinition] = Field(default_factory=list)
    indexes: List[IndexDefinition] = Field(default_factory=list)
    constraints: List[ConstraintDefinition] = Field(default_factory=list)
    triggers: List[TriggerDefinition] = Field(default_factory=list)


class ViewDefinition(BaseModel):
    name: str
    definition: str
    materialized: bool = False
    depends_on: List[str] = Field(default_factory=list)
    owner: Optional[str] = None
    comment: Optional[str] = None


class RoutineDefinition(BaseModel):
    name: str
    arguments: str = ""
    kind: str = "function"  # function / procedure
    language: str = "sql"
    return_type: Optional[str] = None
    volatility: Optional[str] = None  # IMMUTABLE / STABLE / VOLATILE
    strict: bool = False
    security_definer: bool = False
    definition: str = ""

    @property
    def signature(self) -> str:
        return f"{self.name}({self.arguments})"


class SequenceDefinition(BaseModel):
    name: str
    data_type: str = "bigint"
    start_value: Optional[int] = 1
    increment: Optional[int] = 1
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    cache_size: Optional[int] = 1
    cycle: bool = False
    owned_by: Optional[str] = None


class CompositeAttribute(BaseModel):
    name: str
    data_type: str


class TypeDefinition(BaseModel):
    name: str
    kind: str  # enum / composite / domain
    enum_values: List[str] = Field(default_factory=list)
    attributes: List[CompositeAttribute] = Field(default_factory=list)
    base_type: Optional[str] = None
    default_value: Optional[str] = None
    not_null: bool = False
    check_expression: Optional[str] = None

    @property
    def object_type(self) -> ObjectType:
        return TYPE_KINDS[self.kind.lower()]


TYPE_KINDS: Dict[str, ObjectType] = {
    "enum": ObjectType.TYPE_ENUM,
    "e": ObjectType.TYPE_ENUM,
    "composite": ObjectType.TYPE_COMPOSITE,
    "c": ObjectType.TYPE_COMPOSITE,
    "domain": ObjectType.TYPE_DOMAIN,
    "d": ObjectType.TYPE_DOMAIN,
}


class ExtensionDefinition(BaseModel):
    name: str
    version: Optional[str] = None
    schema_name: Optional[str] = None


Definition = Union[
    TableDefinition, ColumnDefinition, IndexDefinition, ConstraintDefinition,
    ViewDefinition, RoutineDefinition, TriggerDefinition, SequenceDefinition,
    TypeDefinition, ExtensionDefinition, str,
]

# Snapshot file section -> model used to parse its items
SECTION_MODELS: Dict[str, type] = {
    "tables": TableDefinition,
    "columns": ColumnDefinition,
    "indexes": IndexDefinition,
    "constraints": ConstraintDefinition,
    "views": ViewDefinition,
    "materialized_views": ViewDefinition,
    "functions": RoutineDefinition,
    "procedures": RoutineDefinition,
    "triggers": TriggerDefinition,
    "sequences": SequenceDefinition,
    "types": TypeDefinition,
    "extensions": ExtensionDefinition,
}


class SchemaSnapshot:
    """Definitions captured from one database instance"""

    def __init__(self, instance: str = "snapshot", captured_at: Optional[datetime] = None):
        self.instance = instance
        self.captured_at = captured_at or datetime.now()
        self.objects: Dict[ObjectKey, Any] = {}

    def __len__(self) -> int:
        return len(self.objects)

    def __iter__(self) -> Iterator[ObjectKey]:
        return iter(self.objects)

    def __contains__(self, key: ObjectKey) -> bool:
        return key in self.objects

    def get(self, key: ObjectKey) -> Optional[Any]:
        return self.objects.get(key)

    def keys(self, schema_name: Optional[str] = None) -> List[ObjectKey]:
        if schema_name is None:
            return list(self.objects)
        return [k for k in self.objects if k.schema_name == schema_name]

    @property
    def schemas(self) -> List[str]:
        return sorted({k.schema_name for k in self.objects})

    def put(self, key: ObjectKey, definition: Any):
        self.objects[key] = definition

    def add_text(self, schema_name: str, object_type: ObjectType, name: str, ddl: str,
                 parent_name: Optional[str] = None) -> ObjectKey:
        key = ObjectKey(schema_name, object_type, name, parent_name)
        self.objects[key] = ddl
        return key

    def add(self, schema_name: str, definition: BaseModel) -> ObjectKey:
        """Register a structured definition, flattening a table's children"""
        if isinstance(definition, TableDefinition):
            key = ObjectKey(schema_name, ObjectType.TABLE, definition.name)
            for column in definition.columns:
                self.add(schema_name, column.model_copy(update={"table_name": definition.name}))
            for index in definition.indexes:
                self.add(schema_name, index.model_copy(update={"table_name": definition.name}))
            for constraint in definition.constraints:
                self.add(schema_name, constraint.model_copy(update={"table_name": definition.name}))
            for trigger in definition.triggers:
                self.add(schema_name, trigger.model_copy(update={"table_name": definition.name}))
            definition = definition.model_copy(update={
                "indexes": [], "constraints": [], "triggers": [],
            })
        else:
            key = key_for(schema_name, definition)
        self.objects[key] = definition
        return key

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaSnapshot":
        """
        Build a snapshot from its JSON form.

        {"instance": "prod", "schemas": {"public": {"tables": [...], "views": [...], ...}}}

        Any item may be {"name": ..., "ddl": "CREATE ..."} to supply literal
        DDL text; it then also needs "object_type" unless its section implies one.
        """
        snapshot = cls(instance=data.get("instance", "snapshot"))
        if data.get("captured_at"):
            snapshot.captured_at = datetime.fromisoformat(str(data["captured_at"]))

        for schema_name, sections in (data.get("schemas") or {}).items():
            for section, items in sections.items():
                for item in items or []:
                    snapshot._load_item(schema_name, section, item)
        return snapshot

    def _load_item(self, schema_name: str, section: str, item: Dict[str, Any]):
        if "ddl" in item:
            if item.get("object_type"):
                object_type = ObjectType.parse(item["object_type"])
            elif section in SECTION_TEXT_TYPES:
                object_type = SECTION_TEXT_TYPES[section]
            else:
                raise ValueError(f"DDL item '{item.get('name')}' in '{section}' needs an object_type")
            self.add_text(schema_name, object_type, item["name"], item["ddl"], item.get("table_name"))
            return

        model = SECTION_MODELS.get(section)
        if model is None:
            raise ValueError(f"Unknown snapshot section '{section}'")
        definition = model.model_validate(item)
        if section == "materialized_views":
            definition = definition.model_copy(update={"materialized": True})
        elif section == "procedures":
            definition = definition.model_copy(update={"kind": "procedure"})
        self.add(schema_name, definition)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "SchemaSnapshot":
        with open(path, "r") as f:
            snapshot = cls.from_dict(json.load(f))
        if snapshot.instance == "snapshot":
            snapshot.instance = Path(path).stem
        return snapshot

    def to_dict(self) -> Dict[str, Any]:
        schemas: Dict[str, Dict[str, List[Any]]] = {}
        for key, definition in sorted(self.objects.items(), key=lambda kv: str(kv[0])):
            sections = schemas.setdefault(key.schema_name, {})
            if isinstance(definition, str):
                item = {
                    "name": key.object_name,
                    "object_type": key.object_type.value,
                    "ddl": definition,
                }
                if key.parent_name:
                    item["table_name"] = key.parent_name
                sections.setdefault("ddl", []).append(item)
            else:
                section = TYPE_SECTIONS[key.object_type]
                sections.setdefault(section, []).append(definition.model_dump(exclude_none=True))
        return {
            "instance": self.instance,
            "captured_at": self.captured_at.isoformat(),
            "schemas": schemas,
        }


SECTION_TEXT_TYPES: Dict[str, ObjectType] = {
    "tables": ObjectType.TABLE,
    "columns": ObjectType.COLUMN,
    "indexes": ObjectType.INDEX,
    "views": ObjectType.VIEW,
    "materialized_views": ObjectType.MATERIALIZED_VIEW,
    "functions": ObjectType.FUNCTION,
    "procedures": ObjectType.PROCEDURE,
    "triggers": ObjectType.TRIGGER,
    "sequences": ObjectType.SEQUENCE,
    "extensions": ObjectType.EXTENSION,
}

TYPE_SECTIONS: Dict[ObjectType, str] = {
    ObjectType.TABLE: "tables",
    ObjectType.COLUMN: "columns",
    ObjectType.INDEX: "indexes",
    ObjectType.CONSTRAINT_PRIMARY: "constraints",
    ObjectType.CONSTRAINT_FOREIGN: "constraints",
    ObjectType.CONSTRAINT_UNIQUE: "constraints",
    ObjectType.CONSTRAINT_CHECK: "constraints",
    ObjectType.VIEW: "views",
    ObjectType.MATERIALIZED_VIEW: "views",
    ObjectType.FUNCTION: "functions",
    ObjectType.PROCEDURE: "functions",
    ObjectType.TRIGGER: "triggers",
    ObjectType.SEQUENCE: "sequences",
    ObjectType.TYPE_ENUM: "types",
    ObjectType.TYPE_COMPOSITE: "types",
    ObjectType.TYPE_DOMAIN: "types",
    ObjectType.EXTENSION: "extensions",
}


def key_for(schema_name: str, definition: BaseModel) -> ObjectKey:
    """Snapshot key for a structured definition other than a table"""
    if isinstance(definition, ColumnDefinition):
        return ObjectKey(schema_name, ObjectType.COLUMN, definition.name, definition.table_name)
    if isinstance(definition, IndexDefinition):
        return ObjectKey(schema_name, ObjectType.INDEX, definition.name, definition.table_name)
    if isinstance(definition, ConstraintDefinition):
        return ObjectKey(schema_name, definition.object_type, definition.name, definition.table_name)
    if isinstance(definition, TriggerDefinition):
        return ObjectKey(schema_name, ObjectType.TRIGGER, definition.name, definition.table_name)
    if isinstance(definition, ViewDefinition):
        object_type = ObjectType.MATERIALIZED_VIEW if definition.materialized else ObjectType.VIEW
        return ObjectKey(schema_name, object_type, definition.name)
    if isinstance(definition, RoutineDefinition):
        object_type = ObjectType.PROCEDURE if definition.kind.lower() == "procedure" else ObjectType.FUNCTION
        return ObjectKey(schema_name, object_type, definition.signature)
    if isinstance(definition, SequenceDefinition):
        return ObjectKey(schema_name, ObjectType.SEQUENCE, definition.name)
    if isinstance(definition, TypeDefinition):
        return ObjectKey(schema_name, definition.object_type, definition.name)
    if isinstance(definition, ExtensionDefinition):
        return ObjectKey(schema_name, ObjectType.EXTENSION, definition.name)
    if isinstance(definition, TableDefinition):
        return ObjectKey(schema_name, ObjectType.TABLE, definition.name)
    raise TypeError(f"Unsupported definition {type(definition).__name__}")


def rebase_definition(definition: Any, from_schema: str, to_schema: str) -> Any:
    """
    Copy of a definition whose references into from_schema point at to_schema.

    Used when two schemas with different names are compared, so that a
    foreign key to app.customers matches one to app_copy.customers.
    """
    if isinstance(definition, str) or from_schema == to_schema:
        return definition

    def move(name: Optional[str]) -> Optional[str]:
        if name and name.startswith(f"{from_schema}."):
            return f"{to_schema}.{name[len(from_schema) + 1:]}"
        return name

    if isinstance(definition, ConstraintDefinition) and definition.referenced_schema == from_schema:
        return definition.model_copy(update={"referenced_schema": to_schema})
    if isinstance(definition, TriggerDefinition):
        return definition.model_copy(update={"function_name": move(definition.function_name)})
    if isinstance(definition, ViewDefinition):
        return definition.model_copy(update={"depends_on": [move(n) for n in definition.depends_on]})
    if isinstance(definition, ColumnDefinition):
        default_value = definition.default_value
        if default_value:
            default_value = default_value.replace(f"'{from_schema}.", f"'{to_schema}.")
        return definition.model_copy(update={
            "data_type": move(definition.data_type),
            "default_value": default_value,
        })
    if isinstance(definition, TypeDefinition):
        return definition.model_copy(update={
            "base_type": move(definition.base_type),
            "attributes": [a.model_copy(update={"data_type": move(a.data_type)}) for a in definition.attributes],
        })
    if isinstance(definition, TableDefinition):
        return definition.model_copy(update={
            "columns": [rebase_definition(c, from_schema, to_schema) for c in definition.columns],
        })
    if isinstance(definition, ExtensionDefinition) and definition.schema_name == from_schema:
        return definition.model_copy(update={"schema_name": to_schema})
    return definition
