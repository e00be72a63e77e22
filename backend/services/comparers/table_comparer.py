from typing import List, Any, Optional, Tuple
import logging
import re

from .base_comparer import BaseComparer, qualify
from models.base import AttributeDifference, ObjectKey, ObjectType
from models.snapshot import ColumnDefinition, TableDefinition

logger = logging.getLogger(__name__)


# ============================================================================
# Data type compatibility
# ============================================================================

TYPE_ALIASES = {
    "character varying": "varchar",
    "character": "char",
    "bpchar": "char",
    "int": "integer",
    "int4": "integer",
    "int2": "smallint",
    "int8": "bigint",
    "serial": "integer",
    "serial4": "integer",
    "bigserial": "bigint",
    "serial8": "bigint",
    "smallserial": "smallint",
    "float4": "real",
    "float8": "double precision",
    "decimal": "numeric",
    "bool": "boolean",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "time with time zone": "timetz",
    "bit varying": "varbit",
}

INTEGER_RANK = {"smallint": 1, "integer": 2, "bigint": 3}
FLOAT_RANK = {"real": 1, "double precision": 2}
CHARACTER_TYPES = ("char", "varchar")

_TYPE_PATTERN = re.compile(r"^\s*(?P<name>[a-z_][a-z0-9_ .\"]*?)\s*(\((?P<args>[^)]*)\))?\s*(?P<array>(\[\])*)\s*$")


def parse_type(data_type: str) -> Tuple[str, Tuple[int, ...], bool]:
    """Split a type into (canonical name, numeric modifiers, is_array)"""
    text = data_type.strip().lower()
    match = _TYPE_PATTERN.match(text)
    if not match:
        return text, (), False
    name = TYPE_ALIASES.get(match.group("name").strip(), match.group("name").strip())
    args: Tuple[int, ...] = ()
    if match.group("args"):
        try:
            args = tuple(int(a.strip()) for a in match.group("args").split(","))
        except ValueError:
            args = ()
    return name, args, bool(match.group("array"))


def base_type_name(data_type: Optional[str]) -> Optional[str]:
    """Type name without modifiers or array brackets, for dependency lookups"""
    if not data_type:
        return None
    name = re.sub(r"\(.*\)", "", data_type).replace("[]", "").strip()
    return name or None


def is_widening(source_type: str, destination_type: str) -> bool:
    """
    True when every value of source_type fits destination_type unchanged.

    Identical types count as widening.
    """
    src_name, src_args, src_array = parse_type(source_type)
    dst_name, dst_args, dst_array = parse_type(destination_type)

    if src_array != dst_array:
        return False
    if (src_name, src_args) == (dst_name, dst_args):
        return True

    if src_name in CHARACTER_TYPES:
        if dst_name == "text":
            return True
        if dst_name == "varchar":
            if not dst_args:
                return True
            return bool(src_args) and dst_args[0] >= src_args[0]
        if dst_name == "char" and src_name == "char":
            return bool(src_args) and bool(dst_args) and dst_args[0] >= src_args[0]
        return False

    if src_name in INTEGER_RANK:
        if dst_name in INTEGER_RANK:
            return INTEGER_RANK[dst_name] >= INTEGER_RANK[src_name]
        if dst_name == "numeric":
            return not dst_args or (dst_args[0] - (dst_args[1] if len(dst_args) > 1 else 0)) >= 19
        return False

    if src_name in FLOAT_RANK and dst_name in FLOAT_RANK:
        return FLOAT_RANK[dst_name] >= FLOAT_RANK[src_name]

    if src_name == "numeric" and dst_name == "numeric":
        if not dst_args:
            return True
        if not src_args:
            return False
        src_precision, src_scale = src_args[0], (src_args[1] if len(src_args) > 1 else 0)
        dst_precision, dst_scale = dst_args[0], (dst_args[1] if len(dst_args) > 1 else 0)
        return dst_scale >= src_scale and (dst_precision - dst_scale) >= (src_precision - src_scale)

    if src_name == "varbit" and dst_name == "varbit":
        return not dst_args or (bool(src_args) and dst_args[0] >= src_args[0])

    if src_name in ("timestamp", "time") and dst_name == src_name:
        return not dst_args or (bool(src_args) and dst_args[0] >= src_args[0])

    return False


def type_change(comparer: BaseComparer, name: str, source_type: Optional[str],
                destination_type: Optional[str]) -> Optional[AttributeDifference]:
    """Attribute difference for a data type, breaking unless it widens"""
    if source_type and destination_type:
        if parse_type(source_type) == parse_type(destination_type):
            return None
        breaking = not is_widening(source_type, destination_type)
    else:
        breaking = True
    description = "Narrowing or incompatible type change" if breaking else "Type widened"
    return comparer.attribute(name, source_type, destination_type, breaking=breaking, description=description)


_NEXTVAL = re.compile(r"nextval\('([^']+)'", re.IGNORECASE)


class TableComparer(BaseComparer):
    """Compare table structures including columns"""

    definition_models = {
        ObjectType.TABLE: TableDefinition,
        ObjectType.COLUMN: ColumnDefinition,
    }

    def compare_definitions(self, key: ObjectKey, source: Any, destination: Any) -> List[AttributeDifference]:
        if key.object_type == ObjectType.COLUMN:
            return self.compare_columns(source, destination)
        return self.compare_tables(source, destination)

    def compare_tables(self, source: TableDefinition, destination: TableDefinition) -> List[AttributeDifference]:
        """Table-level attributes; columns are compared as separate objects"""
        return self.collect(
            self.attribute("partition_key", source.partition_key, destination.partition_key, breaking=True,
                           description="Partitioning change requires the table to be rebuilt"),
            self.attribute("owner", source.owner, destination.owner),
            self.attribute("comment", source.comment, destination.comment),
        )

    def compare_columns(self, source: ColumnDefinition, destination: ColumnDefinition) -> List[AttributeDifference]:
        nullable = self.attribute("nullable", source.nullable, destination.nullable)
        if nullable is not None and not destination.nullable:
            nullable = nullable.model_copy(update={"description": "Column becomes NOT NULL"})

        return self.collect(
            type_change(self, "data_type", source.data_type, destination.data_type),
            nullable,
            self.attribute("default_value", source.default_value, destination.default_value),
            self.attribute("collation", source.collation, destination.collation),
            self.attribute("identity", source.identity, destination.identity),
            self.attribute("comment", source.comment, destination.comment),
        )

    def references(self, key: ObjectKey, definition: Any) -> List[str]:
        if isinstance(definition, TableDefinition):
            columns = definition.columns
        else:
            columns = [definition]

        refs = []
        for column in columns:
            refs.append(qualify(key.schema_name, base_type_name(column.data_type)))
            if column.default_value:
                for sequence in _NEXTVAL.findall(column.default_value):
                    refs.append(qualify(key.schema_name, sequence))
        return [r for r in refs if r]
