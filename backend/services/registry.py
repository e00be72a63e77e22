"""
Single lookup table for everything that varies by object type.

Comparer strategy, apply rank, SQL keyword and the classification flags all
live here, so no other module branches on ObjectType for these concerns.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Type

from models.base import ObjectType
from services.comparers.base_comparer import BaseComparer
from services.comparers.constraint_comparer import ConstraintComparer
from services.comparers.index_comparer import IndexComparer
from services.comparers.routine_comparer import FunctionComparer, TriggerComparer, ViewComparer
from services.comparers.sequence_comparer import SequenceComparer
from services.comparers.table_comparer import TableComparer
from services.comparers.type_comparer import ExtensionComparer, TypeComparer


@dataclass(frozen=True)
class ObjectTypeSpec:
    object_type: ObjectType
    comparer: Type[BaseComparer]
    rank: int           # lower ranks are created first and dropped last
    keyword: str        # SQL keyword used in CREATE / DROP
    holds_data: bool = False
    guards_data: bool = False
    table_scoped: bool = False


OBJECT_TYPE_SPECS: Mapping[ObjectType, ObjectTypeSpec] = MappingProxyType({
    spec.object_type: spec for spec in (
        ObjectTypeSpec(ObjectType.EXTENSION, ExtensionComparer, 10, "EXTENSION"),
        ObjectTypeSpec(ObjectType.TYPE_ENUM, TypeComparer, 20, "TYPE"),
        ObjectTypeSpec(ObjectType.TYPE_COMPOSITE, TypeComparer, 21, "TYPE"),
        ObjectTypeSpec(ObjectType.TYPE_DOMAIN, TypeComparer, 22, "DOMAIN", guards_data=True),
        ObjectTypeSpec(ObjectType.SEQUENCE, SequenceComparer, 30, "SEQUENCE"),
        ObjectTypeSpec(ObjectType.TABLE, TableComparer, 40, "TABLE", holds_data=True),
        ObjectTypeSpec(ObjectType.COLUMN, TableComparer, 50, "COLUMN", holds_data=True, table_scoped=True),
        ObjectTypeSpec(ObjectType.CONSTRAINT_PRIMARY, ConstraintComparer, 60, "CONSTRAINT",
                       guards_data=True, table_scoped=True),
        ObjectTypeSpec(ObjectType.CONSTRAINT_UNIQUE, ConstraintComparer, 61, "CONSTRAINT",
                       guards_data=True, table_scoped=True),
        ObjectTypeSpec(ObjectType.CONSTRAINT_CHECK, ConstraintComparer, 62, "CONSTRAINT",
                       guards_data=True, table_scoped=True),
        ObjectTypeSpec(ObjectType.CONSTRAINT_FOREIGN, ConstraintComparer, 70, "CONSTRAINT",
                       guards_data=True, table_scoped=True),
        ObjectTypeSpec(ObjectType.INDEX, IndexComparer, 80, "INDEX", table_scoped=True),
        ObjectTypeSpec(ObjectType.VIEW, ViewComparer, 90, "VIEW"),
        ObjectTypeSpec(ObjectType.MATERIALIZED_VIEW, ViewComparer, 91, "MATERIALIZED VIEW"),
        ObjectTypeSpec(ObjectType.FUNCTION, FunctionComparer, 100, "FUNCTION"),
        ObjectTypeSpec(ObjectType.PROCEDURE, FunctionComparer, 101, "PROCEDURE"),
        ObjectTypeSpec(ObjectType.TRIGGER, TriggerComparer, 110, "TRIGGER", table_scoped=True),
    )
})

# Types whose name is matched against table filter patterns
RELATION_TYPES = frozenset({ObjectType.TABLE, ObjectType.VIEW, ObjectType.MATERIALIZED_VIEW})


def spec_for(object_type: ObjectType) -> ObjectTypeSpec:
    return OBJECT_TYPE_SPECS[object_type]


def rank_of(object_type: ObjectType) -> int:
    return OBJECT_TYPE_SPECS[object_type].rank


def build_comparers() -> Dict[ObjectType, BaseComparer]:
    """One comparer instance per object type, shared between types of the same category"""
    instances: Dict[Type[BaseComparer], BaseComparer] = {}
    comparers = {}
    for object_type, spec in OBJECT_TYPE_SPECS.items():
        if spec.comparer not in instances:
            instances[spec.comparer] = spec.comparer()
        comparers[object_type] = instances[spec.comparer]
    return comparers
