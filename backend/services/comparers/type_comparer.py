from typing import Any, List, Optional
import logging

from .base_comparer import BaseComparer, qualify
from .table_comparer import base_type_name, is_widening, type_change
from models.base import AttributeDifference, ObjectKey, ObjectType
from models.snapshot import ExtensionDefinition, TypeDefinition

logger = logging.getLogger(__name__)


class TypeComparer(BaseComparer):
    """Compare enum, composite and domain types"""

    definition_models = {
        ObjectType.TYPE_ENUM: TypeDefinition,
        ObjectType.TYPE_COMPOSITE: TypeDefinition,
        ObjectType.TYPE_DOMAIN: TypeDefinition,
    }

    def compare_definitions(
        self,
        key: ObjectKey,
        source: TypeDefinition,
        destination: TypeDefinition
    ) -> List[AttributeDifference]:
        kind = self.attribute("kind", source.kind, destination.kind, breaking=True)
        if kind is not None:
            return [kind]

        if key.object_type == ObjectType.TYPE_ENUM:
            return self.collect(self._enum_values(source, destination))

        if key.object_type == ObjectType.TYPE_COMPOSITE:
            return self._composite_attributes(source, destination)

        return self.collect(
            type_change(self, "base_type", source.base_type, destination.base_type),
            self.attribute("default_value", source.default_value, destination.default_value),
            self.attribute("not_null", source.not_null, destination.not_null),
            self.attribute("check_expression", source.check_expression, destination.check_expression),
        )

    def _enum_values(self, source: TypeDefinition, destination: TypeDefinition) -> Optional[AttributeDifference]:
        removed = [v for v in source.enum_values if v not in destination.enum_values]
        added = [v for v in destination.enum_values if v not in source.enum_values]
        if removed:
            description = f"Labels removed: {', '.join(removed)}"
        elif added:
            description = f"Labels added: {', '.join(added)}"
        else:
            description = "Label order changed"
        # Postgres can only add enum labels in place
        breaking = bool(removed) or (not added and source.enum_values != destination.enum_values)
        return self.attribute("enum_values", source.enum_values, destination.enum_values,
                              breaking=breaking, description=description)

    def _composite_attributes(self, source: TypeDefinition, destination: TypeDefinition) -> List[AttributeDifference]:
        source_attrs = {a.name: a.data_type for a in source.attributes}
        destination_attrs = {a.name: a.data_type for a in destination.attributes}
        differences = []
        for name in list(source_attrs) + [n for n in destination_attrs if n not in source_attrs]:
            src_type = source_attrs.get(name)
            dst_type = destination_attrs.get(name)
            if src_type is not None and dst_type is not None:
                breaking = not is_widening(src_type, dst_type)
            else:
                breaking = src_type is not None
            diff = self.attribute(f"attribute:{name}", src_type, dst_type, breaking=breaking)
            if diff is not None:
                differences.append(diff)
        return differences

    def references(self, key: ObjectKey, definition: Any) -> List[str]:
        types = [definition.base_type] + [a.data_type for a in definition.attributes]
        return [qualify(key.schema_name, base_type_name(t)) for t in types if t]


class ExtensionComparer(BaseComparer):
    """Compare installed extensions"""

    definition_models = {ObjectType.EXTENSION: ExtensionDefinition}

    def compare_definitions(
        self,
        key: ObjectKey,
        source: ExtensionDefinition,
        destination: ExtensionDefinition
    ) -> List[AttributeDifference]:
        return self.collect(
            self.attribute("version", source.version, destination.version),
            self.attribute("schema_name", source.schema_name, destination.schema_name),
        )
