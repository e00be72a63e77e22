from typing import Any, List, Optional
import logging

from .base_comparer import BaseComparer, qualify
from models.base import AttributeDifference, ObjectKey, ObjectType
from models.snapshot import ConstraintDefinition

logger = logging.getLogger(__name__)

DEFAULT_REFERENTIAL_ACTION = "NO ACTION"


def _action(value: Optional[str]) -> str:
    return (value or DEFAULT_REFERENTIAL_ACTION).upper()


class ConstraintComparer(BaseComparer):
    """Compare primary key, foreign key, unique and check constraints"""

    definition_models = {
        ObjectType.CONSTRAINT_PRIMARY: ConstraintDefinition,
        ObjectType.CONSTRAINT_FOREIGN: ConstraintDefinition,
        ObjectType.CONSTRAINT_UNIQUE: ConstraintDefinition,
        ObjectType.CONSTRAINT_CHECK: ConstraintDefinition,
    }

    def compare_definitions(
        self,
        key: ObjectKey,
        source: ConstraintDefinition,
        destination: ConstraintDefinition
    ) -> List[AttributeDifference]:
        if key.object_type == ObjectType.CONSTRAINT_PRIMARY:
            return self.collect(
                self.attribute("columns", source.columns, destination.columns, breaking=True,
                               description="Primary key columns changed"),
                self.attribute("deferrable", source.deferrable, destination.deferrable),
            )

        if key.object_type == ObjectType.CONSTRAINT_FOREIGN:
            return self.collect(
                self.attribute("columns", source.columns, destination.columns),
                self.attribute("referenced_table",
                               self._referenced_name(key, source), self._referenced_name(key, destination)),
                self.attribute("referenced_columns", source.referenced_columns, destination.referenced_columns),
                self.attribute("on_update", _action(source.on_update), _action(destination.on_update)),
                self.attribute("on_delete", _action(source.on_delete), _action(destination.on_delete)),
                self.attribute("deferrable", source.deferrable, destination.deferrable),
            )

        if key.object_type == ObjectType.CONSTRAINT_CHECK:
            return self.collect(
                self.attribute("expression", source.expression, destination.expression),
                self.attribute("deferrable", source.deferrable, destination.deferrable),
            )

        return self.collect(
            self.attribute("columns", source.columns, destination.columns),
            self.attribute("deferrable", source.deferrable, destination.deferrable),
        )

    def _referenced_name(self, key: ObjectKey, definition: ConstraintDefinition) -> Optional[str]:
        if not definition.referenced_table:
            return None
        return qualify(definition.referenced_schema or key.schema_name, definition.referenced_table)

    def references(self, key: ObjectKey, definition: Any) -> List[str]:
        if key.object_type != ObjectType.CONSTRAINT_FOREIGN:
            return []
        referenced = self._referenced_name(key, definition)
        return [referenced] if referenced else []
