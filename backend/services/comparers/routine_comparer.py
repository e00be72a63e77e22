from typing import Any, List
import logging

from .base_comparer import BaseComparer, DEFINITION_ATTRIBUTE, qualify
from models.base import AttributeDifference, ObjectKey, ObjectType
from models.snapshot import RoutineDefinition, TriggerDefinition, ViewDefinition

logger = logging.getLogger(__name__)


class ViewComparer(BaseComparer):
    """Compare views and materialised views by their query text"""

    definition_models = {
        ObjectType.VIEW: ViewDefinition,
        ObjectType.MATERIALIZED_VIEW: ViewDefinition,
    }

    def compare_definitions(
        self,
        key: ObjectKey,
        source: ViewDefinition,
        destination: ViewDefinition
    ) -> List[AttributeDifference]:
        return self.collect(
            self.attribute(DEFINITION_ATTRIBUTE, source.definition, destination.definition, breaking=True,
                           description="View query differs"),
            self.attribute("materialized", source.materialized, destination.materialized, breaking=True,
                           description="Changing between view and materialised view requires a rebuild"),
            self.attribute("owner", source.owner, destination.owner),
            self.attribute("comment", source.comment, destination.comment),
        )

    def references(self, key: ObjectKey, definition: Any) -> List[str]:
        return [qualify(key.schema_name, name) for name in definition.depends_on]


class FunctionComparer(BaseComparer):
    """Compare functions and procedures"""

    definition_models = {
        ObjectType.FUNCTION: RoutineDefinition,
        ObjectType.PROCEDURE: RoutineDefinition,
    }

    def compare_definitions(
        self,
        key: ObjectKey,
        source: RoutineDefinition,
        destination: RoutineDefinition
    ) -> List[AttributeDifference]:
        return self.collect(
            self.attribute(DEFINITION_ATTRIBUTE, source.definition, destination.definition, breaking=True,
                           description="Routine body differs"),
            self.attribute("return_type", source.return_type, destination.return_type, breaking=True,
                           description="Return type change requires DROP and CREATE"),
            self.attribute("language", source.language, destination.language),
            self.attribute("volatility", source.volatility, destination.volatility),
            self.attribute("strict", source.strict, destination.strict),
            self.attribute("security_definer", source.security_definer, destination.security_definer),
        )


class TriggerComparer(BaseComparer):
    """Compare triggers"""

    definition_models = {ObjectType.TRIGGER: TriggerDefinition}

    def compare_definitions(
        self,
        key: ObjectKey,
        source: TriggerDefinition,
        destination: TriggerDefinition
    ) -> List[AttributeDifference]:
        if not source.events and not destination.events and (source.definition or destination.definition):
            return self.collect(
                self.attribute(DEFINITION_ATTRIBUTE, source.definition, destination.definition, breaking=True),
                self.attribute("enabled", source.enabled, destination.enabled),
            )

        return self.collect(
            self.attribute("timing", source.timing, destination.timing, breaking=True),
            self.attribute("events", sorted(e.upper() for e in source.events),
                           sorted(e.upper() for e in destination.events), breaking=True),
            self.attribute("level", source.level, destination.level, breaking=True),
            self.attribute("function_name", source.function_name, destination.function_name, breaking=True),
            self.attribute("condition", source.condition, destination.condition),
            self.attribute("enabled", source.enabled, destination.enabled),
        )

    def references(self, key: ObjectKey, definition: Any) -> List[str]:
        if not definition.function_name:
            return []
        return [qualify(key.schema_name, definition.function_name.split("(")[0])]
