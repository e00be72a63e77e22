from typing import List
import logging

from .base_comparer import BaseComparer, DEFINITION_ATTRIBUTE
from models.base import AttributeDifference, ObjectKey, ObjectType
from models.snapshot import IndexDefinition

logger = logging.getLogger(__name__)


class IndexComparer(BaseComparer):
    """Compare database indexes"""

    definition_models = {ObjectType.INDEX: IndexDefinition}

    def compare_definitions(
        self,
        key: ObjectKey,
        source: IndexDefinition,
        destination: IndexDefinition
    ) -> List[AttributeDifference]:
        # Indexes captured only as pg_get_indexdef() text
        if not source.columns and not destination.columns:
            if source.definition or destination.definition:
                return self.collect(self.attribute(
                    DEFINITION_ATTRIBUTE, source.definition, destination.definition,
                    description="Index definition differs; index must be rebuilt",
                ))

        return self.collect(
            self.attribute("index_type", source.index_type, destination.index_type),
            self.attribute("columns", source.columns, destination.columns),
            self.attribute("include_columns", source.include_columns or None, destination.include_columns or None),
            self.attribute("unique", source.unique, destination.unique),
            self.attribute("where_clause", source.where_clause, destination.where_clause),
        )