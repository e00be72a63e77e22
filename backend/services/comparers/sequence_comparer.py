from typing import List
import logging

from .base_comparer import BaseComparer
from .table_comparer import type_change
from models.base import AttributeDifference, ObjectKey, ObjectType
from models.snapshot import SequenceDefinition

logger = logging.getLogger(__name__)


class SequenceComparer(BaseComparer):
    """Compare sequence options"""

    definition_models = {ObjectType.SEQUENCE: SequenceDefinition}

    def compare_definitions(
        self,
        key: ObjectKey,
        source: SequenceDefinition,
        destination: SequenceDefinition
    ) -> List[AttributeDifference]:
        return self.collect(
            type_change(self, "data_type", source.data_type, destination.data_type),
            self.attribute("start_value", source.start_value, destination.start_value),
            self.attribute("increment", source.increment, destination.increment),
            self.attribute("min_value", source.min_value, destination.min_value),
            self.attribute("max_value", source.max_value, destination.max_value),
            self.attribute("cache_size", source.cache_size, destination.cache_size),
            self.attribute("cycle", source.cycle, destination.cycle),
            self.attribute("owned_by", source.owned_by, destination.owned_by),
        )
