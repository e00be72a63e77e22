from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Tuple
import logging
import re

from models.base import (
    AttributeDifference, DifferenceType, ObjectDifference, ObjectKey, ObjectType
)
from core.errors import UnsupportedDefinitionError

logger = logging.getLogger(__name__)

DEFINITION_ATTRIBUTE = "Definition"

_WHITESPACE = re.compile(r"\s+")


def normalize_definition(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace, strip trailing semicolons and lowercase"""
    if text is None:
        return None
    normalized = _WHITESPACE.sub(" ", str(text)).strip()
    normalized = normalized.rstrip(";").rstrip()
    return normalized.lower()


def _normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        normalized = normalize_definition(value)
        return normalized if normalized else None
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


def qualify(schema_name: str, name: Optional[str]) -> Optional[str]:
    """Qualify a bare object name with the schema it lives in"""
    if not name:
        return None
    name = name.strip().strip('"')
    if "." in name:
        return name
    return f"{schema_name}.{name}"


class BaseComparer(ABC):
    """Base class for all database object comparers"""

    # ObjectType -> structured definition model accepted for it
    definition_models: Dict[ObjectType, type] = {}

    @property
    def object_types(self) -> Tuple[ObjectType, ...]:
        return tuple(self.definition_models)

    def compare(
        self,
        key: ObjectKey,
        source: Optional[Any],
        destination: Optional[Any]
    ) -> Optional[ObjectDifference]:
        """Compare one object; returns None when both sides match or both are absent"""
        if source is None and destination is None:
            return None

        if source is not None and destination is None:
            self._check_shape(key, source)
            return self.create_difference(key, DifferenceType.MISSING, source, None)

        if source is None:
            self._check_shape(key, destination)
            return self.create_difference(key, DifferenceType.EXTRA, None, destination)

        self._check_shape(key, source)
        self._check_shape(key, destination)

        if isinstance(source, str) != isinstance(destination, str):
            raise UnsupportedDefinitionError(
                f"Cannot compare DDL text with a structured definition for {key}",
                {"object_type": key.object_type.value},
                object_key=str(key),
            )

        if isinstance(source, str):
            attributes = self.compare_text(source, destination)
        else:
            attributes = self.compare_definitions(key, source, destination)

        if not attributes:
            return None

        return self.create_difference(key, DifferenceType.MODIFIED, source, destination, attributes)

    @abstractmethod
    def compare_definitions(
        self,
        key: ObjectKey,
        source: Any,
        destination: Any
    ) -> List[AttributeDifference]:
        """Attribute-level differences between two structured definitions"""
        pass

    def references(self, key: ObjectKey, definition: Any) -> List[str]:
        """Qualified names of other objects this definition needs to exist"""
        return []

    def compare_text(self, source: str, destination: str) -> List[AttributeDifference]:
        if normalize_definition(source) == normalize_definition(destination):
            return []
        return [AttributeDifference(
            attribute_name=DEFINITION_ATTRIBUTE,
            source_value=source,
            destination_value=destination,
            breaking=True,
            description="Definition text differs",
        )]

    def create_difference(
        self,
        key: ObjectKey,
        difference_type: DifferenceType,
        source: Optional[Any],
        destination: Optional[Any],
        attributes: Optional[List[AttributeDifference]] = None
    ) -> ObjectDifference:
        references: List[str] = []
        for definition in (source, destination):
            if definition is None or isinstance(definition, str):
                continue
            for ref in self.references(key, definition):
                if ref and ref not in references and ref != key.qualified_name:
                    references.append(ref)

        return ObjectDifference(
            object_name=key.object_name,
            schema_name=key.schema_name,
            object_type=key.object_type,
            difference_type=difference_type,
            source_definition=source,
            destination_definition=destination,
            attribute_differences=attributes or [],
            parent_object_name=key.parent_name,
            referenced_objects=references,
        )

    def attribute(
        self,
        name: str,
        source_value: Any,
        destination_value: Any,
        breaking: bool = False,
        description: Optional[str] = None
    ) -> Optional[AttributeDifference]:
        """AttributeDifference when the normalized values differ, else None"""
        if _normalize_value(source_value) == _normalize_value(destination_value):
            return None
        return AttributeDifference(
            attribute_name=name,
            source_value=_empty_to_none(source_value),
            destination_value=_empty_to_none(destination_value),
            breaking=breaking,
            description=description,
        )

    def collect(self, *attributes: Optional[AttributeDifference]) -> List[AttributeDifference]:
        return [a for a in attributes if a is not None]

    def _check_shape(self, key: ObjectKey, definition: Any):
        if isinstance(definition, str):
            if not definition.strip():
                raise UnsupportedDefinitionError(
                    f"Empty DDL text for {key}", object_key=str(key)
                )
            return
        expected = self.definition_models.get(key.object_type)
        if expected is None or not isinstance(definition, expected):
            raise UnsupportedDefinitionError(
                f"{type(self).__name__} cannot compare a {type(definition).__name__} as {key.object_type.value}",
                {"object_type": key.object_type.value, "definition": type(definition).__name__},
                object_key=str(key),
            )


def _empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value
