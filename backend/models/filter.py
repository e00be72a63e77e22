"""
Inclusion / exclusion rules deciding which objects take part in a comparison.
"""

import re
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Pattern, Tuple

from pydantic import BaseModel

from models.base import ObjectType


TEMP_TABLE_PATTERNS: Tuple[str, ...] = ("temp_*", "tmp_*", "*_backup", "*_bak", "zz_*")
SYSTEM_SCHEMA_PATTERNS: Tuple[str, ...] = ("pg_catalog", "information_schema", "pg_toast")


class FilterPreset(str, Enum):
    """Named filter configurations"""
    NONE = "NONE"
    EXCLUDE_TEMP_TABLES = "EXCLUDE_TEMP_TABLES"
    EXCLUDE_SYSTEM_SCHEMAS = "EXCLUDE_SYSTEM_SCHEMAS"
    PRODUCTION_SAFE = "PRODUCTION_SAFE"

    @property
    def display_name(self) -> str:
        return PRESET_TABLE[self]["display_name"]

    @classmethod
    def parse(cls, value: str) -> "FilterPreset":
        return cls(value.strip().upper().replace("-", "_"))


# Loaded once, never mutated
PRESET_TABLE: Mapping[FilterPreset, Mapping[str, object]] = MappingProxyType({
    FilterPreset.NONE: MappingProxyType({
        "display_name": "No filters",
        "table_patterns": (),
        "schema_patterns": (),
    }),
    FilterPreset.EXCLUDE_TEMP_TABLES: MappingProxyType({
        "display_name": "Exclude temp/backup tables",
        "table_patterns": TEMP_TABLE_PATTERNS,
        "schema_patterns": (),
    }),
    FilterPreset.EXCLUDE_SYSTEM_SCHEMAS: MappingProxyType({
        "display_name": "Exclude system schemas",
        "table_patterns": (),
        "schema_patterns": SYSTEM_SCHEMA_PATTERNS,
    }),
    FilterPreset.PRODUCTION_SAFE: MappingProxyType({
        "display_name": "Production-safe defaults",
        "table_patterns": TEMP_TABLE_PATTERNS,
        "schema_patterns": SYSTEM_SCHEMA_PATTERNS,
    }),
})

# Object-type groups used by the per-category include toggles
OBJECT_CATEGORIES: Mapping[str, FrozenSet[ObjectType]] = MappingProxyType({
    "tables": frozenset({ObjectType.TABLE}),
    "columns": frozenset({ObjectType.COLUMN}),
    "indexes": frozenset({ObjectType.INDEX}),
    "primary_keys": frozenset({ObjectType.CONSTRAINT_PRIMARY}),
    "foreign_keys": frozenset({ObjectType.CONSTRAINT_FOREIGN}),
    "unique_constraints": frozenset({ObjectType.CONSTRAINT_UNIQUE}),
    "check_constraints": frozenset({ObjectType.CONSTRAINT_CHECK}),
    "views": frozenset({ObjectType.VIEW, ObjectType.MATERIALIZED_VIEW}),
    "functions": frozenset({ObjectType.FUNCTION, ObjectType.PROCEDURE}),
    "triggers": frozenset({ObjectType.TRIGGER}),
    "sequences": frozenset({ObjectType.SEQUENCE}),
    "types": frozenset({ObjectType.TYPE_ENUM, ObjectType.TYPE_COMPOSITE, ObjectType.TYPE_DOMAIN}),
    "extensions": frozenset({ObjectType.EXTENSION}),
})


def wildcard_to_regex(wildcard: str) -> str:
    """Translate a `*` / `?` wildcard into an anchored regular expression"""
    parts = ["^"]
    for char in wildcard:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    parts.append("$")
    return "".join(parts)


@lru_cache(maxsize=512)
def _compile(pattern: str, use_regex: bool) -> Optional[Pattern]:
    """Compiled form of a pattern, or None when it is not a valid regex"""
    source = pattern if use_regex else wildcard_to_regex(pattern)
    try:
        return re.compile(source)
    except re.error:
        return None


def split_patterns(patterns: Optional[str]) -> Tuple[str, ...]:
    if not patterns:
        return ()
    return tuple(p.strip() for p in patterns.split(",") if p.strip())


class ComparisonFilter(BaseModel):
    """
    Immutable filter configuration.

    Modifier methods return a new filter, so one instance can be shared
    between concurrent comparison runs.
    """
    model_config = {"frozen": True}

    included_object_types: FrozenSet[ObjectType] = frozenset()
    excluded_object_types: FrozenSet[ObjectType] = frozenset()
    exclude_table_patterns: Tuple[str, ...] = ()
    exclude_schema_patterns: Tuple[str, ...] = ()
    include_table_patterns: Tuple[str, ...] = ()
    use_regex: bool = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_preset(cls, preset: FilterPreset) -> "ComparisonFilter":
        entry = PRESET_TABLE[preset]
        return cls(
            exclude_table_patterns=tuple(entry["table_patterns"]),
            exclude_schema_patterns=tuple(entry["schema_patterns"]),
        )

    @classmethod
    def from_pattern_string(cls, patterns: Optional[str], use_regex: bool = False) -> "ComparisonFilter":
        """Build a filter excluding every table that matches a comma-separated pattern list"""
        return cls(exclude_table_patterns=split_patterns(patterns), use_regex=use_regex)

    def excluding_types(self, *object_types: ObjectType) -> "ComparisonFilter":
        return self.model_copy(update={
            "excluded_object_types": self.excluded_object_types | frozenset(object_types),
            "included_object_types": self.included_object_types - frozenset(object_types),
        })

    def including_types(self, *object_types: ObjectType) -> "ComparisonFilter":
        return self.model_copy(update={
            "included_object_types": self.included_object_types | frozenset(object_types),
            "excluded_object_types": self.excluded_object_types - frozenset(object_types),
        })

    def with_category(self, category: str, include: bool) -> "ComparisonFilter":
        """Toggle a category; switching one on only lifts its exclusion"""
        types = OBJECT_CATEGORIES[category]
        if include:
            return self.model_copy(update={
                "excluded_object_types": self.excluded_object_types - types,
            })
        return self.excluding_types(*types)

    def with_patterns(
        self,
        exclude_tables: Iterable[str] = (),
        exclude_schemas: Iterable[str] = (),
        include_tables: Iterable[str] = (),
    ) -> "ComparisonFilter":
        return self.model_copy(update={
            "exclude_table_patterns": self.exclude_table_patterns + tuple(exclude_tables),
            "exclude_schema_patterns": self.exclude_schema_patterns + tuple(exclude_schemas),
            "include_table_patterns": self.include_table_patterns + tuple(include_tables),
        })

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def matches_object_type(self, object_type: ObjectType) -> bool:
        if object_type in self.excluded_object_types:
            return False
        return not self.included_object_types or object_type in self.included_object_types

    def includes_category(self, category: str) -> bool:
        return any(self.matches_object_type(t) for t in OBJECT_CATEGORIES[category])

    def matches_schema(self, schema_name: Optional[str]) -> bool:
        return not any(self._matches(schema_name, p) for p in self.exclude_schema_patterns)

    def matches_table(self, schema_name: Optional[str], table_name: Optional[str]) -> bool:
        """Evaluate schema exclusions, then table exclusions, then the table allowlist"""
        if not self.matches_schema(schema_name):
            return False

        for pattern in self.exclude_table_patterns:
            if self._matches(table_name, pattern):
                return False

        if self.include_table_patterns:
            return any(self._matches(table_name, p) for p in self.include_table_patterns)

        return True

    def _matches(self, value: Optional[str], pattern: Optional[str]) -> bool:
        if value is None or pattern is None:
            return False
        compiled = _compile(pattern, self.use_regex)
        if compiled is None:
            # Invalid regex never matches
            return False
        return compiled.fullmatch(value) is not None

    # ------------------------------------------------------------------
    # Validation and reporting
    # ------------------------------------------------------------------

    @property
    def all_patterns(self) -> Tuple[str, ...]:
        return self.exclude_schema_patterns + self.exclude_table_patterns + self.include_table_patterns

    def invalid_patterns(self) -> List[str]:
        """Patterns that cannot be compiled and will silently never match"""
        return [p for p in self.all_patterns if _compile(p, self.use_regex) is None]

    def has_filters(self) -> bool:
        return bool(
            self.exclude_table_patterns
            or self.exclude_schema_patterns
            or self.excluded_object_types
            or self.include_table_patterns
        )

    @property
    def summary(self) -> str:
        parts = []
        if self.exclude_table_patterns:
            parts.append("Excluding: " + ", ".join(self.exclude_table_patterns))
        if self.exclude_schema_patterns:
            parts.append("Excluding schemas: " + ", ".join(self.exclude_schema_patterns))
        if self.include_table_patterns:
            parts.append("Only: " + ", ".join(self.include_table_patterns))
        if self.excluded_object_types:
            names = sorted(t.value for t in self.excluded_object_types)
            parts.append("Excluding types: " + ", ".join(names))
        if not parts:
            return "No filters applied"
        return "; ".join(parts)

    def describe(self) -> Dict[str, object]:
        return {
            "summary": self.summary,
            "use_regex": self.use_regex,
            "exclude_table_patterns": list(self.exclude_table_patterns),
            "exclude_schema_patterns": list(self.exclude_schema_patterns),
            "include_table_patterns": list(self.include_table_patterns),
            "excluded_object_types": sorted(t.value for t in self.excluded_object_types),
            "skipped_categories": [c for c in OBJECT_CATEGORIES if not self.includes_category(c)],
        }


def build_filter(
    preset: Optional[str] = None,
    patterns: Optional[str] = None,
    use_regex: bool = False,
    include_patterns: Optional[str] = None,
    exclude_schemas: Optional[str] = None,
    excluded_types: Iterable[ObjectType] = (),
    included_types: Iterable[ObjectType] = (),
    skipped_categories: Iterable[str] = (),
) -> ComparisonFilter:
    """Combine a preset with comma-separated pattern lists and type toggles"""
    comparison_filter = ComparisonFilter()
    if preset:
        comparison_filter = ComparisonFilter.from_preset(FilterPreset.parse(preset))
        if use_regex:
            # Preset patterns are wildcards
            comparison_filter = comparison_filter.model_copy(update={
                "exclude_table_patterns": tuple(wildcard_to_regex(p) for p in comparison_filter.exclude_table_patterns),
                "exclude_schema_patterns": tuple(wildcard_to_regex(p) for p in comparison_filter.exclude_schema_patterns),
            })

    comparison_filter = comparison_filter.model_copy(update={"use_regex": use_regex})
    comparison_filter = comparison_filter.with_patterns(
        exclude_tables=split_patterns(patterns),
        exclude_schemas=split_patterns(exclude_schemas),
        include_tables=split_patterns(include_patterns),
    )

    excluded_types = tuple(excluded_types)
    included_types = tuple(included_types)
    if included_types:
        comparison_filter = comparison_filter.including_types(*included_types)
    if excluded_types:
        comparison_filter = comparison_filter.excluding_types(*excluded_types)
    for category in skipped_categories:
        if category not in OBJECT_CATEGORIES:
            raise ValueError(
                f"Unknown object category: {category} (expected one of {', '.join(OBJECT_CATEGORIES)})"
            )
        comparison_filter = comparison_filter.with_category(category, include=False)
    return comparison_filter


def list_presets() -> List[Dict[str, object]]:
    return [
        {
            "name": preset.value,
            "display_name": preset.display_name,
            "table_patterns": list(PRESET_TABLE[preset]["table_patterns"]),
            "schema_patterns": list(PRESET_TABLE[preset]["schema_patterns"]),
        }
        for preset in FilterPreset
    ]
