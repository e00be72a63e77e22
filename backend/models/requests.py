from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from core.config import settings
from models.base import ObjectType, ScriptOptions
from models.filter import ComparisonFilter, build_filter


class FilterOptions(BaseModel):
    """Filter settings as sent by API clients and stored in profiles"""
    preset: Optional[str] = None
    patterns: Optional[str] = None
    use_regex: bool = False
    include_patterns: Optional[str] = None
    exclude_schemas: Optional[str] = None
    excluded_object_types: List[ObjectType] = Field(default_factory=list)
    included_object_types: List[ObjectType] = Field(default_factory=list)
    skipped_categories: List[str] = Field(default_factory=list)

    def to_filter(self) -> ComparisonFilter:
        return build_filter(
            preset=self.preset or settings.DEFAULT_FILTER_PRESET,
            patterns=self.patterns,
            use_regex=self.use_regex,
            include_patterns=self.include_patterns,
            exclude_schemas=self.exclude_schemas,
            excluded_types=self.excluded_object_types,
            included_types=self.included_object_types,
            skipped_categories=self.skipped_categories,
        )


class SnapshotCompareRequest(BaseModel):
    """Compare two inline snapshots (the JSON snapshot file format)"""
    source: Dict[str, Any]
    destination: Dict[str, Any]
    source_schema: Optional[str] = None
    destination_schema: Optional[str] = None
    filter: FilterOptions = Field(default_factory=FilterOptions)
    script_options: Optional[ScriptOptions] = None
    performed_by: Optional[str] = None


class DatabaseCompareRequest(BaseModel):
    """Compare two live databases (or snapshot files on the server)"""
    source_dsn: str
    destination_dsn: str
    source_schema: str = "public"
    destination_schema: Optional[str] = None
    filter: FilterOptions = Field(default_factory=FilterOptions)
    script_options: Optional[ScriptOptions] = None
    performed_by: Optional[str] = None


class DatabaseTestRequest(BaseModel):
    dsn: str


class SnapshotCaptureRequest(BaseModel):
    dsn: str
    schema_name: str = "public"
