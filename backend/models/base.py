from pydantic import BaseModel, Field, PrivateAttr
from typing import Optional, List, Dict, Any, NamedTuple
from datetime import datetime
from enum import Enum
import uuid

from core.errors import ComparisonIssue, ErrorKind, ResultFrozenError, SchemaDriftError


class ObjectType(str, Enum):
    """Database object types covered by a comparison"""
    TABLE = "table"
    COLUMN = "column"
    INDEX = "index"
    CONSTRAINT_PRIMARY = "constraint_primary"
    CONSTRAINT_FOREIGN = "constraint_foreign"
    CONSTRAINT_UNIQUE = "constraint_unique"
    CONSTRAINT_CHECK = "constraint_check"
    VIEW = "view"
    MATERIALIZED_VIEW = "materialized_view"
    FUNCTION = "function"
    PROCEDURE = "procedure"
    TRIGGER = "trigger"
    SEQUENCE = "sequence"
    TYPE_ENUM = "type_enum"
    TYPE_COMPOSITE = "type_composite"
    TYPE_DOMAIN = "type_domain"
    EXTENSION = "extension"

    @property
    def display_name(self) -> str:
        return OBJECT_TYPE_LABELS[self]

    @classmethod
    def parse(cls, value: str) -> "ObjectType":
        """Accept either the enum value or its upper-case name"""
        try:
            return cls(value.lower())
        except ValueError:
            return cls[value.upper()]


OBJECT_TYPE_LABELS: Dict[ObjectType, str] = {
    ObjectType.TABLE: "Table",
    ObjectType.COLUMN: "Column",
    ObjectType.INDEX: "Index",
    ObjectType.CONSTRAINT_PRIMARY: "Primary Key",
    ObjectType.CONSTRAINT_FOREIGN: "Foreign Key",
    ObjectType.CONSTRAINT_UNIQUE: "Unique Constraint",
    ObjectType.CONSTRAINT_CHECK: "Check Constraint",
    ObjectType.VIEW: "View",
    ObjectType.MATERIALIZED_VIEW: "Materialised View",
    ObjectType.FUNCTION: "Function",
    ObjectType.PROCEDURE: "Procedure",
    ObjectType.TRIGGER: "Trigger",
    ObjectType.SEQUENCE: "Sequence",
    ObjectType.TYPE_ENUM: "Enum Type",
    ObjectType.TYPE_COMPOSITE: "Composite Type",
    ObjectType.TYPE_DOMAIN: "Domain",
    ObjectType.EXTENSION: "Extension",
}


class DifferenceType(str, Enum):
    """How the destination differs from the source"""
    MISSING = "missing"    # in source only
    EXTRA = "extra"        # in destination only
    MODIFIED = "modified"  # in both, unequal


class Severity(str, Enum):
    """Severity levels for differences"""
    BREAKING = "breaking"  # DROP or data-loss-risk alteration
    WARNING = "warning"    # ALTER, may affect behaviour
    INFO = "info"          # Additive, safe


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SyncDirection(str, Enum):
    """Which way the generated migration script moves a schema"""
    SOURCE_TO_DESTINATION = "source_to_destination"
    DESTINATION_TO_SOURCE = "destination_to_source"


class WrapOption(str, Enum):
    """How generated statements are wrapped for execution"""
    SINGLE_TRANSACTION = "single_transaction"
    INDIVIDUAL_STATEMENTS = "individual_statements"
    SAVEPOINT_PER_OBJECT = "savepoint_per_object"


class ObjectKey(NamedTuple):
    """Identity of an object inside a snapshot"""
    schema_name: str
    object_type: ObjectType
    object_name: str
    parent_name: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        if self.parent_name:
            return f"{self.schema_name}.{self.parent_name}.{self.object_name}"
        return f"{self.schema_name}.{self.object_name}"

    def with_schema(self, schema_name: str) -> "ObjectKey":
        return self._replace(schema_name=schema_name)

    def __str__(self) -> str:
        return f"{self.object_type.value}:{self.qualified_name}"


class LockableModel(BaseModel):
    """Model that rejects field assignment once locked"""

    _locked: bool = PrivateAttr(default=False)

    def __setattr__(self, name: str, value: Any):
        if not name.startswith("_") and self._locked:
            raise ResultFrozenError(
                f"Cannot modify '{name}' on a completed comparison",
                {"model": type(self).__name__, "field": name},
            )
        super().__setattr__(name, value)

    def lock(self):
        self._locked = True

    def unlocked_copy(self):
        """Deep copy that can be modified again"""
        copy = self.model_copy(deep=True)
        copy._locked = False
        return copy

    @property
    def locked(self) -> bool:
        return self._locked


class AttributeDifference(BaseModel):
    """A single differing attribute of an object present on both sides"""
    model_config = {"frozen": True}

    attribute_name: str
    source_value: Optional[Any] = None
    destination_value: Optional[Any] = None
    breaking: bool = False
    description: Optional[str] = None

    def is_added(self) -> bool:
        return self.source_value is None and self.destination_value is not None

    def is_removed(self) -> bool:
        return self.source_value is not None and self.destination_value is None

    def is_modified(self) -> bool:
        return (
            self.source_value is not None
            and self.destination_value is not None
            and self.source_value != self.destination_value
        )


class ObjectDifference(LockableModel):
    """Represents one structurally differing object"""
    object_name: str
    schema_name: str
    object_type: ObjectType
    difference_type: DifferenceType
    severity: Severity = Severity.INFO
    severity_reason: Optional[str] = None

    source_definition: Optional[Any] = None
    destination_definition: Optional[Any] = None
    attribute_differences: List[AttributeDifference] = Field(default_factory=list)
    generated_ddl: Optional[str] = None

    # Lightweight dependency graph
    parent_object_name: Optional[str] = None
    dependent_objects: List[str] = Field(default_factory=list)
    referenced_objects: List[str] = Field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.schema_name, self.object_type, self.object_name, self.parent_object_name)

    @property
    def qualified_name(self) -> str:
        return self.key.qualified_name

    @property
    def parent_qualified_name(self) -> Optional[str]:
        if not self.parent_object_name:
            return None
        return f"{self.schema_name}.{self.parent_object_name}"

    @property
    def is_breaking(self) -> bool:
        return self.severity == Severity.BREAKING

    @property
    def description(self) -> str:
        label = self.object_type.display_name
        if self.difference_type == DifferenceType.MISSING:
            return f"{label} '{self.qualified_name}' exists only in source"
        if self.difference_type == DifferenceType.EXTRA:
            return f"{label} '{self.qualified_name}' exists only in destination"
        changed = ", ".join(a.attribute_name for a in self.attribute_differences)
        return f"{label} '{self.qualified_name}' differs ({changed})"


class ComparisonSummary(LockableModel):
    """
    Running counts for one comparison.

    Counters are written through by add_difference; they are never rebuilt
    from the difference list.
    """
    missing: int = 0
    extra: int = 0
    modified: int = 0
    total_differences: int = 0
    matching_objects: int = 0

    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_object_type: Dict[str, int] = Field(default_factory=dict)
    objects_compared: Dict[str, int] = Field(default_factory=dict)

    def record_difference(self, diff: ObjectDifference):
        self._check_open()
        if diff.difference_type == DifferenceType.MISSING:
            self.missing += 1
        elif diff.difference_type == DifferenceType.EXTRA:
            self.extra += 1
        else:
            self.modified += 1
        self.total_differences += 1

        severity = diff.severity.value
        self.by_severity[severity] = self.by_severity.get(severity, 0) + 1
        obj_type = diff.object_type.value
        self.by_object_type[obj_type] = self.by_object_type.get(obj_type, 0) + 1

    def record_compared(self, object_type: ObjectType):
        self._check_open()
        key = object_type.value
        self.objects_compared[key] = self.objects_compared.get(key, 0) + 1

    def record_match(self):
        self._check_open()
        self.matching_objects += 1

    def _check_open(self):
        if self.locked:
            raise ResultFrozenError("Cannot record into a completed summary")

    @property
    def total_compared(self) -> int:
        return sum(self.objects_compared.values())

    @property
    def breaking_count(self) -> int:
        return self.by_severity.get(Severity.BREAKING.value, 0)

    @property
    def status_label(self) -> str:
        if self.total_differences == 0:
            return "Identical"
        if self.breaking_count:
            return "Breaking changes"
        return "Differences found"


class MigrationStatement(BaseModel):
    """One rendered DDL block belonging to one difference"""
    object_name: str
    object_type: ObjectType
    difference_type: DifferenceType
    severity: Severity
    phase: str  # "teardown" or "apply"
    sql: str
    requires_review: bool = False


class ScriptOptions(BaseModel):
    """Options for migration script generation"""
    direction: SyncDirection = SyncDirection.SOURCE_TO_DESTINATION
    wrap_option: WrapOption = WrapOption.SINGLE_TRANSACTION
    include_drops: bool = True
    auto_apply_breaking: bool = False


class MigrationScript(BaseModel):
    """Generated migration script"""
    comparison_id: str
    source_label: str
    destination_label: str
    direction: SyncDirection = SyncDirection.SOURCE_TO_DESTINATION
    wrap_option: WrapOption = WrapOption.SINGLE_TRANSACTION
    generated_at: datetime = Field(default_factory=datetime.now)

    statements: List[MigrationStatement] = Field(default_factory=list)
    skipped_objects: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    estimated_impact: Dict[str, Any] = Field(default_factory=dict)
    data_loss_risk: bool = False
    script: str = ""

    @property
    def statement_count(self) -> int:
        return len(self.statements)

    @property
    def review_count(self) -> int:
        return sum(1 for s in self.statements if s.requires_review)


class SchemaComparisonResult(LockableModel):
    """One comparison run: differences, summary and the generated script"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_instance: str
    destination_instance: str
    source_schema: Optional[str] = None
    destination_schema: Optional[str] = None
    compared_at: datetime = Field(default_factory=datetime.now)

    summary: ComparisonSummary = Field(default_factory=ComparisonSummary)
    differences: List[ObjectDifference] = Field(default_factory=list)
    filter: Optional[Any] = None
    performed_by: Optional[str] = None

    status: RunStatus = RunStatus.RUNNING
    duration_millis: Optional[int] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    issues: List[ComparisonIssue] = Field(default_factory=list)
    migration_script: Optional[MigrationScript] = None

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def add_difference(self, diff: ObjectDifference):
        """Append a difference and update the summary counters"""
        if self.status != RunStatus.RUNNING:
            raise ResultFrozenError(
                f"Comparison {self.id} is {self.status.value}; no more differences may be added",
                {"comparison_id": self.id},
                object_key=str(diff.key),
            )
        self.differences.append(diff)
        self.summary.record_difference(diff)

    def add_issue(self, issue: ComparisonIssue):
        if self.status != RunStatus.RUNNING:
            raise ResultFrozenError(f"Comparison {self.id} is already complete")
        self.issues.append(issue)

    def mark_succeeded(self, duration_millis: int):
        self.duration_millis = duration_millis
        self.status = RunStatus.SUCCEEDED
        self._freeze()

    def mark_failed(self, error: SchemaDriftError, duration_millis: int):
        self.duration_millis = duration_millis
        self.error_message = error.message
        self.error_kind = error.kind
        self.issues.append(error.to_issue())
        self.status = RunStatus.FAILED
        self._freeze()

    def _freeze(self):
        for diff in self.differences:
            diff.lock()
        self.summary.lock()
        self.lock()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_differences_by_severity(self, severity: Severity) -> List[ObjectDifference]:
        return [d for d in self.differences if d.severity == severity]

    def get_differences_by_type(self, object_type: ObjectType) -> List[ObjectDifference]:
        return [d for d in self.differences if d.object_type == object_type]

    def get_differences_by_diff_type(self, difference_type: DifferenceType) -> List[ObjectDifference]:
        return [d for d in self.differences if d.difference_type == difference_type]

    def is_identical(self) -> bool:
        return self.status != RunStatus.FAILED and self.summary.total_differences == 0

    def has_breaking_changes(self) -> bool:
        return any(d.severity == Severity.BREAKING for d in self.differences)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def comparison_label(self) -> str:
        source = f"{self.source_instance}/{self.source_schema}" if self.source_schema else self.source_instance
        destination = (
            f"{self.destination_instance}/{self.destination_schema}"
            if self.destination_schema else self.destination_instance
        )
        return f"{source} -> {destination}"


class ComparisonProfile(BaseModel):
    """Saved comparison profile"""
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    source_dsn: str
    destination_dsn: str
    source_schema: str = "public"
    destination_schema: Optional[str] = None
    filter_preset: Optional[str] = None
    exclude_patterns: Optional[str] = None
    use_regex: bool = False
    excluded_object_types: List[ObjectType] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_comparison_id: Optional[str] = None
