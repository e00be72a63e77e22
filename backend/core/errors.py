"""
Structured errors for schema comparison runs.

Every failure carries a kind and a context dict so the API and CLI layers can
tell "no differences" apart from "comparison could not run".
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Categories of problems a comparison run can report"""
    SNAPSHOT_FAILED = "snapshot_failed"
    INVALID_FILTER_PATTERN = "invalid_filter_pattern"
    DEPENDENCY_CYCLE = "dependency_cycle"
    UNSUPPORTED_DEFINITION = "unsupported_definition"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    RESULT_FROZEN = "result_frozen"
    INTERNAL = "internal"


class ComparisonIssue(BaseModel):
    """Non-fatal note attached to a comparison result"""
    kind: ErrorKind
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    object_key: Optional[str] = None


class SchemaDriftError(Exception):
    """Base class for all schema-drift errors"""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 object_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.object_key = object_key

    def to_issue(self) -> ComparisonIssue:
        return ComparisonIssue(
            kind=self.kind,
            message=self.message,
            context=self.context,
            object_key=self.object_key,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "context": self.context}


class SnapshotError(SchemaDriftError):
    """Source or destination snapshot could not be captured or loaded"""
    kind = ErrorKind.SNAPSHOT_FAILED


class FilterPatternError(SchemaDriftError):
    """A filter pattern is not a valid regular expression"""
    kind = ErrorKind.INVALID_FILTER_PATTERN


class DependencyCycleError(SchemaDriftError):
    """Differences reference each other in a loop and cannot be ordered"""
    kind = ErrorKind.DEPENDENCY_CYCLE


class UnsupportedDefinitionError(SchemaDriftError):
    """An object definition has a shape the comparer does not understand"""
    kind = ErrorKind.UNSUPPORTED_DEFINITION


class ComparisonTimeoutError(SchemaDriftError):
    kind = ErrorKind.TIMEOUT


class ComparisonCancelledError(SchemaDriftError):
    kind = ErrorKind.CANCELLED


class ResultFrozenError(SchemaDriftError):
    """Raised when a finished comparison result is modified"""
    kind = ErrorKind.RESULT_FROZEN
