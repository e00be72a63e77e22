"""
Severity policy for schema differences.

The whole policy is the ordered SEVERITY_RULES table below: the first rule
whose predicate holds decides the severity.
"""

from dataclasses import dataclass
from typing import Callable, Sequence, Tuple
import logging

from models.base import DifferenceType, ObjectDifference, ObjectType, Severity
from models.snapshot import ColumnDefinition
from services.registry import spec_for

logger = logging.getLogger(__name__)

COSMETIC_ATTRIBUTES = frozenset({"comment", "owner"})


@dataclass(frozen=True)
class SeverityRule:
    name: str
    severity: Severity
    applies: Callable[[ObjectDifference], bool]
    reason: str


def _has_breaking_attribute(diff: ObjectDifference) -> bool:
    return any(a.breaking for a in diff.attribute_differences)


def _missing_data_holder(diff: ObjectDifference) -> bool:
    return diff.difference_type == DifferenceType.MISSING and spec_for(diff.object_type).holds_data


def _missing(diff: ObjectDifference) -> bool:
    return diff.difference_type == DifferenceType.MISSING


def _extra_data_guard(diff: ObjectDifference) -> bool:
    return diff.difference_type == DifferenceType.EXTRA and spec_for(diff.object_type).guards_data


def _extra_required_column(diff: ObjectDifference) -> bool:
    if diff.difference_type != DifferenceType.EXTRA or diff.object_type != ObjectType.COLUMN:
        return False
    column = diff.destination_definition
    if not isinstance(column, ColumnDefinition):
        return False
    return not column.nullable and not column.default_value and not column.identity


def _extra(diff: ObjectDifference) -> bool:
    return diff.difference_type == DifferenceType.EXTRA


def _cosmetic_only(diff: ObjectDifference) -> bool:
    return (
        diff.difference_type == DifferenceType.MODIFIED
        and bool(diff.attribute_differences)
        and all(a.attribute_name in COSMETIC_ATTRIBUTES for a in diff.attribute_differences)
    )


def _modified(diff: ObjectDifference) -> bool:
    return diff.difference_type == DifferenceType.MODIFIED


SEVERITY_RULES: Tuple[SeverityRule, ...] = (
    SeverityRule("breaking_attribute", Severity.BREAKING, _has_breaking_attribute,
                 "An attribute change cannot be applied without data loss or a rebuild"),
    SeverityRule("missing_data_holder", Severity.BREAKING, _missing_data_holder,
                 "Object holding data exists only in the source and needs a backfill"),
    SeverityRule("missing_object", Severity.WARNING, _missing,
                 "Object exists only in the source"),
    SeverityRule("extra_data_guard", Severity.WARNING, _extra_data_guard,
                 "New constraint may reject existing rows"),
    SeverityRule("extra_required_column", Severity.WARNING, _extra_required_column,
                 "New NOT NULL column without a default fails on non-empty tables"),
    SeverityRule("extra_object", Severity.INFO, _extra,
                 "Additive change"),
    SeverityRule("cosmetic_change", Severity.INFO, _cosmetic_only,
                 "Only comments or ownership differ"),
    SeverityRule("modified_object", Severity.WARNING, _modified,
                 "Requires ALTER; may change behaviour"),
)


class DifferenceClassifier:
    """Assign a severity to each difference from an ordered rule table"""

    def __init__(self, rules: Sequence[SeverityRule] = SEVERITY_RULES):
        self.rules = tuple(rules)

    def explain(self, diff: ObjectDifference) -> SeverityRule:
        """The rule that decides this difference's severity"""
        for rule in self.rules:
            if rule.applies(diff):
                return rule
        raise ValueError(f"No severity rule matches {diff.key}")

    def classify(self, diff: ObjectDifference) -> Severity:
        return self.explain(diff).severity

    def apply(self, diff: ObjectDifference) -> ObjectDifference:
        """Set severity and its reason on the difference"""
        rule = self.explain(diff)
        diff.severity = rule.severity
        diff.severity_reason = rule.reason
        logger.debug(f"{diff.key} classified {rule.severity.value} by rule '{rule.name}'")
        return diff
