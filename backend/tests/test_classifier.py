"""
Unit tests for DifferenceClassifier
"""

import pytest
from typing import List, Optional

from services.classifier import DifferenceClassifier, SEVERITY_RULES, SeverityRule
from models.base import AttributeDifference, DifferenceType, ObjectDifference, ObjectType, Severity
from models.snapshot import ColumnDefinition


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def classifier() -> DifferenceClassifier:
    return DifferenceClassifier()


def _create_difference(
    object_type: ObjectType,
    difference_type: DifferenceType,
    attributes: Optional[List[AttributeDifference]] = None,
    destination=None,
    name: str = "orders",
    parent: Optional[str] = None
) -> ObjectDifference:
    return ObjectDifference(
        object_name=name,
        schema_name="public",
        object_type=object_type,
        difference_type=difference_type,
        attribute_differences=attributes or [],
        destination_definition=destination,
        parent_object_name=parent,
    )


# ============================================================================
# Severity table
# ============================================================================

class TestDifferenceClassifier:
    """Tests for the ordered severity rules"""

    def test_missing_table_is_breaking(self, classifier):
        diff = _create_difference(ObjectType.TABLE, DifferenceType.MISSING, name="legacy_users")
        assert classifier.classify(diff) == Severity.BREAKING

    def test_missing_column_is_breaking(self, classifier):
        diff = _create_difference(ObjectType.COLUMN, DifferenceType.MISSING, name="status", parent="orders")
        assert classifier.classify(diff) == Severity.BREAKING

    @pytest.mark.parametrize("object_type", [ObjectType.INDEX, ObjectType.VIEW, ObjectType.FUNCTION])
    def test_missing_non_data_objects_warn(self, classifier, object_type):
        diff = _create_difference(object_type, DifferenceType.MISSING)
        assert classifier.classify(diff) == Severity.WARNING

    def test_extra_index_is_info(self, classifier):
        diff = _create_difference(ObjectType.INDEX, DifferenceType.EXTRA)
        assert classifier.classify(diff) == Severity.INFO

    @pytest.mark.parametrize("object_type", [
        ObjectType.CONSTRAINT_CHECK, ObjectType.CONSTRAINT_FOREIGN, ObjectType.TYPE_DOMAIN
    ])
    def test_extra_data_guard_warns(self, classifier, object_type):
        diff = _create_difference(object_type, DifferenceType.EXTRA)
        assert classifier.classify(diff) == Severity.WARNING

    def test_extra_required_column_warns(self, classifier):
        column = ColumnDefinition(name="region", data_type="text", nullable=False)
        diff = _create_difference(ObjectType.COLUMN, DifferenceType.EXTRA, destination=column, name="region",
                                  parent="orders")
        assert classifier.classify(diff) == Severity.WARNING

    def test_extra_required_column_with_default_is_info(self, classifier):
        column = ColumnDefinition(name="region", data_type="text", nullable=False, default_value="'eu'::text")
        diff = _create_difference(ObjectType.COLUMN, DifferenceType.EXTRA, destination=column, name="region",
                                  parent="orders")
        assert classifier.classify(diff) == Severity.INFO

    def test_breaking_attribute_wins(self, classifier):
        diff = _create_difference(ObjectType.COLUMN, DifferenceType.MODIFIED, [
            AttributeDifference(attribute_name="data_type", source_value="varchar(50)",
                                destination_value="varchar(20)", breaking=True),
        ])
        assert classifier.classify(diff) == Severity.BREAKING

    def test_non_breaking_modification_warns(self, classifier):
        diff = _create_difference(ObjectType.COLUMN, DifferenceType.MODIFIED, [
            AttributeDifference(attribute_name="data_type", source_value="varchar(20)",
                                destination_value="varchar(50)"),
        ])
        assert classifier.classify(diff) == Severity.WARNING

    def test_comment_only_change_is_info(self, classifier):
        diff = _create_difference(ObjectType.TABLE, DifferenceType.MODIFIED, [
            AttributeDifference(attribute_name="comment", source_value="a", destination_value="b"),
            AttributeDifference(attribute_name="owner", source_value="app", destination_value="admin"),
        ])
        assert classifier.classify(diff) == Severity.INFO

    def test_apply_sets_severity_and_reason(self, classifier):
        diff = _create_difference(ObjectType.TABLE, DifferenceType.MISSING)

        returned = classifier.apply(diff)

        assert returned is diff
        assert diff.severity == Severity.BREAKING
        assert diff.severity_reason == "Object holding data exists only in the source and needs a backfill"

    def test_explain_names_the_rule(self, classifier):
        diff = _create_difference(ObjectType.INDEX, DifferenceType.EXTRA)
        assert classifier.explain(diff).name == "extra_object"

    def test_every_difference_type_is_covered(self, classifier):
        for object_type in ObjectType:
            for difference_type in DifferenceType:
                attributes = []
                if difference_type == DifferenceType.MODIFIED:
                    attributes = [AttributeDifference(attribute_name="x", source_value=1, destination_value=2)]
                diff = _create_difference(object_type, difference_type, attributes)
                assert classifier.classify(diff) in Severity

    def test_custom_rule_table(self):
        everything_info = SeverityRule("all", Severity.INFO, lambda diff: True, "Anything goes")
        classifier = DifferenceClassifier(rules=[everything_info])

        diff = _create_difference(ObjectType.TABLE, DifferenceType.MISSING)
        assert classifier.classify(diff) == Severity.INFO

    def test_empty_rule_table_raises(self):
        diff = _create_difference(ObjectType.TABLE, DifferenceType.MISSING)

        with pytest.raises(ValueError):
            DifferenceClassifier(rules=()).classify(diff)

    def test_rule_names_are_unique(self):
        names = [rule.name for rule in SEVERITY_RULES]
        assert len(names) == len(set(names))
