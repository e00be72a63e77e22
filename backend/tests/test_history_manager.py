"""
Unit tests for HistoryManager
"""

import pytest

from services.history_manager import HistoryManager
from models.base import DifferenceType, ObjectDifference, ObjectType, SchemaComparisonResult, Severity
from core.errors import SnapshotError


def _create_result(source: str = "prod", breaking: bool = False) -> SchemaComparisonResult:
    result = SchemaComparisonResult(source_instance=source, destination_instance="staging",
                                    source_schema="public", destination_schema="public")
    result.add_difference(ObjectDifference(
        object_name="legacy_users",
        schema_name="public",
        object_type=ObjectType.TABLE,
        difference_type=DifferenceType.MISSING,
        severity=Severity.BREAKING if breaking else Severity.WARNING,
    ))
    result.mark_succeeded(42)
    return result


@pytest.fixture
def manager(tmp_path) -> HistoryManager:
    return HistoryManager(str(tmp_path / "history" / "comparisons.json"), limit=3)


class TestHistoryManager:

    def test_file_is_created(self, manager):
        assert manager.history_file.exists()
        assert manager.get_recent() == []

    def test_add_and_get(self, manager):
        result = _create_result(breaking=True)

        manager.add_comparison(result)
        entry = manager.get_by_id(result.id)

        assert entry["label"] == "prod/public -> staging/public"
        assert entry["status"] == "succeeded"
        assert entry["status_label"] == "Breaking changes"
        assert entry["difference_count"] == 1
        assert entry["summary"]["missing"] == 1
        assert entry["summary"]["by_severity"] == {"breaking": 1}
        assert entry["duration_millis"] == 42

    def test_failed_run_is_recorded(self, manager):
        result = SchemaComparisonResult(source_instance="prod", destination_instance="staging")
        result.mark_failed(SnapshotError("Could not read source snapshot"), 3)

        manager.add_comparison(result)

        entry = manager.get_by_id(result.id)
        assert entry["status"] == "failed"
        assert entry["status_label"] == "Failed"
        assert entry["error_message"] == "Could not read source snapshot"

    def test_most_recent_first_and_limited(self, manager):
        results = [_create_result(source=f"db{i}") for i in range(5)]
        for result in results:
            manager.add_comparison(result)

        recent = manager.get_recent()

        assert [e["id"] for e in recent] == [r.id for r in reversed(results[2:])]
        assert manager.get_by_id(results[0].id) is None
        assert len(manager.get_recent(limit=1)) == 1

    def test_clear_history(self, manager):
        manager.add_comparison(_create_result())

        manager.clear_history()

        assert manager.get_recent() == []

    def test_corrupt_file_reads_as_empty(self, manager):
        manager.history_file.write_text("{broken")

        assert manager.get_recent() == []
