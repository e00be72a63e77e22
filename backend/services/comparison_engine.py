import asyncio
import time
from typing import List, Dict, Any, Optional, Tuple
import logging

from models.base import (
    DifferenceType, ObjectDifference, ObjectKey, ObjectType, RunStatus,
    SchemaComparisonResult, ScriptOptions, MigrationScript, SyncDirection
)
from models.filter import ComparisonFilter
from models.snapshot import SchemaSnapshot, rebase_definition
from core.cancellation import CancellationToken, Deadline
from core.config import settings
from core.constants import EXIT_BREAKING, EXIT_DIFFERENCES, EXIT_FAILED, EXIT_IDENTICAL
from core.errors import (
    ErrorKind, FilterPatternError, SchemaDriftError, SnapshotError, UnsupportedDefinitionError
)
from services.classifier import DifferenceClassifier
from services.dependency_resolver import DependencyResolver, ResolvedOrder
from services.generators.ddl_generator import DdlGenerator
from services.registry import RELATION_TYPES, build_comparers, rank_of, spec_for
from services.snapshot_loader import SnapshotLoader

logger = logging.getLogger(__name__)


def default_script_options() -> ScriptOptions:
    return ScriptOptions(
        direction=SyncDirection(settings.DEFAULT_SYNC_DIRECTION),
        wrap_option=settings.DEFAULT_WRAP_OPTION,
    )


class ComparisonEngine:
    """Main engine that orchestrates schema comparison"""

    def __init__(
        self,
        classifier: Optional[DifferenceClassifier] = None,
        strict_patterns: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
        loader: Optional[SnapshotLoader] = None
    ):
        self.comparers = build_comparers()
        self.classifier = classifier or DifferenceClassifier()
        self.strict_patterns = settings.STRICT_FILTER_PATTERNS if strict_patterns is None else strict_patterns
        self.timeout_seconds = settings.COMPARISON_TIMEOUT if timeout_seconds is None else timeout_seconds
        self.loader = loader or SnapshotLoader()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def compare_snapshots(
        self,
        source: SchemaSnapshot,
        destination: SchemaSnapshot,
        source_schema: Optional[str] = None,
        destination_schema: Optional[str] = None,
        comparison_filter: Optional[ComparisonFilter] = None,
        script_options: Optional[ScriptOptions] = None,
        performed_by: Optional[str] = None,
        token: Optional[CancellationToken] = None
    ) -> SchemaComparisonResult:
        """Compare two snapshots and return a completed (frozen) result"""
        comparison_filter = comparison_filter or ComparisonFilter()
        script_options = script_options or default_script_options()
        destination_schema = destination_schema or source_schema

        result = SchemaComparisonResult(
            source_instance=source.instance,
            destination_instance=destination.instance,
            source_schema=source_schema,
            destination_schema=destination_schema,
            filter=comparison_filter.describe(),
            performed_by=performed_by,
        )
        started = time.monotonic()
        deadline = Deadline(self.timeout_seconds, token)
        logger.info(f"Comparison {result.id}: {result.comparison_label} ({comparison_filter.summary})")

        try:
            self._check_patterns(result, comparison_filter)
            self._scan(result, source, destination, source_schema, destination_schema, comparison_filter, deadline)
            self.link_dependencies(result.differences)
            result.migration_script = self._build_script(result, script_options)
            result.mark_succeeded(self._elapsed_millis(started))
            logger.info(
                f"Comparison {result.id} complete: {result.summary.total_differences} differences "
                f"({result.summary.status_label}) in {result.duration_millis}ms"
            )
        except SchemaDriftError as e:
            logger.error(f"Comparison {result.id} failed: {e.message}")
            result.mark_failed(e, self._elapsed_millis(started))
        except Exception as e:
            logger.exception(f"Comparison {result.id} failed unexpectedly")
            error = SchemaDriftError(f"Internal error: {e}", {"exception": type(e).__name__})
            result.mark_failed(error, self._elapsed_millis(started))

        return result

    async def compare_databases(
        self,
        source_location: str,
        destination_location: str,
        source_schema: Optional[str] = None,
        destination_schema: Optional[str] = None,
        comparison_filter: Optional[ComparisonFilter] = None,
        script_options: Optional[ScriptOptions] = None,
        performed_by: Optional[str] = None,
        token: Optional[CancellationToken] = None
    ) -> SchemaComparisonResult:
        """Capture both snapshots, then compare them off the event loop"""
        destination_schema = destination_schema or source_schema
        started = time.monotonic()

        try:
            source = await self.loader.load(source_location, source_schema, label="source")
            destination = await self.loader.load(destination_location, destination_schema, label="destination")
        except SnapshotError as e:
            logger.error(f"Snapshot capture failed: {e.message}")
            result = SchemaComparisonResult(
                source_instance=SnapshotLoader.describe_location(source_location),
                destination_instance=SnapshotLoader.describe_location(destination_location),
                source_schema=source_schema,
                destination_schema=destination_schema,
                filter=(comparison_filter or ComparisonFilter()).describe(),
                performed_by=performed_by,
            )
            result.mark_failed(e, self._elapsed_millis(started))
            return result

        return await asyncio.to_thread(
            self.compare_snapshots,
            source,
            destination,
            source_schema,
            destination_schema,
            comparison_filter,
            script_options,
            performed_by,
            token,
        )

    def generate_script(
        self,
        result: SchemaComparisonResult,
        script_options: Optional[ScriptOptions] = None
    ) -> MigrationScript:
        """Render a script for a finished comparison without touching the frozen result"""
        if result.status == RunStatus.FAILED:
            raise SchemaDriftError(
                f"Comparison {result.id} failed; no migration script can be generated",
                {"comparison_id": result.id, "error_kind": result.error_kind},
            )
        script_options = script_options or default_script_options()
        differences = [d.unlocked_copy() for d in result.differences]
        if script_options.direction == SyncDirection.DESTINATION_TO_SOURCE:
            differences = self.mirror_differences(differences)
        self.link_dependencies(differences)
        resolved = DependencyResolver(differences).resolve()
        return self._render(result, resolved, script_options)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _check_patterns(self, result: SchemaComparisonResult, comparison_filter: ComparisonFilter):
        invalid = comparison_filter.invalid_patterns()
        if not invalid:
            return
        error = FilterPatternError(
            f"Invalid filter pattern(s): {', '.join(invalid)}",
            {"patterns": invalid, "use_regex": comparison_filter.use_regex},
        )
        if self.strict_patterns:
            raise error
        logger.warning(f"Comparison {result.id}: {error.message}; they will never match")
        result.add_issue(error.to_issue())

    def collect_keys(
        self,
        snapshot: SchemaSnapshot,
        schema_name: Optional[str],
        as_schema: Optional[str],
        comparison_filter: ComparisonFilter
    ) -> Dict[ObjectKey, Any]:
        """Filtered definitions keyed under, and referring to, the schema name they are compared as"""
        collected = {}
        for key in snapshot.keys(schema_name):
            definition = snapshot.get(key)
            if as_schema and key.schema_name != as_schema:
                definition = rebase_definition(definition, key.schema_name, as_schema)
                key = key.with_schema(as_schema)
            if self.is_included(key, comparison_filter):
                collected[key] = definition
        return collected

    def is_included(self, key: ObjectKey, comparison_filter: ComparisonFilter) -> bool:
        if not comparison_filter.matches_object_type(key.object_type):
            return False
        if key.object_type in RELATION_TYPES:
            return comparison_filter.matches_table(key.schema_name, key.object_name)
        if spec_for(key.object_type).table_scoped and key.parent_name:
            return comparison_filter.matches_table(key.schema_name, key.parent_name)
        return comparison_filter.matches_schema(key.schema_name)

    def _scan(
        self,
        result: SchemaComparisonResult,
        source: SchemaSnapshot,
        destination: SchemaSnapshot,
        source_schema: Optional[str],
        destination_schema: Optional[str],
        comparison_filter: ComparisonFilter,
        deadline: Deadline
    ):
        source_objects = self.collect_keys(source, source_schema, None, comparison_filter)
        destination_objects = self.collect_keys(destination, destination_schema, source_schema, comparison_filter)

        keys = sorted(
            set(source_objects) | set(destination_objects),
            key=lambda k: (rank_of(k.object_type), k.qualified_name),
        )
        logger.debug(
            f"Comparison {result.id}: {len(source_objects)} source and "
            f"{len(destination_objects)} destination objects after filtering"
        )

        for key in keys:
            deadline.check(str(key))
            if self._folded_into_table(key, source_objects, destination_objects):
                continue

            result.summary.record_compared(key.object_type)
            comparer = self.comparers[key.object_type]
            try:
                diff = comparer.compare(key, source_objects.get(key), destination_objects.get(key))
            except UnsupportedDefinitionError as e:
                logger.warning(f"Skipping {key}: {e.message}")
                result.add_issue(e.to_issue())
                continue

            if diff is None:
                result.summary.record_match()
                continue

            self.classifier.apply(diff)
            result.add_difference(diff)

        for object_type, count in sorted(result.summary.objects_compared.items()):
            logger.debug(f"Comparison {result.id}: compared {count} {object_type} objects")

    def _folded_into_table(
        self,
        key: ObjectKey,
        source_objects: Dict[ObjectKey, Any],
        destination_objects: Dict[ObjectKey, Any]
    ) -> bool:
        """Columns of a table present on one side only belong to its CREATE/DROP"""
        if key.object_type != ObjectType.COLUMN or not key.parent_name:
            return False
        table = ObjectKey(key.schema_name, ObjectType.TABLE, key.parent_name)
        return (table in source_objects) != (table in destination_objects)

    # ------------------------------------------------------------------
    # Dependencies and scripts
    # ------------------------------------------------------------------

    def link_dependencies(self, differences: List[ObjectDifference]):
        """Record each difference as a dependent of the differences it needs"""
        by_name: Dict[str, List[ObjectDifference]] = {}
        for diff in differences:
            by_name.setdefault(diff.qualified_name, []).append(diff)
            base = diff.qualified_name.split("(", 1)[0]
            if base != diff.qualified_name:
                by_name.setdefault(base, []).append(diff)

        for diff in differences:
            prerequisites = list(diff.referenced_objects)
            if diff.parent_qualified_name:
                prerequisites.append(diff.parent_qualified_name)
            for name in prerequisites:
                for prerequisite in by_name.get(name, []):
                    if prerequisite is diff:
                        continue
                    if diff.qualified_name not in prerequisite.dependent_objects:
                        prerequisite.dependent_objects.append(diff.qualified_name)

    def mirror_differences(self, differences: List[ObjectDifference]) -> List[ObjectDifference]:
        """Re-run each comparison with the sides swapped and classify the result"""
        mirrored = []
        for diff in differences:
            comparer = self.comparers[diff.object_type]
            swapped = comparer.compare(diff.key, diff.destination_definition, diff.source_definition)
            if swapped is None:
                continue
            mirrored.append(self.classifier.apply(swapped))
        return mirrored

    def _build_script(self, result: SchemaComparisonResult, script_options: ScriptOptions) -> MigrationScript:
        if script_options.direction == SyncDirection.DESTINATION_TO_SOURCE:
            differences = self.mirror_differences(result.differences)
            self.link_dependencies(differences)
        else:
            differences = result.differences

        resolved = DependencyResolver(differences).resolve()
        if resolved.has_cycles:
            result.add_issue(resolved.cycle_error().to_issue())
        return self._render(result, resolved, script_options)

    def _render(
        self,
        result: SchemaComparisonResult,
        resolved: ResolvedOrder,
        script_options: ScriptOptions
    ) -> MigrationScript:
        source_label, destination_label = self._labels(result)
        # Differences are keyed under the source schema; a forward script runs against the destination
        target_schema = None
        if (script_options.direction == SyncDirection.SOURCE_TO_DESTINATION
                and result.destination_schema != result.source_schema):
            target_schema = result.destination_schema
        generator = DdlGenerator(
            include_drops=script_options.include_drops,
            auto_apply_breaking=script_options.auto_apply_breaking,
            wrap_option=script_options.wrap_option,
            direction=script_options.direction,
            target_schema=target_schema,
        )
        script = generator.generate(resolved, result.id, source_label, destination_label)
        logger.info(
            f"Comparison {result.id}: generated {script.statement_count} statements "
            f"({script.review_count} for review, {len(script.skipped_objects)} skipped)"
        )
        return script

    def _labels(self, result: SchemaComparisonResult) -> Tuple[str, str]:
        source = f"{result.source_instance}/{result.source_schema or '*'}"
        destination = f"{result.destination_instance}/{result.destination_schema or '*'}"
        return source, destination

    def _elapsed_millis(self, started: float) -> int:
        return int((time.monotonic() - started) * 1000)


def exit_code_for(result: SchemaComparisonResult) -> int:
    """CLI exit code: identical, differences, breaking differences or failure"""
    if result.status == RunStatus.FAILED:
        return EXIT_FAILED
    if result.is_identical():
        return EXIT_IDENTICAL
    if result.has_breaking_changes():
        return EXIT_BREAKING
    return EXIT_DIFFERENCES


def summarize_issues(result: SchemaComparisonResult) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for issue in result.issues:
        kind = issue.kind.value if isinstance(issue.kind, ErrorKind) else str(issue.kind)
        counts[kind] = counts.get(kind, 0) + 1
    return counts


def difference_types(result: SchemaComparisonResult) -> Dict[str, int]:
    return {
        DifferenceType.MISSING.value: result.summary.missing,
        DifferenceType.EXTRA.value: result.summary.extra,
        DifferenceType.MODIFIED.value: result.summary.modified,
    }
