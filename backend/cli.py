"""
schema-drift command line.

    schema-drift compare --source <dsn|snapshot.json> --dest <dsn|snapshot.json> --schema public
    schema-drift presets

Exit codes: 0 identical, 1 non-breaking differences, 2 breaking differences,
3 comparison failed.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from core.config import settings
from core.constants import EXIT_FAILED, EXIT_IDENTICAL
from models.base import ObjectType, ScriptOptions, SyncDirection, WrapOption
from models.filter import OBJECT_CATEGORIES, FilterPreset, build_filter, list_presets, split_patterns
from services.comparison_engine import ComparisonEngine, exit_code_for, summarize_issues

logger = logging.getLogger("schema_drift.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schema-drift",
        description="schema-drift: compare PostgreSQL schemas and plan migrations"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compare = subparsers.add_parser("compare", help="Compare two schemas")
    compare.add_argument("--source", required=True, help="Source postgres:// DSN or snapshot .json file")
    compare.add_argument("--dest", required=True, help="Destination postgres:// DSN or snapshot .json file")
    compare.add_argument("--schema", help="Schema to compare (default: public for live databases)")
    compare.add_argument("--dest-schema", help="Destination schema when it is named differently")

    filters = compare.add_argument_group("filtering")
    filters.add_argument(
        "--filter",
        choices=[p.value for p in FilterPreset],
        type=lambda v: v.strip().upper().replace("-", "_"),
        help="Named filter preset"
    )
    filters.add_argument("--pattern", help="Comma-separated table patterns to exclude")
    filters.add_argument("--regex", action="store_true", help="Treat patterns as regular expressions")
    filters.add_argument("--include-pattern", help="Comma-separated table allowlist")
    filters.add_argument("--exclude-schema", help="Comma-separated schema patterns to exclude")
    filters.add_argument("--exclude-type", help="Comma-separated object types to skip (e.g. trigger,function)")
    filters.add_argument(
        "--skip",
        help=f"Comma-separated object categories to skip ({', '.join(OBJECT_CATEGORIES)})"
    )
    filters.add_argument(
        "--strict-patterns",
        action="store_true",
        default=None,
        help="Fail instead of ignoring invalid patterns"
    )

    output = compare.add_argument_group("output")
    output.add_argument("--output", choices=["ddl", "json"], default="ddl", help="What to print")
    output.add_argument("--out", help="Write output to a file instead of stdout")
    output.add_argument(
        "--direction",
        choices=[d.value for d in SyncDirection],
        default=settings.DEFAULT_SYNC_DIRECTION,
        help="Which way the migration script moves the schema"
    )
    output.add_argument(
        "--wrap",
        choices=[w.value for w in WrapOption],
        default=settings.DEFAULT_WRAP_OPTION,
        help="Transaction wrapping of the script"
    )
    output.add_argument("--no-drops", action="store_true", help="Comment out DROP statements")
    output.add_argument(
        "--auto-apply-breaking",
        action="store_true",
        help="Do not comment out statements for breaking changes"
    )

    compare.add_argument("--timeout", type=float, help="Seconds before the comparison is abandoned (0 = none)")
    compare.add_argument("--performed-by", help="Recorded on the result")

    subparsers.add_parser("presets", help="List filter presets")
    return parser


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )


def parse_object_types(value: Optional[str]) -> List[ObjectType]:
    return [ObjectType.parse(name) for name in split_patterns(value)]


def run_compare(args: argparse.Namespace) -> int:
    try:
        comparison_filter = build_filter(
            preset=args.filter or settings.DEFAULT_FILTER_PRESET,
            patterns=args.pattern,
            use_regex=args.regex,
            include_patterns=args.include_pattern,
            exclude_schemas=args.exclude_schema,
            excluded_types=parse_object_types(args.exclude_type),
            skipped_categories=split_patterns(args.skip),
        )
    except (KeyError, ValueError) as e:
        print(f"error: invalid filter: {e}", file=sys.stderr)
        return EXIT_FAILED

    script_options = ScriptOptions(
        direction=args.direction,
        wrap_option=args.wrap,
        include_drops=not args.no_drops,
        auto_apply_breaking=args.auto_apply_breaking,
    )
    engine = ComparisonEngine(strict_patterns=args.strict_patterns, timeout_seconds=args.timeout)

    result = asyncio.run(engine.compare_databases(
        args.source,
        args.dest,
        source_schema=args.schema,
        destination_schema=args.dest_schema,
        comparison_filter=comparison_filter,
        script_options=script_options,
        performed_by=args.performed_by,
    ))

    if args.output == "json":
        text = result.model_dump_json(indent=2)
    elif result.migration_script is not None:
        text = result.migration_script.script
    else:
        text = ""

    if text:
        if args.out:
            with open(args.out, "w") as f:
                f.write(text)
            logger.info(f"Wrote {args.output} output to {args.out}")
        else:
            sys.stdout.write(text if text.endswith("\n") else text + "\n")

    print_summary(result)
    return exit_code_for(result)


def print_summary(result) -> None:
    summary = result.summary
    if not result.succeeded:
        print(f"FAILED ({result.error_kind.value}): {result.error_message}", file=sys.stderr)
        return

    print(
        f"{result.comparison_label}: {summary.status_label} - "
        f"{summary.total_differences} differences "
        f"({summary.missing} missing, {summary.extra} extra, {summary.modified} modified; "
        f"{summary.breaking_count} breaking)",
        file=sys.stderr
    )
    for kind, count in summarize_issues(result).items():
        print(f"  {count} issue(s): {kind}", file=sys.stderr)


def run_presets() -> int:
    for preset in list_presets():
        patterns = ", ".join(preset["table_patterns"] + preset["schema_patterns"]) or "-"
        print(f"{preset['name']:<24} {preset['display_name']:<30} {patterns}")
    return EXIT_IDENTICAL


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "presets":
        return run_presets()
    return run_compare(args)


if __name__ == "__main__":
    sys.exit(main())
