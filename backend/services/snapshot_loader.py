"""
Snapshot capture for comparisons.

A snapshot comes either from a JSON file or from the live catalog of a
PostgreSQL database. All network I/O happens here, before the engine starts
comparing.
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

from pydantic import ValidationError
from sqlalchemy.engine import make_url

from core.constants import (
    DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY_SECONDS, DSN_PREFIXES,
    calculate_retry_delay, is_connection_error, is_critical_failure
)
from core.database import DatabaseConnection, redact_url
from core.config import settings
from core.errors import SnapshotError
from models.snapshot import (
    ColumnDefinition, CompositeAttribute, ConstraintDefinition, ExtensionDefinition,
    IndexDefinition, RoutineDefinition, SchemaSnapshot, SequenceDefinition,
    TableDefinition, TriggerDefinition, TypeDefinition, ViewDefinition
)

logger = logging.getLogger(__name__)


CATALOG_QUERIES: Dict[str, str] = {
    "schema": """
        SELECT n.nspname AS name
        FROM pg_namespace n
        WHERE n.nspname = :schema
    """,
    "tables": """
        SELECT c.relname AS name,
               pg_get_userbyid(c.relowner) AS owner,
               obj_description(c.oid, 'pg_class') AS comment,
               pg_get_partkeydef(c.oid) AS partition_key
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = :schema AND c.relkind IN ('r', 'p')
        ORDER BY c.relname
    """,
    "columns": """
        SELECT c.relname AS table_name,
               a.attname AS name,
               format_type(a.atttypid, a.atttypmod) AS data_type,
               NOT a.attnotnull AS nullable,
               pg_get_expr(d.adbin, d.adrelid) AS default_value,
               CASE WHEN a.attcollation <> t.typcollation THEN co.collname END AS collation,
               CASE a.attidentity WHEN 'a' THEN 'ALWAYS' WHEN 'd' THEN 'BY DEFAULT' END AS identity,
               col_description(c.oid, a.attnum) AS comment,
               a.attnum AS position
        FROM pg_attribute a
        JOIN pg_class c ON c.oid = a.attrelid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        JOIN pg_type t ON t.oid = a.atttypid
        LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
        LEFT JOIN pg_collation co ON co.oid = a.attcollation
        WHERE n.nspname = :schema AND c.relkind IN ('r', 'p')
          AND a.attnum > 0 AND NOT a.attisdropped
        ORDER BY c.relname, a.attnum
    """,
    "indexes": """
        SELECT t.relname AS table_name,
               i.relname AS name,
               am.amname AS index_type,
               ix.indisunique AS "unique",
               pg_get_indexdef(ix.indexrelid) AS definition,
               pg_get_expr(ix.indpred, ix.indrelid) AS where_clause,
               ARRAY(SELECT pg_get_indexdef(ix.indexrelid, k + 1, true)
                     FROM generate_subscripts(ix.indkey, 1) AS k
                     WHERE k < ix.indnkeyatts ORDER BY k) AS columns,
               ARRAY(SELECT pg_get_indexdef(ix.indexrelid, k + 1, true)
                     FROM generate_subscripts(ix.indkey, 1) AS k
                     WHERE k >= ix.indnkeyatts ORDER BY k) AS include_columns
        FROM pg_index ix
        JOIN pg_class i ON i.oid = ix.indexrelid
        JOIN pg_class t ON t.oid = ix.indrelid
        JOIN pg_namespace n ON n.oid = t.relnamespace
        JOIN pg_am am ON am.oid = i.relam
        WHERE n.nspname = :schema AND t.relkind IN ('r', 'p', 'm')
          AND NOT EXISTS (
              SELECT 1 FROM pg_constraint con
              WHERE con.conindid = ix.indexrelid AND con.contype IN ('p', 'u', 'x')
          )
        ORDER BY t.relname, i.relname
    """,
    "constraints": """
        SELECT t.relname AS table_name,
               con.conname AS name,
               con.contype AS constraint_type,
               ARRAY(SELECT a.attname
                     FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
                     JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
                     ORDER BY k.ord) AS columns,
               rn.nspname AS referenced_schema,
               rt.relname AS referenced_table,
               ARRAY(SELECT a.attname
                     FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
                     JOIN pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
                     ORDER BY k.ord) AS referenced_columns,
               CASE con.confupdtype WHEN 'a' THEN 'NO ACTION' WHEN 'r' THEN 'RESTRICT'
                    WHEN 'c' THEN 'CASCADE' WHEN 'n' THEN 'SET NULL' WHEN 'd' THEN 'SET DEFAULT' END AS on_update,
               CASE con.confdeltype WHEN 'a' THEN 'NO ACTION' WHEN 'r' THEN 'RESTRICT'
                    WHEN 'c' THEN 'CASCADE' WHEN 'n' THEN 'SET NULL' WHEN 'd' THEN 'SET DEFAULT' END AS on_delete,
               CASE WHEN con.contype = 'c' THEN pg_get_expr(con.conbin, con.conrelid) END AS expression,
               con.condeferrable AS deferrable
        FROM pg_constraint con
        JOIN pg_class t ON t.oid = con.conrelid
        JOIN pg_namespace n ON n.oid = t.relnamespace
        LEFT JOIN pg_class rt ON rt.oid = con.confrelid
        LEFT JOIN pg_namespace rn ON rn.oid = rt.relnamespace
        WHERE n.nspname = :schema AND con.contype IN ('p', 'f', 'u', 'c')
        ORDER BY t.relname, con.conname
    """,
    "triggers": """
        SELECT c.relname AS table_name,
               tg.tgname AS name,
               tg.tgtype AS tgtype,
               tg.tgenabled <> 'D' AS enabled,
               pn.nspname || '.' || p.proname AS function_name,
               pg_get_triggerdef(tg.oid, true) AS definition
        FROM pg_trigger tg
        JOIN pg_class c ON c.oid = tg.tgrelid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        JOIN pg_proc p ON p.oid = tg.tgfoid
        JOIN pg_namespace pn ON pn.oid = p.pronamespace
        WHERE n.nspname = :schema AND NOT tg.tgisinternal
        ORDER BY c.relname, tg.tgname
    """,
    "views": """
        SELECT c.relname AS name,
               c.relkind = 'm' AS materialized,
               pg_get_viewdef(c.oid, true) AS definition,
               pg_get_userbyid(c.relowner) AS owner,
               obj_description(c.oid, 'pg_class') AS comment,
               ARRAY(SELECT DISTINCT rn.nspname || '.' || rc.relname
                     FROM pg_rewrite r
                     JOIN pg_depend d ON d.objid = r.oid
                     JOIN pg_class rc ON rc.oid = d.refobjid
                     JOIN pg_namespace rn ON rn.oid = rc.relnamespace
                     WHERE r.ev_class = c.oid AND rc.oid <> c.oid) AS depends_on
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = :schema AND c.relkind IN ('v', 'm')
        ORDER BY c.relname
    """,
    "routines": """
        SELECT p.proname AS name,
               pg_get_function_identity_arguments(p.oid) AS arguments,
               CASE p.prokind WHEN 'p' THEN 'procedure' ELSE 'function' END AS kind,
               l.lanname AS language,
               CASE WHEN p.prokind = 'p' THEN NULL ELSE pg_get_function_result(p.oid) END AS return_type,
               CASE p.provolatile WHEN 'i' THEN 'IMMUTABLE' WHEN 's' THEN 'STABLE' ELSE 'VOLATILE' END AS volatility,
               p.proisstrict AS strict,
               p.prosecdef AS security_definer,
               p.prosrc AS definition
        FROM pg_proc p
        JOIN pg_namespace n ON n.oid = p.pronamespace
        JOIN pg_language l ON l.oid = p.prolang
        WHERE n.nspname = :schema AND p.prokind IN ('f', 'p')
          AND NOT EXISTS (SELECT 1 FROM pg_depend d WHERE d.objid = p.oid AND d.deptype = 'e')
        ORDER BY p.proname, arguments
    """,
    "sequences": """
        SELECT s.sequencename AS name,
               format_type(s.data_type, NULL) AS data_type,
               s.start_value,
               s.increment_by AS increment,
               s.min_value,
               s.max_value,
               s.cache_size,
               s.cycle,
               (SELECT dt.relname || '.' || a.attname
                FROM pg_depend d
                JOIN pg_class dt ON dt.oid = d.refobjid
                JOIN pg_attribute a ON a.attrelid = d.refobjid AND a.attnum = d.refobjsubid
                WHERE d.objid = (quote_ident(s.schemaname) || '.' || quote_ident(s.sequencename))::regclass
                  AND d.classid = 'pg_class'::regclass AND d.deptype = 'a'
                LIMIT 1) AS owned_by
        FROM pg_sequences s
        WHERE s.schemaname = :schema
          AND NOT EXISTS (
              SELECT 1 FROM pg_depend d
              WHERE d.objid = (quote_ident(s.schemaname) || '.' || quote_ident(s.sequencename))::regclass
                AND d.deptype = 'i'
          )
        ORDER BY s.sequencename
    """,
    "enums": """
        SELECT t.typname AS name,
               ARRAY(SELECT e.enumlabel FROM pg_enum e
                     WHERE e.enumtypid = t.oid ORDER BY e.enumsortorder) AS enum_values
        FROM pg_type t
        JOIN pg_namespace n ON n.oid = t.typnamespace
        WHERE n.nspname = :schema AND t.typtype = 'e'
        ORDER BY t.typname
    """,
    "composites": """
        SELECT t.typname AS type_name,
               a.attname AS name,
               format_type(a.atttypid, a.atttypmod) AS data_type
        FROM pg_type t
        JOIN pg_namespace n ON n.oid = t.typnamespace
        JOIN pg_class c ON c.oid = t.typrelid
        JOIN pg_attribute a ON a.attrelid = c.oid
        WHERE n.nspname = :schema AND t.typtype = 'c' AND c.relkind = 'c'
          AND a.attnum > 0 AND NOT a.attisdropped
        ORDER BY t.typname, a.attnum
    """,
    "domains": """
        SELECT t.typname AS name,
               format_type(t.typbasetype, t.typtypmod) AS base_type,
               t.typdefault AS default_value,
               t.typnotnull AS not_null,
               (SELECT pg_get_constraintdef(c.oid) FROM pg_constraint c
                WHERE c.contypid = t.oid AND c.contype = 'c'
                ORDER BY c.conname LIMIT 1) AS check_constraint
        FROM pg_type t
        JOIN pg_namespace n ON n.oid = t.typnamespace
        WHERE n.nspname = :schema AND t.typtype = 'd'
        ORDER BY t.typname
    """,
    "extensions": """
        SELECT e.extname AS name,
               e.extversion AS version,
               n.nspname AS schema_name
        FROM pg_extension e
        JOIN pg_namespace n ON n.oid = e.extnamespace
        WHERE e.extname <> 'plpgsql'
        ORDER BY e.extname
    """,
}

# pg_trigger.tgtype bits
TRIGGER_ROW = 1
TRIGGER_BEFORE = 2
TRIGGER_INSERT = 4
TRIGGER_DELETE = 8
TRIGGER_UPDATE = 16
TRIGGER_TRUNCATE = 32
TRIGGER_INSTEAD = 64

_TRIGGER_WHEN = re.compile(r"\bWHEN \((.*)\) EXECUTE ", re.IGNORECASE | re.DOTALL)
_CHECK_CONSTRAINT = re.compile(r"^CHECK \((.*)\)$", re.IGNORECASE | re.DOTALL)


def decode_trigger_type(tgtype: int) -> Dict[str, Any]:
    if tgtype & TRIGGER_INSTEAD:
        timing = "INSTEAD OF"
    elif tgtype & TRIGGER_BEFORE:
        timing = "BEFORE"
    else:
        timing = "AFTER"
    events = [
        name for bit, name in (
            (TRIGGER_INSERT, "INSERT"),
            (TRIGGER_UPDATE, "UPDATE"),
            (TRIGGER_DELETE, "DELETE"),
            (TRIGGER_TRUNCATE, "TRUNCATE"),
        ) if tgtype & bit
    ]
    return {
        "timing": timing,
        "events": events,
        "level": "ROW" if tgtype & TRIGGER_ROW else "STATEMENT",
    }


class SnapshotLoader:
    """Load snapshots from JSON files or capture them from a live database"""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: int = DEFAULT_RETRY_DELAY_SECONDS,
        connection_factory: Callable[[str], Any] = DatabaseConnection
    ):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.connection_factory = connection_factory

    @staticmethod
    def is_dsn(location: str) -> bool:
        return location.startswith(DSN_PREFIXES)

    @staticmethod
    def describe_location(location: str) -> str:
        """Instance label for a DSN or snapshot file"""
        if SnapshotLoader.is_dsn(location):
            try:
                url = make_url(location)
                return f"{url.host or 'localhost'}/{url.database or ''}"
            except Exception:
                return redact_url(location)
        return Path(location).stem

    async def load(self, location: str, schema_name: Optional[str] = None, label: str = "snapshot") -> SchemaSnapshot:
        if self.is_dsn(location):
            return await self.capture(location, schema_name or "public", label)
        return self.load_file(location, schema_name, label)

    def load_file(self, path: str, schema_name: Optional[str] = None, label: str = "snapshot") -> SchemaSnapshot:
        try:
            snapshot = SchemaSnapshot.from_json_file(path)
        except (OSError, ValueError, ValidationError) as e:
            raise SnapshotError(
                f"Could not read {label} snapshot '{path}': {e}",
                {"side": label, "location": path, "exception": type(e).__name__},
            ) from e

        if schema_name and schema_name not in snapshot.schemas:
            logger.warning(f"{label.capitalize()} snapshot '{path}' has no objects in schema '{schema_name}'")
        logger.info(f"Loaded {label} snapshot '{path}' with {len(snapshot)} objects")
        return snapshot

    async def capture(self, dsn: str, schema_name: str, label: str = "snapshot") -> SchemaSnapshot:
        """Read one schema from a live database catalog"""
        instance = self.describe_location(dsn)
        if schema_name in settings.SYSTEM_SCHEMAS:
            raise SnapshotError(
                f"Refusing to capture system schema '{schema_name}'",
                {"side": label, "instance": instance, "schema": schema_name},
            )
        connection = self.connection_factory(dsn)
        logger.info(f"Capturing {label} snapshot of {instance} schema '{schema_name}'")

        try:
            return await self._execute_with_retry(
                lambda: self.read_catalog(connection, schema_name, instance),
                f"Capturing {label} snapshot"
            )
        except SnapshotError:
            raise
        except Exception as e:
            raise SnapshotError(
                f"Could not capture {label} snapshot from {instance}: {e}",
                {"side": label, "instance": instance, "schema": schema_name, "exception": type(e).__name__},
            ) from e
        finally:
            await connection.close()

    async def _execute_with_retry(self, operation, operation_name: str):
        """Execute operation with retry logic for database connection issues"""
        for attempt in range(self.max_retries):
            try:
                return await operation()
            except SnapshotError:
                raise
            except Exception as e:
                error_str = str(e)
                retryable = is_connection_error(error_str) and not is_critical_failure(error_str)

                if retryable and attempt < self.max_retries - 1:
                    wait_time = calculate_retry_delay(attempt, self.retry_delay)
                    logger.warning(f"{operation_name} failed (attempt {attempt + 1}/{self.max_retries}): {e}")
                    logger.info(f"Retrying in {wait_time} seconds...")
                    await asyncio.sleep(wait_time)
                    continue

                logger.error(f"{operation_name} failed after {attempt + 1} attempts: {e}")
                raise

    async def read_catalog(self, connection, schema_name: str, instance: str) -> SchemaSnapshot:
        """Run the catalog queries and assemble a snapshot"""
        params = {"schema": schema_name}

        async def fetch(name: str) -> List[Dict[str, Any]]:
            return await connection.execute_query(CATALOG_QUERIES[name], params)

        if not await fetch("schema"):
            raise SnapshotError(
                f"Schema '{schema_name}' does not exist on {instance}",
                {"instance": instance, "schema": schema_name},
            )

        snapshot = SchemaSnapshot(instance=instance)

        tables: Dict[str, TableDefinition] = {}
        for row in await fetch("tables"):
            tables[row["name"]] = TableDefinition(**row)
        for row in await fetch("columns"):
            table = tables.get(row["table_name"])
            if table is not None:
                table.columns.append(ColumnDefinition(**row))
        for row in await fetch("indexes"):
            table = tables.get(row["table_name"])
            if table is not None:
                table.indexes.append(IndexDefinition(**_without_nulls(row, "columns", "include_columns")))
        for row in await fetch("constraints"):
            table = tables.get(row["table_name"])
            if table is not None:
                table.constraints.append(
                    ConstraintDefinition(**_without_nulls(row, "columns", "referenced_columns"))
                )
        for row in await fetch("triggers"):
            table = tables.get(row["table_name"])
            if table is not None:
                table.triggers.append(self._trigger(row))
        for table in tables.values():
            snapshot.add(schema_name, table)

        for row in await fetch("views"):
            snapshot.add(schema_name, ViewDefinition(**_without_nulls(row, "depends_on")))
        for row in await fetch("routines"):
            snapshot.add(schema_name, RoutineDefinition(**row))
        for row in await fetch("sequences"):
            snapshot.add(schema_name, SequenceDefinition(**row))
        for row in await fetch("enums"):
            snapshot.add(schema_name, TypeDefinition(kind="enum", **_without_nulls(row, "enum_values")))

        composites: Dict[str, List[CompositeAttribute]] = {}
        for row in await fetch("composites"):
            composites.setdefault(row["type_name"], []).append(
                CompositeAttribute(name=row["name"], data_type=row["data_type"])
            )
        for name, attributes in composites.items():
            snapshot.add(schema_name, TypeDefinition(name=name, kind="composite", attributes=attributes))

        for row in await fetch("domains"):
            snapshot.add(schema_name, self._domain(row))
        for row in await fetch("extensions"):
            snapshot.add(schema_name, ExtensionDefinition(**row))

        logger.info(f"Captured {len(snapshot)} objects from {instance} schema '{schema_name}'")
        return snapshot

    def _trigger(self, row: Dict[str, Any]) -> TriggerDefinition:
        definition = row.get("definition")
        match = _TRIGGER_WHEN.search(definition or "")
        return TriggerDefinition(
            name=row["name"],
            table_name=row["table_name"],
            function_name=row.get("function_name"),
            enabled=row.get("enabled", True),
            condition=match.group(1) if match else None,
            definition=definition,
            **decode_trigger_type(row["tgtype"]),
        )

    def _domain(self, row: Dict[str, Any]) -> TypeDefinition:
        check = row.get("check_constraint")
        match = _CHECK_CONSTRAINT.match(check or "")
        return TypeDefinition(
            name=row["name"],
            kind="domain",
            base_type=row["base_type"],
            default_value=row.get("default_value"),
            not_null=bool(row.get("not_null")),
            check_expression=match.group(1) if match else check,
        )


def _without_nulls(row: Dict[str, Any], *list_fields: str) -> Dict[str, Any]:
    """Catalog arrays can come back NULL; models expect lists"""
    cleaned = dict(row)
    for name in list_fields:
        if cleaned.get(name) is None:
            cleaned[name] = []
    return cleaned
