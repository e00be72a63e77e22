from typing import List, Dict, Any, Optional, Callable, Tuple
import logging
import re

from models.base import (
    AttributeDifference, DifferenceType, MigrationScript, MigrationStatement, ObjectDifference,
    ObjectType, Severity, SyncDirection, WrapOption
)
from models.snapshot import (
    ColumnDefinition, ConstraintDefinition, ExtensionDefinition, IndexDefinition,
    RoutineDefinition, SequenceDefinition, TableDefinition, TriggerDefinition,
    TypeDefinition, ViewDefinition
)
from services.comparers.base_comparer import DEFINITION_ATTRIBUTE
from services.comparers.table_comparer import is_widening
from services.dependency_resolver import ResolvedOrder
from services.registry import spec_for

logger = logging.getLogger(__name__)

TEARDOWN = "teardown"
APPLY = "apply"

_PLAIN_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")
RESERVED_WORDS = frozenset({
    "all", "analyse", "analyze", "and", "any", "array", "as", "asc", "both", "case", "cast",
    "check", "collate", "column", "constraint", "create", "default", "desc", "distinct", "do",
    "else", "end", "except", "false", "for", "foreign", "from", "grant", "group", "having",
    "in", "into", "leading", "limit", "not", "null", "offset", "on", "only", "or", "order",
    "primary", "references", "select", "table", "then", "to", "true", "union", "unique",
    "user", "using", "when", "where", "window", "with",
})


def quote_ident(name: str) -> str:
    """Quote an identifier unless it is a plain lower-case, non-reserved name"""
    if name.startswith('"') and name.endswith('"'):
        return name
    if _PLAIN_IDENTIFIER.match(name) and name not in RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def qualified(schema_name: Optional[str], name: str) -> str:
    if "." in name and not name.startswith('"'):
        schema_name, name = name.split(".", 1)
    if not schema_name:
        return quote_ident(name)
    return f"{quote_ident(schema_name)}.{quote_ident(name)}"


def sql_literal(value: Optional[str]) -> str:
    if value is None:
        return "NULL"
    return "'" + str(value).replace("'", "''") + "'"


def _terminate(sql: str) -> str:
    sql = sql.strip()
    return sql if sql.endswith(";") else sql + ";"


def _is_statement(text: str) -> bool:
    return text.lstrip().lower().startswith(("create", "alter", "drop", "comment"))


def _column_list(columns: List[str]) -> str:
    return ", ".join(quote_ident(c) for c in columns)


def _narrows(attr: AttributeDifference) -> bool:
    """True when a destination value of the old type may not fit the source's type"""
    if not attr.source_value or not attr.destination_value:
        return False
    return not is_widening(attr.destination_value, attr.source_value)


class DdlGenerator:
    """
    Render SQL for ordered differences and assemble a migration script.

    The script brings the destination in line with the source: objects found
    only in the source are created, objects found only in the destination are
    dropped and modified objects are altered to the source definition. Names
    are qualified with target_schema when the destination schema is named
    differently from the schema the differences are keyed under.
    """

    def __init__(
        self,
        include_drops: bool = True,
        auto_apply_breaking: bool = False,
        wrap_option: WrapOption = WrapOption.SINGLE_TRANSACTION,
        direction: SyncDirection = SyncDirection.SOURCE_TO_DESTINATION,
        target_schema: Optional[str] = None
    ):
        self.include_drops = include_drops
        self.auto_apply_breaking = auto_apply_breaking
        self.wrap_option = wrap_option
        self.direction = direction
        self.target_schema = target_schema
        self.warnings: List[str] = []

        self.renderers: Dict[ObjectType, Tuple[Callable, Callable]] = {
            ObjectType.TABLE: (self._gen_create_table, self._gen_alter_table),
            ObjectType.COLUMN: (self._gen_add_column, self._gen_alter_column),
            ObjectType.INDEX: (self._gen_create_index, self._gen_recreate),
            ObjectType.CONSTRAINT_PRIMARY: (self._gen_create_constraint, self._gen_recreate),
            ObjectType.CONSTRAINT_FOREIGN: (self._gen_create_constraint, self._gen_recreate),
            ObjectType.CONSTRAINT_UNIQUE: (self._gen_create_constraint, self._gen_recreate),
            ObjectType.CONSTRAINT_CHECK: (self._gen_create_constraint, self._gen_recreate),
            ObjectType.VIEW: (self._gen_create_view, self._gen_alter_view),
            ObjectType.MATERIALIZED_VIEW: (self._gen_create_view, self._gen_alter_view),
            ObjectType.FUNCTION: (self._gen_create_routine, self._gen_alter_routine),
            ObjectType.PROCEDURE: (self._gen_create_routine, self._gen_alter_routine),
            ObjectType.TRIGGER: (self._gen_create_trigger, self._gen_alter_trigger),
            ObjectType.SEQUENCE: (self._gen_create_sequence, self._gen_alter_sequence),
            ObjectType.TYPE_ENUM: (self._gen_create_type, self._gen_alter_enum),
            ObjectType.TYPE_COMPOSITE: (self._gen_create_type, self._gen_alter_composite),
            ObjectType.TYPE_DOMAIN: (self._gen_create_type, self._gen_alter_domain),
            ObjectType.EXTENSION: (self._gen_create_extension, self._gen_alter_extension),
        }

    # ------------------------------------------------------------------
    # Script assembly
    # ------------------------------------------------------------------

    def generate(
        self,
        resolved: ResolvedOrder,
        comparison_id: str,
        source_label: str,
        destination_label: str
    ) -> MigrationScript:
        """Render every orderable difference and assemble the script"""
        self.warnings = []
        statements: List[MigrationStatement] = []

        teardown = [d for d in resolved.teardown_order if d.difference_type == DifferenceType.EXTRA]
        apply = [d for d in resolved.apply_order if d.difference_type != DifferenceType.EXTRA]

        for phase, ordered in ((TEARDOWN, teardown), (APPLY, apply)):
            for diff in ordered:
                try:
                    statement = self.render_difference(diff, phase)
                except Exception as e:
                    logger.warning(f"Failed to generate statement for {diff.qualified_name}: {e}")
                    self.warnings.append(f"Could not generate SQL for {diff.qualified_name}: {e}")
                    continue
                if statement is not None:
                    statements.append(statement)

        for diff in resolved.skipped:
            diff.generated_ddl = None
            self.warnings.append(
                f"DDL skipped for {diff.qualified_name}: part of or dependent on a dependency cycle"
            )

        ordered_diffs = teardown + apply
        script = MigrationScript(
            comparison_id=comparison_id,
            source_label=source_label,
            destination_label=destination_label,
            direction=self.direction,
            wrap_option=self.wrap_option,
            statements=statements,
            skipped_objects=[d.qualified_name for d in resolved.skipped],
            warnings=list(self.warnings),
            estimated_impact=self._analyze_impact(ordered_diffs),
            data_loss_risk=self._has_data_loss_risk(ordered_diffs),
        )
        script.script = self._format_script(script)
        return script

    def render_difference(self, diff: ObjectDifference, phase: str) -> Optional[MigrationStatement]:
        """Render one difference, storing the block on diff.generated_ddl"""
        sql_statements = self.render(diff)
        if not sql_statements:
            return None

        review_reason = self._review_reason(diff, phase)
        block = self._format_block(diff, sql_statements, review_reason)
        diff.generated_ddl = block

        return MigrationStatement(
            object_name=diff.qualified_name,
            object_type=diff.object_type,
            difference_type=diff.difference_type,
            severity=diff.severity,
            phase=phase,
            sql=block,
            requires_review=review_reason is not None,
        )

    def render(self, diff: ObjectDifference) -> List[str]:
        """Raw SQL statements for a difference"""
        if diff.difference_type == DifferenceType.EXTRA:
            return self._gen_drop(diff)

        create, alter = self.renderers[diff.object_type]
        if diff.difference_type == DifferenceType.MISSING:
            definition = diff.source_definition
            if isinstance(definition, str):
                return [_terminate(definition)]
            return create(diff, definition)

        if isinstance(diff.source_definition, str):
            return self._gen_recreate(diff)
        return alter(diff)

    def _review_reason(self, diff: ObjectDifference, phase: str) -> Optional[str]:
        if diff.severity == Severity.BREAKING and not self.auto_apply_breaking:
            return diff.severity_reason or "Breaking change"
        if phase == TEARDOWN and not self.include_drops:
            return "Drop statements disabled"
        return None

    def _format_block(self, diff: ObjectDifference, statements: List[str], review_reason: Optional[str]) -> str:
        label = diff.object_type.display_name
        lines = [f"-- {label} {diff.qualified_name}: {diff.difference_type.value} [{diff.severity.value}]"]
        if review_reason:
            lines.append(f"-- MANUAL REVIEW REQUIRED: {review_reason}")
            for statement in statements:
                for line in statement.splitlines():
                    lines.append(line if line.startswith("--") else f"-- {line}")
        else:
            lines.extend(statements)
        return "\n".join(lines)

    def _format_script(self, script: MigrationScript) -> str:
        """Header, phases and transaction wrapping"""
        header = f"""-- ============================================================
-- Schema migration script
-- Comparison ID: {script.comparison_id}
-- Source: {script.source_label}
-- Destination: {script.destination_label}
-- Direction: {script.direction.value}
-- Generated: {script.generated_at.isoformat()}
-- Statements: {script.statement_count} ({script.review_count} require manual review, {len(script.skipped_objects)} skipped)
-- ============================================================
"""
        parts = [header]
        for warning in script.warnings:
            parts.append(f"-- WARNING: {warning}")
        if script.warnings:
            parts.append("")

        if not script.statements:
            parts.append("-- No changes required")
            return "\n".join(parts) + "\n"

        if self.wrap_option != WrapOption.INDIVIDUAL_STATEMENTS:
            parts.append("BEGIN;\n")

        current_phase = None
        for number, statement in enumerate(script.statements, 1):
            if statement.phase != current_phase:
                current_phase = statement.phase
                if current_phase == TEARDOWN:
                    parts.append("-- TEARDOWN (dependents first)\n")
                else:
                    parts.append("-- APPLY (prerequisites first)\n")

            if self.wrap_option == WrapOption.SAVEPOINT_PER_OBJECT and not statement.requires_review:
                parts.append(f"SAVEPOINT sp_{number};")
                parts.append(statement.sql)
                parts.append(f"RELEASE SAVEPOINT sp_{number};\n")
            else:
                parts.append(statement.sql + "\n")

        if self.wrap_option != WrapOption.INDIVIDUAL_STATEMENTS:
            parts.append("COMMIT;")

        parts.append("\n-- End of script")
        return "\n".join(parts) + "\n"

    # ------------------------------------------------------------------
    # Target names
    # ------------------------------------------------------------------

    def _schema(self, diff: ObjectDifference) -> str:
        return self.target_schema or diff.schema_name

    def _retarget(self, diff: ObjectDifference, name: Optional[str]) -> Optional[str]:
        """Move a schema-qualified reference into the target schema"""
        if name and self.target_schema and name.startswith(f"{diff.schema_name}."):
            return f"{self.target_schema}.{name[len(diff.schema_name) + 1:]}"
        return name

    def _target_name(self, diff: ObjectDifference) -> str:
        if diff.parent_object_name:
            return f"{self._schema(diff)}.{diff.parent_object_name}.{diff.object_name}"
        return f"{self._schema(diff)}.{diff.object_name}"

    # ------------------------------------------------------------------
    # Drops
    # ------------------------------------------------------------------

    def _gen_drop(self, diff: ObjectDifference) -> List[str]:
        schema = self._schema(diff)
        name = qualified(schema, diff.object_name)
        table = qualified(schema, diff.parent_object_name) if diff.parent_object_name else None
        object_type = diff.object_type

        if object_type == ObjectType.COLUMN:
            self.warnings.append(f"Dropping column {self._target_name(diff)} - data will be lost!")
            return [f"ALTER TABLE {table} DROP COLUMN IF EXISTS {quote_ident(diff.object_name)};"]
        if object_type == ObjectType.TABLE:
            self.warnings.append(f"Dropping table {self._target_name(diff)} - ensure data is backed up!")
        if spec_for(object_type).keyword == "CONSTRAINT":
            return [f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {quote_ident(diff.object_name)};"]
        if object_type == ObjectType.TRIGGER:
            return [f"DROP TRIGGER IF EXISTS {quote_ident(diff.object_name)} ON {table};"]
        if object_type in (ObjectType.FUNCTION, ObjectType.PROCEDURE):
            routine, _, args = diff.object_name.partition("(")
            return [f"DROP {spec_for(object_type).keyword} IF EXISTS "
                    f"{qualified(schema, routine)}({args} CASCADE;"]
        if object_type == ObjectType.EXTENSION:
            return [f"DROP EXTENSION IF EXISTS {quote_ident(diff.object_name)} CASCADE;"]
        if object_type == ObjectType.INDEX:
            return [f"DROP INDEX IF EXISTS {name};"]
        return [f"DROP {spec_for(object_type).keyword} IF EXISTS {name} CASCADE;"]

    def _gen_recreate(self, diff: ObjectDifference) -> List[str]:
        """DROP the destination's object then CREATE it from the source definition"""
        definition = diff.source_definition
        drop = self._gen_drop(diff)
        if isinstance(definition, str):
            return drop + [_terminate(definition)]
        create, _ = self.renderers[diff.object_type]
        return drop + create(diff, definition)

    # ------------------------------------------------------------------
    # Tables and columns
    # ------------------------------------------------------------------

    def _column_sql(self, diff: ObjectDifference, column: ColumnDefinition) -> str:
        parts = [quote_ident(column.name), self._retarget(diff, column.data_type)]
        if column.collation:
            parts.append(f"COLLATE {quote_ident(column.collation)}")
        if column.identity:
            parts.append(f"GENERATED {column.identity.upper()} AS IDENTITY")
        elif column.default_value:
            parts.append(f"DEFAULT {column.default_value}")
        if not column.nullable:
            parts.append("NOT NULL")
        return " ".join(parts)

    def _gen_create_table(self, diff: ObjectDifference, table: TableDefinition) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        if table.columns:
            columns = sorted(table.columns, key=lambda c: (c.position is None, c.position or 0))
            body = ",\n".join(f"    {self._column_sql(diff, c)}" for c in columns)
            sql = f"CREATE TABLE IF NOT EXISTS {name} (\n{body}\n)"
        else:
            sql = f"CREATE TABLE IF NOT EXISTS {name} ()"
        if table.partition_key:
            sql += f" PARTITION BY {table.partition_key}"
        statements = [sql + ";"]
        if table.comment:
            statements.append(f"COMMENT ON TABLE {name} IS {sql_literal(table.comment)};")
        for column in table.columns:
            if column.comment:
                statements.append(
                    f"COMMENT ON COLUMN {name}.{quote_ident(column.name)} IS {sql_literal(column.comment)};"
                )
        return statements

    def _gen_alter_table(self, diff: ObjectDifference) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        statements = []
        for attr in diff.attribute_differences:
            if attr.attribute_name == "owner" and attr.source_value:
                statements.append(f"ALTER TABLE {name} OWNER TO {quote_ident(attr.source_value)};")
            elif attr.attribute_name == "comment":
                statements.append(f"COMMENT ON TABLE {name} IS {sql_literal(attr.source_value)};")
            elif attr.attribute_name == "partition_key":
                statements.append(
                    f"-- Rebuild {name} with PARTITION BY {attr.source_value or '(none)'} "
                    f"and copy its rows; partitioning cannot be altered in place"
                )
        return statements

    def _gen_add_column(self, diff: ObjectDifference, column: ColumnDefinition) -> List[str]:
        table = qualified(self._schema(diff), diff.parent_object_name)
        statements = [f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {self._column_sql(diff, column)};"]
        if column.comment:
            statements.append(
                f"COMMENT ON COLUMN {table}.{quote_ident(column.name)} IS {sql_literal(column.comment)};"
            )
        return statements

    def _gen_alter_column(self, diff: ObjectDifference) -> List[str]:
        table = qualified(self._schema(diff), diff.parent_object_name)
        column = quote_ident(diff.object_name)
        prefix = f"ALTER TABLE {table} ALTER COLUMN {column}"
        target: ColumnDefinition = diff.source_definition
        target_type = self._retarget(diff, target.data_type)
        type_change = next((a for a in diff.attribute_differences if a.attribute_name == "data_type"), None)
        statements = []

        for attr in diff.attribute_differences:
            name = attr.attribute_name
            if name in ("data_type", "collation"):
                if any(s.startswith(f"{prefix} TYPE") for s in statements):
                    continue
                sql = f"{prefix} TYPE {target_type}"
                if target.collation:
                    sql += f" COLLATE {quote_ident(target.collation)}"
                if type_change is not None and _narrows(type_change):
                    sql += f" USING {column}::{target_type}"
                statements.append(sql + ";")
            elif name == "nullable":
                statements.append(f"{prefix} {'DROP' if attr.source_value else 'SET'} NOT NULL;")
            elif name == "default_value":
                if attr.source_value is None:
                    statements.append(f"{prefix} DROP DEFAULT;")
                else:
                    statements.append(f"{prefix} SET DEFAULT {attr.source_value};")
            elif name == "identity":
                if attr.source_value is None:
                    statements.append(f"{prefix} DROP IDENTITY IF EXISTS;")
                elif attr.destination_value is None:
                    statements.append(f"{prefix} ADD GENERATED {attr.source_value.upper()} AS IDENTITY;")
                else:
                    statements.append(f"{prefix} SET GENERATED {attr.source_value.upper()};")
            elif name == "comment":
                statements.append(f"COMMENT ON COLUMN {table}.{column} IS {sql_literal(attr.source_value)};")
        return statements

    # ------------------------------------------------------------------
    # Indexes and constraints
    # ------------------------------------------------------------------

    def _gen_create_index(self, diff: ObjectDifference, index: IndexDefinition) -> List[str]:
        if not index.columns and index.definition:
            return [_terminate(index.definition)]
        table = qualified(self._schema(diff), diff.parent_object_name or index.table_name)
        unique = "UNIQUE " if index.unique else ""
        sql = (f"CREATE {unique}INDEX IF NOT EXISTS {quote_ident(diff.object_name)} ON {table} "
               f"USING {index.index_type} ({', '.join(index.columns)})")
        if index.include_columns:
            sql += f" INCLUDE ({_column_list(index.include_columns)})"
        if index.where_clause:
            sql += f" WHERE {index.where_clause}"
        return [sql + ";"]

    def _constraint_body(self, diff: ObjectDifference, constraint: ConstraintDefinition) -> str:
        object_type = diff.object_type
        if object_type == ObjectType.CONSTRAINT_PRIMARY:
            body = f"PRIMARY KEY ({_column_list(constraint.columns)})"
        elif object_type == ObjectType.CONSTRAINT_UNIQUE:
            body = f"UNIQUE ({_column_list(constraint.columns)})"
        elif object_type == ObjectType.CONSTRAINT_CHECK:
            body = f"CHECK ({constraint.expression})"
        else:
            referenced_schema = constraint.referenced_schema
            if not referenced_schema or referenced_schema == diff.schema_name:
                referenced_schema = self._schema(diff)
            referenced = qualified(referenced_schema, constraint.referenced_table)
            body = (f"FOREIGN KEY ({_column_list(constraint.columns)}) REFERENCES {referenced} "
                    f"({_column_list(constraint.referenced_columns)})")
            if constraint.on_update:
                body += f" ON UPDATE {constraint.on_update.upper()}"
            if constraint.on_delete:
                body += f" ON DELETE {constraint.on_delete.upper()}"
        if constraint.deferrable:
            body += " DEFERRABLE"
        return body

    def _gen_create_constraint(self, diff: ObjectDifference, constraint: ConstraintDefinition) -> List[str]:
        table = qualified(self._schema(diff), diff.parent_object_name or constraint.table_name)
        body = self._constraint_body(diff, constraint)
        return [f"ALTER TABLE {table} ADD CONSTRAINT {quote_ident(diff.object_name)} {body};"]

    # ------------------------------------------------------------------
    # Views, routines, triggers
    # ------------------------------------------------------------------

    def _gen_create_view(self, diff: ObjectDifference, view: ViewDefinition) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        query = view.definition.strip().rstrip(";")
        if view.materialized:
            statements = [f"CREATE MATERIALIZED VIEW IF NOT EXISTS {name} AS\n{query};"]
        else:
            statements = [f"CREATE OR REPLACE VIEW {name} AS\n{query};"]
        if view.comment:
            keyword = spec_for(diff.object_type).keyword
            statements.append(f"COMMENT ON {keyword} {name} IS {sql_literal(view.comment)};")
        return statements

    def _gen_alter_view(self, diff: ObjectDifference) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        keyword = spec_for(diff.object_type).keyword
        changed = {a.attribute_name for a in diff.attribute_differences}
        target: ViewDefinition = diff.source_definition

        if "materialized" in changed or (DEFINITION_ATTRIBUTE in changed and target.materialized):
            current: ViewDefinition = diff.destination_definition
            current_keyword = "MATERIALIZED VIEW" if current.materialized else "VIEW"
            return [f"DROP {current_keyword} IF EXISTS {name} CASCADE;"] + self._gen_create_view(diff, target)
        if DEFINITION_ATTRIBUTE in changed:
            return self._gen_create_view(diff, target)

        statements = []
        for attr in diff.attribute_differences:
            if attr.attribute_name == "owner" and attr.source_value:
                statements.append(f"ALTER {keyword} {name} OWNER TO {quote_ident(attr.source_value)};")
            elif attr.attribute_name == "comment":
                statements.append(f"COMMENT ON {keyword} {name} IS {sql_literal(attr.source_value)};")
        return statements

    def _gen_create_routine(self, diff: ObjectDifference, routine: RoutineDefinition) -> List[str]:
        if _is_statement(routine.definition):
            return [_terminate(routine.definition)]
        name = qualified(self._schema(diff), routine.name)
        keyword = spec_for(diff.object_type).keyword
        tag = "$procedure$" if diff.object_type == ObjectType.PROCEDURE else "$function$"

        lines = [f"CREATE OR REPLACE {keyword} {name}({routine.arguments})"]
        if diff.object_type == ObjectType.FUNCTION and routine.return_type:
            lines.append(f" RETURNS {routine.return_type}")
        lines.append(f" LANGUAGE {routine.language}")
        if diff.object_type == ObjectType.FUNCTION:
            if routine.volatility:
                lines.append(f" {routine.volatility.upper()}")
            if routine.strict:
                lines.append(" STRICT")
        if routine.security_definer:
            lines.append(" SECURITY DEFINER")
        lines.append(f"AS {tag}\n{routine.definition.strip()}\n{tag};")
        return ["\n".join(lines)]

    def _gen_alter_routine(self, diff: ObjectDifference) -> List[str]:
        changed = {a.attribute_name for a in diff.attribute_differences}
        if "return_type" in changed:
            return self._gen_recreate(diff)
        return self._gen_create_routine(diff, diff.source_definition)

    def _gen_create_trigger(self, diff: ObjectDifference, trigger: TriggerDefinition) -> List[str]:
        table = qualified(self._schema(diff), diff.parent_object_name or trigger.table_name)
        if trigger.events:
            events = " OR ".join(e.upper() for e in trigger.events)
            sql = (f"CREATE TRIGGER {quote_ident(diff.object_name)} {trigger.timing.upper()} {events} "
                   f"ON {table} FOR EACH {trigger.level.upper()}")
            if trigger.condition:
                sql += f" WHEN ({trigger.condition})"
            function = self._retarget(diff, trigger.function_name) or "unknown_function"
            if "(" not in function:
                function += "()"
            sql += f" EXECUTE FUNCTION {function};"
            statements = [sql]
        elif trigger.definition:
            statements = [_terminate(trigger.definition)]
        else:
            raise ValueError(f"Trigger {diff.qualified_name} has neither events nor a definition")
        if not trigger.enabled:
            statements.append(f"ALTER TABLE {table} DISABLE TRIGGER {quote_ident(diff.object_name)};")
        return statements

    def _gen_alter_trigger(self, diff: ObjectDifference) -> List[str]:
        changed = {a.attribute_name for a in diff.attribute_differences}
        if changed == {"enabled"}:
            table = qualified(self._schema(diff), diff.parent_object_name)
            action = "ENABLE" if diff.source_definition.enabled else "DISABLE"
            return [f"ALTER TABLE {table} {action} TRIGGER {quote_ident(diff.object_name)};"]
        return self._gen_recreate(diff)

    # ------------------------------------------------------------------
    # Sequences, types, extensions
    # ------------------------------------------------------------------

    def _sequence_options(self, sequence: SequenceDefinition, changed: Optional[set] = None) -> List[str]:
        def wanted(attr: str) -> bool:
            return changed is None or attr in changed

        options = []
        if wanted("data_type") and sequence.data_type:
            options.append(f"AS {sequence.data_type}")
        if wanted("increment") and sequence.increment is not None:
            options.append(f"INCREMENT BY {sequence.increment}")
        if wanted("min_value"):
            options.append(f"MINVALUE {sequence.min_value}" if sequence.min_value is not None else "NO MINVALUE")
        if wanted("max_value"):
            options.append(f"MAXVALUE {sequence.max_value}" if sequence.max_value is not None else "NO MAXVALUE")
        if wanted("start_value") and sequence.start_value is not None:
            options.append(f"START WITH {sequence.start_value}")
        if wanted("cache_size") and sequence.cache_size is not None:
            options.append(f"CACHE {sequence.cache_size}")
        if wanted("cycle"):
            options.append("CYCLE" if sequence.cycle else "NO CYCLE")
        return options

    def _gen_create_sequence(self, diff: ObjectDifference, sequence: SequenceDefinition) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        options = " ".join(self._sequence_options(sequence))
        statements = [f"CREATE SEQUENCE IF NOT EXISTS {name} {options};"]
        if sequence.owned_by:
            statements.append(f"-- Set OWNED BY {sequence.owned_by} once the owning table exists")
        return statements

    def _gen_alter_sequence(self, diff: ObjectDifference) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        target: SequenceDefinition = diff.source_definition
        changed = {a.attribute_name for a in diff.attribute_differences}
        options = self._sequence_options(target, changed)
        if "owned_by" in changed:
            options.append(f"OWNED BY {target.owned_by}" if target.owned_by else "OWNED BY NONE")
        if not options:
            return []
        return [f"ALTER SEQUENCE {name} {' '.join(options)};"]

    def _gen_create_type(self, diff: ObjectDifference, type_def: TypeDefinition) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        if diff.object_type == ObjectType.TYPE_ENUM:
            labels = ", ".join(sql_literal(v) for v in type_def.enum_values)
            return [f"CREATE TYPE {name} AS ENUM ({labels});"]
        if diff.object_type == ObjectType.TYPE_COMPOSITE:
            attributes = ", ".join(
                f"{quote_ident(a.name)} {self._retarget(diff, a.data_type)}" for a in type_def.attributes
            )
            return [f"CREATE TYPE {name} AS ({attributes});"]

        sql = f"CREATE DOMAIN {name} AS {self._retarget(diff, type_def.base_type)}"
        if type_def.default_value:
            sql += f" DEFAULT {type_def.default_value}"
        if type_def.not_null:
            sql += " NOT NULL"
        if type_def.check_expression:
            sql += f" CHECK ({type_def.check_expression})"
        return [sql + ";"]

    def _gen_alter_enum(self, diff: ObjectDifference) -> List[str]:
        attr = diff.attribute_differences[0]
        if attr.attribute_name != "enum_values":
            return self._gen_recreate(diff)

        current_values = list(attr.destination_value or [])
        target_values = list(attr.source_value or [])
        # Labels cannot be removed from an enum in place
        if any(label not in target_values for label in current_values):
            return self._gen_recreate(diff)

        name = qualified(self._schema(diff), diff.object_name)
        statements = []
        for position, label in enumerate(target_values):
            if label in current_values:
                continue
            if position == 0:
                anchor = f" BEFORE {sql_literal(target_values[1])}" if len(target_values) > 1 else ""
            else:
                anchor = f" AFTER {sql_literal(target_values[position - 1])}"
            statements.append(f"ALTER TYPE {name} ADD VALUE IF NOT EXISTS {sql_literal(label)}{anchor};")
        return statements

    def _gen_alter_composite(self, diff: ObjectDifference) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        statements = []
        for attr in diff.attribute_differences:
            if not attr.attribute_name.startswith("attribute:"):
                return self._gen_recreate(diff)
            field = quote_ident(attr.attribute_name.split(":", 1)[1])
            data_type = self._retarget(diff, attr.source_value)
            if attr.is_added():
                statements.append(f"ALTER TYPE {name} DROP ATTRIBUTE IF EXISTS {field};")
            elif attr.is_removed():
                statements.append(f"ALTER TYPE {name} ADD ATTRIBUTE {field} {data_type};")
            else:
                statements.append(f"ALTER TYPE {name} ALTER ATTRIBUTE {field} TYPE {data_type};")
        return statements

    def _gen_alter_domain(self, diff: ObjectDifference) -> List[str]:
        name = qualified(self._schema(diff), diff.object_name)
        changed = {a.attribute_name for a in diff.attribute_differences}
        if changed & {"base_type", "kind"}:
            return self._gen_recreate(diff)

        target: TypeDefinition = diff.source_definition
        check_name = quote_ident(f"{diff.object_name}_check")
        statements = []
        for attr in diff.attribute_differences:
            if attr.attribute_name == "default_value":
                if target.default_value is None:
                    statements.append(f"ALTER DOMAIN {name} DROP DEFAULT;")
                else:
                    statements.append(f"ALTER DOMAIN {name} SET DEFAULT {target.default_value};")
            elif attr.attribute_name == "not_null":
                statements.append(f"ALTER DOMAIN {name} {'SET' if target.not_null else 'DROP'} NOT NULL;")
            elif attr.attribute_name == "check_expression":
                statements.append(f"ALTER DOMAIN {name} DROP CONSTRAINT IF EXISTS {check_name};")
                if target.check_expression:
                    statements.append(
                        f"ALTER DOMAIN {name} ADD CONSTRAINT {check_name} CHECK ({target.check_expression});"
                    )
        return statements

    def _extension_schema(self, diff: ObjectDifference, schema_name: Optional[str]) -> Optional[str]:
        if schema_name and schema_name == diff.schema_name:
            return self._schema(diff)
        return schema_name

    def _gen_create_extension(self, diff: ObjectDifference, extension: ExtensionDefinition) -> List[str]:
        sql = f"CREATE EXTENSION IF NOT EXISTS {quote_ident(diff.object_name)}"
        schema_name = self._extension_schema(diff, extension.schema_name)
        if schema_name:
            sql += f" WITH SCHEMA {quote_ident(schema_name)}"
        if extension.version:
            sql += f" VERSION {sql_literal(extension.version)}"
        return [sql + ";"]

    def _gen_alter_extension(self, diff: ObjectDifference) -> List[str]:
        name = quote_ident(diff.object_name)
        statements = []
        for attr in diff.attribute_differences:
            if attr.attribute_name == "version" and attr.source_value:
                statements.append(f"ALTER EXTENSION {name} UPDATE TO {sql_literal(attr.source_value)};")
            elif attr.attribute_name == "schema_name" and attr.source_value:
                schema_name = self._extension_schema(diff, attr.source_value)
                statements.append(f"ALTER EXTENSION {name} SET SCHEMA {quote_ident(schema_name)};")
        return statements

    # ------------------------------------------------------------------
    # Impact analysis
    # ------------------------------------------------------------------

    def _analyze_impact(self, differences: List[ObjectDifference]) -> Dict[str, Any]:
        """Analyze the impact of applying changes"""
        impact = {
            "total_changes": len(differences),
            "tables_affected": set(),
            "creates": 0,
            "drops": 0,
            "alters": 0,
            "index_rebuilds": 0,
            "constraint_changes": 0,
            "data_type_changes": 0,
            "breaking_changes": 0,
            "risks": [],
        }

        for diff in differences:
            if diff.object_type == ObjectType.TABLE:
                impact["tables_affected"].add(f"{self._schema(diff)}.{diff.object_name}")
            elif diff.parent_object_name and spec_for(diff.object_type).table_scoped:
                impact["tables_affected"].add(f"{self._schema(diff)}.{diff.parent_object_name}")

            if diff.difference_type == DifferenceType.MISSING:
                impact["creates"] += 1
            elif diff.difference_type == DifferenceType.EXTRA:
                impact["drops"] += 1
            else:
                impact["alters"] += 1

            if diff.object_type == ObjectType.INDEX:
                impact["index_rebuilds"] += 1
            elif spec_for(diff.object_type).keyword == "CONSTRAINT":
                impact["constraint_changes"] += 1
            if any(a.attribute_name == "data_type" for a in diff.attribute_differences):
                impact["data_type_changes"] += 1

            if diff.severity == Severity.BREAKING:
                impact["breaking_changes"] += 1
                impact["risks"].append(diff.description)

        impact["tables_affected"] = sorted(impact["tables_affected"])
        return impact

    def _has_data_loss_risk(self, differences: List[ObjectDifference]) -> bool:
        """Check if changes risk data loss"""
        for diff in differences:
            if diff.difference_type == DifferenceType.EXTRA and spec_for(diff.object_type).holds_data:
                return True
            if any(a.attribute_name == "data_type" and _narrows(a) for a in diff.attribute_differences):
                return True
        return False
