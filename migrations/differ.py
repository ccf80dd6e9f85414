"""
==================================================
Migration differ: schema snapshot -> SQL script.
==================================================

Compares the previous and current table schemas and plans the smallest
script SQLite can actually run. SQLite cannot alter most constraints in
place, so any constraint change on an existing table rebuilds it:

    1. CREATE TABLE "temp_<table>" with the current shape (no indexes)
    2. INSERT INTO "temp_<table>" (...) SELECT ... FROM "<table>"
    3. DROP TABLE "<table>"
    4. ALTER TABLE "temp_<table>" RENAME TO "<table>"
    5. CREATE INDEX ... for every current index
    6. PRAGMA foreign_key_check

Otherwise the table is altered incrementally: renames (a removed and an
added column with identical attributes), added columns, dropped and added
indexes (compared by content hash), then dropped columns.

Functions:
    plan_migration: Ordered MigrationOperation list
    diff_schemas: The same plan rendered as one SQL script
    analyze_migration: Destructive operations contained in a script

Example:
    >>> previous = schemas_from_json(Path('schema.json').read_text())
    >>> script = diff_schemas(previous, builder.tables.values())
    >>> analyze_migration(script)['is_destructive']
    False
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Union

from core.logger import get_logger
from core.type_registry import TypeRegistry
from models.migration_models import (
    AddColumn,
    AddIndex,
    CreateTable,
    DropColumn,
    DropIndex,
    DropTable,
    MigrationOperation,
    RebuildFullText,
    RecreateTable,
    RenameColumn,
)
from models.schema_models import NOW, ColumnDescriptor, TableSchema, schemas_from_json
from sql.ddl import (
    column_clause,
    create_index_sql,
    create_table_sql,
    fts_trigger_names,
    fts_triggers_sql,
    schema_to_sql,
)

logger = get_logger(__name__)

SchemaSet = Union[str, Iterable[TableSchema], Dict[str, TableSchema], None]

DROP_TABLE_PATTERN = re.compile(r'^DROP TABLE (?:IF EXISTS )?"?(\w+)"?', re.IGNORECASE)
DROP_COLUMN_PATTERN = re.compile(r'^ALTER TABLE "?(\w+)"? DROP COLUMN "?(\w+)"?', re.IGNORECASE)
ADD_COLUMN_PATTERN = re.compile(r'^ALTER TABLE "?(\w+)"? ADD COLUMN "?(\w+)"?', re.IGNORECASE)
CREATE_TABLE_PATTERN = re.compile(r'^CREATE (?:VIRTUAL )?TABLE (?:IF NOT EXISTS )?"?(\w+)"?', re.IGNORECASE)
TEMP_PREFIX = 'temp_'


def _as_list(schemas: SchemaSet) -> List[TableSchema]:
    if schemas is None:
        return []
    if isinstance(schemas, str):
        return schemas_from_json(schemas)
    if isinstance(schemas, dict):
        return list(schemas.values())
    return list(schemas)


def _addable(column: ColumnDescriptor) -> bool:
    """Whether ALTER TABLE ADD COLUMN can add this column to a populated table."""
    return not (column.primary_key or column.required or column.default is NOW)


def _needs_recreate(previous: TableSchema, current: TableSchema) -> Optional[str]:
    """Reason the table must be rebuilt, or None when it can be altered in place."""
    if set(previous.checks) != set(current.checks):
        return 'check constraints changed'
    if previous.primary_keys != current.primary_keys:
        return 'primary key changed'
    if set(previous.foreign_keys) != set(current.foreign_keys):
        return 'foreign keys changed'
    if previous.computed != current.computed:
        return 'computed columns changed'

    for column in current.columns:
        existing = previous.column(column.name)
        if existing is not None and existing != column:
            return f"column '{column.name}' changed"

    renamed = _renames(previous, current)
    for column in current.columns:
        if previous.column(column.name) is None and column.name not in renamed.values():
            if not _addable(column):
                return f"column '{column.name}' cannot be added in place"
    return None


def _renames(previous: TableSchema, current: TableSchema) -> Dict[str, str]:
    """Removed column -> added column pairs whose attributes are identical."""
    added = [c for c in current.columns if previous.column(c.name) is None]
    removed = [c for c in previous.columns if current.column(c.name) is None]

    renames = {}
    for old in removed:
        for new in added:
            if new.name not in renames.values() and old.shape() == new.shape():
                renames[old.name] = new.name
                break
    return renames


def _recreate(
    previous: TableSchema,
    current: TableSchema,
    dependents: List[TableSchema],
    registry: Optional[TypeRegistry]
) -> RecreateTable:
    temp_name = f"{TEMP_PREFIX}{current.name}"
    shared = tuple(name for name in current.column_names if previous.column(name) is not None)
    restored = [create_index_sql(current.name, index) for index in current.indexes]
    # Dropping the old table drops the sync triggers of FTS tables indexing it
    for fts in dependents:
        restored.extend(fts_triggers_sql(fts))
    return RecreateTable(
        table=current.name,
        create_temp=create_table_sql(current, name=temp_name, registry=registry),
        shared_columns=shared,
        index_ddl=tuple(restored)
    )


def _alter(previous: TableSchema, current: TableSchema,
           registry: Optional[TypeRegistry]) -> List[MigrationOperation]:
    operations: List[MigrationOperation] = []
    table = current.name
    renames = _renames(previous, current)

    for old, new in renames.items():
        operations.append(RenameColumn(table=table, old=old, new=new))

    for column in current.columns:
        if previous.column(column.name) is None and column.name not in renames.values():
            operations.append(AddColumn(table=table, column_clause=column_clause(column, registry)))

    previous_indexes = {index.content_hash(): index for index in previous.indexes}
    current_indexes = {index.content_hash(): index for index in current.indexes}
    for digest, index in previous_indexes.items():
        if digest not in current_indexes:
            operations.append(DropIndex(table=table, name=index.name_for(table)))
    for digest, index in current_indexes.items():
        if digest not in previous_indexes:
            operations.append(AddIndex(
                table=table, name=index.name_for(table), ddl=create_index_sql(table, index)
            ))

    for column in previous.columns:
        if current.column(column.name) is None and column.name not in renames:
            operations.append(DropColumn(table=table, column=column.name))
    return operations


def _replace_fts(previous: TableSchema, current: TableSchema,
                 registry: Optional[TypeRegistry]) -> List[MigrationOperation]:
    operations = [
        DropTable(table=previous.name, triggers=tuple(fts_trigger_names(previous))),
        CreateTable(table=current.name, ddl=tuple(schema_to_sql(current, registry))),
    ]
    if current.content:
        operations.append(RebuildFullText(table=current.name))
    return operations


def plan_migration(
    previous: SchemaSet,
    current: SchemaSet,
    registry: Optional[TypeRegistry] = None
) -> List[MigrationOperation]:
    """
    Plan the operations that turn the previous schemas into the current ones.

    Args:
        previous: Schemas already applied (TableSchema list, mapping, or a
            JSON snapshot from schemas_to_json)
        current: Desired schemas
        registry: TypeRegistry mapping logical to storage types

    Returns:
        Ordered MigrationOperation list (empty when nothing changed)
    """
    previous_tables = {schema.name: schema for schema in _as_list(previous)}
    current_list = _as_list(current)
    current_names = {schema.name for schema in current_list}
    operations: List[MigrationOperation] = []

    for schema in current_list:
        if schema.name not in previous_tables:
            operations.append(CreateTable(table=schema.name, ddl=tuple(schema_to_sql(schema, registry))))

    for name, schema in previous_tables.items():
        if name not in current_names:
            operations.append(DropTable(table=name, triggers=tuple(fts_trigger_names(schema))))

    for schema in current_list:
        existing = previous_tables.get(schema.name)
        if existing is None or existing == schema:
            continue

        if existing.virtual or schema.virtual:
            logger.info(f"Full-text table '{schema.name}' changed, rebuilding")
            operations.extend(_replace_fts(existing, schema, registry))
            continue

        reason = _needs_recreate(existing, schema)
        if reason:
            logger.info(f"Recreating table '{schema.name}': {reason}")
            dependents = [
                other for other in current_list
                if other.virtual and other.content == schema.name
                and previous_tables.get(other.name) == other
            ]
            operations.append(_recreate(existing, schema, dependents, registry))
            continue

        operations.extend(_alter(existing, schema, registry))

    logger.debug(f"Planned {len(operations)} migration operations")
    return operations


def diff_schemas(
    previous: SchemaSet,
    current: SchemaSet,
    registry: Optional[TypeRegistry] = None
) -> str:
    """
    Render the migration from previous to current schemas as one SQL script.

    Args:
        previous: Schemas already applied
        current: Desired schemas
        registry: TypeRegistry mapping logical to storage types

    Returns:
        SQL script, one statement per line block ('' when nothing changed)

    Example:
        >>> diff_schemas([trees], [trees])
        ''
    """
    statements = [
        statement
        for operation in plan_migration(previous, current, registry)
        for statement in operation.statements()
    ]
    if not statements:
        return ''
    return '\n'.join(statements) + '\n'


def analyze_migration(sql: str) -> Dict[str, Any]:
    """
    Report the potentially destructive operations in a migration script.

    Args:
        sql: Script produced by diff_schemas

    Returns:
        Dictionary with dropped_tables, dropped_columns, recreated_tables,
        added_tables, added_columns and is_destructive
    """
    report: Dict[str, Any] = {
        'dropped_tables': [],
        'dropped_columns': [],
        'recreated_tables': [],
        'added_tables': [],
        'added_columns': [],
    }

    for line in sql.splitlines():
        line = line.strip()
        match = CREATE_TABLE_PATTERN.match(line)
        if match:
            name = match.group(1)
            if name.startswith(TEMP_PREFIX):
                report['recreated_tables'].append(name[len(TEMP_PREFIX):])
            else:
                report['added_tables'].append(name)
            continue
        match = DROP_TABLE_PATTERN.match(line)
        if match:
            if match.group(1) not in report['recreated_tables']:
                report['dropped_tables'].append(match.group(1))
            continue
        match = DROP_COLUMN_PATTERN.match(line)
        if match:
            report['dropped_columns'].append({'table': match.group(1), 'column': match.group(2)})
            continue
        match = ADD_COLUMN_PATTERN.match(line)
        if match:
            report['added_columns'].append({'table': match.group(1), 'column': match.group(2)})

    report['is_destructive'] = bool(
        report['dropped_tables'] or report['dropped_columns'] or report['recreated_tables']
    )
    return report
