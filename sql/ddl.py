"""
=======================================================================
Data Definition Language (DDL) rendering for TableSchema records.
=======================================================================

Turns the canonical TableSchema produced by the schema builder into
SQLite CREATE statements. Physical tables are STRICT; logical types are
mapped to storage types through the TypeRegistry.

Key Features:
    - Column clauses with NOT NULL, DEFAULT, single-column PRIMARY KEY
    - Composite PRIMARY KEY, FOREIGN KEY with actions, CHECK constraints
    - Generated (computed) columns
    - Indexes named after their content hash, optionally partial
    - FTS5 virtual tables, with sync triggers for external-content tables

Functions:
    schema_to_sql: All statements needed to create a table
    create_table_sql: CREATE TABLE statement (optionally under another name)
    column_clause: One column definition
    create_index_sql: CREATE INDEX statement
    create_fts_sql: CREATE VIRTUAL TABLE ... USING fts5 statement
    fts_triggers_sql: Sync triggers for an external-content FTS table
    fts_trigger_names: Names of those triggers
    drop_table_sql: DROP TABLE statement

Example:
    >>> from sql.ddl import schema_to_sql
    >>> for statement in schema_to_sql(trees):
    ...     print(statement)
    CREATE TABLE "trees" (
        "id" INTEGER PRIMARY KEY NOT NULL,
        "name" TEXT NOT NULL,
        "alive" INTEGER NOT NULL DEFAULT 1,
        CHECK ("alive" IN (0, 1))
    ) STRICT;
"""

from typing import Any, List, Optional

from core.type_registry import TypeRegistry, default_registry
from models.schema_models import NOW, ColumnDescriptor, ComputedColumn, IndexDescriptor, TableSchema
from sql.expressions import render_literal

NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"
INDENT = '    '


def render_default(column: ColumnDescriptor) -> Optional[str]:
    """Render the DEFAULT expression of a column, or None.

    Example:
        >>> render_default(ColumnDescriptor('created_at', 'date', default=NOW))
        "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"
    """
    if column.default is None:
        return None
    if column.default is NOW:
        return NOW_SQL
    literal = render_literal(column.default)
    if column.type == 'json':
        return f"(jsonb({literal}))"
    return literal


def column_clause(
    column: ColumnDescriptor,
    registry: Optional[TypeRegistry] = None,
    inline_primary_key: bool = True
) -> str:
    """Generate one column definition.

    Args:
        column: Column descriptor
        registry: TypeRegistry mapping logical to storage types
        inline_primary_key: Emit PRIMARY KEY on the column itself

    Returns:
        Column definition without trailing comma
    """
    registry = registry or default_registry
    sql_parts = [f'"{column.name}"', registry.storage_type(column.type).upper()]

    if column.primary_key and inline_primary_key:
        sql_parts.append("PRIMARY KEY")
    if column.not_null:
        sql_parts.append("NOT NULL")

    default = render_default(column)
    if default is not None:
        sql_parts.append(f"DEFAULT {default}")

    return " ".join(sql_parts)


def computed_clause(column: ComputedColumn, registry: Optional[TypeRegistry] = None) -> str:
    registry = registry or default_registry
    storage = registry.storage_type(column.type).upper()
    kind = "STORED" if column.stored else "VIRTUAL"
    return f'"{column.name}" {storage} GENERATED ALWAYS AS ({column.expression}) {kind}'


def create_table_sql(
    schema: TableSchema,
    name: Optional[str] = None,
    registry: Optional[TypeRegistry] = None
) -> str:
    """Generate the CREATE TABLE statement for a physical table.

    Args:
        schema: Table schema
        name: Table name to create (defaults to schema.name; used for
            temporary tables during a recreate migration)
        registry: TypeRegistry mapping logical to storage types

    Returns:
        CREATE TABLE ... STRICT statement
    """
    name = name or schema.name
    composite = len(schema.primary_keys) > 1

    definitions = [
        column_clause(column, registry, inline_primary_key=not composite)
        for column in schema.columns
    ]
    definitions.extend(computed_clause(column, registry) for column in schema.computed)

    if composite:
        keys = ", ".join(f'"{key}"' for key in schema.primary_keys)
        definitions.append(f"PRIMARY KEY ({keys})")

    for fk in schema.foreign_keys:
        clause = (
            f'FOREIGN KEY ("{fk.column}") REFERENCES '
            f'"{fk.references_table}" ("{fk.references_column}")'
        )
        if fk.on_delete:
            clause += f" ON DELETE {fk.on_delete.upper()}"
        if fk.on_update:
            clause += f" ON UPDATE {fk.on_update.upper()}"
        definitions.append(clause)

    definitions.extend(f"CHECK ({check})" for check in schema.checks)

    body = f",\n{INDENT}".join(definitions)
    return f'CREATE TABLE "{name}" (\n{INDENT}{body}\n) STRICT;'


def create_index_sql(table: str, index: IndexDescriptor, if_not_exists: bool = False) -> str:
    """Generate CREATE INDEX for a table index.

    Args:
        table: Table name
        index: Index descriptor
        if_not_exists: Add IF NOT EXISTS

    Returns:
        SQL CREATE INDEX statement

    Example:
        >>> create_index_sql('trees', IndexDescriptor(on=('forest_id',)))
        'CREATE INDEX "trees_3f1c0a2b9d" ON "trees" ("forest_id");'
    """
    sql_parts = ["CREATE"]

    if index.unique:
        sql_parts.append("UNIQUE")

    sql_parts.append("INDEX")

    if if_not_exists:
        sql_parts.append("IF NOT EXISTS")

    sql_parts.append(f'"{index.name_for(table)}"')
    sql_parts.append(f'ON "{table}" ({index.target})')

    if index.where:
        sql_parts.append(f"WHERE {index.where}")

    return " ".join(sql_parts) + ";"


def create_fts_sql(schema: TableSchema) -> str:
    """Generate CREATE VIRTUAL TABLE ... USING fts5 for a full-text table."""
    arguments = [
        f'"{column.name}" UNINDEXED' if column.unindexed else f'"{column.name}"'
        for column in schema.columns
    ]
    if schema.content:
        arguments.append(f"content={render_literal(schema.content)}")
        arguments.append(f"content_rowid={render_literal(schema.content_rowid)}")
    if schema.prefix:
        arguments.append(f"prefix={render_literal(' '.join(str(size) for size in schema.prefix))}")
    if schema.tokenizer:
        arguments.append(f"tokenize={render_literal(schema.tokenizer)}")

    return f'CREATE VIRTUAL TABLE "{schema.name}" USING fts5({", ".join(arguments)});'


def fts_trigger_names(schema: TableSchema) -> List[str]:
    """Names of the sync triggers kept on an FTS table's content table."""
    if not schema.virtual or not schema.content:
        return []
    return [f"{schema.name}_ai", f"{schema.name}_ad", f"{schema.name}_au"]


def fts_triggers_sql(schema: TableSchema) -> List[str]:
    """Triggers keeping an external-content FTS index in sync with its base table.

    Returns:
        CREATE TRIGGER statements for insert, delete and update (empty for
        standalone FTS tables)
    """
    if not schema.virtual or not schema.content:
        return []

    fts = f'"{schema.name}"'
    base = f'"{schema.content}"'
    rowid = f'"{schema.content_rowid}"'
    columns = [f'"{column.source.column if column.source else column.name}"' for column in schema.columns]
    targets = ", ".join(f'"{column.name}"' for column in schema.columns)

    def values(prefix: str) -> str:
        return ", ".join(f"{prefix}.{column}" for column in columns)

    insert_row = f"INSERT INTO {fts}(rowid, {targets}) VALUES (new.{rowid}, {values('new')});"
    delete_row = (
        f"INSERT INTO {fts}({fts}, rowid, {targets}) "
        f"VALUES ('delete', old.{rowid}, {values('old')});"
    )
    ai, ad, au = fts_trigger_names(schema)

    return [
        f'CREATE TRIGGER "{ai}" AFTER INSERT ON {base} BEGIN\n{INDENT}{insert_row}\nEND;',
        f'CREATE TRIGGER "{ad}" AFTER DELETE ON {base} BEGIN\n{INDENT}{delete_row}\nEND;',
        f'CREATE TRIGGER "{au}" AFTER UPDATE ON {base} BEGIN\n'
        f'{INDENT}{delete_row}\n{INDENT}{insert_row}\nEND;',
    ]


def schema_to_sql(schema: TableSchema, registry: Optional[TypeRegistry] = None) -> List[str]:
    """Generate every statement needed to create a table.

    Args:
        schema: Table schema
        registry: TypeRegistry mapping logical to storage types

    Returns:
        List of statements: the table, then its indexes (or, for FTS
        tables, the virtual table and its sync triggers)
    """
    if schema.virtual:
        return [create_fts_sql(schema)] + fts_triggers_sql(schema)

    statements = [create_table_sql(schema, registry=registry)]
    statements.extend(create_index_sql(schema.name, index) for index in schema.indexes)
    return statements


def drop_table_sql(table: str, if_exists: bool = False) -> str:
    """Generate DROP TABLE statement."""
    sql_parts = ["DROP TABLE"]
    if if_exists:
        sql_parts.append("IF EXISTS")
    sql_parts.append(f'"{table}"')
    return " ".join(sql_parts) + ";"


def render_script(statements: List[Any]) -> str:
    """Join statements into one script, one statement per line block."""
    return "\n".join(str(statement) for statement in statements)
