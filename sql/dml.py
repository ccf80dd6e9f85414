"""
===========================================
Data Manipulation Language (DML) compilers.
===========================================

Validated, fully parameterized write statements for one table. Every
payload value appears only as a named placeholder; JSON values are bound
as text and wrapped in jsonb().

Functions:
- compile_insert: INSERT ... RETURNING <primary key>
- compile_insert_many: one INSERT ... SELECT FROM json_each(:p) when the
  batch has no blob column, otherwise one INSERT per row
- compile_update: UPDATE ... SET with bound values or compiled expressions
  (update, delete, soft delete and restore return the affected row count)
- compile_upsert: INSERT ... ON CONFLICT ... RETURNING <primary key>
- compile_delete: DELETE ... WHERE
- compile_soft_delete: set deleted_at on rows not yet deleted
- compile_restore: clear deleted_at on deleted rows

Usage:
    from sql.dml import compile_insert, compile_upsert

    insert = compile_insert(trees, {'name': 'Oak', 'forest_id': 1})

    upsert = compile_upsert(
        forests,
        {'id': 1, 'name': 'A'},
        target='id',
        set={'name': 'B'}
    )
"""

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

from core.exceptions import CompilationError
from core.type_registry import TypeRegistry, default_registry
from models.expression_models import Column, CompiledStatement, RowProcessor
from models.schema_models import TableSchema
from sql.expressions import ExpressionCompiler, is_node, validate_identifier
from sql.query_builder import cte_builder
from sql.validation import validate_insert, validate_update

logger = logging.getLogger(__name__)


def _returning(schema: TableSchema, registry: TypeRegistry, many: bool = False):
    """RETURNING clause and processor for the primary key.

    FTS5 virtual tables do not support RETURNING.
    """
    if schema.virtual:
        return '', RowProcessor(mode='none')

    keys = list(schema.primary_keys)
    converters = {
        key: partial(registry.from_storage, schema.type_of(key)) for key in keys
    }
    clause = "RETURNING " + ", ".join(f'"{key}"' for key in keys)
    if len(keys) == 1:
        mode = 'values' if many else 'value'
    else:
        mode = 'rows' if many else 'row'
    return clause, RowProcessor(converters=converters, mode=mode)


def _changes(schema: TableSchema):
    """RETURNING clause and processor counting the affected rows."""
    if schema.virtual:
        return '', RowProcessor(mode='none')
    return " RETURNING 1", RowProcessor(mode='count')


def _value_sql(compiler: ExpressionCompiler, schema: TableSchema, name: str, value: Any) -> str:
    """Placeholder for one payload value, wrapped in jsonb() for JSON columns."""
    type_name = schema.type_of(name)
    placeholder = compiler.bind(compiler.to_storage(value, type_name))
    if type_name == 'json' and value is not None:
        return f"jsonb({placeholder})"
    return placeholder


def _assignment_sql(
    compiler: ExpressionCompiler,
    schema: TableSchema,
    name: str,
    value: Any,
    table: Optional[str] = None
) -> str:
    """Right-hand side of a SET assignment: bound value, node, or callback."""
    if callable(value) and not is_node(value):
        value = value(Column(name, table))
    if is_node(value):
        return compiler.compile_node(value)
    return _value_sql(compiler, schema, name, value)


def _statement(
    compiler: ExpressionCompiler,
    sql: str,
    processor: Optional[RowProcessor] = None
) -> CompiledStatement:
    return CompiledStatement(
        sql=cte_builder(compiler.ctes, sql),
        params=dict(compiler.params),
        tables=tuple(t for t in compiler.tables if t in compiler.schemas),
        processor=processor or RowProcessor(mode='none'),
        write=True
    )


def _compiler(schema: TableSchema, schemas: Any, registry: Optional[TypeRegistry]) -> ExpressionCompiler:
    if schemas is None:
        known = {schema.name: schema}
    elif isinstance(schemas, Mapping):
        known = {**schemas, schema.name: schema}
    else:
        known = {**{s.name: s for s in schemas}, schema.name: schema}
    return ExpressionCompiler(known, registry=registry, table=schema.name)


def _insert_body(compiler: ExpressionCompiler, schema: TableSchema, values: Mapping[str, Any]) -> str:
    table = f'"{schema.name}"'
    if not values:
        return f"INSERT INTO {table} DEFAULT VALUES"
    columns = ", ".join(f'"{name}"' for name in values)
    placeholders = ", ".join(_value_sql(compiler, schema, name, value) for name, value in values.items())
    return f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"


def compile_insert(
    schema: TableSchema,
    values: Mapping[str, Any],
    registry: Optional[TypeRegistry] = None,
    schemas: Any = None
) -> CompiledStatement:
    """
    Generate a validated INSERT returning the new row's primary key.

    Args:
        schema: Target table
        values: Column -> value payload
        registry: TypeRegistry for validation and conversion
        schemas: Other known tables (unused by inserts, accepted for symmetry)

    Returns:
        CompiledStatement processing to the primary key value

    Raises:
        ValidationError: If the payload does not match the columns

    Example:
        >>> compile_insert(trees, {'name': 'Oak', 'forest_id': 1}).sql
        'INSERT INTO "trees" ("name", "forest_id") VALUES (:p_1, :p_2) RETURNING "id";'
    """
    registry = registry or default_registry
    validate_insert(schema, values, registry)

    compiler = _compiler(schema, schemas, registry)
    returning, processor = _returning(schema, registry)
    sql = _insert_body(compiler, schema, values)
    if returning:
        sql += f" {returning}"
    return _statement(compiler, sql + ";", processor)


def compile_insert_many(
    schema: TableSchema,
    items: Sequence[Mapping[str, Any]],
    registry: Optional[TypeRegistry] = None,
    schemas: Any = None
) -> List[CompiledStatement]:
    """
    Generate statements inserting a batch of rows.

    When every item has the same keys and none of them is a blob column,
    the batch is one statement expanding a single JSON array parameter:

        INSERT INTO "trees" ("name", "alive")
        SELECT json_extract(value, '$.name'), json_extract(value, '$.alive')
        FROM json_each(:p_1) RETURNING "id";

    Otherwise one INSERT per row is returned, to be run as a batch.

    Args:
        schema: Target table
        items: Row payloads
        registry: TypeRegistry for validation and conversion
        schemas: Other known tables

    Returns:
        List of CompiledStatements (a single one for the JSON form)

    Raises:
        ValidationError: If any item does not match the columns
    """
    registry = registry or default_registry
    if not items:
        return []
    for item in items:
        validate_insert(schema, item, registry)

    keys = list(items[0])
    same_shape = all(list(item) == keys for item in items)
    has_blob = any(schema.type_of(key) == 'blob' for key in keys)

    if not keys or not same_shape or has_blob or schema.virtual:
        logger.debug(
            f"Insert-many on '{schema.name}' falls back to {len(items)} single-row statements"
        )
        return [compile_insert(schema, item, registry, schemas) for item in items]

    compiler = _compiler(schema, schemas, registry)
    rows = [
        {key: compiler.to_storage(item[key], schema.type_of(key)) for key in keys}
        for item in items
    ]
    # Storage values are plain JSON types, so the batch binds as one JSON array
    placeholder = compiler.bind(registry.to_storage('json', rows))

    projections = []
    for key in keys:
        validate_identifier(key, table=schema.name)
        extract = f"json_extract(value, '$.{key}')"
        if schema.type_of(key) == 'json':
            extract = f"jsonb({extract})"
        projections.append(extract)

    returning, processor = _returning(schema, registry, many=True)
    columns = ", ".join(f'"{key}"' for key in keys)
    sql = (
        f'INSERT INTO "{schema.name}" ({columns}) '
        f"SELECT {', '.join(projections)} FROM json_each({placeholder}) {returning};"
    )
    return [_statement(compiler, sql, processor)]


def compile_update(
    schema: TableSchema,
    values: Mapping[str, Any],
    where: Any = None,
    registry: Optional[TypeRegistry] = None,
    schemas: Any = None
) -> CompiledStatement:
    """
    Generate a validated UPDATE.

    Each value is bound, or compiled when it is an expression node or a
    callback receiving the column reference:

        compile_update(trees, {'height': lambda h: FunctionCall('plus', (h, Literal(1)))},
                       where={'id': 3})
        # UPDATE "trees" SET "height" = ("height" + :p_1) WHERE "id" = :p_2 RETURNING 1;

    Raises:
        ValidationError: If the payload does not match the columns
        CompilationError: If the condition cannot be compiled
    """
    registry = registry or default_registry
    validate_update(schema, values, registry)

    compiler = _compiler(schema, schemas, registry)
    assignments = [
        f'"{name}" = {_assignment_sql(compiler, schema, name, value)}'
        for name, value in values.items()
    ]
    sql = f'UPDATE "{schema.name}" SET {", ".join(assignments)}'
    condition = compiler.compile_where(where)
    if condition:
        sql += f" WHERE {condition}"
    returning, processor = _changes(schema)
    return _statement(compiler, sql + returning + ";", processor)


def compile_upsert(
    schema: TableSchema,
    values: Mapping[str, Any],
    target: Union[str, Sequence[str], None] = None,
    set: Optional[Mapping[str, Any]] = None,
    registry: Optional[TypeRegistry] = None,
    schemas: Any = None
) -> CompiledStatement:
    """
    Generate INSERT ... ON CONFLICT returning the primary key of the row
    that exists after the statement.

    With both a conflict target and a replacement set the conflicting row
    is updated; otherwise the conflict clause re-assigns the primary key to
    itself so RETURNING still yields the existing row.

    Args:
        schema: Target table
        values: Row to insert
        target: Conflict target column(s)
        set: Column -> value/expression to apply on conflict; values may
            reference Column(name, 'excluded')
        registry: TypeRegistry for validation and conversion
        schemas: Other known tables

    Example:
        >>> compile_upsert(forests, {'id': 1, 'name': 'A'}, target='id', set={'name': 'B'}).sql
        'INSERT INTO "forests" ("id", "name") VALUES (:p_1, :p_2) ON CONFLICT ("id") DO UPDATE SET "name" = :p_3 RETURNING "id";'
    """
    registry = registry or default_registry
    if schema.virtual:
        raise CompilationError(f"Upsert is not supported on virtual table '{schema.name}'", table=schema.name)
    validate_insert(schema, values, registry)
    if set:
        validate_update(schema, set, registry)

    if isinstance(target, str):
        target = [target]
    target = list(target or [])
    for column in target:
        validate_identifier(column, table=schema.name)
        if schema.column(column) is None:
            raise CompilationError(f"Unknown conflict target '{column}'", table=schema.name, column=column)

    if not values:
        raise CompilationError("Upsert needs at least one value", table=schema.name)

    compiler = _compiler(schema, schemas, registry)
    sql = _insert_body(compiler, schema, values)

    if target and set:
        conflict_target = ", ".join(f'"{column}"' for column in target)
        assignments = ", ".join(
            f'"{name}" = {_assignment_sql(compiler, schema, name, value)}'
            for name, value in set.items()
        )
        sql += f" ON CONFLICT ({conflict_target}) DO UPDATE SET {assignments}"
    else:
        key = f'"{schema.primary_keys[0]}"'
        conflict_target = ", ".join(f'"{column}"' for column in target)
        sql += f" ON CONFLICT ({conflict_target})" if target else " ON CONFLICT"
        sql += f" DO UPDATE SET {key} = {key}"

    returning, processor = _returning(schema, registry)
    return _statement(compiler, f"{sql} {returning};", processor)


def compile_delete(
    schema: TableSchema,
    where: Any = None,
    registry: Optional[TypeRegistry] = None,
    schemas: Any = None
) -> CompiledStatement:
    """Generate a plain parameterized DELETE."""
    compiler = _compiler(schema, schemas, registry)
    sql = f'DELETE FROM "{schema.name}"'
    condition = compiler.compile_where(where)
    if condition:
        sql += f" WHERE {condition}"
    returning, processor = _changes(schema)
    return _statement(compiler, sql + returning + ";", processor)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _soft_delete_statement(
    schema: TableSchema,
    where: Any,
    assignment: Callable[[ExpressionCompiler], str],
    guard: str,
    registry: Optional[TypeRegistry],
    schemas: Any
) -> CompiledStatement:
    if not schema.soft_delete:
        raise CompilationError(f"Table '{schema.name}' is not soft-deletable", table=schema.name)

    compiler = _compiler(schema, schemas, registry)
    column = f'"{TableSchema.DELETED_AT}"'
    value = assignment(compiler)
    condition = compiler.condition(where)
    guard_sql = f"{column} {guard}"
    if condition.sql:
        condition_sql = f"({condition.sql})" if condition.compound else condition.sql
        guard_sql = f"{condition_sql} AND {guard_sql}"
    returning, processor = _changes(schema)
    sql = f'UPDATE "{schema.name}" SET {column} = {value} WHERE {guard_sql}{returning};'
    return _statement(compiler, sql, processor)


def compile_soft_delete(
    schema: TableSchema,
    where: Any = None,
    now: Optional[datetime] = None,
    registry: Optional[TypeRegistry] = None,
    schemas: Any = None
) -> CompiledStatement:
    """
    Mark matching rows deleted, leaving already deleted rows untouched.

    Example:
        >>> compile_soft_delete(trees, {'id': 3}).sql
        'UPDATE "trees" SET "deleted_at" = :p_1 WHERE "id" = :p_2 AND "deleted_at" IS NULL RETURNING 1;'

    Raises:
        CompilationError: If the table is not soft-deletable
    """
    timestamp = now or _utc_now()
    return _soft_delete_statement(
        schema, where,
        lambda compiler: compiler.bind(compiler.to_storage(timestamp, 'date')),
        'IS NULL', registry, schemas
    )


def compile_restore(
    schema: TableSchema,
    where: Any = None,
    registry: Optional[TypeRegistry] = None,
    schemas: Any = None
) -> CompiledStatement:
    """
    Clear deleted_at on matching rows that are currently deleted.

    Raises:
        CompilationError: If the table is not soft-deletable
    """
    return _soft_delete_statement(schema, where, lambda compiler: 'NULL', 'IS NOT NULL', registry, schemas)
