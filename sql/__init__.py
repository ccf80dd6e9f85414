"""
=========================================================
SQL compilation package for declarative SQLite access.
=========================================================

This package turns table descriptions and query descriptions into
parameterized SQLite statements. Nothing here touches a database: every
function returns SQL text plus bound parameters (a CompiledStatement) that a
driver executes.

The package follows a clear organization:
    - schema_builder.py: Declarative table descriptions -> TableSchema
    - ddl.py: Data Definition Language (CREATE TABLE/INDEX, FTS5 tables and triggers)
    - expressions.py: Condition trees and expression nodes -> SQL fragments
    - functions.py: Scalar, aggregate and window function catalog
    - validation.py: Payload checks ahead of every write
    - dml.py: Data Manipulation Language (INSERT/UPDATE/UPSERT/DELETE, soft delete)
    - query_builder.py: Reads, joins, aggregates and GROUP BY (_builder suffix for assemblers)
    - fulltext.py: FTS5 tokenizers and MATCH queries
    - pagination.py: Offset and cursor page plans

Architecture:
    - Low-level assemblers end with '_builder' (select_builder, cte_builder)
    - Statement compilers use the 'compile_' prefix
    - Each compile_* call owns a fresh ExpressionCompiler (placeholders :p_1, :p_2, ...)
    - All SQL generation is pure functions (no side effects)

Example:
    >>> from sql import SchemaBuilder, boolean, references, text, schema_to_sql, compile_select
    >>>
    >>> builder = SchemaBuilder()
    >>> forests = builder.build({'name': 'forests', 'fields': {'name': text()}})
    >>> trees = builder.build({
    ...     'name': 'trees',
    ...     'fields': {'forest_id': references('forests'), 'alive': boolean(default=True)},
    ... })
    >>> compile_select(trees, {'forest_id': [1, 2, 3], 'alive': True}).sql
    'SELECT "id", "forest_id", "alive" FROM "trees" WHERE "forest_id" IN (SELECT value FROM json_each(:p_1)) AND "alive" = :p_2;'
"""

__version__ = "1.0.0"
__all__ = [
    # Schema builder
    'SchemaBuilder', 'field', 'integer', 'real', 'text', 'blob', 'boolean', 'date',
    'json', 'now', 'references', 'cascade', 'computed', 'index', 'unique',
    # DDL functions
    'schema_to_sql', 'create_table_sql', 'create_index_sql',
    # Expressions
    'ExpressionCompiler', 'compile_expression', 'match_expression',
    # DML functions
    'compile_insert', 'compile_insert_many', 'compile_update', 'compile_upsert',
    'compile_delete', 'compile_soft_delete', 'compile_restore',
    # Reads
    'compile_query', 'compile_select', 'compile_get', 'compile_exists',
    'compile_aggregate', 'compile_group',
    # Full-text search
    'Unicode61', 'Ascii', 'Trigram', 'compile_match',
    # Pagination
    'paginate', 'cursor_paginate', 'Page', 'CursorPage',
]

from .ddl import create_index_sql, create_table_sql, schema_to_sql
from .dml import (
    compile_delete,
    compile_insert,
    compile_insert_many,
    compile_restore,
    compile_soft_delete,
    compile_update,
    compile_upsert,
)
from .expressions import ExpressionCompiler, compile_expression, match_expression
from .fulltext import Ascii, Trigram, Unicode61, compile_match
from .pagination import CursorPage, Page, cursor_paginate, paginate
from .query_builder import (
    compile_aggregate,
    compile_exists,
    compile_get,
    compile_group,
    compile_query,
    compile_select,
)
from .schema_builder import (
    SchemaBuilder,
    blob,
    boolean,
    cascade,
    computed,
    date,
    field,
    index,
    integer,
    json,
    now,
    real,
    references,
    text,
    unique,
)
