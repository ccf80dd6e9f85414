"""
===============================================
Full-text search: tokenizers and MATCH queries.
===============================================

FTS5 tables are declared through the schema builder with one of the
tokenizers below; compile_match() reads them with a structured query
translated into FTS5 syntax (see sql.expressions.match_expression), with
optional bm25 weighting, rank ordering and highlight/snippet columns.

Tokenizers:
- Unicode61: unicode61 with diacritics removal (optionally porter stemmed)
- Ascii: ascii tokenizer (optionally porter stemmed)
- Trigram: trigram tokenizer for substring matching

Usage:
    from sql.fulltext import Unicode61, compile_match

    search = compile_match(
        trees_search,
        {'and': ['oak', {'prefix': 'anc'}]},
        bm25={'name': 10.0},
        highlight={'column': 'notes', 'start': '<b>', 'end': '</b>'},
        limit=20
    )
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.exceptions import CompilationError
from core.type_registry import TypeRegistry
from models.expression_models import Column, CompiledStatement
from models.schema_models import TableSchema
from sql.expressions import match_expression
from sql.query_builder import compile_parts, limit_builder

logger = logging.getLogger(__name__)

SNIPPET_MAX_TOKENS = 64


@dataclass(frozen=True)
class Unicode61:
    """unicode61 tokenizer.

    Attributes:
        remove_diacritics: 0, 1 or 2
        porter: Wrap in the porter stemmer
        tokenchars: Extra characters treated as token characters
        separators: Extra characters treated as separators
    """

    remove_diacritics: int = 2
    porter: bool = False
    tokenchars: Optional[str] = None
    separators: Optional[str] = None

    def to_sql(self) -> str:
        if self.remove_diacritics not in (0, 1, 2):
            raise CompilationError(f"remove_diacritics must be 0, 1 or 2, got {self.remove_diacritics!r}")
        parts = ['porter'] if self.porter else []
        parts += ['unicode61', 'remove_diacritics', str(self.remove_diacritics)]
        if self.tokenchars:
            parts += ['tokenchars', _quote_option(self.tokenchars)]
        if self.separators:
            parts += ['separators', _quote_option(self.separators)]
        return ' '.join(parts)


@dataclass(frozen=True)
class Ascii:
    """ascii tokenizer."""

    porter: bool = False

    def to_sql(self) -> str:
        return 'porter ascii' if self.porter else 'ascii'


@dataclass(frozen=True)
class Trigram:
    """trigram tokenizer; case_sensitive matches case exactly."""

    case_sensitive: bool = False

    def to_sql(self) -> str:
        return f"trigram case_sensitive {1 if self.case_sensitive else 0}"


def _quote_option(value: str) -> str:
    # Tokenizer options nest inside the single-quoted tokenize= argument
    return '"' + value.replace('"', '""') + '"'


def _column_index(schema: TableSchema, column: str) -> int:
    for position, descriptor in enumerate(schema.columns):
        if descriptor.name == column:
            return position
    raise CompilationError(f"Unknown full-text column '{column}'", table=schema.name, column=column)


def compile_match(
    schema: TableSchema,
    query: Any,
    where: Any = None,
    select: Optional[List[str]] = None,
    bm25: Optional[Dict[str, float]] = None,
    rank: bool = False,
    highlight: Optional[Dict[str, Any]] = None,
    snippet: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    registry: Optional[TypeRegistry] = None
) -> CompiledStatement:
    """
    Compile a full-text search over an FTS5 table.

    Args:
        schema: FTS table schema
        query: Structured full-text query (string, list or operator dict)
        where: Additional condition on the FTS columns
        select: Columns to return (all columns when omitted)
        bm25: Column -> weight; unlisted columns weigh 1.0. Orders by relevance
        rank: Order by the built-in rank column instead
        highlight: {'column', 'start', 'end'} adds '<column>_highlight'
        snippet: {'column', 'start', 'end', 'ellipsis', 'tokens'} adds '<column>_snippet'
        limit: Maximum rows
        offset: Rows to skip
        registry: TypeRegistry for conversions

    Returns:
        CompiledStatement; rows carry the FTS rowid as 'id'

    Raises:
        CompilationError: For non-FTS tables or malformed queries

    Example:
        >>> compile_match(trees_search, {'near': ['old', 'oak', 3]}).sql
        'SELECT "rowid" AS "id", "name", "notes" FROM "trees_search" WHERE "trees_search" MATCH :p_1;'
    """
    if not schema.virtual:
        raise CompilationError(f"Table '{schema.name}' is not a full-text table", table=schema.name)
    if bm25 and rank:
        raise CompilationError("Order by either bm25 weights or rank, not both", table=schema.name)

    match_text = match_expression(query)
    names = list(select) if select is not None else schema.column_names
    description = {
        'table': schema.name,
        'select': [('id', Column('rowid'))] + [(name, Column(name)) for name in names],
        'where': [{schema.name: {'match': match_text}}] + ([where] if where else []),
    }
    parts = compile_parts(description, {schema.name: schema}, registry)
    compiler = parts.compiler
    table = f'"{schema.name}"'

    for options, function in ((highlight, 'highlight'), (snippet, 'snippet')):
        if not options:
            continue
        column = options.get('column')
        arguments = [
            table,
            str(_column_index(schema, column)),
            compiler.bind(options.get('start', '<b>')),
            compiler.bind(options.get('end', '</b>')),
        ]
        if function == 'snippet':
            tokens = options.get('tokens', 16)
            if not isinstance(tokens, int) or isinstance(tokens, bool) or not 1 <= tokens <= SNIPPET_MAX_TOKENS:
                raise CompilationError(
                    f"Snippet tokens must be between 1 and {SNIPPET_MAX_TOKENS}", table=schema.name
                )
            arguments.append(compiler.bind(options.get('ellipsis', '...')))
            arguments.append(compiler.bind(tokens))
        alias = f"{column}_{function}"
        parts.columns.append(f'{function}({", ".join(arguments)}) AS "{alias}"')
        parts.output[alias] = 'text'

    if bm25:
        for column in bm25:
            _column_index(schema, column)
        weights = [compiler.bind(float(bm25.get(c.name, 1.0))) for c in schema.columns]
        parts.order_by = [f"bm25({table}, {', '.join(weights)})"]
    elif rank:
        parts.order_by = ['rank']

    # Bound after the ranking arguments so placeholders follow statement order
    parts.limit = limit_builder(compiler, limit, offset)

    statement = parts.statement(parts.select_sql())
    logger.debug(f"Compiled full-text search on '{schema.name}': {statement.sql}")
    return statement
