"""
==========================================
Pagination: offset and cursor page plans.
==========================================

Pagination needs two things from a compiled statement: what to run and how
to turn the driver's rows into a page. The plans below carry both, so the
caller (usually client.database) executes the statements and hands the rows
back to finish().

Offset pagination runs a count over the same WHERE clause as the data
query. Cursor pagination adds a strict inequality on the cursor column,
fetches one extra row to detect whether more rows exist and flips the
order when paging backward.

Usage:
    from sql.pagination import cursor_paginate

    plan = cursor_paginate({'table': 'trees', 'where': {'alive': True}}, schemas, limit=2)
    page = plan.finish(driver.execute(*plan.statement))
    next_plan = cursor_paginate(description, schemas, cursor=page.next_cursor, limit=2)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.config import config
from core.exceptions import CompilationError
from core.type_registry import TypeRegistry
from models.expression_models import Compare, CompiledStatement, FunctionCall
from sql.expressions import ExpressionCompiler
from sql.query_builder import Schemas, compile_parts, compile_query, select_items

logger = logging.getLogger(__name__)

CURSOR_DIRECTIONS = {'after': ('gt', 'asc'), 'before': ('lt', 'desc')}


@dataclass
class Page:
    """One page of an offset-paginated read."""

    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool


@dataclass
class CursorPage:
    """One page of a cursor-paginated read.

    next_cursor is the cursor column value of the last row on the page, or
    None when no further rows exist.
    """

    items: List[Dict[str, Any]]
    has_more: bool
    next_cursor: Any = None


def _page_number(value: Any, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise CompilationError(f"'{name}' must be an integer, got {value!r}")
    return value


def clamp_page(page: Any = 1, page_size: Any = None) -> tuple:
    """Clamp page >= 1 and 1 <= page_size <= MAX_PAGE_SIZE."""
    page = max(1, _page_number(page, 'page'))
    if page_size is None:
        page_size = config.default_page_size
    page_size = min(max(1, _page_number(page_size, 'page_size')), config.max_page_size)
    return page, page_size


@dataclass
class OffsetPaginationPlan:
    """Count and data statements for one page."""

    count_statement: CompiledStatement
    data_statement: CompiledStatement
    page: int
    page_size: int

    def finish(self, count_rows: Sequence[Dict[str, Any]], data_rows: Sequence[Dict[str, Any]]) -> Page:
        total = self.count_statement.process(count_rows) or 0
        total_pages = math.ceil(total / self.page_size)
        return Page(
            items=self.data_statement.process(data_rows),
            total=total,
            page=self.page,
            page_size=self.page_size,
            total_pages=total_pages,
            has_more=self.page < total_pages
        )


@dataclass
class CursorPaginationPlan:
    """Data statement for one cursor page (limit + 1 rows)."""

    statement: CompiledStatement
    cursor_column: str
    limit: int
    direction: str = 'after'
    output_column: str = field(default='')

    def finish(self, rows: Sequence[Dict[str, Any]]) -> CursorPage:
        items = self.statement.process(rows)
        has_more = len(items) > self.limit
        items = items[:self.limit]

        next_cursor = None
        if has_more and items:
            next_cursor = items[-1][self.output_column or self.cursor_column]
        if self.direction == 'before':
            items.reverse()
        return CursorPage(items=items, has_more=has_more, next_cursor=next_cursor)


def _count_statement(description: Dict[str, Any], schemas: Schemas,
                     registry: Optional[TypeRegistry]) -> CompiledStatement:
    counted = {
        key: value for key, value in description.items()
        if key not in ('order_by', 'desc', 'limit', 'offset', 'mode')
    }

    if counted.get('group_by') or counted.get('distinct'):
        # Count the groups (or distinct rows) rather than the underlying rows
        parts = compile_parts(counted, schemas, registry)
        inner = parts.select_sql(terminate=False)
        parts.output = {'count_result': 'integer'}
        return parts.statement(f'SELECT count(*) AS "count_result" FROM ({inner});', mode='value')

    counted['select'] = {'count_result': FunctionCall('count')}
    counted['mode'] = 'value'
    return compile_query(counted, schemas, registry)


def paginate(
    description: Dict[str, Any],
    schemas: Schemas,
    page: int = 1,
    page_size: Optional[int] = None,
    registry: Optional[TypeRegistry] = None
) -> OffsetPaginationPlan:
    """
    Plan an offset-paginated read.

    Args:
        description: Query description (limit/offset are set by the plan)
        schemas: Known tables
        page: 1-based page number (clamped to >= 1)
        page_size: Rows per page (clamped to 1..MAX_PAGE_SIZE)
        registry: TypeRegistry for conversions

    Returns:
        OffsetPaginationPlan with count_statement and data_statement

    Example:
        >>> plan = paginate({'table': 'trees', 'where': {'alive': True}}, schemas, page=2, page_size=10)
        >>> plan.count_statement.sql
        'SELECT count(*) AS "count_result" FROM "trees" WHERE "alive" = :p_1;'
    """
    page, page_size = clamp_page(page, page_size)
    if 'limit' in description or 'offset' in description:
        raise CompilationError("Paginated queries take page/page_size instead of limit/offset")

    data = dict(description, limit=page_size, offset=(page - 1) * page_size, mode='rows')
    plan = OffsetPaginationPlan(
        count_statement=_count_statement(description, schemas, registry),
        data_statement=compile_query(data, schemas, registry),
        page=page,
        page_size=page_size
    )
    logger.debug(f"Planned page {page} (size {page_size}) of {description.get('table')!r}")
    return plan


def cursor_paginate(
    description: Dict[str, Any],
    schemas: Schemas,
    cursor: Any = None,
    limit: Optional[int] = None,
    direction: str = 'after',
    cursor_column: Optional[str] = None,
    registry: Optional[TypeRegistry] = None
) -> CursorPaginationPlan:
    """
    Plan a cursor-paginated read.

    Args:
        description: Query description (ordered by the cursor column; may not
            carry its own order_by, limit or offset)
        schemas: Known tables
        cursor: Last seen cursor value, or None for the first page
        limit: Rows per page (clamped to 1..MAX_PAGE_SIZE)
        direction: 'after' pages forward, 'before' pages backward
        cursor_column: Column to page on (defaults to the table's primary key)
        registry: TypeRegistry for conversions

    Returns:
        CursorPaginationPlan

    Raises:
        CompilationError: For an unknown direction or conflicting clauses

    Example:
        >>> cursor_paginate({'table': 'trees'}, schemas, cursor=2, limit=2).statement.sql
        'SELECT "id", "name", "forest_id", "alive" FROM "trees" WHERE "id" > :p_1 ORDER BY "id" ASC LIMIT :p_2;'
    """
    if direction not in CURSOR_DIRECTIONS:
        raise CompilationError(f"Cursor direction must be 'after' or 'before', got {direction!r}")
    conflicting = sorted({'order_by', 'desc', 'limit', 'offset'} & set(description))
    if conflicting:
        raise CompilationError(f"Cursor pagination sets its own {', '.join(conflicting)}")
    _, limit = clamp_page(1, limit)

    if cursor_column is None:
        table = description.get('table')
        if not isinstance(table, str):
            raise CompilationError("cursor_column is required when paging over a subquery")
        cursor_column = ExpressionCompiler(schemas, registry=registry).schema(table).primary_key

    op, order = CURSOR_DIRECTIONS[direction]
    query = dict(description, order_by=(cursor_column, order), limit=limit + 1, mode='rows')

    output_column = cursor_column.split('.', 1)[-1]
    omit = description.get('omit')
    if output_column in ([omit] if isinstance(omit, str) else list(omit or [])):
        raise CompilationError(f"Cursor column '{output_column}' cannot be omitted")
    if description.get('select') is not None:
        items = select_items(description['select'])
        if output_column not in [alias for alias, _ in items]:
            items.append((output_column, cursor_column))
        query['select'] = items

    if cursor is not None:
        where = description.get('where')
        query['where'] = ([where] if where else []) + [Compare(op, cursor_column, cursor)]

    plan = CursorPaginationPlan(
        statement=compile_query(query, schemas, registry),
        cursor_column=cursor_column,
        limit=limit,
        direction=direction,
        output_column=output_column
    )
    logger.debug(f"Planned cursor page {direction} {cursor!r} on {cursor_column!r}")
    return plan
