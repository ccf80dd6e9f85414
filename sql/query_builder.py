"""
==========================================
SQL query builders and read compilers.
==========================================

Low-level builders assemble already compiled fragments into statement
text; the compile_* functions turn query descriptions into complete
CompiledStatements using the expression compiler.

Builders:
- select_builder: Assemble a SELECT from compiled fragments
- join_builder: One JOIN clause
- cte_builder: Prefix a statement with a WITH block
- limit_builder: LIMIT/OFFSET with bound values

Compilers:
- compile_query: General query description (joins, grouping, CTEs)
- compile_select: Filtered read of one table
- compile_get: First matching row
- compile_exists: EXISTS check
- compile_aggregate: count/sum/avg/min/max over one table
- compile_group: GROUP BY with one aggregate and HAVING

Query description keys:
    table      table name, or a Subquery/CompiledStatement used as a CTE
    select     list of names, Column/FunctionCall nodes, (alias, expr) pairs,
               or a dict of alias -> expr; all columns when omitted
    omit       column names left out of the default all-columns select
    distinct   SELECT DISTINCT
    joins      list of (Column, Column[, kind]) tuples, kind inner|left|right|full
    where      condition (dict, node or list)
    group_by   list of column names or nodes
    having     condition over columns and output aliases
    order_by   name, node, (item, 'asc'|'desc'), or a list of those
    desc       default direction for order_by items
    limit      int
    offset     int
    with       list of Subquery nodes to hoist explicitly
    with_deleted / only_deleted   soft-delete visibility
    mode       rows | row | value | values

Usage:
    from sql.query_builder import compile_query

    statement = compile_query({
        'table': 'trees',
        'select': ['name', Column('name', 'forests')],
        'joins': [(Column('id', 'forests'), Column('forest_id', 'trees'))],
        'where': {'alive': True},
        'order_by': ('height', 'desc'),
        'limit': 10,
    }, schemas)
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from core.exceptions import CompilationError
from core.type_registry import TypeRegistry
from models.expression_models import (
    RESULT_MODES,
    Column,
    CompiledStatement,
    FunctionCall,
    RowProcessor,
    Subquery,
)
from models.schema_models import TableSchema
from sql.expressions import ExpressionCompiler, Fragment, is_node

logger = logging.getLogger(__name__)

JOIN_KINDS = {
    'inner': 'INNER JOIN',
    'left': 'LEFT JOIN',
    'right': 'RIGHT JOIN',
    'full': 'FULL OUTER JOIN',
}
QUERY_KEYS = frozenset([
    'table', 'select', 'omit', 'distinct', 'joins', 'where', 'group_by', 'having', 'order_by',
    'desc', 'limit', 'offset', 'with', 'with_deleted', 'only_deleted', 'mode',
])
AGGREGATE_METHODS = ('count', 'sum', 'avg', 'min', 'max')
SCALAR_MODES = {'row': 'value', 'rows': 'values'}

Schemas = Union[Mapping[str, TableSchema], Iterable[TableSchema]]


def select_builder(
    table: str,
    columns: List[str],
    joins: Optional[List[str]] = None,
    where: Optional[str] = None,
    group_by: Optional[List[str]] = None,
    having: Optional[str] = None,
    order_by: Optional[List[str]] = None,
    limit: Optional[str] = None,
    distinct: bool = False,
    terminate: bool = True
) -> str:
    """
    Assemble a SELECT statement from compiled fragments.

    Args:
        table: Quoted table (or CTE) name
        columns: Compiled select expressions
        joins: Compiled JOIN clauses
        where: Compiled WHERE condition (without keyword)
        group_by: Compiled GROUP BY expressions
        having: Compiled HAVING condition (without keyword)
        order_by: Compiled ORDER BY terms
        limit: Compiled LIMIT/OFFSET clause
        distinct: Use SELECT DISTINCT
        terminate: Append the trailing semicolon

    Returns:
        SQL SELECT statement
    """
    sql_parts = ["SELECT DISTINCT" if distinct else "SELECT", ", ".join(columns), f"FROM {table}"]

    if joins:
        sql_parts.extend(joins)
    if where:
        sql_parts.append(f"WHERE {where}")
    if group_by:
        sql_parts.append(f"GROUP BY {', '.join(group_by)}")
    if having:
        sql_parts.append(f"HAVING {having}")
    if order_by:
        sql_parts.append(f"ORDER BY {', '.join(order_by)}")
    if limit:
        sql_parts.append(limit)

    sql = " ".join(sql_parts)
    return sql + ";" if terminate else sql


def join_builder(kind: str, table: str, on: str) -> str:
    """
    Build a JOIN clause.

    Args:
        kind: inner, left, right or full
        table: Table name (unquoted, already validated)
        on: Compiled join condition

    Returns:
        SQL JOIN clause
    """
    try:
        keyword = JOIN_KINDS[kind.lower()]
    except (KeyError, AttributeError):
        raise CompilationError(f"Unknown join kind {kind!r}") from None
    return f'{keyword} "{table}" ON {on}'


def cte_builder(ctes: List[Subquery], main_query: str, recursive: bool = False) -> str:
    """
    Prefix a statement with Common Table Expressions.

    Args:
        ctes: Hoisted subqueries (alias and SQL)
        main_query: Statement that uses the CTEs
        recursive: Whether to use WITH RECURSIVE

    Returns:
        Complete SQL statement (main_query unchanged when there are no CTEs)
    """
    if not ctes:
        return main_query

    with_keyword = "WITH RECURSIVE" if recursive else "WITH"
    cte_clauses = [f'"{cte.alias}" AS ({cte.sql.strip().rstrip(";")})' for cte in ctes]
    return f"{with_keyword} {', '.join(cte_clauses)} {main_query}"


def limit_builder(compiler: ExpressionCompiler, limit: Any = None, offset: Any = None) -> str:
    """Compile LIMIT/OFFSET with bound values ('' when neither is given)."""
    for name, value in (('limit', limit), ('offset', offset)):
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
            raise compiler.fail(f"'{name}' must be a non-negative integer, got {value!r}")

    if limit is None and offset is None:
        return ''
    sql = f"LIMIT {compiler.bind(limit if limit is not None else -1)}"
    if offset is not None:
        sql += f" OFFSET {compiler.bind(offset)}"
    return sql


def soft_delete_predicate(
    compiler: ExpressionCompiler,
    table: str,
    with_deleted: bool = False,
    only_deleted: bool = False
) -> Fragment:
    """The implicit "not deleted" filter for a soft-delete table.

    Returns:
        Empty fragment for tables without soft delete or when deleted rows
        are requested as well
    """
    schema = compiler.schemas.get(table)
    if schema is None or not schema.soft_delete or with_deleted:
        return Fragment('')
    column = compiler.column_sql(Column(TableSchema.DELETED_AT, table))
    if only_deleted:
        return Fragment(f"{column} IS NOT NULL")
    return Fragment(f"{column} IS NULL")


@dataclass
class QueryParts:
    """Compiled pieces of a query description, before assembly."""

    compiler: ExpressionCompiler
    table: str
    columns: List[str] = field(default_factory=list)
    output: Dict[str, Optional[str]] = field(default_factory=dict)
    joins: List[str] = field(default_factory=list)
    where: str = ''
    group_by: List[str] = field(default_factory=list)
    having: str = ''
    order_by: List[str] = field(default_factory=list)
    limit: str = ''
    distinct: bool = False
    mode: str = 'rows'

    def select_sql(self, columns: Optional[List[str]] = None, terminate: bool = True) -> str:
        sql = select_builder(
            table=f'"{self.table}"',
            columns=columns if columns is not None else self.columns,
            joins=self.joins,
            where=self.where,
            group_by=self.group_by,
            having=self.having,
            order_by=self.order_by,
            limit=self.limit,
            distinct=self.distinct,
            terminate=terminate
        )
        return sql

    def processor(self, mode: Optional[str] = None) -> RowProcessor:
        registry = self.compiler.registry
        converters = {
            name: partial(registry.from_storage, type_name)
            for name, type_name in self.output.items()
            if type_name is not None and type_name in registry
        }
        return RowProcessor(converters=converters, mode=mode or self.mode)

    def statement(self, sql: str, mode: Optional[str] = None) -> CompiledStatement:
        compiler = self.compiler
        return CompiledStatement(
            sql=cte_builder(compiler.ctes, sql),
            params=dict(compiler.params),
            tables=tuple(t for t in compiler.tables if t in compiler.schemas),
            columns=dict(self.output),
            processor=self.processor(mode)
        )


def _compile_joins(compiler: ExpressionCompiler, joins: List[Any], with_deleted: bool) -> List[str]:
    clauses = []
    for join in joins:
        if isinstance(join, dict):
            left, right, kind = join.get('left'), join.get('right'), join.get('kind', 'inner')
        elif isinstance(join, (list, tuple)) and len(join) in (2, 3):
            left, right = join[0], join[1]
            kind = join[2] if len(join) == 3 else 'inner'
        else:
            raise compiler.fail(f"Invalid join {join!r}")

        if not isinstance(left, Column) or not isinstance(right, Column) or not left.table or not right.table:
            raise compiler.fail("Join sides must be table-qualified Column references")

        left_in = left.table in compiler.tables
        right_in = right.table in compiler.tables
        if left_in and right_in:
            raise compiler.fail(f"Join between '{left.table}' and '{right.table}' adds no new table")
        if not left_in and not right_in:
            raise compiler.fail(
                f"Join between '{left.table}' and '{right.table}' is not connected to the query"
            )

        existing, new = (left, right) if left_in else (right, left)
        compiler.introduce(new.table)
        on = f"{compiler.column_sql(existing)} = {compiler.column_sql(new)}"
        hidden = soft_delete_predicate(compiler, new.table, with_deleted=with_deleted)
        if hidden.sql:
            on += f" AND {hidden.sql}"
        clauses.append(join_builder(kind, new.table, on))
    return clauses


def _output_name(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item.split('.', 1)[-1]
    if isinstance(item, Column):
        return item.name
    if isinstance(item, FunctionCall):
        return f"{item.name}_result"
    return None


def select_items(select: Any) -> List[Tuple[str, Any]]:
    if isinstance(select, dict):
        return list(select.items())
    if isinstance(select, (str, Column, FunctionCall)):
        select = [select]
    items = []
    for item in select:
        if isinstance(item, tuple) and len(item) == 2 and isinstance(item[0], str):
            items.append(item)
        else:
            items.append((_output_name(item), item))
    return items


def _compile_selection(parts: QueryParts, select: Any, omit: Any = None) -> None:
    compiler = parts.compiler

    if select is None:
        names = list(compiler.columns_of(parts.table))
        omitted = _as_list(omit)
        for name in omitted:
            if name not in names:
                raise compiler.fail(f"Unknown column '{name}' in omit")
        items = [(name, Column(name, parts.table)) for name in names if name not in omitted]
        if not items:
            raise compiler.fail("Empty select list")
    elif omit:
        raise compiler.fail("'omit' cannot be combined with 'select'")
    else:
        items = select_items(select)
        if not items:
            raise compiler.fail("Empty select list")

    for alias, expression in items:
        if alias is None:
            raise compiler.fail(f"Select item {expression!r} needs an alias")
        if alias in parts.output:
            raise compiler.fail(f"Duplicate output column '{alias}'")
        if isinstance(expression, str):
            expression = compiler.column_from_key(expression)
        if not is_node(expression):
            raise compiler.fail(f"Unsupported select item {expression!r}")

        sql = compiler.compile_node(expression)
        type_name = compiler.node_type(expression)
        if isinstance(expression, Column) and type_name == 'json':
            sql = f"json({sql})"
        if not (isinstance(expression, Column) and expression.name == alias and sql == f'"{alias}"'):
            sql = f'{sql} AS "{alias}"'

        parts.columns.append(sql)
        parts.output[alias] = type_name
        compiler.aliases[alias] = type_name


def _order_terms(compiler: ExpressionCompiler, order_by: Any, desc: bool = False) -> List[str]:
    if order_by is None:
        return []
    if isinstance(order_by, (str, Column, FunctionCall)) or (
        isinstance(order_by, tuple) and len(order_by) == 2 and order_by[1] in ('asc', 'desc', 'ASC', 'DESC')
    ):
        order_by = [order_by]

    terms = []
    for item in order_by:
        direction = 'desc' if desc else 'asc'
        if isinstance(item, tuple):
            item, direction = item
        if str(direction).lower() not in ('asc', 'desc'):
            raise compiler.fail(f"Invalid sort direction {direction!r}")
        if isinstance(item, str) and item == 'rank' and any(compiler.is_virtual(t) for t in compiler.tables):
            sql = 'rank'
        else:
            sql = compiler.expression_sql(item)
        terms.append(f"{sql} {str(direction).upper()}")
    return terms


def compile_parts(
    description: Dict[str, Any],
    schemas: Schemas,
    registry: Optional[TypeRegistry] = None,
    select: bool = True
) -> QueryParts:
    """Compile every clause of a query description.

    Args:
        description: Query description (see module docstring)
        schemas: Known tables
        registry: TypeRegistry for conversions
        select: Compile the select list (False for EXISTS/COUNT wrappers)

    Raises:
        CompilationError: For unknown keys or any invalid clause
    """
    unknown = set(description) - QUERY_KEYS
    if unknown:
        raise CompilationError(f"Unknown query keys: {', '.join(sorted(unknown))}")

    compiler = ExpressionCompiler(schemas, registry=registry)
    for subquery in description.get('with') or []:
        compiler.hoist(subquery)

    table = description.get('table')
    if isinstance(table, (Subquery, CompiledStatement)):
        table = compiler.hoist(table, alias=getattr(table, 'alias', None))
    if table is None:
        raise CompilationError("Query description needs a 'table'")
    compiler.introduce(table)

    with_deleted = bool(description.get('with_deleted'))
    only_deleted = bool(description.get('only_deleted'))
    if description.get('mode', 'rows') not in RESULT_MODES:
        raise compiler.fail(f"Unknown result mode {description.get('mode')!r}")

    parts = QueryParts(
        compiler=compiler,
        table=table,
        distinct=bool(description.get('distinct')),
        mode=description.get('mode', 'rows')
    )

    joins = description.get('joins') or []
    compiler.qualify = bool(joins)
    parts.joins = _compile_joins(compiler, joins, with_deleted)

    if select:
        _compile_selection(parts, description.get('select'), description.get('omit'))

    where = compiler.condition(description.get('where'))
    hidden = soft_delete_predicate(compiler, table, with_deleted, only_deleted)
    parts.where = compiler.join([where, hidden], 'AND').sql

    parts.group_by = [compiler.expression_sql(item) for item in _as_list(description.get('group_by'))]
    parts.having = compiler.compile_where(description.get('having'))
    parts.order_by = _order_terms(compiler, description.get('order_by'), bool(description.get('desc')))
    parts.limit = limit_builder(compiler, description.get('limit'), description.get('offset'))
    return parts


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def compile_query(
    description: Dict[str, Any],
    schemas: Schemas,
    registry: Optional[TypeRegistry] = None
) -> CompiledStatement:
    """Compile a query description into one parameterized SELECT.

    Args:
        description: Query description (see module docstring)
        schemas: Known tables
        registry: TypeRegistry for value conversion

    Returns:
        CompiledStatement whose processor converts each output column

    Example:
        >>> statement = compile_query({'table': 'trees', 'where': {'alive': True}}, schemas)
        >>> statement.sql
        'SELECT "id", "name", "forest_id", "alive" FROM "trees" WHERE "alive" = :p_1;'
    """
    parts = compile_parts(description, schemas, registry)
    statement = parts.statement(parts.select_sql())
    logger.debug(f"Compiled query on '{parts.table}': {statement.sql}")
    return statement


def _schemas_with(schema: TableSchema, schemas: Optional[Schemas]) -> Dict[str, TableSchema]:
    if schemas is None:
        return {schema.name: schema}
    if not isinstance(schemas, Mapping):
        schemas = {s.name: s for s in schemas}
    return {**schemas, schema.name: schema}


def compile_select(
    schema: TableSchema,
    where: Any = None,
    schemas: Optional[Schemas] = None,
    registry: Optional[TypeRegistry] = None,
    mode: str = 'rows',
    **options
) -> CompiledStatement:
    """Filtered read of one table (the 'many' read path).

    Extra keyword options are query description keys (select, omit,
    order_by, limit, offset, with_deleted, only_deleted, ...). A single
    column name as select returns bare values instead of rows.

    Example:
        >>> compile_select(trees, {'forest_id': [1, 2, 3], 'alive': True}).params
        {'p_1': '[1,2,3]', 'p_2': 1}
    """
    if isinstance(options.get('select'), str):
        mode = SCALAR_MODES.get(mode, mode)
    description = dict(options, table=schema.name, where=where, mode=mode)
    return compile_query(description, _schemas_with(schema, schemas), registry)


def compile_get(
    schema: TableSchema,
    where: Any = None,
    schemas: Optional[Schemas] = None,
    registry: Optional[TypeRegistry] = None,
    **options
) -> CompiledStatement:
    """First matching row (or its value, for a single-column string select), or None."""
    options.setdefault('limit', 1)
    return compile_select(schema, where, schemas, registry, mode='row', **options)


def compile_exists(
    schema: TableSchema,
    where: Any = None,
    schemas: Optional[Schemas] = None,
    registry: Optional[TypeRegistry] = None,
    **options
) -> CompiledStatement:
    """SELECT EXISTS(...) AS "exists_result"; processes to a bool."""
    description = dict(options, table=schema.name, where=where)
    parts = compile_parts(description, _schemas_with(schema, schemas), registry, select=False)
    inner = parts.select_sql(columns=['1'], terminate=False)
    parts.output = {'exists_result': 'boolean'}
    return parts.statement(f'SELECT EXISTS ({inner}) AS "exists_result";', mode='value')


def _aggregate_call(compiler: ExpressionCompiler, method: str, column: Optional[str], distinct: bool) -> FunctionCall:
    if method not in AGGREGATE_METHODS and method != 'array':
        raise compiler.fail(f"Unknown aggregate '{method}'")
    if column is None:
        if method != 'count':
            raise compiler.fail(f"Aggregate '{method}' needs a column")
        return FunctionCall('count')
    return FunctionCall(method, (Column(column),), distinct=distinct)


def compile_aggregate(
    schema: TableSchema,
    method: str,
    column: Optional[str] = None,
    where: Any = None,
    distinct: bool = False,
    schemas: Optional[Schemas] = None,
    registry: Optional[TypeRegistry] = None,
    **options
) -> CompiledStatement:
    """Single aggregate over a table: count, sum (total()), avg, min, max.

    The result column is named '<method>_result'; min/max results are
    converted back through the column's type.

    Example:
        >>> compile_aggregate(trees, 'count').sql
        'SELECT count(*) AS "count_result" FROM "trees";'
    """
    probe = ExpressionCompiler(_schemas_with(schema, schemas), registry=registry, table=schema.name)
    call = _aggregate_call(probe, method, column, distinct)
    description = dict(
        options, table=schema.name, where=where,
        select={f"{method}_result": call}, mode='value'
    )
    return compile_query(description, _schemas_with(schema, schemas), registry)


def compile_group(
    schema: TableSchema,
    by: Union[str, List[str]],
    method: str = 'count',
    column: Optional[str] = None,
    where: Any = None,
    having: Any = None,
    distinct: bool = False,
    schemas: Optional[Schemas] = None,
    registry: Optional[TypeRegistry] = None,
    **options
) -> CompiledStatement:
    """GROUP BY with one aggregate per group.

    A condition keyed by the method name (in where or having) filters on
    the aggregate through HAVING. Method 'array' collects values with
    json_group_array().

    Example:
        >>> compile_group(trees, 'forest_id', where={'count': {'gt': 2}}).sql
        'SELECT "forest_id", count(*) AS "count_result" FROM "trees" GROUP BY "forest_id" HAVING "count_result" > :p_1;'
    """
    alias = f"{method}_result"
    where = dict(where or {}) if isinstance(where, (dict, type(None))) else where
    having = dict(having or {}) if isinstance(having, (dict, type(None))) else having
    if isinstance(where, dict) and method in where:
        if not isinstance(having, dict):
            raise CompilationError(f"Cannot merge a '{method}' condition into a non-dict having")
        having[method] = where.pop(method)
    if isinstance(having, dict):
        having = {alias if key == method else key: value for key, value in having.items()}

    by = [by] if isinstance(by, str) else list(by)
    probe = ExpressionCompiler(_schemas_with(schema, schemas), registry=registry, table=schema.name)
    call = _aggregate_call(probe, method, column, distinct)

    description = dict(
        options,
        table=schema.name,
        where=where or None,
        select=[*by, (alias, call)],
        group_by=by,
        having=having or None,
    )
    return compile_query(description, _schemas_with(schema, schemas), registry)
