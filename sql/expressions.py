"""
======================================================
Expression compiler: condition trees to parameterized SQL.
======================================================

The ExpressionCompiler is the placeholder-allocating core used by every
statement generator. One instance is created per top-level compile and
owns everything that compile needs:

    - the placeholder counter (:p_1, :p_2, ...) and the parameter map
    - the tables introduced into the FROM/JOIN chain, in order
    - subqueries hoisted into the WITH block, renumbered into its namespace
    - output aliases that HAVING and ORDER BY may refer to

Condition grammar (dicts):
    {"name": "Oak"}                      "name" = :p_1
    {"deleted_at": None}                 "deleted_at" IS NULL
    {"forest_id": [1, 2, 3]}             "forest_id" IN (SELECT value FROM json_each(:p_1))
    {"height": {"gt": 3, "lte": 9}}      ("height" > :p_1 AND "height" <= :p_2)
    {"name": {"not": None}}              "name" IS NOT NULL
    {"a": {"not": Column("b")}}          "a" != "b"
    {"meta": {"leaf": {"eq": "oval"}}}   json_extract("meta", :p_1) = :p_2
    {"or": [{"a": 1}, {"b": 2}]}         "a" = :p_1 OR "b" = :p_2
    {"not": {"a": 1}}                    NOT ("a" = :p_1)

Condition nodes (Compare, Logical, FunctionCall) may be used anywhere a
dict is accepted, and a list of conditions is joined with AND.

Inline mode renders literals as SQL literals instead of placeholders. It
is used for DDL (CHECK constraints, partial index predicates, computed
columns), where parameters cannot be bound.

Example:
    >>> sql, params = compile_expression(
    ...     {'forest_id': [1, 2, 3], 'alive': True},
    ...     schemas=[trees], table='trees'
    ... )
    >>> sql
    '"forest_id" IN (SELECT value FROM json_each(:p_1)) AND "alive" = :p_2'
    >>> params
    {'p_1': '[1,2,3]', 'p_2': 1}
"""

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from core.exceptions import CompilationError
from core.type_registry import TypeRegistry, default_registry, json_to_storage
from models.expression_models import (
    Column,
    Compare,
    CompiledStatement,
    FunctionCall,
    Literal,
    Logical,
    Subquery,
    Window,
)
from models.schema_models import TableSchema
from sql.functions import get_function, over_clause, render_call, return_type

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
PLACEHOLDER_PATTERN = re.compile(r':(p_\d+)\b')
JSON_SEGMENT_PATTERN = re.compile(r'^[A-Za-z0-9_]+$')
FRAME_PATTERN = re.compile(
    r'^(ROWS|RANGE|GROUPS)\s+[A-Z0-9 ]+$'
)

COMPARISON_OPERATORS = {
    'eq': '=',
    'not': '!=',
    'gt': '>',
    'gte': '>=',
    'lt': '<',
    'lte': '<=',
    'like': 'LIKE',
    'match': 'MATCH',
    'glob': 'GLOB',
}
SET_OPERATORS = {'in': 'IN', 'not_in': 'NOT IN'}
OPERATORS = frozenset(COMPARISON_OPERATORS) | frozenset(SET_OPERATORS)
LOGICAL_OPERATORS = ('and', 'or')

# Compare.op accepts these spellings as well
OPERATOR_ALIASES = {'=': 'eq', '!=': 'not', '>': 'gt', '>=': 'gte', '<': 'lt', '<=': 'lte'}

NODE_TYPES = (Column, Literal, Compare, Logical, FunctionCall, Subquery)


class Fragment(NamedTuple):
    """Compiled SQL fragment; compound when it joins terms with AND/OR."""

    sql: str
    compound: bool = False


def validate_identifier(name: Any, kind: str = 'column', table: Optional[str] = None) -> str:
    """Check a table/column name against the identifier pattern.

    Raises:
        CompilationError: If the name is not a plain identifier
    """
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        message = f"Invalid {kind} name {name!r}"
        logger.debug(message)
        raise CompilationError(message, table=table, column=name if kind == 'column' else None)
    return name


def quote_identifier(name: str) -> str:
    """Validate and double-quote an identifier."""
    return f'"{validate_identifier(name, kind="identifier")}"'


def render_literal(value: Any) -> str:
    """Render a storage value as a SQL literal (inline mode only).

    Example:
        >>> render_literal("O'Brien")
        "'O''Brien'"
    """
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CompilationError(f"Cannot render non-finite number {value!r} as a literal")
        return repr(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"X'{bytes(value).hex()}'"
    raise CompilationError(f"Cannot render {type(value).__name__} as a SQL literal")


def is_node(value: Any) -> bool:
    return isinstance(value, NODE_TYPES)


def _fts_phrase(text: Any) -> str:
    if not isinstance(text, str):
        raise CompilationError(f"Full-text phrase must be a string, got {type(text).__name__}")
    return '"' + text.replace('"', '""') + '"'


def match_expression(query: Any) -> str:
    """Translate a structured full-text query into FTS5 MATCH syntax.

    Shapes:
        'red oak'                                  "red oak"
        ['red', 'oak']                             "red" AND "oak"
        {'or': ['oak', 'elm']}                     "oak" OR "elm"
        {'and': ['tree', {'not': ['oak', 'elm']}]} "tree" NOT ("oak" OR "elm")
        {'prefix': 'ma'}                           "ma" *
        {'starts_with': 'the'}                     ^"the"
        {'near': ['red', 'oak', 5]}                NEAR("red" "oak", 5)
        {'columns': ['title'], 'query': 'oak'}     {title} : ("oak")

    Raises:
        CompilationError: On unknown keys, a bare NOT, or NEAR with fewer
            than two phrases
    """
    sql, _ = _match_fragment(query)
    return sql


def _match_fragment(query: Any) -> Tuple[str, bool]:
    if isinstance(query, str):
        return _fts_phrase(query), False
    if isinstance(query, (list, tuple)):
        return _match_fragment({'and': list(query)})
    if not isinstance(query, dict) or not query:
        raise CompilationError(f"Invalid full-text query {query!r}")

    if 'columns' in query:
        columns = query['columns']
        if isinstance(columns, str):
            columns = [columns]
        names = ' '.join(validate_identifier(c) for c in columns)
        inner, _ = _match_fragment(query.get('query'))
        return f"{{{names}}} : ({inner})", False

    if len(query) != 1:
        raise CompilationError(f"Full-text query objects take exactly one key, got {sorted(query)}")

    (key, value), = query.items()
    if key in ('phrase',):
        return _fts_phrase(value), False
    if key == 'prefix':
        return f"{_fts_phrase(value)} *", False
    if key in ('starts_with', 'startsWith'):
        return f"^{_fts_phrase(value)}", False
    if key == 'near':
        return _near(value), False
    if key == 'or':
        parts = [_match_fragment(item) for item in _as_list(value, key)]
        return ' OR '.join(f"({sql})" if compound else sql for sql, compound in parts), True
    if key == 'and':
        positives, negatives = [], []
        for item in _as_list(value, key):
            if isinstance(item, dict) and list(item) == ['not']:
                negatives.append(_negation(item['not']))
            else:
                positives.append(_match_fragment(item))
        if not positives:
            raise CompilationError("Full-text NOT needs at least one positive term to exclude from")
        sql = ' AND '.join(f"({s})" if compound else s for s, compound in positives)
        if negatives:
            if len(positives) > 1:
                sql = f"({sql})"
            sql += ''.join(f" NOT {negation}" for negation in negatives)
        return sql, len(positives) > 1 or bool(negatives)
    if key == 'not':
        raise CompilationError("Full-text NOT must be combined with a positive term inside 'and'")
    raise CompilationError(f"Unknown full-text operator '{key}'")


def _as_list(value: Any, key: str) -> List[Any]:
    if not isinstance(value, (list, tuple)) or not value:
        raise CompilationError(f"Full-text '{key}' expects a non-empty list")
    return list(value)


def _negation(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        parts = [_match_fragment(item)[0] for item in value]
        return f"({' OR '.join(parts)})"
    sql, compound = _match_fragment(value)
    return f"({sql})" if compound else sql


def _near(value: Any) -> str:
    if not isinstance(value, (list, tuple)):
        raise CompilationError("Full-text 'near' expects a list of phrases")
    items = list(value)
    distance = None
    if items and isinstance(items[-1], int) and not isinstance(items[-1], bool):
        distance = items.pop()
    if len(items) < 2:
        raise CompilationError("Full-text 'near' needs at least two phrases")
    phrases = ' '.join(_fts_phrase(item) for item in items)
    if distance is None:
        return f"NEAR({phrases})"
    return f"NEAR({phrases}, {distance})"


class ExpressionCompiler:
    """Compiles expression nodes and condition trees for one statement.

    Args:
        schemas: Known tables, as a mapping by name or an iterable
        registry: TypeRegistry for value conversion (built-ins by default)
        table: Base table to introduce first
        inline: Render literals inline instead of binding them

    Attributes:
        params: Placeholder name to bound storage value
        tables: Tables introduced into the FROM/JOIN chain, in order
        ctes: Hoisted subqueries, already renumbered
        aliases: Output aliases (name -> logical type) usable as columns
        qualify: Prefix column references with their table name
    """

    def __init__(
        self,
        schemas: Union[Mapping[str, TableSchema], Iterable[TableSchema], None] = None,
        registry: Optional[TypeRegistry] = None,
        table: Optional[str] = None,
        inline: bool = False
    ):
        if schemas is None:
            schemas = {}
        if not isinstance(schemas, Mapping):
            schemas = {schema.name: schema for schema in schemas}
        self.schemas: Dict[str, TableSchema] = dict(schemas)
        self.registry = registry or default_registry
        self.inline = inline
        self.params: Dict[str, Any] = {}
        self.tables: List[str] = []
        self.ctes: List[Subquery] = []
        self.aliases: Dict[str, Optional[str]] = {}
        self.qualify = False
        self._counter = 0
        self._cte_sources: Dict[str, str] = {}

        if table is not None:
            self.introduce(table)

    # ------------------------------------------------------------------
    # Errors, placeholders, tables
    # ------------------------------------------------------------------

    @property
    def base_table(self) -> Optional[str]:
        return self.tables[0] if self.tables else None

    def fail(self, message: str, column: Optional[str] = None) -> CompilationError:
        """Log and build a CompilationError for the current statement."""
        logger.debug(f"Compilation failed on {self.base_table!r}: {message}")
        return CompilationError(message, table=self.base_table, column=column)

    def bind(self, value: Any) -> str:
        """Allocate the next placeholder for a storage value."""
        if self.inline:
            return render_literal(value)
        self._counter += 1
        name = f"p_{self._counter}"
        self.params[name] = value
        return f":{name}"

    def schema(self, table: str) -> TableSchema:
        try:
            return self.schemas[table]
        except KeyError:
            raise self.fail(f"Unknown table '{table}'") from None

    def columns_of(self, table: str) -> Dict[str, Optional[str]]:
        """Column name to logical type for a table, CTE or 'excluded'."""
        if table == 'excluded' and self.tables:
            table = self.tables[0]
        for cte in self.ctes:
            if cte.alias == table:
                return dict(cte.columns)
        schema = self.schema(table)
        columns = {name: schema.type_of(name) for name in schema.all_column_names}
        if schema.virtual:
            columns['rowid'] = 'integer'
        return columns

    def introduce(self, table: str) -> None:
        """Add a table (or hoisted CTE alias) to the FROM/JOIN chain."""
        validate_identifier(table, kind='table')
        if table in self.tables:
            raise self.fail(f"Table '{table}' is already part of the query")
        if table not in self.schemas and not any(cte.alias == table for cte in self.ctes):
            raise self.fail(f"Unknown table '{table}'")
        self.tables.append(table)

    def is_virtual(self, table: Optional[str]) -> bool:
        schema = self.schemas.get(table) if table else None
        return bool(schema and schema.virtual)

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def to_storage(self, value: Any, type_name: Optional[str] = None) -> Any:
        """Convert a python value to its storage form, by column type when known."""
        if value is None:
            return None
        if type_name and type_name in self.registry and self.registry.matches(type_name, value):
            return self.registry.to_storage(type_name, value)
        return self.registry.infer_storage(value)

    def set_storage(self, values: Iterable[Any], type_name: Optional[str]) -> List[Any]:
        converted = []
        for value in values:
            if is_node(value) or isinstance(value, (dict, list, tuple)):
                raise self.fail("Set-membership lists may only hold plain values")
            stored = self.to_storage(value, type_name)
            if isinstance(stored, (bytes, bytearray, memoryview)):
                raise self.fail("Binary values cannot be used in a set-membership test")
            converted.append(stored)
        return converted

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def resolve(self, column: Column) -> Tuple[Optional[str], Optional[str]]:
        """Find the table and logical type a column reference belongs to.

        Returns:
            (table, type); table is None for output aliases

        Raises:
            CompilationError: For unknown tables or columns
        """
        validate_identifier(column.name, table=self.base_table)

        if column.table is not None:
            validate_identifier(column.table, kind='table')
            if column.table != 'excluded' and column.table not in self.tables:
                raise self.fail(
                    f"Table '{column.table}' is not part of the query", column=column.name
                )
            columns = self.columns_of(column.table)
            if column.name in columns:
                return column.table, columns[column.name]
            if column.name == column.table and self.is_virtual(column.table):
                return column.table, 'text'
            raise self.fail(
                f"Unknown column '{column.name}' on table '{column.table}'", column=column.name
            )

        for table in self.tables:
            columns = self.columns_of(table)
            if column.name in columns:
                return table, columns[column.name]
            # The hidden FTS column named after its table
            if column.name == table and self.is_virtual(table):
                return table, 'text'

        if column.name in self.aliases:
            return None, self.aliases[column.name]

        raise self.fail(f"Unknown column '{column.name}'", column=column.name)

    def column_sql(self, column: Column) -> str:
        table, _ = self.resolve(column)
        name = f'"{column.name}"'
        if table is None:
            return name
        if column.table == 'excluded':
            return f"excluded.{name}"
        if self.qualify:
            return f'"{table}".{name}'
        return name

    def column_from_key(self, key: str) -> Column:
        """Parse a condition key ('name' or 'table.name') into a Column."""
        if not isinstance(key, str):
            raise self.fail(f"Condition keys must be strings, got {key!r}")
        if '.' in key:
            table, name = key.split('.', 1)
            return Column(name, table)
        return Column(key)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def compile_node(self, node: Any) -> str:
        """Compile one ExpressionNode to SQL."""
        if isinstance(node, Column):
            return self.column_sql(node)
        if isinstance(node, Literal):
            return self.bind(self.to_storage(node.value, node.type))
        if isinstance(node, Compare):
            return self.compile_compare(node).sql
        if isinstance(node, Logical):
            return self.compile_logical_node(node).sql
        if isinstance(node, FunctionCall):
            return self.compile_function(node)
        if isinstance(node, Subquery):
            return f"(SELECT * FROM \"{self.hoist(node)}\")"
        raise self.fail(f"Unsupported expression node {type(node).__name__}")

    def node_type(self, node: Any) -> Optional[str]:
        """Logical type produced by a node."""
        if isinstance(node, Column):
            return self.resolve(node)[1]
        if isinstance(node, Literal):
            return node.type or self.registry.infer_type(node.value)
        if isinstance(node, (Compare, Logical)):
            return 'boolean'
        if isinstance(node, FunctionCall):
            spec = get_function(node.name)
            return return_type(spec, [self.operand_type(arg) for arg in node.args])
        if isinstance(node, Subquery):
            types = list(node.columns.values())
            return types[0] if len(types) == 1 else None
        raise self.fail(f"Unsupported expression node {type(node).__name__}")

    def operand_type(self, value: Any) -> Optional[str]:
        if is_node(value):
            return self.node_type(value)
        if value is None:
            return None
        return self.registry.infer_type(value)

    def compile_operand(self, value: Any, type_name: Optional[str] = None) -> str:
        """Compile a node, or bind a plain value converted by type."""
        if is_node(value):
            return self.compile_node(value)
        if isinstance(value, (dict, list, tuple)) and type_name != 'json':
            raise self.fail(f"Unexpected structured operand {value!r}")
        return self.bind(self.to_storage(value, type_name))

    def compile_function(self, call: FunctionCall) -> str:
        try:
            spec = get_function(call.name)
            args = [self.compile_operand(arg) for arg in call.args]
            over = self.compile_window(call.over) if call.over is not None else None
            return render_call(spec, args, distinct=call.distinct, over=over)
        except CompilationError as exc:
            if exc.table is None:
                raise self.fail(str(exc)) from exc
            raise

    def compile_window(self, window: Window) -> str:
        if not isinstance(window, Window):
            raise self.fail(f"OVER expects a Window, got {type(window).__name__}")
        partition = [self._expression(item) for item in window.partition_by]
        order = [self._expression(item) for item in window.order_by]
        frame = None
        if window.frame:
            frame = window.frame.strip().upper()
            if not FRAME_PATTERN.match(frame):
                raise self.fail(f"Invalid window frame {window.frame!r}")
        return over_clause(partition, order, desc=window.desc, frame=frame)

    def _expression(self, item: Any) -> str:
        """Column name or node, as used in PARTITION BY / ORDER BY / GROUP BY."""
        if isinstance(item, str):
            return self.column_sql(self.column_from_key(item))
        if is_node(item):
            return self.compile_node(item)
        raise self.fail(f"Expected a column name or expression, got {item!r}")

    def expression_sql(self, item: Any) -> str:
        return self._expression(item)

    def expression_type(self, item: Any) -> Optional[str]:
        if isinstance(item, str):
            return self.resolve(self.column_from_key(item))[1]
        return self.node_type(item)

    # ------------------------------------------------------------------
    # Subqueries
    # ------------------------------------------------------------------

    def hoist(self, subquery: Union[Subquery, CompiledStatement], alias: Optional[str] = None) -> str:
        """Register a subquery as a CTE, renumbering its placeholders.

        Returns:
            The CTE alias
        """
        if isinstance(subquery, CompiledStatement):
            if alias is None:
                raise self.fail("A compiled statement needs an alias to be used as a subquery")
            subquery = subquery.as_subquery(alias)
        if self.inline:
            raise self.fail("Subqueries cannot be used in inline (DDL) expressions")

        validate_identifier(subquery.alias, kind='subquery alias')
        if subquery.alias in self._cte_sources:
            if self._cte_sources[subquery.alias] == subquery.sql:
                return subquery.alias
            raise self.fail(f"Subquery alias '{subquery.alias}' is already in use")
        if subquery.alias in self.schemas:
            raise self.fail(f"Subquery alias '{subquery.alias}' shadows a table")

        mapping: Dict[str, str] = {}

        def renumber(match):
            name = match.group(1)
            if name not in subquery.params:
                raise self.fail(f"Subquery '{subquery.alias}' references unbound :{name}")
            if name not in mapping:
                placeholder = self.bind(subquery.params[name])
                mapping[name] = placeholder
            return mapping[name]

        sql = PLACEHOLDER_PATTERN.sub(renumber, subquery.sql)
        self.ctes.append(Subquery(
            alias=subquery.alias,
            sql=sql,
            params={key[1:]: self.params[key[1:]] for key in mapping.values()},
            columns=dict(subquery.columns)
        ))
        self._cte_sources[subquery.alias] = subquery.sql
        return subquery.alias

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def compile_where(self, where: Any) -> str:
        """Compile a condition (dict, node or list of either) to SQL."""
        return self.condition(where).sql

    def condition(self, where: Any) -> Fragment:
        if where is None:
            return Fragment('')
        if isinstance(where, dict):
            return self._compile_dict(where)
        if isinstance(where, (list, tuple)):
            return self.join([self.condition(item) for item in where], 'AND')
        if isinstance(where, Compare):
            return self.compile_compare(where)
        if isinstance(where, Logical):
            return self.compile_logical_node(where)
        if isinstance(where, (FunctionCall, Column)):
            return Fragment(self.compile_node(where))
        raise self.fail(f"Unsupported condition {where!r}")

    @staticmethod
    def join(fragments: List[Fragment], keyword: str) -> Fragment:
        """Join fragments, parenthesizing compound ones."""
        fragments = [f for f in fragments if f.sql]
        if not fragments:
            return Fragment('')
        if len(fragments) == 1:
            return fragments[0]
        sql = f" {keyword} ".join(f"({f.sql})" if f.compound else f.sql for f in fragments)
        return Fragment(sql, True)

    def _compile_dict(self, condition: Dict[str, Any]) -> Fragment:
        fragments = []
        for key, value in condition.items():
            if key in LOGICAL_OPERATORS:
                fragments.append(self._logical(key, value))
            elif key == 'not':
                inner = self.condition(value)
                if not inner.sql:
                    raise self.fail("'not' needs a condition")
                fragments.append(Fragment(f"NOT ({inner.sql})"))
            else:
                fragments.append(self._column_condition(key, value))
        return self.join(fragments, 'AND')

    def _logical(self, key: str, children: Any) -> Fragment:
        if not isinstance(children, (list, tuple)) or not children:
            raise self.fail(f"'{key}' expects a non-empty list of conditions")
        fragments = []
        for child in children:
            if isinstance(child, dict) and len(child) != 1:
                raise self.fail(
                    f"Each '{key}' child must hold exactly one condition, got keys {sorted(child)}"
                )
            fragments.append(self.condition(child))
        return self.join(fragments, key.upper())

    def compile_logical_node(self, node: Logical) -> Fragment:
        op = node.op.lower()
        if op == 'not':
            if len(node.children) != 1:
                raise self.fail("Logical 'not' takes exactly one child")
            return Fragment(f"NOT ({self.condition(node.children[0]).sql})")
        if op not in LOGICAL_OPERATORS:
            raise self.fail(f"Unknown logical operator '{node.op}'")
        if not node.children:
            raise self.fail(f"'{op}' expects at least one child")
        return self.join([self.condition(child) for child in node.children], op.upper())

    def compile_compare(self, node: Compare) -> Fragment:
        op = OPERATOR_ALIASES.get(node.op, node.op)
        if op not in OPERATORS:
            raise self.fail(f"Unknown operator '{node.op}'")
        left = self.column_from_key(node.left) if isinstance(node.left, str) else node.left
        if not is_node(left):
            raise self.fail(f"Left side of a comparison must be a column or expression, got {left!r}")
        return self._operator(self.compile_node(left), self.node_type(left), op, node.right)

    def _column_condition(self, key: str, value: Any) -> Fragment:
        column = self.column_from_key(key)
        left_sql = self.column_sql(column)
        _, left_type = self.resolve(column)

        if (left_type == 'json' and isinstance(value, dict) and value
                and not set(value) <= OPERATORS):
            return self._json_condition(left_sql, [], value)
        return self.comparison(left_sql, left_type, value)

    def comparison(self, left_sql: str, left_type: Optional[str], value: Any) -> Fragment:
        """Compile a bare value or an operator dict applied to left_sql."""
        if isinstance(value, dict):
            if not value:
                raise self.fail("Empty operator object")
            fragments = []
            for op, operand in value.items():
                if op not in OPERATORS:
                    raise self.fail(f"Unknown operator '{op}'")
                fragments.append(self._operator(left_sql, left_type, op, operand))
            return self.join(fragments, 'AND')
        return self._operator(left_sql, left_type, 'eq', value)

    def _operator(self, left: str, left_type: Optional[str], op: str, operand: Any) -> Fragment:
        if op in SET_OPERATORS:
            if isinstance(operand, (Subquery, CompiledStatement)):
                return self._subquery_membership(left, operand, op == 'not_in')
            if not isinstance(operand, (list, tuple, set, frozenset)):
                raise self.fail(f"Operator '{op}' expects a list, got {type(operand).__name__}")
            return self._set_membership(left, left_type, list(operand), op == 'not_in')

        if op in ('eq', 'not'):
            negate = op == 'not'
            if operand is None:
                return Fragment(f"{left} IS NOT NULL" if negate else f"{left} IS NULL")
            if isinstance(operand, (list, tuple)):
                return self._set_membership(left, left_type, list(operand), negate)
            if isinstance(operand, Subquery):
                return self._subquery_membership(left, operand, negate)

        if operand is None:
            raise self.fail(f"Operator '{op}' cannot compare with NULL")
        if isinstance(operand, (list, tuple, set)):
            raise self.fail(f"Operator '{op}' does not accept a list")

        if op == 'match' and isinstance(operand, dict):
            right = self.bind(match_expression(operand))
        else:
            right = self.compile_operand(operand, left_type)
        return Fragment(f"{left} {COMPARISON_OPERATORS[op]} {right}")

    def _set_membership(self, left: str, left_type: Optional[str], values: List[Any],
                        negate: bool) -> Fragment:
        keyword = 'NOT IN' if negate else 'IN'
        stored = self.set_storage(values, left_type)
        if self.inline:
            items = ', '.join(render_literal(value) for value in stored)
            return Fragment(f"{left} {keyword} ({items})")
        placeholder = self.bind(json_to_storage(stored))
        return Fragment(f"{left} {keyword} (SELECT value FROM json_each({placeholder}))")

    def _subquery_membership(self, left: str, subquery: Any, negate: bool) -> Fragment:
        alias = self.hoist(subquery, alias=getattr(subquery, 'alias', None))
        keyword = 'NOT IN' if negate else 'IN'
        return Fragment(f'{left} {keyword} (SELECT * FROM "{alias}")')

    def _json_condition(self, column_sql: str, path: List[Union[str, int]], value: Any) -> Fragment:
        if isinstance(value, dict) and value and not set(value) <= OPERATORS:
            fragments = []
            for segment, sub in value.items():
                if segment in OPERATORS:
                    raise self.fail("JSON path conditions cannot mix keys and operators")
                if isinstance(segment, bool) or not (
                    isinstance(segment, int)
                    or (isinstance(segment, str) and JSON_SEGMENT_PATTERN.match(segment))
                ):
                    raise self.fail(f"Invalid JSON path segment {segment!r}")
                fragments.append(self._json_condition(column_sql, path + [segment], sub))
            return self.join(fragments, 'AND')

        path_text = '$' + ''.join(
            f"[{segment}]" if isinstance(segment, int) else f".{segment}" for segment in path
        )
        left = f"json_extract({column_sql}, {self.bind(path_text)})"
        return self.comparison(left, None, value)


def compile_expression(
    where: Any,
    schemas: Union[Mapping[str, TableSchema], Iterable[TableSchema]],
    table: Optional[str] = None,
    registry: Optional[TypeRegistry] = None,
    inline: bool = False
) -> Tuple[str, Dict[str, Any]]:
    """Compile a standalone condition into (sql, params).

    Args:
        where: Condition dict, node, or list of either
        schemas: Known tables
        table: Table the condition's bare column names refer to
        registry: TypeRegistry for value conversion
        inline: Render literals inline (DDL)

    Returns:
        Tuple of SQL fragment and parameter map
    """
    compiler = ExpressionCompiler(schemas, registry=registry, table=table, inline=inline)
    sql = compiler.compile_where(where)
    if compiler.ctes:
        raise compiler.fail("Subqueries need a full statement; use compile_query")
    return sql, compiler.params
