"""
==============================================
Expression nodes and compiled statements.
==============================================

ExpressionNode is a closed set of frozen dataclasses. The compiler
dispatches on them with isinstance checks and raises CompilationError for
anything else, so every entry point handles every node kind.

Nodes:
    Column: Column reference, optionally qualified by table
    Literal: A value to bind (or inline, in DDL mode)
    Compare: Binary comparison
    Logical: AND / OR / NOT over child nodes
    FunctionCall: Scalar, aggregate or window function call
    Subquery: A compiled statement referenced by alias (hoisted into WITH)
    Window: OVER clause attached to a FunctionCall

Results:
    RowProcessor: Per-column converters plus a result mode
    CompiledStatement: SQL text, bound params, referenced tables, processor

Example:
    >>> from models.expression_models import Column, Compare, Literal
    >>> node = Compare('gt', Column('height'), Literal(10))
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

RESULT_MODES = ('rows', 'row', 'value', 'values', 'count', 'none')


@dataclass(frozen=True)
class Column:
    name: str
    table: Optional[str] = None


@dataclass(frozen=True)
class Literal:
    value: Any
    type: Optional[str] = None


@dataclass(frozen=True)
class Compare:
    op: str
    left: 'ExpressionNode'
    right: Any = None


@dataclass(frozen=True)
class Logical:
    op: str
    children: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Window:
    """OVER clause.

    Attributes:
        partition_by: Partition expressions (Column nodes or column names)
        order_by: Ordering expressions (Column nodes or column names)
        desc: Sort descending
        frame: Raw frame clause such as 'ROWS BETWEEN 1 PRECEDING AND CURRENT ROW'
    """

    partition_by: Tuple[Any, ...] = ()
    order_by: Tuple[Any, ...] = ()
    desc: bool = False
    frame: Optional[str] = None


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Tuple[Any, ...] = ()
    over: Optional[Window] = None
    distinct: bool = False


@dataclass(frozen=True)
class Subquery:
    """A compiled statement usable as a CTE.

    Attributes:
        alias: CTE name, referenced as a table in the parent query
        sql: SQL text with its own :p_N placeholders
        params: The subquery's bound parameters
        columns: Output column name to logical type
    """

    alias: str
    sql: str
    params: Mapping[str, Any] = field(default_factory=dict)
    columns: Mapping[str, Optional[str]] = field(default_factory=dict)


ExpressionNode = Union[Column, Literal, Compare, Logical, FunctionCall, Subquery]


def _identity(value: Any) -> Any:
    return value


@dataclass
class RowProcessor:
    """Shapes driver rows into python values.

    Attributes:
        converters: Output column name to storage -> python converter
        mode: rows | row | value | values | count | none
    """

    converters: Dict[str, Callable[[Any], Any]] = field(default_factory=dict)
    mode: str = 'rows'

    def __post_init__(self):
        if self.mode not in RESULT_MODES:
            raise ValueError(f"Unknown result mode '{self.mode}'")

    def convert_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            key: self.converters.get(key, _identity)(value)
            for key, value in dict(row).items()
        }

    def process(self, rows: Optional[Sequence[Mapping[str, Any]]]) -> Any:
        """Convert driver rows and reduce them according to the mode."""
        if self.mode == 'none':
            return None
        if self.mode == 'count':
            return len(rows or [])

        converted = [self.convert_row(row) for row in (rows or [])]

        if self.mode == 'rows':
            return converted
        if self.mode == 'row':
            return converted[0] if converted else None
        if self.mode == 'value':
            if not converted:
                return None
            return next(iter(converted[0].values()), None)
        return [next(iter(row.values()), None) for row in converted]


@dataclass
class CompiledStatement:
    """A complete parameterized statement.

    Attributes:
        sql: SQL text with :p_N placeholders
        params: Placeholder name (without colon) to storage value
        tables: Table names the statement references
        columns: Output column name to logical type
        processor: RowProcessor for the statement's rows
        write: True for statements that modify data
    """

    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    tables: Tuple[str, ...] = ()
    columns: Dict[str, Optional[str]] = field(default_factory=dict)
    processor: RowProcessor = field(default_factory=RowProcessor)
    write: bool = False

    def process(self, rows: Optional[Sequence[Mapping[str, Any]]]) -> Any:
        return self.processor.process(rows)

    def as_subquery(self, alias: str) -> Subquery:
        """Wrap this statement for use as a hoisted CTE."""
        return Subquery(alias=alias, sql=self.sql.rstrip(';'), params=dict(self.params),
                        columns=dict(self.columns))

    def __iter__(self):
        # Allows `sql, params = statement`
        return iter((self.sql, self.params))
