"""
=================================================
SQL function catalog for the expression compiler.
=================================================

Every function a query description may call is declared here with its
SQLite spelling, its arity and the logical type of its result, so the
result column can be converted back through the type registry.

Return types:
    - a logical type name ('integer', 'real', 'text', 'json', ...)
    - an int N, meaning "same type as argument N"
    - None, meaning unknown (values pass through unconverted)

Kinds:
    scalar     plain function call
    aggregate  may take DISTINCT and an OVER clause
    window     requires an OVER clause
    operator   binary arithmetic rendered infix

Example:
    >>> spec = get_function('sum')
    >>> spec.sql_name, spec.returns
    ('total', 'real')
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from core.exceptions import CompilationError

ReturnType = Union[str, int, None]


@dataclass(frozen=True)
class FunctionSpec:
    """One callable function.

    Attributes:
        name: Name used in query descriptions
        sql_name: Name (or infix operator) emitted in SQL
        kind: scalar | aggregate | window | operator
        min_args: Minimum number of arguments
        max_args: Maximum number of arguments (None for variadic)
        returns: Logical return type, argument index, or None
        star: Render '*' when called without arguments (count)
    """

    name: str
    sql_name: str
    kind: str
    min_args: int = 0
    max_args: Optional[int] = 0
    returns: ReturnType = None
    star: bool = False

    def check_arity(self, count: int) -> None:
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = str(self.min_args)
            else:
                expected = f"{self.min_args} to {self.max_args}"
            raise CompilationError(
                f"Function '{self.name}' takes {expected} argument(s), got {count}"
            )


def _catalog(*specs: FunctionSpec) -> Dict[str, FunctionSpec]:
    return {spec.name: spec for spec in specs}


FUNCTIONS: Dict[str, FunctionSpec] = _catalog(
    # Window functions
    FunctionSpec('row_number', 'row_number', 'window', 0, 0, 'integer'),
    FunctionSpec('rank', 'rank', 'window', 0, 0, 'integer'),
    FunctionSpec('dense_rank', 'dense_rank', 'window', 0, 0, 'integer'),
    FunctionSpec('percent_rank', 'percent_rank', 'window', 0, 0, 'real'),
    FunctionSpec('cume_dist', 'cume_dist', 'window', 0, 0, 'real'),
    FunctionSpec('ntile', 'ntile', 'window', 1, 1, 'integer'),
    FunctionSpec('lag', 'lag', 'window', 1, 3, 0),
    FunctionSpec('lead', 'lead', 'window', 1, 3, 0),
    FunctionSpec('first_value', 'first_value', 'window', 1, 1, 0),
    FunctionSpec('last_value', 'last_value', 'window', 1, 1, 0),
    FunctionSpec('nth_value', 'nth_value', 'window', 2, 2, 0),

    # Aggregates
    FunctionSpec('count', 'count', 'aggregate', 0, 1, 'integer', star=True),
    FunctionSpec('sum', 'total', 'aggregate', 1, 1, 'real'),
    FunctionSpec('avg', 'avg', 'aggregate', 1, 1, 'real'),
    FunctionSpec('min', 'min', 'aggregate', 1, 1, 0),
    FunctionSpec('max', 'max', 'aggregate', 1, 1, 0),
    FunctionSpec('group_concat', 'group_concat', 'aggregate', 1, 2, 'text'),
    FunctionSpec('array', 'json_group_array', 'aggregate', 1, 1, 'json'),
    FunctionSpec('object', 'json_group_object', 'aggregate', 2, 2, 'json'),

    # Scalar functions
    FunctionSpec('lower', 'lower', 'scalar', 1, 1, 'text'),
    FunctionSpec('upper', 'upper', 'scalar', 1, 1, 'text'),
    FunctionSpec('length', 'length', 'scalar', 1, 1, 'integer'),
    FunctionSpec('abs', 'abs', 'scalar', 1, 1, 0),
    FunctionSpec('round', 'round', 'scalar', 1, 2, 'real'),
    FunctionSpec('coalesce', 'coalesce', 'scalar', 2, None, 0),
    FunctionSpec('ifnull', 'ifnull', 'scalar', 2, 2, 0),
    FunctionSpec('nullif', 'nullif', 'scalar', 2, 2, 0),
    FunctionSpec('iif', 'iif', 'scalar', 3, 3, 1),
    FunctionSpec('concat', 'concat', 'scalar', 1, None, 'text'),
    FunctionSpec('substring', 'substr', 'scalar', 2, 3, 'text'),
    FunctionSpec('replace', 'replace', 'scalar', 3, 3, 'text'),
    FunctionSpec('trim', 'trim', 'scalar', 1, 2, 'text'),
    FunctionSpec('instr', 'instr', 'scalar', 2, 2, 'integer'),
    FunctionSpec('hex', 'hex', 'scalar', 1, 1, 'text'),
    FunctionSpec('julianday', 'julianday', 'scalar', 1, None, 'real'),
    FunctionSpec('unixepoch', 'unixepoch', 'scalar', 1, None, 'integer'),
    FunctionSpec('strftime', 'strftime', 'scalar', 2, None, 'text'),
    FunctionSpec('date', 'date', 'scalar', 1, None, 'text'),
    FunctionSpec('datetime', 'datetime', 'scalar', 1, None, 'text'),
    FunctionSpec('json_extract', 'json_extract', 'scalar', 2, None, None),
    FunctionSpec('json_array_length', 'json_array_length', 'scalar', 1, 2, 'integer'),

    # Arithmetic
    FunctionSpec('plus', '+', 'operator', 2, 2, 0),
    FunctionSpec('minus', '-', 'operator', 2, 2, 0),
    FunctionSpec('multiply', '*', 'operator', 2, 2, 0),
    FunctionSpec('divide', '/', 'operator', 2, 2, 0),
    FunctionSpec('modulo', '%', 'operator', 2, 2, 0),
)


def get_function(name: str) -> FunctionSpec:
    """Look up a function by its description name.

    Raises:
        CompilationError: If the function is not in the catalog
    """
    try:
        return FUNCTIONS[name]
    except KeyError:
        raise CompilationError(f"Unknown function '{name}'") from None


def over_clause(
    partition_by: Optional[List[str]] = None,
    order_by: Optional[List[str]] = None,
    desc: bool = False,
    frame: Optional[str] = None
) -> str:
    """Render an OVER (...) clause from already compiled expressions.

    Example:
        >>> over_clause(['"forest_id"'], ['"height"'], desc=True)
        'OVER (PARTITION BY "forest_id" ORDER BY "height" DESC)'
    """
    parts = []
    if partition_by:
        parts.append(f"PARTITION BY {', '.join(partition_by)}")
    if order_by:
        direction = ' DESC' if desc else ''
        parts.append(f"ORDER BY {', '.join(order_by)}{direction}")
    if frame:
        parts.append(frame)
    return f"OVER ({' '.join(parts)})"


def render_call(
    spec: FunctionSpec,
    args: List[str],
    distinct: bool = False,
    over: Optional[str] = None
) -> str:
    """Render a call to a catalogued function from compiled arguments.

    Raises:
        CompilationError: On wrong arity, DISTINCT on a non-aggregate,
            a window function without OVER, or OVER on a scalar
    """
    spec.check_arity(len(args))

    if spec.kind == 'operator':
        return f"({args[0]} {spec.sql_name} {args[1]})"

    if distinct and spec.kind != 'aggregate':
        raise CompilationError(f"DISTINCT is only valid for aggregates, not '{spec.name}'")
    if spec.kind == 'window' and over is None:
        raise CompilationError(f"Window function '{spec.name}' requires an OVER clause")
    if spec.kind == 'scalar' and over is not None:
        raise CompilationError(f"Scalar function '{spec.name}' cannot take an OVER clause")

    if not args and spec.star:
        inner = '*'
    else:
        inner = ('DISTINCT ' if distinct else '') + ', '.join(args)

    sql = f"{spec.sql_name}({inner})"
    if over is not None:
        sql += f" {over}"
    return sql


def return_type(spec: FunctionSpec, arg_types: List[Optional[str]]) -> Optional[str]:
    """Resolve the logical result type of a call."""
    if isinstance(spec.returns, int):
        if spec.returns < len(arg_types):
            return arg_types[spec.returns]
        return None
    return spec.returns
