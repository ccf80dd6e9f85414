"""
================================================
Comprehensive pytest suite for sql/expressions.py
================================================

Sections:
---------
1. Unit tests - Condition grammar and placeholders
2. Unit tests - Full-text query translation
3. Edge case tests - Invalid operators, identifiers and shapes

Available markers:
------------------
unit, edge_case

Fixtures (tests/conftest.py):
-----------------------------
- schemas: forests, trees and users built by a fresh SchemaBuilder

How to Execute:
---------------
All tests:          python -m pytest tests/tests_sql/test_expressions.py -v
By category:        python -m pytest tests/tests_sql/test_expressions.py -m unit
With coverage:      python -m pytest tests/tests_sql/test_expressions.py --cov=sql.expressions

Note: Use 'python -m pytest' (not just 'pytest') to ensure correct Python path resolution.
"""

from pytest import mark, raises

from core.exceptions import CompilationError
from models.expression_models import Column, Compare, FunctionCall, Literal, Logical
from sql.expressions import (
    ExpressionCompiler,
    compile_expression,
    match_expression,
    quote_identifier,
    render_literal,
)

# ===================================
# 1. UNIT TESTS - CONDITION GRAMMAR
# ===================================


@mark.unit
def test_list_and_boolean_condition(schemas):
    """
    Unit test: Verify a list binds as ONE JSON parameter and booleans bind as 1.

    Test Strategy:
    - Compile {'forest_id': [1, 2, 3], 'alive': True} on trees
    - Expect exactly two parameters and a json_each() membership test
    """
    sql, params = compile_expression({'forest_id': [1, 2, 3], 'alive': True}, schemas, table='trees')

    assert sql == '"forest_id" IN (SELECT value FROM json_each(:p_1)) AND "alive" = :p_2'
    assert params == {'p_1': '[1,2,3]', 'p_2': 1}


@mark.unit
def test_null_conditions(schemas):
    """Unit test: Verify None compiles to IS NULL and {'not': None} to IS NOT NULL."""
    assert compile_expression({'height': None}, schemas, table='trees') == ('"height" IS NULL', {})
    assert compile_expression({'height': {'not': None}}, schemas, table='trees') == (
        '"height" IS NOT NULL', {}
    )


@mark.unit
def test_operator_object_is_conjunction(schemas):
    """Unit test: Verify several operators on one column are joined with AND."""
    sql, params = compile_expression({'height': {'gt': 3, 'lte': 9}}, schemas, table='trees')

    assert sql == '"height" > :p_1 AND "height" <= :p_2'
    assert params == {'p_1': 3.0, 'p_2': 9.0}


@mark.unit
def test_or_and_not(schemas):
    """Unit test: Verify 'or' joins children with OR and 'not' wraps its condition."""
    sql, params = compile_expression(
        {'or': [{'name': 'Oak'}, {'name': 'Elm'}]}, schemas, table='trees'
    )
    assert sql == '"name" = :p_1 OR "name" = :p_2'
    assert params == {'p_1': 'Oak', 'p_2': 'Elm'}

    sql, params = compile_expression({'not': {'alive': True}}, schemas, table='trees')
    assert sql == 'NOT ("alive" = :p_1)'
    assert params == {'p_1': 1}


@mark.unit
def test_compound_children_are_parenthesized(schemas):
    """Unit test: Verify an OR nested in an AND keeps its own parentheses."""
    sql, _ = compile_expression(
        {'alive': True, 'or': [{'name': 'Oak'}, {'name': 'Elm'}]}, schemas, table='trees'
    )

    assert sql == '"alive" = :p_1 AND ("name" = :p_2 OR "name" = :p_3)'


@mark.unit
def test_json_path_condition(schemas):
    """Unit test: Verify nested keys on a JSON column compile to json_extract()."""
    sql, params = compile_expression({'meta': {'leaf': {'eq': 'oval'}}}, schemas, table='trees')

    assert sql == 'json_extract("meta", :p_1) = :p_2'
    assert params == {'p_1': '$.leaf', 'p_2': 'oval'}


@mark.unit
def test_column_to_column_comparison(schemas):
    """Unit test: Verify a Column operand is compiled, not bound."""
    sql, params = compile_expression({'height': {'gt': Column('forest_id')}}, schemas, table='trees')

    assert sql == '"height" > "forest_id"'
    assert params == {}


@mark.unit
def test_expression_nodes(schemas):
    """Unit test: Verify Compare, Logical and FunctionCall nodes compile like dicts."""
    node = Logical('and', (
        Compare('gte', Column('height'), Literal(3)),
        Compare('eq', FunctionCall('lower', (Column('name'),)), 'oak'),
    ))

    sql, params = compile_expression(node, schemas, table='trees')

    assert sql == '"height" >= :p_1 AND lower("name") = :p_2'
    assert params == {'p_1': 3, 'p_2': 'oak'}


@mark.unit
def test_placeholders_restart_per_compile(schemas):
    """Unit test: Verify every top-level compile numbers its placeholders from 1."""
    first = compile_expression({'name': 'Oak'}, schemas, table='trees')
    second = compile_expression({'name': 'Elm'}, schemas, table='trees')

    assert first[0] == second[0] == '"name" = :p_1'


@mark.unit
def test_inline_mode_renders_literals(schemas):
    """Unit test: Verify inline mode escapes literals instead of binding them."""
    sql, params = compile_expression({'name': "O'Brien", 'forest_id': [1, 2]}, schemas,
                                     table='trees', inline=True)

    assert sql == '"name" = \'O\'\'Brien\' AND "forest_id" IN (1, 2)'
    assert params == {}


@mark.unit
def test_render_literal_and_quote_identifier():
    """Unit test: Verify literal rendering and identifier quoting."""
    assert render_literal(None) == 'NULL'
    assert render_literal(True) == '1'
    assert render_literal(2.5) == '2.5'
    assert render_literal(b'\x01\xff') == "X'01ff'"
    assert quote_identifier('trees') == '"trees"'


@mark.unit
def test_qualified_columns_after_join(schemas):
    """Unit test: Verify columns are table-qualified once the compiler qualifies."""
    compiler = ExpressionCompiler(schemas, table='trees')
    compiler.introduce('forests')
    compiler.qualify = True

    assert compiler.compile_where({'forests.name': 'Sherwood'}) == '"forests"."name" = :p_1'


# ===================================
# 2. UNIT TESTS - FULL-TEXT QUERIES
# ===================================


@mark.unit
def test_match_expression_shapes():
    """Unit test: Verify each structured full-text shape translates to FTS5 syntax."""
    assert match_expression('red oak') == '"red oak"'
    assert match_expression(['red', 'oak']) == '"red" AND "oak"'
    assert match_expression({'or': ['oak', 'elm']}) == '"oak" OR "elm"'
    assert match_expression({'prefix': 'ma'}) == '"ma" *'
    assert match_expression({'starts_with': 'the'}) == '^"the"'
    assert match_expression({'near': ['red', 'oak', 5]}) == 'NEAR("red" "oak", 5)'
    assert match_expression({'near': ['red', 'oak']}) == 'NEAR("red" "oak")'
    assert match_expression({'columns': ['title'], 'query': 'oak'}) == '{title} : ("oak")'


@mark.unit
def test_match_expression_not_is_binary():
    """Unit test: Verify NOT excludes from the positive terms of an 'and'."""
    assert match_expression({'and': ['tree', {'not': ['oak', 'elm']}]}) == '"tree" NOT ("oak" OR "elm")'


@mark.unit
def test_match_expression_escapes_quotes():
    """Unit test: Verify double quotes inside phrases are doubled."""
    assert match_expression('say "hi"') == '"say ""hi"""'


# ====================
# 3. EDGE CASE TESTS
# ====================


@mark.edge_case
def test_unknown_operator_raises(schemas):
    """Edge case: Verify an unknown operator key raises CompilationError."""
    with raises(CompilationError, match="Unknown operator 'between'"):
        compile_expression({'height': {'between': [1, 2]}}, schemas, table='trees')


@mark.edge_case
def test_invalid_identifier_raises(schemas):
    """Edge case: Verify a key that is not a plain identifier is rejected before any SQL is built."""
    with raises(CompilationError, match='Invalid column name'):
        compile_expression({'name"; DROP TABLE trees; --': 1}, schemas, table='trees')


@mark.edge_case
def test_in_with_non_list_raises(schemas):
    """Edge case: Verify 'in' requires a list."""
    with raises(CompilationError, match="Operator 'in' expects a list"):
        compile_expression({'forest_id': {'in': 3}}, schemas, table='trees')


@mark.edge_case
def test_unknown_column_raises(schemas):
    """Edge case: Verify unknown columns are reported with the column name."""
    with raises(CompilationError, match="Unknown column 'colour'") as error:
        compile_expression({'colour': 'red'}, schemas, table='trees')

    assert error.value.column == 'colour'
    assert error.value.table == 'trees'


@mark.edge_case
def test_ordering_operator_with_null_raises(schemas):
    """Edge case: Verify ordering comparisons against None are rejected."""
    with raises(CompilationError, match="cannot compare with NULL"):
        compile_expression({'height': {'gt': None}}, schemas, table='trees')


@mark.edge_case
def test_window_function_needs_over(schemas):
    """Edge case: Verify window functions without OVER are rejected."""
    with raises(CompilationError, match='requires an OVER clause'):
        compile_expression(Compare('gt', FunctionCall('row_number'), 1), schemas, table='trees')


@mark.edge_case
def test_unknown_function_raises(schemas):
    """Edge case: Verify functions outside the catalog are rejected."""
    with raises(CompilationError, match="Unknown function 'sleep'"):
        compile_expression(Compare('gt', FunctionCall('sleep', (1,)), 1), schemas, table='trees')


@mark.edge_case
def test_near_needs_two_phrases():
    """Edge case: Verify NEAR with a single phrase raises CompilationError."""
    with raises(CompilationError, match='at least two phrases'):
        match_expression({'near': ['oak', 3]})


@mark.edge_case
def test_bare_full_text_not_raises():
    """Edge case: Verify NOT without a positive term raises CompilationError."""
    with raises(CompilationError, match='positive term'):
        match_expression({'not': 'oak'})
