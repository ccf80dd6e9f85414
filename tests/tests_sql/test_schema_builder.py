"""
===================================================
Comprehensive pytest suite for sql/schema_builder.py
===================================================

Sections:
---------
1. Unit tests - Columns, keys, references, checks, indexes
2. Integration tests - Custom types, composite keys, full-text tables
3. Edge case tests - Structural errors raise SchemaError

Available markers:
------------------
unit, integration, edge_case

How to Execute:
---------------
All tests:          python -m pytest tests/tests_sql/test_schema_builder.py -v
By category:        python -m pytest tests/tests_sql/test_schema_builder.py -m unit
With coverage:      python -m pytest tests/tests_sql/test_schema_builder.py --cov=sql.schema_builder

Note: Use 'python -m pytest' (not just 'pytest') to ensure correct Python path resolution.
"""

from decimal import Decimal

from pytest import mark, raises

from core.exceptions import SchemaError
from core.type_registry import TypeRegistry
from models.expression_models import Column, FunctionCall, Literal
from models.schema_models import NOW, ColumnSource, ForeignKeyDescriptor, IndexDescriptor
from sql.fulltext import Unicode61
from sql.schema_builder import (
    SchemaBuilder,
    cascade,
    computed,
    field,
    index,
    integer,
    now,
    real,
    references,
    text,
)

# ===============
# 1. UNIT TESTS
# ===============


@mark.unit
def test_auto_primary_key(schemas):
    """Unit test: Verify tables without a declared key get an integer 'id' primary key first."""
    forests = schemas['forests']

    assert forests.primary_keys == ('id',)
    assert forests.column_names == ['id', 'name']
    assert forests.column('id').primary_key is True
    assert forests.column('id').type == 'integer'


@mark.unit
def test_reference_copies_target_type(schemas):
    """
    Unit test: Verify a reference column copies the referenced column's type.

    Test Strategy:
    - trees.forest_id references forests (primary key 'id')
    - Expect an integer NOT NULL column, an FK descriptor and a supporting index
    """
    trees = schemas['trees']

    assert trees.column('forest_id').type == 'integer'
    assert trees.column('forest_id').not_null is True
    assert trees.foreign_keys == (ForeignKeyDescriptor('forest_id', 'forests', 'id'),)
    assert IndexDescriptor(on=('forest_id',)) in trees.indexes


@mark.unit
def test_columns_keep_declaration_order(schemas):
    """Unit test: Verify references keep their declared position."""
    assert schemas['trees'].column_names == ['id', 'name', 'forest_id', 'alive', 'height', 'meta']


@mark.unit
def test_defaults_are_converted_to_storage(schemas):
    """Unit test: Verify defaults are stored in their storage form."""
    assert schemas['trees'].column('alive').default == 1


@mark.unit
def test_boolean_columns_get_a_check(schemas):
    """Unit test: Verify boolean columns are constrained to 0/1."""
    assert schemas['trees'].checks == ('"alive" IN (0, 1)',)


@mark.unit
def test_soft_delete_adds_deleted_at(schemas):
    """Unit test: Verify soft-delete tables gain a nullable deleted_at date column."""
    users = schemas['users']

    assert users.soft_delete is True
    assert users.column_names == ['id', 'email', 'deleted_at']
    assert users.column('deleted_at').type == 'date'
    assert users.column('deleted_at').not_null is False


@mark.unit
def test_unique_field_creates_unique_index(schemas):
    """Unit test: Verify unique=True creates a single-column UNIQUE index."""
    assert schemas['users'].indexes == (IndexDescriptor(on=('email',), unique=True),)


@mark.unit
def test_field_check_is_inlined():
    """Unit test: Verify field and table checks are compiled with literals inlined."""
    builder = SchemaBuilder()
    plots = builder.build({
        'name': 'plots',
        'fields': {'area': real(check={'gte': 0})},
        'attributes': {'checks': [{'area': {'lt': 200}}]},
    })

    assert plots.checks == ('"area" >= 0.0', '"area" < 200.0')


@mark.unit
def test_table_level_index():
    """Unit test: Verify multi-column and partial indexes declared in attributes."""
    builder = SchemaBuilder()
    builder.build({'name': 'forests', 'fields': {'name': text()}})
    trees = builder.build({
        'name': 'trees',
        'fields': {'forest_id': references('forests'), 'name': text(), 'alive': field('boolean')},
        'attributes': {'indexes': [
            index('forest_id', 'name', unique=True),
            index('name', where={'alive': True}),
        ]},
    })

    assert IndexDescriptor(on=('forest_id', 'name'), unique=True) in trees.indexes
    assert IndexDescriptor(on=('name',), where='"alive" = 1') in trees.indexes


@mark.unit
def test_now_default():
    """Unit test: Verify now() declares a NOT NULL date defaulting to NOW."""
    builder = SchemaBuilder()
    events = builder.build({'name': 'events', 'fields': {'created_at': now()}})

    column = events.column('created_at')
    assert column.default is NOW
    assert column.not_null is True
    assert column.required is False


@mark.unit
def test_computed_column():
    """Unit test: Verify computed columns are kept apart and their expression inlined."""
    builder = SchemaBuilder()
    trees = builder.build({
        'name': 'trees',
        'fields': {
            'height': real(),
            'height_ft': computed('real', FunctionCall('multiply', (Column('height'), Literal(0.3048)))),
        },
    })

    assert trees.column('height_ft') is None
    assert trees.computed_column('height_ft').expression == '("height" * 0.3048)'
    assert trees.all_column_names == ['id', 'height', 'height_ft']


# ======================
# 2. INTEGRATION TESTS
# ======================


@mark.integration
def test_custom_type_column():
    """Integration test: Verify a type registered on the builder's registry can be declared."""
    registry = TypeRegistry()
    registry.register('decimal', storage='text', test=lambda v: isinstance(v, Decimal),
                      to_storage=str, from_storage=Decimal)
    builder = SchemaBuilder(registry)

    prices = builder.build({'name': 'prices', 'fields': {'amount': field('decimal', default=Decimal('0.00'))}})

    assert prices.column('amount').type == 'decimal'
    assert prices.column('amount').default == '0.00'


@mark.integration
def test_composite_primary_key():
    """
    Integration test: Verify composite keys and their references.

    Test Strategy:
    - Declare a join table keyed by two references
    - The first key column is covered by the primary key index, the second gets its own
    """
    builder = SchemaBuilder()
    builder.build({'name': 'users', 'fields': {'email': text()}})
    builder.build({'name': 'forests', 'fields': {'name': text()}})
    memberships = builder.build({
        'name': 'memberships',
        'fields': {'user_id': cascade('users'), 'forest_id': references('forests')},
        'attributes': {'primary_key': ['user_id', 'forest_id']},
    })

    assert memberships.primary_keys == ('user_id', 'forest_id')
    assert memberships.column('user_id').primary_key is True
    assert memberships.foreign_key('user_id').on_delete == 'cascade'
    assert memberships.indexes == (IndexDescriptor(on=('forest_id',)),)


@mark.integration
def test_self_reference():
    """Integration test: Verify a table can reference its own primary key."""
    builder = SchemaBuilder()
    categories = builder.build({
        'name': 'categories',
        'fields': {'name': text(), 'parent_id': references('categories', not_null=False)},
    })

    assert categories.column('parent_id').type == 'integer'
    assert categories.column('parent_id').not_null is False
    assert categories.foreign_key('parent_id').references_table == 'categories'


@mark.integration
def test_full_text_table_with_content():
    """Integration test: Verify an external-content FTS table records its sources."""
    builder = SchemaBuilder()
    builder.build({'name': 'trees', 'fields': {'name': text(), 'notes': text()}})
    search = builder.build({
        'name': 'trees_search',
        'fields': {'name': text(), 'notes': text(unindexed=True)},
        'fts': {'tokenizer': Unicode61(), 'prefix': [2, 3], 'content': 'trees'},
    })

    assert search.virtual is True
    assert search.primary_key == 'rowid'
    assert search.tokenizer == 'unicode61 remove_diacritics 2'
    assert search.prefix == (2, 3)
    assert search.content_rowid == 'id'
    assert search.column('name').source == ColumnSource('trees', 'name')
    assert search.column('notes').unindexed is True


# ====================
# 3. EDGE CASE TESTS
# ====================


@mark.edge_case
def test_duplicate_column_raises():
    """Edge case: Verify a column declared twice raises SchemaError."""
    builder = SchemaBuilder()

    with raises(SchemaError, match="Duplicate column 'name'"):
        builder.build({'name': 'forests', 'fields': [('name', text()), ('name', text())]})
    assert 'forests' not in builder.tables


@mark.edge_case
def test_unresolved_reference_raises():
    """Edge case: Verify a reference to an undefined table raises SchemaError."""
    builder = SchemaBuilder()

    with raises(SchemaError, match="references unknown table 'nowhere'") as error:
        builder.build({'name': 'trees', 'fields': {'forest_id': references('nowhere')}})
    assert error.value.column == 'forest_id'
    assert 'trees' not in builder.tables


@mark.edge_case
def test_multi_column_index_on_field_raises():
    """Edge case: Verify multi-column indexes must be declared at table level."""
    builder = SchemaBuilder()

    with raises(SchemaError, match='multi-column index'):
        builder.build({'name': 'trees', 'fields': {'name': text(index=['name', 'height']), 'height': real()}})


@mark.edge_case
def test_default_of_wrong_type_raises():
    """Edge case: Verify defaults are type-checked."""
    with raises(SchemaError, match="Default for 'count' must be an integer"):
        SchemaBuilder().build({'name': 'plots', 'fields': {'count': integer(default='x')}})


@mark.edge_case
def test_unknown_type_raises():
    """Edge case: Verify undeclared logical types raise SchemaError."""
    with raises(SchemaError, match="Unknown column type 'money'"):
        SchemaBuilder().build({'name': 'plots', 'fields': {'price': field('money')}})


@mark.edge_case
def test_duplicate_table_raises():
    """Edge case: Verify a table name can only be built once per builder."""
    builder = SchemaBuilder()
    builder.build({'name': 'plots', 'fields': {'area': real()}})

    with raises(SchemaError, match="already defined"):
        builder.build({'name': 'plots', 'fields': {'area': real()}})


@mark.edge_case
def test_id_without_primary_key_raises():
    """Edge case: Verify an 'id' column that is not a key is rejected."""
    with raises(SchemaError, match="no primary key is declared"):
        SchemaBuilder().build({'name': 'plots', 'fields': {'id': text()}})


@mark.edge_case
def test_soft_delete_reserves_deleted_at():
    """Edge case: Verify soft-delete tables cannot declare deleted_at themselves."""
    with raises(SchemaError, match="reserve the 'deleted_at' column"):
        SchemaBuilder().build({'name': 'plots', 'fields': {'deleted_at': text()}, 'soft_delete': True})


@mark.edge_case
def test_full_text_column_missing_from_content_raises():
    """Edge case: Verify FTS columns must exist on the content table."""
    builder = SchemaBuilder()
    builder.build({'name': 'trees', 'fields': {'name': text()}})

    with raises(SchemaError, match="does not exist on content table 'trees'"):
        builder.build({'name': 'trees_search', 'fields': {'notes': text()}, 'fts': {'content': 'trees'}})


@mark.edge_case
def test_invalid_table_name_raises():
    """Edge case: Verify table names must be plain identifiers."""
    with raises(SchemaError, match='Invalid table name'):
        SchemaBuilder().build({'name': 'trees; DROP', 'fields': {}})
