"""
=========================================
Comprehensive pytest suite for sql/ddl.py
=========================================

Sections:
---------
1. Unit tests - CREATE TABLE / INDEX rendering
2. Integration tests - Full-text tables and their triggers
3. Smoke tests - schema_to_sql over every fixture table

Available markers:
------------------
unit, integration, smoke

How to Execute:
---------------
All tests:          python -m pytest tests/tests_sql/test_ddl.py -v
By category:        python -m pytest tests/tests_sql/test_ddl.py -m unit
With coverage:      python -m pytest tests/tests_sql/test_ddl.py --cov=sql.ddl

Note: Use 'python -m pytest' (not just 'pytest') to ensure correct Python path resolution.
"""

import hashlib

from pytest import mark

from models.schema_models import NOW, ColumnDescriptor, IndexDescriptor
from sql.ddl import (
    NOW_SQL,
    column_clause,
    create_index_sql,
    create_table_sql,
    drop_table_sql,
    fts_trigger_names,
    render_default,
    schema_to_sql,
)
from sql.fulltext import Unicode61
from sql.schema_builder import SchemaBuilder, cascade, json, references, text


def _index_name(table, content):
    return f"{table}_{hashlib.sha1(content.encode('utf-8')).hexdigest()[:10]}"


# ===============
# 1. UNIT TESTS
# ===============


@mark.unit
def test_create_simple_table(schemas):
    """Unit test: Verify a STRICT table with an inline integer primary key."""
    assert create_table_sql(schemas['forests']) == (
        'CREATE TABLE "forests" (\n'
        '    "id" INTEGER PRIMARY KEY NOT NULL,\n'
        '    "name" TEXT NOT NULL\n'
        ') STRICT;'
    )


@mark.unit
def test_create_table_with_reference_and_check(schemas):
    """
    Unit test: Verify storage types, defaults, foreign keys and checks.

    Test Strategy:
    - boolean -> INTEGER with DEFAULT 1 and a 0/1 CHECK
    - json -> BLOB
    - reference -> FOREIGN KEY clause after the columns
    """
    assert create_table_sql(schemas['trees']) == (
        'CREATE TABLE "trees" (\n'
        '    "id" INTEGER PRIMARY KEY NOT NULL,\n'
        '    "name" TEXT NOT NULL,\n'
        '    "forest_id" INTEGER NOT NULL,\n'
        '    "alive" INTEGER DEFAULT 1,\n'
        '    "height" REAL,\n'
        '    "meta" BLOB,\n'
        '    FOREIGN KEY ("forest_id") REFERENCES "forests" ("id"),\n'
        '    CHECK ("alive" IN (0, 1))\n'
        ') STRICT;'
    )


@mark.unit
def test_create_table_under_temporary_name(schemas):
    """Unit test: Verify a table can be rendered under another name."""
    assert create_table_sql(schemas['forests'], name='temp_forests').startswith('CREATE TABLE "temp_forests" (')


@mark.unit
def test_index_is_named_after_content_hash(schemas):
    """Unit test: Verify index names are <table>_<sha1(kind|target|predicate)[:10]>."""
    name = _index_name('trees', 'index|"forest_id"|')

    assert create_index_sql('trees', IndexDescriptor(on=('forest_id',))) == (
        f'CREATE INDEX "{name}" ON "trees" ("forest_id");'
    )
    assert schema_to_sql(schemas['trees'])[1] == f'CREATE INDEX "{name}" ON "trees" ("forest_id");'


@mark.unit
def test_unique_partial_index():
    """Unit test: Verify UNIQUE and WHERE clauses on an index."""
    index = IndexDescriptor(on=('email',), unique=True, where='"deleted_at" IS NULL')
    name = _index_name('users', 'unique|"email"|"deleted_at" IS NULL')

    assert create_index_sql('users', index, if_not_exists=True) == (
        f'CREATE UNIQUE INDEX IF NOT EXISTS "{name}" ON "users" ("email") WHERE "deleted_at" IS NULL;'
    )


@mark.unit
def test_defaults():
    """Unit test: Verify NOW, literal and JSON defaults."""
    assert render_default(ColumnDescriptor('created_at', 'date', default=NOW)) == NOW_SQL
    assert render_default(ColumnDescriptor('name', 'text', default="O'Brien")) == "'O''Brien'"
    assert render_default(ColumnDescriptor('meta', 'json', default='{"a":1}')) == "(jsonb('{\"a\":1}'))"
    assert render_default(ColumnDescriptor('height', 'real')) is None


@mark.unit
def test_column_clause_with_now_default():
    """Unit test: Verify a NOT NULL date column defaulting to the current time."""
    column = ColumnDescriptor('created_at', 'date', not_null=True, default=NOW)

    assert column_clause(column) == (
        '"created_at" TEXT NOT NULL DEFAULT (strftime(\'%Y-%m-%dT%H:%M:%fZ\', \'now\'))'
    )


@mark.unit
def test_json_default_from_builder():
    """Unit test: Verify a JSON default is stored as text and wrapped in jsonb()."""
    builder = SchemaBuilder()
    settings = builder.build({'name': 'settings', 'fields': {'value': json(default={'a': 1})}})

    assert '"value" BLOB DEFAULT (jsonb(\'{"a":1}\'))' in create_table_sql(settings)


@mark.unit
def test_composite_key_and_actions():
    """Unit test: Verify composite keys move to a table constraint and FK actions are rendered."""
    builder = SchemaBuilder()
    builder.build({'name': 'users', 'fields': {'email': text()}})
    builder.build({'name': 'forests', 'fields': {'name': text()}})
    memberships = builder.build({
        'name': 'memberships',
        'fields': {'user_id': cascade('users'), 'forest_id': references('forests', on_update='cascade')},
        'attributes': {'primary_key': ['user_id', 'forest_id']},
    })

    sql = create_table_sql(memberships)

    assert '"user_id" INTEGER NOT NULL,' in sql
    assert 'PRIMARY KEY ("user_id", "forest_id")' in sql
    assert 'FOREIGN KEY ("user_id") REFERENCES "users" ("id") ON DELETE CASCADE' in sql
    assert 'FOREIGN KEY ("forest_id") REFERENCES "forests" ("id") ON UPDATE CASCADE' in sql


@mark.unit
def test_drop_table_sql():
    """Unit test: Verify DROP TABLE rendering."""
    assert drop_table_sql('trees') == 'DROP TABLE "trees";'
    assert drop_table_sql('trees', if_exists=True) == 'DROP TABLE IF EXISTS "trees";'


# ======================
# 2. INTEGRATION TESTS
# ======================


@mark.integration
def test_full_text_table_and_triggers():
    """
    Integration test: Verify an external-content FTS table and its sync triggers.

    Test Strategy:
    - Build trees and an FTS table indexing its name column
    - Expect the virtual table followed by insert, delete and update triggers
    """
    builder = SchemaBuilder()
    builder.build({'name': 'trees', 'fields': {'name': text()}})
    search = builder.build({
        'name': 'trees_search',
        'fields': {'name': text()},
        'fts': {'tokenizer': Unicode61(), 'prefix': [2, 3], 'content': 'trees'},
    })

    statements = schema_to_sql(search)

    assert statements[0] == (
        'CREATE VIRTUAL TABLE "trees_search" USING fts5("name", content=\'trees\', '
        'content_rowid=\'id\', prefix=\'2 3\', tokenize=\'unicode61 remove_diacritics 2\');'
    )
    assert statements[1] == (
        'CREATE TRIGGER "trees_search_ai" AFTER INSERT ON "trees" BEGIN\n'
        '    INSERT INTO "trees_search"(rowid, "name") VALUES (new."id", new."name");\n'
        'END;'
    )
    assert statements[2] == (
        'CREATE TRIGGER "trees_search_ad" AFTER DELETE ON "trees" BEGIN\n'
        '    INSERT INTO "trees_search"("trees_search", rowid, "name") '
        'VALUES (\'delete\', old."id", old."name");\n'
        'END;'
    )
    assert statements[3].startswith('CREATE TRIGGER "trees_search_au" AFTER UPDATE ON "trees" BEGIN')
    assert fts_trigger_names(search) == ['trees_search_ai', 'trees_search_ad', 'trees_search_au']


@mark.integration
def test_standalone_full_text_table_has_no_triggers():
    """Integration test: Verify FTS tables without external content get no triggers."""
    builder = SchemaBuilder()
    notes = builder.build({'name': 'notes', 'fields': {'body': text(), 'tag': text(unindexed=True)}, 'fts': {}})

    assert schema_to_sql(notes) == ['CREATE VIRTUAL TABLE "notes" USING fts5("body", "tag" UNINDEXED);']
    assert fts_trigger_names(notes) == []


# ================
# 3. SMOKE TESTS
# ================


@mark.smoke
def test_schema_to_sql_for_all_tables(schemas):
    """Smoke test: Verify every table renders one CREATE TABLE plus one statement per index."""
    for schema in schemas.values():
        statements = schema_to_sql(schema)

        assert statements[0].startswith(f'CREATE TABLE "{schema.name}"')
        assert statements[0].endswith(') STRICT;')
        assert len(statements) == 1 + len(schema.indexes)
