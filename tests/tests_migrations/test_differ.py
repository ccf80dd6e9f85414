"""
====================================================
Comprehensive pytest suite for migrations/differ.py
====================================================

Sections:
---------
1. Unit tests - In-place alterations
2. Integration tests - Table recreation and snapshots
3. Smoke tests - Destructive change report

Available markers:
------------------
unit, integration, smoke

How to Execute:
---------------
All tests:          python -m pytest tests/tests_migrations/test_differ.py -v
By category:        python -m pytest tests/tests_migrations/test_differ.py -m integration
With coverage:      python -m pytest tests/tests_migrations/test_differ.py --cov=migrations.differ

Note: Use 'python -m pytest' (not just 'pytest') to ensure correct Python path resolution.
"""

from pytest import mark

from migrations.differ import analyze_migration, diff_schemas, plan_migration
from models.migration_models import RecreateTable
from models.schema_models import schemas_to_json
from sql.ddl import create_index_sql
from sql.fulltext import Unicode61
from sql.schema_builder import SchemaBuilder, index, integer, real, references, text


def _plots(**options):
    """Build a fresh 'plots' table; fields default to a single nullable area."""
    fields = options.pop('fields', None) or {'area': real()}
    return SchemaBuilder().build(dict({'name': 'plots', 'fields': fields}, **options))


def _statements(script):
    """Split a script back into statements (CREATE TABLE spans several lines)."""
    statements, current = [], []
    for line in script.splitlines():
        current.append(line)
        if line.endswith(';'):
            statements.append('\n'.join(current))
            current = []
    return statements


# ===============
# 1. UNIT TESTS
# ===============


@mark.unit
def test_unchanged_schemas_produce_empty_script(schemas):
    """Unit test: Verify diffing identical schemas yields an empty script."""
    assert diff_schemas(schemas, schemas) == ''
    assert plan_migration(schemas, schemas) == []


@mark.unit
def test_new_tables_are_created(schemas):
    """Unit test: Verify a diff from nothing creates every table with its indexes."""
    script = diff_schemas(None, schemas)

    assert script.startswith('CREATE TABLE "forests" (')
    assert script.endswith('\n')
    assert 'CREATE TABLE "trees" (' in script
    assert 'CREATE UNIQUE INDEX' in script


@mark.unit
def test_add_nullable_column():
    """Unit test: Verify a nullable column is added in place."""
    script = diff_schemas([_plots()], [_plots(fields={'area': real(), 'owner': text()})])

    assert script == 'ALTER TABLE "plots" ADD COLUMN "owner" TEXT;\n'


@mark.unit
def test_rename_column():
    """Unit test: Verify a removed and an added column with the same attributes is a rename."""
    script = diff_schemas([_plots()], [_plots(fields={'size': real()})])

    assert script == 'ALTER TABLE "plots" RENAME COLUMN "area" TO "size";\n'


@mark.unit
def test_drop_column():
    """Unit test: Verify a removed column without a counterpart is dropped."""
    script = diff_schemas([_plots(fields={'area': real(), 'owner': text()})], [_plots()])

    assert script == 'ALTER TABLE "plots" DROP COLUMN "owner";\n'


@mark.unit
def test_add_index():
    """Unit test: Verify new indexes are created and nothing else changes."""
    current = _plots(attributes={'indexes': [index('area')]})

    script = diff_schemas([_plots()], [current])

    assert script == create_index_sql('plots', current.indexes[0]) + '\n'


@mark.unit
def test_drop_table(schemas):
    """Unit test: Verify tables missing from the current set are dropped."""
    previous = [schemas['forests'], _plots()]

    assert diff_schemas(previous, [schemas['forests']]) == 'DROP TABLE "plots";\n'


# ======================
# 2. INTEGRATION TESTS
# ======================


@mark.integration
def test_check_change_recreates_table():
    """
    Integration test: Verify a constraint change rebuilds the table.

    Test Strategy:
    - Add a check to plots.area
    - Expect create temp, copy, drop, rename, foreign key check in that order
    """
    script = diff_schemas([_plots()], [_plots(fields={'area': real(check={'gte': 0})})])

    assert _statements(script) == [
        'CREATE TABLE "temp_plots" (\n'
        '    "id" INTEGER PRIMARY KEY NOT NULL,\n'
        '    "area" REAL,\n'
        '    CHECK ("area" >= 0.0)\n'
        ') STRICT;',
        'INSERT INTO "temp_plots" ("id", "area") SELECT "id", "area" FROM "plots";',
        'DROP TABLE "plots";',
        'ALTER TABLE "temp_plots" RENAME TO "plots";',
        'PRAGMA foreign_key_check;',
    ]


@mark.integration
def test_required_column_recreates_table():
    """Integration test: Verify a NOT NULL column without default forces a rebuild."""
    operations = plan_migration([_plots()], [_plots(fields={'area': real(), 'owner': text(not_null=True)})])

    assert len(operations) == 1
    assert isinstance(operations[0], RecreateTable)
    assert operations[0].shared_columns == ('id', 'area')


@mark.integration
def test_removed_foreign_key_recreates_table():
    """
    Integration test: Verify dropping a foreign key rebuilds the referencing table.

    Test Strategy:
    - plots.forest_id references forests, then becomes a plain integer
    - Expect the rebuild sequence through temp_plots without a FOREIGN KEY clause
    - forests itself is untouched
    """
    def tables(forest_id):
        builder = SchemaBuilder()
        builder.build({'name': 'forests', 'fields': {'name': text()}})
        builder.build({'name': 'plots', 'fields': {'forest_id': forest_id}})
        return builder.tables

    script = diff_schemas(tables(references('forests')), tables(integer(not_null=True)))
    statements = _statements(script)

    assert statements[0].startswith('CREATE TABLE "temp_plots" (')
    assert 'FOREIGN KEY' not in statements[0]
    assert statements[1:] == [
        'INSERT INTO "temp_plots" ("id", "forest_id") SELECT "id", "forest_id" FROM "plots";',
        'DROP TABLE "plots";',
        'ALTER TABLE "temp_plots" RENAME TO "plots";',
        'PRAGMA foreign_key_check;',
    ]
    assert '"forests"' not in script


@mark.integration
def test_primary_key_change_recreates_table():
    """Integration test: Verify moving the primary key to another column rebuilds the table."""
    fields = {'code': text(not_null=True), 'area': real()}

    script = diff_schemas(
        [_plots(fields=fields)], [_plots(fields=fields, attributes={'primary_key': 'code'})]
    )

    assert _statements(script) == [
        'CREATE TABLE "temp_plots" (\n'
        '    "code" TEXT PRIMARY KEY NOT NULL,\n'
        '    "area" REAL\n'
        ') STRICT;',
        'INSERT INTO "temp_plots" ("code", "area") SELECT "code", "area" FROM "plots";',
        'DROP TABLE "plots";',
        'ALTER TABLE "temp_plots" RENAME TO "plots";',
        'PRAGMA foreign_key_check;',
    ]


@mark.integration
def test_json_snapshot_round_trip(schemas):
    """Integration test: Verify a JSON snapshot diffs as equal to the schemas it came from."""
    snapshot = schemas_to_json(schemas.values())

    assert diff_schemas(snapshot, schemas) == ''


@mark.integration
def test_recreate_restores_full_text_triggers():
    """Integration test: Verify rebuilding a content table re-creates its FTS sync triggers."""
    def tables(check):
        builder = SchemaBuilder()
        builder.build({'name': 'trees', 'fields': {'name': text(check=check)}})
        builder.build({
            'name': 'trees_search', 'fields': {'name': text()},
            'fts': {'tokenizer': Unicode61(), 'content': 'trees'},
        })
        return builder.tables

    script = diff_schemas(tables(None), tables({'not': ''}))

    assert 'CREATE TRIGGER "trees_search_ai" AFTER INSERT ON "trees"' in script
    assert script.rstrip().endswith('PRAGMA foreign_key_check;')


# ================
# 3. SMOKE TESTS
# ================


@mark.smoke
def test_analyze_recreate_is_destructive():
    """Smoke test: Verify a rebuild is reported as recreated, not dropped."""
    script = diff_schemas([_plots()], [_plots(fields={'area': real(check={'gte': 0})})])

    report = analyze_migration(script)

    assert report['recreated_tables'] == ['plots']
    assert report['dropped_tables'] == []
    assert report['is_destructive'] is True


@mark.smoke
def test_analyze_additive_script():
    """Smoke test: Verify added columns alone are not destructive."""
    script = diff_schemas([_plots()], [_plots(fields={'area': real(), 'owner': text()})])

    report = analyze_migration(script)

    assert report['added_columns'] == [{'table': 'plots', 'column': 'owner'}]
    assert report['is_destructive'] is False
