"""
Shared pytest configuration and fixtures for all tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root to sys.path to enable importing project modules
# This allows tests to import from 'core', 'sql', 'client', etc. without installation
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: Unit tests - isolated function-level tests")
    config.addinivalue_line("markers", "integration: Integration tests - component interactions")
    config.addinivalue_line("markers", "smoke: Smoke tests - basic functionality checks")
    config.addinivalue_line("markers", "edge_case: Edge case tests - boundary conditions")
    config.addinivalue_line("markers", "regression: Regression tests - previously fixed bugs")
    config.addinivalue_line("markers", "system: System tests - full system behavior tests")
    config.addinivalue_line("markers", "e2e: End-to-end tests - complete workflow tests")


@pytest.fixture
def forest_descriptions():
    """
    Table descriptions shared by the sql, migrations and client suites.

    forests: id (auto), name
    trees:   id (auto), name, forest_id -> forests, alive, height, meta
    users:   id (auto), email (unique), deleted_at (soft delete)
    """
    from sql.schema_builder import boolean, json, real, references, text

    return [
        {'name': 'forests', 'fields': {'name': text(not_null=True)}},
        {
            'name': 'trees',
            'fields': {
                'name': text(not_null=True),
                'forest_id': references('forests'),
                'alive': boolean(default=True),
                'height': real(),
                'meta': json(),
            },
        },
        {
            'name': 'users',
            'fields': {'email': text(not_null=True, unique=True)},
            'soft_delete': True,
        },
    ]


@pytest.fixture
def schemas(forest_descriptions):
    """Built TableSchema records by name, from a fresh SchemaBuilder."""
    from sql.schema_builder import SchemaBuilder

    builder = SchemaBuilder()
    builder.build_all(*forest_descriptions)
    return dict(builder.tables)
