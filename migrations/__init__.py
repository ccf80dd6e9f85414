"""
=====================================================
Schema migrations for declarative SQLite tables.
=====================================================

Compares schema snapshots and produces the SQL script that moves a database
from one to the other, rebuilding tables whenever SQLite cannot alter a
constraint in place.

Example:
    >>> from migrations import diff_schemas, analyze_migration
    >>> script = diff_schemas(previous_schemas, current_schemas)
    >>> if analyze_migration(script)['is_destructive']:
    ...     print("Review before applying")
"""

__version__ = "1.0.0"
__all__ = ['plan_migration', 'diff_schemas', 'analyze_migration']

from .differ import analyze_migration, diff_schemas, plan_migration
