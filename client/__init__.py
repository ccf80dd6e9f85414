"""
==========================================
Database client package.
==========================================

Modules:
    database: Database (owns registries, cache, hooks, driver) and TableClient
    hooks: Per-instance lifecycle hook registry

Example:
    >>> from client import Database
    >>> db = Database()
    >>> db.define({'name': 'forests', 'fields': {'name': text(not_null=True)}})
    >>> db.migrate(db.diff())
"""

__version__ = "1.0.0"
__all__ = ['Database', 'TableClient', 'HookRegistry', 'HookContext', 'EVENTS']

from .database import Database, TableClient
from .hooks import EVENTS, HookContext, HookRegistry
