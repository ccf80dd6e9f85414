"""
==========================
Utility Functions Package.
==========================

Reusable utility functions for database connectivity and the driver
adapter that executes compiled statements.

Modules:
    database_utils: SQLite engine creation, health checks and drivers
"""

__version__ = "1.0.0"
__all__ = [
    'DatabaseConnectionError',
    'QueryExecutionError',
    'Driver',
    'SQLAlchemyDriver',
    'get_connection_string',
    'create_sqlite_engine',
    'check_database_available',
    'sqlite_version',
    'verify_connection'
]

from .database_utils import (
    DatabaseConnectionError,
    Driver,
    QueryExecutionError,
    SQLAlchemyDriver,
    check_database_available,
    create_sqlite_engine,
    get_connection_string,
    sqlite_version,
    verify_connection,
)
