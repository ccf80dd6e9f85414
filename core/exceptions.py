"""
=====================================
Exception hierarchy for sqlshape.
=====================================

All errors raised by the compiler are programmer errors: they are raised
before any SQL reaches the driver and are never retried internally.

Classes:
    SQLShapeError: Base class for every error raised by this project
    SchemaError: Structural problem in a table description
    ValidationError: CRUD payload violates column constraints
    CompilationError: Query or expression description cannot be compiled
    MigrationError: Applied migration left foreign key violations

Example:
    >>> from core.exceptions import ValidationError
    >>> try:
    ...     db.table('trees').insert({'alive': 'yes'})
    ... except ValidationError as e:
    ...     print(e.table, e.column)
    trees alive
"""

from typing import Any, Dict, List, Optional


class SQLShapeError(Exception):
    """Base exception for schema, validation and compilation failures.

    Attributes:
        table: Table the error relates to (if known)
        column: Column the error relates to (if known)
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        column: Optional[str] = None
    ):
        super().__init__(message)
        self.table = table
        self.column = column


class SchemaError(SQLShapeError):
    """Raised when a declarative table description is structurally invalid.

    Duplicate columns, unresolved foreign keys and multi-column indexes
    declared on a single field all raise this error. The builder never
    returns a partially built schema.
    """
    pass


class ValidationError(SQLShapeError):
    """Raised when an insert/update/upsert payload violates column constraints.

    Names the offending table and column. There is no automatic coercion;
    the caller fixes the payload and retries.
    """
    pass


class CompilationError(SQLShapeError):
    """Raised when a query description uses an unknown operator, an invalid
    identifier or a malformed comparator shape.
    """
    pass


class MigrationError(SQLShapeError):
    """Raised when an applied migration leaves rows violating foreign keys.

    Attributes:
        violations: Rows from PRAGMA foreign_key_check (table, rowid, parent, fkid)
    """

    def __init__(self, message: str, violations: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.violations = list(violations or [])
