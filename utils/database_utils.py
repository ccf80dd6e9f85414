"""
==================================================
Database connectivity utilities for SQLite.
==================================================

Provides the engine factory, health checks and the driver adapter that
executes compiled statements. The compilers never open connections
themselves; they hand SQL text and parameters to a Driver.

This module abstracts SQLite connection logic from statement compilation,
enabling consistent connection handling across the client, migrations and
tests.

Key Features:
    - Engine creation from config (file or in-memory database)
    - Foreign key enforcement on every new connection
    - Connection verification and SQLite version checks
    - Driver interface (execute / batch / script / transactions)
    - SQLAlchemy-backed driver with logged, wrapped errors

Example:
    >>> from utils.database_utils import create_sqlite_engine, SQLAlchemyDriver
    >>>
    >>> engine = create_sqlite_engine(':memory:')
    >>> driver = SQLAlchemyDriver(engine)
    >>> driver.execute_script('CREATE TABLE "trees" ("id" INTEGER PRIMARY KEY) STRICT;')
    >>> driver.execute('INSERT INTO "trees" DEFAULT VALUES RETURNING "id";')
    [{'id': 1}]
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from core.config import config
from core.exceptions import SQLShapeError

logger = logging.getLogger(__name__)

Rows = List[Dict[str, Any]]


class DatabaseConnectionError(SQLShapeError):
    """Exception raised when database connection fails."""
    pass


class QueryExecutionError(SQLShapeError):
    """Exception raised when the driver rejects a statement.

    Attributes:
        sql: Statement text that failed
    """

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message)
        self.sql = sql


def get_connection_string(path: Optional[str] = None) -> str:
    """
    Build SQLite connection string.

    Args:
        path: Database file path or ':memory:' (defaults to config.db_path)

    Returns:
        SQLite connection string

    Example:
        >>> get_connection_string('data/app.db')
        'sqlite:///data/app.db'
    """
    path = path if path is not None else config.db_path
    return URL.create('sqlite', database=None if path == ':memory:' else path).render_as_string()


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def create_sqlite_engine(path: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create SQLAlchemy engine for a SQLite database.

    In-memory databases share one connection (StaticPool) so every statement
    sees the same database.

    Args:
        path: Database file path or ':memory:' (defaults to config.db_path)
        echo: Enable SQL statement logging (defaults to config)

    Returns:
        Configured SQLAlchemy Engine with foreign keys enforced

    Example:
        >>> engine = create_sqlite_engine(':memory:')
        >>> with engine.connect() as conn:
        ...     result = conn.execute(text("SELECT sqlite_version()"))
    """
    path = path if path is not None else config.db_path
    echo = echo if echo is not None else config.db.echo
    url = get_connection_string(path)

    if path == ':memory:':
        engine = create_engine(
            url,
            echo=echo,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    else:
        engine = create_engine(url, echo=echo, pool_pre_ping=True)

    event.listen(engine, 'connect', _enable_foreign_keys)
    logger.debug(f"Created SQLite engine for {url}")
    return engine


def sqlite_version(engine: Engine) -> Tuple[int, ...]:
    """Version of the SQLite library behind an engine, as a tuple."""
    with engine.connect() as conn:
        version = conn.execute(text("SELECT sqlite_version()")).scalar()
    return tuple(int(part) for part in version.split('.'))


def check_database_available(engine: Engine) -> bool:
    """
    Check if the database answers a trivial query.

    Args:
        engine: SQLAlchemy engine

    Returns:
        True if database is available, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.debug(f"Database not available: {e}")
        return False


def verify_connection(engine: Optional[Engine] = None) -> Tuple[bool, str]:
    """
    Verify database connection and return status with details.

    Returns:
        Tuple of (success: bool, message: str)

    Example:
        >>> success, message = verify_connection()
        >>> if success:
        ...     print(f"✅ {message}")
        ... else:
        ...     print(f"❌ {message}")
    """
    engine = engine or create_sqlite_engine()
    if not check_database_available(engine):
        return False, f"SQLite database at {engine.url} not available"

    try:
        version = sqlite_version(engine)
    except SQLAlchemyError as e:
        return False, f"Connection test failed: {str(e)}"

    message = f"Connected to SQLite {'.'.join(map(str, version))} at {engine.url}."
    if version < (3, 45):
        message += " jsonb() requires SQLite 3.45 or newer."
        return False, message
    return True, message


class Driver(ABC):
    """Executes compiled SQL; the only component that performs I/O."""

    @abstractmethod
    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Rows:
        """Run one statement and return its rows (empty for non-queries)."""

    @abstractmethod
    def execute_batch(self, statements: Sequence[Tuple[str, Mapping[str, Any]]]) -> List[Rows]:
        """Run several statements atomically and return each one's rows."""

    @abstractmethod
    def execute_script(self, sql: str) -> None:
        """Run a multi-statement script (DDL, migrations)."""

    @abstractmethod
    def begin(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass


class SQLAlchemyDriver(Driver):
    """
    Driver over a SQLAlchemy engine.

    Statements outside an explicit transaction are committed as soon as
    they run. SQLAlchemy errors are logged and re-raised as
    QueryExecutionError.
    """

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or create_sqlite_engine()
        self._connection: Optional[Connection] = None
        self._transaction = None

    @property
    def connection(self) -> Connection:
        if self._connection is None or self._connection.closed:
            try:
                self._connection = self.engine.connect()
            except SQLAlchemyError as e:
                logger.error(f"❌ Failed to connect to {self.engine.url}: {e}")
                raise DatabaseConnectionError(f"Failed to connect to {self.engine.url}: {e}") from e
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    def _run(self, sql: str, params: Optional[Mapping[str, Any]]) -> Rows:
        result = self.connection.execute(text(sql), dict(params or {}))
        if not result.returns_rows:
            return []
        return [dict(row) for row in result.mappings()]

    def _fail(self, error: SQLAlchemyError, sql: str) -> QueryExecutionError:
        logger.error(f"❌ Statement failed: {error}\n    SQL: {sql}")
        if not self.in_transaction and self._connection is not None:
            self._connection.rollback()
        return QueryExecutionError(f"Statement failed: {error}", sql=sql)

    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Rows:
        try:
            rows = self._run(sql, params)
            if not self.in_transaction:
                self.connection.commit()
            return rows
        except SQLAlchemyError as e:
            raise self._fail(e, sql) from e

    def execute_batch(self, statements: Sequence[Tuple[str, Mapping[str, Any]]]) -> List[Rows]:
        owns_transaction = not self.in_transaction
        if owns_transaction:
            self.begin()

        results = []
        sql = ''
        try:
            for sql, params in statements:
                results.append(self._run(sql, params))
        except SQLAlchemyError as e:
            if owns_transaction:
                self.rollback()
            raise self._fail(e, sql) from e

        if owns_transaction:
            self.commit()
        return results

    def execute_script(self, sql: str) -> None:
        if self.in_transaction:
            raise QueryExecutionError("Scripts cannot run inside an open transaction", sql=sql)
        try:
            # Scripts hold several statements, so they bypass text() and go to sqlite3 directly
            self.connection.commit()
            self.connection.connection.dbapi_connection.executescript(sql)
        except SQLAlchemyError as e:
            raise self._fail(e, sql) from e
        except sqlite3.Error as e:
            logger.error(f"❌ Script failed: {e}")
            raise QueryExecutionError(f"Script failed: {e}", sql=sql) from e

    def begin(self) -> None:
        if self.in_transaction:
            raise QueryExecutionError("A transaction is already open")
        self.connection.commit()
        self._transaction = self.connection.begin()
        logger.debug("Transaction started")

    def commit(self) -> None:
        if self._transaction is not None:
            self._transaction.commit()
            self._transaction = None
            logger.debug("Transaction committed")

    def rollback(self) -> None:
        if self._transaction is not None:
            self._transaction.rollback()
            self._transaction = None
            logger.debug("Transaction rolled back")

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
