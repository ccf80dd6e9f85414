"""
===============================================
Query logging and slow-query tracking.
===============================================

Records every statement the client executes: SQL text, redacted
parameters, duration and row count. Statements slower than the configured
threshold are logged at WARNING and kept for inspection.

Parameters are redacted before they reach a log line: long strings are
truncated and blobs are summarized by size, so payloads never flood the
logs.

Classes:
    QueryRecord: One executed statement
    QueryLogger: Records statements and aggregates statistics

Example:
    >>> from logs.query_logger import QueryLogger
    >>>
    >>> query_logger = QueryLogger(slow_query_ms=50)
    >>> with query_logger.track(statement.sql, statement.params) as record:
    ...     rows = driver.execute(statement.sql, statement.params)
    ...     record.rows = len(rows)
    >>> query_logger.stats()['queries']
    1
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from core.config import config

logger = logging.getLogger(__name__)

MAX_STRING_LENGTH = 200
MAX_SLOW_QUERIES = 100


def redact_value(value: Any) -> Any:
    """Shorten a parameter value for logging."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<blob {len(bytes(value))} bytes>"
    if isinstance(value, str) and len(value) > MAX_STRING_LENGTH:
        return f"{value[:MAX_STRING_LENGTH]}... ({len(value)} chars)"
    return value


def redact_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {key: redact_value(value) for key, value in (params or {}).items()}


@dataclass
class QueryRecord:
    """One executed statement."""

    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0
    rows: Optional[int] = None
    error: Optional[str] = None


class QueryLogger:
    """
    Records executed statements and tracks slow queries.

    Attributes:
        slow_query_ms: Threshold above which a statement counts as slow
        queries: Number of statements recorded
        errors: Number of failed statements
        total_ms: Total time spent in recorded statements
        slow_queries: Most recent slow statements (bounded)
    """

    def __init__(self, slow_query_ms: Optional[float] = None):
        self.slow_query_ms = slow_query_ms if slow_query_ms is not None else config.slow_query_ms
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        """Clear all counters and recorded slow queries."""
        with self._lock:
            self.queries = 0
            self.errors = 0
            self.total_ms = 0.0
            self.slow_queries: List[QueryRecord] = []

    def record(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        duration_ms: float = 0.0,
        rows: Optional[int] = None,
        error: Optional[str] = None
    ) -> QueryRecord:
        """
        Record one executed statement.

        Args:
            sql: Statement text
            params: Bound parameters (redacted before storing)
            duration_ms: Execution time in milliseconds
            rows: Number of rows returned
            error: Error message when the statement failed

        Returns:
            The stored QueryRecord
        """
        entry = QueryRecord(
            sql=sql,
            params=redact_params(params),
            duration_ms=duration_ms,
            rows=rows,
            error=error
        )
        slow = duration_ms >= self.slow_query_ms

        with self._lock:
            self.queries += 1
            self.total_ms += duration_ms
            if error:
                self.errors += 1
            if slow:
                self.slow_queries.append(entry)
                del self.slow_queries[:-MAX_SLOW_QUERIES]

        if error:
            logger.error(f"❌ Query failed after {duration_ms:.1f}ms: {sql} {entry.params} ({error})")
        elif slow:
            logger.warning(f"🐢 Slow query ({duration_ms:.1f}ms): {sql} {entry.params}")
        else:
            logger.debug(f"Query ({duration_ms:.1f}ms, {rows} rows): {sql} {entry.params}")
        return entry

    @contextmanager
    def track(self, sql: str, params: Optional[Mapping[str, Any]] = None):
        """
        Context manager timing one statement.

        Yields:
            QueryRecord whose rows attribute the caller may set
        """
        pending = QueryRecord(sql=sql)
        start = time.perf_counter()
        try:
            yield pending
        except Exception as e:
            self.record(sql, params, (time.perf_counter() - start) * 1000, pending.rows, error=str(e))
            raise
        self.record(sql, params, (time.perf_counter() - start) * 1000, pending.rows)

    def stats(self) -> Dict[str, Any]:
        """Aggregate statistics over recorded statements."""
        with self._lock:
            return {
                'queries': self.queries,
                'errors': self.errors,
                'slow_queries': len(self.slow_queries),
                'total_ms': round(self.total_ms, 3),
                'average_ms': round(self.total_ms / self.queries, 3) if self.queries else 0.0,
                'slow_query_ms': self.slow_query_ms,
            }
