"""
=============================================================
Query logging and monitoring for the data-access layer.
=============================================================

This package records the statements the client executes, with redacted
parameters, timings and slow-query tracking. It is separate from
core.logger, which only configures handlers and formatters.

Modules:
    query_logger: Executed statement records and statistics

Components:
    QueryLogger: Record statements, time them, track slow queries
    QueryRecord: One executed statement

Example:
    >>> from logs import QueryLogger
    >>>
    >>> query_logger = QueryLogger(slow_query_ms=100)
    >>> query_logger.record('SELECT 1;', {}, duration_ms=3.2, rows=1)
    >>> query_logger.stats()['queries']
    1
"""

__version__ = "0.1.0"
__all__ = ['QueryLogger', 'QueryRecord', 'redact_params']

from .query_logger import QueryLogger, QueryRecord, redact_params
