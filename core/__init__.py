"""
===================================================
Core infrastructure package for sqlshape.
===================================================

This package provides configuration management, logging infrastructure,
the exception hierarchy and the logical type registry used throughout the
project.

Modules:
    config: Configuration management from environment variables
    logger: Centralized logging configuration and utilities
    exceptions: SQLShapeError and its subclasses
    type_registry: Logical column types and their storage conversions

Example:
    >>> from core.config import config
    >>> from core.logger import get_logger
    >>>
    >>> logger = get_logger(__name__)
    >>> logger.info(f"Opening {config.db_path}")
"""

__version__ = "0.1.0"
__all__ = [
    'get_logger', 'setup_logging', 'config', 'Config',
    'SQLShapeError', 'SchemaError', 'ValidationError', 'CompilationError', 'MigrationError',
    'TypeRegistry', 'LogicalType', 'default_registry',
]

from core.config import Config, config
from core.exceptions import CompilationError, MigrationError, SchemaError, SQLShapeError, ValidationError
from core.logger import get_logger, setup_logging
from core.type_registry import LogicalType, TypeRegistry, default_registry
