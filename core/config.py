"""
================================================
Configuration management for sqlshape.
================================================

Loads all configuration from environment variables (.env file) and provides
a centralized Config singleton for application-wide access.

The configuration system ensures:
- Single source of truth for database, cache and query settings
- Type conversion of environment values
- Sensible defaults for in-memory development databases

Example:
    >>> from core.config import config
    >>>
    >>> # Database connection
    >>> engine_url = config.get_connection_string()
    >>>
    >>> # Access individual settings
    >>> print(f"Cache TTL: {config.cache_ttl}s, page size: {config.default_page_size}")
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)


def _env_bool(name: str, default: str) -> bool:
    """Read a boolean flag from the environment ('1', 'true', 'yes', 'on')."""
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class DatabaseConfig:
    """Database configuration settings.

    Attributes:
        path: SQLite database file path (':memory:' for an in-memory database)
        echo: If True, SQLAlchemy logs every statement it executes
    """

    path: str
    echo: bool

    def get_connection_string(self) -> str:
        """Get SQLite connection string.

        Returns:
            SQLAlchemy-compatible SQLite connection string
        """
        if self.path == ':memory:':
            return 'sqlite://'
        return f"sqlite:///{self.path}"


@dataclass
class CacheConfig:
    """Query cache configuration settings.

    Attributes:
        enabled: Whether read results are cached on startup
        ttl: Default time-to-live for cache entries, in seconds
        max_entries: Maximum number of entries kept before eviction
    """

    enabled: bool
    ttl: float
    max_entries: int


@dataclass
class QueryConfig:
    """Query compilation and execution settings.

    Attributes:
        default_page_size: Page size used when a caller does not pass one
        max_page_size: Upper bound that page sizes and cursor limits are clamped to
        slow_query_ms: Statements slower than this are logged as warnings
        log_level: Default logging level for the project loggers
    """

    default_page_size: int
    max_page_size: int
    slow_query_ms: float
    log_level: str


class Config:
    """Centralized configuration manager.

    Provides access to all configuration settings loaded from environment
    variables (.env file).

    Attributes:
        db: DatabaseConfig instance with connection settings
        cache: CacheConfig instance with query cache settings
        query: QueryConfig instance with compilation settings

    Example:
        >>> config = Config()
        >>> conn_str = config.get_connection_string()
        >>> print(f"Caching enabled: {config.cache_enabled}")
    """

    def __init__(self):
        """Initialize configuration from environment variables."""
        # Database configuration
        self.db = DatabaseConfig(
            path=os.getenv('SQLITE_PATH', ':memory:'),
            echo=_env_bool('SQLITE_ECHO', 'false')
        )

        # Query cache
        self.cache = CacheConfig(
            enabled=_env_bool('QUERY_CACHE_ENABLED', 'false'),
            ttl=float(os.getenv('QUERY_CACHE_TTL', '60')),
            max_entries=int(os.getenv('QUERY_CACHE_MAX_ENTRIES', '1000'))
        )

        # Compilation and execution
        self.query = QueryConfig(
            default_page_size=int(os.getenv('DEFAULT_PAGE_SIZE', '20')),
            max_page_size=int(os.getenv('MAX_PAGE_SIZE', '1000')),
            slow_query_ms=float(os.getenv('SLOW_QUERY_MS', '100')),
            log_level=os.getenv('LOG_LEVEL', 'INFO')
        )

    @property
    def db_path(self) -> str:
        """Get SQLite database path."""
        return self.db.path

    @property
    def cache_enabled(self) -> bool:
        """Get whether the query cache starts enabled."""
        return self.cache.enabled

    @property
    def cache_ttl(self) -> float:
        """Get default cache TTL in seconds."""
        return self.cache.ttl

    @property
    def cache_max_entries(self) -> int:
        """Get maximum number of cache entries."""
        return self.cache.max_entries

    @property
    def default_page_size(self) -> int:
        """Get default page size for pagination."""
        return self.query.default_page_size

    @property
    def max_page_size(self) -> int:
        """Get maximum page size for pagination."""
        return self.query.max_page_size

    @property
    def slow_query_ms(self) -> float:
        """Get slow query threshold in milliseconds."""
        return self.query.slow_query_ms

    def get_connection_string(self) -> str:
        """Get database connection string.

        Returns:
            SQLAlchemy-compatible SQLite connection string

        Example:
            >>> config = Config()
            >>> url = config.get_connection_string()
        """
        return self.db.get_connection_string()


# Global configuration instance
config = Config()
