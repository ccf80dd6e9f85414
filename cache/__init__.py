"""
==========================================
Query result caching.
==========================================

Modules:
    query_cache: TTL + LRU cache with table-level invalidation

Example:
    >>> from cache import QueryCache
    >>> cache = QueryCache(ttl=60, enabled=True)
"""

__version__ = "1.0.0"
__all__ = ['MISSING', 'CacheEntry', 'QueryCache', 'cache_key', 'extract_tables']

from .query_cache import MISSING, CacheEntry, QueryCache, cache_key, extract_tables
