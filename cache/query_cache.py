"""
==============================================
Query cache with table-level invalidation.
==============================================

Caches processed read results keyed by the exact SQL text plus its bound
parameters. Each entry remembers the tables its statement reads; a write
statement evicts every entry sharing a table with it, whatever the TTL.

Results are deep-copied on the way in and on the way out, so callers can
mutate what they get back without corrupting the cache.

Policy:
    - Entries expire after their TTL (checked on read)
    - At capacity, expired entries are evicted first, then the least
      recently used entry
    - All map access is serialized by a single lock

Example:
    >>> from cache.query_cache import MISSING, QueryCache
    >>>
    >>> cache = QueryCache(ttl=30, enabled=True)
    >>> cache.set(statement.sql, statement.params, rows)
    >>> cache.get(statement.sql, statement.params) is MISSING
    False
    >>> cache.invalidate('UPDATE "trees" SET "alive" = :p_1;')
    1
"""

import copy
import json
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional

from core.config import config

logger = logging.getLogger(__name__)

TABLE_PATTERN = re.compile(
    r'\b(?:from|join|into|update)\s+(?:"((?:[^"]|"")+)"|(?!set\b)([A-Za-z_][A-Za-z0-9_]*)\b(?!\s*\())',
    re.IGNORECASE
)


class _Missing:
    def __repr__(self) -> str:
        return 'MISSING'


# Returned by QueryCache.get() on a miss, so None stays a cacheable result
MISSING = _Missing()


def extract_tables(sql: str) -> FrozenSet[str]:
    """
    Table names a statement reads or writes.

    Scans for the identifiers introduced by FROM, JOIN, INTO, UPDATE and
    DELETE FROM, quoted or bare. Table-valued functions such as
    json_each(...) are skipped. Names are lower-cased, as SQLite compares
    them case-insensitively.

    Example:
        >>> sorted(extract_tables('SELECT * FROM "trees" JOIN forests ON ...'))
        ['forests', 'trees']
    """
    tables = set()
    for quoted, bare in TABLE_PATTERN.findall(sql):
        name = quoted.replace('""', '"') if quoted else bare
        tables.add(name.lower())
    return frozenset(tables)


def _param_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {'hex': bytes(value).hex()}
    return repr(value)


def cache_key(sql: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Exact SQL text followed by the serialized parameters."""
    serialized = json.dumps(dict(params or {}), sort_keys=True, default=_param_default)
    return f"{sql}|{serialized}"


@dataclass
class CacheEntry:
    """Single cache entry with TTL and the tables it depends on."""

    key: str
    value: Any
    expires_at: float
    tables: FrozenSet[str]

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class QueryCache:
    """
    Thread-safe TTL + LRU cache for read results.

    Attributes:
        ttl: Default time-to-live in seconds
        max_entries: Capacity
        enabled: Whether get/set do anything
        hits, misses, invalidations, evictions: Counters
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        max_entries: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl = ttl if ttl is not None else config.cache_ttl
        self.max_entries = max_entries if max_entries is not None else config.cache_max_entries
        self.enabled = enabled if enabled is not None else config.cache_enabled
        if self.ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {self.ttl}")
        if self.max_entries < 1:
            raise ValueError(f"Cache needs room for at least one entry, got {self.max_entries}")

        self._clock = clock
        self._lock = threading.Lock()
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.invalidations = 0
        self.evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Cached result for a statement (a deep copy), or MISSING."""
        if not self.enabled:
            return MISSING
        key = cache_key(sql, params)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(self._clock()):
                del self._entries[key]
                entry = None
            if entry is None:
                self.misses += 1
                return MISSING
            self._entries.move_to_end(key)
            self.hits += 1
            return copy.deepcopy(entry.value)

    def set(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]],
        value: Any,
        ttl: Optional[float] = None,
        tables: Optional[Iterable[str]] = None
    ) -> None:
        """
        Store a result.

        Args:
            sql: Statement text
            params: Bound parameters
            value: Result to cache (deep-copied)
            ttl: Time-to-live in seconds (defaults to the cache TTL)
            tables: Tables the result depends on (extracted from sql when omitted)
        """
        if not self.enabled:
            return
        key = cache_key(sql, params)
        depends_on = frozenset(t.lower() for t in tables) if tables is not None else extract_tables(sql)
        stored = copy.deepcopy(value)

        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict(now)
            self._entries[key] = CacheEntry(
                key=key,
                value=stored,
                expires_at=now + (ttl if ttl is not None else self.ttl),
                tables=depends_on
            )
            self._entries.move_to_end(key)

    def _evict(self, now: float) -> None:
        # Caller holds the lock
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self.evictions += len(expired)

        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
            self.evictions += 1

    def invalidate(self, sql: str) -> int:
        """Evict every entry sharing a table with a write statement.

        Returns:
            Number of entries removed
        """
        return self.invalidate_tables(extract_tables(sql))

    def invalidate_tables(self, tables: Iterable[str]) -> int:
        """Evict every entry that depends on any of the given tables."""
        if isinstance(tables, str):
            tables = [tables]
        targets = {table.lower() for table in tables}
        if not targets:
            return 0

        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.tables & targets]
            for key in stale:
                del self._entries[key]
            self.invalidations += len(stale)

        if stale:
            logger.debug(f"Invalidated {len(stale)} cache entries for {sorted(targets)}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        """Stop caching and drop every entry."""
        self.enabled = False
        self.clear()

    def set_ttl(self, ttl: float) -> None:
        """Change the default TTL for entries stored from now on."""
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")
        self.ttl = ttl

    def reset_stats(self) -> None:
        with self._lock:
            self.hits = self.misses = self.invalidations = self.evictions = 0

    def stats(self) -> Dict[str, Any]:
        """Counters, size and hit rate."""
        with self._lock:
            lookups = self.hits + self.misses
            return {
                'enabled': self.enabled,
                'entries': len(self._entries),
                'max_entries': self.max_entries,
                'ttl': self.ttl,
                'hits': self.hits,
                'misses': self.misses,
                'invalidations': self.invalidations,
                'evictions': self.evictions,
                'hit_rate': self.hits / lookups if lookups else 0.0,
            }
