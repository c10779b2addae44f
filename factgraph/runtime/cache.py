"""
Version-stamped query cache for factgraph.

Traditional Cache:  TTL-based or manual invalidation
factgraph Cache:    Version-based invalidation, plus targeted eviction of
                    anything that referenced an unlearned fact

Design Philosophy:
    A cached answer is only as good as the version it was computed at.
    Every entry carries that version; a lookup against any other version
    treats the entry as stale and evicts it on the spot. No sweep is needed
    when the version advances: all entries become stale in one step simply
    because the counter moved.

    Unlearning is stricter than staleness. An entry that cited an unlearned
    fact must not survive even in memory, so the cache keeps a reverse
    index from fact id to cache keys and drops those entries eagerly.
"""

from __future__ import annotations

import logging
import re
import time
from collections import OrderedDict
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, Field

from factgraph.core.models import compute_content_hash
from factgraph.core.version import Operation, VersionRecord


logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    """Case-fold and collapse whitespace."""
    return _WHITESPACE.sub(" ", text.strip().lower())


def fingerprint(text: str, filters: Any = None) -> str:
    """
    Cache key for a query: hash of the normalized text and the filters.

    ``filters`` may be a pydantic model, a mapping or None.
    """
    if filters is None:
        dumped: Any = None
    elif isinstance(filters, BaseModel):
        dumped = filters.model_dump(mode="json")
    else:
        dumped = dict(filters)
    return compute_content_hash({"text": normalize_query(text), "filters": dumped})


class CacheEntry(BaseModel):
    """
    A cached result with the version it was computed at.

    ``depends_on`` lists the fact ids the result cites; unlearning any of
    them evicts the entry.
    """

    key: str = Field(..., description="Query fingerprint")
    value: Any = Field(..., description="Cached result")
    version: int = Field(..., ge=0, description="Graph version the result was computed at")
    depends_on: list[str] = Field(default_factory=list, description="Fact ids cited by the result")
    expires_at: Optional[float] = Field(default=None, description="Monotonic expiry time")

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    accessed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    hit_count: int = Field(default=0, description="Number of cache hits")

    model_config = {"extra": "forbid", "arbitrary_types_allowed": True}

    def touch(self) -> None:
        """Update access time and hit count."""
        self.accessed_at = datetime.now(timezone.utc)
        self.hit_count += 1

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CacheStats(BaseModel):
    """Statistics for the cache."""

    hits: int = Field(default=0, description="Cache hits")
    misses: int = Field(default=0, description="Cache misses")
    stale: int = Field(default=0, description="Entries evicted for a version mismatch")
    expired: int = Field(default=0, description="Entries evicted by TTL")
    evictions: int = Field(default=0, description="Entries evicted by the size bound")
    invalidations: int = Field(default=0, description="Entries dropped for unlearned facts")
    size: int = Field(default=0, description="Current cache size")

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class QueryCache:
    """
    LRU cache of query results keyed by fingerprint and stamped with a version.

    Usage:
        ```python
        cache = QueryCache(max_size=1000, default_ttl=300)
        key = fingerprint("what does billing depend on")

        cache.put(key, answer, version=answer.version, depends_on=answer.fact_ids)
        cache.get(key, current_version=coordinator.version)  # answer, or None once stale
        ```

    Thread Safety:
        All operations take an internal lock; they are short and never call
        out to other components.
    """

    def __init__(
        self,
        max_size: int = 10000,
        default_ttl: Optional[float] = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries
            default_ttl: Seconds an entry lives when ``put`` gives no ttl (None = forever)
            clock: Monotonic time source
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = RLock()

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        # fact_id -> keys of entries citing it
        self._dependency_index: dict[str, set[str]] = {}
        self._stats = CacheStats()
        # newest version announced through on_version
        self._latest_version = 0

    @property
    def stats(self) -> CacheStats:
        """Get cache statistics."""
        with self._lock:
            self._stats.size = len(self._entries)
            return self._stats.model_copy()

    def get(self, key: str, current_version: int) -> Optional[Any]:
        """
        Return the cached value if it was computed at ``current_version``.

        Stale and expired entries are evicted here.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            if entry.version != current_version:
                self._remove(key)
                self._stats.stale += 1
                self._stats.misses += 1
                return None

            if entry.is_expired(self._clock()):
                self._remove(key)
                self._stats.expired += 1
                self._stats.misses += 1
                return None

            entry.touch()
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.value

    def put(
        self,
        key: str,
        value: Any,
        version: int,
        ttl: Optional[float] = None,
        depends_on: Iterable[str] = (),
    ) -> Optional[CacheEntry]:
        """
        Store a result computed at ``version``.

        A result older than the newest version announced through
        ``on_version`` is refused: an unlearn published in between may
        already have run its invalidation.

        Args:
            key: Query fingerprint
            value: Result to cache
            version: Graph version the result was computed at
            ttl: Seconds to live (falls back to the default ttl)
            depends_on: Fact ids the result cites

        Returns:
            The new entry, or None if the result was already outdated
        """
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            if version < self._latest_version:
                logger.debug("Refusing cache entry at v%d (latest v%d)", version, self._latest_version)
                return None
            if key in self._entries:
                self._remove(key)
            while len(self._entries) >= self._max_size:
                oldest = next(iter(self._entries))
                self._remove(oldest)
                self._stats.evictions += 1

            entry = CacheEntry(
                key=key,
                value=value,
                version=version,
                depends_on=sorted(set(depends_on)),
                expires_at=self._clock() + ttl if ttl is not None else None,
            )
            self._entries[key] = entry
            for fact_id in entry.depends_on:
                self._dependency_index.setdefault(fact_id, set()).add(key)
            return entry

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            self._stats.invalidations += 1
            return True

    def invalidate_facts(self, fact_ids: Iterable[str]) -> list[str]:
        """
        Drop every entry whose result cited one of the facts.

        Returns:
            Keys of the dropped entries
        """
        with self._lock:
            keys: set[str] = set()
            for fact_id in fact_ids:
                keys.update(self._dependency_index.get(fact_id, ()))
            invalidated = [key for key in sorted(keys) if self.invalidate(key)]
            if invalidated:
                logger.debug("Invalidated %d cached answers", len(invalidated))
            return invalidated

    def on_version(self, record: VersionRecord) -> None:
        """
        Version listener: clear on restore, drop entries citing superseded facts.

        Unlearned facts are invalidated by the unlearning engine itself.
        """
        with self._lock:
            if record.operation == Operation.RESTORE:
                # a restore may install an older version
                self._latest_version = record.version_number
            else:
                self._latest_version = max(self._latest_version, record.version_number)
        if record.operation == Operation.RESTORE:
            self.clear()
            return
        superseded = set(record.retired_fact_ids) - set(record.unlearned_fact_ids)
        if superseded:
            self.invalidate_facts(superseded)

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._dependency_index.clear()
            return count

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Get the full cache entry (for inspection)."""
        with self._lock:
            return self._entries.get(key)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries.keys())

    def dependents_of(self, fact_id: str) -> list[str]:
        """Keys of entries citing a fact."""
        with self._lock:
            return sorted(self._dependency_index.get(fact_id, set()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        for fact_id in entry.depends_on:
            keys = self._dependency_index.get(fact_id)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._dependency_index[fact_id]
