"""
Metadata cache shared by virtual tag evaluation workers.

Entries are keyed by (path, metadata kind) and expire after a TTL. The map is
split into shards, each with its own lock, so workers evaluating different
files rarely contend. Two workers missing the same key may both load it;
the last write wins, which is harmless since both computed the same thing.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional

from .types import METADATA_GIT, METADATA_LINES, METADATA_STAT
from ..protocol import FileStat, GitStatus, MetadataSource

logger = logging.getLogger(__name__)

DEFAULT_SHARDS = 16


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self):
        self.lock = threading.Lock()
        # key → (stored_at, value), oldest first
        self.entries: "OrderedDict[Hashable, tuple[float, Any]]" = OrderedDict()


class MetadataCache:
    """Thread-safe TTL cache with per-shard capacity eviction."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        capacity: int = 10_000,
        shards: int = DEFAULT_SHARDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ttl_seconds: Entry lifetime
            capacity: Approximate total entry limit, split evenly over shards
            shards: Number of independently locked partitions
            clock: Monotonic time source (injectable for tests)
        """
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self.ttl = ttl_seconds
        self._shards = [_Shard() for _ in range(shards)]
        self._shard_capacity = max(1, capacity // shards)
        self._clock = clock
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _shard(self, key: Hashable) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def get(self, key: Hashable) -> tuple[bool, Any]:
        """
        Returns:
            (found, value); expired entries count as absent and are dropped
        """
        shard = self._shard(key)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is not None and now - entry[0] >= self.ttl:
                del shard.entries[key]
                entry = None
        with self._stats_lock:
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
        if entry is None:
            return False, None
        return True, entry[1]

    def put(self, key: Hashable, value: Any) -> None:
        shard = self._shard(key)
        now = self._clock()
        with shard.lock:
            shard.entries[key] = (now, value)
            shard.entries.move_to_end(key)
            while len(shard.entries) > self._shard_capacity:
                shard.entries.popitem(last=False)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """
        Cached value, or loader() stored under key.

        The loader runs outside any lock. If it raises, nothing is cached.
        """
        found, value = self.get(key)
        if found:
            return value
        value = loader()
        self.put(key, value)
        return value

    def invalidate(self, path: str) -> int:
        """Drop every entry for a path. Returns the number removed."""
        removed = 0
        for shard in self._shards:
            with shard.lock:
                stale = [k for k in shard.entries if isinstance(k, tuple) and k and k[0] == path]
                for k in stale:
                    del shard.entries[k]
                removed += len(stale)
        return removed

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()
        logger.debug("Metadata cache cleared")

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def stats(self) -> dict:
        with self._stats_lock:
            return {"entries": len(self), "hits": self._hits, "misses": self._misses}


class CachedMetadataSource:
    """MetadataSource that consults a MetadataCache before the wrapped source."""

    def __init__(self, source: MetadataSource, cache: Optional[MetadataCache] = None):
        self.source = source
        self.cache = cache if cache is not None else MetadataCache()

    def stat(self, path: str) -> FileStat:
        return self.cache.get_or_load((path, METADATA_STAT), lambda: self.source.stat(path))

    def line_count(self, path: str) -> int:
        return self.cache.get_or_load((path, METADATA_LINES), lambda: self.source.line_count(path))

    def git_status(self, path: str) -> GitStatus:
        return self.cache.get_or_load((path, METADATA_GIT), lambda: self.source.git_status(path))
