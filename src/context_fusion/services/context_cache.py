"""Bounded TTL cache with LRU eviction."""

import asyncio
import builtins
import logging
import sys
import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel

from context_fusion.models.cache import CacheEntry, CacheStats

logger = logging.getLogger(__name__)


class _Missing:
    """Marker for "no entry", distinct from a stored None."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_size(obj: Any, _seen: set[int] | None = None) -> int:
    """Estimate the memory footprint of an object graph in bytes."""
    seen = _seen if _seen is not None else set()
    if id(obj) in seen:
        return 0
    seen.add(id(obj))

    size = sys.getsizeof(obj)
    if isinstance(obj, (str, bytes, bytearray, int, float, bool)) or obj is None:
        return size
    if isinstance(obj, dict):
        size += sum(estimate_size(k, seen) + estimate_size(v, seen) for k, v in obj.items())
    elif isinstance(obj, (list, tuple, set, frozenset)):
        size += sum(estimate_size(item, seen) for item in obj)
    elif isinstance(obj, BaseModel):
        size += sum(estimate_size(v, seen) for v in obj.__dict__.values())
    elif hasattr(obj, "__dict__"):
        size += estimate_size(vars(obj), seen)
    return size


class ContextCache:
    """Key/value cache bounded by entry count and memory, with per-entry TTL.

    Recency is refreshed by `get` and `set`. `contains` does not touch recency.
    Expired entries are logically absent and are removed lazily on lookup,
    before any live entry is evicted, and by the optional background sweep.
    All operations hold one re-entrant lock, so a bound is never exceeded
    between two calls.
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        max_memory_bytes: int = 100 * 1024 * 1024,
        default_ttl_seconds: float = 3600.0,
        cleanup_interval_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the cache.

        Args:
            max_entries: Maximum number of entries
            max_memory_bytes: Soft memory budget in bytes
            default_ttl_seconds: TTL applied when none (or a non-positive one) is given
            cleanup_interval_seconds: Background sweep interval (None = no sweep)
            clock: Source of the current UTC time
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if max_memory_bytes < 1:
            raise ValueError("max_memory_bytes must be at least 1")
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")

        self.max_entries = max_entries
        self.max_memory_bytes = max_memory_bytes
        self.default_ttl_seconds = default_ttl_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock

        # Ordered least to most recently used
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._memory_bytes = 0
        self._lock = threading.RLock()

        # Statistics
        self.hit_count = 0
        self.miss_count = 0
        self.eviction_count = 0
        self.expiration_count = 0

        self._cleanup_task: asyncio.Task[None] | None = None
        if cleanup_interval_seconds:
            self._start_cleanup_task()

    def _start_cleanup_task(self) -> None:
        """Start background task for TTL cleanup."""
        try:
            loop = asyncio.get_running_loop()
            self._cleanup_task = loop.create_task(self._cleanup_expired())
        except RuntimeError:
            # No event loop running yet, call start_cleanup() from async code
            pass

    def start_cleanup(self) -> None:
        """Start the background sweep if it is configured and not running."""
        if self.cleanup_interval_seconds and (
            self._cleanup_task is None or self._cleanup_task.done()
        ):
            self._start_cleanup_task()

    async def close(self) -> None:
        """Stop the background sweep."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Store a value, making it the most recently used entry.

        Args:
            key: Cache key (any string, including empty)
            value: Value to store (None is a valid value)
            ttl: Time-to-live in seconds (None or <= 0 uses the default)
            metadata: Optional metadata attached to the entry
        """
        if ttl is None or ttl <= 0:
            ttl = self.default_ttl_seconds

        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            last_accessed_at=now,
            metadata=dict(metadata or {}),
        )
        entry.size_bytes = self._entry_size(entry)

        with self._lock:
            self._discard(key)

            if entry.size_bytes > self.max_memory_bytes:
                logger.warning(
                    "Cache entry %r (%d bytes) exceeds memory budget of %d bytes; evicted",
                    key,
                    entry.size_bytes,
                    self.max_memory_bytes,
                )
                self.eviction_count += 1
                return

            self._entries[key] = entry
            self._memory_bytes += entry.size_bytes
            self._enforce_bounds(now)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, refreshing its recency.

        Args:
            key: Cache key
            default: Returned when the key is absent or expired;
                pass `MISSING` to tell a stored None apart from absence

        Returns:
            Stored value or default
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self.miss_count += 1
                return default

            entry.last_accessed_at = self._clock()
            entry.access_count += 1
            self._entries.move_to_end(key)
            self.hit_count += 1
            return entry.value

    def contains(self, key: str) -> bool:
        """Check for a live entry without refreshing recency."""
        with self._lock:
            return self._live_entry(key) is not None

    def get_entry(self, key: str) -> CacheEntry | None:
        """Get a copy of a live entry without refreshing recency."""
        with self._lock:
            entry = self._live_entry(key)
            return replace(entry, metadata=dict(entry.metadata)) if entry else None

    def remove(self, key: str) -> bool:
        """Remove an entry.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            return self._discard(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._memory_bytes = 0

    def invalidate(self, pattern: str | None = None) -> int:
        """Remove entries whose key contains a pattern.

        Args:
            pattern: Substring to match (None = clear all)

        Returns:
            Number of entries removed
        """
        with self._lock:
            if pattern is None:
                count = len(self._entries)
                self.clear()
                return count

            keys_to_remove = [key for key in self._entries if pattern in key]
            for key in keys_to_remove:
                self._discard(key)
            return len(keys_to_remove)

    def extend_ttl(self, key: str, additional_ttl: float) -> bool:
        """Push back the expiry of a live entry.

        Args:
            key: Cache key
            additional_ttl: Seconds added to the current expiry (must be positive)

        Returns:
            True if the entry exists and was extended
        """
        if additional_ttl <= 0:
            return False
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            entry.expires_at += timedelta(seconds=additional_ttl)
            return True

    def update_metadata(self, key: str, metadata: dict[str, Any]) -> bool:
        """Merge metadata into a live entry without refreshing recency.

        Returns:
            True if the entry exists and was updated
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            entry.metadata.update(metadata)
            new_size = self._entry_size(entry)
            self._memory_bytes += new_size - entry.size_bytes
            entry.size_bytes = new_size
            self._enforce_bounds(self._clock())
            return True

    def get_keys(self) -> builtins.set[str]:
        """Keys of all live entries."""
        with self._lock:
            now = self._clock()
            return {key for key, entry in self._entries.items() if not entry.is_expired(now)}

    def purge_expired(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            return self._purge_expired(self._clock())

    def get_stats(self) -> CacheStats:
        """Get cache statistics.

        Returns:
            Cache statistics object
        """
        with self._lock:
            now = self._clock()
            live = [entry for entry in self._entries.values() if not entry.is_expired(now)]
            total_requests = self.hit_count + self.miss_count
            hit_rate = self.hit_count / total_requests if total_requests > 0 else 0.0

            oldest_entry: datetime | None = None
            newest_entry: datetime | None = None
            if live:
                oldest_entry = min(entry.created_at for entry in live)
                newest_entry = max(entry.created_at for entry in live)

            return CacheStats(
                total_entries=len(live),
                memory_usage_bytes=self._memory_bytes,
                total_hits=self.hit_count,
                total_misses=self.miss_count,
                hit_rate=hit_rate,
                evictions=self.eviction_count,
                expirations=self.expiration_count,
                max_entries=self.max_entries,
                max_memory_bytes=self.max_memory_bytes,
                oldest_entry=oldest_entry,
                newest_entry=newest_entry,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def memory_usage_bytes(self) -> int:
        return self._memory_bytes

    async def _cleanup_expired(self) -> None:
        """Background task to cleanup expired entries."""
        assert self.cleanup_interval_seconds is not None
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                removed = self.purge_expired()
            except Exception:
                logger.exception("Cache expiry sweep failed")
                continue
            if removed:
                logger.debug("Cache sweep removed %d expired entries", removed)

    def _live_entry(self, key: str) -> CacheEntry | None:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._discard(key)
            self.expiration_count += 1
            return None
        return entry

    def _discard(self, key: str) -> bool:
        # Caller holds the lock
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._memory_bytes -= entry.size_bytes
        return True

    def _purge_expired(self, now: datetime) -> int:
        # Caller holds the lock
        expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired_keys:
            self._discard(key)
        self.expiration_count += len(expired_keys)
        return len(expired_keys)

    def _over_bounds(self) -> bool:
        return (
            len(self._entries) > self.max_entries
            or self._memory_bytes > self.max_memory_bytes
        )

    def _enforce_bounds(self, now: datetime) -> None:
        # Caller holds the lock. Expired entries go first, then LRU until both bounds hold.
        if not self._over_bounds():
            return
        self._purge_expired(now)
        while self._over_bounds() and self._entries:
            lru_key = next(iter(self._entries))
            self._discard(lru_key)
            self.eviction_count += 1
            logger.debug("Evicted least recently used cache entry %r", lru_key)

    @staticmethod
    def _entry_size(entry: CacheEntry) -> int:
        return (
            sys.getsizeof(entry)
            + estimate_size(entry.key)
            + estimate_size(entry.value)
            + estimate_size(entry.metadata)
        )
