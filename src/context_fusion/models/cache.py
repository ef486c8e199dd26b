"""Cache models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class CacheEntry:
    """Cache entry with metadata."""

    key: str
    value: Any
    created_at: datetime
    expires_at: datetime
    last_accessed_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    access_count: int = 0
    size_bytes: int = 0

    def is_expired(self, now: datetime) -> bool:
        """Entries are visible only while now < expires_at."""
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    total_entries: int
    memory_usage_bytes: int
    total_hits: int
    total_misses: int
    hit_rate: float
    evictions: int
    expirations: int
    max_entries: int
    max_memory_bytes: int
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None
