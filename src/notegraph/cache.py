"""In-memory LRU cache with byte-size accounting and idle expiry.

Two independent instances are used by a vault: one for raw note content and
one for serialized query results. Entries expire once they have been idle
longer than ``ttl``; expiry is checked lazily on access, so there are no
timers and no locks. All calls are expected from a single event loop.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from .errors import ConfigurationError
from .models import CacheStats

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    byte_size: int
    last_accessed: float
    access_count: int = 1


def content_byte_size(text: str) -> int:
    """Return the UTF-8 encoded size of ``text``."""
    return len(text.encode("utf-8"))


def json_byte_size(value: Any) -> int | None:
    """Return the UTF-8 size of ``value`` serialized as JSON.

    Returns None when the value cannot be serialized; callers skip caching.
    """
    try:
        return len(json.dumps(value).encode("utf-8"))
    except (TypeError, ValueError) as e:
        log.debug("Value not JSON serializable, skipping cache: %s", e)
        return None


class BoundedCache(Generic[T]):
    """LRU cache bounded by total bytes, entry count and idle time.

    Insertion order doubles as recency: the first key is always the
    least recently used one.
    """

    def __init__(
        self,
        max_size: int,
        max_items: int,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 0:
            raise ConfigurationError(f"Cache max_size must not be negative, got {max_size}")
        if max_items <= 0:
            raise ConfigurationError(f"Cache max_items must be positive, got {max_items}")
        if ttl <= 0:
            raise ConfigurationError(f"Cache ttl must be positive, got {ttl}")

        self.max_size = max_size
        self.max_items = max_items
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._current_size = 0

    @property
    def current_size(self) -> int:
        return self._current_size

    def __len__(self) -> int:
        return len(self._entries)

    def _is_expired(self, entry: CacheEntry[T], now: float) -> bool:
        return now - entry.last_accessed > self.ttl

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._current_size -= entry.byte_size

    def get(self, key: str) -> T | None:
        """Return the cached value, or None on a miss or expiry.

        A hit refreshes recency and increments the access count.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if self._is_expired(entry, now):
            self._remove(key)
            return None

        entry.last_accessed = now
        entry.access_count += 1
        self._entries.move_to_end(key)
        return entry.value

    def has(self, key: str) -> bool:
        """Check for a live entry without touching recency."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._is_expired(entry, self._clock()):
            self._remove(key)
            return False
        return True

    def set(self, key: str, value: T, byte_size: int) -> bool:
        """Store ``value`` under ``key``, evicting LRU entries as needed.

        Returns:
            False when the value can never fit (it is then not stored).
        """
        byte_size = max(0, byte_size)
        if self.max_size == 0 or byte_size > self.max_size:
            log.debug("Rejected cache value for %s (%d bytes, max %d)", key, byte_size, self.max_size)
            return False

        if key in self._entries:
            self._remove(key)

        self._make_room(byte_size)
        self._entries[key] = CacheEntry(value=value, byte_size=byte_size, last_accessed=self._clock())
        self._current_size += byte_size
        return True

    def _make_room(self, byte_size: int) -> None:
        self.remove_expired()
        while self._entries and (
            self._current_size + byte_size > self.max_size or len(self._entries) >= self.max_items
        ):
            oldest = next(iter(self._entries))
            self._remove(oldest)

    def remove_expired(self) -> int:
        """Purge every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            self._remove(key)
        return len(expired)

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        self._remove(key)
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._current_size = 0

    def keys(self) -> list[str]:
        """Keys from least to most recently used (expired entries included)."""
        return list(self._entries)

    def get_stats(self) -> CacheStats:
        count = len(self._entries)
        total_access = sum(entry.access_count for entry in self._entries.values())
        return CacheStats(
            item_count=count,
            total_size=self._current_size,
            max_size=self.max_size,
            average_access_count=total_access / count if count else 0.0,
        )
