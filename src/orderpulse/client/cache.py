"""Bounded expiring cache — max entry count + per-entry TTL + LRU eviction.

Learn: Used for the live feed's notification/update buffers and for
request-result caching. Three rules:

1. An entry past its expiry is ABSENT. get/has never return it, whether or
   not it has been physically removed yet.
2. size never exceeds max_size after any call returns. set() first sweeps
   expired entries; if still full, it evicts the least recently used one.
3. Recency = last successful get() or set(). has() doesn't count.

Expiry is lazy: expired entries are removed when touched, and swept on
set(), keys(), items() and snapshot(). There's no background timer — with
a small bounded cache the sweeps on write keep it tidy.

Size and TTL default to the cache_max_size / cache_ttl_seconds settings.
The clock is wall time (time.time) by default because snapshot()/restore()
carry absolute expiry timestamps across process restarts.
"""

import time
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from orderpulse.config import settings

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class BoundedExpiringCache(Generic[T]):
    """Generic key → value store with a size cap and TTLs."""

    def __init__(
        self,
        max_size: Optional[int] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        max_size = settings.cache_max_size if max_size is None else max_size
        ttl = float(settings.cache_ttl_seconds) if ttl is None else ttl
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        # Ordered oldest → newest touch; the first key is the LRU victim
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()

    # ─── Writes ──────────────────────────────────────────

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Store a value for ttl seconds (the cache default if None)."""
        now = self._clock()
        self._sweep(now)
        if key in self._entries:
            # Replacing a key never evicts anything else
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)

        lifetime = self.ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(value=value, created_at=now, expires_at=now + lifetime)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    # ─── Reads ───────────────────────────────────────────

    def get(self, key: str, default: Optional[T] = None) -> Optional[T]:
        """Return the value and mark it most recently used; default if absent."""
        entry = self._live_entry(key)
        if entry is None:
            return default
        self._entries.move_to_end(key)
        return entry.value

    def has(self, key: str) -> bool:
        """Like get() for expiry, but leaves recency alone."""
        return self._live_entry(key) is not None

    __contains__ = has

    def keys(self) -> list[str]:
        """Non-expired keys, least → most recently used."""
        self._sweep(self._clock())
        return list(self._entries)

    def items(self) -> list[tuple[str, T]]:
        """Non-expired (key, value) pairs, least → most recently used.

        Doesn't touch recency, so a reader iterating the buffer doesn't
        reorder it.
        """
        self._sweep(self._clock())
        return [(key, entry.value) for key, entry in self._entries.items()]

    def size(self) -> int:
        return len(self._entries)

    __len__ = size

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "utilization": len(self._entries) / self.max_size * 100,
        }

    # ─── Persistence ─────────────────────────────────────

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Serialize live entries with their original timestamps."""
        self._sweep(self._clock())
        return {
            key: {
                "value": entry.value,
                "created_at": entry.created_at,
                "expires_at": entry.expires_at,
            }
            for key, entry in self._entries.items()
        }

    def restore(self, data: dict[str, dict[str, Any]]) -> int:
        """Load a snapshot, keeping only entries not yet expired.

        Restored entries count as freshly touched, in snapshot order; the
        size cap still applies. Returns how many entries were loaded.
        """
        now = self._clock()
        self._sweep(now)
        loaded = 0
        for key, raw in data.items():
            expires_at = raw.get("expires_at")
            if expires_at is None or now > expires_at:
                continue
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = CacheEntry(
                value=raw["value"],
                created_at=raw.get("created_at", now),
                expires_at=expires_at,
            )
            loaded += 1
        return loaded

    # ─── Internals ───────────────────────────────────────

    def _live_entry(self, key: str) -> Optional[CacheEntry[T]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
