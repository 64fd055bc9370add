"""Bounded in-memory cache with time-to-live and LRU eviction."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, Iterator, TypeVar

from cidstore.utils.time import Clock

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """Cached value and the time it was stored or last refreshed."""

    value: V
    timestamp: float


class TTLCache(Generic[K, V]):
    """LRU cache whose entries also expire ``ttl`` seconds after being set.

    Reads move an entry to the most-recently-used position and, when
    ``refresh_on_get`` is set, restart its TTL. Inserting past ``max_size``
    evicts the least recently used entry.
    """

    def __init__(
        self,
        max_size: int,
        ttl: float,
        clock: Clock | None = None,
        refresh_on_get: bool = True,
    ):
        """Initialize cache."""
        if max_size < 1:
            msg = "max_size must be positive"
            raise ValueError(msg)
        self.max_size = max_size
        self.ttl = ttl
        self.clock = clock or Clock()
        self.refresh_on_get = refresh_on_get
        self._entries: OrderedDict[K, CacheEntry[V]] = OrderedDict()

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.timestamp >= self.ttl

    def get(self, key: K) -> V | None:
        """Return the live value for ``key`` or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self.clock.now()
        if self._expired(entry, now):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        if self.refresh_on_get:
            entry.timestamp = now
        return entry.value

    def set(self, key: K, value: V) -> None:
        """Store ``value`` under ``key``, evicting the oldest entries if full."""
        self._entries[key] = CacheEntry(value=value, timestamp=self.clock.now())
        self._entries.move_to_end(key)
        self.purge_expired()
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def delete(self, key: K) -> bool:
        """Remove ``key``; return whether it was present."""
        return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self.clock.now()
        stale = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def items(self) -> list[tuple[K, V]]:
        """Return live entries from least to most recently used."""
        self.purge_expired()
        return [(k, e.value) for k, e in self._entries.items()]

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not self._expired(entry, self.clock.now())

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter([k for k, _ in self.items()])
