"""PriceCache: Typed TTL cache for served prices and quality reports.

Entries are keyed by a structured CacheKey rather than concatenated strings
and expire according to an explicit CachePolicy. The oldest entry is evicted
once max_entries is reached.

.. code-block:: python

    >>> cache: PriceCache[float] = PriceCache(CachePolicy(ttl=10.0))
    >>> cache.set(CacheKey("SOL"), 25.5)
    >>> cache.get(CacheKey("SOL"))
    25.5
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheKey:
    """Cache key for one symbol.

    :ivar symbol: Token symbol (uppercased).
    :ivar kind: Cached value kind, e.g. "price" or "quality".
    """

    symbol: str
    kind: str = "price"

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", self.symbol.upper())

    def __str__(self) -> str:
        return f"{self.kind}:{self.symbol}"


@dataclass(frozen=True)
class CachePolicy:
    """Expiry and eviction policy.

    :ivar ttl: Default time-to-live in seconds.
    :ivar max_entries: Maximum entries before the oldest is evicted.
    """

    ttl: float = 30.0
    max_entries: int = 1000

    def __post_init__(self) -> None:
        if self.ttl <= 0:
            raise ValueError("ttl must be positive")
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stored_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) >= self.ttl


class PriceCache(Generic[T]):
    """In-memory TTL cache.

    Not safe for concurrent writers by itself: the feed manager serializes
    writes for a symbol with that symbol's lock.

    :ivar policy: Expiry and eviction policy.
    """

    def __init__(self, policy: CachePolicy | None = None) -> None:
        self.policy = policy or CachePolicy()
        self._entries: OrderedDict[CacheKey, CacheEntry[T]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def set(self, key: CacheKey, value: T, ttl: float | None = None) -> None:
        """Store a value.

        :param key: Cache key.
        :param value: Value to store.
        :param ttl: Entry TTL in seconds (defaults to the policy TTL).
        """
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            value=value,
            stored_at=time.time(),
            ttl=self.policy.ttl if ttl is None else ttl,
        )
        while len(self._entries) > self.policy.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {evicted}")

    def get_entry(self, key: CacheKey) -> CacheEntry[T] | None:
        """Get the entry for a key if present and not expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired(time.time()):
            logger.debug(f"Cache entry {key} expired")
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry

    def get(self, key: CacheKey) -> T | None:
        """Get a value if present and not expired."""
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def get_age(self, key: CacheKey) -> float | None:
        """Age of an entry in seconds, or None if absent (expired or not)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return entry.age(time.time())

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear(self, symbol: str | None = None) -> int:
        """Drop all entries, or all entries of one symbol.

        :returns: Number of entries removed.
        """
        if symbol is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        symbol = symbol.upper()
        keys = [k for k in self._entries if k.symbol == symbol]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
