"""
Response Cache

Time-bounded, process-local cache for upstream market data responses.
Each cache domain (price, stats, klines) holds its own entries; an entry is
served while it is younger than the freshness window and is otherwise
refreshed through the caller-supplied fetch coroutine.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

CACHE_DURATION_MS = 5000
KLINES_KEY_DELIMITER = "-"
MISSING_KEY_PART = "undefined"


class CacheDomain(Enum):
    """Independent cache namespaces"""
    PRICE = "price"
    STATS = "stats"
    KLINES = "klines"


@dataclass(frozen=True)
class CacheEntry:
    """Cached payload and the clock reading at which it was stored"""
    payload: Any
    stored_at: float


@dataclass
class CacheStats:
    """Cache statistics"""
    hits: int = 0
    misses: int = 0
    stores: int = 0
    fetch_failures: int = 0
    coalesced: int = 0
    evictions: int = 0
    hit_rate: float = 0.0

    def update_hit_rate(self):
        """Update hit rate calculation"""
        total_requests = self.hits + self.misses
        self.hit_rate = round((self.hits / total_requests * 100), 2) if total_requests > 0 else 0.0


class CacheFetchError(Exception):
    """Raised when the fetch behind a cache miss fails.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, domain: CacheDomain, key: Hashable, message: Optional[str] = None):
        self.domain = domain
        self.key = key
        super().__init__(message or f"Failed to fetch {domain.value} data")


def derive_klines_key(interval: Optional[str], limit: Optional[int], start_time: Optional[int]) -> str:
    """Build the klines cache key from ``(interval, limit, start_time)``.

    Absent values are written as ``"undefined"`` so that a missing parameter
    never collides with a present one in another position.
    """
    parts = (interval, limit, start_time)
    return KLINES_KEY_DELIMITER.join(
        MISSING_KEY_PART if part is None else str(part) for part in parts
    )


Fetcher = Callable[[], Awaitable[Any]]


class ResponseCache:
    """
    In-memory cache with one namespace per CacheDomain and a fixed
    freshness window.

    Stale entries are never removed proactively; they are replaced by the
    next successful fetch for the same key. Failed fetches leave the cache
    untouched.
    """

    def __init__(
        self,
        duration_ms: int = CACHE_DURATION_MS,
        clock: Callable[[], float] = time.monotonic,
        single_flight: bool = False,
        klines_max_entries: int = 0
    ):
        """Initialize response cache

        Args:
            duration_ms: Freshness window in milliseconds
            clock: Monotonic clock returning seconds
            single_flight: Collapse concurrent misses for one key into a single fetch
            klines_max_entries: Upper bound on klines entries, 0 for unbounded
        """
        if duration_ms <= 0:
            raise ValueError("Cache duration must be positive")
        if klines_max_entries < 0:
            raise ValueError("klines_max_entries must be non-negative")

        self.duration_ms = duration_ms
        self._duration = duration_ms / 1000.0
        self._clock = clock
        self.single_flight = single_flight
        self.klines_max_entries = klines_max_entries

        # OrderedDict keeps klines in least-recently-used order when bounded
        self._entries: Dict[CacheDomain, "OrderedDict[Hashable, CacheEntry]"] = {
            domain: OrderedDict() for domain in CacheDomain
        }
        self._in_flight: Dict[Tuple[CacheDomain, Hashable], "asyncio.Future[Any]"] = {}

        self.stats = CacheStats()

        logger.info(
            f"Initialized ResponseCache with {duration_ms}ms freshness window "
            f"(single_flight={single_flight}, klines_max_entries={klines_max_entries or 'unbounded'})"
        )

    async def get_or_fetch(self, domain: CacheDomain, key: Hashable, fetch: Fetcher) -> Any:
        """Return the fresh payload for ``(domain, key)`` or fetch and store a new one

        Args:
            domain: Cache domain
            key: None for price and stats, composite klines key otherwise
            fetch: Zero-argument coroutine function producing the upstream payload

        Returns:
            Cached or freshly fetched payload

        Raises:
            CacheFetchError: If the fetch fails; nothing is stored
        """
        entry = self._entries[domain].get(key)
        if entry is not None and self.is_fresh(entry):
            self._touch(domain, key)
            self.stats.hits += 1
            self.stats.update_hit_rate()
            return entry.payload

        self.stats.misses += 1
        self.stats.update_hit_rate()
        logger.debug(f"Cache miss for {domain.value}:{key}")

        if not self.single_flight:
            return await self._fetch_and_store(domain, key, fetch)

        slot = (domain, key)
        pending = self._in_flight.get(slot)
        if pending is not None:
            self.stats.coalesced += 1
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._fetch_and_store(domain, key, fetch))
        self._in_flight[slot] = task
        task.add_done_callback(lambda done: self._release(slot, done))
        return await asyncio.shield(task)

    def peek(self, domain: CacheDomain, key: Hashable = None) -> Optional[CacheEntry]:
        """Get the stored entry for ``(domain, key)`` regardless of freshness"""
        return self._entries[domain].get(key)

    def is_fresh(self, entry: CacheEntry) -> bool:
        """Check whether an entry is still inside the freshness window"""
        return self._clock() - entry.stored_at < self._duration

    def clear(self):
        """Drop every entry in every domain"""
        for entries in self._entries.values():
            entries.clear()
        self.stats = CacheStats()

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    async def _fetch_and_store(self, domain: CacheDomain, key: Hashable, fetch: Fetcher) -> Any:
        try:
            payload = await fetch()
        except Exception as e:
            self.stats.fetch_failures += 1
            logger.error(f"Error fetching {domain.value}: {e}")
            raise CacheFetchError(domain, key) from e

        self._store(domain, key, payload)
        return payload

    def _store(self, domain: CacheDomain, key: Hashable, payload: Any):
        entries = self._entries[domain]
        entries[key] = CacheEntry(payload=payload, stored_at=self._clock())
        entries.move_to_end(key)
        self.stats.stores += 1

        if domain is CacheDomain.KLINES and self.klines_max_entries:
            while len(entries) > self.klines_max_entries:
                evicted_key, _ = entries.popitem(last=False)
                self.stats.evictions += 1
                logger.debug(f"Evicted klines entry {evicted_key}")

    def _touch(self, domain: CacheDomain, key: Hashable):
        if domain is CacheDomain.KLINES and self.klines_max_entries:
            self._entries[domain].move_to_end(key)

    def _release(self, slot: Tuple[CacheDomain, Hashable], task: "asyncio.Future[Any]"):
        if self._in_flight.get(slot) is task:
            del self._in_flight[slot]
        # Mark the outcome as retrieved even if every waiter was cancelled
        if not task.cancelled():
            task.exception()
