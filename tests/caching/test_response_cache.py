"""
Test suite for ResponseCache

Tests cover:
- Freshness window hits and refreshes
- Failure handling (nothing stored, stale never served)
- Domain and key independence
- Optional single-flight coalescing of concurrent misses
- Optional least-recently-used bound on klines entries
"""

import pytest
import asyncio
from unittest.mock import AsyncMock

from shib_proxy.caching.response_cache import (
    ResponseCache,
    CacheDomain,
    CacheEntry,
    CacheFetchError,
    CACHE_DURATION_MS
)


class FakeClock:
    """Manually advanced clock returning seconds"""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, milliseconds: int):
        self.now += milliseconds / 1000.0


PRICE_PAYLOAD = {"symbol": "SHIBUSDT", "price": "0.00002451"}
STATS_PAYLOAD = {"symbol": "SHIBUSDT", "priceChangePercent": "-1.204"}


class TestResponseCache:
    """Test suite for ResponseCache functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.cache = ResponseCache(clock=self.clock)

    def test_initialization(self):
        """Test cache initialization."""
        assert self.cache.duration_ms == CACHE_DURATION_MS == 5000
        assert self.cache.single_flight is False
        assert self.cache.klines_max_entries == 0
        assert len(self.cache) == 0

    def test_invalid_initialization(self):
        """Test rejected constructor arguments."""
        with pytest.raises(ValueError):
            ResponseCache(duration_ms=0)
        with pytest.raises(ValueError):
            ResponseCache(klines_max_entries=-1)

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self):
        """Test first request fetches upstream and stores the payload."""
        fetch = AsyncMock(return_value=PRICE_PAYLOAD)

        result = await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)

        assert result == PRICE_PAYLOAD
        assert fetch.await_count == 1
        entry = self.cache.peek(CacheDomain.PRICE)
        assert entry == CacheEntry(payload=PRICE_PAYLOAD, stored_at=0.0)
        assert self.cache.stats.misses == 1
        assert self.cache.stats.stores == 1

    @pytest.mark.asyncio
    async def test_fresh_entry_served_without_fetch(self):
        """Test a request inside the window returns the identical payload."""
        fetch = AsyncMock(return_value=PRICE_PAYLOAD)

        first = await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)
        self.clock.advance_ms(4999)
        second = await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)

        assert second is first
        assert fetch.await_count == 1
        assert self.cache.stats.hits == 1
        assert self.cache.stats.hit_rate == 50.0

    @pytest.mark.asyncio
    async def test_entry_stale_at_exact_duration(self):
        """Test an entry is stale once the full duration has elapsed."""
        fetch = AsyncMock(side_effect=[{"price": "1"}, {"price": "2"}])

        await self.cache.get_or_fetch(CacheDomain.STATS, None, fetch)
        self.clock.advance_ms(5000)
        result = await self.cache.get_or_fetch(CacheDomain.STATS, None, fetch)

        assert result == {"price": "2"}
        assert fetch.await_count == 2
        assert self.cache.peek(CacheDomain.STATS).stored_at == 5.0

    @pytest.mark.asyncio
    async def test_price_timeline(self):
        """Test t=0 fetch, t=3000ms cached, t=6000ms refreshed."""
        fetch = AsyncMock(side_effect=[{"price": "0.1"}, {"price": "0.2"}])

        assert await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch) == {"price": "0.1"}
        assert self.cache.peek(CacheDomain.PRICE).stored_at == 0.0

        self.clock.advance_ms(3000)
        assert await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch) == {"price": "0.1"}
        assert fetch.await_count == 1

        self.clock.advance_ms(3000)
        assert await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch) == {"price": "0.2"}
        assert fetch.await_count == 2
        assert self.cache.peek(CacheDomain.PRICE).stored_at == 6.0

    @pytest.mark.asyncio
    async def test_fetch_failure_writes_nothing(self):
        """Test failed fetches raise CacheFetchError and store nothing."""
        cause = ConnectionError("connection reset")
        fetch = AsyncMock(side_effect=cause)

        with pytest.raises(CacheFetchError) as exc_info:
            await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)

        assert exc_info.value.domain is CacheDomain.PRICE
        assert exc_info.value.key is None
        assert exc_info.value.__cause__ is cause
        assert str(exc_info.value) == "Failed to fetch price data"
        assert self.cache.peek(CacheDomain.PRICE) is None
        assert self.cache.stats.fetch_failures == 1

        # Next request retries upstream
        fetch.side_effect = None
        fetch.return_value = PRICE_PAYLOAD
        assert await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch) == PRICE_PAYLOAD
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_never_serves_stale_entry(self):
        """Test a stale entry survives a failed refresh but is not returned."""
        fetch = AsyncMock(return_value=PRICE_PAYLOAD)
        await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)

        self.clock.advance_ms(6000)
        fetch.side_effect = TimeoutError()

        with pytest.raises(CacheFetchError):
            await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)

        stale = self.cache.peek(CacheDomain.PRICE)
        assert stale.payload == PRICE_PAYLOAD
        assert stale.stored_at == 0.0
        assert self.cache.is_fresh(stale) is False

        with pytest.raises(CacheFetchError):
            await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)
        assert fetch.await_count == 3

    @pytest.mark.asyncio
    async def test_domains_are_independent(self):
        """Test writing one domain never affects another."""
        price_fetch = AsyncMock(return_value=PRICE_PAYLOAD)
        stats_fetch = AsyncMock(return_value=STATS_PAYLOAD)
        klines_fetch = AsyncMock(return_value=[[1, "0.1"]])

        await self.cache.get_or_fetch(CacheDomain.KLINES, "1h-10-100", klines_fetch)
        await self.cache.get_or_fetch(CacheDomain.PRICE, None, price_fetch)

        assert self.cache.peek(CacheDomain.STATS) is None
        assert await self.cache.get_or_fetch(CacheDomain.STATS, None, stats_fetch) == STATS_PAYLOAD
        assert stats_fetch.await_count == 1

        self.clock.advance_ms(2000)
        await self.cache.get_or_fetch(CacheDomain.PRICE, None, price_fetch)
        assert self.cache.peek(CacheDomain.KLINES, "1h-10-100").payload == [[1, "0.1"]]
        assert len(self.cache) == 3

    @pytest.mark.asyncio
    async def test_klines_keys_are_independent(self):
        """Test distinct klines keys hold separate entries."""
        fetch = AsyncMock(side_effect=[[["a"]], [["b"]]])

        first = await self.cache.get_or_fetch(CacheDomain.KLINES, "1h-10-100", fetch)
        second = await self.cache.get_or_fetch(CacheDomain.KLINES, "1h-10-200", fetch)

        assert first == [["a"]]
        assert second == [["b"]]
        assert fetch.await_count == 2
        assert await self.cache.get_or_fetch(CacheDomain.KLINES, "1h-10-100", fetch) == [["a"]]
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("single_flight", [False, True])
    async def test_overlapping_fetches_across_domains(self, single_flight):
        """Test in-flight fetches for different domains each store their own payload."""
        cache = ResponseCache(clock=self.clock, single_flight=single_flight)
        gates = {domain: asyncio.Event() for domain in CacheDomain}
        payloads = {
            CacheDomain.PRICE: PRICE_PAYLOAD,
            CacheDomain.STATS: STATS_PAYLOAD,
            CacheDomain.KLINES: [[1700000000000, "0.0000245"]],
        }
        keys = {CacheDomain.PRICE: None, CacheDomain.STATS: None, CacheDomain.KLINES: "1h-10-100"}

        def gated(domain):
            async def fetch():
                await gates[domain].wait()
                return payloads[domain]
            return fetch

        waiters = {
            domain: asyncio.ensure_future(cache.get_or_fetch(domain, keys[domain], gated(domain)))
            for domain in CacheDomain
        }
        await asyncio.sleep(0)

        # Complete in the reverse order of issue
        for domain in reversed(list(CacheDomain)):
            gates[domain].set()
            await waiters[domain]

        for domain in CacheDomain:
            assert waiters[domain].result() == payloads[domain]
            assert cache.peek(domain, keys[domain]).payload == payloads[domain]
        assert len(cache) == 3
        assert cache.stats.coalesced == 0

    @pytest.mark.asyncio
    async def test_unbounded_klines_keep_stale_entries(self):
        """Test stale klines entries are only replaced, never removed."""
        fetch = AsyncMock(return_value=[])

        for start_time in range(50):
            await self.cache.get_or_fetch(CacheDomain.KLINES, f"1m-5-{start_time}", fetch)
        self.clock.advance_ms(60000)

        assert len(self.cache) == 50
        assert self.cache.stats.evictions == 0

    @pytest.mark.asyncio
    async def test_concurrent_misses_without_single_flight(self):
        """Test overlapping misses each fetch upstream by default."""
        gate = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await gate.wait()
            return {"call": calls}

        first = asyncio.ensure_future(self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch))
        second = asyncio.ensure_future(self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch))
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(first, second)

        assert calls == 2
        assert self.cache.stats.stores == 2

    def test_clear(self):
        """Test clearing every domain."""
        asyncio.run(self.cache.get_or_fetch(CacheDomain.PRICE, None, AsyncMock(return_value={})))
        assert len(self.cache) == 1

        self.cache.clear()
        assert len(self.cache) == 0
        assert self.cache.stats.stores == 0


class TestSingleFlight:
    """Test suite for coalesced concurrent fetches."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.cache = ResponseCache(clock=self.clock, single_flight=True)

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self):
        """Test concurrent misses for one key trigger a single upstream call."""
        gate = asyncio.Event()
        fetch = AsyncMock(return_value=PRICE_PAYLOAD)

        async def gated_fetch():
            await gate.wait()
            return await fetch()

        waiters = [
            asyncio.ensure_future(self.cache.get_or_fetch(CacheDomain.PRICE, None, gated_fetch))
            for _ in range(3)
        ]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*waiters)

        assert results == [PRICE_PAYLOAD] * 3
        assert fetch.await_count == 1
        assert self.cache.stats.coalesced == 2
        assert self.cache.stats.stores == 1

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_every_waiter(self):
        """Test a failed shared fetch raises for all waiters and stores nothing."""
        gate = asyncio.Event()

        async def failing_fetch():
            await gate.wait()
            raise ConnectionError("upstream down")

        waiters = [
            asyncio.ensure_future(self.cache.get_or_fetch(CacheDomain.STATS, None, failing_fetch))
            for _ in range(2)
        ]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(result, CacheFetchError) for result in results)
        assert self.cache.peek(CacheDomain.STATS) is None
        assert self.cache.stats.fetch_failures == 1

    @pytest.mark.asyncio
    async def test_different_keys_do_not_coalesce(self):
        """Test in-flight fetches are tracked per key."""
        fetch = AsyncMock(side_effect=[["a"], ["b"]])

        results = await asyncio.gather(
            self.cache.get_or_fetch(CacheDomain.KLINES, "1h-10-100", fetch),
            self.cache.get_or_fetch(CacheDomain.KLINES, "1h-10-200", fetch)
        )

        assert sorted(results) == [["a"], ["b"]]
        assert fetch.await_count == 2
        assert self.cache.stats.coalesced == 0

    @pytest.mark.asyncio
    async def test_next_miss_after_completion_fetches_again(self):
        """Test completed fetches are no longer shared."""
        fetch = AsyncMock(return_value=PRICE_PAYLOAD)

        await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)
        self.clock.advance_ms(5000)
        await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)

        assert fetch.await_count == 2


class TestBoundedKlines:
    """Test suite for the optional klines size bound."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cache = ResponseCache(clock=FakeClock(), klines_max_entries=2)

    @pytest.mark.asyncio
    async def test_least_recently_used_entry_evicted(self):
        """Test the least recently used klines key is dropped first."""
        fetch = AsyncMock(return_value=[])

        await self.cache.get_or_fetch(CacheDomain.KLINES, "a", fetch)
        await self.cache.get_or_fetch(CacheDomain.KLINES, "b", fetch)
        # Hit on "a" makes "b" the eviction candidate
        await self.cache.get_or_fetch(CacheDomain.KLINES, "a", fetch)
        await self.cache.get_or_fetch(CacheDomain.KLINES, "c", fetch)

        assert self.cache.peek(CacheDomain.KLINES, "a") is not None
        assert self.cache.peek(CacheDomain.KLINES, "b") is None
        assert self.cache.peek(CacheDomain.KLINES, "c") is not None
        assert self.cache.stats.evictions == 1

    @pytest.mark.asyncio
    async def test_bound_ignores_other_domains(self):
        """Test price and stats entries do not count against the klines bound."""
        fetch = AsyncMock(return_value={})

        await self.cache.get_or_fetch(CacheDomain.PRICE, None, fetch)
        await self.cache.get_or_fetch(CacheDomain.STATS, None, fetch)
        await self.cache.get_or_fetch(CacheDomain.KLINES, "a", fetch)
        await self.cache.get_or_fetch(CacheDomain.KLINES, "b", fetch)

        assert len(self.cache) == 4
        assert self.cache.stats.evictions == 0
