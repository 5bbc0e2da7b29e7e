"""Response cache tests"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from infragraph.core.cache import MemoryCacheStore, ResponseCache, SqlCacheStore
from infragraph.tests.helpers import FakeClock, make_response


class TestResponseCache:
    """Test TTL handling and invalidation of the in-memory cache"""

    def test_put_then_get_returns_response(self, cache):
        """Test a fresh entry is served from cache"""
        response = make_response(signature="a")
        cache.put("a", response, ttl=60)

        assert cache.get("a") == response
        assert cache.stats()["hits"] == 1

    def test_miss_on_unknown_signature(self, cache):
        """Test unknown signatures are misses"""
        assert cache.get("missing") is None
        assert cache.stats()["misses"] == 1

    def test_entry_expires_after_ttl(self, cache, clock):
        """Test an entry older than its TTL is evicted on read"""
        cache.put("a", make_response(signature="a"), ttl=60)

        clock.advance(60)
        assert cache.get("a") is not None

        clock.advance(1)
        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.stats()["expired"] == 1

    def test_zero_ttl_is_not_stored(self, cache):
        """Test a non-positive TTL disables caching for that response"""
        cache.put("a", make_response(signature="a"), ttl=0)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_invalidate_single_entry(self, cache):
        """Test explicit invalidation removes one entry"""
        cache.put("a", make_response(signature="a"), ttl=60)
        cache.put("b", make_response(signature="b"), ttl=60)

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.get("a") is None
        assert cache.get("b") is not None

    def test_invalidate_provider(self, cache):
        """Test provider invalidation leaves other providers alone"""
        cache.put("p1", make_response("peeringdb", "p1"), ttl=60)
        cache.put("p2", make_response("peeringdb", "p2"), ttl=60)
        cache.put("t1", make_response("telegeography", "t1", body={"features": []}), ttl=60)

        assert cache.invalidate_provider("peeringdb") == 2
        assert cache.get("p1") is None
        assert cache.get("t1") is not None
        assert cache.stats()["evictions"] == 2

    def test_sweep_removes_only_expired(self, cache, clock):
        """Test sweep drops expired entries nobody reads"""
        cache.put("short", make_response(signature="short"), ttl=10)
        cache.put("long", make_response(signature="long"), ttl=1000)

        clock.advance(11)
        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("long") is not None

    def test_hit_rate(self, cache):
        """Test hit rate over all lookups"""
        cache.put("a", make_response(signature="a"), ttl=60)
        cache.get("a")
        cache.get("a")
        cache.get("b")
        cache.get("c")

        assert cache.stats()["hit_rate"] == 0.5


class TestSqlCacheStore:
    """Test the disk-backed store"""

    @pytest.fixture
    def db_url(self, tmp_path):
        """SQLite file in a temp directory"""
        return f"sqlite:///{tmp_path / 'cache.db'}"

    def test_round_trip(self, db_url):
        """Test an entry written through one cache is readable through another"""
        clock = FakeClock()
        response = make_response(signature="a", body={"data": [{"id": 1, "name": "Example"}]})
        ResponseCache(SqlCacheStore(db_url), clock=clock).put("a", response, ttl=60)

        reopened = ResponseCache(SqlCacheStore(db_url), clock=clock)
        cached = reopened.get("a")

        assert cached == response
        assert cached.body["data"][0]["name"] == "Example"

    def test_expiry_and_provider_invalidation(self, db_url):
        """Test TTL and provider invalidation against the SQL store"""
        clock = FakeClock()
        cache = ResponseCache.from_url(db_url, clock=clock)
        cache.put("p1", make_response("peeringdb", "p1"), ttl=10)
        cache.put("r1", make_response("cloudflare_radar", "r1", body={"result": {}}), ttl=100)

        clock.advance(11)
        assert cache.get("p1") is None
        assert cache.invalidate_provider("cloudflare_radar") == 1
        assert len(cache) == 0


class TestBoundedMemoryStore:
    """Test the in-memory store evicts the least recently used entry"""

    def test_least_recently_used_goes_first(self, clock):
        """Test a read refreshes recency so the untouched entry is evicted"""
        cache = ResponseCache(MemoryCacheStore(max_entries=2), clock=clock)
        cache.put("a", make_response(signature="a"), ttl=60)
        cache.put("b", make_response(signature="b"), ttl=60)
        assert cache.get("a") is not None

        cache.put("c", make_response(signature="c"), ttl=60)

        assert len(cache) == 2
        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get("c") is not None
        assert cache.stats()["evictions"] == 1

    def test_from_url_applies_bound(self):
        """Test the configured bound reaches the default store"""
        cache = ResponseCache.from_url(None, max_entries=1)
        cache.put("a", make_response(signature="a"), ttl=60)
        cache.put("b", make_response(signature="b"), ttl=60)
        assert len(cache) == 1

    def test_rejects_zero_bound(self):
        """Test a store that could hold nothing is a configuration error"""
        with pytest.raises(ValueError):
            MemoryCacheStore(max_entries=0)


class TestStaleShelf:
    """Test expired responses stay available for outage fallback"""

    def test_expired_entry_is_kept_as_stale(self, cache, clock):
        """Test an expired read is a miss but the response is still reachable as stale"""
        response = make_response(signature="a")
        cache.put("a", response, ttl=10)
        clock.advance(11)

        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.get_stale("a") == response
        assert cache.stats()["stale_entries"] == 1
        assert cache.stats()["stale_hits"] == 1

    def test_fresh_write_replaces_stale(self, cache, clock):
        """Test a successful refetch drops the stale copy"""
        cache.put("a", make_response(signature="a"), ttl=10)
        clock.advance(11)
        cache.sweep()
        assert cache.stats()["stale_entries"] == 1

        cache.put("a", make_response(signature="a"), ttl=10)
        assert cache.stats()["stale_entries"] == 0

    def test_invalidation_drops_stale(self, cache, clock):
        """Test invalidating a provider forgets its stale copies too"""
        cache.put("p1", make_response("peeringdb", "p1"), ttl=10)
        cache.put("r1", make_response("cloudflare_radar", "r1", body={"result": {}}), ttl=10)
        clock.advance(11)
        cache.sweep()

        cache.invalidate_provider("peeringdb")

        assert cache.get_stale("p1") is None
        assert cache.get_stale("r1") is not None

    def test_unknown_signature_has_no_stale_copy(self, cache):
        """Test a never-cached request has nothing to fall back to"""
        assert cache.get_stale("nope") is None


class TestConcurrency:
    """Test the cache under concurrent access"""

    def test_threads_share_the_cache(self, cache):
        """Test concurrent put/get from worker threads loses no writes"""

        def worker(n):
            for i in range(50):
                sig = f"w{n}-{i}"
                cache.put(sig, make_response(signature=sig), ttl=60)
                assert cache.get(sig) is not None

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(8)))

        stats = cache.stats()
        assert stats["writes"] == 400
        assert stats["hits"] == 400
        assert stats["entries"] == 400

    @pytest.mark.asyncio
    async def test_tasks_share_the_cache(self, cache):
        """Test concurrent tasks interleaving reads and writes"""

        async def task(n):
            for i in range(20):
                sig = f"t{n}-{i}"
                cache.put(sig, make_response(signature=sig), ttl=60)
                await asyncio.sleep(0)
                assert cache.get(sig) is not None

        await asyncio.gather(*(task(n) for n in range(10)))
        assert len(cache) == 200


class TestSweeper:
    """Test the background sweeper task"""

    @pytest.mark.asyncio
    async def test_sweeper_removes_expired_entries(self, cache, clock):
        """Test the periodic sweep clears expired entries and stops cleanly"""
        cache.put("old", make_response(signature="old"), ttl=10)
        cache.put("new", make_response(signature="new"), ttl=1000)
        clock.advance(11)

        task = cache.start_sweeper(0.01)
        assert cache.start_sweeper(0.01) is task
        for _ in range(100):
            if len(cache) == 1:
                break
            await asyncio.sleep(0.01)
        await cache.stop_sweeper()

        assert task.done()
        assert len(cache) == 1
        assert cache.get("new") is not None
        assert cache.stats()["expired"] == 1
        assert cache.get_stale("old") is not None

    @pytest.mark.asyncio
    async def test_stop_without_start(self, cache):
        """Test stopping a sweeper that never started is a no-op"""
        await cache.stop_sweeper()
