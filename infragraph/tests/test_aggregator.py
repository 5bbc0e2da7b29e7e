"""Aggregator tests: partial failure, cancellation and run history"""

import asyncio

import httpx
import pytest

from infragraph.core.cache import ResponseCache
from infragraph.core.errors import Cancelled, RunInProgress
from infragraph.ingestion.base import BaseProvider
from infragraph.services.aggregator import Aggregator
from infragraph.tests.helpers import make_response

PEERINGDB_FAC = {"data": [{"id": 1, "name": "Equinix PA2", "latitude": 48.92, "longitude": 2.35, "city": "Paris"}]}
PEERINGDB_NET = {"data": [{"id": 7, "asn": 174, "name": "Cogent", "netfac_set": [{"fac_id": 1}]}]}
CABLES = {
    "features": [
        {
            "properties": {"id": "2africa", "name": "2Africa", "landing_points": [{"id": "marseille-france"}]},
            "geometry": {"type": "LineString", "coordinates": [[5.37, 43.3], [9.0, 40.0]]},
        }
    ]
}
LANDING_POINTS = {
    "features": [
        {
            "properties": {"id": "marseille-france", "name": "Marseille, France"},
            "geometry": {"type": "Point", "coordinates": [5.37, 43.3]},
        }
    ]
}


@pytest.fixture
def feeds(upstream):
    """PeeringDB and TeleGeography healthy, Cloudflare Radar always 500"""
    upstream.json("/ix", {"data": []})
    upstream.json("/fac", PEERINGDB_FAC)
    upstream.json("/net", PEERINGDB_NET)
    upstream.json("cable-geo.json", CABLES)
    upstream.json("landing-point-geo.json", LANDING_POINTS)
    upstream.json("/entities/asns", {"success": False, "errors": ["down"]}, status=500)
    return upstream


class ExplodingProvider(BaseProvider):
    """Provider with a bug"""

    name = "peeringdb"
    base_url = "https://example.invalid"

    async def pages(self, http, query):
        raise RuntimeError("unexpected shape")
        yield  # pragma: no cover


class TestPartialFailure:
    """Test one provider's outage degrades the graph instead of failing the run"""

    @pytest.mark.asyncio
    async def test_failed_provider_is_recorded(self, feeds, cache, config, sleep, rng):
        """Test B returning 500 until retries exhaust leaves A and C in the graph"""
        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            graph = await aggregator.run()

        assert set(graph.failed_providers) == {"cloudflare_radar"}
        assert graph.providers == ["peeringdb", "telegeography"]
        assert graph.partial is True
        assert feeds.count("/entities/asns") == config.backoff.max_retries + 1

        sources = {node.source for node in graph.nodes.values()}
        assert sources == {"peeringdb", "telegeography"}
        assert "peeringdb:facility:equinix-pa2" in graph.nodes
        assert "telegeography:cable:2africa" in graph.nodes

    @pytest.mark.asyncio
    async def test_graph_is_published_with_metadata(self, feeds, cache, config, sleep, rng):
        """Test the published snapshot and run history"""
        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            assert aggregator.snapshot() is None
            graph = await aggregator.run()

        assert aggregator.snapshot() is graph
        assert graph.run_id is not None
        assert graph.generated_at is not None

        run = aggregator.runs()[0]
        assert run.run_id == graph.run_id
        assert run.status == "partial"
        assert run.providers["peeringdb"].records == 2
        assert run.providers["cloudflare_radar"].success is False
        assert run.nodes == len(graph.nodes)

    @pytest.mark.asyncio
    async def test_edges_cross_providers(self, feeds, cache, config, sleep, rng):
        """Test relations become edges between existing nodes"""
        async with feeds.client() as client:
            graph = await Aggregator(config, cache, client=client, sleep=sleep, rng=rng).run()

        kinds = {(e.source, e.target, e.kind) for e in graph.edges}
        assert ("peeringdb:network:as174", "peeringdb:facility:equinix-pa2", "present_at") in kinds
        assert ("telegeography:cable:2africa", "telegeography:facility:marseille-france", "lands_at") in kinds

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, cache, config, sleep):
        """Test a provider bug is recorded like any other failure"""
        aggregator = Aggregator(
            config,
            cache,
            providers={"peeringdb": ExplodingProvider(cache, config, sleep=sleep)},
        )
        graph = await aggregator.run()

        assert "RuntimeError" in graph.failed_providers["peeringdb"]
        assert graph.nodes == {}
        assert aggregator.runs()[0].status == "failure"

    @pytest.mark.asyncio
    async def test_include_limits_providers(self, feeds, cache, config, sleep, rng):
        """Test only the included providers are fetched"""
        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            graph = await aggregator.run(include=["telegeography"])

        assert graph.providers == ["telegeography"]
        assert graph.failed_providers == {}
        assert feeds.count("/net") == 0

    @pytest.mark.asyncio
    async def test_unknown_provider_rejected(self, cache, config):
        """Test a typo in include is a caller error"""
        with pytest.raises(ValueError):
            await Aggregator(config, cache).run(include=["peeringbd"])


class TestCancellation:
    """Test cancelled runs publish nothing"""

    @pytest.mark.asyncio
    async def test_cancel_mid_run(self, feeds, cache, config, sleep, rng):
        """Test cancelling while a provider is in flight raises Cancelled"""
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow(request):
            entered.set()
            await release.wait()
            return httpx.Response(200, json={"data": []})

        feeds.add("/ix", slow)
        cancel = asyncio.Event()

        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            task = asyncio.create_task(aggregator.run(cancel=cancel))
            await asyncio.wait_for(entered.wait(), timeout=5)
            cancel.set()

            with pytest.raises(Cancelled):
                await asyncio.wait_for(task, timeout=5)

        assert aggregator.snapshot() is None
        assert aggregator.runs()[0].status == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_keeps_previous_snapshot(self, feeds, cache, config, sleep, rng):
        """Test a cancelled run leaves the last published graph in place"""
        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            first = await aggregator.run()

            cancel = asyncio.Event()
            cancel.set()
            with pytest.raises(Cancelled):
                await aggregator.run(cancel=cancel)

        assert aggregator.snapshot() is first
        assert [r.status for r in aggregator.runs()] == ["cancelled", "partial"]


class TestRefresh:
    """Test per-provider refresh"""

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache_for_one_provider(self, feeds, cache, config, sleep, rng):
        """Test refresh refetches the provider while others stay cached"""
        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            await aggregator.run()
            await aggregator.refresh("peeringdb")

        assert feeds.count("/net") == 2
        assert feeds.count("cable-geo.json") == 1
        assert len(aggregator.runs()) == 2

    @pytest.mark.asyncio
    async def test_refresh_unknown_provider(self, cache, config):
        """Test refreshing an unconfigured provider is rejected"""
        with pytest.raises(ValueError):
            await Aggregator(config, cache).refresh("nope")


class TestShutdown:
    """Test aclose empties only an in-memory cache"""

    @pytest.mark.asyncio
    async def test_memory_cache_is_cleared(self, cache, config):
        """Test the in-memory cache does not outlive the aggregator"""
        cache.put("p1", make_response("peeringdb", "p1"), ttl=60)
        aggregator = Aggregator(config, cache)
        await aggregator.aclose()

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_disk_cache_is_kept(self, tmp_path, config):
        """Test a SQL-backed cache survives for the next process"""
        cache = ResponseCache.from_url(f"sqlite:///{tmp_path / 'cache.db'}")
        cache.put("p1", make_response("peeringdb", "p1"), ttl=60)
        aggregator = Aggregator(config, cache)
        await aggregator.aclose()

        assert cache.persistent
        assert len(cache) == 1


class TestHostileUpstream:
    """Test odd but valid upstream JSON cannot break a run"""

    @pytest.mark.asyncio
    async def test_overflowing_number_is_dropped(self, feeds, cache, config, sleep, rng):
        """Test a 1e400 count decodes to inf, loses its field and the run still publishes"""
        body = b'{"data": [{"id": 1, "name": "X", "net_count": 1e400}]}'
        feeds.add("/ix", lambda request: httpx.Response(200, content=body, headers={"Content-Type": "application/json"}))

        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            graph = await aggregator.run()

        ix = graph.nodes["peeringdb:ixp:x"]
        assert "net_count" not in ix.attributes
        assert aggregator.runs()[0].status == "partial"
        assert aggregator.snapshot() is graph

    @pytest.mark.asyncio
    async def test_merge_failure_is_recorded(self, feeds, cache, config, sleep, rng):
        """Test an error after fetching marks the run failed instead of leaving it running"""

        class BrokenBuilder:
            def merge(self, entities):
                raise RuntimeError("merge exploded")

        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, builder=BrokenBuilder(), client=client, sleep=sleep, rng=rng)
            with pytest.raises(RuntimeError):
                await aggregator.run()

        run = aggregator.runs()[0]
        assert run.status == "failure"
        assert "merge exploded" in run.error
        assert aggregator.snapshot() is None
        assert not aggregator.running


class TestStaleFallback:
    """Test a provider outage after its TTL degrades to stale data"""

    @pytest.mark.asyncio
    async def test_stale_provider_is_marked(self, feeds, cache, clock, config, sleep, rng):
        """Test PeeringDB down past its TTL still contributes nodes, listed as stale"""
        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            first = await aggregator.run()

            clock.advance(7 * 24 * 3600 + 1)
            feeds.json("/fac", {"error": "down"}, status=500)
            graph = await aggregator.run()

        assert graph.stale_providers == ["peeringdb"]
        assert "peeringdb" not in graph.failed_providers
        assert set(graph.nodes) == set(first.nodes)
        stats = aggregator.runs()[0].providers["peeringdb"]
        assert stats.stale is True
        assert stats.success is True


class TestOverlappingRuns:
    """Test a second run is rejected while one is in flight"""

    @pytest.mark.asyncio
    async def test_second_run_rejected(self, feeds, cache, config, sleep, rng):
        """Test starting a run during another raises RunInProgress without queueing"""
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow(request):
            entered.set()
            await release.wait()
            return httpx.Response(200, json={"data": []})

        feeds.add("/ix", slow)

        async with feeds.client() as client:
            aggregator = Aggregator(config, cache, client=client, sleep=sleep, rng=rng)
            first = asyncio.create_task(aggregator.run())
            await asyncio.wait_for(entered.wait(), timeout=5)

            assert aggregator.running
            with pytest.raises(RunInProgress):
                await aggregator.run()
            with pytest.raises(RunInProgress):
                await aggregator.refresh("peeringdb")

            release.set()
            await asyncio.wait_for(first, timeout=5)

        assert not aggregator.running
        assert len(aggregator.runs()) == 1
        assert feeds.count("/net") == 1
