"""API endpoint tests"""

import pytest
from fastapi.testclient import TestClient

from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.cache import ResponseCache
from infragraph.core.config import settings
from infragraph.core.errors import PermanentError
from infragraph.ingestion.base import BaseProvider, Page
from infragraph.main import app
from infragraph.services.aggregator import Aggregator
from infragraph.tests.helpers import make_response


class StaticProvider(BaseProvider):
    """Serves one canned page, or fails like a provider rejecting the request"""

    base_url = "https://example.invalid"

    def __init__(self, name, kind, items, cache, fail=False):
        self.name = name
        self.kind = kind
        self.items = items
        self.fail = fail
        super().__init__(cache)

    async def pages(self, http, query):
        if self.fail:
            raise PermanentError(self.name, "HTTP 403 from feed", status_code=403)
        yield Page(self.kind, make_response(self.name, f"{self.name}-page"), self.items)


class TestAPI:
    """Test API endpoints"""

    @pytest.fixture
    def aggregator(self):
        """Aggregator over canned providers; TeleGeography is down"""
        cache = ResponseCache()
        providers = {
            "peeringdb": StaticProvider(
                "peeringdb",
                "fac",
                [{"id": 1, "name": "Equinix PA2", "latitude": 48.92, "longitude": 2.35}],
                cache,
            ),
            "cloudflare_radar": StaticProvider(
                "cloudflare_radar", "asn", [{"asn": 13335, "name": "CLOUDFLARENET"}], cache
            ),
            "telegeography": StaticProvider("telegeography", "cable", [], cache, fail=True),
        }
        return Aggregator(AggregatorConfig(), cache, providers=providers)

    @pytest.fixture
    def client(self, monkeypatch, aggregator):
        """Create test client without the scheduled aggregation"""
        monkeypatch.setattr(settings, "AGGREGATION_ENABLED", False)
        app.state.aggregator = aggregator
        with TestClient(app) as client:
            yield client
        app.state.aggregator = None

    def test_health_check(self, client):
        """Test health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["snapshot_available"] is False

    def test_not_ready_before_first_run(self, client):
        """Test readiness and graph are unavailable until a graph is published"""
        assert client.get("/health/ready").status_code == 503
        assert client.get("/graph").status_code == 503

    def test_run_then_get_graph(self, client):
        """Test triggering a run publishes a partial graph"""
        response = client.post("/graph/run")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert list(body["failed_providers"]) == ["telegeography"]
        assert body["node_count"] == 2

        graph = client.get("/graph").json()
        assert graph["partial"] is True
        assert graph["run_id"] == body["run_id"]
        assert set(graph["nodes"]) == {"peeringdb:facility:equinix-pa2", "cloudflare_radar:network:as13335"}
        assert client.get("/health/ready").status_code == 200

    def test_graph_filters(self, client):
        """Test kind and include_unresolved filters"""
        client.post("/graph/run")

        networks = client.get("/graph?kind=network_node").json()
        assert list(networks["nodes"]) == ["cloudflare_radar:network:as13335"]

        located = client.get("/graph?include_unresolved=false").json()
        assert list(located["nodes"]) == ["peeringdb:facility:equinix-pa2"]
        assert located["nodes"]["peeringdb:facility:equinix-pa2"]["unresolved"] is False

    def test_run_selected_providers(self, client):
        """Test a run limited to some providers"""
        response = client.post("/graph/run", json={"providers": ["peeringdb"]})
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["providers"] == ["peeringdb"]

    def test_run_unknown_provider(self, client):
        """Test unknown provider names are rejected"""
        response = client.post("/graph/run", json={"providers": ["bogus"]})
        assert response.status_code == 400

    def test_run_while_another_is_in_flight(self, client, aggregator):
        """Test a trigger during an unfinished run returns 409 and records nothing"""
        aggregator._active_run = "in-flight"
        response = client.post("/graph/run")
        assert response.status_code == 409
        assert "in-flight" in response.json()["detail"]
        assert aggregator.runs() == []

    def test_health_reports_circuits(self, client):
        """Test each provider's breaker state is reported"""
        circuits = client.get("/health").json()["circuits"]
        assert circuits == {
            "peeringdb": "closed",
            "cloudflare_radar": "closed",
            "telegeography": "closed",
        }

    def test_get_stats(self, client):
        """Test run history endpoint"""
        client.post("/graph/run")
        response = client.get("/stats")
        assert response.status_code == 200
        runs = response.json()
        assert runs[0]["status"] == "partial"
        assert runs[0]["providers"]["peeringdb"]["records"] == 1

        assert client.get("/stats?status=success").json() == []

    def test_cache_stats_and_invalidation(self, client, aggregator):
        """Test cache observability and per-provider invalidation"""
        aggregator.cache.put("a", make_response("peeringdb", "a"), ttl=60)
        aggregator.cache.put("b", make_response("peeringdb", "b"), ttl=60)

        assert client.get("/stats/cache").json()["entries"] == 2

        response = client.post("/cache/invalidate/peeringdb")
        assert response.status_code == 200
        assert response.json() == {"provider": "peeringdb", "evicted": 2}
        assert client.get("/stats/cache").json()["entries"] == 0

    def test_invalidate_unknown_provider(self, client):
        """Test invalidating an unconfigured provider returns 404"""
        assert client.post("/cache/invalidate/nope").status_code == 404

    def test_invalid_endpoint(self, client):
        """Test invalid endpoint returns 404"""
        response = client.get("/invalid")
        assert response.status_code == 404
