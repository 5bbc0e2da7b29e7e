"""Health routes - System health and readiness checks."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response

from infragraph.api.deps import get_aggregator
from infragraph.schemas.api import HealthResponse
from infragraph.services.aggregator import Aggregator

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(response: Response, aggregator: Aggregator = Depends(get_aggregator)):
    """
    Health check endpoint for load balancer and Docker health checks.

    Checks the response cache store and the last aggregation run, and reports
    each provider's circuit breaker state.
    Returns 503 if the cache store is unreachable.
    """
    try:
        len(aggregator.cache)
        cache_status = "ok"
    except Exception as e:
        cache_status = f"down: {e}"
        response.status_code = 503

    runs = aggregator.runs(limit=1)
    last_run = runs[0] if runs else None

    return HealthResponse(
        status="healthy" if cache_status == "ok" else "degraded",
        cache=cache_status,
        last_run_status=last_run.status if last_run else None,
        last_run_at=last_run.started_at if last_run else None,
        snapshot_available=aggregator.snapshot() is not None,
        circuits={name: provider.breaker.state for name, provider in aggregator.providers.items()},
    )


@router.get("/ready")
def readiness(response: Response, aggregator: Aggregator = Depends(get_aggregator)):
    """
    Readiness check - ready once a graph has been published.

    Returns 200 if ready, 503 otherwise.
    """
    graph = aggregator.snapshot()
    if graph is None:
        response.status_code = 503
        return {"status": "not_ready", "error": "no graph published yet", "timestamp": datetime.now(timezone.utc).isoformat()}
    return {"status": "ready", "run_id": graph.run_id, "timestamp": datetime.now(timezone.utc).isoformat()}
