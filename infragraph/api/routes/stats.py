"""Stats routes - Aggregation run history and cache observability."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from infragraph.api.deps import get_aggregator
from infragraph.schemas.api import CacheStatsResponse
from infragraph.services.aggregator import Aggregator, RunRecord

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=list[RunRecord])
def get_run_stats(
    status: Optional[str] = Query(None, description="Filter by status (running, success, partial, failure, cancelled)"),
    limit: int = Query(10, ge=1, le=50, description="Number of runs to return"),
    aggregator: Aggregator = Depends(get_aggregator),
):
    """
    Get recent aggregation runs, newest first.

    Shows per-provider record counts, failures and duration.
    """
    runs = aggregator.runs()
    if status:
        runs = [run for run in runs if run.status == status]
    return runs[:limit]


@router.get("/cache", response_model=CacheStatsResponse)
def get_cache_stats(aggregator: Aggregator = Depends(get_aggregator)):
    """Response cache hit/miss counters and current size."""
    return CacheStatsResponse(**aggregator.cache.stats())
