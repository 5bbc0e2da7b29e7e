"""Cache routes - Manual invalidation of cached provider responses."""

from fastapi import APIRouter, Depends, HTTPException

from infragraph.api.deps import get_aggregator
from infragraph.core.logging import get_logger
from infragraph.schemas.api import InvalidateResponse
from infragraph.services.aggregator import Aggregator

router = APIRouter(prefix="/cache", tags=["cache"])
log = get_logger("cache_routes")


@router.post("/invalidate/{provider}", response_model=InvalidateResponse)
def invalidate_provider(provider: str, aggregator: Aggregator = Depends(get_aggregator)):
    """
    Drop every cached response of one provider.

    The next run fetches that provider fresh; the published graph is untouched.
    """
    if provider not in aggregator.providers:
        raise HTTPException(status_code=404, detail=f"Provider '{provider}' is not configured")

    evicted = aggregator.cache.invalidate_provider(provider)
    log.info(f"Cache invalidated for {provider} via API | evicted={evicted}")
    return InvalidateResponse(provider=provider, evicted=evicted)
