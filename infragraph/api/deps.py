"""API dependencies"""

from fastapi import HTTPException, Request

from infragraph.core.cache import ResponseCache
from infragraph.services.aggregator import Aggregator


def get_aggregator(request: Request) -> Aggregator:
    """Aggregator built by the application lifespan"""
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Aggregator not initialized")
    return aggregator


def get_cache(request: Request) -> ResponseCache:
    return get_aggregator(request).cache
