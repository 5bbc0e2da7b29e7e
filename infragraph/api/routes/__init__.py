from infragraph.api.routes.cache import router as cache_router
from infragraph.api.routes.graph import router as graph_router
from infragraph.api.routes.health import router as health_router
from infragraph.api.routes.stats import router as stats_router

__all__ = ["cache_router", "graph_router", "health_router", "stats_router"]
