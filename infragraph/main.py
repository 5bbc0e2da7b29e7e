from contextlib import asynccontextmanager
import asyncio
from typing import Optional

from fastapi import FastAPI

from infragraph.api.routes import cache, graph, health, stats
from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.cache import ResponseCache
from infragraph.core.config import settings
from infragraph.core.errors import RunInProgress
from infragraph.core.logging import get_logger
from infragraph.services.aggregator import Aggregator


log = get_logger("app")

# Background task handle
_aggregation_task: Optional[asyncio.Task] = None


async def run_aggregation(aggregator: Aggregator) -> None:
    """Run one aggregation pass over all configured providers."""
    log.info("Starting aggregation for all providers...")
    try:
        result = await aggregator.run()

        for provider, error in result.failed_providers.items():
            log.error(f"Aggregation {provider}: failed - {error}")

        log.info(
            f"Aggregation completed: {len(result.nodes)} nodes, {len(result.edges)} edges "
            f"from {result.providers}"
        )
    except RunInProgress as exc:
        log.info(f"Skipping scheduled aggregation: {exc}")
    except Exception as exc:
        log.exception(f"Aggregation failed: {exc}")


async def scheduled_aggregation_task(aggregator: Aggregator) -> None:
    """Background task that re-aggregates at the configured interval."""
    interval = settings.AGGREGATION_INTERVAL_SECONDS
    log.info(f"Scheduled aggregation task started (interval: {interval}s)")

    # Run immediately on startup
    await run_aggregation(aggregator)

    # Then run at configured interval
    while True:
        try:
            await asyncio.sleep(interval)
            await run_aggregation(aggregator)
        except asyncio.CancelledError:
            log.info("Scheduled aggregation task cancelled")
            break
        except Exception as exc:
            log.exception(f"Scheduled aggregation task error: {exc}")
            # Continue running despite errors
            await asyncio.sleep(interval)


def build_aggregator() -> Aggregator:
    config = AggregatorConfig.from_settings(settings)
    cache = ResponseCache.from_url(settings.CACHE_DB_URL, max_entries=settings.CACHE_MAX_ENTRIES)
    return Aggregator(config, cache)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _aggregation_task

    # Log environment mode
    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    if getattr(app.state, "aggregator", None) is None:
        app.state.aggregator = build_aggregator()
    aggregator: Aggregator = app.state.aggregator
    log.info(f"Aggregator ready for providers: {list(aggregator.providers)}")

    if settings.CACHE_SWEEP_INTERVAL_SECONDS > 0:
        aggregator.cache.start_sweeper(settings.CACHE_SWEEP_INTERVAL_SECONDS)

    # Start the recurring aggregation task if enabled
    if settings.AGGREGATION_ENABLED:
        log.info("Starting scheduled aggregation background task...")
        _aggregation_task = asyncio.create_task(scheduled_aggregation_task(aggregator))
    else:
        log.info("Scheduled aggregation is disabled (AGGREGATION_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down services...")

    if _aggregation_task:
        log.info("Cancelling scheduled aggregation task...")
        _aggregation_task.cancel()
        try:
            await _aggregation_task
        except asyncio.CancelledError:
            pass
        _aggregation_task = None

    # Stops the cache sweeper
    await aggregator.aclose()

    log.info("Application shutdown complete")


# Configure FastAPI based on environment
app = FastAPI(
    title="InfraGraph",
    description="Aggregated internet infrastructure graph from PeeringDB, Cloudflare Radar and TeleGeography",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    # Debug mode only in development
    debug=settings.debug_enabled,
)


app.include_router(graph.router)
app.include_router(cache.router)
app.include_router(health.router)
app.include_router(stats.router)
