"""Aggregation entrypoint - Standalone script for running one aggregation pass.

Usage:
    python -m infragraph.aggregate_entrypoint                              # All providers
    python -m infragraph.aggregate_entrypoint peeringdb                    # Single provider
    python -m infragraph.aggregate_entrypoint peeringdb telegeography      # Several providers
    python -m infragraph.aggregate_entrypoint --output graph.json          # Write the graph as JSON
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.cache import ResponseCache
from infragraph.core.config import settings
from infragraph.core.logging import get_logger
from infragraph.schemas.normalized import EntityGraph
from infragraph.schemas.raw import PROVIDER_NAMES
from infragraph.services.aggregator import Aggregator

logger = get_logger("aggregate_entrypoint")


async def run_aggregation(providers: Optional[List[str]] = None) -> EntityGraph:
    """Run one aggregation pass for the given providers (all when None)."""
    logger.info(f"Starting aggregation for: {providers or 'all providers'}")
    config = AggregatorConfig.from_settings(settings)
    cache = ResponseCache.from_url(settings.CACHE_DB_URL, max_entries=settings.CACHE_MAX_ENTRIES)
    aggregator = Aggregator(config, cache)
    try:
        return await aggregator.run(include=providers)
    finally:
        await aggregator.aclose()


def parse_args(argv: List[str]) -> tuple[List[str], Optional[Path]]:
    providers: List[str] = []
    output: Optional[Path] = None
    args = iter(argv)
    for arg in args:
        if arg == "--output":
            value = next(args, None)
            if not value:
                logger.error("--output requires a file path")
                sys.exit(2)
            output = Path(value)
        elif arg.startswith("--output="):
            output = Path(arg.split("=", 1)[1])
        else:
            providers.append(arg)
    return providers, output


def main():
    """Main entry point for the aggregation pipeline."""
    logger.info("Aggregation starting...")

    providers, output = parse_args(sys.argv[1:])
    invalid = [p for p in providers if p not in PROVIDER_NAMES]
    if invalid:
        logger.error(f"Invalid provider(s): {', '.join(invalid)}. Must be one of: {', '.join(PROVIDER_NAMES)}")
        sys.exit(1)

    graph = asyncio.run(run_aggregation(providers or None))

    logger.info(
        f"Aggregation completed: {len(graph.nodes)} nodes, {len(graph.edges)} edges, "
        f"failed={sorted(graph.failed_providers)}"
    )

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(graph.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Graph written to {output}")

    # Exit with error code if any provider failed
    if graph.partial:
        sys.exit(1)

    return graph


if __name__ == "__main__":
    main()
