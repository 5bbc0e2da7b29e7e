"""Provider name -> client class lookup."""

from __future__ import annotations

import asyncio
import random
from typing import Dict, Optional, Type

import httpx

from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.backoff import Sleep
from infragraph.core.cache import ResponseCache
from .base import BaseProvider
from .cloudflare_radar import CloudflareRadarProvider
from .peeringdb import PeeringDBProvider
from .telegeography import TeleGeographyProvider

PROVIDER_CLASSES: Dict[str, Type[BaseProvider]] = {
    PeeringDBProvider.name: PeeringDBProvider,
    CloudflareRadarProvider.name: CloudflareRadarProvider,
    TeleGeographyProvider.name: TeleGeographyProvider,
}


def build_providers(
    cache: ResponseCache,
    config: AggregatorConfig,
    client: Optional[httpx.AsyncClient] = None,
    *,
    sleep: Sleep = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> Dict[str, BaseProvider]:
    """One client per configured provider, all sharing ``cache``."""
    providers: Dict[str, BaseProvider] = {}
    for name in config.providers:
        try:
            cls = PROVIDER_CLASSES[name]
        except KeyError:
            raise ValueError(f"Unsupported provider: {name}") from None
        providers[name] = cls(cache, config, client, sleep=sleep, rng=rng)
    return providers
