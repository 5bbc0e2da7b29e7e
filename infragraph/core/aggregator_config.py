"""Immutable configuration handed to an Aggregator at construction."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from infragraph.core.backoff import BackoffPolicy
from infragraph.core.circuit import CircuitPolicy
from infragraph.core.config import Settings, settings as default_settings
from infragraph.schemas.raw import PROVIDER_NAMES

DEFAULT_PRECEDENCE: Tuple[str, ...] = ("peeringdb", "telegeography", "cloudflare_radar")

DEFAULT_CACHE_TTL: Dict[str, float] = {
    "peeringdb": 7 * 24 * 3600,
    "telegeography": 30 * 24 * 3600,
    "cloudflare_radar": 5 * 60,
}


class AggregatorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    providers: Tuple[str, ...] = PROVIDER_NAMES
    precedence: Tuple[str, ...] = DEFAULT_PRECEDENCE
    cache_ttl: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_CACHE_TTL))
    merge_radius_km: float = Field(50.0, gt=0)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    circuit: CircuitPolicy = Field(default_factory=CircuitPolicy)
    serve_stale: bool = True
    request_timeout: float = Field(30.0, gt=0)
    page_size: int = Field(250, ge=1)
    max_pages: int = Field(20, ge=1)
    cloudflare_radar_token: Optional[str] = None
    peeringdb_api_key: Optional[str] = None
    telegeography_cable_details: bool = False

    @field_validator("providers", "precedence")
    @classmethod
    def _known_providers(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        unknown = [name for name in value if name not in PROVIDER_NAMES]
        if unknown:
            raise ValueError(f"unknown providers: {', '.join(unknown)}")
        if len(set(value)) != len(value):
            raise ValueError("provider names must be unique")
        return value

    @field_validator("precedence")
    @classmethod
    def _complete_precedence(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        # Providers missing from the precedence list rank last, in declaration order.
        return value + tuple(name for name in PROVIDER_NAMES if name not in value)

    def rank(self, provider: str) -> int:
        """Lower rank wins conflicts."""
        try:
            return self.precedence.index(provider)
        except ValueError:
            return len(self.precedence)

    def ttl_for(self, provider: str) -> float:
        return self.cache_ttl.get(provider, DEFAULT_CACHE_TTL.get(provider, 300.0))

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "AggregatorConfig":
        s = s or default_settings
        return cls(
            providers=tuple(s.PROVIDERS),
            precedence=tuple(s.PROVIDER_PRECEDENCE),
            cache_ttl={
                "peeringdb": s.PEERINGDB_CACHE_TTL_SECONDS,
                "telegeography": s.TELEGEOGRAPHY_CACHE_TTL_SECONDS,
                "cloudflare_radar": s.CLOUDFLARE_RADAR_CACHE_TTL_SECONDS,
            },
            merge_radius_km=s.MERGE_RADIUS_KM,
            backoff=BackoffPolicy(
                base_delay=s.BACKOFF_BASE_SECONDS,
                max_delay=s.BACKOFF_MAX_SECONDS,
                jitter=s.BACKOFF_JITTER,
                max_retries=s.BACKOFF_MAX_RETRIES,
            ),
            circuit=CircuitPolicy(
                failure_threshold=s.CIRCUIT_FAILURE_THRESHOLD,
                reset_timeout=s.CIRCUIT_RESET_SECONDS,
                success_threshold=s.CIRCUIT_SUCCESS_THRESHOLD,
            ),
            serve_stale=s.SERVE_STALE_ON_ERROR,
            request_timeout=s.REQUEST_TIMEOUT_SECONDS,
            page_size=s.PAGE_SIZE,
            max_pages=s.MAX_PAGES,
            cloudflare_radar_token=s.CLOUDFLARE_RADAR_TOKEN,
            peeringdb_api_key=s.PEERINGDB_API_KEY,
            telegeography_cable_details=s.TELEGEOGRAPHY_CABLE_DETAILS,
        )
