from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from infragraph.schemas.normalized import Edge, NormalizedEntity


class GraphResponse(BaseModel):
    request_id: str
    api_latency_ms: int
    run_id: Optional[str] = None
    generated_at: Optional[datetime] = None
    providers: List[str]
    failed_providers: Dict[str, str]
    stale_providers: List[str] = []
    partial: bool
    node_count: int
    edge_count: int
    nodes: Dict[str, NormalizedEntity]
    edges: List[Edge]


class HealthResponse(BaseModel):
    status: str
    cache: str
    last_run_status: str | None
    last_run_at: datetime | None = None
    snapshot_available: bool
    circuits: Dict[str, str] = {}


class RunTriggerRequest(BaseModel):
    providers: Optional[List[str]] = None


class RunTriggerResponse(BaseModel):
    success: bool
    run_id: str | None = None
    providers: List[str] = []
    failed_providers: Dict[str, str] = {}
    stale_providers: List[str] = []
    node_count: int = 0
    edge_count: int = 0
    error: str | None = None


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    expired: int
    evictions: int
    writes: int
    stale_hits: int = 0
    entries: int
    stale_entries: int = 0
    hit_rate: float


class InvalidateResponse(BaseModel):
    provider: str
    evicted: int
