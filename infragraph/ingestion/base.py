"""Abstract provider client.

A provider turns a query into a lazy stream of ``RawRecord``s. Every HTTP GET
goes through ``_get``: cache lookup first, then the request under the
provider's circuit breaker and the shared ``BackoffPolicy``, then
classification of the outcome into the error taxonomy. When the provider is
unavailable, the last cached copy of that response is served marked stale.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import random
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, NamedTuple, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.backoff import Sleep
from infragraph.core.cache import ResponseCache
from infragraph.core.circuit import CircuitBreaker
from infragraph.core.errors import (
    CircuitOpen,
    PermanentError,
    ProviderUnavailable,
    RateLimited,
    TransientError,
)
from infragraph.core.logging import get_logger
from infragraph.schemas.raw import RawRecord, RawResponse

USER_AGENT = "infragraph/1.0"

_record_adapter: TypeAdapter = TypeAdapter(RawRecord)


class ProviderQuery(BaseModel):
    """Filters understood by the providers; each provider ignores what it cannot apply."""

    model_config = ConfigDict(frozen=True)

    country: Optional[str] = None
    city: Optional[str] = None
    asn: Optional[int] = None
    name: Optional[str] = None
    prefixes: List[str] = Field(default_factory=list)
    max_pages: Optional[int] = Field(None, ge=1)


class Page(NamedTuple):
    kind: str
    response: RawResponse
    items: List[Dict[str, Any]]


def request_signature(provider: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Stable cache key for a GET request."""
    canonical = json.dumps(
        [provider, path.strip("/"), sorted((str(k), str(v)) for k, v in (params or {}).items())],
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class BaseProvider(ABC):
    """Abstract base class for provider clients."""

    name: str
    base_url: str

    def __init__(
        self,
        cache: ResponseCache,
        config: Optional[AggregatorConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        *,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.cache = cache
        self.config = config or AggregatorConfig()
        self._client = client
        self._sleep = sleep
        self._rng = rng
        self.breaker: CircuitBreaker = self.config.circuit.build(self.name)
        self.log = get_logger(f"ingestion.{self.name}")

    # -------------------------------------------------------------------------
    # Provider-specific shaping
    # -------------------------------------------------------------------------
    def headers(self) -> Dict[str, str]:
        return {"User-Agent": USER_AGENT, "Accept": "application/json"}

    def check_body(self, body: Any, path: str) -> None:
        """Raise ``PermanentError`` for a 200 response whose body reports failure."""

    @abstractmethod
    def pages(self, http: httpx.AsyncClient, query: ProviderQuery) -> AsyncIterator[Page]:
        """Yield pages in request order, one request at a time."""

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    async def fetch(self, query: Optional[ProviderQuery] = None) -> AsyncIterator[RawRecord]:
        """Stream records page by page. Each call starts again from the first page."""
        query = query or ProviderQuery()
        count = 0
        async with self._http() as http:
            async for page in self.pages(http, query):
                for item in page.items:
                    count += 1
                    yield _record_adapter.validate_python(
                        {
                            "provider": self.name,
                            "kind": page.kind,
                            "payload": item,
                            "signature": page.response.signature,
                            "fetched_at": page.response.fetched_at,
                            "stale": page.response.stale,
                        }
                    )
        self.log.info(f"Fetched {count} records from {self.name}")

    async def fetch_all(self, query: Optional[ProviderQuery] = None) -> List[RawRecord]:
        return [record async for record in self.fetch(query)]

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------
    def _http(self) -> "_ClientScope":
        return _ClientScope(self._client, self.config.request_timeout)

    def url_for(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def max_pages(self, query: ProviderQuery) -> int:
        return query.max_pages or self.config.max_pages

    async def _get(
        self, http: httpx.AsyncClient, path: str, params: Optional[Dict[str, Any]] = None
    ) -> RawResponse:
        params = dict(params or {})
        signature = request_signature(self.name, path, params)

        cached = self.cache.get(signature)
        if cached is not None:
            self.log.debug(f"Cache hit for {path} {params}")
            return cached

        try:
            return await self._guarded(http, path, params, signature)
        except (ProviderUnavailable, CircuitOpen) as exc:
            stale = self.cache.get_stale(signature) if self.config.serve_stale else None
            if stale is None:
                raise
            self.log.warning(f"Serving stale {path} from {stale.fetched_at.isoformat()}: {exc.message}")
            return stale.model_copy(update={"stale": True})

    async def _guarded(
        self, http: httpx.AsyncClient, path: str, params: Dict[str, Any], signature: str
    ) -> RawResponse:
        self.breaker.before_call()
        try:
            raw = await self.config.backoff.run(
                self.name,
                lambda: self._request(http, path, params, signature),
                sleep=self._sleep,
                rng=self._rng,
            )
        except ProviderUnavailable:
            self.breaker.record_failure()
            raise
        self.breaker.record_success()
        return raw

    async def _request(
        self, http: httpx.AsyncClient, path: str, params: Dict[str, Any], signature: str
    ) -> RawResponse:
        url = self.url_for(path)
        try:
            resp = await http.get(
                url, params=params, headers=self.headers(), timeout=self.config.request_timeout
            )
        except httpx.TimeoutException as exc:
            raise TransientError(self.name, f"timeout requesting {path}: {exc!r}") from exc
        except httpx.TransportError as exc:
            raise TransientError(self.name, f"network error requesting {path}: {exc!r}") from exc

        status = resp.status_code
        if status == 429:
            raise RateLimited(
                self.name,
                f"rate limited on {path}",
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )
        if status >= 500:
            raise TransientError(self.name, f"HTTP {status} from {path}")
        if status >= 400:
            self.cache.invalidate(signature)
            raise PermanentError(self.name, f"HTTP {status} from {path}", status_code=status)

        try:
            body = resp.json()
        except ValueError as exc:
            raise PermanentError(self.name, f"non-JSON body from {path}", status_code=status) from exc
        self.check_body(body, path)

        raw = RawResponse(
            provider=self.name,
            signature=signature,
            path=path,
            params=params,
            fetched_at=datetime.now(timezone.utc),
            body=body,
        )

        cache_control = resp.headers.get("Cache-Control", "").lower()
        if "no-store" in cache_control or "no-cache" in cache_control:
            self.cache.invalidate(signature)
        else:
            self.cache.put(signature, raw, self.config.ttl_for(self.name))
        return raw


class _ClientScope:
    """Use the injected client as-is, or open (and close) a private one."""

    def __init__(self, client: Optional[httpx.AsyncClient], timeout: float):
        self._given = client
        self._owned: Optional[httpx.AsyncClient] = None
        self._timeout = timeout

    async def __aenter__(self) -> httpx.AsyncClient:
        if self._given is not None:
            return self._given
        self._owned = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._owned

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._owned is not None:
            await self._owned.aclose()
            self._owned = None
