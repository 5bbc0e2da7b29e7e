"""Cloudflare Radar source implementation: autonomous systems and BGP routes."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List

import httpx

from infragraph.core.errors import PermanentError
from .base import BaseProvider, Page, ProviderQuery

RADAR_BASE_URL = "https://api.cloudflare.com/client/v4/radar"


class CloudflareRadarProvider(BaseProvider):
    """Fetches AS entities (paginated) and, for requested prefixes, live BGP routes.

    Radar rejects anonymous calls, so a missing token is a permanent error.
    """

    name = "cloudflare_radar"
    base_url = RADAR_BASE_URL

    asns_path = "entities/asns"
    routes_path = "bgp/routes/realtime"

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        if self.config.cloudflare_radar_token:
            headers["Authorization"] = f"Bearer {self.config.cloudflare_radar_token}"
        return headers

    def check_body(self, body: Any, path: str) -> None:
        if not isinstance(body, dict):
            raise PermanentError(self.name, f"unexpected body shape from {path}")
        if body.get("success") is False:
            errors = body.get("errors") or []
            detail = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
            raise PermanentError(self.name, f"API error from {path}: {detail or 'unknown'}")
        if not isinstance(body.get("result"), dict):
            raise PermanentError(self.name, f"missing result in body from {path}")

    async def pages(self, http: httpx.AsyncClient, query: ProviderQuery) -> AsyncIterator[Page]:
        if not self.config.cloudflare_radar_token:
            raise PermanentError(self.name, "Cloudflare Radar API token required")

        limit = self.config.page_size
        base_params: Dict[str, Any] = {"format": "json"}
        if query.country:
            base_params["location"] = query.country
        if query.asn:
            base_params["asn"] = query.asn

        for page_no in range(self.max_pages(query)):
            params = {**base_params, "limit": limit, "offset": page_no * limit}
            response = await self._get(http, self.asns_path, params)
            asns = response.body["result"].get("asns") or []
            yield Page("asn", response, [item for item in asns if isinstance(item, dict)])
            if len(asns) < limit:
                break

        for prefix in query.prefixes:
            response = await self._get(http, self.routes_path, {"format": "json", "prefix": prefix})
            routes: List[Dict[str, Any]] = [
                {**route, "prefix": route.get("prefix") or prefix}
                for route in response.body["result"].get("routes") or []
                if isinstance(route, dict)
            ]
            yield Page("bgp_route", response, routes)
