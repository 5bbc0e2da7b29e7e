"""PeeringDB source implementation: IXPs, facilities and networks."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List

import httpx

from infragraph.core.errors import PermanentError
from .base import BaseProvider, Page, ProviderQuery

PEERINGDB_BASE_URL = "https://api.peeringdb.com/api"


class PeeringDBProvider(BaseProvider):
    """Fetches IXPs, facilities and networks from PeeringDB.

    Lists are paginated with ``limit``/``skip``; ``depth=2`` expands the
    ``*_set`` relations so the normalizer can build edges without extra calls.
    """

    name = "peeringdb"
    base_url = PEERINGDB_BASE_URL

    endpoints = ("ix", "fac", "net")

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        if self.config.peeringdb_api_key:
            headers["Authorization"] = f"Api-Key {self.config.peeringdb_api_key}"
        return headers

    @staticmethod
    def build_filters(kind: str, query: ProviderQuery) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if query.country:
            params["country"] = query.country
        if query.city and kind != "net":
            params["city"] = query.city
        if query.asn and kind == "net":
            params["asn"] = query.asn
        if query.name:
            params["name__contains"] = query.name
        return params

    def check_body(self, body: Any, path: str) -> None:
        if not isinstance(body, dict) or not isinstance(body.get("data"), list):
            raise PermanentError(self.name, f"unexpected body shape from {path}")

    async def pages(self, http: httpx.AsyncClient, query: ProviderQuery) -> AsyncIterator[Page]:
        limit = self.config.page_size
        for kind in self.endpoints:
            filters = self.build_filters(kind, query)
            for page_no in range(self.max_pages(query)):
                params = {"depth": 2, "limit": limit, "skip": page_no * limit, **filters}
                response = await self._get(http, kind, params)
                items: List[Dict[str, Any]] = [
                    item for item in response.body.get("data", []) if isinstance(item, dict)
                ]
                yield Page(kind, response, items)
                if len(response.body.get("data", [])) < limit:
                    break
