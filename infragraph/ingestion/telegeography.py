"""TeleGeography submarine cable map source implementation."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List

import httpx

from infragraph.core.errors import PermanentError
from .base import BaseProvider, Page, ProviderQuery

TELEGEOGRAPHY_BASE_URL = (
    "https://raw.githubusercontent.com/telegeography/www.submarinecablemap.com/master/web/public/api/v3"
)


class TeleGeographyProvider(BaseProvider):
    """Reads the static submarine cable feed.

    The feed is not paginated. Cable geometry arrives as one GeoJSON feature per
    segment, so segments sharing an id are folded into one record. With
    ``telegeography_cable_details`` on, each cable's detail document is fetched
    in turn and merged in (landing points, owners, length, RFS).
    """

    name = "telegeography"
    base_url = TELEGEOGRAPHY_BASE_URL

    cables_path = "cable/cable-geo.json"
    landing_points_path = "landing-point/landing-point-geo.json"

    def check_body(self, body: Any, path: str) -> None:
        if path.endswith("-geo.json"):
            if not isinstance(body, dict) or not isinstance(body.get("features"), list):
                raise PermanentError(self.name, f"expected a FeatureCollection from {path}")
        elif not isinstance(body, dict):
            raise PermanentError(self.name, f"unexpected body shape from {path}")

    @staticmethod
    def group_cable_features(features: List[Any]) -> List[Dict[str, Any]]:
        """One record per cable id, with every segment's lines concatenated in feed order."""
        grouped: Dict[str, Dict[str, Any]] = {}
        for feature in features:
            if not isinstance(feature, dict):
                continue
            props = feature.get("properties") or {}
            cable_id = props.get("id")
            if not cable_id:
                grouped[f"__anon_{len(grouped)}"] = {**props, "lines": []}
                continue
            entry = grouped.setdefault(str(cable_id), {**props, "lines": []})
            geometry = feature.get("geometry") or {}
            coords = geometry.get("coordinates") or []
            if geometry.get("type") == "LineString":
                entry["lines"].append(coords)
            elif geometry.get("type") == "MultiLineString":
                entry["lines"].extend(coords)
        return list(grouped.values())

    @staticmethod
    def landing_point_records(features: List[Any]) -> List[Dict[str, Any]]:
        records = []
        for feature in features:
            if not isinstance(feature, dict):
                continue
            props = dict(feature.get("properties") or {})
            geometry = feature.get("geometry") or {}
            if geometry.get("type") == "Point":
                props["coordinates"] = geometry.get("coordinates")
            records.append(props)
        return records

    @staticmethod
    def _matches(item: Dict[str, Any], query: ProviderQuery) -> bool:
        if query.name and query.name.lower() not in str(item.get("name", "")).lower():
            return False
        return True

    async def pages(self, http: httpx.AsyncClient, query: ProviderQuery) -> AsyncIterator[Page]:
        response = await self._get(http, self.cables_path)
        cables = [c for c in self.group_cable_features(response.body["features"]) if self._matches(c, query)]

        if self.config.telegeography_cable_details:
            cables = [await self._with_details(http, cable) for cable in cables]
        yield Page("cable", response, cables)

        response = await self._get(http, self.landing_points_path)
        points = [p for p in self.landing_point_records(response.body["features"]) if self._matches(p, query)]
        yield Page("landing_point", response, points)

    async def _with_details(self, http: httpx.AsyncClient, cable: Dict[str, Any]) -> Dict[str, Any]:
        cable_id = cable.get("id")
        if not cable_id:
            return cable
        try:
            detail = await self._get(http, f"cable/{cable_id}.json")
        except PermanentError as exc:
            # One missing detail document should not cost us the whole feed
            self.log.warning(f"No detail for cable {cable_id}: {exc.message}")
            return cable
        return {**detail.body, **cable}
