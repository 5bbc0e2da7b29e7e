"""Cloudflare Radar asn / bgp_route -> NetworkNode."""

from __future__ import annotations

from typing import Any, List, Optional

from infragraph.core.errors import MalformedRecord
from infragraph.schemas.normalized import NetworkNode, Relation
from infragraph.schemas.raw import RadarRecord
from .common import FieldIssues, clean_str, compact, to_int

SOURCE = "cloudflare_radar"

FIELDS = {
    "asn": frozenset({"asn", "name", "aka", "orgName", "country", "countryName", "website", "coneSize"}),
    "bgp_route": frozenset({"prefix", "origin_asn", "as_path", "collector", "timestamp", "seen_at"}),
}


def _asn(value: Any, ref: str) -> int:
    if isinstance(value, bool):
        raise MalformedRecord(ref, f"invalid asn {value!r}")
    if isinstance(value, str) and value.upper().startswith("AS"):
        value = value[2:]
    try:
        asn = int(value)
    except (TypeError, ValueError, OverflowError):
        raise MalformedRecord(ref, f"invalid asn {value!r}") from None
    if asn <= 0:
        raise MalformedRecord(ref, f"invalid asn {value!r}")
    return asn


def map_asn(record: RadarRecord, issues: FieldIssues) -> NetworkNode:
    p = record.payload
    asn = _asn(p.get("asn"), record.ref)
    name = clean_str(p.get("name")) or clean_str(p.get("aka")) or f"AS{asn}"

    return NetworkNode(
        asn=asn,
        source=SOURCE,
        source_id=f"as:{asn}",
        name=name,
        merge_key=f"network:as{asn}",
        country=clean_str(p.get("country")),
        attributes=compact(
            {
                "aka": clean_str(p.get("aka")),
                "org_name": clean_str(p.get("orgName")),
                "country_name": clean_str(p.get("countryName")),
                "website": clean_str(p.get("website")),
                "cone_size": to_int(p.get("coneSize"), "coneSize", issues),
            }
        ),
    )


def map_bgp_route(record: RadarRecord, issues: FieldIssues) -> NetworkNode:
    p = record.payload
    if not isinstance(p, dict):
        raise MalformedRecord(record.ref, "payload is not an object")

    raw_path = p.get("as_path") or []
    if not isinstance(raw_path, list):
        issues.note("as_path", "not a list")
        raw_path = []
    path: List[int] = []
    for hop in raw_path:
        try:
            path.append(_asn(hop, record.ref))
        except MalformedRecord:
            issues.note("as_path", f"invalid hop {hop!r}")

    origin_value: Optional[Any] = p.get("origin_asn") or (path[-1] if path else None)
    if origin_value is None:
        raise MalformedRecord(record.ref, "route has neither origin_asn nor as_path")
    origin = _asn(origin_value, record.ref)
    prefix = clean_str(p.get("prefix")) or "unknown"

    # Hop immediately before the origin (path prepending repeats the origin)
    upstream = next((hop for hop in reversed(path) if hop != origin), None)
    relations = [Relation(kind="upstream", target=f"network:as{upstream}", by_key=True)] if upstream else []

    return NetworkNode(
        asn=origin,
        source=SOURCE,
        source_id=f"route:{origin}:{prefix}",
        name=f"AS{origin}",
        merge_key=f"network:as{origin}",
        relations=relations,
        attributes=compact(
            {
                "prefix": prefix,
                "as_path": path,
                "collector": clean_str(p.get("collector")),
                "seen_at": clean_str(p.get("timestamp") or p.get("seen_at")),
            }
        ),
    )
