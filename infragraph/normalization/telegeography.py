"""TeleGeography cable / landing_point -> CableLink / Facility."""

from __future__ import annotations

import math
import re
from typing import Any, List, Optional

from infragraph.schemas.normalized import CableLink, Facility, GeoPoint, Relation
from infragraph.schemas.raw import TeleGeographyRecord
from .common import (
    FieldIssues,
    clean_str,
    compact,
    geo_point,
    merge_key,
    parse_number,
    parse_year,
    quality_score,
    require_id,
    set_ids,
)

SOURCE = "telegeography"

FIELDS = {
    "cable": frozenset(
        {
            "id", "name", "color", "lines", "length", "rfs_year", "rfs", "ready_for_service", "is_planned",
            "landing_points", "owners", "owner", "design_capacity", "fiber_pairs", "url",
        }
    ),
    "landing_point": frozenset({"id", "name", "coordinates", "country", "is_tbd"}),
}

# Light in single-mode fibre travels at ~0.67c; repeaters every ~100 km add ~0.1 ms each.
_FIBRE_KM_PER_MS = 300_000 * 0.67 / 1000
_REPEATER_SPACING_KM = 100
_REPEATER_DELAY_MS = 0.1

_CAPACITY = re.compile(r"([\d.]+)\s*(Tbps|Gbps)", re.IGNORECASE)


def parse_capacity_gbps(value: Any) -> Optional[float]:
    if not value:
        return None
    match = _CAPACITY.search(str(value))
    if not match:
        return None
    try:
        amount = float(match.group(1))
    except ValueError:
        return None
    if not math.isfinite(amount):
        return None
    return amount * 1000 if match.group(2).lower() == "tbps" else amount


def estimate_latency_ms(length_km: Optional[float]) -> Optional[float]:
    if not length_km:
        return None
    repeaters = int(length_km // _REPEATER_SPACING_KM)
    return round(length_km / _FIBRE_KM_PER_MS + repeaters * _REPEATER_DELAY_MS, 3)


def cable_status(rfs_year: Optional[int], is_planned: Any, current_year: int) -> str:
    if is_planned is True and (rfs_year is None or rfs_year >= current_year):
        return "planned"
    if rfs_year is None:
        return "unknown"
    if rfs_year > current_year:
        return "planned"
    if rfs_year == current_year:
        return "launching"
    if current_year - rfs_year > 20:
        return "aging"
    return "operational"


def _owners(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def _path(lines: Any, issues: FieldIssues) -> List[List[GeoPoint]]:
    path: List[List[GeoPoint]] = []
    if not isinstance(lines, list):
        if lines is not None:
            issues.note("coordinates", "not a list of lines")
        return path
    dropped = 0
    for line in lines:
        points: List[GeoPoint] = []
        for vertex in line if isinstance(line, list) else []:
            point = None
            if isinstance(vertex, (list, tuple)) and len(vertex) >= 2:
                # GeoJSON order is [lng, lat]
                point = geo_point(vertex[1], vertex[0], "coordinates", FieldIssues())
            if point is None:
                dropped += 1
            else:
                points.append(point)
        if points:
            path.append(points)
    if dropped:
        issues.note("coordinates", f"dropped {dropped} invalid vertices")
    return path


def map_cable(record: TeleGeographyRecord, issues: FieldIssues) -> CableLink:
    p = record.payload
    ident = require_id(p, record.ref)
    source_id = f"cable:{ident}"
    name = clean_str(p.get("name")) or ident

    path = _path(p.get("lines"), issues)
    length_km = parse_number(p.get("length"))
    if length_km is None and p.get("length") not in (None, ""):
        issues.note("length", f"not a finite length: {p.get('length')!r}")
    rfs_year = parse_year(p.get("rfs_year")) or parse_year(p.get("rfs")) or parse_year(p.get("ready_for_service"))
    landing_ids = set_ids(p.get("landing_points"), "id")
    owners = _owners(p.get("owners") or p.get("owner"))
    capacity = parse_capacity_gbps(p.get("design_capacity"))

    return CableLink(
        source=SOURCE,
        source_id=source_id,
        name=name,
        merge_key=merge_key("cable", clean_str(p.get("name")), SOURCE, source_id),
        path=path,
        relations=[Relation(kind="lands_at", target=f"{SOURCE}:landing_point:{lp}") for lp in landing_ids],
        attributes=compact(
            {
                "color": clean_str(p.get("color")),
                "length_km": length_km,
                "rfs_year": rfs_year,
                "owners": owners,
                "capacity_gbps": capacity,
                "fiber_pairs": clean_str(p.get("fiber_pairs")),
                "url": clean_str(p.get("url")),
                "landing_point_count": len(landing_ids) or None,
                "estimated_latency_ms": estimate_latency_ms(length_km),
                "status": cable_status(rfs_year, p.get("is_planned"), record.fetched_at.year),
                "data_quality": quality_score(
                    [bool(path), len(landing_ids) >= 2, capacity is not None, bool(owners), rfs_year is not None]
                ),
            }
        ),
    )


def map_landing_point(record: TeleGeographyRecord, issues: FieldIssues) -> Facility:
    p = record.payload
    ident = require_id(p, record.ref)
    source_id = f"landing_point:{ident}"
    name = clean_str(p.get("name")) or ident

    location = None
    coords = p.get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) >= 2:
        location = geo_point(coords[1], coords[0], "coordinates", issues)
    elif coords is not None:
        issues.note("coordinates", f"not a [lng, lat] pair: {coords!r}")

    # Names look like "Marseille, France"
    city, _, country = name.rpartition(",")
    city, country = (city.strip(), country.strip()) if city else (name, None)

    return Facility(
        facility_type="landing_point",
        source=SOURCE,
        source_id=source_id,
        name=name,
        merge_key=merge_key("facility", clean_str(p.get("name")), SOURCE, source_id),
        location=location,
        city=city or None,
        country=clean_str(p.get("country")) or country or None,
        attributes=compact({"is_tbd": p.get("is_tbd") if isinstance(p.get("is_tbd"), bool) else None}),
    )
