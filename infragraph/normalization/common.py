"""Helpers shared by the per-provider mapping functions."""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, List, Optional, Tuple

from infragraph.core.errors import MalformedRecord
from infragraph.core.geo import normalize_name, parse_coordinates
from infragraph.schemas.normalized import GeoPoint

_NUMBER = re.compile(r"[-+]?\d[\d,]*(?:\.\d+)?")
_YEAR = re.compile(r"\b(1[89]\d{2}|2\d{3})\b")


class FieldIssues:
    """Fields dropped while mapping one record."""

    def __init__(self) -> None:
        self.items: List[Tuple[str, str]] = []

    def note(self, field: str, reason: str) -> None:
        self.items.append((field, reason))

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


def require_id(payload: Any, ref: str, field: str = "id") -> str:
    if not isinstance(payload, dict):
        raise MalformedRecord(ref, "payload is not an object")
    value = payload.get(field)
    if value is None or value == "" or isinstance(value, (dict, list, bool)):
        raise MalformedRecord(ref, f"missing or invalid '{field}'")
    return str(value)


def clean_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def to_int(value: Any, field: str, issues: FieldIssues) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not math.isfinite(value)):
        issues.note(field, f"not an integer: {value!r}")
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        issues.note(field, f"not an integer: {value!r}")
        return None


def parse_number(value: Any) -> Optional[float]:
    """First finite number in a value like ``"6,605 km"`` or ``42``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        match = _NUMBER.search(str(value))
        if not match:
            return None
        number = float(match.group(0).replace(",", ""))
    return number if math.isfinite(number) else None


def parse_year(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _YEAR.search(str(value))
    return int(match.group(1)) if match else None


def geo_point(lat: Any, lng: Any, field: str, issues: FieldIssues) -> Optional[GeoPoint]:
    """A GeoPoint, or None. Values that are present but unusable are recorded."""
    if lat in (None, "") and lng in (None, ""):
        return None
    coords = parse_coordinates(lat, lng)
    if coords is None:
        issues.note(field, f"invalid coordinates ({lat!r}, {lng!r})")
        return None
    return GeoPoint(lat=coords[0], lng=coords[1])


def merge_key(prefix: str, name: Optional[str], source: str, source_id: str) -> str:
    slug = normalize_name(name)
    if slug:
        return f"{prefix}:{slug}"
    return f"{prefix}:{source}-{normalize_name(source_id) or 'unnamed'}"


def quality_score(checks: Iterable[bool]) -> float:
    """Share of truthy completeness checks, rounded to 2 places."""
    checks = list(checks)
    if not checks:
        return 0.0
    return round(sum(1 for ok in checks if ok) / len(checks), 2)


def set_ids(entries: Any, key: str) -> List[str]:
    """Ids from a PeeringDB ``*_set``: either bare ids or objects carrying ``key``."""
    ids: List[str] = []
    if not isinstance(entries, list):
        return ids
    for entry in entries:
        if isinstance(entry, dict):
            value = entry.get(key)
        else:
            value = entry
        if value is None or isinstance(value, (bool, dict, list)):
            continue
        ids.append(str(value))
    return ids


def compact(attributes: dict) -> dict:
    """Drop unset values so that merging can fill them from other providers."""
    return {k: v for k, v in attributes.items() if v is not None and v != "" and v != []}
