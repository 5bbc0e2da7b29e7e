"""Small geodesy helpers."""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, Optional, Tuple

EARTH_RADIUS_KM = 6371.0088

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def parse_coordinates(lat: Any, lng: Any) -> Optional[Tuple[float, float]]:
    """Return ``(lat, lng)`` or ``None`` for missing, non-numeric, out-of-range
    or (0, 0) placeholder values."""
    if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
        return None
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError, OverflowError):
        return None
    if math.isnan(lat_f) or math.isnan(lng_f):
        return None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        return None
    if lat_f == 0.0 and lng_f == 0.0:
        return None
    return lat_f, lng_f


def normalize_name(name: Any) -> str:
    """Fold to ASCII, lowercase and collapse punctuation/whitespace runs to '-'."""
    if name is None:
        return ""
    folded = unicodedata.normalize("NFKD", str(name)).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM.sub("-", folded.lower()).strip("-")
