"""Maps raw provider records onto the shared entity model.

A bad record is logged, recorded as a ``NormalizationIssue`` and skipped. It
never aborts the batch. Bad fields inside an otherwise good record are dropped
and recorded the same way, and the entity survives without them. Payload keys
no mapping reads are dropped too; they are counted per provider and reported
once per batch by ``report_unknown_fields``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from infragraph.core.errors import MalformedRecord
from infragraph.core.logging import get_logger
from infragraph.normalization import cloudflare_radar, peeringdb, telegeography
from infragraph.normalization.common import FieldIssues
from infragraph.schemas.normalized import NormalizedEntity
from infragraph.schemas.raw import RawRecord

log = get_logger("normalizer")

Mapper = Callable[[RawRecord, FieldIssues], NormalizedEntity]

MAPPERS: Dict[Tuple[str, str], Mapper] = {
    ("peeringdb", "ix"): peeringdb.map_ix,
    ("peeringdb", "fac"): peeringdb.map_fac,
    ("peeringdb", "net"): peeringdb.map_net,
    ("cloudflare_radar", "asn"): cloudflare_radar.map_asn,
    ("cloudflare_radar", "bgp_route"): cloudflare_radar.map_bgp_route,
    ("telegeography", "cable"): telegeography.map_cable,
    ("telegeography", "landing_point"): telegeography.map_landing_point,
}

KNOWN_FIELDS: Dict[Tuple[str, str], FrozenSet[str]] = {
    (module.SOURCE, kind): fields
    for module in (peeringdb, cloudflare_radar, telegeography)
    for kind, fields in module.FIELDS.items()
}


@dataclass(frozen=True)
class NormalizationIssue:
    provider: str
    ref: str
    field: Optional[str]  # None when the whole record was skipped
    reason: str


class Normalizer:
    def __init__(
        self,
        mappers: Optional[Dict[Tuple[str, str], Mapper]] = None,
        known_fields: Optional[Dict[Tuple[str, str], FrozenSet[str]]] = None,
    ):
        self.mappers = dict(mappers or MAPPERS)
        self.known_fields = dict(KNOWN_FIELDS if known_fields is None else known_fields)
        self.issues: List[NormalizationIssue] = []
        self.skipped = 0
        self.unknown_fields: Dict[str, Counter] = {}

    def normalize(self, record: RawRecord) -> Optional[NormalizedEntity]:
        """Return the entity for ``record``, or None when it has to be skipped. Never raises."""
        mapper = self.mappers.get((record.provider, record.kind))
        if mapper is None:
            self._skip(MalformedRecord(record.ref, f"no mapping for {record.provider}/{record.kind}"), record)
            return None

        issues = FieldIssues()
        try:
            entity = mapper(record, issues)
        except MalformedRecord as exc:
            self._skip(exc, record)
            return None
        except Exception as exc:  # noqa: BLE001
            self._skip(MalformedRecord(record.ref, f"{type(exc).__name__}: {exc}"), record)
            return None

        for field, reason in issues:
            log.warning(f"Dropped field {field} of {record.ref}: {reason}")
            self.issues.append(NormalizationIssue(record.provider, record.ref, field, reason))
        self._count_unknown(record)
        return entity

    def normalize_many(self, records: Iterable[RawRecord]) -> List[NormalizedEntity]:
        entities: List[NormalizedEntity] = []
        for record in records:
            entity = self.normalize(record)
            if entity is not None:
                entities.append(entity)
        return entities

    def report_unknown_fields(self, provider: str) -> Dict[str, int]:
        """Log one warning listing the unknown keys seen for ``provider``; returns their counts."""
        counts = dict(sorted(self.unknown_fields.get(provider, Counter()).items()))
        if counts:
            log.warning(f"Dropped unknown fields from {provider}: {counts}")
        return counts

    def reset(self) -> None:
        self.issues = []
        self.skipped = 0
        self.unknown_fields = {}

    def _count_unknown(self, record: RawRecord) -> None:
        known = self.known_fields.get((record.provider, record.kind))
        if known is None:
            return
        unknown = [key for key in record.payload if key not in known]
        if unknown:
            self.unknown_fields.setdefault(record.provider, Counter()).update(unknown)

    def _skip(self, exc: MalformedRecord, record: RawRecord) -> None:
        self.skipped += 1
        log.warning(f"Skipping malformed record {exc.ref}: {exc.reason}")
        self.issues.append(NormalizationIssue(record.provider, exc.ref, None, exc.reason))
