"""PeeringDB ix / fac / net -> Facility / Facility / NetworkNode."""

from __future__ import annotations

from typing import List

from infragraph.schemas.normalized import Facility, NetworkNode, Relation
from infragraph.schemas.raw import PeeringDBRecord
from .common import (
    FieldIssues,
    clean_str,
    compact,
    geo_point,
    merge_key,
    quality_score,
    require_id,
    set_ids,
    to_int,
)

SOURCE = "peeringdb"

# Payload keys each mapping reads; anything else is dropped and counted by the normalizer
FIELDS = {
    "ix": frozenset(
        {
            "id", "name", "name_long", "city", "country", "region_continent", "latitude", "longitude",
            "media", "website", "tech_email", "policy_email", "net_count", "fac_count", "fac_set",
            "ixfac_set", "status", "updated",
        }
    ),
    "fac": frozenset(
        {
            "id", "name", "city", "country", "state", "zipcode", "address1", "latitude", "longitude",
            "clli", "npanxx", "website", "org_name", "net_count", "ix_count", "sales_email",
            "tech_email", "status", "updated",
        }
    ),
    "net": frozenset(
        {
            "id", "asn", "name", "aka", "website", "info_type", "info_scope", "info_prefixes4",
            "info_prefixes6", "irr_as_set", "policy_url", "policy_general", "policy_ratio",
            "policy_contracts", "netixlan_set", "netfac_set", "updated",
        }
    ),
}


def _ref(kind: str, ident: str) -> str:
    return f"{SOURCE}:{kind}:{ident}"


def map_ix(record: PeeringDBRecord, issues: FieldIssues) -> Facility:
    p = record.payload
    ident = require_id(p, record.ref)
    source_id = f"ix:{ident}"
    name = clean_str(p.get("name")) or f"IX {ident}"
    location = geo_point(p.get("latitude"), p.get("longitude"), "latitude/longitude", issues)
    net_count = to_int(p.get("net_count"), "net_count", issues)

    fac_ids = set_ids(p.get("fac_set"), "fac_id") or set_ids(p.get("ixfac_set"), "fac_id")
    relations: List[Relation] = [Relation(kind="located_at", target=_ref("fac", fid)) for fid in fac_ids]

    return Facility(
        facility_type="ixp",
        source=SOURCE,
        source_id=source_id,
        name=name,
        merge_key=merge_key("ixp", clean_str(p.get("name")), SOURCE, source_id),
        location=location,
        city=clean_str(p.get("city")),
        country=clean_str(p.get("country")),
        relations=relations,
        attributes=compact(
            {
                "name_long": clean_str(p.get("name_long")),
                "region_continent": clean_str(p.get("region_continent")),
                "media": clean_str(p.get("media")),
                "website": clean_str(p.get("website")),
                "tech_email": clean_str(p.get("tech_email")),
                "policy_email": clean_str(p.get("policy_email")),
                "net_count": net_count,
                "fac_count": to_int(p.get("fac_count"), "fac_count", issues),
                "status": clean_str(p.get("status")),
                "updated": clean_str(p.get("updated")),
                "data_quality": quality_score(
                    [location is not None, p.get("website"), p.get("tech_email"), (net_count or 0) > 0]
                ),
            }
        ),
    )


def map_fac(record: PeeringDBRecord, issues: FieldIssues) -> Facility:
    p = record.payload
    ident = require_id(p, record.ref)
    source_id = f"fac:{ident}"
    name = clean_str(p.get("name")) or f"Facility {ident}"
    location = geo_point(p.get("latitude"), p.get("longitude"), "latitude/longitude", issues)

    return Facility(
        facility_type="datacenter",
        source=SOURCE,
        source_id=source_id,
        name=name,
        merge_key=merge_key("facility", clean_str(p.get("name")), SOURCE, source_id),
        location=location,
        city=clean_str(p.get("city")),
        country=clean_str(p.get("country")),
        attributes=compact(
            {
                "address": clean_str(p.get("address1")),
                "state": clean_str(p.get("state")),
                "zipcode": clean_str(p.get("zipcode")),
                "clli": clean_str(p.get("clli")),
                "npanxx": clean_str(p.get("npanxx")),
                "website": clean_str(p.get("website")),
                "org_name": clean_str(p.get("org_name")),
                "net_count": to_int(p.get("net_count"), "net_count", issues),
                "ix_count": to_int(p.get("ix_count"), "ix_count", issues),
                "sales_email": clean_str(p.get("sales_email")),
                "tech_email": clean_str(p.get("tech_email")),
                "status": clean_str(p.get("status")),
                "updated": clean_str(p.get("updated")),
                "data_quality": quality_score(
                    [
                        location is not None,
                        p.get("address1"),
                        p.get("website"),
                        p.get("sales_email") or p.get("tech_email"),
                    ]
                ),
            }
        ),
    )


def map_net(record: PeeringDBRecord, issues: FieldIssues) -> NetworkNode:
    p = record.payload
    ident = require_id(p, record.ref)
    source_id = f"net:{ident}"
    asn = to_int(p.get("asn"), "asn", issues)
    if asn is not None and asn <= 0:
        issues.note("asn", f"not a valid ASN: {asn}")
        asn = None
    name = clean_str(p.get("name")) or (f"AS{asn}" if asn else f"Network {ident}")

    relations = [Relation(kind="peers_at", target=_ref("ix", i)) for i in set_ids(p.get("netixlan_set"), "ix_id")]
    relations += [Relation(kind="present_at", target=_ref("fac", f)) for f in set_ids(p.get("netfac_set"), "fac_id")]

    return NetworkNode(
        asn=asn,
        source=SOURCE,
        source_id=source_id,
        name=name,
        merge_key=f"network:as{asn}" if asn else merge_key("network", clean_str(p.get("name")), SOURCE, source_id),
        relations=relations,
        attributes=compact(
            {
                "aka": clean_str(p.get("aka")),
                "website": clean_str(p.get("website")),
                "info_type": clean_str(p.get("info_type")),
                "info_scope": clean_str(p.get("info_scope")),
                "info_prefixes4": to_int(p.get("info_prefixes4"), "info_prefixes4", issues),
                "info_prefixes6": to_int(p.get("info_prefixes6"), "info_prefixes6", issues),
                "irr_as_set": clean_str(p.get("irr_as_set")),
                "policy_url": clean_str(p.get("policy_url")),
                "policy_general": clean_str(p.get("policy_general")),
                "policy_ratio": p.get("policy_ratio") if isinstance(p.get("policy_ratio"), bool) else None,
                "policy_contracts": clean_str(p.get("policy_contracts")),
                "updated": clean_str(p.get("updated")),
            }
        ),
    )
