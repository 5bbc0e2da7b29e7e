"""Merges normalized entities from every provider into one EntityGraph.

Identity resolution:

1. Entities are put in a canonical order: provider precedence, then source,
   kind and source id, then a content fingerprint. Everything below depends
   only on that order, so the input order never matters.
2. Copies of the same source ref collapse into one.
3. Entities with the same merge key are clustered greedily. An entity joins
   the first cluster whose anchor lies within ``merge_radius_km``. If either
   side has no coordinates, the merge key alone decides.
4. The first member of a cluster (the highest precedence) survives. The other
   members only fill gaps: attributes, location and hints the survivor lacks.
5. Relations are rewritten to canonical ids. Relations whose target is
   unknown, and self-loops created by merging, are dropped.
"""

from __future__ import annotations

import json
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.geo import haversine_km
from infragraph.core.logging import get_logger
from infragraph.schemas.normalized import Edge, EntityGraph, NormalizedEntity, Relation

log = get_logger("graph_builder")


def _fingerprint(entity: NormalizedEntity) -> str:
    return json.dumps(entity.model_dump(mode="json"), sort_keys=True, default=str)


def _relation_key(relation: Relation) -> Tuple[str, str, bool]:
    return (relation.kind, relation.target, relation.by_key)


class EntityGraphBuilder:
    def __init__(self, config: Optional[AggregatorConfig] = None):
        self.config = config or AggregatorConfig()
        self.last_stats: Dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def merge(self, entities: Iterable[NormalizedEntity]) -> EntityGraph:
        ordered = sorted(entities, key=self._order_key)
        unique = self._collapse_duplicates(ordered)

        groups: Dict[Tuple[str, str], List[NormalizedEntity]] = defaultdict(list)
        for entity in unique:
            groups[(entity.kind, entity.merge_key)].append(entity)

        nodes: Dict[str, NormalizedEntity] = {}
        by_ref: Dict[str, str] = {}
        by_key: Dict[str, Set[str]] = defaultdict(set)

        for group_key in sorted(groups):
            for cluster in self._cluster(groups[group_key]):
                node = self._fold(cluster)
                cid = self._canonical_id(node, nodes)
                nodes[cid] = node
                for ref in node.aliases:
                    by_ref[ref] = cid
                by_key[node.merge_key].add(cid)

        edges: Set[Edge] = set()
        dropped = 0
        for cid, node in nodes.items():
            for relation in node.relations:
                target = self._resolve(relation, by_ref, by_key)
                if target is None or target == cid:
                    dropped += 1
                    continue
                edges.add(Edge(source=cid, target=target, kind=relation.kind))

        self.last_stats = {
            "input": len(ordered),
            "unique": len(unique),
            "nodes": len(nodes),
            "edges": len(edges),
            "dropped_relations": dropped,
        }
        log.debug(f"Merged entities: {self.last_stats}")

        return EntityGraph(
            nodes=dict(sorted(nodes.items())),
            edges=sorted(edges, key=Edge.sort_key),
        )

    # -------------------------------------------------------------------------
    # Ordering & identity
    # -------------------------------------------------------------------------
    def _order_key(self, entity: NormalizedEntity) -> Tuple[Any, ...]:
        return (
            self.config.rank(entity.source),
            entity.source,
            entity.kind,
            entity.source_id,
            _fingerprint(entity),
        )

    def _collapse_duplicates(self, ordered: Sequence[NormalizedEntity]) -> List[NormalizedEntity]:
        unique: List[NormalizedEntity] = []
        run: List[NormalizedEntity] = []
        for entity in ordered:
            if run and (entity.source, entity.kind, entity.source_id) != (run[0].source, run[0].kind, run[0].source_id):
                unique.append(self._fold(run))
                run = []
            run.append(entity)
        if run:
            unique.append(self._fold(run))
        return unique

    def _near(self, anchor: NormalizedEntity, entity: NormalizedEntity) -> bool:
        if anchor.location is None or entity.location is None:
            return True
        distance = haversine_km(anchor.location.lat, anchor.location.lng, entity.location.lat, entity.location.lng)
        return distance <= self.config.merge_radius_km

    def _cluster(self, members: Sequence[NormalizedEntity]) -> List[List[NormalizedEntity]]:
        clusters: List[List[NormalizedEntity]] = []
        for entity in members:
            for cluster in clusters:
                if self._near(cluster[0], entity):
                    cluster.append(entity)
                    break
            else:
                clusters.append([entity])
        return clusters

    @staticmethod
    def _canonical_id(node: NormalizedEntity, taken: Dict[str, NormalizedEntity]) -> str:
        cid = f"{node.source}:{node.merge_key}"
        if cid in taken:
            cid = f"{cid}@{node.source_id}"
        return cid

    @staticmethod
    def _resolve(relation: Relation, by_ref: Dict[str, str], by_key: Dict[str, Set[str]]) -> Optional[str]:
        if relation.by_key:
            candidates = by_key.get(relation.target) or set()
            # Ambiguous keys (same name, far apart) cannot be resolved safely
            return next(iter(candidates)) if len(candidates) == 1 else None
        return by_ref.get(relation.target)

    # -------------------------------------------------------------------------
    # Folding a cluster into its survivor
    # -------------------------------------------------------------------------
    @staticmethod
    def _fold(members: Sequence[NormalizedEntity]) -> NormalizedEntity:
        survivor = members[0]
        attributes = dict(survivor.attributes)
        update: Dict[str, Any] = {}
        location, city, country = survivor.location, survivor.city, survivor.country

        for other in members[1:]:
            for key, value in other.attributes.items():
                if attributes.get(key) is None:
                    attributes[key] = value
            location = location or other.location
            city = city or other.city
            country = country or other.country
            if survivor.kind == "network_node" and update.get("asn", survivor.asn) is None and other.asn is not None:
                update["asn"] = other.asn
            if survivor.kind == "cable_link" and not update.get("path", survivor.path) and other.path:
                update["path"] = other.path

        aliases = {ref for member in members for ref in (member.ref, *member.aliases)}
        relations = {_relation_key(r): r for member in members for r in member.relations}

        update.update(
            attributes=attributes,
            location=location,
            city=city,
            country=country,
            aliases=sorted(aliases),
            relations=[relations[key] for key in sorted(relations)],
        )
        return survivor.model_copy(update=update)
