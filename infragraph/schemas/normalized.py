"""Provider-agnostic entity model and the merged entity graph."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Relation(BaseModel):
    """A link from one entity to another.

    ``target`` is a source-scoped ref (``peeringdb:fac:42``) or, with
    ``by_key``, a merge key (``network:as13335``) so a provider can point at
    entities it never fetched itself.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    target: str
    by_key: bool = False


class _EntityBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    source_id: str
    name: str
    merge_key: str = Field(min_length=1)
    location: Optional[GeoPoint] = None
    city: Optional[str] = None
    country: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    relations: List[Relation] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)

    @property
    def ref(self) -> str:
        return f"{self.source}:{self.source_id}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unresolved(self) -> bool:
        """No coordinates: retained for non-spatial consumers, skipped by renderers."""
        return self.location is None


class NetworkNode(_EntityBase):
    kind: Literal["network_node"] = "network_node"
    asn: Optional[int] = None


class Facility(_EntityBase):
    kind: Literal["facility"] = "facility"
    facility_type: Literal["ixp", "datacenter", "landing_point"]


class CableLink(_EntityBase):
    kind: Literal["cable_link"] = "cable_link"
    path: List[List[GeoPoint]] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unresolved(self) -> bool:
        return self.location is None and not any(self.path)


NormalizedEntity = Annotated[
    Union[NetworkNode, Facility, CableLink],
    Field(discriminator="kind"),
]


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    kind: str

    def sort_key(self) -> tuple[str, str, str]:
        return (self.source, self.target, self.kind)


class EntityGraph(BaseModel):
    """Merged, deduplicated snapshot. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    nodes: Dict[str, NormalizedEntity] = Field(default_factory=dict)
    edges: List[Edge] = Field(default_factory=list)
    providers: List[str] = Field(default_factory=list)
    failed_providers: Dict[str, str] = Field(default_factory=dict)
    stale_providers: List[str] = Field(default_factory=list)
    run_id: Optional[str] = None
    generated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _no_dangling_edges(self) -> "EntityGraph":
        for edge in self.edges:
            if edge.source not in self.nodes or edge.target not in self.nodes:
                raise ValueError(f"dangling edge {edge.source} -> {edge.target} ({edge.kind})")
        return self

    @property
    def partial(self) -> bool:
        return bool(self.failed_providers)

    def resolved_nodes(self) -> Dict[str, Any]:
        return {cid: node for cid, node in self.nodes.items() if not node.unresolved}

    def content_equals(self, other: "EntityGraph") -> bool:
        """Compare nodes and edges only, ignoring run metadata."""
        return self.nodes == other.nodes and self.edges == other.edges
