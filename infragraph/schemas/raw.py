"""Raw provider payloads and their provenance."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

ProviderName = Literal["peeringdb", "cloudflare_radar", "telegeography"]

PROVIDER_NAMES: tuple[str, ...] = ("peeringdb", "cloudflare_radar", "telegeography")


class RawResponse(BaseModel):
    """One decoded HTTP response, exactly as the provider sent it. Unit of caching."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderName
    signature: str
    path: str
    params: Dict[str, Any] = Field(default_factory=dict)
    fetched_at: datetime
    body: Any
    stale: bool = False  # served from an expired cache entry because the provider was down


class _RawRecordBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    payload: Dict[str, Any]
    signature: str
    fetched_at: datetime
    stale: bool = False

    @property
    def ref(self) -> str:
        ident = self.payload.get("id") if isinstance(self.payload, dict) else None
        return f"{self.provider}:{self.kind}:{ident if ident is not None else '?'}"


class PeeringDBRecord(_RawRecordBase):
    provider: Literal["peeringdb"] = "peeringdb"
    kind: Literal["ix", "fac", "net"]


class RadarRecord(_RawRecordBase):
    provider: Literal["cloudflare_radar"] = "cloudflare_radar"
    kind: Literal["asn", "bgp_route"]


class TeleGeographyRecord(_RawRecordBase):
    provider: Literal["telegeography"] = "telegeography"
    kind: Literal["cable", "landing_point"]


RawRecord = Annotated[
    Union[PeeringDBRecord, RadarRecord, TeleGeographyRecord],
    Field(discriminator="provider"),
]
