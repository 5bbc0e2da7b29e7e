"""Disk-backed response cache table. Only used when CACHE_DB_URL is configured."""

from sqlalchemy import JSON, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from infragraph.models.base import Base


class CachedResponse(Base):
    __tablename__ = "response_cache"

    signature: Mapped[str] = mapped_column(String(64), primary_key=True)

    provider: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # RawResponse.model_dump(mode="json")
    response: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Seconds since the epoch, as reported by the cache clock
    fetched_at: Mapped[float] = mapped_column(Float, nullable=False)

    ttl: Mapped[float] = mapped_column(Float, nullable=False)
