from infragraph.models.base import Base
from infragraph.models.cache_entry import CachedResponse

__all__ = [
    "Base",
    "CachedResponse",
]
