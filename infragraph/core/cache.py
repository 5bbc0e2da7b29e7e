"""Response cache shared by all provider clients.

Entries are keyed by request signature and expire lazily: a read that finds an
entry older than its TTL removes it and reports a miss. ``sweep()`` (or the
background sweeper) clears expired entries nobody reads any more.

Expired entries are not thrown away at once. They move to a bounded stale
shelf, and ``get_stale()`` hands them out when the provider is down, so an
outage degrades to old data rather than no data.

Storage is pluggable. ``MemoryCacheStore`` is the default and holds at most
``max_entries`` entries, evicting the least recently used; ``SqlCacheStore``
keeps entries in a SQLAlchemy table so they survive restarts.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from infragraph.core.db import create_cache_engine, session_factory
from infragraph.core.logging import get_logger
from infragraph.models.cache_entry import CachedResponse
from infragraph.schemas.raw import RawResponse

log = get_logger("core.cache")

Clock = Callable[[], float]

DEFAULT_MAX_ENTRIES = 1024


@dataclass(frozen=True)
class CacheEntry:
    signature: str
    provider: str
    response: RawResponse
    fetched_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.fetched_at > self.ttl


class CacheStore(Protocol):
    def load(self, signature: str) -> Optional[CacheEntry]: ...

    def save(self, entry: CacheEntry) -> int:
        """Store ``entry``; returns how many other entries were evicted to make room."""
        ...

    def remove(self, signature: str) -> bool: ...

    def remove_provider(self, provider: str) -> int: ...

    def entries(self) -> List[CacheEntry]: ...

    def clear(self) -> None: ...


class MemoryCacheStore:
    """Bounded in-process store; reads refresh recency, writes evict the least recently used."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def load(self, signature: str) -> Optional[CacheEntry]:
        entry = self._entries.get(signature)
        if entry is not None:
            self._entries.move_to_end(signature)
        return entry

    def save(self, entry: CacheEntry) -> int:
        self._entries[entry.signature] = entry
        self._entries.move_to_end(entry.signature)
        evicted = 0
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            evicted += 1
        return evicted

    def remove(self, signature: str) -> bool:
        return self._entries.pop(signature, None) is not None

    def remove_provider(self, provider: str) -> int:
        doomed = [sig for sig, entry in self._entries.items() if entry.provider == provider]
        for sig in doomed:
            del self._entries[sig]
        return len(doomed)

    def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()


class SqlCacheStore:
    """Persists entries in the ``response_cache`` table."""

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not url:
                raise ValueError("SqlCacheStore needs a database url or an engine")
            engine = create_cache_engine(url)
        self.engine = engine
        self._session = session_factory(engine)

    @staticmethod
    def _to_entry(row: CachedResponse) -> CacheEntry:
        return CacheEntry(
            signature=row.signature,
            provider=row.provider,
            response=RawResponse.model_validate(row.response),
            fetched_at=row.fetched_at,
            ttl=row.ttl,
        )

    def load(self, signature: str) -> Optional[CacheEntry]:
        with self._session() as db:
            row = db.get(CachedResponse, signature)
            return self._to_entry(row) if row else None

    def save(self, entry: CacheEntry) -> int:
        with self._session() as db:
            db.merge(
                CachedResponse(
                    signature=entry.signature,
                    provider=entry.provider,
                    response=entry.response.model_dump(mode="json"),
                    fetched_at=entry.fetched_at,
                    ttl=entry.ttl,
                )
            )
            db.commit()
        return 0

    def remove(self, signature: str) -> bool:
        with self._session() as db:
            result = db.execute(delete(CachedResponse).where(CachedResponse.signature == signature))
            db.commit()
            return (result.rowcount or 0) > 0

    def remove_provider(self, provider: str) -> int:
        with self._session() as db:
            result = db.execute(delete(CachedResponse).where(CachedResponse.provider == provider))
            db.commit()
            return result.rowcount or 0

    def entries(self) -> List[CacheEntry]:
        with self._session() as db:
            rows = db.execute(select(CachedResponse)).scalars().all()
            return [self._to_entry(row) for row in rows]

    def clear(self) -> None:
        with self._session() as db:
            db.execute(delete(CachedResponse))
            db.commit()


class ResponseCache:
    """Thread- and task-safe TTL cache of provider responses."""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        clock: Clock = time.time,
        max_stale: int = DEFAULT_MAX_ENTRIES,
    ):
        self._store: CacheStore = store if store is not None else MemoryCacheStore()
        self._clock = clock
        self._lock = threading.RLock()
        self._stale: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._max_stale = max_stale
        self._sweeper: Optional[asyncio.Task] = None
        self._stats = {"hits": 0, "misses": 0, "expired": 0, "evictions": 0, "writes": 0, "stale_hits": 0}

    @classmethod
    def from_url(
        cls, url: Optional[str], clock: Clock = time.time, max_entries: int = DEFAULT_MAX_ENTRIES
    ) -> "ResponseCache":
        """In-memory cache unless a database url is given."""
        if url:
            log.info(f"Using disk-backed response cache at {url}")
            return cls(SqlCacheStore(url), clock=clock, max_stale=max_entries)
        return cls(MemoryCacheStore(max_entries), clock=clock, max_stale=max_entries)

    def get(self, signature: str) -> Optional[RawResponse]:
        with self._lock:
            entry = self._store.load(signature)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if entry.expired(self._clock()):
                self._store.remove(signature)
                self._shelve(entry)
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return entry.response

    def get_stale(self, signature: str) -> Optional[RawResponse]:
        """Last known response for ``signature``, however old. Only for use when the provider is down."""
        with self._lock:
            entry = self._stale.get(signature) or self._store.load(signature)
            if entry is None:
                return None
            self._stats["stale_hits"] += 1
            return entry.response

    def put(self, signature: str, response: RawResponse, ttl: float) -> None:
        if ttl <= 0:
            return
        with self._lock:
            evicted = self._store.save(
                CacheEntry(
                    signature=signature,
                    provider=response.provider,
                    response=response,
                    fetched_at=self._clock(),
                    ttl=ttl,
                )
            )
            self._stale.pop(signature, None)
            self._stats["writes"] += 1
            self._stats["evictions"] += evicted

    def invalidate(self, signature: str) -> bool:
        with self._lock:
            removed = self._store.remove(signature)
            self._stale.pop(signature, None)
            if removed:
                self._stats["evictions"] += 1
            return removed

    def invalidate_provider(self, provider: str) -> int:
        with self._lock:
            removed = self._store.remove_provider(provider)
            for sig in [sig for sig, entry in self._stale.items() if entry.provider == provider]:
                del self._stale[sig]
            self._stats["evictions"] += removed
        if removed:
            log.info(f"Invalidated {removed} cached responses for {provider}")
        return removed

    def sweep(self) -> int:
        """Move every expired entry to the stale shelf; returns how many were moved."""
        with self._lock:
            now = self._clock()
            expired = [entry for entry in self._store.entries() if entry.expired(now)]
            for entry in expired:
                self._store.remove(entry.signature)
                self._shelve(entry)
            self._stats["expired"] += len(expired)
        if expired:
            log.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._stale.clear()

    @property
    def persistent(self) -> bool:
        return isinstance(self._store, SqlCacheStore)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store.entries())

    def stats(self) -> Dict[str, float]:
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "entries": len(self._store.entries()),
                "stale_entries": len(self._stale),
                "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
            }

    def _shelve(self, entry: CacheEntry) -> None:
        self._stale[entry.signature] = entry
        self._stale.move_to_end(entry.signature)
        while len(self._stale) > self._max_stale:
            self._stale.popitem(last=False)

    # -------------------------------------------------------------------------
    # Periodic sweep
    # -------------------------------------------------------------------------
    def start_sweeper(self, interval: float) -> asyncio.Task:
        if self._sweeper and not self._sweeper.done():
            return self._sweeper
        self._sweeper = asyncio.create_task(self._sweep_forever(interval))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if not self._sweeper:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self, interval: float) -> None:
        log.info(f"Cache sweeper started (interval: {interval}s)")
        while True:
            try:
                await asyncio.sleep(interval)
                self.sweep()
            except asyncio.CancelledError:
                log.info("Cache sweeper cancelled")
                raise
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Cache sweep failed: {exc}")
