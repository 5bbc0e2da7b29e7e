"""Fetch -> normalize -> merge orchestration.

One asyncio task per provider fetches that provider's pages in order. A
provider that fails terminally is recorded in ``failed_providers`` and the run
goes on with the others; one that was served from stale cache is listed in
``stale_providers``. The merged graph is published only once the whole run
completes; a cancelled run publishes nothing and raises ``Cancelled``.

One run at a time: starting a run while another is in flight raises
``RunInProgress`` instead of queueing behind it.
"""

from __future__ import annotations

import asyncio
import random
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Literal, Optional

import httpx
from pydantic import BaseModel, Field

from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.backoff import Sleep
from infragraph.core.cache import ResponseCache
from infragraph.core.errors import Cancelled, ProviderError, RunInProgress
from infragraph.core.logging import get_logger
from infragraph.ingestion.base import BaseProvider, ProviderQuery
from infragraph.ingestion.registry import build_providers
from infragraph.schemas.normalized import EntityGraph
from infragraph.schemas.raw import RawRecord
from .graph_builder import EntityGraphBuilder
from .normalizer import Normalizer

log = get_logger("aggregator")

RunStatus = Literal["running", "success", "partial", "failure", "cancelled"]

HISTORY_SIZE = 50


class ProviderRun(BaseModel):
    provider: str
    success: bool = True
    records: int = 0
    entities: int = 0
    skipped: int = 0
    stale: bool = False
    unknown_fields: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None


class RunRecord(BaseModel):
    """Bookkeeping for one aggregation run."""

    run_id: str
    status: RunStatus = "running"
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    providers: Dict[str, ProviderRun] = Field(default_factory=dict)
    nodes: int = 0
    edges: int = 0
    error: Optional[str] = None


class Aggregator:
    """Owns the provider clients and the latest published EntityGraph."""

    def __init__(
        self,
        config: Optional[AggregatorConfig] = None,
        cache: Optional[ResponseCache] = None,
        providers: Optional[Dict[str, BaseProvider]] = None,
        normalizer: Optional[Normalizer] = None,
        builder: Optional[EntityGraphBuilder] = None,
        client: Optional[httpx.AsyncClient] = None,
        *,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or AggregatorConfig()
        self.cache = cache if cache is not None else ResponseCache()
        self.providers = providers if providers is not None else build_providers(
            self.cache, self.config, client, sleep=sleep, rng=rng
        )
        self.normalizer = normalizer or Normalizer()
        self.builder = builder or EntityGraphBuilder(self.config)

        self._snapshot: Optional[EntityGraph] = None
        self._history: Deque[RunRecord] = deque(maxlen=HISTORY_SIZE)
        self._active_run: Optional[str] = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def snapshot(self) -> Optional[EntityGraph]:
        """Latest published graph, or None before the first completed run."""
        return self._snapshot

    def runs(self, limit: Optional[int] = None) -> List[RunRecord]:
        """Most recent runs first."""
        history = list(reversed(self._history))
        return history[:limit] if limit else history

    @property
    def running(self) -> bool:
        return self._active_run is not None

    async def run(
        self,
        include: Optional[Iterable[str]] = None,
        query: Optional[ProviderQuery] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> EntityGraph:
        names = self._selected(include)
        if self._active_run is not None:
            raise RunInProgress(f"run {self._active_run} is still in progress")
        record = RunRecord(run_id=str(uuid.uuid4()), started_at=datetime.now(timezone.utc))
        self._active_run = record.run_id
        try:
            return await self._run(record, names, query or ProviderQuery(), cancel)
        finally:
            self._active_run = None

    async def refresh(self, provider: str, query: Optional[ProviderQuery] = None) -> EntityGraph:
        """Drop the provider's cached responses, then run all providers again."""
        if provider not in self.providers:
            raise ValueError(f"Unsupported provider: {provider}")
        if self._active_run is not None:
            raise RunInProgress(f"run {self._active_run} is still in progress")
        self.cache.invalidate_provider(provider)
        return await self.run(query=query)

    async def aclose(self) -> None:
        """Stop the cache sweeper. An in-memory cache is emptied; a disk-backed one is kept."""
        await self.cache.stop_sweeper()
        if not self.cache.persistent:
            self.cache.clear()

    # -------------------------------------------------------------------------
    # Run internals
    # -------------------------------------------------------------------------
    def _selected(self, include: Optional[Iterable[str]]) -> List[str]:
        if include is None:
            return list(self.providers)
        names = list(dict.fromkeys(include))
        unknown = [name for name in names if name not in self.providers]
        if unknown:
            raise ValueError(f"Unsupported provider(s): {', '.join(unknown)}")
        return names

    async def _run(
        self, record: RunRecord, names: List[str], query: ProviderQuery, cancel: Optional[asyncio.Event]
    ) -> EntityGraph:
        self._history.append(record)
        started = time.perf_counter()
        log.info(f"Aggregation run {record.run_id} started | providers={names}")

        try:
            fetched, failures = await self._fetch_all(names, query, cancel)
        except Cancelled:
            self._finish(record, "cancelled", started, error="cancelled by caller")
            log.warning(f"Aggregation run {record.run_id} cancelled; nothing published")
            raise
        except BaseException:
            self._finish(record, "cancelled", started, error="aborted")
            raise

        try:
            graph = self._assemble(record, names, fetched, failures)
        except Exception as exc:
            self._finish(record, "failure", started, error=f"{type(exc).__name__}: {exc}")
            log.exception(f"Aggregation run {record.run_id} failed while merging: {exc}")
            raise

        if cancel is not None and cancel.is_set():
            self._finish(record, "cancelled", started, error="cancelled by caller")
            raise Cancelled(f"run {record.run_id} cancelled before publish")

        # Single reference swap; readers see either the old graph or the new one
        self._snapshot = graph

        record.nodes = len(graph.nodes)
        record.edges = len(graph.edges)
        if not failures:
            status: RunStatus = "success"
        elif len(failures) < len(names):
            status = "partial"
        else:
            status = "failure"
        self._finish(record, status, started)
        log.info(
            f"Aggregation run {record.run_id} {status} | nodes={record.nodes} edges={record.edges} "
            f"failed={sorted(failures)} stale={graph.stale_providers} duration_ms={record.duration_ms}"
        )
        return graph

    def _assemble(
        self,
        record: RunRecord,
        names: List[str],
        fetched: Dict[str, List[RawRecord]],
        failures: Dict[str, str],
    ) -> EntityGraph:
        self.normalizer.reset()
        entities = []
        stale: List[str] = []
        for name in sorted(names, key=self.config.rank):
            records = fetched.get(name, [])
            stats = ProviderRun(provider=name, records=len(records))
            if name in failures:
                stats.success = False
                stats.error = failures[name]
            if any(r.stale for r in records):
                stats.stale = True
                stale.append(name)
            skipped_before = self.normalizer.skipped
            normalized = self.normalizer.normalize_many(records)
            stats.entities = len(normalized)
            stats.skipped = self.normalizer.skipped - skipped_before
            stats.unknown_fields = self.normalizer.report_unknown_fields(name)
            record.providers[name] = stats
            entities.extend(normalized)

        return self.builder.merge(entities).model_copy(
            update={
                "providers": [name for name in names if name not in failures],
                "failed_providers": dict(sorted(failures.items())),
                "stale_providers": sorted(stale),
                "run_id": record.run_id,
                "generated_at": datetime.now(timezone.utc),
            }
        )

    async def _fetch_all(
        self, names: List[str], query: ProviderQuery, cancel: Optional[asyncio.Event]
    ) -> tuple[Dict[str, List[RawRecord]], Dict[str, str]]:
        if cancel is not None and cancel.is_set():
            raise Cancelled("cancelled before start")

        tasks = {
            name: asyncio.create_task(self._fetch_one(name, query), name=f"fetch:{name}")
            for name in names
        }
        watcher = asyncio.create_task(cancel.wait(), name="cancel-watch") if cancel is not None else None

        try:
            pending = set(tasks.values())
            while pending:
                waiting = pending | {watcher} if watcher is not None else pending
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if watcher is not None and watcher in done:
                    raise Cancelled("cancelled while fetching")
                pending -= done
        finally:
            await self._cancel_tasks(list(tasks.values()) + ([watcher] if watcher is not None else []))

        fetched: Dict[str, List[RawRecord]] = {}
        failures: Dict[str, str] = {}
        for name, task in tasks.items():
            records, error = task.result()
            fetched[name] = records
            if error is not None:
                failures[name] = error
        return fetched, failures

    async def _fetch_one(self, name: str, query: ProviderQuery) -> tuple[List[RawRecord], Optional[str]]:
        provider = self.providers[name]
        try:
            records = await provider.fetch_all(query)
        except ProviderError as exc:
            log.error(f"Provider {name} failed: {exc}")
            return [], str(exc)
        except Exception as exc:  # noqa: BLE001
            log.exception(f"Provider {name} failed unexpectedly: {exc}")
            return [], f"{type(exc).__name__}: {exc}"
        return records, None

    @staticmethod
    async def _cancel_tasks(tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    def _finish(record: RunRecord, status: RunStatus, started: float, error: Optional[str] = None) -> None:
        record.status = status
        record.error = error
        record.ended_at = datetime.now(timezone.utc)
        record.duration_ms = int((time.perf_counter() - started) * 1000)
