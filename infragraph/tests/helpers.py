"""Test doubles for time, sleep and provider HTTP"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import httpx

from infragraph.schemas.raw import RawResponse

FETCHED_AT = datetime(2025, 6, 1, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced replacement for time.time"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep that returns immediately and remembers each delay"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Upstream:
    """Routes mocked requests by URL path and counts the calls per path"""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def add(self, path_suffix: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[path_suffix] = handler

    def json(self, path_suffix: str, body: Any, status: int = 200, **headers: str) -> None:
        self.add(path_suffix, lambda request: httpx.Response(status, json=body, headers=headers))

    def count(self, path_suffix: str) -> int:
        return sum(1 for r in self.calls if r.url.path.endswith(path_suffix))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        # Longest suffix wins so "cable/x.json" beats "x.json"
        for suffix in sorted(self.routes, key=len, reverse=True):
            if request.url.path.endswith(suffix):
                return self.routes[suffix](request)
        return httpx.Response(404, json={"error": "not mocked"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def make_response(provider: str = "peeringdb", signature: str = "sig", body: Any = None) -> RawResponse:
    return RawResponse(
        provider=provider,
        signature=signature,
        path="net",
        params={},
        fetched_at=FETCHED_AT,
        body=body if body is not None else {"data": []},
    )
