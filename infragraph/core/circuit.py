"""Per-provider circuit breaker.

After ``failure_threshold`` consecutive failed requests (retries already
exhausted) the circuit opens and requests fail fast with ``CircuitOpen`` for
``reset_timeout`` seconds. The next request after that is a half-open trial:
``success_threshold`` successes in a row close the circuit, and any failure
opens it again.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from infragraph.core.errors import CircuitOpen
from infragraph.core.logging import get_logger

log = get_logger("core.circuit")

CircuitState = Literal["closed", "open", "half_open"]


class CircuitPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(5, ge=1)
    reset_timeout: float = Field(60.0, ge=0)
    success_threshold: int = Field(3, ge=1)

    def build(self, provider: str, clock: Callable[[], float] = time.monotonic) -> "CircuitBreaker":
        return CircuitBreaker(provider, self, clock)


class CircuitBreaker:
    def __init__(
        self,
        provider: str,
        policy: Optional[CircuitPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.policy = policy or CircuitPolicy()
        self._clock = clock
        self.state: CircuitState = "closed"
        self.failures = 0
        self.successes = 0
        self.opened_at: Optional[float] = None

    def before_call(self) -> None:
        """Raise ``CircuitOpen`` while the circuit is open and cooling down."""
        if self.state != "open":
            return
        waited = self._clock() - (self.opened_at or 0.0)
        if waited < self.policy.reset_timeout:
            raise CircuitOpen(self.provider, self.policy.reset_timeout - waited)
        log.info(f"{self.provider}: circuit half-open, sending a trial request")
        self.state = "half_open"
        self.successes = 0

    def record_success(self) -> None:
        self.failures = 0
        if self.state == "half_open":
            self.successes += 1
            if self.successes >= self.policy.success_threshold:
                log.info(f"{self.provider}: circuit closed after recovery")
                self.state = "closed"
                self.successes = 0

    def record_failure(self) -> None:
        self.failures += 1
        self.successes = 0
        if self.state == "half_open":
            self._open()
            log.warning(f"{self.provider}: circuit re-opened after a failed trial request")
        elif self.state == "closed" and self.failures >= self.policy.failure_threshold:
            self._open()
            log.warning(f"{self.provider}: circuit opened after {self.failures} failures")

    def reset(self) -> None:
        self.state = "closed"
        self.failures = 0
        self.successes = 0
        self.opened_at = None

    def snapshot(self) -> Dict[str, object]:
        return {"state": self.state, "failures": self.failures, "successes": self.successes}

    def _open(self) -> None:
        self.state = "open"
        self.opened_at = self._clock()
