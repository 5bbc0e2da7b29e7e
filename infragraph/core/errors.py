"""Error taxonomy shared by provider clients, the normalizer and the aggregator."""

from __future__ import annotations

from typing import Optional


class InfraGraphError(Exception):
    """Base class for all infragraph errors."""


class ProviderError(InfraGraphError):
    """An error attributed to a single upstream provider."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.message = message


class TransientError(ProviderError):
    """Network failure, timeout or 5xx. Safe to retry."""


class RateLimited(TransientError):
    """Provider answered 429; ``retry_after`` is in seconds when the provider sent one."""

    def __init__(self, provider: str, message: str, retry_after: Optional[float] = None):
        super().__init__(provider, message)
        self.retry_after = retry_after


class PermanentError(ProviderError):
    """Request-level failure that retrying cannot fix (4xx, non-JSON body, API-level error)."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(provider, message)
        self.status_code = status_code


class ProviderUnavailable(ProviderError):
    """Retries exhausted."""

    def __init__(self, provider: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(provider, f"unavailable after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class CircuitOpen(ProviderError):
    """The provider's circuit breaker is open; no request was sent."""

    def __init__(self, provider: str, retry_in: float):
        super().__init__(provider, f"circuit open, next attempt in {retry_in:.0f}s")
        self.retry_in = retry_in


class MalformedRecord(InfraGraphError):
    """A single raw record could not be normalized. Never leaves the normalizer."""

    def __init__(self, ref: str, reason: str):
        super().__init__(f"{ref}: {reason}")
        self.ref = ref
        self.reason = reason


class Cancelled(InfraGraphError):
    """An aggregation run was aborted by its caller."""


class RunInProgress(InfraGraphError):
    """Another aggregation run has not finished yet."""
