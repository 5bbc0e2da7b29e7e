"""Shared fixtures: fake clock, recording sleep and mocked provider HTTP"""

import random

import pytest

from infragraph.core.aggregator_config import AggregatorConfig
from infragraph.core.backoff import BackoffPolicy
from infragraph.core.cache import ResponseCache
from infragraph.tests.helpers import FakeClock, RecordingSleep, Upstream


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def cache(clock):
    return ResponseCache(clock=clock)


@pytest.fixture
def config():
    """Small pages and fast, deterministic retries"""
    return AggregatorConfig(
        page_size=2,
        max_pages=5,
        cloudflare_radar_token="test-token",
        backoff=BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter=0.5, max_retries=3),
    )


@pytest.fixture
def upstream():
    return Upstream()
