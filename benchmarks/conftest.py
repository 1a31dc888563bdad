"""
Shared fixtures for benchmark tests.
"""

import httpx
import pytest

from ratelimit_shaper.config import ShaperConfig
from ratelimit_shaper.gateway import ShapingGateway

HEADERS = {
    "RateLimit-Policy": '"burst";q=100000;w=60,"daily";q=10000000;w=86400',
    "RateLimit": '"burst";r=99999;t=60,"daily";r=9999999;t=86400',
}


async def instant_send(request: httpx.Request) -> httpx.Response:
    """Send function that answers immediately with plenty of quota left."""
    return httpx.Response(200, headers=HEADERS, request=request)


@pytest.fixture
def benchmark_config():
    """Configuration optimized for benchmarking."""
    return ShaperConfig(metrics_enabled=False)


@pytest.fixture
def gateway(benchmark_config):
    """Gateway whose requests never leave the process."""
    return ShapingGateway(instant_send, config=benchmark_config)


@pytest.fixture
def rate_limit_headers():
    return httpx.Headers(HEADERS)
