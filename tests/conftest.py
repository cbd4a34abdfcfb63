"""
Shared fixtures for proxy tests
"""

import pytest

from webanalytics_proxy.core.options import ProxyOptions
from webanalytics_proxy.core.proxy.cache_manager import CacheManager
from tests.fakes import COLLECT_URL, SCRIPT_URL, FakeClock


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def options():
    return ProxyOptions(
        client_script_url=SCRIPT_URL,
        collect_url=COLLECT_URL,
        client_script_cache_seconds=3600,
        collect_http_version="2.0",
        forward_request_ip_address=True,
        copy_headers_except=("HeaderToExclude",),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheManager(clock=clock)
