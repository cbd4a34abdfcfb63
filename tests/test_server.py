"""
End-to-end tests for ProxyManager: aiohttp host -> WebAnalyticsProxy -> httpx upstream mock
"""

import gzip

import httpx
import pytest
from aiohttp import test_utils

from webanalytics_proxy.core.options import DEFAULT_SCRIPT_CACHE_CONTROL
from webanalytics_proxy.core.proxy.cache_manager import CacheManager
from webanalytics_proxy.core.proxy.transport import HttpxTransport
from webanalytics_proxy.core.proxy_manager import ProxyManager, WebAnalyticsProxy

pytestmark = pytest.mark.anyio

SCRIPT = "console.log('beacon');"


class FakeUpstream:
    """Upstream analytics service behind httpx.MockTransport"""

    def __init__(self, script_status=200, collect_error=None):
        self.script_status = script_status
        self.collect_error = collect_error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/script.js":
            if self.script_status != 200:
                return httpx.Response(self.script_status)
            return httpx.Response(200, text=SCRIPT, headers={"Content-Type": "application/javascript"})

        if self.collect_error is not None:
            raise self.collect_error("upstream down", request=request)
        return httpx.Response(
            202,
            content=b"accepted",
            headers={"X-Upstream": "yes", "Content-Type": "text/plain", "Connection": "keep-alive"},
        )


def _client(options, upstream: FakeUpstream) -> test_utils.TestClient:
    proxy = WebAnalyticsProxy(options, CacheManager(), HttpxTransport(transport=httpx.MockTransport(upstream)))
    manager = ProxyManager(proxy)
    return test_utils.TestClient(test_utils.TestServer(manager.create_app()))


async def test_collect_is_relayed(options):
    upstream = FakeUpstream()

    async with _client(options, upstream) as client:
        response = await client.post(
            "/analytics/collect?param=value",
            data=b'{"event":"pageload"}',
            headers={"Content-Type": "application/json", "Cookie": "session=secret", "X-Custom": "1"},
        )
        body = await response.read()

    assert response.status == 202
    assert body == b"accepted"
    assert response.headers["X-Upstream"] == "yes"

    received = upstream.requests[0]
    assert received.method == "POST"
    assert str(received.url) == "https://example.com/collect?param=value"
    assert received.headers["host"] == "example.com"
    assert received.headers["x-custom"] == "1"
    assert received.headers["x-forwarded-for"] == "127.0.0.1"
    assert received.headers["content-type"] == "application/json"
    assert received.content == b'{"event":"pageload"}'


async def test_cookie_is_not_forwarded_by_default(options):
    upstream = FakeUpstream()
    options = options.with_overrides(copy_headers_except=("Cookie",))

    async with _client(options, upstream) as client:
        await client.post("/analytics/collect", data=b"x", headers={"Cookie": "session=secret"})

    assert "cookie" not in upstream.requests[0].headers


@pytest.mark.parametrize("error, status", [
    (httpx.ConnectError, 502),
    (httpx.ConnectTimeout, 504),
])
async def test_collect_upstream_failure(options, error, status):
    async with _client(options, FakeUpstream(collect_error=error)) as client:
        response = await client.post("/analytics/collect", data=b"x")

    assert response.status == status


async def test_script_is_served_and_cached(options):
    upstream = FakeUpstream()

    async with _client(options, upstream) as client:
        first = await client.get("/analytics/script.js")
        first_text = await first.text()
        second = await client.get("/analytics/script.js")
        second_text = await second.text()

    assert first.status == second.status == 200
    assert first_text == second_text == SCRIPT
    assert first.headers["Content-Type"] == "text/javascript; charset=UTF-8"
    assert first.headers["Cache-Control"] == DEFAULT_SCRIPT_CACHE_CONTROL
    assert len(upstream.requests) == 1


async def test_script_nocache_bypasses_cache(options):
    upstream = FakeUpstream()

    async with _client(options, upstream) as client:
        await client.get("/analytics/script.js")
        await client.get("/analytics/script.js?nocache=1")

    assert len(upstream.requests) == 2


async def test_script_unavailable_without_fallback(options):
    async with _client(options, FakeUpstream(script_status=503)) as client:
        response = await client.get("/analytics/script.js")

    assert response.status == 404


async def test_script_fallback(options):
    options = options.with_overrides(client_script_fallback_content="/* analytics unavailable */")

    async with _client(options, FakeUpstream(script_status=503)) as client:
        response = await client.get("/analytics/script.js")
        text = await response.text()

    assert response.status == 200
    assert text == "/* analytics unavailable */"


async def test_start_and_stop(options):
    port = test_utils.unused_port()
    proxy = WebAnalyticsProxy(options, CacheManager(), HttpxTransport(transport=httpx.MockTransport(FakeUpstream())))
    manager = ProxyManager(proxy, port=port)

    await manager.start()
    assert manager.is_running
    await manager.stop()

    assert not manager.is_running
    assert manager.get_full_stats()['requests'] == 0


class EncodingUpstream:
    """Upstream that compresses with gzip only when the client offers it, brotli otherwise"""

    def __init__(self):
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if "gzip" in request.headers.get("accept-encoding", ""):
            return httpx.Response(200, content=gzip.compress(b"hello"), headers={"Content-Encoding": "gzip"})
        return httpx.Response(200, content=b"\x8b\x02\x80hello\x03", headers={"Content-Encoding": "br"})


async def test_collect_response_is_relayed_decoded(options):
    upstream = EncodingUpstream()
    proxy = WebAnalyticsProxy(options, CacheManager(), HttpxTransport(transport=httpx.MockTransport(upstream)))

    async with test_utils.TestClient(test_utils.TestServer(ProxyManager(proxy).create_app())) as client:
        response = await client.post(
            "/analytics/collect",
            data=b"x",
            headers={"Accept-Encoding": "br", "Content-Type": "text/plain"},
        )
        body = await response.read()

    assert response.status == 200
    assert body == b"hello"
    assert "Content-Encoding" not in response.headers
