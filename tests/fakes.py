"""
Fakes for the inbound request and the outbound transport
"""

from typing import List, Optional

import httpx
from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from webanalytics_proxy.core.proxy.request_builder import OutboundRequest

SCRIPT_URL = "https://example.com/script.js"
COLLECT_URL = "https://example.com/collect"


class FakeStreamReader:
    """Mimics aiohttp StreamReader.iter_chunked"""

    def __init__(self, data: bytes, chunk_size: int = 4):
        self.data = data
        self.chunk_size = chunk_size
        self.consumed = False

    async def iter_chunked(self, n):
        size = min(n, self.chunk_size)
        for start in range(0, len(self.data), size):
            yield self.data[start:start + size]
        self.consumed = True


class FakeInboundRequest:
    """Minimal stand-in for aiohttp.web.Request"""

    def __init__(
        self,
        method: str = "POST",
        query_string: str = "",
        headers=None,
        body: Optional[bytes] = None,
        remote: Optional[str] = "127.0.0.1",
    ):
        self.method = method
        self.rel_url = URL("/collect" + (f"?{query_string}" if query_string else ""))
        self.headers = CIMultiDictProxy(CIMultiDict(headers or {}))
        self.remote = remote
        self.body_exists = body is not None
        self.content = FakeStreamReader(body or b"")


class RecordingTransport:
    """Transport fake that records calls and replays canned results"""

    def __init__(self, send_result=None, get_results=None):
        self.send_result = send_result if send_result is not None else httpx.Response(204)
        self.get_results: List = list(get_results or [httpx.Response(404)])
        self.sent: List[OutboundRequest] = []
        self.get_calls: List[str] = []
        self.closed = False

    async def send(self, request):
        self.sent.append(request)
        if isinstance(self.send_result, BaseException):
            raise self.send_result
        return self.send_result

    async def get(self, url):
        self.get_calls.append(url)
        # the last canned result repeats
        result = self.get_results.pop(0) if len(self.get_results) > 1 else self.get_results[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def aclose(self):
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


async def read_stream(stream) -> bytes:
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
    return b"".join(chunks)
