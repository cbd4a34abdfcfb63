# core/proxy/__init__.py
"""
Proxy modules package.

Request building, script caching and the outbound transport used by
WebAnalyticsProxy.
"""

from .cache_manager import CacheManager
from .request_builder import OutboundContent, OutboundRequest, build_request, copy_content, copy_headers
from .transport import HttpxTransport, Transport, UpstreamTransportError

__all__ = [
    "CacheManager",
    "HttpxTransport",
    "OutboundContent",
    "OutboundRequest",
    "Transport",
    "UpstreamTransportError",
    "build_request",
    "copy_content",
    "copy_headers",
]
