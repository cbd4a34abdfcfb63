"""
WebAnalytics Proxy - relay web analytics traffic through your own origin.
"""

from webanalytics_proxy.core.options import ConfigurationError, ProxyOptions, cloudflare_options
from webanalytics_proxy.core.proxy.cache_manager import CacheManager
from webanalytics_proxy.core.proxy.transport import HttpxTransport, UpstreamTransportError
from webanalytics_proxy.core.proxy_manager import (
    FetchFailure,
    FetchSuccess,
    ProxyManager,
    WebAnalyticsProxy,
    create_cloudflare_proxy,
    create_proxy,
)

__version__ = "1.0.0"

__all__ = [
    "CacheManager",
    "ConfigurationError",
    "FetchFailure",
    "FetchSuccess",
    "HttpxTransport",
    "ProxyManager",
    "ProxyOptions",
    "UpstreamTransportError",
    "WebAnalyticsProxy",
    "cloudflare_options",
    "create_cloudflare_proxy",
    "create_proxy",
]
