# core/proxy/transport.py
"""Исходящий HTTP транспорт к upstream аналитики"""

import logging
from typing import Optional, Protocol

import httpx

from webanalytics_proxy.core.options import ProxyOptions
from webanalytics_proxy.core.proxy.request_builder import OutboundRequest

logger = logging.getLogger(__name__)

# Hop-by-hop заголовки не передаются upstream (RFC 7230 6.1), для HTTP/2 они запрещены
HOP_BY_HOP_HEADERS = frozenset({
    'connection',
    'keep-alive',
    'proxy-connection',
    'te',
    'trailer',
    'transfer-encoding',
    'upgrade',
})


# Accept-Encoding выставляет сам httpx: только те кодировки, которые он умеет распаковать
CLIENT_MANAGED_HEADERS = frozenset({
    'accept-encoding',
})


class UpstreamTransportError(Exception):
    """Ошибка транспорта при обращении к upstream"""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url

    @property
    def is_timeout(self) -> bool:
        return isinstance(self.__cause__, httpx.TimeoutException)


class Transport(Protocol):
    """Интерфейс исходящего транспорта"""

    async def send(self, request: OutboundRequest) -> httpx.Response:
        """
        Отправляет запрос upstream

        Версия протокола выбирается транспортом при создании (см.
        HttpxTransport.from_options), request.http_version не переключает ее.
        """
        ...

    async def get(self, url: str) -> httpx.Response:
        ...

    async def aclose(self) -> None:
        ...


class HttpxTransport:
    """Транспорт на httpx.AsyncClient с переиспользованием соединений"""

    def __init__(
            self,
            http2: bool = True,
            verify: bool = True,
            timeout: Optional[httpx.Timeout] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            http2: Разрешить HTTP/2 (требует пакет h2)
            verify: Проверять TLS сертификаты upstream
            timeout: Таймауты клиента (по умолчанию 90s total, 10s connect)
            transport: Низкоуровневый транспорт httpx (например MockTransport в тестах)
        """
        self.http2 = http2
        self.verify = verify
        self.timeout = timeout or httpx.Timeout(90.0, connect=10.0)
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_options(cls, options: ProxyOptions, **kwargs) -> "HttpxTransport":
        if options.ignore_certificate_errors:
            logger.warning("⚠️ TLS certificate verification for upstream is disabled")
        if options.collect_http_version == "1.0":
            logger.warning("⚠️ httpx не поддерживает HTTP/1.0, collect запросы будут отправлены как HTTP/1.1")
        return cls(http2=options.http2, verify=not options.ignore_certificate_errors, **kwargs)

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                http2=self.http2,
                verify=self.verify,
                timeout=self.timeout,
                follow_redirects=False,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=50),
                transport=self.transport,
            )
        return self.client

    def _to_httpx(self, request: OutboundRequest) -> httpx.Request:
        client = self._get_client()

        headers = [
            (name, value) for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in CLIENT_MANAGED_HEADERS
        ]

        content = None
        if request.content is not None:
            content = request.content.stream
            if request.content.media_type:
                headers = [(name, value) for name, value in headers if name.lower() != 'content-type']
                headers.append(('Content-Type', request.content.media_type))

        return client.build_request(
            method=request.method,
            url=request.url,
            headers=headers,
            content=content,
        )

    async def send(self, request: OutboundRequest) -> httpx.Response:
        """
        Отправляет исходящий запрос

        Raises:
            UpstreamTransportError: при сетевой ошибке или таймауте
        """
        httpx_request = self._to_httpx(request)
        try:
            return await self._get_client().send(httpx_request)
        except httpx.HTTPError as e:
            raise UpstreamTransportError(f"Upstream request failed: {e}", url=request.url) from e

    async def get(self, url: str) -> httpx.Response:
        """
        GET запрос к upstream

        Raises:
            UpstreamTransportError: при сетевой ошибке или таймауте
        """
        try:
            return await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise UpstreamTransportError(f"Upstream request failed: {e}", url=url) from e

    async def aclose(self):
        """Закрывает пул соединений"""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
