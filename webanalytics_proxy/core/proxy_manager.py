# proxy_manager.py
import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx
from aiohttp import web
from multidict import CIMultiDict

from webanalytics_proxy.core.options import DEFAULT_SCRIPT_CACHE_CONTROL, ProxyOptions, cloudflare_options
from webanalytics_proxy.core.proxy.cache_manager import CacheManager
from webanalytics_proxy.core.proxy.request_builder import OutboundRequest, build_request
from webanalytics_proxy.core.proxy.transport import HttpxTransport, Transport, UpstreamTransportError

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_PATH = '/analytics/script.js'
DEFAULT_COLLECT_PATH = '/analytics/collect'

# Заголовки ответа upstream, которые не передаются клиенту
SKIPPED_RESPONSE_HEADERS = frozenset({
    'content-encoding',
    'content-length',
    'transfer-encoding',
    'connection',
    'keep-alive',
})


@dataclass(frozen=True)
class FetchSuccess:
    content: str


@dataclass(frozen=True)
class FetchFailure:
    reason: str
    status_code: Optional[int] = None


FetchResult = Union[FetchSuccess, FetchFailure]


class WebAnalyticsProxy:
    """
    Прокси веб-аналитики: отдача клиентского скрипта и пересылка collect запросов

    Args:
        options: Настройки прокси
        cache: Кэш для клиентского скрипта (может быть общим для нескольких прокси)
        transport: Исходящий транспорт к upstream
    """

    def __init__(self, options: ProxyOptions, cache: CacheManager, transport: Transport):
        self.options = options
        self.cache = cache
        self.transport = transport

        self.script_cache_key = CacheManager.generate_key(
            'WebAnalyticsProxy', 'get_client_script', options.client_script_url
        )

        # Статистика
        self.stats = {
            'collect_requests': 0,
            'collect_errors': 0,
            'script_requests': 0,
            'script_fetches': 0,
            'script_fetch_failures': 0,
            'script_fallbacks': 0,
        }

    def build_collect_request(self, request) -> OutboundRequest:
        return build_request(
            request,
            self.options.collect_url,
            self.options.collect_http_version,
            forward_ip=self.options.forward_request_ip_address,
            except_headers=self.options.copy_headers_except,
        )

    async def collect(self, request) -> httpx.Response:
        """
        Пересылает collect запрос в upstream и возвращает ответ без изменений

        Args:
            request: Входящий запрос

        Returns:
            httpx.Response: Ответ upstream

        Raises:
            UpstreamTransportError: upstream недоступен или не ответил вовремя
        """
        self.stats['collect_requests'] += 1
        outbound = self.build_collect_request(request)

        try:
            response = await self.transport.send(outbound)
        except UpstreamTransportError as e:
            self.stats['collect_errors'] += 1
            logger.error(f"❌ Collect relay to {outbound.url} failed: {e}")
            raise

        logger.debug(f"Collect response: {response.status_code}")
        return response

    async def load_client_script(self) -> FetchResult:
        """
        Загружает клиентский скрипт напрямую из upstream

        Ошибки не пробрасываются: неуспешный статус и сетевые ошибки
        (включая неразрешимый DNS, например из-за блокировщиков рекламы)
        возвращаются как FetchFailure.

        Returns:
            FetchSuccess или FetchFailure
        """
        url = self.options.client_script_url
        self.stats['script_fetches'] += 1

        try:
            response = await self.transport.get(url)
        except Exception as e:
            self.stats['script_fetch_failures'] += 1
            logger.warning(f"⚠️ Client script fetch from {url} failed: {e}")
            return FetchFailure(reason=str(e) or type(e).__name__)

        if not response.is_success:
            self.stats['script_fetch_failures'] += 1
            logger.warning(f"⚠️ Client script fetch from {url} returned HTTP {response.status_code}")
            return FetchFailure(reason=f"HTTP {response.status_code}", status_code=response.status_code)

        return FetchSuccess(content=response.text)

    async def _fetch_client_script(self) -> Optional[str]:
        result = await self.load_client_script()
        if isinstance(result, FetchSuccess):
            return result.content
        return None

    async def _create_cache_entry(self):
        content = await self._fetch_client_script()
        if content is None:
            # Не кэшируем неудачу: следующий запрос повторит загрузку
            return None, None
        return content, self.options.client_script_cache_seconds

    async def get_client_script(self, bypass_cache: bool = False, use_fallback: bool = True) -> Optional[str]:
        """
        Возвращает клиентский скрипт аналитики

        Args:
            bypass_cache: Загрузить свежую копию, минуя кэш
            use_fallback: Вернуть запасной контент, если скрипт получить не удалось

        Returns:
            str или None: Скрипт, запасной контент или None
        """
        self.stats['script_requests'] += 1

        if bypass_cache:
            content = await self._fetch_client_script()
        else:
            content = await self.cache.get_or_create(self.script_cache_key, self._create_cache_entry)

        if content is None and use_fallback:
            self.stats['script_fallbacks'] += 1
            logger.info("Client script unavailable, serving fallback content")
            return self.options.client_script_fallback_content

        return content

    async def cleanup(self):
        """Очистка ресурсов"""
        await self.transport.aclose()

    def get_full_stats(self) -> dict:
        """Получить полную статистику прокси"""
        return {**self.stats, 'cache': self.cache.get_stats()}


def create_proxy(
        options: ProxyOptions,
        cache: Optional[CacheManager] = None,
        transport: Optional[Transport] = None,
) -> WebAnalyticsProxy:
    """
    Собирает прокси из настроек

    Каждый прокси получает собственный кэш, если общий не передан явно.

    Args:
        options: Настройки прокси
        cache: Кэш (по умолчанию новый изолированный CacheManager)
        transport: Транспорт (по умолчанию HttpxTransport по настройкам)

    Returns:
        WebAnalyticsProxy
    """
    if cache is None:
        cache = CacheManager()
    if transport is None:
        transport = HttpxTransport.from_options(options)

    logger.debug(
        f"WebAnalyticsProxy created:\n"
        f"   Script: {options.client_script_url}\n"
        f"   Collect: {options.collect_url} (HTTP/{options.collect_http_version})"
    )
    return WebAnalyticsProxy(options, cache, transport)


def create_cloudflare_proxy(
        cache: Optional[CacheManager] = None,
        transport: Optional[Transport] = None,
        **overrides,
) -> WebAnalyticsProxy:
    """Прокси для Cloudflare Web Analytics"""
    return create_proxy(cloudflare_options(**overrides), cache=cache, transport=transport)


class ProxyManager:
    """HTTP сервер, публикующий скрипт и collect endpoint прокси на своем origin"""

    def __init__(
            self,
            proxy: WebAnalyticsProxy,
            host: str = '127.0.0.1',
            port: int = 8080,
            script_path: str = DEFAULT_SCRIPT_PATH,
            collect_path: str = DEFAULT_COLLECT_PATH,
    ):
        self.proxy = proxy
        self.host = host
        self.port = port
        self.script_path = script_path
        self.collect_path = collect_path

        self.is_running = False
        self.runner = None
        self.site = None

        self.stats = {
            'total_requests': 0,
            'total_responses': 0,
            'errors': 0
        }

    def create_app(self) -> web.Application:
        """Создает aiohttp приложение с маршрутами прокси"""
        app = web.Application()
        app.router.add_get(self.script_path, self.handle_script)
        app.router.add_route('*', self.collect_path, self.handle_collect)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_cleanup(self, app):
        await self.proxy.cleanup()

    async def handle_script(self, request: web.Request) -> web.Response:
        """Отдает клиентский скрипт аналитики"""
        self.stats['total_requests'] += 1

        bypass_cache = request.query.get('nocache', '').lower() in ('1', 'true', 'yes')
        script = await self.proxy.get_client_script(bypass_cache=bypass_cache)

        if script is None:
            self.stats['errors'] += 1
            return web.Response(status=404, text="Client script unavailable", content_type="text/plain")

        self.stats['total_responses'] += 1
        # content_type с charset aiohttp не принимает, передаем заголовком
        return web.Response(
            body=script.encode('utf-8'),
            headers={
                'Content-Type': self.proxy.options.client_script_content_type,
                'Cache-Control': DEFAULT_SCRIPT_CACHE_CONTROL,
            },
        )

    async def handle_collect(self, request: web.Request) -> web.Response:
        """Пересылает collect запрос в upstream"""
        self.stats['total_requests'] += 1

        try:
            upstream_response = await self.proxy.collect(request)

        except UpstreamTransportError as e:
            self.stats['errors'] += 1

            if e.is_timeout:
                return web.Response(
                    text=f"Upstream timeout: {e}",
                    status=504,
                    content_type="text/plain"
                )

            return web.Response(
                text=f"Upstream unavailable: {e}",
                status=502,
                content_type="text/plain"
            )

        response_headers = CIMultiDict(
            (key, value) for key, value in upstream_response.headers.multi_items()
            if key.lower() not in SKIPPED_RESPONSE_HEADERS
        )

        self.stats['total_responses'] += 1
        return web.Response(
            body=upstream_response.content,
            status=upstream_response.status_code,
            headers=response_headers,
        )

    async def start(self):
        """Асинхронный запуск сервера"""
        if self.is_running:
            logger.warning("⚠️ Прокси уже запущен")
            return

        app = self.create_app()

        self.runner = web.AppRunner(app, access_log=None)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, host=self.host, port=self.port)
        await self.site.start()

        self.is_running = True
        logger.info(f"✅ Proxy server started on http://{self.host}:{self.port}")
        logger.info(f"   Script:  {self.script_path} -> {self.proxy.options.client_script_url}")
        logger.info(f"   Collect: {self.collect_path} -> {self.proxy.options.collect_url}")

    async def stop(self):
        """Асинхронная остановка сервера"""
        if not self.is_running:
            logger.warning("⚠️ Прокси не запущен")
            return

        logger.info("🛑 Stopping proxy...")
        self.is_running = False

        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

        stats = self.get_full_stats()
        logger.info(
            f"📊 Session statistics:\n"
            f"   Total requests: {stats['requests']}\n"
            f"   Total responses: {stats['responses']}\n"
            f"   Errors: {stats['errors']}\n"
            f"   Script cache: {stats['proxy']['cache']['hit_rate']} hit rate"
        )
        logger.info("✅ Proxy stopped")

    def get_full_stats(self) -> dict:
        """Получить полную статистику сервера и прокси"""
        return {
            'requests': self.stats['total_requests'],
            'responses': self.stats['total_responses'],
            'errors': self.stats['errors'],
            'proxy': self.proxy.get_full_stats(),
        }
