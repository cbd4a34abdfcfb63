# core/proxy/request_builder.py
"""Построение исходящего запроса к upstream из входящего запроса"""

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from multidict import CIMultiDict

logger = logging.getLogger(__name__)

BODY_CHUNK_SIZE = 64 * 1024

_DEFAULT_PORTS = {'http': 80, 'https': 443}


@dataclass
class OutboundContent:
    """Тело исходящего запроса: поток байтов и (опционально) media type"""
    stream: AsyncIterator[bytes]
    media_type: Optional[str] = None


@dataclass
class OutboundRequest:
    """Исходящий запрос к upstream. Создается заново на каждый вызов"""
    url: str
    method: str
    http_version: str
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    content: Optional[OutboundContent] = None

    @property
    def authority(self) -> str:
        return get_authority(self.url)


def get_authority(url: str) -> str:
    """
    Возвращает authority URL (host[:port]) без userinfo и без порта по умолчанию

    Args:
        url: Абсолютный URL

    Returns:
        str: Например "example.com" или "example.com:8443"
    """
    parts = urlsplit(url)
    netloc = parts.netloc.rpartition('@')[2]
    if parts.port is not None and parts.port == _DEFAULT_PORTS.get(parts.scheme):
        netloc = netloc.rsplit(':', 1)[0]
    return netloc


def copy_headers(target: OutboundRequest, source, except_headers: Optional[Iterable[str]] = None):
    """
    Копирует заголовки входящего запроса в исходящий

    Значения переносятся как есть, без проверки синтаксиса. Заголовки с
    несколькими значениями переносятся всеми значениями.

    Args:
        target: Исходящий запрос
        source: Входящий запрос (aiohttp.web.Request или совместимый объект)
        except_headers: Имена заголовков, которые не копируются (без учета регистра)
    """
    excluded = {name.lower() for name in except_headers or ()}

    for name, value in source.headers.items():
        if name.lower() in excluded:
            continue
        target.headers.add(name, value)


async def _iter_body(reader) -> AsyncIterator[bytes]:
    async for chunk in reader.iter_chunked(BODY_CHUNK_SIZE):
        yield chunk


def copy_content(target: OutboundRequest, source):
    """
    Переносит тело и Content-Type входящего запроса в исходящий

    Тело не буферизуется: исходящий запрос читает его потоком. Если у
    входящего запроса нет тела, исходящий остается без content.
    Content-Type становится media type без разбора, строкой как есть.

    Args:
        target: Исходящий запрос
        source: Входящий запрос
    """
    if not source.body_exists:
        return

    target.content = OutboundContent(
        stream=_iter_body(source.content),
        media_type=source.headers.get('Content-Type'),
    )


def build_request(
        inbound,
        upstream_url: str,
        http_version: str,
        forward_ip: bool = False,
        except_headers: Optional[Iterable[str]] = None,
) -> OutboundRequest:
    """
    Создает исходящий запрос к upstream из входящего запроса

    Путь и хост берутся из upstream_url, из входящего запроса переносится
    только query string.

    Args:
        inbound: Входящий запрос
        upstream_url: URL upstream (например https://example.com/collect)
        http_version: Версия HTTP исходящего запроса
        forward_ip: Добавлять X-Forwarded-For с IP клиента
        except_headers: Заголовки, которые не копируются

    Returns:
        OutboundRequest: Готовый к отправке запрос
    """
    parts = urlsplit(upstream_url)
    # raw (закодированная) query string, как ее прислал клиент
    query = inbound.rel_url.raw_query_string
    target_url = urlunsplit((parts.scheme, parts.netloc, parts.path, query, ''))

    request = OutboundRequest(
        url=target_url,
        method=inbound.method,
        http_version=http_version,
    )

    copy_headers(request, inbound, except_headers)
    request.headers['Host'] = request.authority

    if forward_ip:
        remote = inbound.remote
        request.headers.add('X-Forwarded-For', str(remote) if remote is not None else '')

    # Тело подключаем последним, когда метод и заголовки уже зафиксированы
    copy_content(request, inbound)

    logger.debug(f"Outbound request built: {request.method} {request.url}")
    return request
