# core/options.py
"""Настройки прокси веб-аналитики и пресеты провайдеров"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_SCRIPT_CONTENT_TYPE = "text/javascript; charset=UTF-8"
DEFAULT_CLIENT_SCRIPT_CACHE_SECONDS = 43200
DEFAULT_SCRIPT_BROWSER_CACHE_SECONDS = 86400
DEFAULT_SCRIPT_CACHE_CONTROL = f"max-age={DEFAULT_SCRIPT_BROWSER_CACHE_SECONDS}"
DEFAULT_COLLECT_HTTP_VERSION = "2.0"
DEFAULT_COPY_HEADERS_EXCEPT = ("Cookie",)

SUPPORTED_HTTP_VERSIONS = ("1.0", "1.1", "2.0")

# Ключи конфигурации -> поля ProxyOptions
CONFIG_KEYS = {
    'ClientSideJavaScriptUrl': 'client_script_url',
    'ClientSideJavaScriptCachingSeconds': 'client_script_cache_seconds',
    'ClientSideJavaScriptContentType': 'client_script_content_type',
    'ClientSideJavaScriptFallbackContent': 'client_script_fallback_content',
    'CollectUrl': 'collect_url',
    'CollectHttpVersion': 'collect_http_version',
    'ForwardRequestIPAddress': 'forward_request_ip_address',
    'CopyHeadersExcept': 'copy_headers_except',
    'IgnoreCertificateErrors': 'ignore_certificate_errors',
}

PROVIDER_PRESETS: Dict[str, Dict[str, str]] = {
    'cloudflare': {
        'client_script_url': "https://static.cloudflareinsights.com/beacon.min.js",
        'collect_url': "https://cloudflareinsights.com/cdn-cgi/rum",
    },
}


class ConfigurationError(ValueError):
    """Некорректная конфигурация прокси (фатально при создании)"""


def _validate_url(name: str, value: Optional[str]) -> str:
    if not value or not isinstance(value, str):
        raise ConfigurationError(f"{name} is required")

    parts = urlsplit(value)
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        raise ConfigurationError(f"{name} must be an absolute http(s) URL, got {value!r}")

    return value


def _validate_header_names(value: Any) -> Tuple[str, ...]:
    # строка итерируется посимвольно и молча отключила бы исключение заголовков
    if isinstance(value, (str, bytes)):
        raise ConfigurationError(f"CopyHeadersExcept must be a list of header names, got {value!r}")
    try:
        names = tuple(value)
    except TypeError:
        raise ConfigurationError(f"CopyHeadersExcept must be a list of header names, got {value!r}") from None

    for name in names:
        if not isinstance(name, str):
            raise ConfigurationError(f"CopyHeadersExcept entries must be strings, got {name!r}")
    return names


def normalize_http_version(value: Any) -> str:
    """
    Приводит строку версии HTTP к виду "major.minor"

    Args:
        value: Версия из конфигурации ("2.0", "2", "1.1", ...)

    Returns:
        str: Нормализованная версия

    Raises:
        ConfigurationError: если версия не распознана или не поддерживается
    """
    text = str(value).strip()
    if text.upper().startswith('HTTP/'):
        text = text[5:]
    if text.isdigit():
        text = f"{text}.0"

    if text not in SUPPORTED_HTTP_VERSIONS:
        raise ConfigurationError(
            f"Unsupported HTTP version {value!r}, expected one of {', '.join(SUPPORTED_HTTP_VERSIONS)}"
        )
    return text


@dataclass(frozen=True)
class ProxyOptions:
    """Неизменяемые настройки одного экземпляра прокси"""

    client_script_url: str
    collect_url: str
    client_script_cache_seconds: int = DEFAULT_CLIENT_SCRIPT_CACHE_SECONDS
    client_script_content_type: str = DEFAULT_CLIENT_SCRIPT_CONTENT_TYPE
    client_script_fallback_content: Optional[str] = None
    collect_http_version: str = DEFAULT_COLLECT_HTTP_VERSION
    forward_request_ip_address: bool = False
    copy_headers_except: Optional[Tuple[str, ...]] = field(default=DEFAULT_COPY_HEADERS_EXCEPT)
    ignore_certificate_errors: bool = False

    def __post_init__(self):
        _validate_url('ClientSideJavaScriptUrl', self.client_script_url)
        _validate_url('CollectUrl', self.collect_url)

        try:
            seconds = int(self.client_script_cache_seconds)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"ClientSideJavaScriptCachingSeconds must be an integer, got {self.client_script_cache_seconds!r}"
            ) from None
        if seconds < 0:
            raise ConfigurationError("ClientSideJavaScriptCachingSeconds must be >= 0")

        # frozen dataclass: нормализуем через object.__setattr__
        object.__setattr__(self, 'client_script_cache_seconds', seconds)
        object.__setattr__(self, 'collect_http_version', normalize_http_version(self.collect_http_version))
        if self.copy_headers_except is not None:
            object.__setattr__(self, 'copy_headers_except', _validate_header_names(self.copy_headers_except))

    @property
    def http2(self) -> bool:
        return self.collect_http_version == "2.0"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProxyOptions":
        """
        Создает настройки из секции конфигурации

        Принимает как ключи конфигурации (CollectUrl, ...), так и имена полей
        (collect_url, ...). Ключ Provider подставляет пресет провайдера,
        явно заданные значения имеют приоритет.

        Args:
            data: Словарь настроек

        Returns:
            ProxyOptions: Проверенные настройки
        """
        values: Dict[str, Any] = {}

        provider = data.get('Provider') or data.get('provider')
        if provider:
            values.update(get_provider_preset(provider))

        for key, value in data.items():
            if key in ('Provider', 'provider'):
                continue
            name = CONFIG_KEYS.get(key, key)
            if name not in cls.__dataclass_fields__:
                logger.warning(f"Unknown proxy option ignored: {key}")
                continue
            # null в конфиге означает "значение по умолчанию" (кроме явных None-полей)
            if value is None and name not in ('client_script_fallback_content', 'copy_headers_except'):
                continue
            values[name] = value

        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigurationError(f"Incomplete proxy configuration: {e}") from None

    def with_overrides(self, **changes) -> "ProxyOptions":
        return replace(self, **changes)


def get_provider_preset(provider: str) -> Dict[str, str]:
    """Возвращает URL по умолчанию для провайдера аналитики"""
    preset = PROVIDER_PRESETS.get(provider.lower())
    if preset is None:
        raise ConfigurationError(
            f"Unknown analytics provider {provider!r}, known: {', '.join(sorted(PROVIDER_PRESETS))}"
        )
    return dict(preset)


def cloudflare_options(**overrides) -> ProxyOptions:
    """Настройки для Cloudflare Web Analytics"""
    values: Dict[str, Any] = get_provider_preset('cloudflare')
    values.update(overrides)
    return ProxyOptions(**values)
