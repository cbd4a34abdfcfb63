import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from webanalytics_proxy.core.options import (
    ConfigurationError,
    DEFAULT_CLIENT_SCRIPT_CACHE_SECONDS,
    DEFAULT_CLIENT_SCRIPT_CONTENT_TYPE,
    DEFAULT_COLLECT_HTTP_VERSION,
    DEFAULT_COPY_HEADERS_EXCEPT,
    ProxyOptions,
)
from webanalytics_proxy.core.proxy_manager import DEFAULT_COLLECT_PATH, DEFAULT_SCRIPT_PATH

logger = logging.getLogger(__name__)


def get_app_data_dir() -> Path:
    """Возвращает путь для хранения данных приложения"""
    env_dir = os.getenv('WEBANALYTICS_PROXY_HOME')
    if env_dir:
        app_data_dir = Path(env_dir)
    elif os.name == 'nt':  # Windows
        appdata_dir = Path(os.getenv('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
        app_data_dir = appdata_dir / 'WebAnalyticsProxy'
    else:  # Linux/Mac
        app_data_dir = Path.home() / '.config' / 'webanalytics-proxy'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.config = self._load_config()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'proxy': {
                'Provider': None,  # "cloudflare" подставляет URL провайдера
                'ClientSideJavaScriptUrl': None,
                'ClientSideJavaScriptCachingSeconds': DEFAULT_CLIENT_SCRIPT_CACHE_SECONDS,
                'ClientSideJavaScriptContentType': DEFAULT_CLIENT_SCRIPT_CONTENT_TYPE,
                'ClientSideJavaScriptFallbackContent': None,
                'CollectUrl': None,
                'CollectHttpVersion': DEFAULT_COLLECT_HTTP_VERSION,
                'ForwardRequestIPAddress': False,
                'CopyHeadersExcept': list(DEFAULT_COPY_HEADERS_EXCEPT),
                'IgnoreCertificateErrors': False,
            },

            'server': {
                'host': '127.0.0.1',
                'port': 8080,
                'script_path': DEFAULT_SCRIPT_PATH,
                'collect_path': DEFAULT_COLLECT_PATH,
            },

            'logging': {
                'level': 'INFO',
                'file': None,  # None = app_data/logs/webanalytics_proxy.log
            }
        }

    def _load_config(self) -> Dict[str, Any]:
        """Загружает конфигурацию из файла"""
        default_config = self._get_default_config()

        if not self.config_path.exists():
            logger.debug(f"Config file {self.config_path} not found, using defaults")
            return default_config

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load config {self.config_path}: {e}") from e

        if not isinstance(loaded_config, dict):
            raise ConfigurationError(f"Config {self.config_path} must contain a JSON object")

        # Объединяем с дефолтными значениями
        return self._deep_merge(default_config, loaded_config)

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Рекурсивное объединение словарей"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self) -> bool:
        """Сохраняет конфигурацию в файл"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info(f"Конфигурация сохранена: {self.config_path}")
            return True
        except OSError as e:
            logger.error(f"Ошибка сохранения конфига: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Получает значение по ключу (dot notation)"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Устанавливает значение по ключу (dot notation)"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            return self.save()
        return True

    def get_server_config(self) -> Dict[str, Any]:
        """Возвращает настройки сервера"""
        return copy.deepcopy(self.get('server', {}))

    def get_proxy_options(self) -> ProxyOptions:
        """
        Возвращает проверенные настройки прокси

        Raises:
            ConfigurationError: если обязательные URL не заданы или значения некорректны
        """
        return ProxyOptions.from_mapping(self.get('proxy', {}))
