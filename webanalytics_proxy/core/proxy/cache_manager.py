# core/proxy/cache_manager.py
"""Управление кэшем для прокси-сервера"""

import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

# Фабрика возвращает (значение, ttl в секундах); ttl=None - без истечения
CacheFactory = Callable[[], Awaitable[Tuple[Optional[Any], Optional[float]]]]


class CacheManager:
    """
    Менеджер кэша с абсолютным сроком жизни записей и LRU вытеснением

    Все обращения выполняются в потоке event loop, поэтому блокировки не
    нужны. get_or_create не объединяет параллельные вызовы с одним ключом:
    при одновременном промахе фабрика может выполниться несколько раз.
    """

    def __init__(self, maxsize: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        """
        Инициализация кэш-менеджера

        Args:
            maxsize: Максимальное количество элементов в кэше (None - без ограничения)
            clock: Источник времени в секундах (монотонный)
        """
        self.cache = OrderedDict()
        self.maxsize = maxsize
        self.clock = clock
        self.hits = 0
        self.misses = 0
        logger.debug(f"CacheManager инициализирован: maxsize={maxsize}")

    def _lookup(self, key: str) -> Tuple[bool, Any]:
        entry = self.cache.get(key)
        if entry is None:
            return False, None

        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self.cache[key]
            logger.debug(f"Cache EXPIRED: {key}")
            return False, None

        # Перемещаем в конец (most recently used)
        self.cache.move_to_end(key)
        return True, value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Получить элемент из кэша

        Args:
            key: Ключ кэша
            default: Значение, если ключа нет или запись истекла

        Returns:
            Сохраненное значение или default
        """
        found, value = self._lookup(key)
        if found:
            self.hits += 1
            logger.debug(f"Cache HIT: {key}")
            return value

        self.misses += 1
        logger.debug(f"Cache MISS: {key}")
        return default

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> Any:
        """
        Добавить или перезаписать элемент в кэше

        Args:
            key: Ключ кэша
            value: Значение
            ttl: Время жизни в секундах от текущего момента (None - бессрочно)

        Returns:
            Сохраненное значение
        """
        expires_at = self.clock() + ttl if ttl is not None else None

        if key in self.cache:
            self.cache.move_to_end(key)
        self.cache[key] = (value, expires_at)

        # Проверяем лимит и вытесняем старый элемент
        if self.maxsize is not None and len(self.cache) > self.maxsize:
            evicted_key = self.cache.popitem(last=False)[0]
            logger.debug(f"Cache EVICT: {evicted_key}")

        return value

    async def get_or_create(self, key: str, factory: CacheFactory) -> Any:
        """
        Вернуть значение из кэша или создать его фабрикой

        Если фабрика вернула None, ничего не сохраняется и следующий вызов
        снова обратится к фабрике. Исключения фабрики (включая отмену)
        пробрасываются, запись при этом не создается.

        Args:
            key: Ключ кэша
            factory: Асинхронная фабрика, возвращающая (значение, ttl)

        Returns:
            Значение из кэша, новое значение или None
        """
        found, value = self._lookup(key)
        if found:
            self.hits += 1
            logger.debug(f"Cache HIT: {key}")
            return value

        self.misses += 1
        logger.debug(f"Cache MISS: {key}")

        value, ttl = await factory()
        if value is None:
            return None

        return self.set(key, value, ttl)

    def clear(self):
        """Очистить весь кэш"""
        size_before = len(self.cache)
        self.cache.clear()
        self.hits = 0
        self.misses = 0
        logger.info(f"Cache cleared: {size_before} items removed")

    def get_stats(self) -> dict:
        """
        Получить статистику кэша

        Returns:
            dict: Словарь со статистикой
        """
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0

        return {
            'size': len(self.cache),
            'maxsize': self.maxsize,
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': f"{hit_rate:.1f}%",
            'total_requests': total
        }

    @staticmethod
    def generate_key(component: str, operation: str, resource: str) -> str:
        """
        Генерация ключа кэша

        Ключ детерминирован: одинаковая конфигурация дает один и тот же ключ,
        а разные экземпляры с разными ресурсами не пересекаются в общем хранилище.

        Args:
            component: Имя компонента
            operation: Имя операции
            resource: Ресурс (например URL скрипта)

        Returns:
            str: Ключ вида "Component.operation:resource"
        """
        return f"{component}.{operation}:{resource}"

    def __len__(self) -> int:
        """Возвращает текущий размер кэша"""
        return len(self.cache)

    def __contains__(self, key: str) -> bool:
        """Проверка наличия неистекшего ключа в кэше"""
        return self._lookup(key)[0]
