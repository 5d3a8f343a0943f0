"""
Named in-process caches.

The only cache the library keeps is the per-record-type schema cache; it is
a bounded cachetools LRU so long-running processes with many dynamically
created record types do not grow without limit.
"""
import logging
import threading
from collections.abc import Callable, Hashable
from typing import Any

import cachetools

logger = logging.getLogger(__name__)

__all__ = ['Cache', 'get_schema_cache']


class Cache:
    """Process-wide registry of named cachetools caches.

        schemas = Cache.get_instance().get_cache('schema')
    """

    _instance: 'Cache | None' = None
    _lock = threading.RLock()

    def __init__(self) -> None:
        self._caches: dict[str, cachetools.Cache] = {}

    @classmethod
    def get_instance(cls) -> 'Cache':
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def get_cache(self, name: str, maxsize: int = 256, ttl: int | None = None) -> cachetools.Cache:
        """Cache registered under `name`, created on first use.

        LRU by default; with `ttl` (seconds) entries also expire.
        """
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                cache = (cachetools.LRUCache(maxsize=maxsize) if ttl is None
                         else cachetools.TTLCache(maxsize=maxsize, ttl=ttl))
                self._caches[name] = cache
            return cache

    def get_or_create(self, name: str, key: Hashable, factory: Callable[[], Any]) -> Any:
        """Cached value for `key`, built with `factory` on a miss.

        The factory runs outside the lock; when two threads race, the first
        stored value wins.
        """
        cache = self.get_cache(name)
        with self._lock:
            if key in cache:
                return cache[key]
        value = factory()
        with self._lock:
            value = cache.setdefault(key, value)
        logger.debug(f'Cache miss for {name}[{key!r}]')
        return value

    def clear_cache(self, name: str) -> None:
        with self._lock:
            if name in self._caches:
                self._caches[name].clear()

    def clear_all(self) -> None:
        with self._lock:
            for cache in self._caches.values():
                cache.clear()


def get_schema_cache() -> cachetools.Cache:
    return Cache.get_instance().get_cache('schema')
