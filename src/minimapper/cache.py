"""
Process-wide caches for entity metadata and row materializers.

Entries are keyed so that a new key appears whenever the cached value could
differ (a new entity class, a new query shape), so nothing is ever evicted.
Stores are `cachetools.Cache` instances with unbounded size.
"""
import logging
import math
import threading
from collections.abc import Callable, Hashable
from typing import Any

import cachetools

logger = logging.getLogger(__name__)

METADATA_CACHE = 'entity_metadata'
MATERIALIZER_CACHE = 'materializers'


class Cache:
    """Cache manager for the mapper.

    Thread-safe singleton by default, but a fresh instance can be created and
    handed to a registry so tests do not share state.
    """

    _instance = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._caches: dict[str, cachetools.Cache] = {}
        self._lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_cache(self, name: str) -> cachetools.Cache:
        """Get or create the named store.
        """
        if name not in self._caches:
            with self._lock:
                if name not in self._caches:
                    self._caches[name] = cachetools.Cache(maxsize=math.inf)
        return self._caches[name]

    def get_or_create(self, name: str, key: Hashable, factory: Callable[[], Any]) -> Any:
        """Return the cached value for `key`, building it once if missing.

        The factory runs under the cache lock, so concurrent callers asking for
        the same key wait for the first one and then share its result.
        """
        cache = self.get_cache(name)
        try:
            return cache[key]
        except KeyError:
            pass

        with self._lock:
            try:
                value = cache[key]
                logger.debug(f'Cache hit for {name} after wait')
                return value
            except KeyError:
                logger.debug(f'Cache miss for {name}: {key!r}')
            value = factory()
            cache[key] = value
            return value

    def size(self, name: str) -> int:
        """Number of entries in the named store."""
        return len(self.get_cache(name))

    def clear_all(self) -> None:
        """Clear all managed caches."""
        with self._lock:
            for cache in self._caches.values():
                cache.clear()

    def clear_cache(self, name: str) -> None:
        """Clear a specific cache by name."""
        with self._lock:
            if name in self._caches:
                self._caches[name].clear()
