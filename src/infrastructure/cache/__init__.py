"""
Cache Infrastructure
====================

Key/value cache with per-entry TTL and pattern invalidation.

``InMemoryCache`` is the per-process implementation; entries are
deep-copied on the way in and out so callers can never mutate a cached
value in place.
"""

import copy
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Pattern, Tuple, Union

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Loader = Callable[[], Awaitable[Any]]


class ICache(ABC):
    """
    Interface for the cache.

    ``layer`` names the cache tier; single-tier implementations may ignore it.
    """

    @abstractmethod
    async def get(
        self,
        key: str,
        loader: Optional[Loader] = None,
        ttl: Optional[int] = None,
        layer: str = "memory"
    ) -> Any:
        """Return the cached value, or load, store and return it on a miss."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None, layer: str = "memory") -> None:
        """Store a value."""

    @abstractmethod
    async def invalidate(self, pattern: Union[str, Pattern[str]]) -> int:
        """
        Drop matching keys.

        A string matches every key containing it; a compiled regex matches
        keys it finds a match in. Returns the number of keys dropped.
        """


class InMemoryCache(ICache):
    """Dictionary-backed cache with lazy expiry."""

    def __init__(self, default_ttl: int = 300, clock: Callable[[], float] = time.monotonic):
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(self, key: str) -> Tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return False, None
        return True, copy.deepcopy(value)

    async def get(
        self,
        key: str,
        loader: Optional[Loader] = None,
        ttl: Optional[int] = None,
        layer: str = "memory"
    ) -> Any:
        hit, value = self._lookup(key)
        if hit:
            return value
        if loader is None:
            return None

        value = await loader()
        if value is not None:
            await self.set(key, value, ttl, layer)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, layer: str = "memory") -> None:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (self._clock() + ttl, copy.deepcopy(value))

    async def invalidate(self, pattern: Union[str, Pattern[str]]) -> int:
        if isinstance(pattern, re.Pattern):
            matches = [key for key in self._entries if pattern.search(key)]
        else:
            matches = [key for key in self._entries if pattern in key]

        for key in matches:
            del self._entries[key]

        if matches:
            logger.debug("Cache entries invalidated", extra={"pattern": str(pattern), "count": len(matches)})
        return len(matches)

    async def clear(self) -> None:
        self._entries.clear()
