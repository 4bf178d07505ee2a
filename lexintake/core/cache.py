"""
In-process TTL Cache
Memoizes user lists and permission status results between requests
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import structlog

logger = structlog.get_logger()


class Clock(Protocol):
    def now(self) -> float:
        ...


class MonotonicClock:
    """Wall-clock independent time source"""

    def now(self) -> float:
        return time.monotonic()


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """
    In-memory key/value cache with per-entry expiry.

    Entries are plain Python objects, so callers must not mutate what they
    get back. ``get_or_load`` collapses concurrent misses for the same key
    into a single loader call.
    """

    def __init__(self, name: str, default_ttl_seconds: float = 600, clock: Optional[Clock] = None):
        self.name = name
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock or MonotonicClock()
        self._entries: Dict[str, _Entry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    def get(self, key: str) -> Optional[Any]:
        """Get a cached value by key. Returns None on miss or expiry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock.now():
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Set a cached value with TTL."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = _Entry(value=value, expires_at=self._clock.now() + ttl)

    def invalidate(self, key: str) -> bool:
        """Delete a cached key. Returns True when something was removed."""
        removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Cache entry invalidated", cache=self.name, key=key)
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Delete all keys starting with prefix. Returns count deleted."""
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug("Cache prefix invalidated", cache=self.name, prefix=prefix, count=len(keys))
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[float] = None,
        cache_if: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Return the cached value or run loader once for all concurrent callers.

        A loaded value is stored only when ``cache_if`` (if given) accepts it;
        callers waiting on the same load still receive it.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except BaseException as exc:
            future.set_exception(exc)
            # Consume the exception on the shared future so it is not reported as unretrieved
            future.exception()
            raise
        else:
            if cache_if is None or cache_if(value):
                self.set(key, value, ttl_seconds)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
