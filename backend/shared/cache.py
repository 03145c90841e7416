"""In-process TTL cache for per-guild settings reads.

Backed by cachetools.TTLCache. A second, size-bounded store keeps the last
value seen for each key after its TTL runs out; it is consulted only when
the document store cannot be reached, so a database blip does not turn a
configured guild into an unconfigured one.
"""

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """TTL cache with a per-key lock and a last-known-good store."""

    def __init__(self, maxsize: int = 256, ttl: float = 60.0):
        self._maxsize = maxsize
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._last_good: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            if len(self._locks) >= self._maxsize * 2:
                for k in [k for k, v in self._locks.items() if not v.locked()]:
                    del self._locks[k]
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: str) -> Any:
        return self._fresh.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self._fresh[key] = value
        self._last_good[key] = value
        self._last_good.move_to_end(key)
        while len(self._last_good) > self._maxsize:
            self._last_good.popitem(last=False)

    def get_last_good(self, key: str) -> Any:
        return self._last_good.get(key, MISSING)

    def invalidate(self, key: str) -> None:
        """Drop *key* from both stores, e.g. after the value was rewritten."""
        self._fresh.pop(key, None)
        self._last_good.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._fresh if k.startswith(prefix)]:
            self._fresh.pop(key, None)
        for key in [k for k in self._last_good if k.startswith(prefix)]:
            self._last_good.pop(key, None)

    def clear(self) -> None:
        self._fresh.clear()
        self._last_good.clear()

    def __len__(self) -> int:
        return len(self._fresh)


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    retry: int = 2,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
):
    """Cache the result of an async reader.

    ``key_func`` receives the decorated function's arguments. Failures of a
    type in ``retry_on`` are retried ``retry`` times; when they persist the
    last-known-good value is returned if there is one, otherwise the error
    is re-raised.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = key_func(*args, **kwargs)
            value = cache.get(key)
            if value is not MISSING:
                return value

            async with cache.lock_for(key):
                value = cache.get(key)
                if value is not MISSING:
                    return value

                for attempt in range(1, retry + 1):
                    try:
                        value = await func(*args, **kwargs)
                    except retry_on as exc:
                        if attempt < retry:
                            logger.warning(
                                f"Read of {key} failed ({type(exc).__name__}), "
                                f"attempt {attempt}/{retry}"
                            )
                            await asyncio.sleep(0.5 * attempt)
                            continue
                        last_good = cache.get_last_good(key)
                        if last_good is MISSING:
                            raise
                        logger.warning(f"Serving last known value for {key}: {exc}")
                        return last_good
                    cache.set(key, value)
                    return value

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
