"""Single-flight memoizing cache for async loaders."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, TypeVar

from common.logging_utils import extra_context, is_debug_enabled

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A single in-flight or completed load."""

    task: "asyncio.Task[T]"
    waiters: int = 0

    def is_done(self) -> bool:
        return self.task.done()


class SingleFlightCache(Generic[K, T]):
    """Run an async loader at most once per key.

    Every caller asking for the same key, concurrently or later, awaits the
    same task and observes the same result or the same exception. Lifetime is
    that of the owning object (one install run), never process-global.
    """

    def __init__(self, name: str = "cache"):
        """Initialize the cache.

        Args:
            name: Label used in log records.
        """
        self._name = name
        self._cache: Dict[K, CacheEntry[T]] = {}
        self._loads = 0

    def get(self, key: K, loader: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """Return an awaitable for ``key``, starting ``loader`` only if no load exists yet.

        The returned future is shielded: cancelling one caller never cancels the
        shared load for the others.
        """
        entry = self._ensure(key, loader)
        entry.waiters += 1
        return asyncio.shield(entry.task)

    def start(self, key: K, loader: Callable[[], Awaitable[T]]) -> None:
        """Start the load for ``key`` without waiting for it."""
        self._ensure(key, loader)

    def _ensure(self, key: K, loader: Callable[[], Awaitable[T]]) -> CacheEntry[T]:
        entry = self._cache.get(key)
        if entry is None:
            task = asyncio.ensure_future(loader())
            task.add_done_callback(self._retrieve)
            entry = CacheEntry(task=task)
            self._cache[key] = entry
            self._loads += 1
            if is_debug_enabled(logger):
                logger.debug(
                    "Single-flight load started",
                    extra=extra_context(event="cache_miss", component=self._name, target=str(key)),
                )
        elif is_debug_enabled(logger):
            logger.debug(
                "Single-flight load shared",
                extra=extra_context(event="cache_hit", component=self._name, target=str(key)),
            )
        return entry

    def clear(self) -> None:
        """Forget every key."""
        self._cache.clear()

    async def cancel_pending(self) -> None:
        """Cancel loads that are still running and forget them."""
        pending: List[K] = [k for k, e in self._cache.items() if not e.is_done()]
        tasks = [self._cache.pop(k).task for k in pending]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        done = [e for e in self._cache.values() if e.is_done()]
        failed = sum(1 for e in done if not e.task.cancelled() and e.task.exception() is not None)
        return {
            "total_entries": len(self._cache),
            "pending_entries": len(self._cache) - len(done),
            "failed_entries": failed,
            "loads": self._loads,
            "waiters": sum(e.waiters for e in self._cache.values()),
        }

    @staticmethod
    def _retrieve(task: "asyncio.Task[Any]") -> None:
        """Mark a failed load's exception as retrieved; callers re-raise it themselves."""
        if not task.cancelled():
            task.exception()
