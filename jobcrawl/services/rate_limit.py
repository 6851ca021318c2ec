"""Sliding-window rate limiting for calls to external job sources.

Each source keeps the timestamps of its recent calls; timestamps older than
the window are discarded on every check. State is process-local, so a
restart resets the limits.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    def __init__(
        self,
        limits: dict[str, int] | None = None,
        *,
        window_seconds: float = 3600,
        default_limit: int = 50,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.limits = dict(limits or {})
        self.window_seconds = window_seconds
        self.default_limit = default_limit
        self._clock = clock
        self._sleep = sleep
        self._calls: dict[str, deque[float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def limit_for(self, source: str) -> int:
        return max(self.limits.get(source, self.default_limit), 1)

    def _prune(self, source: str) -> deque[float]:
        calls = self._calls.setdefault(source, deque())
        cutoff = self._clock() - self.window_seconds
        while calls and calls[0] <= cutoff:
            calls.popleft()
        return calls

    def can_proceed(self, source: str) -> bool:
        return len(self._prune(source)) < self.limit_for(source)

    def record(self, source: str) -> None:
        self._calls.setdefault(source, deque()).append(self._clock())

    def time_until_slot(self, source: str) -> float:
        calls = self._prune(source)
        if len(calls) < self.limit_for(source):
            return 0.0
        return max(calls[0] + self.window_seconds - self._clock(), 0.0)

    def _lock(self, source: str) -> asyncio.Lock:
        lock = self._locks.get(source)
        if lock is None:
            lock = self._locks[source] = asyncio.Lock()
        return lock

    async def wait_for_slot(self, source: str) -> None:
        """Suspend until ``source`` has capacity. Does not consume the slot."""
        while True:
            wait = self.time_until_slot(source)
            if wait <= 0:
                return
            logger.debug("[rate] limit reached for %s, waiting %.1fs", source, wait)
            await self._sleep(wait)

    async def acquire(self, source: str) -> None:
        """Wait for a slot and consume it; check and record happen under one lock."""
        while True:
            async with self._lock(source):
                wait = self.time_until_slot(source)
                if wait <= 0:
                    self.record(source)
                    return
            logger.debug("[rate] limit reached for %s, waiting %.1fs", source, wait)
            await self._sleep(wait)

    async def execute(self, source: str, fn: Callable[[], Awaitable[T]]) -> T:
        await self.acquire(source)
        return await fn()
