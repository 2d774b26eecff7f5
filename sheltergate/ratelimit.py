"""In-memory token bucket rate limiter keyed by string.

Each key (client IP or user identifier) owns a bucket holding up to ``rate``
tokens. A bucket is refilled in full once ``window`` seconds have elapsed
since its last refill, so this is a fixed-window limiter: a client can be
admitted up to ``2 * rate`` times in quick succession around a window
boundary. Stale buckets are reclaimed by :meth:`RateLimiter.sweep`, which the
cleanup task started with :meth:`RateLimiter.start` runs periodically.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import suppress
from datetime import timedelta
from typing import Callable

from .metrics import BUCKETS

logger = logging.getLogger(__name__)


class Bucket:
    __slots__ = ("tokens", "last_refill", "lock", "evicted")

    def __init__(self, capacity: int, now: float) -> None:
        self.tokens = capacity
        self.last_refill = now
        self.lock = threading.Lock()
        self.evicted = False


def _seconds(window: float | timedelta) -> float:
    if isinstance(window, timedelta):
        return window.total_seconds()
    return float(window)


class RateLimiter:
    """Allow at most ``rate`` requests per ``window`` for every key.

    The key map is guarded by its own lock, held only to find or insert a
    bucket; token accounting happens under the bucket's lock. The lock order
    is always map lock, then bucket lock.

    Construction does not schedule anything: stale buckets are only reclaimed
    once :meth:`start` has been called from a running event loop (the app
    lifespan does this for every limiter in :class:`~sheltergate.limits.Limiters`),
    or when :meth:`sweep` is called directly. Pair every ``start`` with
    :meth:`stop`.
    """

    def __init__(
        self,
        rate: int,
        window: float | timedelta,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(rate, bool) or not isinstance(rate, int) or rate <= 0:
            raise ValueError(f"rate must be a positive integer, got {rate!r}")
        seconds = _seconds(window)
        if seconds <= 0:
            raise ValueError(f"window must be a positive duration, got {window!r}")
        self.name = name
        self.rate = rate
        self.window = seconds
        self.cleanup_interval = seconds * 10
        self._clock = clock
        self._buckets: dict[str, Bucket] = {}
        self._lock = threading.Lock()
        self._task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _bucket(self, key: str) -> Bucket:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = Bucket(self.rate, self._clock())
                self._buckets[key] = bucket
            return bucket

    def allow(self, key: str) -> bool:
        """Consume one token for ``key``; return False when it is exhausted."""

        while True:
            bucket = self._bucket(key)
            with bucket.lock:
                if bucket.evicted:
                    # swept between lookup and accounting
                    continue
                now = self._clock()
                if now - bucket.last_refill >= self.window:
                    bucket.tokens = self.rate
                    bucket.last_refill = now
                if bucket.tokens > 0:
                    bucket.tokens -= 1
                    return True
                return False

    def retry_after(self, key: str) -> float:
        """Seconds until ``key`` regains capacity, 0.0 if it has some now."""

        with self._lock:
            bucket = self._buckets.get(key)
        if bucket is None:
            return 0.0
        with bucket.lock:
            if bucket.tokens > 0:
                return 0.0
            remaining = self.window - (self._clock() - bucket.last_refill)
            return max(remaining, 0.0)

    def reset(self, key: str) -> bool:
        with self._lock:
            bucket = self._buckets.pop(key, None)
            if bucket is None:
                return False
            with bucket.lock:
                bucket.evicted = True
        return True

    def sweep(self) -> int:
        """Drop buckets idle for more than two windows; return how many."""

        removed = 0
        with self._lock:
            now = self._clock()
            for key, bucket in list(self._buckets.items()):
                with bucket.lock:
                    if now - bucket.last_refill > self.window * 2:
                        bucket.evicted = True
                        del self._buckets[key]
                        removed += 1
        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.sweep()
            size = len(self)
            BUCKETS.labels(self.name).set(size)
            if removed:
                logger.debug(
                    "ratelimit %s: swept %d stale buckets, %d left",
                    self.name,
                    removed,
                    size,
                )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Start the periodic cleanup task on the running event loop."""

        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    def stats(self) -> dict[str, object]:
        return {
            "name": self.name,
            "rate": self.rate,
            "window_seconds": self.window,
            "buckets": len(self),
            "running": self.running,
        }
