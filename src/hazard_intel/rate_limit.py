"""Per-source request scheduling: fixed-window token buckets, short-TTL cache, bounded retry.

A :class:`RequestScheduler` owns one :class:`RateBucket` and a response
cache per content source.  Every outbound provider call goes through
``enqueue`` so throttling, caching and retry happen in one place::

    scheduler = RequestScheduler({"twitter": dispatch_twitter}, requests_per_minute={"twitter": 300})
    payload = await scheduler.enqueue("twitter", {"endpoint": "tweets/search/recent", "params": {...}})

The clock and sleep functions are injectable so throttling can be exercised
on a simulated clock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping

from .config import DEFAULT_REQUESTS_PER_MINUTE, FALLBACK_REQUESTS_PER_MINUTE, PipelineConfig

_log = logging.getLogger(__name__)

Dispatcher = Callable[[Mapping[str, Any]], Awaitable[Any]]

WINDOW_SECONDS = 60.0
# Small margin past the window boundary before re-checking a drained bucket.
_WINDOW_MARGIN_SECONDS = 0.05
_MIN_WAIT_SECONDS = 0.1

_MISSING = object()


class ProviderError(RuntimeError):
    """Transient failure talking to an external provider (timeout, 5xx, throttle)."""

    def __init__(self, source: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class UnknownSourceError(KeyError):
    pass


@dataclass
class RateBucket:
    capacity: int
    tokens: int
    window_start: float


@dataclass
class CacheEntry:
    payload: Any
    written_at: float


def capped_exponential_backoff_ms(attempt: int, base_ms: int = 1000, cap_ms: int = 30_000) -> int:
    return int(min(base_ms * (2 ** max(0, attempt)), cap_ms))


def request_fingerprint(source: str, request: Mapping[str, Any]) -> str:
    return json.dumps({"source": source, "request": request}, sort_keys=True, default=str)


class RequestScheduler:
    def __init__(
        self,
        dispatchers: Mapping[str, Dispatcher] | None = None,
        *,
        requests_per_minute: Mapping[str, int] | None = None,
        cache_ttl: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._dispatchers: Dict[str, Dispatcher] = dict(dispatchers or {})
        self._rpm: Dict[str, int] = dict(DEFAULT_REQUESTS_PER_MINUTE)
        self._rpm.update(requests_per_minute or {})
        self.cache_ttl = cache_ttl
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep
        self._buckets: Dict[str, RateBucket] = {}
        self._cache: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        dispatchers: Mapping[str, Dispatcher] | None = None,
        **kwargs: Any,
    ) -> "RequestScheduler":
        return cls(
            dispatchers,
            requests_per_minute=config.requests_per_minute,
            cache_ttl=config.cache_ttl_seconds,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay_seconds,
            **kwargs,
        )

    @property
    def sources(self) -> list[str]:
        return sorted(self._dispatchers)

    # ── Buckets ──────────────────────────────────────────────────────

    def bucket(self, source: str) -> RateBucket:
        """Return the source's bucket, refilling it when its window has rolled over."""
        now = self._clock()
        bucket = self._buckets.get(source)
        if bucket is None:
            rpm = int(self._rpm.get(source, FALLBACK_REQUESTS_PER_MINUTE))
            bucket = RateBucket(capacity=rpm, tokens=rpm, window_start=now)
            self._buckets[source] = bucket
        elif now - bucket.window_start >= WINDOW_SECONDS:
            bucket.tokens = bucket.capacity
            bucket.window_start = now
        return bucket

    def _lock_for(self, source: str) -> asyncio.Lock:
        lock = self._locks.get(source)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[source] = lock
        return lock

    async def _take_token(self, source: str) -> None:
        # asyncio.Lock wakes waiters in arrival order, so tokens go out FIFO per source.
        async with self._lock_for(source):
            bucket = self.bucket(source)
            while bucket.tokens <= 0:
                wait = WINDOW_SECONDS - (self._clock() - bucket.window_start) + _WINDOW_MARGIN_SECONDS
                _log.debug("Rate limit reached for %s; waiting %.2fs", source, wait)
                await self._sleep(max(wait, _MIN_WAIT_SECONDS))
                bucket = self.bucket(source)
            bucket.tokens -= 1

    # ── Cache ────────────────────────────────────────────────────────

    def get_cached(self, source: str, request: Mapping[str, Any]) -> Any:
        key = request_fingerprint(source, request)
        entry = self._cache.get(key)
        if entry is None:
            return _MISSING
        if self._clock() - entry.written_at > self.cache_ttl:
            del self._cache[key]
            return _MISSING
        return entry.payload

    def set_cache(self, source: str, request: Mapping[str, Any], payload: Any) -> None:
        key = request_fingerprint(source, request)
        self._cache[key] = CacheEntry(payload=payload, written_at=self._clock())

    def cache_size(self) -> int:
        return len(self._cache)

    # ── Dispatch ─────────────────────────────────────────────────────

    async def enqueue(self, source: str, request: Mapping[str, Any]) -> Any:
        dispatcher = self._dispatchers.get(source)
        if dispatcher is None:
            raise UnknownSourceError(source)

        cached = self.get_cached(source, request)
        if cached is not _MISSING:
            return cached

        key = request_fingerprint(source, request)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._dispatch_and_cache(key, source, dispatcher, request))
            self._inflight[key] = task
        # Callers that give up (timeout, cancel) never cancel the shared dispatch.
        return await asyncio.shield(task)

    async def _dispatch_and_cache(
        self,
        key: str,
        source: str,
        dispatcher: Dispatcher,
        request: Mapping[str, Any],
    ) -> Any:
        try:
            payload = await self._dispatch_with_retry(source, dispatcher, request)
        finally:
            self._inflight.pop(key, None)
        self.set_cache(source, request, payload)
        return payload

    async def _dispatch_with_retry(
        self,
        source: str,
        dispatcher: Dispatcher,
        request: Mapping[str, Any],
    ) -> Any:
        attempt = 0
        while True:
            # Every dispatch, retries included, spends a token.
            await self._take_token(source)
            try:
                return await dispatcher(request)
            except Exception as exc:
                if attempt >= self.max_retries:
                    _log.warning("%s request failed after %d attempt(s): %s", source, attempt + 1, exc)
                    raise
                attempt += 1
                _log.info("%s request failed (%s); retry %d/%d", source, exc, attempt, self.max_retries)
                await self._sleep(self.retry_delay * attempt)
