"""Keyed store of server-derived data with staleness, polling, and bounded retry.

Every read path goes through one :class:`CacheEntry` per key. Fetches are
single-flight: concurrent readers of the same key share one in-flight task.
Direct writes (optimistic patches, push merges, rollbacks) bump the entry's
``version`` so that a fetch which started before such a write can recognise
that its result is older and discard it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ..config import ClientConfig, RetryConfig
from ..errors import MarketError
from .keys import QueryKey, matches, namespace_of

logger = logging.getLogger(__name__)

Fetcher = Callable[[QueryKey], Awaitable[Any]]
Listener = Callable[[QueryKey, "QueryResult"], None]


@dataclass(frozen=True)
class QueryOptions:
    stale_after: float
    refetch_interval: float | None = None
    retry: bool = True


@dataclass(frozen=True)
class QueryResult:
    status: str
    value: Any = None
    is_fetching: bool = False
    is_stale: bool = False
    error: Exception | None = None

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"


@dataclass
class CacheEntry:
    key: QueryKey
    stale_after: float
    value: Any = None
    has_value: bool = False
    fetched_at: float | None = None
    error: Exception | None = None
    invalidated: bool = False
    invalidations: int = 0
    version: int = 0
    readers: int = 0
    listeners: list[Listener] = field(default_factory=list, repr=False)
    task: asyncio.Task[None] | None = field(default=None, repr=False)
    poller: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def is_fetching(self) -> bool:
        return self.task is not None and not self.task.done()


class Watch:
    """Registration of an active reader; keeps polling alive until closed."""

    def __init__(self, cache: "QueryCache", entry: CacheEntry, listener: Listener | None) -> None:
        self._cache = cache
        self._entry = entry
        self._listener = listener
        self._closed = False

    @property
    def key(self) -> QueryKey:
        return self._entry.key

    def result(self) -> QueryResult:
        return self._cache.peek(self._entry.key)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cache._release(self._entry, self._listener)

    def __enter__(self) -> "Watch":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class QueryCache:
    def __init__(
        self,
        retry: RetryConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._retry = retry or RetryConfig()
        self._clock = clock
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._fetchers: dict[str, Fetcher] = {}
        self._options: dict[str, QueryOptions] = {}

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> "QueryCache":
        cache = cls(config.retry, **kwargs)
        for namespace, query in config.queries.items():
            interval = query.refetch_interval_ms
            cache.configure(
                namespace,
                QueryOptions(
                    stale_after=query.stale_after_ms / 1000,
                    refetch_interval=interval / 1000 if interval else None,
                    retry=query.retry,
                ),
            )
        return cache

    # Registration ----------------------------------------------------------

    def configure(self, namespace: str, options: QueryOptions) -> None:
        self._options[namespace] = options

    def register(self, namespace: str, fetcher: Fetcher, options: QueryOptions | None = None) -> None:
        self._fetchers[namespace] = fetcher
        if options is not None:
            self._options[namespace] = options

    def options_for(self, key: QueryKey) -> QueryOptions:
        return self._options.get(namespace_of(key), QueryOptions(stale_after=300.0))

    # Reads -----------------------------------------------------------------

    def peek(self, key: QueryKey) -> QueryResult:
        """Current state of ``key`` without triggering any fetch."""
        entry = self._entries.get(key)
        if entry is None:
            return QueryResult(status="loading")
        return self._result(entry)

    def get(self, key: QueryKey) -> QueryResult:
        """Non-blocking read: serve what is cached and start a fetch when needed."""
        entry = self._entry(key)
        if entry.has_value and not self._is_stale(entry):
            return self._result(entry)
        self._start(entry)
        return self._result(entry)

    async def fetch(self, key: QueryKey) -> Any:
        """Blocking read: waits only when nothing has been cached for ``key`` yet."""
        entry = self._entry(key)
        if entry.has_value:
            if self._is_stale(entry):
                logger.debug("serving stale %s while revalidating", key)
                self._start(entry)
            return entry.value
        return await self._await(entry)

    async def refetch(self, key: QueryKey) -> Any:
        """Fetch ``key`` now regardless of staleness and wait for the result."""
        return await self._await(self._entry(key))

    def get_value(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry is not None and entry.has_value else None

    def has_value(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.has_value

    def version(self, key: QueryKey) -> int | None:
        entry = self._entries.get(key)
        return entry.version if entry is not None else None

    def keys(self, prefix: QueryKey = ()) -> list[QueryKey]:
        return [key for key, entry in self._entries.items() if entry.has_value and matches(key, prefix)]

    def __len__(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.has_value)

    # Writes ----------------------------------------------------------------

    def set(self, key: QueryKey, value: Any) -> int:
        """Overwrite ``key`` directly and return the entry's new version."""
        entry = self._entry(key)
        self._store(entry, value)
        return entry.version

    def update(self, key: QueryKey, updater: Callable[[Any], Any]) -> int | None:
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return None
        return self.set(key, updater(entry.value))

    def update_matching(self, prefix: QueryKey, updater: Callable[[QueryKey, Any], Any]) -> list[QueryKey]:
        touched = []
        for key in self.keys(prefix):
            current = self._entries[key].value
            replacement = updater(key, current)
            if replacement is not current:
                self.set(key, replacement)
                touched.append(key)
        return touched

    def remove(self, key: QueryKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        self._cancel(entry)
        self._notify(entry, QueryResult(status="loading"))

    def invalidate(self, prefix: QueryKey) -> int:
        """Mark matching entries stale; refetch the ones with active readers."""
        count = 0
        for key, entry in list(self._entries.items()):
            if not matches(key, prefix):
                continue
            entry.invalidated = True
            entry.invalidations += 1
            count += 1
            if entry.readers > 0 and key[0] in self._fetchers:
                self._start(entry)
        logger.debug("invalidated %d entries under %s", count, prefix)
        return count

    def clear(self) -> None:
        for entry in self._entries.values():
            self._cancel(entry)
        self._entries.clear()
        logger.info("query cache cleared")

    # Observation -----------------------------------------------------------

    def watch(self, key: QueryKey, listener: Listener | None = None) -> Watch:
        entry = self._entry(key)
        entry.readers += 1
        if listener is not None:
            entry.listeners.append(listener)
        if key[0] not in self._fetchers:
            return Watch(self, entry, listener)
        interval = self.options_for(key).refetch_interval
        if interval and entry.poller is None:
            entry.poller = asyncio.create_task(self._poll(entry, interval))
        self.get(key)
        return Watch(self, entry, listener)

    def _release(self, entry: CacheEntry, listener: Listener | None) -> None:
        entry.readers = max(entry.readers - 1, 0)
        if listener is not None and listener in entry.listeners:
            entry.listeners.remove(listener)
        if entry.readers == 0 and entry.poller is not None:
            entry.poller.cancel()
            entry.poller = None

    async def _poll(self, entry: CacheEntry, interval: float) -> None:
        # Keeps running while the consumer is idle or backgrounded.
        while self._entries.get(entry.key) is entry:
            await asyncio.sleep(interval)
            if self._entries.get(entry.key) is not entry:
                return
            self._start(entry)

    # Internals -------------------------------------------------------------

    def _entry(self, key: QueryKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, stale_after=self.options_for(key).stale_after)
            self._entries[key] = entry
        return entry

    def _is_stale(self, entry: CacheEntry) -> bool:
        if entry.invalidated or entry.fetched_at is None:
            return True
        return self._clock() - entry.fetched_at >= entry.stale_after

    def _result(self, entry: CacheEntry) -> QueryResult:
        if entry.has_value:
            status = "success"
        elif entry.error is not None and not entry.is_fetching:
            status = "error"
        else:
            status = "loading"
        return QueryResult(
            status=status,
            value=entry.value if entry.has_value else None,
            is_fetching=entry.is_fetching,
            is_stale=self._is_stale(entry),
            error=entry.error,
        )

    def _start(self, entry: CacheEntry) -> asyncio.Task[None]:
        if entry.task is not None and not entry.task.done():
            return entry.task
        namespace = entry.key[0]
        fetcher = self._fetchers.get(namespace)
        if fetcher is None:
            raise LookupError(f"no fetcher registered for {namespace}")
        entry.task = asyncio.create_task(self._load(entry, fetcher))
        return entry.task

    async def _await(self, entry: CacheEntry) -> Any:
        task = self._start(entry)
        entry.readers += 1
        try:
            await asyncio.wait({task})
        finally:
            entry.readers = max(entry.readers - 1, 0)
        if task.cancelled():
            raise MarketError(f"query {entry.key!r} was cancelled", code="QUERY_CANCELLED")
        if not entry.has_value and entry.error is not None:
            raise entry.error
        if self._entries.get(entry.key) is not entry:
            raise MarketError(f"query {entry.key!r} was evicted", code="QUERY_CANCELLED")
        return entry.value

    async def _load(self, entry: CacheEntry, fetcher: Fetcher) -> None:
        # Captured when the request is actually issued, not when the task is created.
        started_version = entry.version
        started_invalidations = entry.invalidations
        retry_enabled = self.options_for(entry.key).retry
        attempt = 0
        while True:
            try:
                value = await fetcher(entry.key)
                break
            except MarketError as exc:
                if retry_enabled and exc.retryable and attempt < self._retry.max_attempts:
                    delay = self._retry.delay_for(attempt)
                    attempt += 1
                    logger.debug("retrying %s in %.2fs (attempt %d): %s", entry.key, delay, attempt, exc.message)
                    await asyncio.sleep(delay)
                    continue
                self._finish(entry)
                self._fail(entry, exc)
                return
            except Exception as exc:
                logger.error("unexpected failure fetching %s", entry.key, exc_info=True)
                self._finish(entry)
                self._fail(entry, exc)
                return
        self._finish(entry)
        if self._entries.get(entry.key) is not entry:
            logger.debug("discarding result for evicted %s", entry.key)
            return
        invalidated_midway = entry.invalidations != started_invalidations
        if entry.version != started_version:
            logger.debug("discarding result for %s: a newer write landed first", entry.key)
        elif entry.readers == 0 and invalidated_midway:
            logger.debug("discarding result for unobserved %s invalidated mid-flight", entry.key)
        else:
            self._store(entry, value)
            if invalidated_midway:
                # The response predates the invalidation; it is served but still stale.
                entry.invalidated = True
        if invalidated_midway and entry.invalidated and entry.readers > 0:
            logger.debug("refetching %s: invalidated while a fetch was in flight", entry.key)
            self._start(entry)

    def _finish(self, entry: CacheEntry) -> None:
        if entry.task is asyncio.current_task():
            entry.task = None

    def _store(self, entry: CacheEntry, value: Any) -> None:
        entry.value = value
        entry.has_value = True
        entry.fetched_at = self._clock()
        entry.error = None
        entry.invalidated = False
        entry.version += 1
        self._notify(entry, self._result(entry))

    def _fail(self, entry: CacheEntry, exc: Exception) -> None:
        entry.error = exc
        if entry.has_value:
            logger.warning("background refresh of %s failed; keeping last value: %s", entry.key, exc)
        else:
            logger.warning("loading %s failed: %s", entry.key, exc)
        self._notify(entry, self._result(entry))

    def _notify(self, entry: CacheEntry, result: QueryResult) -> None:
        for listener in list(entry.listeners):
            listener(entry.key, result)

    def _cancel(self, entry: CacheEntry) -> None:
        for task in (entry.task, entry.poller):
            # A fetch that purges the cache from inside itself finishes on its own.
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
        entry.poller = None
