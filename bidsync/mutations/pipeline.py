"""Optimistic mutation pipeline: validate, patch the cache, call the API, settle."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ..alerts import Alert, AlertSink
from ..api.client import MarketplaceAPI
from ..cache.keys import QueryKey
from ..cache.query_cache import QueryCache
from ..errors import ValidationError

logger = logging.getLogger(__name__)


class MutationState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    REJECTED = "rejected"
    APPLYING_OPTIMISTIC = "applying-optimistic"
    IN_FLIGHT = "in-flight"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


class Mutation:
    """One local write. Subclasses describe its keys, patch, request, and commit."""

    name = "mutation"
    failure_title = "Request failed"
    success_alert: Alert | None = None

    def target_keys(self, cache: QueryCache) -> list[QueryKey]:
        return []

    def validate(self, cache: QueryCache) -> dict[str, str]:
        return {}

    def apply(self, cache: QueryCache, keys: tuple[QueryKey, ...]) -> None:
        """Write the speculative result into ``keys``, the snapshotted subset of the cache."""

    async def perform(self, api: MarketplaceAPI) -> Any:
        raise NotImplementedError

    def commit(self, cache: QueryCache, result: Any) -> None:
        """Fold the server's response into the cache."""

    def invalidates(self) -> list[QueryKey]:
        return []


_ABSENT = object()


@dataclass
class PendingMutation:
    target_keys: tuple[QueryKey, ...]
    previous: dict[QueryKey, Any]
    applied_at: float
    written: dict[QueryKey, int | None] = field(default_factory=dict)


class MutationPipeline:
    def __init__(
        self,
        cache: QueryCache,
        api: MarketplaceAPI,
        alerts: AlertSink,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache = cache
        self._api = api
        self._alerts = alerts
        self._clock = clock
        self._locks: dict[QueryKey, asyncio.Lock] = {}
        self._pending: dict[QueryKey, PendingMutation] = {}
        self.history: deque[tuple[str, MutationState]] = deque(maxlen=200)

    def pending_for(self, key: QueryKey) -> PendingMutation | None:
        return self._pending.get(key)

    async def run(self, mutation: Mutation) -> Any:
        self._transition(mutation, MutationState.IDLE)
        locked = self._keys_for(mutation)
        while True:
            locks = await self._acquire(locked)
            # List pages can appear while queued; the locked set must cover what is written now.
            keys = self._keys_for(mutation)
            if set(keys) <= set(locked):
                break
            self._release_all(locks)
            locked = tuple(dict.fromkeys((*locked, *keys)))
        try:
            return await self._run_locked(mutation, keys)
        finally:
            self._release_all(locks)

    def _keys_for(self, mutation: Mutation) -> tuple[QueryKey, ...]:
        return tuple(dict.fromkeys(mutation.target_keys(self._cache)))

    async def _acquire(self, keys: tuple[QueryKey, ...]) -> list[asyncio.Lock]:
        acquired: list[asyncio.Lock] = []
        try:
            for key in sorted(keys, key=repr):
                lock = self._lock_for(key)
                await lock.acquire()
                acquired.append(lock)
        except BaseException:
            self._release_all(acquired)
            raise
        return acquired

    @staticmethod
    def _release_all(locks: list[asyncio.Lock]) -> None:
        for lock in reversed(locks):
            lock.release()

    async def _run_locked(self, mutation: Mutation, keys: tuple[QueryKey, ...]) -> Any:
        # Validation sees any optimistic value left by a mutation that held these keys first.
        self._transition(mutation, MutationState.VALIDATING)
        errors = mutation.validate(self._cache)
        if errors:
            self._transition(mutation, MutationState.REJECTED)
            raise ValidationError(errors)

        self._transition(mutation, MutationState.APPLYING_OPTIMISTIC)
        pending = self._snapshot(keys)
        for key in keys:
            self._pending[key] = pending
        try:
            mutation.apply(self._cache, keys)
            pending.written = {key: self._cache.version(key) for key in keys}

            self._transition(mutation, MutationState.IN_FLIGHT)
            try:
                result = await mutation.perform(self._api)
            except BaseException as exc:
                self._rollback(pending)
                self._transition(mutation, MutationState.ROLLED_BACK)
                if isinstance(exc, Exception) and not isinstance(exc, ValidationError):
                    message = getattr(exc, "message", None) or str(exc) or "An unexpected error occurred"
                    self._alerts.emit(Alert(level="error", title=mutation.failure_title, message=message))
                raise
        finally:
            for key in keys:
                if self._pending.get(key) is pending:
                    del self._pending[key]

        mutation.commit(self._cache, result)
        for prefix in mutation.invalidates():
            self._cache.invalidate(prefix)
        self._transition(mutation, MutationState.COMMITTED)
        if mutation.success_alert is not None:
            self._alerts.emit(mutation.success_alert)
        return result

    def _snapshot(self, keys: tuple[QueryKey, ...]) -> PendingMutation:
        previous = {}
        for key in keys:
            if self._cache.has_value(key):
                previous[key] = copy.deepcopy(self._cache.get_value(key))
            else:
                previous[key] = _ABSENT
        return PendingMutation(target_keys=keys, previous=previous, applied_at=self._clock())

    def _rollback(self, pending: PendingMutation) -> None:
        for key in pending.target_keys:
            if self._cache.version(key) != pending.written.get(key):
                # Something newer (a fetch or push merge) replaced the patch; keep it.
                logger.info("not restoring %s: superseded after the optimistic write", key)
                self._cache.invalidate(key)
                continue
            previous = pending.previous[key]
            if previous is _ABSENT:
                if self._cache.has_value(key):
                    self._cache.remove(key)
            else:
                self._cache.set(key, previous)
        logger.info("rolled back %d keys", len(pending.target_keys))

    def _lock_for(self, key: QueryKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _transition(self, mutation: Mutation, state: MutationState) -> None:
        logger.debug("%s -> %s", mutation.name, state.value)
        self.history.append((mutation.name, state))
