"""Authentication state owner and the single-flight guard for auth operations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

import jsonschema

from ..api.client import MarketplaceAPI
from ..cache.keys import user_key
from ..cache.query_cache import QueryCache
from ..errors import AuthError, MarketError, OperationInProgress
from ..validation.validator import SchemaRegistry, get_schema_registry
from .storage import TokenStore, load_token, store_token
from .tokens import redact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    token: str | None = None
    user_id: str | None = None
    is_authenticated: bool = False
    user: dict[str, Any] | None = field(default=None, compare=False)


SessionListener = Callable[["SessionGuard"], Awaitable[None]]


class SessionGuard:
    """Holds the live :class:`Session` and serialises login, register, and logout.

    A second auth operation started while one is running is rejected with
    :class:`OperationInProgress`. Every failure path ends in a purge: stored
    credential cleared, query cache emptied, listeners told.
    """

    def __init__(
        self,
        api: MarketplaceAPI,
        cache: QueryCache,
        store: TokenStore,
        *,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._store = store
        self._schemas = schemas or get_schema_registry()
        self._session = Session()
        self._lock = asyncio.Lock()
        self._loading = False
        self._listeners: list[SessionListener] = []

    @property
    def session(self) -> Session:
        return self._session

    @property
    def token(self) -> str | None:
        return self._session.token

    @property
    def user_id(self) -> str | None:
        return self._session.user_id

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @asynccontextmanager
    async def _exclusive(self, operation: str) -> AsyncIterator[None]:
        if self._lock.locked():
            raise OperationInProgress(f"cannot {operation}: another authentication operation is in progress")
        async with self._lock:
            yield

    async def restore(self) -> Session:
        """Resume a session from the stored credential, if one is usable."""
        async with self._exclusive("restore session"):
            self._loading = True
            await self._notify()
            try:
                token = await load_token(self._store)
                if token is None:
                    return self._session
                self._session = Session(token=token)
                try:
                    user = await self._api.me()
                except AuthError:
                    logger.info("stored credential rejected by server")
                    await self._purge("stored credential rejected")
                    return self._session
                except MarketError as exc:
                    logger.warning("could not verify stored credential: %s", exc.message)
                    return self._session
                self._session = Session(token=token, user_id=str(user["id"]), is_authenticated=True, user=user)
                self._cache.set(user_key(), user)
                logger.info("session restored for user %s", self._session.user_id)
                return self._session
            finally:
                self._loading = False
                await self._notify()

    async def login(self, email: str, password: str) -> Session:
        async with self._exclusive("log in"):
            return await self._authenticate(lambda: self._api.login(email, password))

    async def register(self, profile: dict[str, Any], password: str) -> Session:
        async with self._exclusive("register"):
            return await self._authenticate(lambda: self._api.register(profile, password))

    async def logout(self) -> None:
        async with self._exclusive("log out"):
            try:
                await self._api.logout()
            finally:
                await self._purge("logout")

    async def invalidate(self, error: MarketError | None = None, token: str | None = None) -> None:
        """Drop the session after the server rejected its credential.

        ``token`` is the credential the rejected request carried; a rejection of any
        other credential than the current one is ignored.
        """
        if self._session == Session():
            return
        if token is not None and token != self._session.token:
            logger.info("ignoring rejection of a superseded credential %s", redact(token))
            return
        reason = error.message if error is not None else "session invalidated"
        await self._purge(reason)

    async def _authenticate(self, request: Callable[[], Awaitable[Any]]) -> Session:
        self._session = Session()
        try:
            response = await request()
            try:
                self._schemas.validate("auth_response", response)
            except jsonschema.ValidationError as exc:
                raise AuthError(f"unexpected authentication response: {exc.message}") from exc
            token = response["access_token"]
            if not await store_token(self._store, token):
                raise AuthError("server returned an unusable credential", code="INVALID_TOKEN")
        except Exception:
            await self._purge("authentication failed")
            raise
        user = response["user"]
        self._session = Session(token=token, user_id=str(user["id"]), is_authenticated=True, user=user)
        self._cache.set(user_key(), user)
        self._cache.invalidate(user_key())
        logger.info("authenticated user %s with token %s", self._session.user_id, redact(token))
        await self._notify()
        return self._session

    async def _purge(self, reason: str) -> None:
        logger.info("purging session: %s", reason)
        self._session = Session()
        try:
            await self._store.clear()
        except Exception:
            logger.error("failed to clear stored credential", exc_info=True)
        self._cache.clear()
        await self._notify()

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            await listener(self)
