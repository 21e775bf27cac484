"""Binds the push connection to the authentication state."""

from __future__ import annotations

import logging
from typing import Callable

from ..push.fsm import ConnectionState
from ..push.stream import PushStreamClient
from ..session.guard import SessionGuard

logger = logging.getLogger(__name__)


class ConnectionLifecycleController:
    """Sole owner of :class:`PushStreamClient` connect and disconnect calls."""

    def __init__(self, guard: SessionGuard, stream: PushStreamClient) -> None:
        self._guard = guard
        self._stream = stream
        self._unsubscribe: Callable[[], None] | None = None
        self._connected_user: str | None = None

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    async def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._guard.subscribe(self._on_session_change)
        await self._reconcile()

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self._disconnect()

    async def reconnect(self) -> bool:
        """Manual recovery: close whatever is open and connect again."""
        await self._disconnect()
        if not self._should_connect():
            return False
        return await self._connect()

    async def _on_session_change(self, guard: SessionGuard) -> None:
        await self._reconcile()

    async def _reconcile(self) -> None:
        if not self._should_connect():
            if self._stream.state is not ConnectionState.DISCONNECTED or self._connected_user is not None:
                await self._disconnect()
            return
        if self._connected_user == self._guard.user_id and self._stream.state is not ConnectionState.DISCONNECTED:
            return
        await self._connect()

    def _should_connect(self) -> bool:
        return (
            not self._guard.is_loading
            and self._guard.is_authenticated
            and self._guard.user_id is not None
        )

    async def _connect(self) -> bool:
        opened = await self._stream.connect()
        self._connected_user = self._guard.user_id if opened else None
        if opened:
            logger.info("push channel started for user %s", self._connected_user)
        return opened

    async def _disconnect(self) -> None:
        self._connected_user = None
        await self._stream.disconnect()
