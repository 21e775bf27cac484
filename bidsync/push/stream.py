"""Long-lived push connection that folds notification events into the cache."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Deque, Protocol

import httpx

from ..alerts import Alert, AlertSink
from ..api.client import MarketplaceAPI
from ..cache.keys import auction_key, auctions_key, notifications_key
from ..cache.query_cache import QueryCache
from ..config import StreamConfig
from ..errors import PushConnectionError
from ..models import Notification, NotificationFeed
from ..session.tokens import is_valid_token
from ..validation.validator import SchemaRegistry
from .events import FrameBuffer, FrameDecodeError, decode_frame
from .fsm import ConnectionEvent, ConnectionState, transition

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 10.0


class SessionView(Protocol):
    @property
    def token(self) -> str | None: ...

    @property
    def user_id(self) -> str | None: ...

    @property
    def is_authenticated(self) -> bool: ...


class PushStreamClient:
    def __init__(
        self,
        cache: QueryCache,
        session: SessionView,
        api: MarketplaceAPI,
        config: StreamConfig,
        alerts: AlertSink,
        *,
        schemas: SchemaRegistry | None = None,
        dedup_size: int = 256,
    ) -> None:
        self._cache = cache
        self._session = session
        self._api = api
        self._config = config
        self._alerts = alerts
        self._schemas = schemas
        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._last_error: Exception | None = None
        self._seen: Deque[str] = deque()
        self._seen_ids: set[str] = set()
        self._dedup_size = dedup_size

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def generation(self) -> int:
        return self._generation

    async def connect(self) -> bool:
        """Open the stream, replacing any existing connection. False when preconditions fail."""
        if self._task is not None or self._state is not ConnectionState.DISCONNECTED:
            await self.disconnect()
        if not self._api.base_url:
            logger.info("push endpoint not configured; staying disconnected")
            return False
        if not is_valid_token(self._session.token) or not self._session.user_id:
            logger.info("no usable session for push channel; staying disconnected")
            return False
        self._generation += 1
        self._fire(ConnectionEvent.CONNECT)
        self._task = asyncio.create_task(self._run(self._generation))
        return True

    async def disconnect(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._state is not ConnectionState.DISCONNECTED:
            self._fire(ConnectionEvent.DISCONNECT)

    async def _run(self, generation: int) -> None:
        delay = self._config.reconnect_delay_ms / 1000
        while True:
            try:
                await self._consume(generation)
                event = ConnectionEvent.SERVER_CLOSED
                logger.info("push stream closed by server")
            except PushConnectionError as exc:
                self._last_error = exc
                event = ConnectionEvent.FAILED
                logger.warning("push stream failed: %s", exc.message)
            except Exception as exc:
                self._last_error = exc
                event = ConnectionEvent.FAILED
                logger.error("unexpected failure in push stream", exc_info=True)
            if generation != self._generation:
                return
            self._fire(event)
            self._fire(ConnectionEvent.RETRY_SCHEDULED)
            await asyncio.sleep(delay)
            if generation != self._generation:
                return
            if not self._session.is_authenticated or not is_valid_token(self._session.token):
                logger.info("session gone while waiting to reconnect; stopping push channel")
                self._task = None
                self._fire(ConnectionEvent.DISCONNECT)
                return
            self._fire(ConnectionEvent.CONNECT)

    async def _consume(self, generation: int) -> None:
        url = self._api.stream_url(self._session.token or "", self._config.path)
        client = self._api.canonical_client
        try:
            async with client.stream(
                "GET",
                url,
                headers={"Accept": "text/event-stream"},
                timeout=httpx.Timeout(_CONNECT_TIMEOUT, read=None),
            ) as response:
                if response.status_code != 200:
                    raise PushConnectionError(
                        f"stream rejected with status {response.status_code}",
                        status=response.status_code,
                    )
                if generation != self._generation:
                    return
                self._fire(ConnectionEvent.OPENED)
                self._last_error = None
                buffer = FrameBuffer()
                async for line in response.aiter_lines():
                    frame = buffer.feed(line)
                    if frame is not None:
                        self.handle_frame(frame)
                tail = buffer.flush()
                if tail is not None:
                    self.handle_frame(tail)
        except httpx.HTTPError as exc:
            raise PushConnectionError(f"stream transport error: {exc}") from exc

    def handle_frame(self, raw: str | bytes) -> bool:
        """Apply one frame. Returns True when a notification was merged."""
        try:
            message = decode_frame(raw, self._schemas)
        except FrameDecodeError as exc:
            logger.warning("discarding malformed push frame: %s", exc)
            return False
        if message is None:
            logger.debug("ignoring push frame of unknown shape")
            return False

        user_id = self._session.user_id
        target = message.target_user_id or user_id
        if not user_id or target != user_id:
            logger.debug("discarding push frame addressed to another user")
            return False

        notification = Notification.from_dto(message.notification)
        if not self._remember(notification.id):
            logger.debug("dropping repeated notification %s", notification.id)
            return False

        key = notifications_key(user_id)
        if self._cache.update(key, lambda feed: feed.prepend(notification)) is None:
            self._cache.set(key, NotificationFeed.empty().prepend(notification))
        if notification.auction_id:
            self._cache.invalidate(auction_key(notification.auction_id))
            self._cache.invalidate(auctions_key())
        self._alerts.emit(_alert_for(notification))
        return True

    def _remember(self, notification_id: str) -> bool:
        if notification_id in self._seen_ids:
            return False
        self._seen.append(notification_id)
        self._seen_ids.add(notification_id)
        while len(self._seen) > self._dedup_size:
            self._seen_ids.discard(self._seen.popleft())
        return True

    def _fire(self, event: ConnectionEvent) -> None:
        previous = self._state
        self._state = transition(previous, event)
        logger.info("push channel %s -> %s", previous.value, self._state.value)


def _alert_for(notification: Notification) -> Alert:
    title = notification.auction_title or "an item"
    if notification.status == "won":
        heading, message = "Auction Won!", f"Congratulations! You won the auction for {title}"
    else:
        heading, message = "Outbid", f"You've been outbid on {title}"
    target = f"/auctions/{notification.auction_id}" if notification.auction_id else None
    return Alert(
        level="info",
        title=heading,
        message=message,
        action_label="View" if target else None,
        action_target=target,
    )
