from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import httpx

from . import __version__
from .alerts import AlertCollector, AlertSink
from .api.client import MarketplaceAPI
from .cache.keys import AUCTION, AUCTIONS, NOTIFICATIONS, USER, USER_STATISTICS, QueryKey, notifications_key
from .cache.query_cache import QueryCache
from .config import ClientConfig, get_client_config
from .errors import AuthError
from .models import AuctionPage, AuctionSnapshot, Notification, NotificationFeed
from .lifecycle.controller import ConnectionLifecycleController
from .mutations import ClearNotifications, CreateAuction, DeleteAuction, EditAuction, MutationPipeline, PlaceBid
from .push.stream import PushStreamClient
from .session.guard import Session, SessionGuard
from .session.storage import TokenStore, build_token_store
from .validation.validator import SchemaRegistry, get_schema_registry


class MarketplaceClient:
    """Composition root: one live session, one cache, one push connection."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        store: TokenStore | None = None,
        alerts: AlertSink | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self.config = config or get_client_config()
        self.schemas = schemas or get_schema_registry()
        self.alerts = alerts if alerts is not None else AlertCollector()
        self.store = store if store is not None else build_token_store(self.config.session)
        self.cache = QueryCache.from_config(self.config)
        self.api = MarketplaceAPI(
            self.config.api.base_url,
            token_provider=lambda: self.session.token,
            timeout_ms=self.config.api.timeout_ms,
            transport=transport,
        )
        self.session = SessionGuard(self.api, self.cache, self.store, schemas=self.schemas)
        self.api.set_unauthorized_hook(self.session.invalidate)
        self.stream = PushStreamClient(
            self.cache,
            self.session,
            self.api,
            self.config.stream,
            self.alerts,
            schemas=self.schemas,
        )
        self.lifecycle = ConnectionLifecycleController(self.session, self.stream)
        self.mutations = MutationPipeline(self.cache, self.api, self.alerts)
        self.start_time: datetime | None = None
        self._register_fetchers()

    def _register_fetchers(self) -> None:
        self.cache.register(USER, self._fetch_user)
        self.cache.register(AUCTION, self._fetch_auction)
        self.cache.register(AUCTIONS, self._fetch_auctions)
        self.cache.register(NOTIFICATIONS, self._fetch_notifications)
        self.cache.register(USER_STATISTICS, self._fetch_user_statistics)

    # Fetchers --------------------------------------------------------------

    async def _fetch_user(self, key: QueryKey) -> dict[str, Any]:
        return await self.api.me()

    async def _fetch_auction(self, key: QueryKey) -> AuctionSnapshot:
        payload = await self.api.get_auction(key[1])
        auction = dict(payload.get("auction") or payload)
        if "bids" not in auction and isinstance(payload.get("bids"), list):
            auction["bids"] = payload["bids"]
        return AuctionSnapshot.from_api(auction)

    async def _fetch_auctions(self, key: QueryKey) -> AuctionPage:
        _, auction_filter, page, limit = key
        payload = await self.api.list_auctions(auction_filter, page, limit)
        return AuctionPage.from_api(payload or {}, page, limit)

    async def _fetch_notifications(self, key: QueryKey) -> NotificationFeed:
        payload = await self.api.list_notifications() or {}
        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        notifications = tuple(Notification.from_dto(item) for item in body.get("notifications") or [])
        return NotificationFeed(notifications, int(body.get("total") or len(notifications)))

    async def _fetch_user_statistics(self, key: QueryKey) -> dict[str, Any]:
        return await self.api.user_statistics()

    # Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        self.start_time = datetime.now(timezone.utc)
        await self.lifecycle.start()
        await self.session.restore()

    async def close(self) -> None:
        await self.lifecycle.stop()
        self.cache.clear()
        await self.api.close()

    # Auth ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Session:
        return await self.session.login(email, password)

    async def register(self, profile: dict[str, Any], password: str) -> Session:
        return await self.session.register(profile, password)

    async def logout(self) -> None:
        await self.session.logout()

    # Mutations -------------------------------------------------------------

    def _require_user(self) -> str:
        user_id = self.session.user_id
        if not self.session.is_authenticated or user_id is None:
            raise AuthError("not signed in")
        return user_id

    async def place_bid(self, auction_id: str, amount: str) -> Any:
        bidder_id = self._require_user()
        return await self.mutations.run(
            PlaceBid(auction_id, amount, bidder_id=bidder_id, config=self.config.validation)
        )

    async def create_auction(self, form: dict[str, Any]) -> Any:
        seller_id = self._require_user()
        return await self.mutations.run(CreateAuction(form, seller_id=seller_id, config=self.config.validation))

    async def edit_auction(self, auction_id: str, form: dict[str, Any]) -> Any:
        self._require_user()
        return await self.mutations.run(EditAuction(auction_id, form, config=self.config.validation))

    async def delete_auction(self, auction_id: str) -> Any:
        self._require_user()
        return await self.mutations.run(DeleteAuction(auction_id))

    async def clear_notifications(self) -> Any:
        return await self.mutations.run(ClearNotifications(self._require_user()))

    def notifications(self) -> Any:
        return self.cache.get(notifications_key(self._require_user()))

    # Status ----------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        if self.start_time:
            uptime = int((datetime.now(timezone.utc) - self.start_time).total_seconds())
        else:
            uptime = 0
        return {
            "version": __version__,
            "authenticated": self.session.is_authenticated,
            "user_id": self.session.user_id,
            "connection": self.stream.state.value,
            "cached_entries": len(self.cache),
            "uptime_seconds": uptime,
        }


@asynccontextmanager
async def open_client(config: ClientConfig | None = None, **kwargs: Any) -> AsyncIterator[MarketplaceClient]:
    client = MarketplaceClient(config, **kwargs)
    await client.start()
    try:
        yield client
    finally:
        await client.close()
