"""Bid placement as an optimistic mutation."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Collection
from uuid import uuid4

from ..api.client import MarketplaceAPI
from ..cache.keys import QueryKey, auction_key, auctions_key, user_statistics_key
from ..cache.query_cache import QueryCache
from ..config import ValidationConfig
from ..models import AuctionPage, AuctionSnapshot, Bid, sort_bids
from .pipeline import Mutation
from .validators import validate_bid


def pages_containing(cache: QueryCache, auction_id: str) -> list[QueryKey]:
    keys = []
    for key in cache.keys(auctions_key()):
        page = cache.get_value(key)
        if isinstance(page, AuctionPage) and page.find(auction_id) is not None:
            keys.append(key)
    return keys


def patch_pages(
    cache: QueryCache,
    auction_id: str,
    patch: Any,
    keys: Collection[QueryKey] | None = None,
) -> list[QueryKey]:
    """Apply ``patch(snapshot) -> snapshot`` to every list page embedding ``auction_id``.

    When ``keys`` is given, pages outside it are left alone.
    """

    def _update(key: QueryKey, page: Any) -> Any:
        if keys is not None and key not in keys:
            return page
        if not isinstance(page, AuctionPage) or page.find(auction_id) is None:
            return page
        auctions = tuple(patch(item) if item.id == auction_id else item for item in page.auctions)
        return replace(page, auctions=auctions)

    return cache.update_matching(auctions_key(), _update)


class PlaceBid(Mutation):
    name = "place-bid"
    failure_title = "Failed to place bid"

    def __init__(
        self,
        auction_id: str,
        amount: str,
        *,
        bidder_id: str,
        config: ValidationConfig,
        fallback_price: float | None = None,
    ) -> None:
        self.auction_id = auction_id
        self.amount = amount.strip() if isinstance(amount, str) else str(amount)
        self.bidder_id = bidder_id
        self._config = config
        self._fallback_price = fallback_price
        self._optimistic_bid_id = f"optimistic-{uuid4().hex[:12]}"

    def current_price(self, cache: QueryCache) -> float | None:
        snapshot = cache.get_value(auction_key(self.auction_id))
        if isinstance(snapshot, AuctionSnapshot):
            return snapshot.current_price
        for key in pages_containing(cache, self.auction_id):
            return cache.get_value(key).find(self.auction_id).current_price
        return self._fallback_price

    def target_keys(self, cache: QueryCache) -> list[QueryKey]:
        return [auction_key(self.auction_id), *pages_containing(cache, self.auction_id)]

    def validate(self, cache: QueryCache) -> dict[str, str]:
        return validate_bid(self.amount, self.current_price(cache), self._config)

    def apply(self, cache: QueryCache, keys: tuple[QueryKey, ...]) -> None:
        price = float(Decimal(self.amount))
        bid = Bid(
            id=self._optimistic_bid_id,
            bidder_id=self.bidder_id,
            amount=price,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        cache.update(
            auction_key(self.auction_id),
            lambda snapshot: replace(
                snapshot,
                current_price=price,
                status="winning",
                bids=sort_bids([*snapshot.bids, bid]),
            ),
        )
        patch_pages(
            cache,
            self.auction_id,
            lambda item: replace(item, current_price=price, status="winning"),
            keys,
        )

    async def perform(self, api: MarketplaceAPI) -> Any:
        return await api.place_bid(self.auction_id, float(Decimal(self.amount)))

    def commit(self, cache: QueryCache, result: Any) -> None:
        if not isinstance(result, dict):
            return
        if isinstance(result.get("auction"), dict):
            cache.set(auction_key(self.auction_id), AuctionSnapshot.from_api(result["auction"]))
            return
        if isinstance(result.get("bid"), dict):
            confirmed = Bid.from_api(result["bid"])

            def _confirm(snapshot: AuctionSnapshot) -> AuctionSnapshot:
                bids = [item for item in snapshot.bids if item.id != self._optimistic_bid_id]
                return replace(snapshot, current_price=confirmed.amount, bids=sort_bids([*bids, confirmed]))

            cache.update(auction_key(self.auction_id), _confirm)

    def invalidates(self) -> list[QueryKey]:
        return [auction_key(self.auction_id), auctions_key(), user_statistics_key()]
