"""Auction create/edit/delete as optimistic mutations."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any
from uuid import uuid4

from ..api.client import MarketplaceAPI
from ..cache.keys import QueryKey, auction_key, auctions_key, user_statistics_key
from ..cache.query_cache import QueryCache
from ..config import ValidationConfig
from ..models import AuctionPage, AuctionSnapshot
from .bids import pages_containing, patch_pages
from .pipeline import Mutation
from .validators import ImageUpload, build_edit_request, parse_end_date, validate_auction_form

# List views that show a freshly created auction
_CREATE_FILTERS = ("OWN", "ALL")


def _iso(value: str) -> str:
    end = parse_end_date(value)
    return end.isoformat().replace("+00:00", "Z") if end else ""


async def _upload_image(api: MarketplaceAPI, response: dict[str, Any], image: ImageUpload | None) -> dict[str, Any]:
    if image is None or not isinstance(response.get("auction"), dict):
        return response
    uploaded = await api.upload_auction_image(response["auction"]["id"], image.content, image.content_type)
    response["auction"]["imageUrl"] = uploaded.get("imageUrl")
    return response


class CreateAuction(Mutation):
    name = "create-auction"
    failure_title = "Failed to create auction"

    def __init__(self, form: dict[str, Any], *, seller_id: str, config: ValidationConfig) -> None:
        self.form = form
        self.seller_id = seller_id
        self._config = config
        self.placeholder_id = f"pending-{uuid4().hex[:12]}"

    def target_keys(self, cache: QueryCache) -> list[QueryKey]:
        keys: list[QueryKey] = []
        for auction_filter in _CREATE_FILTERS:
            keys.extend(key for key in cache.keys(auctions_key(auction_filter)) if key[2] == 1)
        return keys

    def validate(self, cache: QueryCache) -> dict[str, str]:
        return validate_auction_form(self.form, self._config)

    def request_payload(self) -> dict[str, Any]:
        return {
            "title": self.form["title"].strip(),
            "description": self.form["description"].strip(),
            "startingPrice": float(Decimal(self.form["starting_price"].strip())),
            "endTime": _iso(self.form["end_date"]),
        }

    def apply(self, cache: QueryCache, keys: tuple[QueryKey, ...]) -> None:
        payload = self.request_payload()
        placeholder = AuctionSnapshot(
            id=self.placeholder_id,
            title=payload["title"],
            description=payload["description"],
            current_price=payload["startingPrice"],
            starting_price=payload["startingPrice"],
            status="in-progress",
            end_time=payload["endTime"],
            seller_id=self.seller_id,
        )
        for key in keys:
            cache.update(key, lambda page: replace(page, auctions=(placeholder, *page.auctions), total=page.total + 1))

    async def perform(self, api: MarketplaceAPI) -> Any:
        response = await api.create_auction(self.request_payload())
        return await _upload_image(api, response, self.form.get("image"))

    def commit(self, cache: QueryCache, result: Any) -> None:
        if not isinstance(result, dict) or not isinstance(result.get("auction"), dict):
            return
        created = AuctionSnapshot.from_api(result["auction"])
        cache.set(auction_key(created.id), created)
        patch_pages(cache, self.placeholder_id, lambda _item: created)

    def invalidates(self) -> list[QueryKey]:
        return [auctions_key(), user_statistics_key()]


class EditAuction(Mutation):
    name = "edit-auction"
    failure_title = "Failed to update auction"

    def __init__(self, auction_id: str, form: dict[str, Any], *, config: ValidationConfig) -> None:
        self.auction_id = auction_id
        self.form = form
        self._config = config
        self.request: dict[str, Any] = {}

    def target_keys(self, cache: QueryCache) -> list[QueryKey]:
        return [auction_key(self.auction_id), *pages_containing(cache, self.auction_id)]

    def validate(self, cache: QueryCache) -> dict[str, str]:
        return validate_auction_form(self.form, self._config, require_price=False)

    def apply(self, cache: QueryCache, keys: tuple[QueryKey, ...]) -> None:
        self.request = build_edit_request(self.form, cache.get_value(auction_key(self.auction_id)))
        changes: dict[str, Any] = {}
        if "title" in self.request:
            changes["title"] = self.request["title"]
        if "description" in self.request:
            changes["description"] = self.request["description"]
        if "endTime" in self.request:
            changes["end_time"] = self.request["endTime"]
        if self.request.get("imageUrl") == "":
            changes["image_url"] = None
        if not changes:
            return
        cache.update(auction_key(self.auction_id), lambda snapshot: replace(snapshot, **changes))
        patch_pages(cache, self.auction_id, lambda item: replace(item, **changes), keys)

    async def perform(self, api: MarketplaceAPI) -> Any:
        response = await api.update_auction(self.auction_id, self.request)
        return await _upload_image(api, response or {}, self.form.get("image"))

    def commit(self, cache: QueryCache, result: Any) -> None:
        if not isinstance(result, dict) or not isinstance(result.get("auction"), dict):
            return
        updated = AuctionSnapshot.from_api(result["auction"])
        cache.set(auction_key(self.auction_id), updated)
        patch_pages(cache, self.auction_id, lambda _item: updated)

    def invalidates(self) -> list[QueryKey]:
        return [auctions_key(), user_statistics_key()]


class DeleteAuction(Mutation):
    name = "delete-auction"
    failure_title = "Failed to delete auction"

    def __init__(self, auction_id: str) -> None:
        self.auction_id = auction_id

    def target_keys(self, cache: QueryCache) -> list[QueryKey]:
        return pages_containing(cache, self.auction_id)

    def apply(self, cache: QueryCache, keys: tuple[QueryKey, ...]) -> None:
        def _drop(key: QueryKey, page: Any) -> Any:
            if key not in keys or not isinstance(page, AuctionPage) or page.find(self.auction_id) is None:
                return page
            remaining = tuple(item for item in page.auctions if item.id != self.auction_id)
            return replace(page, auctions=remaining, total=max(page.total - 1, 0))

        cache.update_matching(auctions_key(), _drop)

    async def perform(self, api: MarketplaceAPI) -> Any:
        await api.delete_auction(self.auction_id)
        return self.auction_id

    def commit(self, cache: QueryCache, result: Any) -> None:
        cache.remove(auction_key(self.auction_id))

    def invalidates(self) -> list[QueryKey]:
        return [auctions_key(), user_statistics_key()]
