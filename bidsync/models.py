"""Cached projections of marketplace data."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

AUCTION_STATUSES = ("in-progress", "outbid", "winning", "done")

_API_STATUS_MAP = {
    "IN_PROGRESS": "in-progress",
    "OUTBID": "outbid",
    "WINNING": "winning",
    "DONE": "done",
}


def normalize_status(value: Any) -> str:
    if isinstance(value, str):
        if value in AUCTION_STATUSES:
            return value
        return _API_STATUS_MAP.get(value.upper(), "in-progress")
    return "in-progress"


@dataclass(frozen=True)
class Bid:
    id: str
    bidder_id: str
    amount: float
    created_at: str

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Bid":
        return cls(
            id=str(payload["id"]),
            bidder_id=str(payload.get("bidderId") or payload.get("userId") or ""),
            amount=float(payload.get("amount", 0)),
            created_at=str(payload.get("createdAt", "")),
        )


@dataclass
class AuctionSnapshot:
    id: str
    title: str
    current_price: float
    status: str
    end_time: str
    seller_id: str
    description: str = ""
    starting_price: float = 0.0
    image_url: str | None = None
    bids: list[Bid] = field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "AuctionSnapshot":
        bids = [Bid.from_api(item) for item in payload.get("bids") or []]
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title", "")),
            current_price=float(payload.get("currentPrice") or 0),
            status=normalize_status(payload.get("status")),
            end_time=str(payload.get("endTime", "")),
            seller_id=str(payload.get("sellerId", "")),
            description=str(payload.get("description") or ""),
            starting_price=float(payload.get("startingPrice") or 0),
            image_url=payload.get("imageUrl"),
            bids=sort_bids(bids),
        )


def sort_bids(bids: Iterable[Bid]) -> list[Bid]:
    return sorted(bids, key=lambda bid: bid.created_at)


@dataclass(frozen=True)
class Notification:
    id: str
    auction_id: str
    auction_title: str
    end_time: str
    price: float | None
    created_at: str
    image_url: str | None = None

    @property
    def status(self) -> str:
        return "won" if self.price is not None else "outbid"

    @classmethod
    def from_dto(cls, dto: dict[str, Any]) -> "Notification":
        auction = dto.get("auction") or {}
        price = dto.get("price")
        return cls(
            id=str(dto["id"]),
            auction_id=str(auction.get("id", "")),
            auction_title=str(auction.get("title", "")),
            end_time=str(auction.get("endTime", "")),
            price=float(price) if price is not None else None,
            created_at=str(dto.get("createdAt", "")),
            image_url=auction.get("imageUrl"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NotificationFeed:
    notifications: tuple[Notification, ...] = ()
    total: int = 0

    def prepend(self, notification: Notification) -> "NotificationFeed":
        return NotificationFeed((notification, *self.notifications), self.total + 1)

    @classmethod
    def empty(cls) -> "NotificationFeed":
        return cls()


@dataclass(frozen=True)
class AuctionPage:
    auctions: tuple[AuctionSnapshot, ...] = ()
    page: int = 1
    limit: int = 20
    total: int = 0

    @classmethod
    def from_api(cls, payload: dict[str, Any], page: int, limit: int) -> "AuctionPage":
        auctions = tuple(AuctionSnapshot.from_api(item) for item in payload.get("auctions") or [])
        pagination = payload.get("pagination") or {}
        return cls(
            auctions=auctions,
            page=int(pagination.get("page", page)),
            limit=int(pagination.get("limit", limit)),
            total=int(pagination.get("total", len(auctions))),
        )

    def find(self, auction_id: str) -> AuctionSnapshot | None:
        return next((item for item in self.auctions if item.id == auction_id), None)
