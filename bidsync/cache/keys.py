"""Cache key namespace shared by every collaborator that reads or invalidates state."""

from __future__ import annotations

from typing import Any

QueryKey = tuple[Any, ...]

USER = "user"
AUCTION = "auction"
AUCTIONS = "auctions"
NOTIFICATIONS = "notifications"
USER_STATISTICS = "user-statistics"

NAMESPACES = (USER, AUCTION, AUCTIONS, NOTIFICATIONS, USER_STATISTICS)


def user_key() -> QueryKey:
    return (USER,)


def auction_key(auction_id: str) -> QueryKey:
    return (AUCTION, auction_id)


def auctions_key(auction_filter: str | None = None, page: int | None = None, limit: int | None = None) -> QueryKey:
    """Full key when all parts are given, otherwise a prefix for invalidation."""
    parts: list[Any] = [AUCTIONS]
    for part in (auction_filter, page, limit):
        if part is None:
            break
        parts.append(part)
    return tuple(parts)


def notifications_key(user_id: str) -> QueryKey:
    return (NOTIFICATIONS, user_id)


def user_statistics_key() -> QueryKey:
    return (USER_STATISTICS,)


def namespace_of(key: QueryKey) -> str:
    if not key or key[0] not in NAMESPACES:
        raise ValueError(f"key {key!r} is outside the cache namespace")
    return key[0]


def matches(key: QueryKey, prefix: QueryKey) -> bool:
    return key[: len(prefix)] == prefix
