"""Clear-all for the notification feed."""

from __future__ import annotations

from typing import Any

from ..alerts import Alert
from ..api.client import MarketplaceAPI
from ..cache.keys import QueryKey, notifications_key
from ..cache.query_cache import QueryCache
from ..models import NotificationFeed
from .pipeline import Mutation


class ClearNotifications(Mutation):
    name = "clear-notifications"
    failure_title = "Failed to clear notifications"
    success_alert = Alert(
        level="success",
        title="Notifications cleared",
        message="All notifications have been cleared successfully",
    )

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id

    def target_keys(self, cache: QueryCache) -> list[QueryKey]:
        return [notifications_key(self.user_id)]

    def apply(self, cache: QueryCache, keys: tuple[QueryKey, ...]) -> None:
        cache.set(notifications_key(self.user_id), NotificationFeed.empty())

    async def perform(self, api: MarketplaceAPI) -> Any:
        await api.clear_notifications()

    def invalidates(self) -> list[QueryKey]:
        return [notifications_key(self.user_id)]
