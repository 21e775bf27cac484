"""HTTP client for the marketplace request/response API."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from ..errors import MarketError, NetworkError, error_from_response

logger = logging.getLogger(__name__)

AUCTION_FILTERS = ("ALL", "OWN", "BID", "WON")

# 401/403 from these paths does not invalidate the session
_SESSION_NEUTRAL_PATHS = ("/api/v1/auth/logout", "/api/v1/users/me/password")

TokenProvider = Callable[[], "str | None"]
# Receives the error and the credential the failing request carried
UnauthorizedHook = Callable[[MarketError, "str | None"], Awaitable[None]]


class MarketplaceAPI:
    def __init__(
        self,
        base_url: str,
        *,
        token_provider: TokenProvider,
        timeout_ms: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_ms / 1000,
            transport=transport,
        )
        self._on_unauthorized: UnauthorizedHook | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def canonical_client(self) -> httpx.AsyncClient:
        return self._client

    def set_unauthorized_hook(self, hook: UnauthorizedHook | None) -> None:
        self._on_unauthorized = hook

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = dict(kwargs.pop("headers", None) or {})
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            error = error_from_response(response.status_code, _safe_json(response))
            logger.debug("%s %s -> %s %s", method, path, response.status_code, error.code)
            if response.status_code in (401, 403) and path not in _SESSION_NEUTRAL_PATHS:
                if self._on_unauthorized is not None:
                    await self._on_unauthorized(error, token)
            raise error
        if not response.content:
            return None
        return response.json()

    # Auth ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> dict[str, Any]:
        return await self._request("POST", "/api/v1/auth/login", json={"email": email, "password": password})

    async def register(self, profile: dict[str, Any], password: str) -> dict[str, Any]:
        payload = {**profile, "password": password}
        return await self._request("POST", "/api/v1/auth/signup", json=payload)

    async def logout(self) -> None:
        await self._request("POST", "/api/v1/auth/logout")

    async def me(self) -> dict[str, Any]:
        return await self._request("GET", "/api/v1/users/me")

    async def change_password(self, current_password: str, new_password: str) -> dict[str, Any]:
        return await self._request(
            "PUT",
            "/api/v1/users/me/password",
            json={"currentPassword": current_password, "newPassword": new_password},
        )

    async def user_statistics(self) -> dict[str, Any]:
        return await self._request("GET", "/api/v1/users/me/statistics")

    # Auctions --------------------------------------------------------------

    async def list_auctions(self, auction_filter: str, page: int = 1, limit: int = 20) -> dict[str, Any]:
        if auction_filter not in AUCTION_FILTERS:
            raise ValueError(f"unknown auction filter {auction_filter}")
        return await self._request(
            "GET",
            "/api/v1/auctions",
            params={"filter": auction_filter, "page": page, "limit": limit},
        )

    async def get_auction(self, auction_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/v1/auctions/{auction_id}")

    async def create_auction(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/api/v1/auctions", json=payload)

    async def update_auction(self, auction_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PUT", f"/api/v1/auctions/{auction_id}", json=payload)

    async def delete_auction(self, auction_id: str) -> None:
        await self._request("DELETE", f"/api/v1/auctions/{auction_id}")

    async def upload_auction_image(self, auction_id: str, content: bytes, content_type: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/v1/auctions/{auction_id}/image",
            files={"image": ("image", content, content_type)},
        )

    async def place_bid(self, auction_id: str, amount: float) -> dict[str, Any]:
        return await self._request("POST", f"/api/v1/auctions/{auction_id}/bids", json={"amount": amount})

    # Notifications ---------------------------------------------------------

    async def list_notifications(self) -> dict[str, Any]:
        return await self._request("GET", "/api/v1/notifications")

    async def clear_notifications(self) -> None:
        await self._request("DELETE", "/api/v1/notifications")

    def stream_url(self, token: str, path: str = "/api/v1/notifications/stream") -> str:
        """Push channel URL; the credential travels as a query parameter."""
        return str(httpx.URL(f"{self._base_url}{path}", params={"token": token}))


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"message": response.text or response.reason_phrase}
