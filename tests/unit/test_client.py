"""End-to-end tests of the composed client against a mocked HTTP backend."""

from __future__ import annotations

import json

import httpx
import pytest

from bidsync.alerts import AlertCollector
from bidsync.cache.keys import auction_key, notifications_key, user_statistics_key
from bidsync.config import parse_client_config
from bidsync.errors import AuthError
from bidsync.main import MarketplaceClient, open_client
from bidsync.push.fsm import ConnectionState
from bidsync.session.storage import InMemoryTokenStore

USER = {"id": "U1", "email": "ana@example.com"}
AUCTION = {
    "id": "A1",
    "title": "Lamp",
    "currentPrice": 100,
    "startingPrice": 50,
    "status": "IN_PROGRESS",
    "endTime": "2099-12-31T23:00:00Z",
    "sellerId": "S1",
}


class Backend:
    """Minimal marketplace API served through httpx.MockTransport."""

    def __init__(self, token: str) -> None:
        self.token = token
        self.requests: list[httpx.Request] = []
        self.statistics_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = (request.method, request.url.path)
        if route == ("POST", "/api/v1/auth/login"):
            return httpx.Response(200, json={"access_token": self.token, "user": USER})
        if route == ("POST", "/api/v1/auth/logout"):
            return httpx.Response(204)
        if route == ("GET", "/api/v1/users/me"):
            return httpx.Response(200, json=USER)
        if route == ("GET", "/api/v1/users/me/statistics"):
            if self.statistics_status != 200:
                return httpx.Response(self.statistics_status, json={"message": "Token expired"})
            return httpx.Response(200, json={"currentlyBidding": 1})
        if route == ("GET", "/api/v1/notifications/stream"):
            return httpx.Response(200, content=b"")
        if route == ("GET", "/api/v1/notifications"):
            notification = {"id": "N1", "price": None, "createdAt": "2099-01-01T00:00:00Z", "auction": {"id": "A1", "title": "Lamp"}}
            return httpx.Response(200, json={"data": {"notifications": [notification], "total": 1}})
        if route == ("GET", "/api/v1/auctions/A1"):
            return httpx.Response(200, json={"auction": AUCTION})
        if route == ("POST", "/api/v1/auctions/A1/bids"):
            amount = json.loads(request.content)["amount"]
            bid = {"id": "B1", "bidderId": "U1", "amount": amount, "createdAt": "2099-01-01T00:00:00Z"}
            return httpx.Response(201, json={"bid": bid})
        return httpx.Response(404, json={"message": "Not found"})


@pytest.fixture(autouse=True)
def _no_env_url(monkeypatch):
    monkeypatch.delenv("BIDSYNC_API_URL", raising=False)


@pytest.fixture
def config():
    return parse_client_config(
        {
            "api": {"base_url": "http://api.test"},
            "stream": {"reconnect_delay_ms": 60000},
            "retry": {"base_delay_ms": 0, "max_delay_ms": 0},
        }
    )


@pytest.fixture
def backend(token) -> Backend:
    return Backend(token)


class TestMarketplaceClient:
    """The wired-up client."""

    @pytest.mark.asyncio
    async def test_login_fetch_and_bid(self, config, backend, settle):
        alerts = AlertCollector()
        async with open_client(
            config,
            store=InMemoryTokenStore(),
            alerts=alerts,
            transport=httpx.MockTransport(backend),
        ) as client:
            assert client.status()["authenticated"] is False
            await client.login("ana@example.com", "secret")
            await settle()
            assert client.stream.state is ConnectionState.RECONNECTING

            snapshot = await client.cache.fetch(auction_key("A1"))
            assert snapshot.current_price == 100.0
            assert backend.requests[-1].headers["Authorization"] == f"Bearer {backend.token}"

            await client.place_bid("A1", "105")
            current = client.cache.get_value(auction_key("A1"))
            assert current.current_price == 105.0
            assert current.status == "winning"

            feed = await client.cache.fetch(notifications_key("U1"))
            assert feed.total == 1
            assert feed.notifications[0].status == "outbid"

            status = client.status()
            assert status["authenticated"] is True
            assert status["user_id"] == "U1"
            assert status["connection"] == "reconnecting"
            assert status["cached_entries"] >= 3
        assert client.stream.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_rejected_credential_ends_session(self, config, backend, settle):
        backend.statistics_status = 401
        async with open_client(config, store=InMemoryTokenStore(), transport=httpx.MockTransport(backend)) as client:
            await client.login("ana@example.com", "secret")
            with pytest.raises(AuthError):
                await client.cache.fetch(user_statistics_key())
            await settle()
            assert not client.session.is_authenticated
            assert client.stream.state is ConnectionState.DISCONNECTED
            assert len(client.cache) == 0

    @pytest.mark.asyncio
    async def test_restores_stored_session(self, config, backend, token, settle):
        store = InMemoryTokenStore(token)
        async with open_client(config, store=store, transport=httpx.MockTransport(backend)) as client:
            assert client.session.is_authenticated
            await settle()
            assert client.stream.state is not ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_mutations_require_session(self, config, backend):
        client = MarketplaceClient(config, store=InMemoryTokenStore(), transport=httpx.MockTransport(backend))
        with pytest.raises(AuthError):
            await client.place_bid("A1", "105")
        await client.close()

    @pytest.mark.asyncio
    async def test_logout(self, config, backend, settle):
        async with open_client(config, store=InMemoryTokenStore(), transport=httpx.MockTransport(backend)) as client:
            await client.login("ana@example.com", "secret")
            await settle()
            await client.logout()
            assert client.status()["connection"] == "disconnected"
            assert client.status()["cached_entries"] == 0
