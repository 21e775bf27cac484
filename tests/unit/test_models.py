"""Unit tests for cached projections and alerts."""

from __future__ import annotations

from bidsync.alerts import Alert, AlertCollector
from bidsync.models import AuctionPage, AuctionSnapshot, Notification, NotificationFeed, normalize_status


class TestAuctionSnapshot:
    """Parsing API auctions."""

    def test_from_api_sorts_bids_and_normalises_status(self):
        snapshot = AuctionSnapshot.from_api(
            {
                "id": 7,
                "title": "Lamp",
                "currentPrice": "120.5",
                "status": "OUTBID",
                "endTime": "2099-12-31T23:00:00Z",
                "sellerId": "S1",
                "bids": [
                    {"id": "B2", "bidderId": "U2", "amount": 120.5, "createdAt": "2099-01-02T00:00:00Z"},
                    {"id": "B1", "bidderId": "U1", "amount": 110, "createdAt": "2099-01-01T00:00:00Z"},
                ],
            }
        )
        assert snapshot.id == "7"
        assert snapshot.current_price == 120.5
        assert snapshot.status == "outbid"
        assert [bid.id for bid in snapshot.bids] == ["B1", "B2"]

    def test_status_vocabulary(self):
        assert normalize_status("IN_PROGRESS") == "in-progress"
        assert normalize_status("winning") == "winning"
        assert normalize_status("DONE") == "done"
        assert normalize_status("ARCHIVED") == "in-progress"
        assert normalize_status(None) == "in-progress"


class TestAuctionPage:
    """List pages with pagination."""

    def test_from_api(self):
        page = AuctionPage.from_api(
            {"auctions": [{"id": "A1"}, {"id": "A2"}], "pagination": {"page": 2, "limit": 2, "total": 9}},
            page=1,
            limit=20,
        )
        assert (page.page, page.limit, page.total) == (2, 2, 9)
        assert page.find("A2").id == "A2"
        assert page.find("A3") is None

    def test_missing_pagination(self):
        page = AuctionPage.from_api({"auctions": [{"id": "A1"}]}, page=1, limit=20)
        assert (page.page, page.limit, page.total) == (1, 20, 1)


class TestNotifications:
    """Notification feed values."""

    def test_status_from_price(self):
        won = Notification.from_dto({"id": "N1", "price": 10, "auction": {"id": "A1", "title": "Lamp"}})
        outbid = Notification.from_dto({"id": "N2", "auction": {"id": "A1"}})
        assert won.status == "won"
        assert outbid.status == "outbid"
        assert won.to_dict()["auction_title"] == "Lamp"

    def test_prepend_is_immutable(self):
        first = Notification.from_dto({"id": "N1", "auction": {"id": "A1"}})
        second = Notification.from_dto({"id": "N2", "auction": {"id": "A1"}})
        feed = NotificationFeed.empty().prepend(first)
        newer = feed.prepend(second)
        assert feed.total == 1
        assert [item.id for item in newer.notifications] == ["N2", "N1"]
        assert newer.total == 2


class TestAlertCollector:
    """Alert sink used by the composition root."""

    def test_collects_and_forwards(self):
        forwarded = []
        collector = AlertCollector(forwarded.append)
        alert = Alert(level="info", title="Outbid", message="You've been outbid on Lamp")
        collector.emit(alert)
        assert collector.alerts == [alert]
        assert forwarded == [alert]
        collector.clear()
        assert collector.alerts == []
