"""Unit tests for bid and auction form validation."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from bidsync.config import ValidationConfig
from bidsync.models import AuctionSnapshot
from bidsync.mutations import validators
from bidsync.mutations.validators import (
    ImageUpload,
    build_edit_request,
    parse_end_date,
    validate_auction_form,
    validate_bid,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config() -> ValidationConfig:
    return ValidationConfig()


def valid_form(**overrides):
    form = {
        "title": "Vintage lamp",
        "description": "Brass, works fine",
        "starting_price": "10.50",
        "end_date": "31.12.2025",
    }
    form.update(overrides)
    return form


class TestValidateBid:
    """Bid amount rules."""

    def test_equal_to_current_price_rejected(self, config):
        errors = validate_bid("100", 100.0, config)
        assert errors == {"amount": "Bid must be higher than current price (100.00€)"}

    def test_current_price_plus_increment_accepted(self, config):
        assert validate_bid("101", 100.0, config) == {}

    def test_below_minimum_increment(self, config):
        errors = validate_bid("100.50", 100.0, config)
        assert errors["amount"] == "Minimum bid is 101.00€ (minimum increment: 1.00€)"

    @pytest.mark.parametrize(
        "amount, message",
        [
            ("", validators.BID_REQUIRED),
            ("   ", validators.BID_REQUIRED),
            ("12a", validators.BID_INVALID),
            ("1000000", validators.BID_TOO_HIGH),
            ("150.123", validators.BID_TOO_MANY_DECIMALS),
        ],
    )
    def test_format_rules(self, config, amount, message):
        assert validate_bid(amount, 100.0, config) == {"amount": message}

    def test_missing_current_price_treated_as_zero(self, config):
        assert validate_bid("1", None, config) == {}

    def test_custom_increment(self):
        config = ValidationConfig(min_bid_increment="5.00")
        assert "Minimum bid is 105.00€" in validate_bid("104", 100.0, config)["amount"]
        assert validate_bid("105", 100.0, config) == {}


class TestAuctionForm:
    """Create/edit form rules."""

    def test_valid(self, config):
        assert validate_auction_form(valid_form(), config, now=NOW) == {}

    def test_required_fields(self, config):
        errors = validate_auction_form({}, config, now=NOW)
        assert errors == {
            "title": validators.TITLE_REQUIRED,
            "description": validators.DESCRIPTION_REQUIRED,
            "starting_price": validators.PRICE_REQUIRED,
            "end_date": validators.END_DATE_REQUIRED,
        }

    def test_lengths(self, config):
        errors = validate_auction_form(valid_form(title="x" * 201, description="y" * 2001), config, now=NOW)
        assert errors == {
            "title": validators.TITLE_TOO_LONG,
            "description": validators.DESCRIPTION_TOO_LONG,
        }

    @pytest.mark.parametrize(
        "price, message",
        [
            ("abc", validators.PRICE_INVALID),
            ("0", validators.PRICE_NON_POSITIVE),
            ("-5", validators.PRICE_NON_POSITIVE),
            ("1000000", validators.PRICE_TOO_HIGH),
            ("9.999", validators.PRICE_TOO_MANY_DECIMALS),
        ],
    )
    def test_price_rules(self, config, price, message):
        assert validate_auction_form(valid_form(starting_price=price), config, now=NOW) == {"starting_price": message}

    def test_edit_skips_price(self, config):
        form = valid_form()
        del form["starting_price"]
        assert validate_auction_form(form, config, require_price=False, now=NOW) == {}

    @pytest.mark.parametrize(
        "end_date, message",
        [
            ("2025-12-31", validators.END_DATE_INVALID),
            ("31.02.2025", validators.END_DATE_INVALID),
            ("01.05.2025", validators.END_DATE_PAST),
        ],
    )
    def test_end_date_rules(self, config, end_date, message):
        assert validate_auction_form(valid_form(end_date=end_date), config, now=NOW) == {"end_date": message}

    def test_image_rules(self, config):
        big = ImageUpload(b"x" * (config.image_max_bytes + 1), "image/png")
        gif = ImageUpload(b"GIF89a", "image/gif")
        assert validate_auction_form(valid_form(image=big), config, now=NOW) == {"image": validators.IMAGE_TOO_LARGE}
        assert validate_auction_form(valid_form(image=gif), config, now=NOW) == {"image": validators.IMAGE_INVALID_TYPE}
        ok = ImageUpload(b"\x89PNG", "image/png")
        assert validate_auction_form(valid_form(image=ok), config, now=NOW) == {}


class TestEndDate:
    """DD.MM.YYYY resolution."""

    def test_resolves_to_2300_utc(self):
        assert parse_end_date("10.12.2025") == datetime(2025, 12, 10, 23, 0, tzinfo=timezone.utc)

    def test_rejects_other_formats(self):
        assert parse_end_date("10/12/2025") is None


class TestBuildEditRequest:
    """Edit requests carry only changed fields."""

    def original(self) -> AuctionSnapshot:
        return AuctionSnapshot(
            id="A1",
            title="Lamp",
            current_price=10.0,
            status="in-progress",
            end_time="2025-12-31T23:00:00Z",
            seller_id="U1",
            description="Brass",
        )

    def test_unchanged_form_is_empty(self):
        form = {"title": "Lamp", "description": "Brass", "end_date": "31.12.2025"}
        assert build_edit_request(form, self.original()) == {}

    def test_changed_fields(self):
        form = {"title": "Desk lamp", "description": "Brass", "end_date": "01.01.2026", "remove_image": True}
        assert build_edit_request(form, self.original()) == {
            "title": "Desk lamp",
            "endTime": "2026-01-01T23:00:00Z",
            "imageUrl": "",
        }

    def test_without_original(self):
        form = {"title": "Lamp", "description": "Brass"}
        assert build_edit_request(form, None) == {"title": "Lamp", "description": "Brass"}
