"""Client-side form validation for bids and auction create/edit forms."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from ..config import ValidationConfig

PRICE_PATTERN = re.compile(r"^-?\d*\.?\d*$")
DATE_PATTERN = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")

TITLE_REQUIRED = "Title is required"
TITLE_TOO_LONG = "Title must be less than 200 characters"
DESCRIPTION_REQUIRED = "Description is required"
DESCRIPTION_TOO_LONG = "Description must be less than 2000 characters"
PRICE_REQUIRED = "Starting price is required"
PRICE_INVALID = "Starting price must be a valid number (e.g., 10.50)"
PRICE_NOT_A_NUMBER = "Starting price must be a valid number"
PRICE_NON_POSITIVE = "Starting price must be positive"
PRICE_TOO_HIGH = "Starting price must be less than 1,000,000"
PRICE_TOO_MANY_DECIMALS = "Starting price can have maximum 2 decimal places"
END_DATE_REQUIRED = "End date is required"
END_DATE_INVALID = "Use DD.MM.YYYY format (e.g., 10.12.2025)"
END_DATE_PAST = "End date must be in the future"
IMAGE_TOO_LARGE = "Image must be less than 5MB"
IMAGE_INVALID_TYPE = "Image must be in JPEG, JPG, PNG, or WebP format"

BID_REQUIRED = "Bid amount is required"
BID_INVALID = "Bid amount must be a valid number (e.g., 10.50)"
BID_NOT_A_NUMBER = "Bid amount must be a valid number"
BID_TOO_HIGH = "Bid amount must be less than 1,000,000"
BID_TOO_MANY_DECIMALS = "Bid amount can have maximum 2 decimal places"


@dataclass(frozen=True)
class ImageUpload:
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


def parse_amount(value: str) -> Decimal | None:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _decimal_places(value: str) -> int:
    _, _, fraction = value.partition(".")
    return len(fraction)


def validate_bid(amount: str | None, current_price: Any, config: ValidationConfig) -> dict[str, str]:
    errors: dict[str, str] = {}
    text = (amount or "").strip()
    if not text:
        errors["amount"] = BID_REQUIRED
        return errors
    if not PRICE_PATTERN.match(text):
        errors["amount"] = BID_INVALID
        return errors
    value = parse_amount(text)
    if value is None:
        errors["amount"] = BID_NOT_A_NUMBER
        return errors
    current = Decimal(str(current_price or 0))
    minimum = current + Decimal(config.min_bid_increment)
    if value <= current:
        errors["amount"] = f"Bid must be higher than current price ({current:.2f}€)"
    elif value < minimum:
        errors["amount"] = (
            f"Minimum bid is {minimum:.2f}€ (minimum increment: {Decimal(config.min_bid_increment):.2f}€)"
        )
    elif value > Decimal(config.max_price):
        errors["amount"] = BID_TOO_HIGH
    elif _decimal_places(text) > config.max_decimal_places:
        errors["amount"] = BID_TOO_MANY_DECIMALS
    return errors


def validate_price(text: str, config: ValidationConfig) -> str | None:
    if not PRICE_PATTERN.match(text):
        return PRICE_INVALID
    value = parse_amount(text)
    if value is None:
        return PRICE_NOT_A_NUMBER
    if value <= 0:
        return PRICE_NON_POSITIVE
    if value > Decimal(config.max_price):
        return PRICE_TOO_HIGH
    if _decimal_places(text) > config.max_decimal_places:
        return PRICE_TOO_MANY_DECIMALS
    return None


def parse_end_date(value: str) -> datetime | None:
    """Resolve ``DD.MM.YYYY`` to 23:00:00 UTC of that day (midnight CET)."""
    match = DATE_PATTERN.match(value.strip())
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, 23, 0, 0, tzinfo=timezone.utc)
    except ValueError:
        return None


def validate_end_date(value: str, now: datetime | None = None) -> str | None:
    end = parse_end_date(value)
    if end is None:
        return END_DATE_INVALID
    if end <= (now or datetime.now(timezone.utc)):
        return END_DATE_PAST
    return None


def validate_image(image: ImageUpload, config: ValidationConfig) -> str | None:
    if image.size > config.image_max_bytes:
        return IMAGE_TOO_LARGE
    if image.content_type not in config.image_types:
        return IMAGE_INVALID_TYPE
    return None


def validate_auction_form(
    form: dict[str, Any],
    config: ValidationConfig,
    *,
    require_price: bool = True,
    now: datetime | None = None,
) -> dict[str, str]:
    errors: dict[str, str] = {}

    title = (form.get("title") or "").strip()
    if not title:
        errors["title"] = TITLE_REQUIRED
    elif len(title) > config.title_max_length:
        errors["title"] = TITLE_TOO_LONG

    description = (form.get("description") or "").strip()
    if not description:
        errors["description"] = DESCRIPTION_REQUIRED
    elif len(description) > config.description_max_length:
        errors["description"] = DESCRIPTION_TOO_LONG

    if require_price:
        price = (form.get("starting_price") or "").strip()
        if not price:
            errors["starting_price"] = PRICE_REQUIRED
        else:
            price_error = validate_price(price, config)
            if price_error:
                errors["starting_price"] = price_error

    end_date = (form.get("end_date") or "").strip()
    if not end_date:
        errors["end_date"] = END_DATE_REQUIRED
    else:
        date_error = validate_end_date(end_date, now)
        if date_error:
            errors["end_date"] = date_error

    image = form.get("image")
    if image is not None:
        image_error = validate_image(image, config)
        if image_error:
            errors["image"] = image_error

    return errors


def build_edit_request(form: dict[str, Any], original: Any) -> dict[str, Any]:
    """Only the fields that differ from ``original`` (an AuctionSnapshot or None)."""
    updates: dict[str, Any] = {}
    title = (form.get("title") or "").strip()
    if title and title != getattr(original, "title", None):
        updates["title"] = title
    if form.get("description") is not None:
        description = form["description"].strip()
        if description != (getattr(original, "description", None) or ""):
            updates["description"] = description
    if form.get("end_date"):
        end = parse_end_date(form["end_date"])
        if end is not None:
            end_iso = end.isoformat().replace("+00:00", "Z")
            if end_iso != getattr(original, "end_time", None):
                updates["endTime"] = end_iso
    if form.get("remove_image"):
        updates["imageUrl"] = ""
    return updates
