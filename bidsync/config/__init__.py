"""Configuration helpers for the marketplace client."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_CLIENT_CONFIG = Path(__file__).resolve().parent / "client.yaml"

_DEFAULT_QUERIES: dict[str, dict[str, Any]] = {
    "user": {"stale_after_ms": 15 * 60 * 1000, "retry": False},
    "notifications": {"stale_after_ms": 15 * 60 * 1000},
    "user-statistics": {"stale_after_ms": 5 * 60 * 1000},
    "auctions": {"stale_after_ms": 30 * 1000, "refetch_interval_ms": 30 * 1000},
    "auction": {"stale_after_ms": 30 * 1000, "refetch_interval_ms": 10 * 1000},
}


@dataclass(frozen=True)
class ApiConfig:
    base_url: str
    timeout_ms: int = 10000


@dataclass(frozen=True)
class StreamConfig:
    path: str = "/api/v1/notifications/stream"
    reconnect_delay_ms: int = 5000


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 2
    base_delay_ms: int = 1000
    max_delay_ms: int = 5000

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds before retry number ``attempt`` (0-based)."""
        return min(self.base_delay_ms * 2**attempt, self.max_delay_ms) / 1000


@dataclass(frozen=True)
class QueryConfig:
    stale_after_ms: int
    refetch_interval_ms: int | None = None
    retry: bool = True


@dataclass(frozen=True)
class SessionConfig:
    backend: str = "in_memory"
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationConfig:
    min_bid_increment: str = "1.00"
    max_price: str = "999999.99"
    max_decimal_places: int = 2
    title_max_length: int = 200
    description_max_length: int = 2000
    image_max_bytes: int = 5 * 1024 * 1024
    image_types: tuple[str, ...] = ("image/jpeg", "image/jpg", "image/png", "image/webp")


@dataclass(frozen=True)
class ClientConfig:
    api: ApiConfig
    stream: StreamConfig
    retry: RetryConfig
    queries: Mapping[str, QueryConfig]
    session: SessionConfig
    validation: ValidationConfig

    def query(self, namespace: str) -> QueryConfig:
        try:
            return self.queries[namespace]
        except KeyError as exc:
            raise ValueError(f"unknown query namespace {namespace}") from exc


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def parse_client_config(data: Mapping[str, Any]) -> ClientConfig:
    api = data.get("api", {})
    stream = data.get("stream", {})
    retry = data.get("retry", {})
    session = data.get("session", {})
    validation = data.get("validation", {})
    raw_queries = {name: dict(values) for name, values in _DEFAULT_QUERIES.items()}
    for name, values in (data.get("queries") or {}).items():
        raw_queries.setdefault(name, {}).update(values or {})
    queries = {}
    for name, values in raw_queries.items():
        interval = values.get("refetch_interval_ms")
        queries[name] = QueryConfig(
            stale_after_ms=int(values.get("stale_after_ms", 5 * 60 * 1000)),
            refetch_interval_ms=int(interval) if interval else None,
            retry=bool(values.get("retry", True)),
        )
    defaults = ValidationConfig()
    return ClientConfig(
        api=ApiConfig(
            base_url=str(os.getenv("BIDSYNC_API_URL", api.get("base_url") or "")).rstrip("/"),
            timeout_ms=int(api.get("timeout_ms", 10000)),
        ),
        stream=StreamConfig(
            path=str(stream.get("path", "/api/v1/notifications/stream")),
            reconnect_delay_ms=int(stream.get("reconnect_delay_ms", 5000)),
        ),
        retry=RetryConfig(
            max_attempts=int(retry.get("max_attempts", 2)),
            base_delay_ms=int(retry.get("base_delay_ms", 1000)),
            max_delay_ms=int(retry.get("max_delay_ms", 5000)),
        ),
        queries=queries,
        session=SessionConfig(
            backend=str(session.get("backend", "in_memory")),
            options=dict(session.get("options") or {}),
        ),
        validation=ValidationConfig(
            min_bid_increment=str(validation.get("min_bid_increment", defaults.min_bid_increment)),
            max_price=str(validation.get("max_price", defaults.max_price)),
            max_decimal_places=int(validation.get("max_decimal_places", defaults.max_decimal_places)),
            title_max_length=int(validation.get("title_max_length", defaults.title_max_length)),
            description_max_length=int(
                validation.get("description_max_length", defaults.description_max_length)
            ),
            image_max_bytes=int(validation.get("image_max_bytes", defaults.image_max_bytes)),
            image_types=tuple(validation.get("image_types") or defaults.image_types),
        ),
    )


@lru_cache(maxsize=1)
def get_client_config() -> ClientConfig:
    path = Path(os.getenv("BIDSYNC_CONFIG_PATH", _DEFAULT_CLIENT_CONFIG))
    return parse_client_config(_load_yaml(path))
