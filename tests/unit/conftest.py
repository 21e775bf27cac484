"""Shared fixtures for the unit suite."""

from __future__ import annotations

import asyncio
import base64
from typing import Any

import orjson
import pytest

from bidsync.alerts import AlertCollector
from bidsync.config import RetryConfig


def _segment(data: dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(orjson.dumps(data)).rstrip(b"=").decode("ascii")


@pytest.fixture
def make_token():
    """Factory for structurally valid three-segment credentials."""

    def _make(payload: dict[str, Any] | None = None) -> str:
        header = _segment({"alg": "HS256", "typ": "JWT"})
        return f"{header}.{_segment(payload or {'sub': 'U1'})}.c2lnbmF0dXJl"

    return _make


@pytest.fixture
def token(make_token) -> str:
    return make_token()


@pytest.fixture
def settle():
    """Let pending tasks on the loop run to their next real suspension point."""

    async def _settle(rounds: int = 50) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=2, base_delay_ms=0, max_delay_ms=0)


@pytest.fixture
def alerts() -> AlertCollector:
    return AlertCollector()


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
