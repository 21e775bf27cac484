"""Unit tests for credential checks and token stores."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from bidsync.config import SessionConfig
from bidsync.session.storage import (
    FileTokenStore,
    InMemoryTokenStore,
    RedisTokenStore,
    build_token_store,
    load_token,
    store_token,
)
from bidsync.session.tokens import decode_token_payload, is_valid_token, redact


class TestTokenShape:
    """Structural validity of credentials."""

    def test_valid_token(self, token):
        assert is_valid_token(token)
        assert decode_token_payload(token) == {"sub": "U1"}

    @pytest.mark.parametrize("value", [None, "", "   ", "undefined", "null", "None", 42])
    def test_placeholders_rejected(self, value):
        assert not is_valid_token(value)

    def test_wrong_segment_count(self):
        assert not is_valid_token("abc.def")
        assert not is_valid_token("a.b.c.d")

    def test_payload_must_decode_to_object(self):
        assert not is_valid_token("aGVhZGVy.bm90IGpzb24.c2ln")
        assert not is_valid_token("aGVhZGVy.WzEsMl0.c2ln")

    def test_redact(self, token):
        assert redact(token) == f"{token[:6]}..."
        assert redact(None) == "<none>"


class TestStoreToken:
    """store_token and load_token against the in-memory backend."""

    @pytest.mark.asyncio
    async def test_store_and_verify(self, token):
        store = InMemoryTokenStore()
        assert await store_token(store, token) is True
        assert await store.get() == token

    @pytest.mark.asyncio
    async def test_malformed_token_never_persisted(self, token):
        store = InMemoryTokenStore(token)
        assert await store_token(store, "not-a-token") is False
        assert await store.get() is None

    @pytest.mark.asyncio
    async def test_failed_read_back(self, token):
        store = AsyncMock()
        store.get.return_value = None
        assert await store_token(store, token) is False
        store.set.assert_awaited_once_with(token)

    @pytest.mark.asyncio
    async def test_load_purges_invalid(self):
        store = InMemoryTokenStore("garbage")
        assert await load_token(store) is None
        assert await store.get() is None

    @pytest.mark.asyncio
    async def test_load_valid(self, token):
        assert await load_token(InMemoryTokenStore(token)) == token

    @pytest.mark.asyncio
    async def test_load_empty(self):
        assert await load_token(InMemoryTokenStore()) is None


class TestFileTokenStore:
    """One-line credential file."""

    @pytest.mark.asyncio
    async def test_roundtrip_and_clear(self, tmp_path, token):
        path = tmp_path / "nested" / "token"
        store = FileTokenStore(path=str(path))
        assert await store.get() is None
        await store.set(token)
        assert path.read_text() == token
        assert path.stat().st_mode & 0o777 == 0o600
        assert await store.get() == token
        await store.clear()
        assert not path.exists()
        await store.clear()

    def test_requires_path(self):
        with pytest.raises(ValueError):
            FileTokenStore(path="")


class TestRedisTokenStore:
    """Redis-backed store with the client mocked out."""

    @pytest.mark.asyncio
    async def test_delegates_to_redis(self, token):
        store = RedisTokenStore(url="redis://localhost:6379/0", key="test:token")
        store._redis = AsyncMock()
        store._redis.get.return_value = token
        await store.set(token)
        assert await store.get() == token
        await store.clear()
        store._redis.set.assert_awaited_once_with("test:token", token)
        store._redis.delete.assert_awaited_once_with("test:token")

    def test_requires_url(self):
        with pytest.raises(ValueError):
            RedisTokenStore(url="")


class TestBuildTokenStore:
    """Backend selection from configuration."""

    def test_in_memory(self):
        assert isinstance(build_token_store(SessionConfig(backend="in_memory")), InMemoryTokenStore)

    def test_file(self, tmp_path):
        store = build_token_store(SessionConfig(backend="file", options={"path": str(tmp_path / "t")}))
        assert isinstance(store, FileTokenStore)

    def test_redis(self):
        store = build_token_store(SessionConfig(backend="redis", options={"url": "redis://localhost:6379/0"}))
        assert isinstance(store, RedisTokenStore)

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_token_store(SessionConfig(backend="sqlite"))
