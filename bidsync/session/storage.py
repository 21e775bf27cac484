"""Persistent credential storage backends."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol

from redis import asyncio as aioredis

from ..config import SessionConfig
from .tokens import is_valid_token, redact

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    async def get(self) -> str | None: ...

    async def set(self, token: str) -> None: ...

    async def clear(self) -> None: ...


class InMemoryTokenStore:
    def __init__(self, token: str | None = None) -> None:
        self._token = token

    async def get(self) -> str | None:
        return self._token

    async def set(self, token: str) -> None:
        self._token = token

    async def clear(self) -> None:
        self._token = None


class FileTokenStore:
    def __init__(self, *, path: str) -> None:
        if not path:
            raise ValueError("file token store requires a path")
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self) -> str | None:
        return await asyncio.to_thread(self._read)

    async def set(self, token: str) -> None:
        await asyncio.to_thread(self._write, token)

    async def clear(self) -> None:
        await asyncio.to_thread(self._path.unlink, missing_ok=True)

    def _read(self) -> str | None:
        if not self._path.exists():
            return None
        return self._path.read_text().strip() or None

    def _write(self, token: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(token)
        self._path.chmod(0o600)


class RedisTokenStore:
    def __init__(self, *, url: str, key: str = "bidsync:token") -> None:
        if not url:
            raise ValueError("redis url missing")
        self._redis = aioredis.from_url(url, decode_responses=True)
        self._key = key

    async def get(self) -> str | None:
        return await self._redis.get(self._key)

    async def set(self, token: str) -> None:
        await self._redis.set(self._key, token)

    async def clear(self) -> None:
        await self._redis.delete(self._key)


def build_token_store(config: SessionConfig) -> TokenStore:
    backend = config.backend
    options: dict[str, Any] = dict(config.options)
    if backend == "in_memory":
        return InMemoryTokenStore()
    if backend == "file":
        return FileTokenStore(**options)
    if backend == "redis":
        return RedisTokenStore(**options)
    raise ValueError(f"unknown token store backend {backend}")


async def store_token(store: TokenStore, token: str | None) -> bool:
    """Validate, persist, and read back a credential. Returns False on any failure."""
    await store.clear()
    if not is_valid_token(token):
        logger.error("refusing to persist malformed token %s", redact(token))
        return False
    await store.set(token)
    stored = await store.get()
    if stored != token:
        logger.error("token write could not be verified")
        return False
    return True


async def load_token(store: TokenStore) -> str | None:
    """Return the stored credential if well-formed; purge it otherwise."""
    token = await store.get()
    if token is None:
        return None
    if is_valid_token(token):
        return token
    logger.info("purging malformed stored token %s", redact(token))
    await store.clear()
    return None
