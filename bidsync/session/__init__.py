from .guard import Session, SessionGuard
from .storage import (
    FileTokenStore,
    InMemoryTokenStore,
    RedisTokenStore,
    TokenStore,
    build_token_store,
    load_token,
    store_token,
)
from .tokens import is_valid_token

__all__ = [
    "FileTokenStore",
    "InMemoryTokenStore",
    "RedisTokenStore",
    "Session",
    "SessionGuard",
    "TokenStore",
    "build_token_store",
    "is_valid_token",
    "load_token",
    "store_token",
]
