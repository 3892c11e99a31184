"""Shared FastAPI dependencies."""

from fastapi import Request

from sips.cache import Cache
from sips.config import Settings, get_settings
from sips.database import get_session

get_db = get_session


def get_cache(request: Request) -> Cache:
    """The cache client built at startup and kept on app.state."""
    cache: Cache | None = getattr(request.app.state, "cache", None)
    if cache is None:
        msg = "Cache not initialized. Is the lifespan running?"
        raise RuntimeError(msg)
    return cache


def get_app_settings() -> Settings:
    return get_settings()
