"""Shared rate limiter and request-scoped collaborators."""

import asyncio
import contextlib
import logging
from typing import AsyncIterator

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import CrawlConfig, get_config
from app.services.activity import ActivityStore
from app.services.cache import CacheStore

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

DISCONNECT_POLL_INTERVAL = 0.5


def get_app_config(request: Request) -> CrawlConfig:
    return getattr(request.app.state, "config", None) or get_config()


def get_links_cache(request: Request) -> CacheStore:
    return request.app.state.links_cache


def get_read_cache(request: Request) -> CacheStore:
    return request.app.state.read_cache


def get_activity_store(request: Request) -> ActivityStore:
    return request.app.state.activity_store


@contextlib.asynccontextmanager
async def watch_disconnect(request: Request) -> AsyncIterator[asyncio.Event]:
    """Yield an event that is set once the client goes away."""
    cancel_event = asyncio.Event()

    async def _poll() -> None:
        while not cancel_event.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected from %s, cancelling", request.url.path)
                cancel_event.set()
                return
            await asyncio.sleep(DISCONNECT_POLL_INTERVAL)

    watcher = asyncio.ensure_future(_poll())
    try:
        yield cancel_event
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
