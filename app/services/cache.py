"""Key-value cache access for crawl trees and read responses.

The store itself is an external collaborator described by :class:`CacheStore`;
:class:`InMemoryCacheStore` backs the default app and the tests.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, NamedTuple, Optional, Protocol

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from app.errors import CacheReadError, CacheWriteError
from app.services.metrics import parse_iso

logger = logging.getLogger(__name__)

MIN_EXPIRATION_TTL = 60


class CacheEntry(NamedTuple):
    value: str
    metadata: Optional[Dict[str, Any]]


class CacheStore(Protocol):
    async def get_with_metadata(self, key: str) -> Optional[CacheEntry]:
        ...

    async def put(
        self,
        key: str,
        value: str,
        metadata: Optional[Dict[str, Any]] = None,
        expiration_ttl: Optional[int] = None,
    ) -> None:
        ...


class InMemoryCacheStore:
    """Process-local store with per-entry expiry."""

    def __init__(self) -> None:
        self._entries: Dict[str, tuple] = {}

    async def get_with_metadata(self, key: str) -> Optional[CacheEntry]:
        item = self._entries.get(key)
        if item is None:
            return None
        entry, expires_at = item
        if expires_at is not None and expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return entry

    async def put(
        self,
        key: str,
        value: str,
        metadata: Optional[Dict[str, Any]] = None,
        expiration_ttl: Optional[int] = None,
    ) -> None:
        expires_at = time.monotonic() + expiration_ttl if expiration_ttl else None
        self._entries[key] = (CacheEntry(value, metadata), expires_at)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def is_fresh(timestamp: Optional[str], ttl: int, now: Optional[datetime] = None) -> bool:
    """Return True when *timestamp* is less than *ttl* seconds old."""
    if not timestamp:
        return False
    try:
        written = parse_iso(timestamp)
    except ValueError:
        logger.warning("Ignoring cache entry with invalid timestamp %r", timestamp)
        return False
    now = now or datetime.now(timezone.utc)
    return now - written < timedelta(seconds=ttl)


async def read_entry(store: CacheStore, key: str) -> Optional[CacheEntry]:
    """Fetch *key* from *store*.

    Raises:
        CacheReadError: if the store fails.
    """
    try:
        return await store.get_with_metadata(key)
    except Exception as exc:
        raise CacheReadError(f"Failed to read cache key {key}: {exc}") from exc


async def put_with_retry(
    store: CacheStore,
    key: str,
    value: str,
    metadata: Optional[Dict[str, Any]] = None,
    expiration_ttl: int = 86400,
    attempts: int = 5,
    initial_delay: float = 1.0,
) -> None:
    """Write to *store*, retrying with exponential backoff.

    The TTL is clamped to at least :data:`MIN_EXPIRATION_TTL` seconds.

    Raises:
        CacheWriteError: once every attempt has failed.
    """
    ttl = max(MIN_EXPIRATION_TTL, int(expiration_ttl))
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=initial_delay, min=initial_delay),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                await store.put(key, value, metadata=metadata, expiration_ttl=ttl)
    except Exception as exc:
        raise CacheWriteError(f"Failed to write cache key {key}: {exc}") from exc
