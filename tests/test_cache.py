"""Tests for cache freshness and retrying writes."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from app.errors import CacheReadError, CacheWriteError
from app.services.cache import InMemoryCacheStore, is_fresh, put_with_retry, read_entry

TTL = 86400


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TestIsFresh:
    def test_entry_just_past_ttl_is_stale(self):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        written = now - timedelta(seconds=TTL + 1)
        assert not is_fresh(_iso(written), TTL, now=now)

    def test_entry_just_inside_ttl_is_fresh(self):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        written = now - timedelta(seconds=TTL - 1)
        assert is_fresh(_iso(written), TTL, now=now)

    def test_missing_or_invalid_timestamp(self):
        assert not is_fresh(None, TTL)
        assert not is_fresh("yesterday", TTL)


class TestInMemoryCacheStore:
    def test_put_and_get(self):
        store = InMemoryCacheStore()
        asyncio.run(store.put("k", "v", metadata={"timestamp": "t"}, expiration_ttl=60))
        entry = asyncio.run(store.get_with_metadata("k"))
        assert entry.value == "v"
        assert entry.metadata == {"timestamp": "t"}
        assert len(store) == 1

    def test_missing_key(self):
        assert asyncio.run(InMemoryCacheStore().get_with_metadata("nope")) is None


class TestReadEntry:
    def test_store_failure_becomes_cache_read_error(self):
        store = AsyncMock()
        store.get_with_metadata.side_effect = ConnectionError("down")
        with pytest.raises(CacheReadError):
            asyncio.run(read_entry(store, "k"))


class TestPutWithRetry:
    def test_retries_until_success(self):
        store = AsyncMock()
        store.put.side_effect = [ConnectionError("a"), ConnectionError("b"), None]
        asyncio.run(put_with_retry(store, "k", "v", initial_delay=0))
        assert store.put.await_count == 3

    def test_raises_after_all_attempts(self):
        store = AsyncMock()
        store.put.side_effect = ConnectionError("down")
        with pytest.raises(CacheWriteError):
            asyncio.run(put_with_retry(store, "k", "v", attempts=3, initial_delay=0))
        assert store.put.await_count == 3

    def test_ttl_is_clamped(self):
        store = AsyncMock()
        asyncio.run(put_with_retry(store, "k", "v", metadata={"a": 1}, expiration_ttl=5, initial_delay=0))
        store.put.assert_awaited_once_with("k", "v", metadata={"a": 1}, expiration_ttl=60)
