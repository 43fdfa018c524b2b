"""Activity logging and response-record storage for served requests."""

import logging
from typing import Any, Dict, Optional, Protocol, Union

from fastapi import BackgroundTasks

from app.models.activity import ActivityLogEntry, ResponseRecord
from app.models.links_response import LinksErrorResponse
from app.models.read_response import ReadErrorResponse
from app.services.deduplicator import (
    SuccessResponse,
    hash_options,
    hash_response,
    reconstruct_from_log,
    split_for_hash,
)
from app.services.metrics import now_ms, utc_now_iso

logger = logging.getLogger(__name__)

ErrorResponse = Union[ReadErrorResponse, LinksErrorResponse]


class ContentStore(Protocol):
    async def store_response_record(self, record: ResponseRecord) -> None:
        ...

    async def get_response_record(self, content_hash: str) -> Optional[ResponseRecord]:
        ...


class ActivityLogger(Protocol):
    async def log_activity(self, entry: ActivityLogEntry) -> None:
        ...

    async def get_activity(self, request_id: str) -> Optional[ActivityLogEntry]:
        ...


class ActivityStore(ContentStore, ActivityLogger, Protocol):
    pass


class InMemoryActivityStore:
    """Holds response records (upserted by hash) and write-once log entries."""

    def __init__(self) -> None:
        self.records: Dict[str, ResponseRecord] = {}
        self.entries: Dict[str, ActivityLogEntry] = {}

    async def store_response_record(self, record: ResponseRecord) -> None:
        self.records[record.content_hash] = record

    async def get_response_record(self, content_hash: str) -> Optional[ResponseRecord]:
        return self.records.get(content_hash)

    async def log_activity(self, entry: ActivityLogEntry) -> None:
        if entry.id in self.entries:
            logger.warning("Activity entry %s already logged", entry.id)
            return
        self.entries[entry.id] = entry

    async def get_activity(self, request_id: str) -> Optional[ActivityLogEntry]:
        return self.entries.get(request_id)

    def clear(self) -> None:
        self.records.clear()
        self.entries.clear()


async def post_process(
    store: ActivityStore,
    path: str,
    request_id: str,
    target_url: str,
    request_options: Dict[str, Any],
    response: Union[SuccessResponse, ErrorResponse],
    started_ms: float,
) -> None:
    """Hash, dedup and log one response. Failures are logged, never raised."""
    try:
        entry_fields: Dict[str, Any] = {
            "id": request_id,
            "path": path,
            "success": response.success,
            "request_options": request_options,
            "execution_time_ms": now_ms() - started_ms,
            "timestamp": utc_now_iso(),
        }
        if response.success:
            options_hash = hash_options(request_options)
            stable, dynamic = split_for_hash(path, response)
            content_hash = hash_response(target_url, options_hash, stable)
            await store.store_response_record(
                ResponseRecord(content_hash=content_hash, stable_content=stable.to_wire())
            )
            entry_fields["response_hash"] = content_hash
            entry_fields["response_metadata"] = dynamic.to_wire()
        else:
            entry_fields["response_metadata"] = response.to_wire()
        await store.log_activity(ActivityLogEntry(**entry_fields))
    except Exception:
        logger.exception("[%s post-processing] failed for request %s", path, request_id)


def schedule_post_processing(
    background_tasks: BackgroundTasks,
    store: ActivityStore,
    path: str,
    request_id: str,
    target_url: str,
    request_options: Dict[str, Any],
    response: Union[SuccessResponse, ErrorResponse],
    started_ms: float,
) -> None:
    background_tasks.add_task(
        post_process, store, path, request_id, target_url, request_options, response, started_ms
    )


async def replay(store: ActivityStore, request_id: str) -> Optional[Union[SuccessResponse, Dict[str, Any]]]:
    """Rebuild the response of a logged request, or None if *request_id* is unknown."""
    entry = await store.get_activity(request_id)
    if entry is None:
        return None
    return await replay_entry(store, entry)


async def replay_entry(store: ActivityStore, entry: ActivityLogEntry) -> Optional[Union[SuccessResponse, Dict[str, Any]]]:
    if not entry.success:
        return entry.response_metadata or {}
    record = await store.get_response_record(entry.response_hash)
    if record is None:
        logger.warning("Response record %s missing for request %s", entry.response_hash, entry.id)
        return None
    return reconstruct_from_log(record, entry)
