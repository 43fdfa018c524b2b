import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import CrawlConfig
from app.dependencies import (
    get_activity_store,
    get_app_config,
    get_read_cache,
    limiter,
    watch_disconnect,
)
from app.errors import URLError
from app.models.read_request import ReadOptions
from app.models.read_response import ReadErrorResponse, ReadResponse
from app.services.activity import ActivityStore, schedule_post_processing
from app.services.cache import CacheStore
from app.services.deduplicator import PATH_READ_GET, PATH_READ_POST
from app.services.metrics import now_ms, utc_now_iso
from app.services.reader import ReadProcessor, default_markdown
from app.services.scraper import ScrapeService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["read"])


def url_error_response(url: str, exc: URLError, request_id: str) -> JSONResponse:
    logger.warning("Rejected URL %s: %s", url, exc)
    body = ReadErrorResponse(request_id=request_id, target_url=url, error=str(exc), timestamp=utc_now_iso())
    return JSONResponse(status_code=400, content=body.to_wire())


async def _read(
    request: Request, options: ReadOptions, request_id: str, config: CrawlConfig, cache: CacheStore
) -> ReadResponse:
    async with watch_disconnect(request) as cancel_event:
        processor = ReadProcessor(cache, config, ScrapeService(config, cancel_event=cancel_event))
        return await processor.process_read_request(options, request_id=request_id)


@router.get("/read", response_class=PlainTextResponse, summary="Read a page as Markdown")
@limiter.limit("30/minute")
async def get_markdown(
    request: Request,
    background_tasks: BackgroundTasks,
    url: str = Query(..., min_length=1, max_length=2048),
    config: CrawlConfig = Depends(get_app_config),
    cache: CacheStore = Depends(get_read_cache),
    store: ActivityStore = Depends(get_activity_store),
):
    """Return the page's Markdown as ``text/markdown``."""
    started = now_ms()
    request_id = str(uuid.uuid4())
    options = ReadOptions(url=url)
    logger.info("Read request received", extra={"url": url, "method": "GET"})

    try:
        response = await _read(request, options, request_id, config, cache)
    except URLError as exc:
        return url_error_response(url, exc, request_id)

    schedule_post_processing(
        background_tasks, store, PATH_READ_GET, request_id,
        response.target_url, {"url": url}, response, started,
    )
    if not response.success:
        return JSONResponse(status_code=500, content=response.to_wire())

    markdown = response.markdown or default_markdown(response.title, response.target_url, response.description)
    return PlainTextResponse(markdown, media_type="text/markdown")


@router.post("/read", summary="Read a page")
@limiter.limit("30/minute")
async def read_url(
    request: Request,
    body: ReadOptions,
    background_tasks: BackgroundTasks,
    config: CrawlConfig = Depends(get_app_config),
    cache: CacheStore = Depends(get_read_cache),
    store: ActivityStore = Depends(get_activity_store),
):
    """Fetch *url* and return Markdown, cleaned HTML and metadata as JSON."""
    started = now_ms()
    request_id = str(uuid.uuid4())
    logger.info("Read request received", extra={"url": body.url, "method": "POST"})

    try:
        response = await _read(request, body, request_id, config, cache)
    except URLError as exc:
        return url_error_response(body.url, exc, request_id)

    schedule_post_processing(
        background_tasks, store, PATH_READ_POST, request_id,
        response.target_url, body.model_dump(mode="json", by_alias=True), response, started,
    )
    status_code = 200 if response.success else 500
    return JSONResponse(status_code=status_code, content=response.to_wire())
