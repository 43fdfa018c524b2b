import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.config import CrawlConfig
from app.dependencies import (
    get_activity_store,
    get_app_config,
    get_links_cache,
    limiter,
    watch_disconnect,
)
from app.errors import URLError
from app.models.links_request import LinkExtractionOptions, LinksOptions, LinksOrder
from app.models.links_response import LinksErrorResponse
from app.services.activity import ActivityStore, schedule_post_processing
from app.services.cache import CacheStore
from app.services.deduplicator import PATH_LINKS_GET, PATH_LINKS_POST
from app.services.metrics import now_ms, utc_now_iso
from app.services.orchestrator import CrawlOrchestrator
from app.services.scraper import ScrapeService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["links"])


async def _handle(
    request: Request,
    options: LinksOptions,
    path: str,
    background_tasks: BackgroundTasks,
    config: CrawlConfig,
    cache: CacheStore,
    store: ActivityStore,
) -> JSONResponse:
    started = now_ms()
    request_id = str(uuid.uuid4())
    logger.info("Links request received", extra={"url": options.url, "path": path})

    try:
        async with watch_disconnect(request) as cancel_event:
            orchestrator = CrawlOrchestrator(cache, config, ScrapeService(config, cancel_event=cancel_event))
            response = await orchestrator.process_links_request(options, request_id=request_id)
    except URLError as exc:
        logger.warning("Rejected URL %s: %s", options.url, exc)
        body = LinksErrorResponse(
            request_id=request_id, target_url=options.url, error=str(exc), timestamp=utc_now_iso()
        )
        return JSONResponse(status_code=400, content=body.to_wire())

    schedule_post_processing(
        background_tasks, store, path, request_id, response.target_url,
        options.model_dump(mode="json", by_alias=True), response, started,
    )
    status_code = 200 if response.success else 500
    return JSONResponse(status_code=status_code, content=response.to_wire())


@router.get("/links", summary="Crawl a site around a URL")
@limiter.limit("10/minute")
async def get_links(
    request: Request,
    background_tasks: BackgroundTasks,
    url: str = Query(..., min_length=1, max_length=2048),
    tree: bool = True,
    extracted_links: bool = Query(True, alias="extractedLinks"),
    metadata: bool = True,
    cleaned_html: bool = Query(False, alias="cleanedHtml"),
    robots: bool = False,
    sitemap_xml: bool = Query(False, alias="sitemapXML"),
    subdomain_as_root_url: bool = Query(True, alias="subdomainAsRootUrl"),
    folder_first: bool = Query(True, alias="folderFirst"),
    links_order: LinksOrder = Query("page", alias="linksOrder"),
    include_external: bool = Query(False, alias="includeExternal"),
    include_media: bool = Query(False, alias="includeMedia"),
    remove_query_params: bool = Query(True, alias="removeQueryParams"),
    exclude_patterns: Optional[List[str]] = Query(None, alias="excludePatterns"),
    config: CrawlConfig = Depends(get_app_config),
    cache: CacheStore = Depends(get_links_cache),
    store: ActivityStore = Depends(get_activity_store),
):
    options = LinksOptions(
        url=url,
        tree=tree,
        extracted_links=extracted_links,
        metadata=metadata,
        cleaned_html=cleaned_html,
        robots=robots,
        sitemap_xml=sitemap_xml,
        subdomain_as_root_url=subdomain_as_root_url,
        folder_first=folder_first,
        links_order=links_order,
        link_extraction_options=LinkExtractionOptions(
            include_external=include_external,
            include_media=include_media,
            remove_query_params=remove_query_params,
            exclude_patterns=exclude_patterns,
        ),
    )
    return await _handle(request, options, PATH_LINKS_GET, background_tasks, config, cache, store)


@router.post("/links", summary="Crawl a site around a URL")
@limiter.limit("10/minute")
async def extract_links(
    request: Request,
    body: LinksOptions,
    background_tasks: BackgroundTasks,
    config: CrawlConfig = Depends(get_app_config),
    cache: CacheStore = Depends(get_links_cache),
    store: ActivityStore = Depends(get_activity_store),
):
    """Scrape the target with its root, ancestors and descendants and return the site tree.

    Answers 500 with ``success: false`` when the target page itself cannot be
    scraped; the previously cached tree is included when ``tree`` is set.
    """
    return await _handle(request, body, PATH_LINKS_POST, background_tasks, config, cache, store)
