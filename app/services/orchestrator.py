"""Links crawl orchestration.

One call to :meth:`CrawlOrchestrator.process_links_request` validates the
target URL, consults the tree cache, scrapes the target together with its
root, ancestors and descendants (bounded by ``max_kin_limit``), builds or
merges the site tree, writes it back to the cache and assembles the
response. All per-request mutable state lives in a :class:`CrawlState`.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError

from app.config import CrawlConfig
from app.errors import CacheReadError, CacheWriteError, FetchError
from app.models.links_request import LinksOptions
from app.models.links_response import (
    ExtractedLinks,
    LinksErrorResponse,
    LinksFlatResponse,
    LinksResponse,
    LinksTreeResponse,
    TreeNode,
)
from app.models.page import PageMetadata, ScrapedData, ScrapeOptions
from app.services import site_tree
from app.services.cache import CacheStore, is_fresh, put_with_retry, read_entry
from app.services.link_extractor import LinkExtractor, LinkSets
from app.services.metrics import format_duration, now_ms, utc_now_iso
from app.services.scraper import ScrapeService
from app.services.url_validator import target_url_helper

logger = logging.getLogger(__name__)

DEFAULT_TARGET_ERROR = (
    "Failed to scrape target URL. The URL may be unreachable, a placeholder URL, "
    "or returning an error status."
)


@dataclass
class CrawlState:
    """Mutable bookkeeping for one links request."""

    target_url: str
    root_url: str
    cache_key: str
    ancestors: Optional[List[str]] = None
    is_platform: bool = False
    # url -> ISO timestamp of the scrape made during this request
    visited: Dict[str, str] = field(default_factory=dict)
    scraped: Dict[str, ScrapedData] = field(default_factory=dict)
    pending: Dict[str, "asyncio.Future[Optional[ScrapedData]]"] = field(default_factory=dict)
    link_sets: LinkSets = field(default_factory=LinkSets)
    extracted_links: Dict[str, ExtractedLinks] = field(default_factory=dict)
    skipped_urls: Dict[str, str] = field(default_factory=dict)
    existing_tree: Optional[TreeNode] = None
    cached_visited: Dict[str, str] = field(default_factory=dict)
    cache_is_fresh: bool = False

    def can_skip(self, url: str, cleaned_html: bool) -> bool:
        """A fresh cache already knows *url*, and no cleaned HTML is needed for it."""
        return not cleaned_html and self.cache_is_fresh and url in self.cached_visited


class CrawlOrchestrator:
    def __init__(
        self,
        cache_store: CacheStore,
        config: Optional[CrawlConfig] = None,
        scrape_service: Optional[ScrapeService] = None,
        link_extractor: Optional[LinkExtractor] = None,
    ) -> None:
        self.config = config or CrawlConfig()
        self.cache_store = cache_store
        self.scrape_service = scrape_service or ScrapeService(self.config)
        self.link_extractor = link_extractor or LinkExtractor(self.config)

    # ------------------------------------------------------------------
    # Root resolution
    # ------------------------------------------------------------------

    def resolve_state(self, target_url: str, subdomain_as_root_url: bool = True) -> CrawlState:
        """Work out root URL, ancestors and cache key for a normalized *target_url*.

        On platform hosts the second ancestor (``host/owner``) is used as the
        root; when there is no such ancestor the origin is used instead.
        """
        parts = urlsplit(target_url)
        origin = f"{parts.scheme}://{parts.netloc}"
        ancestors = self.link_extractor.get_ancestor_paths(target_url)
        is_platform = self.config.is_platform_url(origin)
        platform_root = ancestors[1] if ancestors and len(ancestors) > 1 else origin

        if subdomain_as_root_url:
            root_url = platform_root if is_platform else origin
        else:
            root_url = self.link_extractor.get_root_url(target_url)

        cache_key = platform_root if is_platform else root_url
        return CrawlState(
            target_url=target_url,
            root_url=root_url,
            cache_key=cache_key,
            ancestors=ancestors,
            is_platform=is_platform,
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cache_ttl(self, options: LinksOptions) -> int:
        return options.cache_options.expiration_ttl or self.config.links_cache_ttl

    def _cache_enabled(self, options: LinksOptions) -> bool:
        return self.config.enable_links_cache and options.cache_options.enabled

    async def load_cached_tree(self, state: CrawlState, options: LinksOptions) -> None:
        if not self._cache_enabled(options):
            return
        try:
            entry = await read_entry(self.cache_store, state.cache_key)
        except CacheReadError as exc:
            logger.warning("Links cache read failed, continuing without cache: %s", exc)
            return
        if entry is None or not entry.value:
            return

        timestamp = (entry.metadata or {}).get("timestamp")
        if not is_fresh(timestamp, self._cache_ttl(options)):
            logger.info("Cached tree for %s is stale", state.cache_key)
            return
        try:
            state.existing_tree = TreeNode.model_validate_json(entry.value)
        except ValidationError as exc:
            logger.warning("Discarding unreadable cached tree for %s: %s", state.cache_key, exc)
            return
        state.cached_visited = site_tree.extract_visited_urls(state.existing_tree)
        state.cache_is_fresh = True

    async def store_tree(self, state: CrawlState, tree: TreeNode, options: LinksOptions) -> None:
        if not self._cache_enabled(options):
            return
        target = state.scraped.get(state.target_url)
        metadata = {
            "title": target.title if target else None,
            "description": target.description if target else None,
            "timestamp": utc_now_iso(),
        }
        value = json.dumps(tree.to_wire())
        try:
            await put_with_retry(
                self.cache_store,
                state.cache_key,
                value,
                metadata=metadata,
                expiration_ttl=self._cache_ttl(options),
                attempts=self.config.cache_put_attempts,
                initial_delay=self.config.cache_put_initial_delay,
            )
        except CacheWriteError as exc:
            logger.error("Failed to store site tree for %s: %s", state.cache_key, exc)

    # ------------------------------------------------------------------
    # Scraping
    # ------------------------------------------------------------------

    def _scrape_options(self, state: CrawlState, url: str, options: LinksOptions) -> ScrapeOptions:
        is_root = url == state.root_url
        return ScrapeOptions(
            metadata=True,
            cleaned_html=options.cleaned_html,
            robots=is_root and options.robots,
            sitemap_xml=is_root and options.sitemap_xml,
            metadata_options=options.metadata_options,
            cleaning_processor=options.cleaning_processor,
        )

    async def _scrape(self, state: CrawlState, url: str, options: LinksOptions) -> Optional[ScrapedData]:
        try:
            result = await self.scrape_service.scrape(url, self._scrape_options(state, url, options))
        except (FetchError, ValueError) as exc:
            logger.warning("Failed to scrape %s: %s", url, exc)
            state.skipped_urls[url] = f"Failed to scrape: {exc}"
            return None
        state.visited[url] = utc_now_iso()
        state.scraped[url] = result
        return result

    async def scrape_if_not_visited(
        self, state: CrawlState, url: str, options: LinksOptions
    ) -> Optional[ScrapedData]:
        """Scrape *url* at most once per request; concurrent callers share the result."""
        if url in state.scraped:
            return state.scraped[url]
        pending = state.pending.get(url)
        if pending is None:
            pending = asyncio.ensure_future(self._scrape(state, url, options))
            state.pending[url] = pending
        return await pending

    def _collect_links(self, state: CrawlState, url: str, html: str, options: LinksOptions) -> ExtractedLinks:
        links = self.link_extractor.extract(
            html,
            base_url=url,
            root_url=state.root_url,
            options=options.link_extraction_options,
            skipped_urls=state.skipped_urls,
        )
        if options.extracted_links:
            state.extracted_links[url] = links
        # Scraped pages belong in the tree even when nothing links to them
        if url != state.root_url:
            state.link_sets.internal.setdefault(url, None)
        self.link_extractor.merge_links(state.link_sets, links)
        return links

    async def process_kin_links(self, state: CrawlState, urls: List[str], options: LinksOptions) -> None:
        """Scrape related pages concurrently; each failure is isolated."""

        async def _process(kin: str) -> None:
            if state.can_skip(kin, options.cleaned_html):
                return
            result = await self.scrape_if_not_visited(state, kin, options)
            if result is None:
                return
            if state.cache_is_fresh and kin in state.cached_visited:
                return
            self._collect_links(state, kin, result.raw_html, options)

        outcomes = await asyncio.gather(*(_process(kin) for kin in urls), return_exceptions=True)
        for kin, outcome in zip(urls, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Error processing %s: %s", kin, outcome)
                state.skipped_urls[kin] = f"Failed to process: {outcome}"

    async def process_root_url(self, state: CrawlState, root_url: str, options: LinksOptions) -> None:
        try:
            if state.can_skip(root_url, options.cleaned_html):
                return
            result = await self.scrape_if_not_visited(state, root_url, options)
            if result is None:
                return
            links = self._collect_links(state, root_url, result.raw_html, options)
            descendants = self.link_extractor.get_descendant_paths(root_url, links.internal or ())
            if descendants:
                await self.process_kin_links(state, descendants[: self.config.max_kin_limit], options)
        except Exception as exc:
            logger.warning("Error processing root URL %s: %s", root_url, exc)
            state.skipped_urls[root_url] = f"Failed to process: {exc}"

    async def process_target_url(self, state: CrawlState, options: LinksOptions) -> Optional[ScrapedData]:
        """Scrape the target page; None when it could not be scraped for any reason."""
        try:
            result = await self.scrape_if_not_visited(state, state.target_url, options)
            if result is None or not result.raw_html:
                return None
            self._collect_links(state, state.target_url, result.raw_html, options)
        except Exception as exc:
            logger.exception("Error processing target URL %s", state.target_url)
            state.skipped_urls[state.target_url] = f"Failed to process: {exc}"
            return None
        return result

    # ------------------------------------------------------------------
    # Request flow
    # ------------------------------------------------------------------

    def error_response(
        self,
        target_url: str,
        options: LinksOptions,
        existing_tree: Optional[TreeNode] = None,
        error: str = DEFAULT_TARGET_ERROR,
        request_id: Optional[str] = None,
    ) -> LinksErrorResponse:
        return LinksErrorResponse(
            request_id=request_id,
            target_url=target_url,
            error=error,
            timestamp=utc_now_iso(),
            tree=existing_tree if options.tree else None,
        )

    async def process_links_request(self, options: LinksOptions, request_id: Optional[str] = None) -> LinksResponse:
        """Run the full crawl for *options.url*.

        Raises:
            URLError: if the target URL is invalid, unsafe or disallowed.
        """
        started = now_ms()
        timestamp = utc_now_iso()
        target_url = site_tree.canonical_url(target_url_helper(options.url, config=self.config))
        state = self.resolve_state(target_url, options.subdomain_as_root_url)
        logger.info(
            "Links request received",
            extra={"target_url": target_url, "root_url": state.root_url, "tree": options.tree},
        )

        await self.load_cached_tree(state, options)

        # Root, ancestors and target run concurrently
        tasks = []
        if state.target_url != state.root_url:
            if not state.is_platform:
                tasks.append(self.process_root_url(state, state.root_url, options))
            elif state.ancestors and len(state.ancestors) > 1:
                tasks.append(self.process_root_url(state, state.ancestors[1], options))
        if state.ancestors:
            others = [url for url in state.ancestors if url != state.root_url]
            tasks.append(self.process_kin_links(state, others[: self.config.max_kin_limit], options))
        outcomes = await asyncio.gather(self.process_target_url(state, options), *tasks, return_exceptions=True)
        target_result = outcomes[0] if isinstance(outcomes[0], ScrapedData) else None
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.warning("Crawl task failed for %s: %s", target_url, outcome)

        if target_result is None:
            reason = state.skipped_urls.get(target_url, "")
            logger.error("Target page could not be scraped: %s %s", target_url, reason)
            return self.error_response(target_url, options, state.existing_tree, request_id=request_id)

        descendants = self.link_extractor.get_descendant_paths(target_url, state.link_sets.internal)
        if descendants:
            await self.process_kin_links(state, descendants[: self.config.max_kin_limit], options)

        tree = self.build_or_merge_tree(state, options)
        await self.store_tree(state, tree, options)

        # Content that never goes into the cache
        site_tree.attach_page_content(
            tree,
            cleaned_html={url: s.cleaned_html for url, s in state.scraped.items() if s.cleaned_html}
            if options.cleaned_html
            else None,
            extracted_links=state.extracted_links if options.extracted_links else None,
            include_metadata=options.metadata,
        )
        extraction = options.link_extraction_options
        site_tree.filter_tree_links(tree, extraction.include_external, extraction.include_media)

        skipped = site_tree.categorize_skipped_urls(state.skipped_urls, state.root_url, self.link_extractor)
        execution_time = format_duration(now_ms() - started)
        tree.skipped_urls = skipped
        tree.execution_time = execution_time

        logger.info(
            "Links request completed",
            extra={
                "target_url": target_url,
                "total_urls": tree.total_urls,
                "skipped": len(state.skipped_urls),
                "execution_time": execution_time,
            },
        )

        if options.tree:
            return LinksTreeResponse(
                cached=state.cache_is_fresh,
                request_id=request_id,
                target_url=target_url,
                timestamp=timestamp,
                ancestors=state.ancestors,
                tree=tree,
            )

        root_scrape = state.scraped.get(state.root_url)
        return LinksFlatResponse(
            cached=state.cache_is_fresh,
            request_id=request_id,
            target_url=target_url,
            timestamp=timestamp,
            ancestors=state.ancestors,
            execution_time=execution_time,
            title=target_result.title or None,
            description=target_result.description or None,
            metadata=target_result.metadata if options.metadata else None,
            extracted_links=site_tree.filter_links(
                state.extracted_links.get(target_url),
                extraction.include_external,
                extraction.include_media,
            )
            if options.extracted_links
            else None,
            cleaned_html=target_result.cleaned_html if options.cleaned_html else None,
            meta_files=(root_scrape or target_result).meta_files,
            skipped_urls=skipped,
        )

    def build_or_merge_tree(self, state: CrawlState, options: LinksOptions) -> TreeNode:
        internal_links = list(state.link_sets.internal)
        visited = self.link_extractor.merge_visited_urls(
            state.cached_visited, state.visited, self.config.max_visited_urls_limit
        )
        metadata_cache: Dict[str, PageMetadata] = {
            url: scraped.metadata for url, scraped in state.scraped.items() if scraped.metadata
        }

        if state.cache_is_fresh and state.existing_tree is not None and internal_links:
            return site_tree.merge_tree(
                state.existing_tree,
                internal_links,
                state.root_url,
                visited_urls=visited,
                metadata_cache=metadata_cache,
                folder_first=options.folder_first,
                links_order=options.links_order,
            )
        return site_tree.build_tree(
            internal_links,
            state.root_url,
            visited_urls=visited,
            metadata_cache=metadata_cache,
            folder_first=options.folder_first,
            links_order=options.links_order,
            config=self.config,
        )
