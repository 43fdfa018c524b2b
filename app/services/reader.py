"""Single-page read: fetch, clean and convert a page to Markdown."""

import logging
import re
from typing import Optional

from markdownify import markdownify
from pydantic import ValidationError

from app.config import CrawlConfig
from app.errors import CacheReadError, CacheWriteError, FetchError
from app.models.read_request import ReadOptions
from app.models.read_response import ReadErrorResponse, ReadResponse, ReadSuccessResponse
from app.models.page import ScrapeOptions
from app.services.cache import CacheStore, is_fresh, put_with_retry, read_entry
from app.services.cleaner import clean_markdown
from app.services.deduplicator import hash_options, sha256
from app.services.metrics import build_metrics, now_ms, utc_now_iso
from app.services.scraper import ScrapeService
from app.services.url_validator import target_url_helper

logger = logging.getLogger(__name__)

READ_ERROR_SUFFIX = ". It may be a temporary issue or the URL may be unreachable."
MIN_MEANINGFUL_WORDS = 10

_FORMATTING_RE = re.compile(r"[#*_`\-]")


def html_to_markdown(html: str) -> str:
    markdown = markdownify(html, heading_style="ATX", bullets="-", strip=["script", "style"])
    return clean_markdown(markdown)


def has_meaningful_markdown(markdown: Optional[str]) -> bool:
    """True when *markdown* holds at least ten words longer than two characters."""
    if not markdown:
        return False
    text = _FORMATTING_RE.sub("", " ".join(markdown.split()))
    return sum(1 for word in text.split(" ") if len(word) > 2) >= MIN_MEANINGFUL_WORDS


def default_markdown(title: Optional[str], target_url: str, description: Optional[str]) -> str:
    lines = [
        f"# {title or 'No Title Available'}",
        "",
        "**No content could be extracted from this URL.**",
        "",
        f"**URL:** {target_url}",
    ]
    if description:
        lines.append(f"**Description:** {description}")
    lines += [
        "",
        "*This page may contain content that cannot be processed as markdown, such as:*",
        "- Interactive applications or SPAs",
        "- Media-only content",
        "- Protected or restricted content",
        "- Malformed HTML",
    ]
    return "\n".join(lines)


def read_cache_key(options: ReadOptions) -> str:
    request_options = options.model_dump(mode="json", by_alias=True, exclude={"cache_options"})
    return f"read:{sha256(options.url + '|' + hash_options(request_options))}"


class ReadProcessor:
    def __init__(
        self,
        cache_store: CacheStore,
        config: Optional[CrawlConfig] = None,
        scrape_service: Optional[ScrapeService] = None,
    ) -> None:
        self.config = config or CrawlConfig()
        self.cache_store = cache_store
        self.scrape_service = scrape_service or ScrapeService(self.config)

    def _cache_enabled(self, options: ReadOptions) -> bool:
        return self.config.enable_read_cache and options.cache_options.enabled

    def _cache_ttl(self, options: ReadOptions) -> int:
        return options.cache_options.expiration_ttl or self.config.read_cache_ttl

    async def _load_cached(self, key: str, options: ReadOptions) -> Optional[ReadSuccessResponse]:
        try:
            entry = await read_entry(self.cache_store, key)
        except CacheReadError as exc:
            logger.warning("Read cache lookup failed, continuing without cache: %s", exc)
            return None
        if entry is None or not is_fresh((entry.metadata or {}).get("timestamp"), self._cache_ttl(options)):
            return None
        try:
            return ReadSuccessResponse.model_validate_json(entry.value)
        except ValidationError:
            logger.warning("Discarding unreadable read cache entry %s", key)
            return None

    async def _store(self, key: str, response: ReadSuccessResponse, options: ReadOptions) -> None:
        value = response.model_copy(update={"request_id": None, "metrics": None}).model_dump_json(
            by_alias=True, exclude_none=True
        )
        metadata = {"title": response.title, "description": response.description, "timestamp": utc_now_iso()}
        try:
            await put_with_retry(
                self.cache_store,
                key,
                value,
                metadata=metadata,
                expiration_ttl=self._cache_ttl(options),
                attempts=self.config.cache_put_attempts,
                initial_delay=self.config.cache_put_initial_delay,
            )
        except CacheWriteError as exc:
            logger.error("%s", exc)

    async def process_read_request(self, options: ReadOptions, request_id: Optional[str] = None) -> ReadResponse:
        """Read one page.

        Raises:
            URLError: if the URL is invalid or unsafe.
        """
        start = now_ms()
        target_url = target_url_helper(options.url, strip_fragment=True, config=self.config)
        options = options.model_copy(update={"url": target_url})

        key = read_cache_key(options)
        if self._cache_enabled(options):
            cached = await self._load_cached(key, options)
            if cached is not None:
                logger.info("Read cache hit for %s", target_url)
                return cached.model_copy(
                    update={"cached": True, "request_id": request_id, "metrics": build_metrics(start, now_ms())}
                )

        scrape_options = ScrapeOptions(
            metadata=options.metadata,
            cleaned_html=True,
            robots=options.robots,
            sitemap_xml=options.sitemap_xml,
            metadata_options=options.metadata_options,
            cleaning_processor=options.cleaning_processor,
        )
        try:
            scraped = await self.scrape_service.scrape(target_url, scrape_options)
        except FetchError as exc:
            logger.warning("Read failed for %s: %s", target_url, exc)
            return ReadErrorResponse(
                request_id=request_id,
                target_url=target_url,
                error=f"{exc.message.rstrip('.')}{READ_ERROR_SUFFIX}",
                timestamp=utc_now_iso(),
            )

        markdown = None
        if options.markdown:
            markdown = html_to_markdown(scraped.cleaned_html or scraped.raw_html)
            if not has_meaningful_markdown(markdown):
                markdown = default_markdown(scraped.title, target_url, scraped.description)

        response = ReadSuccessResponse(
            cached=False,
            request_id=request_id,
            target_url=target_url,
            title=scraped.title or None,
            description=scraped.description or None,
            markdown=markdown,
            cleaned_html=scraped.cleaned_html if options.cleaned_html else None,
            raw_html=scraped.raw_html if options.raw_html else None,
            metadata=scraped.metadata,
            meta_files=scraped.meta_files,
            metrics=build_metrics(start, now_ms()),
        )

        if self._cache_enabled(options):
            await self._store(key, response, options)
        return response
