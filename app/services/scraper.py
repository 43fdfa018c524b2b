import asyncio
import logging
from typing import Awaitable, Callable, Optional

from bs4 import BeautifulSoup

from app.config import CrawlConfig
from app.errors import CleaningError
from app.models.page import MetadataOptions, ScrapedData, ScrapeOptions
from app.services import fetcher
from app.services.fetcher import FetchResult
from app.services.metadata import extract_metadata
from app.services.sanitizer import filter_html, reader_clean
from app.services.sitemap import fetch_meta_files

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[FetchResult]]

_TITLE_ONLY = MetadataOptions(
    language=False,
    canonical=False,
    robots=False,
    author=False,
    keywords=False,
    favicon=False,
    open_graph=False,
    twitter=False,
    is_iframe_allowed=False,
)


class ScrapeService:
    """Fetch a page and derive metadata, cleaned HTML and meta files from it."""

    def __init__(
        self,
        config: Optional[CrawlConfig] = None,
        fetch: Optional[Fetch] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.config = config or CrawlConfig()
        self._fetch = fetch
        self.cancel_event = cancel_event

    async def fetch(self, url: str) -> FetchResult:
        if self._fetch is not None:
            return await self._fetch(url)
        return await fetcher.fetch_page(url, config=self.config, cancel_event=self.cancel_event)

    def clean(self, html: str, url: str, options: ScrapeOptions) -> str:
        """Run the selected cleaning processor.

        Raises:
            CleaningError: if the processor fails.
        """
        try:
            if options.cleaning_processor == "reader":
                return reader_clean(html, url)
            return filter_html(
                html,
                url,
                extract_main_content=options.extract_main_content,
                remove_base64_images=options.remove_base64_images,
            )
        except Exception as exc:
            raise CleaningError(f"Failed to clean HTML for {url}: {exc}") from exc

    async def _clean_or_none(self, html: str, url: str, options: ScrapeOptions) -> Optional[str]:
        try:
            return await asyncio.to_thread(self.clean, html, url, options)
        except CleaningError as exc:
            logger.warning("%s", exc)
            return None

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> ScrapedData:
        """Fetch *url* and build a :class:`ScrapedData`.

        Meta-file retrieval and HTML cleaning run concurrently; neither can
        fail the scrape.

        Raises:
            FetchError: if the page itself cannot be fetched.
        """
        options = options or ScrapeOptions()
        result = await self.fetch(url)

        soup = BeautifulSoup(result.html, "lxml")
        basics = extract_metadata(soup, url, _TITLE_ONLY)
        metadata = None
        if options.metadata:
            metadata = extract_metadata(soup, url, options.metadata_options, result.is_iframe_allowed)

        async def _no_cleaning() -> Optional[str]:
            return None

        meta_files, cleaned_html = await asyncio.gather(
            fetch_meta_files(url, self.fetch, robots=options.robots, sitemap_xml=options.sitemap_xml),
            self._clean_or_none(result.html, url, options) if options.cleaned_html else _no_cleaning(),
        )

        return ScrapedData(
            url=url,
            title=basics.title or "",
            description=basics.description or "",
            raw_html=result.html,
            cleaned_html=cleaned_html,
            metadata=metadata,
            meta_files=meta_files,
            is_iframe_allowed=result.is_iframe_allowed,
        )
