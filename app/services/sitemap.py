"""robots.txt and sitemap.xml retrieval for a scraped page's site."""

import logging
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlsplit
from xml.etree import ElementTree

from app.errors import FetchError
from app.models.page import MetaFiles
from app.services.fetcher import FetchResult
from app.services.robots import parse_robots

logger = logging.getLogger(__name__)

# Common sitemap paths to probe in order
_SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
)

Fetch = Callable[[str], Awaitable[FetchResult]]


def parse_sitemap(xml_text: str) -> List[str]:
    """Extract all ``<loc>`` values from a sitemap or sitemap-index XML."""
    urls: List[str] = []
    try:
        root = ElementTree.fromstring(xml_text)
        ns = root.tag.split("}")[0] + "}" if root.tag.startswith("{") else ""
        for elem in root.iter(f"{ns}loc"):
            if elem.text:
                urls.append(elem.text.strip())
    except ElementTree.ParseError as exc:
        logger.warning("Failed to parse sitemap XML: %s", exc)
    return urls


def _looks_like_sitemap(text: str) -> bool:
    if "<urlset" not in text and "<sitemapindex" not in text:
        return False
    return bool(parse_sitemap(text))


async def _fetch_text(fetch: Fetch, url: str) -> Optional[str]:
    """Return the body of *url*, or None when it cannot be fetched."""
    try:
        result = await fetch(url)
    except (FetchError, ValueError) as exc:
        logger.info("Meta file unavailable: %s (%s)", url, exc)
        return None
    return result.html


async def fetch_meta_files(base_url: str, fetch: Fetch, robots: bool, sitemap_xml: bool) -> Optional[MetaFiles]:
    """Fetch robots.txt and/or a sitemap for the site of *base_url*.

    Sitemap locations listed in robots.txt are tried before the common
    paths. Missing files leave the corresponding field unset.
    """
    if not robots and not sitemap_xml:
        return None

    parts = urlsplit(base_url)
    origin = f"{parts.scheme}://{parts.netloc}"
    meta = MetaFiles()

    robots_text = await _fetch_text(fetch, f"{origin}/robots.txt")
    if robots and robots_text:
        meta.robots = robots_text

    if sitemap_xml:
        candidates: List[str] = []
        if robots_text:
            candidates.extend(parse_robots(robots_text).sitemaps)
        candidates.extend(f"{origin}{path}" for path in _SITEMAP_PATHS)

        seen = set()
        for candidate in candidates:
            if candidate in seen:
                continue
            seen.add(candidate)
            text = await _fetch_text(fetch, candidate)
            if text and _looks_like_sitemap(text):
                meta.sitemap_xml = text
                break

    if meta.robots is None and meta.sitemap_xml is None:
        return None
    return meta
