"""Link discovery and categorization.

HTML is streamed through an lxml parser target so only the ``href``/``src``
attributes of interest are collected; no DOM is built. Each candidate is
filtered, normalized and validated, then sorted into internal, external and
media buckets.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set
from urllib.parse import urljoin, urlsplit, urlunsplit

from lxml import etree

from app.config import CrawlConfig
from app.models.links_request import LinkExtractionOptions
from app.models.links_response import ExtractedLinks, MediaLinks
from app.services.url_validator import validate_url

logger = logging.getLogger(__name__)

# Element -> attribute holding a link target
_LINK_ATTRS = {
    "a": "href",
    "img": "src",
    "video": "src",
    "audio": "src",
    "source": "src",
    "iframe": "src",
}

_IGNORED_PREFIXES = ("#", "javascript:", "mailto:", "tel:")


class _LinkCollector:
    """lxml parser target that records link attributes in document order."""

    def __init__(self) -> None:
        self.values: List[str] = []

    def start(self, tag, attrib) -> None:
        attr = _LINK_ATTRS.get(tag)
        if attr is None:
            return
        value = attrib.get(attr)
        if value:
            self.values.append(value.strip())

    def end(self, tag) -> None:
        pass

    def data(self, data) -> None:
        pass

    def comment(self, text) -> None:
        pass

    def close(self) -> List[str]:
        return self.values


def collect_link_values(html: str) -> List[str]:
    """Return raw ``href``/``src`` values from *html* in document order."""
    if not html or not html.strip():
        return []
    collector = _LinkCollector()
    parser = etree.HTMLParser(target=collector)
    try:
        parser.feed(html)
        parser.close()
    except etree.LxmlError as exc:
        logger.warning("HTML parsing stopped early: %s", exc)
    return collector.values


def normalize_link(href: str, base_url: str = "", remove_query_params: Optional[bool] = True) -> str:
    """Resolve *href* against *base_url*; drop fragment, query (optionally) and trailing slash."""
    absolute = urljoin(base_url, href) if base_url else href
    parts = urlsplit(absolute)
    query = "" if remove_query_params is None or remove_query_params else parts.query
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, path, query, ""))


def _hostname(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def _compile_patterns(patterns: Optional[Iterable[str]]) -> List["re.Pattern[str]"]:
    compiled = []
    for pattern in patterns or ():
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            logger.warning("Ignoring invalid exclude pattern %r: %s", pattern, exc)
    return compiled


@dataclass
class LinkSets:
    """Accumulated links for one crawl. ``internal`` keeps discovery order."""

    internal: Dict[str, None] = field(default_factory=dict)
    external: Set[str] = field(default_factory=set)
    images: Set[str] = field(default_factory=set)
    videos: Set[str] = field(default_factory=set)
    documents: Set[str] = field(default_factory=set)


class LinkExtractor:
    def __init__(self, config: Optional[CrawlConfig] = None) -> None:
        self.config = config or CrawlConfig()

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract(
        self,
        html: str,
        base_url: str,
        root_url: Optional[str] = None,
        options: Optional[LinkExtractionOptions] = None,
        skipped_urls: Optional[Dict[str, str]] = None,
    ) -> ExtractedLinks:
        """Extract and categorize every link in *html*.

        URLs failing validation are recorded in *skipped_urls* (url -> reason).
        """
        options = options or LinkExtractionOptions()
        excludes = _compile_patterns(options.exclude_patterns)

        found: Dict[str, None] = {}
        for href in collect_link_values(html):
            if not href or href.lower().startswith(_IGNORED_PREFIXES):
                continue
            if any(pattern.search(href) for pattern in excludes):
                continue
            if self.is_framework_resource(href, base_url):
                continue

            candidate = normalize_link(href, base_url, options.remove_query_params)
            result = validate_url(candidate, max_length=self.config.max_url_length)
            if not result.is_valid or not result.normalized_url:
                if skipped_urls is not None:
                    skipped_urls[candidate] = result.error or "Invalid URL"
                continue
            found[result.normalized_url] = None

        return self.categorize(found, base_url, root_url or self.get_root_url(base_url))

    def is_framework_resource(self, href: str, base_url: str = "") -> bool:
        try:
            path = urlsplit(urljoin(base_url, href) if base_url else href).path
        except ValueError:
            return False
        return any(pattern in path for pattern in self.config.framework_patterns)

    def media_kind(self, url: str) -> Optional[str]:
        """Return ``images``/``videos``/``documents`` when *url* points at a media file."""
        try:
            path = urlsplit(url).path.lower()
        except ValueError:
            return None
        for kind, extensions in self.config.media_extensions.items():
            if path.endswith(extensions):
                return kind
        return None

    def categorize(self, urls: Iterable[str], base_url: str, root_url: str) -> ExtractedLinks:
        """Split *urls* into internal, external and media buckets.

        Media matches take priority. Internal links keep discovery order;
        external and media lists are sorted.
        """
        base_host = _hostname(base_url)
        root_host = _hostname(root_url)
        own_domains = {self.extract_root_domain(base_host), self.extract_root_domain(root_host)}

        internal: Dict[str, None] = {}
        external: Set[str] = set()
        media: Dict[str, Set[str]] = {kind: set() for kind in self.config.media_extensions}

        for url in urls:
            kind = self.media_kind(url)
            if kind:
                media[kind].add(url)
                continue

            host = _hostname(url)
            if not host:
                continue
            if host in (base_host, root_host) or self.extract_root_domain(host) in own_domains:
                if urlsplit(url).path not in ("", "/"):
                    internal[url] = None
            else:
                external.add(url)

        media_links = MediaLinks(
            images=sorted(media.get("images", ())) or None,
            videos=sorted(media.get("videos", ())) or None,
            documents=sorted(media.get("documents", ())) or None,
        )
        has_media = any((media_links.images, media_links.videos, media_links.documents))
        return ExtractedLinks(
            internal=list(internal) or None,
            external=sorted(external) or None,
            media=media_links if has_media else None,
        )

    # ------------------------------------------------------------------
    # Path resolution
    # ------------------------------------------------------------------

    @staticmethod
    def extract_root_domain(hostname: str) -> str:
        return ".".join(hostname.split(".")[-2:])

    def get_root_url(self, url: str) -> str:
        parts = urlsplit(url)
        return f"{parts.scheme}://{self.extract_root_domain((parts.hostname or '').lower())}"

    def get_ancestor_paths(self, url: str) -> Optional[List[str]]:
        """Return the root URL plus every path prefix above *url*, shallowest first."""
        parts = urlsplit(url)
        segments = [segment for segment in parts.path.split("/") if segment]
        root_url = self.get_root_url(url)

        ancestors: List[str] = []
        if root_url != url:
            ancestors.append(root_url)

        current = f"{parts.scheme}://{parts.netloc}"
        for segment in segments[:-1]:
            current += f"/{segment}"
            ancestors.append(current)

        return ancestors or None

    def get_descendant_paths(
        self,
        base_url: str,
        internal_links: Iterable[str],
        max_steps: Optional[int] = None,
    ) -> List[str]:
        """Return links below *base_url* on the same host, nearest first.

        *max_steps* limits how many levels below *base_url* are included
        (1 = direct children only).
        """
        base = urlsplit(normalize_link(base_url))
        base_segments = [segment for segment in base.path.split("/") if segment]

        descendants: Dict[str, int] = {}
        for link in internal_links:
            normalized = normalize_link(link)
            parts = urlsplit(normalized)
            if parts.hostname != base.hostname:
                continue
            segments = [segment for segment in parts.path.split("/") if segment]
            depth = len(segments) - len(base_segments)
            if depth <= 0 or segments[: len(base_segments)] != base_segments:
                continue
            if max_steps is not None and depth > max_steps:
                continue
            descendants.setdefault(normalized, len(segments))

        return sorted(descendants, key=descendants.__getitem__)

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    @staticmethod
    def merge_links(link_sets: LinkSets, links: ExtractedLinks) -> None:
        for url in links.internal or ():
            link_sets.internal[url] = None
        link_sets.external.update(links.external or ())
        if links.media:
            link_sets.images.update(links.media.images or ())
            link_sets.videos.update(links.media.videos or ())
            link_sets.documents.update(links.media.documents or ())

    @staticmethod
    def merge_visited_urls(
        existing: Dict[str, str],
        new: Dict[str, str],
        limit: int,
    ) -> Dict[str, str]:
        """Combine visit maps keeping the newest timestamp per URL.

        The result is ordered newest first and holds at most *limit* entries.
        """
        merged = dict(existing)
        for url, visited_at in new.items():
            if url not in merged or visited_at > merged[url]:
                merged[url] = visited_at
        newest_first = sorted(merged.items(), key=lambda item: item[1], reverse=True)
        return dict(newest_first[:limit])
