"""Page metadata extraction: title, description, OpenGraph and Twitter cards."""

from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag

from app.models.page import MetadataOptions, PageMetadata


def _meta(soup: BeautifulSoup, **attrs) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if isinstance(tag, Tag):
        content = tag.get("content")
        if content and str(content).strip():
            return str(content).strip()
    return None


def _absolute(base_url: str, value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return urljoin(base_url, value)


def _title_text(soup: BeautifulSoup) -> Optional[str]:
    """Return the first text node of ``<title>``, ignoring nested markup."""
    title = soup.find("title")
    if not isinstance(title, Tag):
        return None
    for child in title.children:
        if isinstance(child, NavigableString) and child.strip():
            return child.strip()
    return None


def _favicon(soup: BeautifulSoup) -> Optional[str]:
    for tag in soup.find_all("link", href=True):
        rel = tag.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "icon" in " ".join(rel).lower():
            return str(tag["href"])
    return None


def extract_metadata(
    soup: BeautifulSoup,
    base_url: str,
    options: Optional[MetadataOptions] = None,
    is_iframe_allowed: Optional[bool] = None,
) -> PageMetadata:
    """Read metadata from *soup*; relative URLs are resolved against *base_url*.

    Title precedence is ``og:title``, then ``twitter:title``, then the first
    text node of ``<title>``.
    """
    options = options or MetadataOptions()
    og_title = _meta(soup, property="og:title")
    twitter_title = _meta(soup, name="twitter:title")
    og_description = _meta(soup, property="og:description")
    twitter_description = _meta(soup, name="twitter:description")

    metadata = PageMetadata()

    if options.title:
        metadata.title = og_title or twitter_title or _title_text(soup)

    if options.description:
        metadata.description = _meta(soup, name="description") or og_description or twitter_description

    if options.language:
        html_tag = soup.find("html")
        if isinstance(html_tag, Tag) and html_tag.get("lang"):
            metadata.language = str(html_tag["lang"]).strip()

    if options.canonical:
        link = soup.find("link", rel="canonical")
        href = link.get("href") if isinstance(link, Tag) else None
        metadata.canonical = _absolute(base_url, str(href) if href else None) or base_url

    if options.robots:
        metadata.robots = _meta(soup, name="robots")

    if options.author:
        metadata.author = _meta(soup, name="author")

    if options.keywords:
        keywords = _meta(soup, name="keywords")
        if keywords:
            metadata.keywords = [k.strip() for k in keywords.split(",") if k.strip()] or None

    if options.favicon:
        metadata.favicon = _absolute(base_url, _favicon(soup))

    if options.open_graph:
        metadata.og_title = og_title
        metadata.og_description = og_description
        metadata.og_image = _absolute(base_url, _meta(soup, property="og:image"))
        metadata.og_url = _absolute(base_url, _meta(soup, property="og:url"))
        metadata.og_type = _meta(soup, property="og:type")
        metadata.og_site_name = _meta(soup, property="og:site_name")

    if options.twitter:
        metadata.twitter_card = _meta(soup, name="twitter:card")
        metadata.twitter_site = _meta(soup, name="twitter:site")
        metadata.twitter_creator = _meta(soup, name="twitter:creator")
        metadata.twitter_title = twitter_title
        metadata.twitter_description = twitter_description
        metadata.twitter_image = _absolute(base_url, _meta(soup, name="twitter:image"))

    if options.is_iframe_allowed and is_iframe_allowed is not None:
        metadata.is_iframe_allowed = is_iframe_allowed

    return metadata
