"""HTML cleaning.

Two processors produce ``cleanedHtml``:

* :func:`filter_html` drops scripting/binary tags, comments,
  hidden elements and (optionally) page chrome such as headers, menus and
  sidebars, removes inline base64 images and makes links absolute.
* :func:`reader_clean` does readability-style extraction of the main article
  via trafilatura, falling back to :func:`filter_html`.
"""

import logging
import re
from typing import Iterable
from urllib.parse import urljoin

import trafilatura
from bs4 import BeautifulSoup, Comment, Tag

logger = logging.getLogger(__name__)

# Never content: scripting, embedded objects and document plumbing
DROPPED_TAGS = frozenset(
    "script style noscript template iframe object embed applet link meta svg canvas".split()
)

# Page chrome; only removed when extracting the main content
CHROME_SELECTORS = (
    "header", "footer", "nav", "aside",
    "[role='banner']", "[role='navigation']", "[role='search']",
    "[role='complementary']", "[role='contentinfo']",
    "form[role='search']", "form[action*='search']", "input[type='search']",
    "[aria-label*='breadcrumb' i]",
    ".sr-only", ".visually-hidden",
)

# Substrings of an id or class that mark chrome
CHROME_HINTS = (
    "navbar", "navigation", "menu", "sidebar", "side-bar", "breadcrumb",
    "cookie", "gdpr", "advertisement", "popup", "modal", "newsletter",
    "subscribe", "social-share", "site-header", "site-footer", "search-form",
)

# Containers that hold the content itself, whatever their class says
CONTENT_CONTAINERS = frozenset(("html", "body", "main", "article"))

_HIDDEN_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.IGNORECASE)
_SCRIPTED_ATTR_RE = re.compile(r"^(?:style|on\w+)$", re.IGNORECASE)

_LINK_ATTRS = {"a": "href", "img": "src", "source": "src", "video": "src", "audio": "src"}
_UNRESOLVED_PREFIXES = ("#", "data:", "javascript:", "mailto:", "tel:")


def _decompose_all(tags: Iterable[Tag]) -> None:
    for tag in tags:
        if not tag.decomposed:
            tag.decompose()


def _looks_like_chrome(tag: Tag) -> bool:
    if tag.name in CONTENT_CONTAINERS or not tag.attrs:
        return False
    names = [str(tag.get("id") or "")] + list(tag.get("class") or [])
    return any(hint in name.lower() for name in names if name for hint in CHROME_HINTS)


def _is_hidden(tag: Tag) -> bool:
    return bool(_HIDDEN_RE.search(str(tag.get("style") or "")))


def _absolutize(soup: BeautifulSoup, base_url: str) -> None:
    for tag in soup.find_all(list(_LINK_ATTRS)):
        attr = _LINK_ATTRS[tag.name]
        value = str(tag.get(attr) or "")
        if value and not value.startswith(_UNRESOLVED_PREFIXES):
            tag[attr] = urljoin(base_url, value)


def _body_html(soup: BeautifulSoup) -> str:
    if soup.body is None:
        return str(soup).strip()
    return soup.body.decode_contents().strip()


def filter_html(
    html: str,
    base_url: str,
    extract_main_content: bool = True,
    remove_base64_images: bool = True,
) -> str:
    """Return the cleaned body HTML of *html*."""
    soup = BeautifulSoup(html, "lxml")

    _decompose_all(soup.find_all(sorted(DROPPED_TAGS)))
    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()

    if extract_main_content:
        for selector in CHROME_SELECTORS:
            _decompose_all(soup.select(selector))

    for tag in soup.find_all(True):
        if not isinstance(tag, Tag) or tag.decomposed:
            continue
        if _is_hidden(tag) or (extract_main_content and _looks_like_chrome(tag)):
            tag.decompose()
            continue
        for attr in [name for name in tag.attrs if _SCRIPTED_ATTR_RE.match(name)]:
            del tag[attr]

    if remove_base64_images:
        _decompose_all(img for img in soup.find_all("img") if str(img.get("src", "")).startswith("data:image"))

    _absolutize(soup, base_url)
    return _body_html(soup)


def reader_clean(html: str, base_url: str) -> str:
    """Extract the main article of *html* as HTML, keeping links and images."""
    extracted = trafilatura.extract(
        html,
        url=base_url,
        output_format="html",
        include_links=True,
        include_images=True,
        include_tables=True,
        include_comments=False,
    )
    if extracted and extracted.strip():
        return filter_html(extracted, base_url, extract_main_content=False)
    logger.info("Reader extraction found no article for %s, using tag filter", base_url)
    return filter_html(html, base_url)
