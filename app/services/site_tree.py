"""Site tree construction and incremental merging.

A tree is rooted at the crawl's root URL. Every internal link is split into
path segments (a subdomain of the root host becomes one extra leading
segment) and one node is created per segment. Per-node visit and update
timestamps survive merges; only missing nodes are created.
"""

import logging
from collections import deque
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, TypeVar
from urllib.parse import urlsplit

from app.config import CrawlConfig
from app.models.links_request import LinksOrder
from app.models.links_response import (
    ExtractedLinks,
    SkippedLinks,
    SkippedMedia,
    SkippedUrl,
    TreeNode,
)
from app.models.page import PageMetadata
from app.services.link_extractor import LinkExtractor, normalize_link
from app.services.metrics import utc_now_iso

logger = logging.getLogger(__name__)

V = TypeVar("V")


# ---------------------------------------------------------------------------
# Traversal helpers
# ---------------------------------------------------------------------------

def iter_nodes(root: TreeNode) -> Iterator[TreeNode]:
    """Yield every node of the tree breadth-first, root included."""
    queue = deque([root])
    while queue:
        node = queue.popleft()
        yield node
        queue.extend(node.children or ())


def count_tree_links(node: Optional[TreeNode]) -> int:
    if node is None:
        return 0
    return sum(1 for _ in iter_nodes(node))


def extract_visited_urls(tree: Optional[TreeNode]) -> Dict[str, str]:
    """Return ``url -> lastVisited`` (canonical URLs) for every visited node."""
    if tree is None:
        return {}
    return {canonical_url(node.url): node.last_visited for node in iter_nodes(tree) if node.last_visited}


def get_tree_name_for_url(url: str, config: Optional[CrawlConfig] = None) -> str:
    """Name the root node: the host, or ``host/owner/repo`` on platform hosts."""
    config = config or CrawlConfig()
    parts = urlsplit(url)
    host = parts.hostname or url
    origin = f"{parts.scheme}://{parts.netloc}"
    if config.is_platform_url(origin):
        segments = [segment for segment in parts.path.split("/") if segment]
        return "/".join([host] + segments[:2])
    return host


def canonical_url(url: str) -> str:
    """Tree key for *url*: no trailing slash or fragment, query kept."""
    return normalize_link(url, remove_query_params=False)


def _canonical_keys(values: Dict[str, V]) -> Dict[str, V]:
    return {canonical_url(url): value for url, value in values.items()}


def _last_segment(url: str) -> str:
    segments = [segment for segment in urlsplit(url).path.split("/") if segment]
    return segments[-1] if segments else ""


def sort_node_children(
    children: List[TreeNode],
    folder_first: bool = True,
    links_order: LinksOrder = "page",
) -> List[TreeNode]:
    """Order siblings: optionally folders before leaves, then page or alphabetical order."""
    if len(children) <= 1:
        return children

    def alphabetical(nodes: List[TreeNode]) -> List[TreeNode]:
        return sorted(nodes, key=lambda n: (_last_segment(n.url).lower(), _last_segment(n.url)))

    if not folder_first:
        return alphabetical(children) if links_order == "alphabetical" else list(children)

    folders = [child for child in children if child.children]
    leaves = [child for child in children if not child.children]
    if links_order == "alphabetical":
        folders = alphabetical(folders)
        leaves = alphabetical(leaves)
    return folders + leaves


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def _node_chain(link: str, root_url: str) -> Optional[List[Tuple[str, str]]]:
    """Return ``(name, url)`` pairs from just below the root down to *link*.

    Returns None when *link* does not live under *root_url*.
    """
    root = urlsplit(root_url)
    target = urlsplit(link)
    root_host = (root.hostname or "").lower()
    link_host = (target.hostname or "").lower()
    root_segments = [segment for segment in root.path.split("/") if segment]
    link_segments = [segment for segment in target.path.split("/") if segment]

    chain: List[Tuple[str, str]] = []
    if link_host == root_host:
        if link_segments[: len(root_segments)] != root_segments:
            return None
        base = root_url.rstrip("/")
        link_segments = link_segments[len(root_segments):]
    elif link_host.endswith(f".{root_host}") and not root_segments:
        subdomain = link_host[: -len(root_host) - 1]
        base = f"{target.scheme}://{target.netloc}"
        chain.append((subdomain, base))
    else:
        return None

    current = base
    for segment in link_segments:
        current = f"{current}/{segment}"
        chain.append((segment, current))

    if not chain:
        return None
    # The leaf keeps the exact link (query strings included)
    name, _ = chain[-1]
    chain[-1] = (name, link)
    return chain


def _insert_link(
    root: TreeNode,
    index: Dict[str, TreeNode],
    link: str,
    root_url: str,
    visited_urls: Dict[str, str],
    metadata_cache: Dict[str, PageMetadata],
    now: str,
) -> bool:
    chain = _node_chain(link, root_url)
    if chain is None:
        logger.debug("Link %s is outside tree root %s", link, root_url)
        return False

    created = False
    parent = root
    for name, url in chain:
        node = index.get(url)
        if node is None:
            node = TreeNode(
                url=url,
                name=name,
                last_updated=now,
                last_visited=visited_urls.get(url),
                metadata=metadata_cache.get(url),
            )
            if parent.children is None:
                parent.children = []
            parent.children.append(node)
            index[url] = node
            created = True
        parent = node
    return created


def _finalize(root: TreeNode, folder_first: bool, links_order: LinksOrder) -> TreeNode:
    for node in iter_nodes(root):
        if node.children is not None and not node.children:
            node.children = None
    for node in iter_nodes(root):
        if node.children:
            node.children = sort_node_children(node.children, folder_first, links_order)
    root.total_urls = count_tree_links(root)
    return root


def build_tree(
    internal_links: Iterable[str],
    root_url: str,
    visited_urls: Optional[Dict[str, str]] = None,
    metadata_cache: Optional[Dict[str, PageMetadata]] = None,
    folder_first: bool = True,
    links_order: LinksOrder = "page",
    config: Optional[CrawlConfig] = None,
) -> TreeNode:
    """Build a tree rooted at *root_url* from a flat list of internal links."""
    root_url = canonical_url(root_url)
    visited_urls = _canonical_keys(visited_urls or {})
    metadata_cache = _canonical_keys(metadata_cache or {})
    now = utc_now_iso()

    root = TreeNode(
        url=root_url,
        root_url=root_url,
        name=get_tree_name_for_url(root_url, config),
        last_updated=now,
        last_visited=visited_urls.get(root_url),
        metadata=metadata_cache.get(root_url),
        children=[],
    )
    index = {root_url: root}
    for link in map(canonical_url, internal_links):
        if link not in index:
            _insert_link(root, index, link, root_url, visited_urls, metadata_cache, now)
    return _finalize(root, folder_first, links_order)


def merge_tree(
    existing_tree: TreeNode,
    new_links: Iterable[str],
    root_url: str,
    visited_urls: Optional[Dict[str, str]] = None,
    metadata_cache: Optional[Dict[str, PageMetadata]] = None,
    folder_first: bool = True,
    links_order: LinksOrder = "page",
) -> TreeNode:
    """Splice *new_links* into a copy of *existing_tree*.

    Existing nodes keep their ``lastUpdated``; ``lastVisited`` and metadata
    are replaced only for URLs present in *visited_urls* / *metadata_cache*.
    New nodes are created with the current time as ``lastUpdated``.
    """
    visited_urls = _canonical_keys(visited_urls or {})
    metadata_cache = _canonical_keys(metadata_cache or {})
    now = utc_now_iso()

    tree = existing_tree.model_copy(deep=True)
    tree.root_url = tree.root_url or canonical_url(root_url)
    tree.last_updated = now

    index: Dict[str, TreeNode] = {}
    for node in iter_nodes(tree):
        index.setdefault(canonical_url(node.url), node)
        key = canonical_url(node.url)
        if key in visited_urls:
            node.last_visited = visited_urls[key]
        if key in metadata_cache:
            node.metadata = metadata_cache[key]

    added = 0
    for link in map(canonical_url, new_links):
        if link not in index and _insert_link(tree, index, link, tree.url, visited_urls, metadata_cache, now):
            added += 1
    if added:
        logger.info("Merged %d new link(s) into tree %s", added, tree.url)

    return _finalize(tree, folder_first, links_order)


# ---------------------------------------------------------------------------
# Response-only content
# ---------------------------------------------------------------------------

def attach_page_content(
    tree: TreeNode,
    cleaned_html: Optional[Dict[str, str]] = None,
    extracted_links: Optional[Dict[str, ExtractedLinks]] = None,
    include_metadata: bool = True,
) -> TreeNode:
    """Second pass adding content that is never persisted in the cache."""
    for node in iter_nodes(tree):
        if cleaned_html is not None and node.url in cleaned_html:
            node.cleaned_html = cleaned_html[node.url]
        if extracted_links is not None and node.url in extracted_links:
            node.extracted_links = extracted_links[node.url]
        if not include_metadata:
            node.metadata = None
    return tree


def filter_links(
    links: Optional[ExtractedLinks],
    include_external: bool,
    include_media: bool,
) -> Optional[ExtractedLinks]:
    if links is None:
        return None
    filtered = ExtractedLinks(
        internal=links.internal,
        external=links.external if include_external else None,
        media=links.media if include_media else None,
    )
    if not (filtered.internal or filtered.external or filtered.media):
        return None
    return filtered


def filter_tree_links(tree: TreeNode, include_external: bool, include_media: bool) -> TreeNode:
    for node in iter_nodes(tree):
        if node.extracted_links is not None:
            node.extracted_links = filter_links(node.extracted_links, include_external, include_media)
    return tree


def categorize_skipped_urls(
    skipped_urls: Dict[str, str],
    root_url: str,
    link_extractor: LinkExtractor,
) -> Optional[SkippedLinks]:
    """Group ``url -> reason`` entries into internal, external, media and other."""
    if not skipped_urls:
        return None

    root_domain = link_extractor.extract_root_domain((urlsplit(root_url).hostname or "").lower())
    internal: List[SkippedUrl] = []
    external: List[SkippedUrl] = []
    other: List[SkippedUrl] = []
    media: Dict[str, List[SkippedUrl]] = {"images": [], "videos": [], "documents": []}

    for url in sorted(skipped_urls):
        entry = SkippedUrl(url=url, reason=skipped_urls[url])
        kind = link_extractor.media_kind(url)
        if kind in media:
            media[kind].append(entry)
            continue
        try:
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            host = ""
        if not host:
            other.append(entry)
        elif link_extractor.extract_root_domain(host) == root_domain:
            internal.append(entry)
        else:
            external.append(entry)

    skipped_media = SkippedMedia(
        images=media["images"] or None,
        videos=media["videos"] or None,
        documents=media["documents"] or None,
    )
    has_media = any((skipped_media.images, skipped_media.videos, skipped_media.documents))
    return SkippedLinks(
        internal=internal or None,
        external=external or None,
        media=skipped_media if has_media else None,
        other=other or None,
    )
