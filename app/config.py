"""Crawl configuration.

Every tunable the crawler depends on lives in :class:`CrawlConfig`, which is
built once (optionally from ``CRAWLTREE_*`` environment variables) and handed
to the services that need it.
"""

import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

# Hosts where the origin is too coarse to be a useful site root
PLATFORM_URLS: Tuple[str, ...] = (
    "https://github.com",
    "https://www.github.com",
    "https://gist.github.com",
    "https://www.gist.github.com",
    "https://gitlab.com",
    "https://www.gitlab.com",
    "https://bitbucket.org",
    "https://www.bitbucket.org",
    "https://dev.azure.com",
    "https://www.dev.azure.com",
    "https://gitea.com",
    "https://www.gitea.com",
    "https://sourceforge.net",
    "https://www.sourceforge.net",
    "https://code.google.com",
    "https://www.notion.so",
    "https://notion.so",
    "https://atlassian.net",
)

MEDIA_EXTENSIONS: Dict[str, Tuple[str, ...]] = {
    "images": (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico"),
    "videos": (".mp4", ".webm", ".ogg", ".mov", ".avi"),
    "documents": (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx"),
}

# Build-tool asset prefixes (Next.js, CRA, Nuxt, Angular, WordPress, Cloudflare)
FRAMEWORK_PATTERNS: Tuple[str, ...] = (
    "/_next/",
    "/static/js/",
    "/static/css/",
    "/static/media/",
    "/_nuxt/",
    "/assets/js/",
    "/assets/css/",
    "/wp-content/",
    "/wp-includes/",
    "/wp-admin/",
    "/_sites/",
    "/cdn-cgi/",
)

BLOCKED_EXTENSIONS: Tuple[str, ...] = (
    "pdf", "doc", "docx", "xls", "xlsx", "zip", "rar", "exe", "dmg", "pkg",
    "iso", "tar", "gz", "7z", "mp3", "mp4", "avi", "mov", "jpg", "jpeg",
    "png", "gif", "svg", "webp",
)

ALLOWED_EXTENSIONS: Tuple[str, ...] = (
    "html", "htm", "php", "asp", "aspx", "jsp", "cfm", "txt", "",
)

BLOCKED_PATHS: Tuple[str, ...] = (
    "login", "signin", "signup", "register", "auth", "account", "cart",
    "checkout", "payment",
)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; crawltree/1.0; +https://github.com/crawltree/crawltree)"


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _as_float(value: Optional[str], default: float) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class CrawlConfig:
    # Fan-out and bookkeeping limits
    max_kin_limit: int = 30
    max_visited_urls_limit: int = 1000

    # Caches (seconds)
    enable_links_cache: bool = True
    enable_read_cache: bool = True
    links_cache_ttl: int = 86400
    read_cache_ttl: int = 86400 * 4
    cache_put_attempts: int = 5
    cache_put_initial_delay: float = 1.0

    # Fetching
    fetch_timeout: float = 15.0
    max_content_size: int = 10 * 1024 * 1024
    max_redirects: int = 10
    max_url_length: int = 2048
    user_agent: str = DEFAULT_USER_AGENT

    # URL policy tables
    platform_urls: Tuple[str, ...] = PLATFORM_URLS
    blocked_extensions: Tuple[str, ...] = BLOCKED_EXTENSIONS
    allowed_extensions: Tuple[str, ...] = ALLOWED_EXTENSIONS
    blocked_paths: Tuple[str, ...] = BLOCKED_PATHS
    framework_patterns: Tuple[str, ...] = FRAMEWORK_PATTERNS
    media_extensions: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(MEDIA_EXTENSIONS)
    )

    def is_platform_url(self, origin: str) -> bool:
        return origin in self.platform_urls

    def with_overrides(self, **changes) -> "CrawlConfig":
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """Build a config from ``CRAWLTREE_*`` environment variables."""
        defaults = cls()
        return cls(
            max_kin_limit=_as_int(os.getenv("CRAWLTREE_MAX_KIN_LIMIT"), defaults.max_kin_limit),
            max_visited_urls_limit=_as_int(
                os.getenv("CRAWLTREE_MAX_VISITED_URLS"), defaults.max_visited_urls_limit
            ),
            enable_links_cache=_as_bool(
                os.getenv("CRAWLTREE_ENABLE_LINKS_CACHE"), defaults.enable_links_cache
            ),
            enable_read_cache=_as_bool(
                os.getenv("CRAWLTREE_ENABLE_READ_CACHE"), defaults.enable_read_cache
            ),
            links_cache_ttl=_as_int(os.getenv("CRAWLTREE_LINKS_CACHE_TTL"), defaults.links_cache_ttl),
            read_cache_ttl=_as_int(os.getenv("CRAWLTREE_READ_CACHE_TTL"), defaults.read_cache_ttl),
            cache_put_attempts=_as_int(
                os.getenv("CRAWLTREE_CACHE_PUT_ATTEMPTS"), defaults.cache_put_attempts
            ),
            fetch_timeout=_as_float(os.getenv("CRAWLTREE_FETCH_TIMEOUT"), defaults.fetch_timeout),
            max_content_size=_as_int(
                os.getenv("CRAWLTREE_MAX_CONTENT_SIZE"), defaults.max_content_size
            ),
            user_agent=os.getenv("CRAWLTREE_USER_AGENT") or defaults.user_agent,
        )


@lru_cache(maxsize=1)
def get_config() -> CrawlConfig:
    load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env", override=False)
    return CrawlConfig.from_env()
