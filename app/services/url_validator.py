"""URL safety validation, normalization, and scrape policy.

Two independent stages:

* :func:`validate_url` screens a candidate URL (length, protocol, SSRF
  patterns, TLD shape) and returns its normalized form.
* :func:`is_scrape_allowed` applies the crawl policy (file extensions,
  download/auth query parameters, account and checkout paths) to an already
  normalized URL.

:func:`target_url_helper` composes both and raises :class:`~app.errors.URLError`.
"""

import ipaddress
import re
from typing import NamedTuple, Optional
from urllib.parse import parse_qsl, urlsplit

from app.config import CrawlConfig
from app.errors import URLError

MAX_URL_LENGTH = 2048

_DEFAULT_PORTS = {"http": 80, "https": 443}

_BLOCKED_PROTOCOLS = ("data:", "javascript:", "file:", "ftp:", "ws:", "wss:", "about:", "vbscript:")

# Tested against both the parsed hostname and the raw (lower-cased) input
_UNSAFE_PATTERNS = (
    re.compile(r"^(localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1\])"),
    re.compile(r"^192\.168\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^169\.254\."),
    re.compile(r"^fc00:"),
    re.compile(r"^fe80:"),
    re.compile(r"\.(local|internal|localhost)$"),
    re.compile(r"^https?://(.*\.)?docker"),
)

_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.\-]*):(//)?", re.IGNORECASE)
_HTTP_URL_RE = re.compile(r"^https?://[^/]+\.[^/]+", re.IGNORECASE)
_DOMAIN_RE = re.compile(r"^([a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}$")
_IPV4_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_IPV4_PORT_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}(:\d+)?$")
_LOCALHOST_PORT_RE = re.compile(r"^localhost(:\d+)?$")
_ALPHA_RE = re.compile(r"^[a-zA-Z]+$")

_DOWNLOAD_PARAMS = {"file", "download", "attachment"}
_AUTH_PARAMS = {"token", "auth", "key"}


class UrlValidation(NamedTuple):
    is_valid: bool
    normalized_url: Optional[str] = None
    unsafe: bool = False
    error: Optional[str] = None


class ScrapePolicy(NamedTuple):
    allowed: bool
    reason: Optional[str] = None


def _extract_actual_url(raw: str) -> str:
    """Recover the real URL from inputs such as ``example.com/a`` or ``foo//example.com``.

    Picks the first ``/``-separated part that looks like a domain name (IP
    literals and ``localhost`` are not considered) and prefixes ``https://``
    when no scheme is present.
    """
    if _HTTP_URL_RE.match(raw):
        return raw

    parts = re.split(r"/+", raw)
    actual = ""
    for i, part in enumerate(parts):
        if (
            "." in part
            and _DOMAIN_RE.match(part)
            and not _IPV4_PORT_RE.match(part)
            and not _LOCALHOST_PORT_RE.match(part)
        ):
            actual = "/".join(parts[i:])
            break

    if not actual:
        actual = raw
    if not re.match(r"^https?://", actual, re.IGNORECASE):
        actual = f"https://{actual}"
    return actual


def _is_private_ip(hostname: str) -> bool:
    """Return True when *hostname* is an IP literal in a private, loopback, or link-local range."""
    try:
        addr = ipaddress.ip_address(hostname.strip("[]").split("%")[0])
    except ValueError:
        return False
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved or addr.is_unspecified


def _is_unsafe_host(hostname: str, raw: str) -> bool:
    if any(pattern.search(hostname) or pattern.search(raw) for pattern in _UNSAFE_PATTERNS):
        return True
    return bool(hostname) and _is_private_ip(hostname)


def normalize_url(url: str) -> str:
    """Return the canonical form of an absolute http(s) *url*.

    Lower-cases scheme and host, drops user info, default ports and the
    fragment, strips a ``www.`` prefix when at least two labels remain, and
    turns a bare ``/`` path into an empty one. The query string is kept.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    hostname = (parts.hostname or "").lower()
    while hostname.startswith("www.") and hostname.count(".") >= 2:
        hostname = hostname[4:]
    if ":" in hostname:
        hostname = f"[{hostname}]"

    netloc = hostname
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{hostname}:{port}"

    path = "" if parts.path == "/" else parts.path
    query = f"?{parts.query}" if parts.query else ""
    return f"{scheme}://{netloc}{path}{query}"


def validate_url(raw: str, max_length: int = MAX_URL_LENGTH) -> UrlValidation:
    """Validate and normalize *raw*.

    Returns a :class:`UrlValidation`; ``unsafe`` is set for blocked
    protocols and private/internal hosts.
    """
    if not raw or len(raw) > max_length:
        return UrlValidation(False, error="URL is empty or exceeds maximum length")

    candidate = raw.strip()
    lowered = candidate.lower()

    if lowered.startswith(_BLOCKED_PROTOCOLS):
        return UrlValidation(False, unsafe=True, error="Protocol not allowed")

    scheme_match = _SCHEME_RE.match(candidate)
    if scheme_match and scheme_match.group(2) and scheme_match.group(1).lower() not in _DEFAULT_PORTS:
        return UrlValidation(False, error="Protocol not allowed")

    actual = _extract_actual_url(candidate)
    try:
        parts = urlsplit(actual)
        hostname = (parts.hostname or "").lower()
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return UrlValidation(False, error="Invalid URL")

    # Hosts without a dot (localhost, [::1]) never pass the format check
    if _is_unsafe_host(hostname, lowered):
        return UrlValidation(False, unsafe=True, error="URL is not allowed for security reasons")

    if not _HTTP_URL_RE.match(actual) or not hostname:
        return UrlValidation(
            False,
            error="Invalid URL format. URL must either start with http:// or https:// or contain a valid domain",
        )

    if not _IPV4_RE.match(hostname):
        tld = hostname.rsplit(".", 1)[-1]
        if len(tld) < 2 or not _ALPHA_RE.match(tld):
            return UrlValidation(False, error="Invalid domain TLD")

    return UrlValidation(True, normalized_url=normalize_url(actual))


def is_scrape_allowed(url: str, config: Optional[CrawlConfig] = None) -> ScrapePolicy:
    """Apply the crawl policy to a normalized *url*."""
    config = config or CrawlConfig()
    try:
        parts = urlsplit(url)
    except ValueError:
        return ScrapePolicy(False, "Invalid URL")

    path = parts.path.lower()
    last_segment = path.rsplit("/", 1)[-1]
    extension = last_segment.rsplit(".", 1)[-1] if "." in last_segment else ""

    if extension in config.blocked_extensions:
        return ScrapePolicy(False, f"File type .{extension} is not allowed")
    if extension not in config.allowed_extensions:
        return ScrapePolicy(False, f"Unsupported file type .{extension}")

    params = {key.lower() for key, _ in parse_qsl(parts.query, keep_blank_values=True)}
    if params & _DOWNLOAD_PARAMS:
        return ScrapePolicy(False, "URL appears to be a file download")

    segments = [segment for segment in path.split("/") if segment]
    if any(segment in config.blocked_paths for segment in segments):
        return ScrapePolicy(False, "URL path is not allowed")

    if params & _AUTH_PARAMS:
        return ScrapePolicy(False, "URL contains authentication parameters")

    return ScrapePolicy(True)


def target_url_helper(url: str, strip_fragment: bool = False, config: Optional[CrawlConfig] = None) -> str:
    """Validate *url* for scraping and return its normalized form.

    Raises:
        URLError: if the URL is invalid, unsafe, or disallowed by policy.
    """
    config = config or CrawlConfig()
    result = validate_url(url, max_length=config.max_url_length)
    if not result.is_valid or not result.normalized_url:
        raise URLError(result.error or "Invalid URL", url=url)

    policy = is_scrape_allowed(result.normalized_url, config)
    if not policy.allowed:
        raise URLError(policy.reason or "URL is not allowed", url=url)

    normalized = result.normalized_url
    if strip_fragment:
        normalized = normalized.split("#", 1)[0]
    return normalized
