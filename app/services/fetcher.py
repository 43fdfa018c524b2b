import asyncio
import ipaddress
import logging
import socket
from typing import List, Mapping, NamedTuple, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from app.config import CrawlConfig
from app.errors import FetchError, URLError
from app.services.url_validator import validate_url

logger = logging.getLogger(__name__)

_ACCEPTED_CONTENT_TYPES = ("html", "text", "xml")


class FetchResult(NamedTuple):
    url: str
    html: str
    status_code: int
    content_type: str
    is_iframe_allowed: bool


def is_iframe_allowed(headers: Mapping[str, str]) -> bool:
    """Return True when the response headers allow embedding the page in a frame.

    ``X-Frame-Options: DENY``/``SAMEORIGIN`` or a CSP ``frame-ancestors``
    directive without ``*`` forbid framing.
    """
    x_frame = (headers.get("x-frame-options") or "").strip().lower()
    if x_frame in ("deny", "sameorigin"):
        return False

    csp = headers.get("content-security-policy") or ""
    for directive in csp.split(";"):
        tokens = directive.strip().split()
        if tokens and tokens[0].lower() == "frame-ancestors":
            return "*" in tokens[1:]
    return True


def _request_headers(config: CrawlConfig) -> dict:
    return {
        "User-Agent": config.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }


async def _resolve(hostname: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def _is_private_address(hostname: str) -> bool:
    """Return True if *hostname* resolves to a private, loopback, or link-local address."""
    try:
        addresses = await _resolve(hostname)
    except socket.gaierror:
        # Unresolvable hosts fail later as network errors
        return False

    for raw_ip in addresses:
        # Strip IPv6 zone IDs ("fe80::1%eth0")
        try:
            addr = ipaddress.ip_address(raw_ip.split("%")[0])
        except ValueError:
            continue
        if (
            addr.is_private
            or addr.is_loopback
            or addr.is_link_local
            or addr.is_reserved
            or addr.is_multicast
            or addr.is_unspecified
        ):
            return True
    return False


async def _ensure_allowed(url: str, current_url: str) -> None:
    result = validate_url(current_url)
    if not result.is_valid:
        raise FetchError(f"Refusing to fetch a disallowed URL ({result.error}) for URL: {url}", url=url)

    hostname = urlsplit(current_url).hostname or ""
    if await _is_private_address(hostname):
        logger.warning("Blocked fetch of %s: %s resolves to a private address", url, hostname)
        raise URLError(f"Host resolves to a private or reserved address: {hostname}", url=current_url)


async def _fetch_with_client(client: httpx.AsyncClient, url: str, config: CrawlConfig) -> FetchResult:
    """Follow redirects manually so every hop is validated before it is requested."""
    current_url = url
    headers = _request_headers(config)
    for _ in range(config.max_redirects + 1):
        await _ensure_allowed(url, current_url)
        async with client.stream("GET", current_url, headers=headers) as response:
            if response.is_redirect:
                location = response.headers.get("location", "")
                current_url = urljoin(current_url, location)
                continue

            if not response.is_success:
                raise FetchError(
                    f"HTTP status {response.status_code} for URL: {url}",
                    url=url,
                    status_code=response.status_code,
                )

            content_type = response.headers.get("content-type", "").lower()
            if not any(kind in content_type for kind in _ACCEPTED_CONTENT_TYPES):
                raise FetchError(
                    f"Unsupported content type '{content_type or 'unknown'}' for URL: {url}",
                    url=url,
                    status_code=response.status_code,
                )

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > config.max_content_size:
                raise FetchError(f"Response body exceeds the maximum allowed size for URL: {url}", url=url)

            chunks = []
            total = 0
            async for chunk in response.aiter_bytes():
                total += len(chunk)
                if total > config.max_content_size:
                    raise FetchError(f"Response body exceeds the maximum allowed size for URL: {url}", url=url)
                chunks.append(chunk)

            encoding = response.charset_encoding or "utf-8"
            return FetchResult(
                url=current_url,
                html=b"".join(chunks).decode(encoding, errors="replace"),
                status_code=response.status_code,
                content_type=content_type,
                is_iframe_allowed=is_iframe_allowed(response.headers),
            )

    raise FetchError(f"Too many redirects for URL: {url}", url=url)


async def _fetch(url: str, config: CrawlConfig, client: Optional[httpx.AsyncClient]) -> FetchResult:
    try:
        if client is not None:
            return await _fetch_with_client(client, url, config)
        async with httpx.AsyncClient(follow_redirects=False, timeout=config.fetch_timeout) as owned:
            return await _fetch_with_client(owned, url, config)
    except httpx.TimeoutException:
        raise FetchError(f"Request timeout after {int(config.fetch_timeout * 1000)}ms for URL: {url}", url=url)
    except (httpx.HTTPError, UnicodeDecodeError, LookupError) as exc:
        raise FetchError(f"Network error for URL: {url} ({exc})", url=url)


async def fetch_page(
    url: str,
    config: Optional[CrawlConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FetchResult:
    """Fetch *url* with a hard timeout and optional cancellation.

    *cancel_event* lets the caller abort the request (e.g. on client
    disconnect); cancelling the awaiting task aborts it as well.

    Raises:
        FetchError: on timeout, cancellation, network errors, non-2xx
            status, non-HTML content, or oversized bodies.
        URLError: if the URL or a redirect hop resolves to a private address.
    """
    config = config or CrawlConfig()
    fetch_task = asyncio.ensure_future(_fetch(url, config, client))
    waiters = {fetch_task}
    cancel_task = None
    if cancel_event is not None:
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_task)

    try:
        done, _ = await asyncio.wait(waiters, timeout=config.fetch_timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_task is not None:
            cancel_task.cancel()
        if not fetch_task.done():
            fetch_task.cancel()

    if fetch_task in done:
        return fetch_task.result()

    if cancel_event is not None and cancel_event.is_set():
        logger.info("Fetch cancelled for %s", url)
        raise FetchError(f"Request cancelled by user for URL: {url}", url=url)
    raise FetchError(f"Request timeout after {int(config.fetch_timeout * 1000)}ms for URL: {url}", url=url)
