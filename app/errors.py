"""Exception types raised by the crawl and read services."""

from typing import Optional


class URLError(ValueError):
    """The URL is malformed, unsafe, or not allowed to be scraped."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url


class FetchError(RuntimeError):
    """A page could not be fetched (network, timeout, status, content type)."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code


class CacheReadError(RuntimeError):
    """Reading from the cache store failed; callers treat it as a miss."""


class CacheWriteError(RuntimeError):
    """Writing to the cache store failed after all retries."""


class CleaningError(RuntimeError):
    """HTML cleaning failed; callers degrade to no cleaned content."""


class SerializationError(RuntimeError):
    """A response or option set could not be serialized for hashing."""
