"""Fetch repository index documents into memory.

The whole response is read before returning so that version detection,
schema validation and parsing can each build their own reader over the
same immutable buffer. Failures are classified into:
- not found (HTTP 404/410, missing file:// path)
- TLS/certificate failure
- any other I/O failure

Retry policy is not handled here; the source loader decides when to try
an alternate URL.
"""

from __future__ import annotations

import logging
import ssl
from http.client import HTTPException
from typing import Protocol, runtime_checkable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from sdkrepo.config import Settings
from sdkrepo.sources.errors import SdkRepoError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536

NOT_FOUND_STATUS = {404, 410}


class FetchError(SdkRepoError):
    """Raised when a URL cannot be fetched."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class FetchNotFoundError(FetchError):
    """The resource does not exist."""

    def __init__(self, url: str):
        super().__init__(url, "File not found")


class FetchSSLError(FetchError):
    """TLS handshake or certificate verification failed.

    Callers can offer to retry over plain HTTP (force_http).
    """


class FetchIOError(FetchError):
    """Any other network or read failure."""


@runtime_checkable
class ContentFetcher(Protocol):
    """Anything able to turn a URL into bytes, raising FetchError on failure."""

    def fetch(self, url: str) -> bytes:
        ...


def _is_ssl_error(exc: BaseException) -> bool:
    """Check whether an exception is caused by TLS or certificate failure."""
    if isinstance(exc, ssl.SSLError):
        return True
    # urllib wraps SSL errors in URLError
    if isinstance(exc, URLError):
        return isinstance(getattr(exc, "reason", None), ssl.SSLError)
    return False


def _is_not_found(exc: BaseException) -> bool:
    if isinstance(exc, HTTPError):
        return exc.code in NOT_FOUND_STATUS
    if isinstance(exc, FileNotFoundError):
        return True
    # file:// URLs surface a missing path as URLError(FileNotFoundError)
    if isinstance(exc, URLError):
        return isinstance(getattr(exc, "reason", None), FileNotFoundError)
    return False


def describe_exception(exc: BaseException) -> str:
    """Human-readable reason for a failure, falling back to the class name."""
    if isinstance(exc, URLError) and not isinstance(exc, HTTPError):
        reason = getattr(exc, "reason", None)
        if reason:
            return str(reason)
    message = str(exc)
    if message:
        return message
    return f"Unknown ({type(exc).__module__}.{type(exc).__name__})"


def classify_fetch_exception(url: str, exc: BaseException) -> FetchError:
    """Map a low-level exception onto the FetchError taxonomy."""
    if isinstance(exc, FetchError):
        return exc
    if _is_not_found(exc):
        return FetchNotFoundError(url)
    if _is_ssl_error(exc):
        return FetchSSLError(url, describe_exception(exc))
    return FetchIOError(url, describe_exception(exc))


class UrlFetcher:
    """Content fetcher backed by urllib.

    Usage:
        fetcher = UrlFetcher(Settings())
        data = fetcher.fetch("https://example.com/repository/repository.xml")
    """

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or Settings()

    def fetch(self, url: str) -> bytes:
        """Read the resource at url fully into memory.

        Raises:
            FetchNotFoundError: The resource does not exist
            FetchSSLError: TLS or certificate failure
            FetchIOError: Any other failure, including malformed URLs
        """
        logger.info(f"Fetching {url}")
        buffer = bytearray()
        try:
            request = Request(url, headers={"User-Agent": self._settings.user_agent})
            with urlopen(request, timeout=self._settings.fetch_timeout) as response:
                while True:
                    chunk = response.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    buffer.extend(chunk)
        except (OSError, HTTPException, ValueError) as e:
            # URLError and HTTPError are OSError; ValueError covers bad URLs
            error = classify_fetch_exception(url, e)
            logger.info(f"Fetch failed for {url}: {error.reason}")
            raise error from e

        logger.debug(f"Fetched {len(buffer)} bytes from {url}")
        return bytes(buffer)
