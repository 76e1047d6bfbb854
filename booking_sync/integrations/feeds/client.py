"""
HTTP client for iCalendar feeds with retry and error handling.

Provides:
- Bounded timeouts, redirect count and response size
- Automatic retry with exponential backoff for transient failures
- Side-effect free feed validation for connection registration
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from booking_sync.config import Settings, get_settings
from booking_sync.exceptions import BookingSyncError, FetchError, ValidationError
from booking_sync.integrations.base import RawFeedEntry
from booking_sync.integrations.feeds.parser import parse_feed

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception should trigger a retry."""
    return isinstance(exception, BookingSyncError) and exception.retryable


def normalize_feed_url(url: str) -> str:
    """
    Canonicalize a feed URL.

    webcal:// is the conventional scheme for subscribable calendars and is
    served over HTTPS.

    Args:
        url: URL as entered by the user

    Returns:
        URL with an http or https scheme

    Raises:
        ValidationError: If the URL is empty, has no host or uses another scheme
    """
    if not url or not url.strip():
        raise ValidationError("Feed URL is required")

    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme in ("webcal", "webcals"):
        scheme = "https"

    if scheme not in ALLOWED_SCHEMES:
        raise ValidationError(f"Unsupported feed URL scheme: {parts.scheme or '(none)'}")
    if not parts.netloc:
        raise ValidationError("Feed URL must include a host")

    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


@dataclass
class FeedValidation:
    """Outcome of validating a feed without persisting anything."""

    valid: bool
    message: str
    code: Optional[str] = None
    entry_count: int = 0


class FeedClient:
    """
    Downloads and parses iCalendar feeds.

    Thread-safe: one instance can serve every sync worker.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        wait: Optional[wait_base] = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Application settings (defaults to get_settings())
            transport: Optional httpx transport (tests use httpx.MockTransport)
            wait: Optional tenacity wait strategy between retries
        """
        self._settings = settings or get_settings()
        self._client = httpx.Client(
            transport=transport,
            timeout=httpx.Timeout(self._settings.feed_request_timeout),
            follow_redirects=True,
            max_redirects=self._settings.feed_max_redirects,
            headers={
                "User-Agent": self._settings.feed_user_agent,
                "Accept": "text/calendar, text/plain, */*",
                "Cache-Control": "no-cache",
            },
        )
        self._retrying = Retrying(
            stop=stop_after_attempt(self._settings.feed_max_retries),
            wait=wait or wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(_is_retryable_error),
            reraise=True,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "FeedClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def fetch(self, url: str) -> str:
        """
        Download a feed document.

        Args:
            url: Feed URL (webcal:// accepted)

        Returns:
            Decoded document text

        Raises:
            ValidationError: If the URL is unusable
            FetchError: On network or HTTP failure after retries
        """
        url = normalize_feed_url(url)
        return self._retrying(self._fetch_once, url)

    def fetch_entries(self, url: str) -> list[RawFeedEntry]:
        """
        Download and parse a feed.

        Args:
            url: Feed URL

        Returns:
            Raw entries in document order

        Raises:
            ValidationError: If the URL is unusable
            FetchError: On network or HTTP failure
            ParseError: If the document is not a calendar
            EmptyFeedError: If the calendar has no events
        """
        content = self.fetch(url)
        return parse_feed(content, source=url)

    def validate(self, url: str) -> FeedValidation:
        """
        Fetch and parse a feed, reporting the outcome instead of raising.

        Args:
            url: Feed URL

        Returns:
            FeedValidation with the number of entries found
        """
        try:
            entries = self.fetch_entries(url)
        except BookingSyncError as e:
            logger.info(f"Feed validation failed for {url}: {e.message}")
            return FeedValidation(valid=False, message=e.message, code=e.code)

        return FeedValidation(
            valid=True,
            message=f"Feed is valid ({len(entries)} events found)",
            entry_count=len(entries),
        )

    def _fetch_once(self, url: str) -> str:
        """Perform one download attempt with a wall-clock deadline."""
        deadline = time.monotonic() + self._settings.feed_total_timeout
        max_bytes = self._settings.feed_max_bytes

        try:
            with self._client.stream("GET", url) as response:
                status = response.status_code
                if status >= 400:
                    raise FetchError(
                        f"Feed server returned HTTP {status} for {url}",
                        status_code=status,
                        retryable=status == 429 or status >= 500,
                    )

                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise FetchError(f"Feed at {url} exceeds {max_bytes} bytes")

                chunks = []
                received = 0
                for chunk in response.iter_bytes():
                    received += len(chunk)
                    if received > max_bytes:
                        raise FetchError(f"Feed at {url} exceeds {max_bytes} bytes")
                    if time.monotonic() > deadline:
                        raise FetchError(
                            f"Feed download from {url} exceeded "
                            f"{self._settings.feed_total_timeout:.0f}s",
                            retryable=True,
                        )
                    chunks.append(chunk)

                encoding = response.charset_encoding or "utf-8"

        except httpx.TooManyRedirects as e:
            raise FetchError(f"Too many redirects fetching {url}", original_error=e)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout fetching feed {url}")
            raise FetchError(f"Timed out fetching {url}", original_error=e, retryable=True)
        except httpx.TransportError as e:
            logger.warning(f"Transport error fetching feed {url}: {e}")
            raise FetchError(f"Could not reach {url}: {e}", original_error=e, retryable=True)

        logger.debug(f"Fetched {received} bytes from {url}")
        return b"".join(chunks).decode(encoding, errors="replace")
