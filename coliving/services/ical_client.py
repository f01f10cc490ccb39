"""HTTP client for external iCal feeds.

Feed URLs are untrusted. Each fetch is a single attempt bounded by
``ICAL_FETCH_TIMEOUT_SECONDS``; a failed or timed-out fetch is reported to the
caller and picked up again by the next scheduled sync.
"""
import logging
from typing import Optional

import httpx

from coliving.core.config import settings
from coliving.core.exceptions import ExternalFetchError

logger = logging.getLogger(__name__)

CALENDAR_MARKER = "BEGIN:VCALENDAR"


class ICalClient:
    """Fetches raw iCalendar documents."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Per-request timeout in seconds (defaults to settings)
            transport: Optional httpx transport, used by tests
        """
        self.timeout = timeout if timeout is not None else settings.ICAL_FETCH_TIMEOUT_SECONDS
        self.transport = transport

    @staticmethod
    def normalize_url(url: str) -> str:
        """Map webcal:// links to https://."""
        url = url.strip()
        if url.lower().startswith("webcal://"):
            return "https://" + url[len("webcal://"):]
        return url

    async def fetch(self, url: str) -> str:
        """
        Fetch a feed.

        Args:
            url: Feed URL (http, https or webcal)

        Returns:
            The iCalendar document as text

        Raises:
            ExternalFetchError: Unreachable, HTTP error, timeout, or non-calendar content
        """
        url = self.normalize_url(url)
        logger.info(f"Fetching iCal feed {url}")

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            try:
                response = await client.get(url, headers={"Accept": "text/calendar, */*"})
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise ExternalFetchError(f"Timed out after {self.timeout}s fetching {url}") from e
            except httpx.HTTPStatusError as e:
                raise ExternalFetchError(
                    f"Failed to fetch iCal feed: HTTP {e.response.status_code}"
                ) from e
            except httpx.HTTPError as e:
                raise ExternalFetchError(f"Failed to fetch iCal feed {url}: {e}") from e
            except (httpx.InvalidURL, ValueError) as e:
                raise ExternalFetchError(f"Invalid iCal feed URL {url}: {e}") from e

        text = response.text
        if CALENDAR_MARKER not in text:
            raise ExternalFetchError(f"Response from {url} is not an iCalendar document")

        return text


# Singleton instance
ical_client = ICalClient()
