"""
Firecrawl scraping client for Amazon product pages.

Turns a product identifier into the markdown and HTML views of its listing
page. The page is given a few seconds to render before capture and a
full-page screenshot is requested alongside the text views.

Features:
    - Async httpx client with connection reuse
    - tenacity retry on timeouts and network errors
    - Typed FetchError for HTTP failures and incomplete responses
    - Credit usage tracking

Example:
    >>> async with FirecrawlService() as firecrawl:
    ...     raw = await firecrawl.fetch_listing("B0CX23V2ZK")
    ...     result = parse_listing(raw.markdown, raw.html, raw.identifier)
"""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from listing_analysis.config.settings import Settings, get_settings
from listing_analysis.models.schemas import ParseResult, RawListingContent
from listing_analysis.parsers.listing_parser import parse_listing
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

FIRECRAWL_SCRAPE_URL = "https://api.firecrawl.dev/v2/scrape"
PRODUCT_URL_TEMPLATE = "https://www.amazon.com/dp/{identifier}"

RENDER_WAIT_MS = 3000
SCRAPE_TIMEOUT_MS = 30000


class FetchError(Exception):
    """Raised when a listing cannot be fetched or the response is incomplete."""

    def __init__(self, message: str, identifier: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.identifier = identifier
        self.status_code = status_code


def build_scrape_request(identifier: str) -> dict[str, Any]:
    """Request body for one product page."""
    return {
        "url": PRODUCT_URL_TEMPLATE.format(identifier=identifier),
        "formats": ["markdown", "html"],
        "actions": [
            {"type": "wait", "milliseconds": RENDER_WAIT_MS},
            {"type": "screenshot", "fullPage": True},
        ],
        "onlyMainContent": False,
        "timeout": SCRAPE_TIMEOUT_MS,
    }


# =============================================================================
# Service
# =============================================================================

class FirecrawlService:
    """
    Listing fetcher backed by the Firecrawl scrape endpoint.

    Attributes:
        settings: Application settings
        credits_used: Running total of Firecrawl credits consumed
        request_count: Number of successful fetches
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._api_key = api_key or self.settings.firecrawl_api_key.get_secret_value()
        self._client = client
        self._owns_client = client is None
        self.credits_used = 0
        self.request_count = 0

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            # Firecrawl holds the request open while the page renders
            read_timeout = float(self.settings.request_timeout_seconds)
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10.0, read=read_timeout, write=10.0, pool=5.0),
                limits=httpx.Limits(max_keepalive_connections=2, max_connections=5),
            )
            self._owns_client = True

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "FirecrawlService":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _post_scrape(self, identifier: str) -> httpx.Response:
        if not self._client:
            await self.connect()
        response = await self._client.post(
            FIRECRAWL_SCRAPE_URL,
            headers=self._headers(),
            json=build_scrape_request(identifier),
        )
        response.raise_for_status()
        return response

    async def fetch_listing(self, identifier: str) -> RawListingContent:
        """
        Fetch the markdown and HTML views of one listing.

        Args:
            identifier: Normalized product identifier

        Returns:
            RawListingContent with both views

        Raises:
            FetchError: On HTTP errors, transport failures after retries,
                unparsable JSON, or a response missing either view
        """
        start_time = time.time()

        try:
            response = await self._post_scrape(identifier)
            payload = response.json()
        except httpx.HTTPStatusError as e:
            error_msg = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            logger.error("Firecrawl request failed", identifier=identifier, error=error_msg)
            raise FetchError(
                f"Firecrawl error: {error_msg}",
                identifier=identifier,
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            logger.error("Firecrawl transport error", identifier=identifier, error=str(e))
            raise FetchError(f"Firecrawl transport error: {e}", identifier=identifier)
        except ValueError as e:
            raise FetchError(f"Firecrawl returned invalid JSON: {e}", identifier=identifier)

        data = payload.get("data") or {}
        markdown = data.get("markdown")
        html = data.get("html")
        if not markdown or not html:
            logger.error("Missing markdown or HTML in Firecrawl response", identifier=identifier)
            raise FetchError("Missing markdown or HTML in Firecrawl response", identifier=identifier)

        screenshots = (data.get("actions") or {}).get("screenshots") or []
        credits = payload.get("creditsUsed") or 1

        self.credits_used += credits
        self.request_count += 1

        logger.info(
            "Listing fetched",
            identifier=identifier,
            markdown_chars=len(markdown),
            html_chars=len(html),
            credits=credits,
            duration_ms=int((time.time() - start_time) * 1000),
        )

        return RawListingContent(
            identifier=identifier,
            markdown=markdown,
            html=html,
            screenshot_url=screenshots[0] if screenshots else None,
            credits_used=credits,
        )

    async def fetch_and_parse(self, identifier: str) -> ParseResult:
        """Fetch and parse in one call. Fetch failures become failure results."""
        try:
            raw = await self.fetch_listing(identifier)
        except FetchError as e:
            return ParseResult.failure(str(e))
        return parse_listing(raw.markdown, raw.html, identifier)

    def get_stats(self) -> dict[str, Any]:
        return {
            "request_count": self.request_count,
            "credits_used": self.credits_used,
        }
