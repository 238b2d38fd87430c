"""
Sequential batch scraping of product listings.

Each identifier is fetched and parsed before the next one starts, with a
fixed pause between identifiers to stay under the scraping API's rate
limits. A failed identifier is logged and skipped; it never stops the batch.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Optional, Protocol, Sequence

from listing_analysis.models.schemas import (
    ParsedListing,
    PipelineStage,
    RawListingContent,
    RunError,
)
from listing_analysis.parsers.listing_parser import ListingParser
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

DEFAULT_SCRAPE_DELAY_SECONDS = 2.0


class ListingFetcher(Protocol):
    async def fetch_listing(self, identifier: str) -> RawListingContent: ...


@dataclass
class BatchScrapeResult:
    """Listings keyed by identifier plus the fetch errors of this batch."""
    listings: dict[str, ParsedListing] = field(default_factory=dict)
    errors: list[RunError] = field(default_factory=list)
    attempted: int = 0

    @property
    def success_count(self) -> int:
        return self.attempted - len(self.errors)


class BatchScraper:
    """
    Fetch + parse every identifier in order.

    Args:
        fetcher: Object with an async ``fetch_listing(identifier)``
        parser: Listing parser (a default ListingParser when omitted)
        delay_seconds: Pause between consecutive identifiers
        sleep: Awaitable sleep, replaceable in tests

    Example:
        >>> async with FirecrawlService() as firecrawl:
        ...     result = await BatchScraper(firecrawl).scrape(["B0CX23V2ZK", "B07XJ8C8F5"])
        >>> result.success_count
        2
    """

    def __init__(
        self,
        fetcher: ListingFetcher,
        parser: Optional[ListingParser] = None,
        delay_seconds: float = DEFAULT_SCRAPE_DELAY_SECONDS,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.parser = parser or ListingParser()
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def _scrape_one(self, identifier: str) -> ParsedListing:
        raw = await self.fetcher.fetch_listing(identifier)
        result = self.parser.parse(raw.markdown, raw.html, identifier)
        if not result.success or result.data is None:
            raise ValueError(f"Parse failed: {result.error}")
        return result.data

    async def scrape(
        self,
        identifiers: Sequence[str],
        existing: Optional[Mapping[str, ParsedListing]] = None,
    ) -> BatchScrapeResult:
        """
        Scrape identifiers sequentially.

        Args:
            identifiers: Validated identifiers, in processing order
            existing: Listings to carry over; returned map is a new dict

        Returns:
            BatchScrapeResult with the merged listing map and fetch errors
        """
        result = BatchScrapeResult(listings=dict(existing or {}))
        total = len(identifiers)

        for index, identifier in enumerate(identifiers):
            if index > 0 and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)

            result.attempted += 1
            try:
                listing = await self._scrape_one(identifier)
            except Exception as e:
                logger.warning("Listing scrape failed", identifier=identifier, error=str(e))
                result.errors.append(
                    RunError(stage=PipelineStage.FETCH, identifier=identifier, message=str(e))
                )
                continue

            result.listings[identifier] = listing
            logger.info(
                f"Scraped {index + 1}/{total}",
                identifier=identifier,
                title=listing.title[:60],
                images=len(listing.images),
            )

        logger.info(
            "Batch scrape complete",
            attempted=result.attempted,
            succeeded=result.success_count,
            failed=len(result.errors),
        )
        return result
