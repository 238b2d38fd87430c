"""
Image analysis collection across all scraped listings.

For every listing the first few images (by position, whatever their role)
are downloaded and run through the label, text, face and moderation
detectors. Images are processed one at a time with a short pause between
consecutive images; one failed image is logged and skipped while the rest of
the listing's images still go through.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Protocol

from listing_analysis.models.schemas import (
    ImageAnalysis,
    ImageAnalysisRecord,
    ImageRef,
    ParsedListing,
    PipelineStage,
    RunError,
)
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

DEFAULT_MAX_IMAGES = 5
DEFAULT_IMAGE_DELAY_SECONDS = 0.3


class ImageFetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


class ImageAnalyzer(Protocol):
    async def analyze_image(self, image_bytes: bytes, url: str) -> ImageAnalysis: ...


@dataclass
class ImageCollectionResult:
    analyses: dict[str, ImageAnalysisRecord] = field(default_factory=dict)
    errors: list[RunError] = field(default_factory=list)

    @property
    def images_analyzed(self) -> int:
        return sum(len(record.images) for record in self.analyses.values())


def select_images(listing: ParsedListing, limit: int = DEFAULT_MAX_IMAGES) -> list[ImageRef]:
    """First `limit` images in position order, regardless of role."""
    return sorted(listing.images, key=lambda image: image.position)[:limit]


class ImageAnalysisCollector:
    """
    Builds one ImageAnalysisRecord per listing.

    Args:
        fetcher: Downloads image bytes (ImageDownloader)
        analyzer: Runs the detectors (RekognitionService)
        max_images: Images analyzed per listing
        delay_seconds: Pause between consecutive images of the run
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        fetcher: ImageFetcher,
        analyzer: ImageAnalyzer,
        max_images: int = DEFAULT_MAX_IMAGES,
        delay_seconds: float = DEFAULT_IMAGE_DELAY_SECONDS,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.max_images = max_images
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def _analyze_one(self, image: ImageRef) -> ImageAnalysis:
        image_bytes = await self.fetcher.fetch(image.url)
        return await self.analyzer.analyze_image(image_bytes, url=image.url)

    async def collect(self, listings: Mapping[str, ParsedListing]) -> ImageCollectionResult:
        """
        Analyze the selected images of every listing.

        Every listing gets a record, empty when it has no images or all of
        its images failed.
        """
        result = ImageCollectionResult()
        first_unit = True

        for identifier, listing in listings.items():
            record = ImageAnalysisRecord(identifier=identifier)
            selected = select_images(listing, self.max_images)

            for image in selected:
                if not first_unit and self.delay_seconds > 0:
                    await self._sleep(self.delay_seconds)
                first_unit = False

                try:
                    record.images.append(await self._analyze_one(image))
                except Exception as e:
                    logger.warning(
                        "Image analysis failed",
                        identifier=identifier,
                        url=image.url,
                        error=str(e),
                    )
                    result.errors.append(
                        RunError(
                            stage=PipelineStage.IMAGE_ANALYSIS,
                            identifier=identifier,
                            message=f"Image analysis failed: {e}",
                        )
                    )

            result.analyses[identifier] = record
            logger.info(
                "Listing images analyzed",
                identifier=identifier,
                analyzed=len(record.images),
                selected=len(selected),
                available=len(listing.images),
            )

        return result
