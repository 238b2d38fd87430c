"""
AWS Rekognition image analysis.

Downloads listing images and runs the four Rekognition detectors used by the
report: labels, text, faces and content moderation. boto3 is synchronous, so
each detector call is pushed to a worker thread.

Example:
    >>> async with ImageDownloader() as downloader:
    ...     data = await downloader.fetch(url)
    >>> analysis = await RekognitionService().analyze_image(data, url=url)
    >>> [label.name for label in analysis.labels]
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from listing_analysis.config.settings import Settings, get_settings
from listing_analysis.models.schemas import (
    DetectedText,
    ImageAnalysis,
    ImageLabel,
    ModerationFlag,
)
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)

# Rekognition rejects inline image bytes above 5 MB
MAX_IMAGE_BYTES = 5 * 1024 * 1024


class ImageFetchError(Exception):
    """Raised when image bytes cannot be retrieved."""
    pass


class ImageAnalysisError(Exception):
    """Raised when a Rekognition call fails."""
    pass


# =============================================================================
# Image Downloader
# =============================================================================

class ImageDownloader:
    """Fetches raw image bytes over HTTP."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
            self._owns_client = True

    async def disconnect(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ImageDownloader":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def fetch(self, url: str) -> bytes:
        """
        Download one image.

        Raises:
            ImageFetchError: On HTTP or transport errors, empty bodies, or
                images too large for Rekognition
        """
        if not self._client:
            await self.connect()
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ImageFetchError(f"HTTP {e.response.status_code} fetching {url}")
        except httpx.HTTPError as e:
            raise ImageFetchError(f"Failed to fetch {url}: {e}")

        content = response.content
        if not content:
            raise ImageFetchError(f"Empty image body for {url}")
        if len(content) > MAX_IMAGE_BYTES:
            raise ImageFetchError(f"Image too large ({len(content)} bytes): {url}")
        return content


# =============================================================================
# Rekognition Service
# =============================================================================

def create_rekognition_client(settings: Settings) -> Any:
    """Build a boto3 Rekognition client from a profile or an access key pair."""
    if settings.aws_profile:
        session = boto3.Session(profile_name=settings.aws_profile, region_name=settings.aws_region)
    elif settings.aws_access_key_id and settings.aws_secret_access_key:
        session = boto3.Session(
            aws_access_key_id=settings.aws_access_key_id.get_secret_value(),
            aws_secret_access_key=settings.aws_secret_access_key.get_secret_value(),
            region_name=settings.aws_region,
        )
    else:
        # Default credential chain (instance role, env vars)
        session = boto3.Session(region_name=settings.aws_region)
    return session.client("rekognition")


class RekognitionService:
    """
    Label, text, face and moderation detection for one image at a time.

    Thresholds come from settings: labels at or above
    ``label_min_confidence`` (70), moderation flags at or above
    ``moderation_min_confidence`` (60). Only LINE-level text detections are
    kept.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Any = None):
        self.settings = settings or get_settings()
        self._client = client
        self.images_analyzed = 0

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_rekognition_client(self.settings)
        return self._client

    async def _call(self, operation: str, **kwargs) -> dict[str, Any]:
        method = getattr(self.client, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except (BotoCoreError, ClientError) as e:
            logger.warning("Rekognition call failed", operation=operation, error=str(e))
            raise ImageAnalysisError(f"{operation} failed: {e}")

    async def detect_labels(self, image_bytes: bytes) -> list[ImageLabel]:
        min_confidence = self.settings.label_min_confidence
        response = await self._call(
            "detect_labels",
            Image={"Bytes": image_bytes},
            MaxLabels=self.settings.max_labels,
            MinConfidence=min_confidence,
        )
        return [
            ImageLabel(name=label["Name"], confidence=label["Confidence"])
            for label in response.get("Labels", [])
            if label.get("Confidence", 0) >= min_confidence
        ]

    async def detect_text(self, image_bytes: bytes) -> list[DetectedText]:
        response = await self._call("detect_text", Image={"Bytes": image_bytes})
        return [
            DetectedText(text=item["DetectedText"], confidence=item["Confidence"])
            for item in response.get("TextDetections", [])
            if item.get("Type") == "LINE"
        ]

    async def count_faces(self, image_bytes: bytes) -> int:
        response = await self._call("detect_faces", Image={"Bytes": image_bytes})
        return len(response.get("FaceDetails", []))

    async def detect_moderation(self, image_bytes: bytes) -> list[ModerationFlag]:
        min_confidence = self.settings.moderation_min_confidence
        response = await self._call(
            "detect_moderation_labels",
            Image={"Bytes": image_bytes},
            MinConfidence=min_confidence,
        )
        return [
            ModerationFlag(name=label["Name"], confidence=label["Confidence"])
            for label in response.get("ModerationLabels", [])
            if label.get("Confidence", 0) >= min_confidence
        ]

    async def analyze_image(self, image_bytes: bytes, url: str) -> ImageAnalysis:
        """
        Run all four detectors on one image.

        The four calls are one unit: if any fails, ImageAnalysisError is
        raised and no partial result is returned.
        """
        labels = await self.detect_labels(image_bytes)
        detected_text = await self.detect_text(image_bytes)
        face_count = await self.count_faces(image_bytes)
        moderation_flags = await self.detect_moderation(image_bytes)

        self.images_analyzed += 1
        logger.debug(
            "Image analyzed",
            url=url,
            labels=len(labels),
            text_lines=len(detected_text),
            faces=face_count,
            moderation_flags=len(moderation_flags),
        )

        return ImageAnalysis(
            url=url,
            labels=labels,
            detected_text=detected_text,
            face_count=face_count,
            moderation_flags=moderation_flags,
        )
