"""
Pydantic models and schemas for the Listing Analysis pipeline.

This module defines all data structures used throughout the pipeline,
ensuring type safety, validation, and serialization consistency.

Models:
    - RawListingContent: Fetched markdown/HTML views of one product page
    - ParsedListing: Structured record recovered by the listing parser
    - ImageAnalysisRecord: Per-listing Rekognition results
    - AnalysisReport: Sections parsed from the generated report
    - PipelineRun: Archived state of a complete run
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Self
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    field_validator,
)


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp used for every model default."""
    return datetime.now(timezone.utc)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=True,
        ser_json_timedelta="iso8601",
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to JSON string."""
        return self.model_dump_json(indent=2, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to dictionary."""
        return self.model_dump(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


# =============================================================================
# Enums
# =============================================================================

class ImageRole(str, Enum):
    """Role of an image within a listing."""
    MAIN = "main"
    SECONDARY = "secondary"
    ENRICHMENT = "enrichment"


class PipelineStage(str, Enum):
    """Stage names recorded in the run error log."""
    READ_IDENTIFIERS = "readIdentifiers"
    FETCH = "fetch"
    IMAGE_ANALYSIS = "imageAnalysis"
    REPORT = "report"
    EMAIL = "email"
    DRIVE = "drive"
    ARCHIVE = "archive"


# =============================================================================
# Identifiers
# =============================================================================

# One letter followed by nine alphanumerics (e.g. B0CX23V2ZK)
IDENTIFIER_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{9}$")

UNKNOWN_TITLE = "Unknown Title"
MAX_BULLETS = 10
MAX_DESCRIPTION_LENGTH = 2000


def is_valid_identifier(value: str) -> bool:
    """Case-insensitive format check. Surrounding whitespace is not tolerated."""
    if not isinstance(value, str):
        return False
    return bool(IDENTIFIER_PATTERN.match(value.upper()))


def normalize_identifier(value: str) -> str:
    """Strip and uppercase an identifier. Idempotent."""
    return value.strip().upper()


def clean_identifiers(values: Iterable[Any]) -> list[str]:
    """
    Normalize, validate and deduplicate raw spreadsheet cells.

    Invalid cells (headers, blanks, non-strings) are dropped silently.
    Order of first occurrence is preserved.

    Example:
        >>> clean_identifiers(["ASIN", "b0cx23v2zk", "B0CX23V2ZK", "B07XJ8C8F5"])
        ['B0CX23V2ZK', 'B07XJ8C8F5']
    """
    seen: set[str] = set()
    cleaned: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        identifier = normalize_identifier(value)
        if not is_valid_identifier(identifier) or identifier in seen:
            continue
        seen.add(identifier)
        cleaned.append(identifier)
    return cleaned


# =============================================================================
# Listing Models
# =============================================================================

class RawListingContent(BaseModel):
    """Markdown and HTML views of a single product page, as fetched."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=False)

    identifier: str
    markdown: str
    html: str
    screenshot_url: Optional[str] = None
    credits_used: int = Field(default=1, ge=0)
    fetched_at: datetime = Field(default_factory=utc_now)


class ImageRef(BaseModel):
    """Canonical high-resolution image reference."""

    url: str
    role: ImageRole = ImageRole.SECONDARY
    position: int = Field(..., ge=1, description="1-based insertion order")


class ParsedListing(BaseModel):
    """
    Structured listing record.

    Zero is the "unknown" sentinel for price, rating and review count.
    Bullets and images are always lists, empty when nothing was found.
    """

    identifier: str
    title: str = Field(default=UNKNOWN_TITLE)
    price: float = Field(default=0.0, ge=0)
    rating: float = Field(default=0.0, ge=0, le=5)
    review_count: int = Field(default=0, ge=0)
    bullets: list[str] = Field(default_factory=list, max_length=MAX_BULLETS)
    description: str = Field(default="", max_length=MAX_DESCRIPTION_LENGTH)
    images: list[ImageRef] = Field(default_factory=list)
    parsed_at: datetime = Field(default_factory=utc_now)

    @field_validator("identifier", mode="before")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_identifier(v)

    @field_validator("bullets", "images", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def main_image(self) -> Optional[ImageRef]:
        return next((img for img in self.images if img.role == ImageRole.MAIN.value), None)


class ParseResult(BaseModel):
    """Outcome of a parse: either a listing or an error message."""

    success: bool
    data: Optional[ParsedListing] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, listing: ParsedListing) -> "ParseResult":
        return cls(success=True, data=listing)

    @classmethod
    def failure(cls, message: str) -> "ParseResult":
        return cls(success=False, error=message)


# =============================================================================
# Image Analysis Models
# =============================================================================

class ImageLabel(BaseModel):
    name: str
    confidence: float = Field(..., ge=0, le=100)


class DetectedText(BaseModel):
    text: str
    confidence: float = Field(..., ge=0, le=100)


class ModerationFlag(BaseModel):
    name: str
    confidence: float = Field(..., ge=0, le=100)


class ImageAnalysis(BaseModel):
    """Label, text, face and moderation results for one image."""

    url: str
    labels: list[ImageLabel] = Field(default_factory=list)
    detected_text: list[DetectedText] = Field(default_factory=list)
    face_count: int = Field(default=0, ge=0)
    moderation_flags: list[ModerationFlag] = Field(default_factory=list)

    @property
    def has_faces(self) -> bool:
        return self.face_count > 0


class ImageAnalysisRecord(BaseModel):
    """Ordered per-image results for one listing. Partial records are valid."""

    identifier: str
    images: list[ImageAnalysis] = Field(default_factory=list)


# =============================================================================
# Report Models
# =============================================================================

NO_IMAGE_ANALYSIS = "No image analysis available"


class AnalysisReport(BaseModel):
    """Sections parsed from the generated competitive report."""

    summary: str = ""
    competitive_insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    image_quality_analysis: str = NO_IMAGE_ANALYSIS
    raw_text: Optional[str] = Field(default=None, description="Unparsed model response")
    generated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Run State
# =============================================================================

class RunError(BaseModel):
    """One entry of the append-only run error log."""

    stage: PipelineStage
    identifier: Optional[str] = None
    message: str

    def describe(self) -> str:
        target = f" [{self.identifier}]" if self.identifier else ""
        return f"{self.stage}{target}: {self.message}"


class PipelineRun(BaseModel):
    """
    Archived result of one pipeline run.

    Serializes with `to_json()` and restores with `from_json()`; every field
    round-trips.
    """

    run_id: str = Field(default_factory=lambda: str(uuid4()))
    identifiers: list[str] = Field(default_factory=list)
    listings: dict[str, ParsedListing] = Field(default_factory=dict)
    image_analyses: dict[str, ImageAnalysisRecord] = Field(default_factory=dict)
    report: Optional[AnalysisReport] = None
    email_sent: bool = False
    drive_saved: bool = False
    errors: list[RunError] = Field(default_factory=list)
    step_timings: dict[str, int] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def images_analyzed(self) -> int:
        return sum(len(record.images) for record in self.image_analyses.values())

    @property
    def success_count(self) -> int:
        return len(self.listings)

    def errors_for(self, stage: PipelineStage) -> list[RunError]:
        stage_value = stage.value if isinstance(stage, PipelineStage) else stage
        return [e for e in self.errors if e.stage == stage_value]
