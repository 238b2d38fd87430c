"""Data models module for the Listing Analysis pipeline."""

from listing_analysis.models.schemas import (
    # Base Models
    BaseModel,

    # Enums
    ImageRole,
    PipelineStage,

    # Identifiers
    IDENTIFIER_PATTERN,
    is_valid_identifier,
    normalize_identifier,
    clean_identifiers,

    # Listing Models
    RawListingContent,
    ImageRef,
    ParsedListing,
    ParseResult,

    # Image Analysis Models
    ImageLabel,
    DetectedText,
    ModerationFlag,
    ImageAnalysis,
    ImageAnalysisRecord,

    # Report & Run Models
    AnalysisReport,
    RunError,
    PipelineRun,
)

__all__ = [
    "BaseModel",
    "ImageRole",
    "PipelineStage",
    "IDENTIFIER_PATTERN",
    "is_valid_identifier",
    "normalize_identifier",
    "clean_identifiers",
    "RawListingContent",
    "ImageRef",
    "ParsedListing",
    "ParseResult",
    "ImageLabel",
    "DetectedText",
    "ModerationFlag",
    "ImageAnalysis",
    "ImageAnalysisRecord",
    "AnalysisReport",
    "RunError",
    "PipelineRun",
]
