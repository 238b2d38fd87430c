"""Analyzers module for the Listing Analysis Pipeline."""

from listing_analysis.analyzers.image_collector import (
    ImageAnalysisCollector,
    ImageCollectionResult,
    select_images,
)
from listing_analysis.analyzers.report_synthesizer import (
    ReportGenerationError,
    ReportSynthesizer,
    extract_list_items,
    extract_section,
    parse_report,
)
from listing_analysis.analyzers.prompts import (
    REPORT_PROMPT_TEMPLATE,
    REPORT_SYSTEM_PROMPT,
    format_report_prompt,
)

__all__ = [
    # Image analysis
    "ImageAnalysisCollector",
    "ImageCollectionResult",
    "select_images",
    # Report
    "ReportGenerationError",
    "ReportSynthesizer",
    "extract_list_items",
    "extract_section",
    "parse_report",
    # Prompts
    "REPORT_PROMPT_TEMPLATE",
    "REPORT_SYSTEM_PROMPT",
    "format_report_prompt",
]
