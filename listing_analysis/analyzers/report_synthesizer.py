"""
Report Synthesizer.

Sends the scraped listings and their image analyses to Claude in a single
request and splits the Markdown answer back into an AnalysisReport by its
``##`` headings. Missing sections never fail the parse: the summary falls
back to the start of the response, list sections come back empty and the
image section gets a placeholder.
"""

import re
from typing import Mapping, Optional

from listing_analysis.analyzers.prompts import (
    REPORT_SYSTEM_PROMPT,
    SECTION_COMPETITIVE_INSIGHTS,
    SECTION_IMAGE_QUALITY,
    SECTION_RECOMMENDATIONS,
    SECTION_SUMMARY,
    format_report_prompt,
)
from listing_analysis.models.schemas import (
    NO_IMAGE_ANALYSIS,
    AnalysisReport,
    ImageAnalysisRecord,
    ParsedListing,
)
from listing_analysis.services.llm_service import ClaudeService, ClaudeServiceError
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)

SUMMARY_FALLBACK_CHARS = 500
MIN_LIST_ITEM_LENGTH = 10

_LIST_MARKER_RE = re.compile(r"^(?:[-*•]\s+|\d+[.)]\s*)")


class ReportGenerationError(Exception):
    """Raised when the model call for the report fails."""
    pass


# =============================================================================
# Response Parsing
# =============================================================================

def extract_section(text: str, heading: str) -> str:
    """
    Body of the ``## <heading>`` section, or "" when the heading is absent.

    The heading match is case-insensitive and line-anchored, and tolerates a
    numbered prefix ("## 2. Recommendations") or a trailing colon. The body
    runs to the next level-2 heading or the end of the text; ``###``
    subheadings stay inside it.
    """
    pattern = re.compile(
        rf"^##[ \t]*(?:\d+\.[ \t]*)?{re.escape(heading)}[ \t]*:?[ \t]*$\n?(.*?)(?=^##(?!#)|\Z)",
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    )
    match = pattern.search(text)
    return match.group(1).strip() if match else ""


def extract_list_items(text: str, heading: str) -> list[str]:
    """List items of a section with their markers removed, in order."""
    section = extract_section(text, heading)
    if not section:
        return []

    items = []
    for line in section.splitlines():
        line = line.strip()
        marker = _LIST_MARKER_RE.match(line)
        if not marker:
            continue
        item = line[marker.end():].strip()
        if len(item) > MIN_LIST_ITEM_LENGTH:
            items.append(item)
    return items


def parse_report(text: str) -> AnalysisReport:
    """Split a model response into report sections."""
    return AnalysisReport(
        summary=extract_section(text, SECTION_SUMMARY) or text[:SUMMARY_FALLBACK_CHARS],
        competitive_insights=extract_list_items(text, SECTION_COMPETITIVE_INSIGHTS),
        recommendations=extract_list_items(text, SECTION_RECOMMENDATIONS),
        image_quality_analysis=extract_section(text, SECTION_IMAGE_QUALITY) or NO_IMAGE_ANALYSIS,
        raw_text=text,
    )


# =============================================================================
# Synthesizer
# =============================================================================

class ReportSynthesizer:
    """
    Generates the competitive report for a set of listings.

    Example:
        >>> async with ClaudeService() as llm:
        ...     report = await ReportSynthesizer(llm).synthesize(listings, analyses)
        >>> len(report.recommendations)
        8
    """

    def __init__(self, llm: Optional[ClaudeService] = None):
        self.llm = llm or ClaudeService()

    def build_prompt(
        self,
        listings: Mapping[str, ParsedListing],
        image_analyses: Mapping[str, ImageAnalysisRecord],
    ) -> str:
        return format_report_prompt(listings, image_analyses)

    async def synthesize(
        self,
        listings: Mapping[str, ParsedListing],
        image_analyses: Mapping[str, ImageAnalysisRecord],
    ) -> AnalysisReport:
        """
        Build the prompt, call the model once and parse the answer.

        Raises:
            ReportGenerationError: When the model call fails
        """
        prompt = self.build_prompt(listings, image_analyses)
        logger.info(
            "Requesting listing report",
            listings=len(listings),
            image_records=len(image_analyses),
            prompt_chars=len(prompt),
        )

        try:
            text = await self.llm.generate_text(prompt, system=REPORT_SYSTEM_PROMPT)
        except ClaudeServiceError as e:
            logger.error("Report generation failed", error=str(e))
            raise ReportGenerationError(f"Report generation failed: {e}") from e

        report = parse_report(text)
        logger.info(
            "Report generated",
            insights=len(report.competitive_insights),
            recommendations=len(report.recommendations),
        )
        return report
