"""
Prompts for the listing report.

The report prompt carries two JSON blocks (listing data and image analysis
data) and asks for four fixed Markdown sections, which ReportSynthesizer
later splits back apart by heading.
"""

import json
from typing import Any, Mapping

from listing_analysis.models.schemas import ImageAnalysisRecord, ParsedListing


# =============================================================================
# Section Headings
# =============================================================================

SECTION_SUMMARY = "Summary"
SECTION_COMPETITIVE_INSIGHTS = "Competitive Insights"
SECTION_RECOMMENDATIONS = "Recommendations"
SECTION_IMAGE_QUALITY = "Image Quality Analysis"

IMAGE_LABELS_PER_IMAGE = 5
IMAGE_TEXT_LINES_PER_IMAGE = 3


# =============================================================================
# System Prompt
# =============================================================================

REPORT_SYSTEM_PROMPT = """You are an Amazon listing optimization expert with deep experience in conversion-rate optimization, catalog content and product photography.

<analysis_principles>
1. Every insight must reference specific listings by identifier, with the relevant numbers (price, rating, review count)
2. Recommendations must be concrete and actionable, not generic marketplace advice
3. Treat missing values (price 0, rating 0, "Unknown Title") as gaps in the scraped data, not as facts about the product
4. Keep the exact section headings requested; do not add other top-level sections
</analysis_principles>"""


# =============================================================================
# Report Prompt
# =============================================================================

REPORT_PROMPT_TEMPLATE = """You are an Amazon listing optimization expert. Analyze the following product listings and image analysis data to provide actionable insights.

# Product Listings Data
{listings_json}

# Image Analysis Data
{image_analysis_json}

Please provide a comprehensive analysis in the following format:

## Summary
Provide a 2-3 paragraph executive summary of the overall findings.

## Competitive Insights
List 5-7 key competitive insights based on comparing the listings. Include:
- Pricing strategies
- Title optimization patterns
- Bullet point effectiveness
- Review velocity and ratings comparison

## Recommendations
Provide 7-10 specific, actionable recommendations for improving the listings, including:
- Title optimization suggestions
- Bullet point improvements
- Pricing adjustments
- Image quality and content recommendations
- Description enhancements

## Image Quality Analysis
Analyze the image analysis data and provide insights on:
- Overall image quality and professionalism
- Text overlay usage and effectiveness
- Visual consistency across listings
- Opportunities for improvement
- Any concerning moderation flags

Keep your analysis practical, data-driven, and focused on improving conversion rates and sales."""


# =============================================================================
# Formatter Functions
# =============================================================================

def listing_prompt_data(listings: Mapping[str, ParsedListing]) -> list[dict[str, Any]]:
    """Listing fields sent to the model; images are reduced to a count."""
    return [
        {
            "identifier": listing.identifier,
            "title": listing.title,
            "price": listing.price,
            "rating": listing.rating,
            "review_count": listing.review_count,
            "bullets": list(listing.bullets),
            "description": listing.description,
            "image_count": len(listing.images),
        }
        for listing in listings.values()
    ]


def image_prompt_data(image_analyses: Mapping[str, ImageAnalysisRecord]) -> list[dict[str, Any]]:
    """Condensed per-image insights: top labels, a few text lines, faces, moderation names."""
    return [
        {
            "identifier": record.identifier,
            "image_insights": [
                {
                    "labels": [label.name for label in analysis.labels[:IMAGE_LABELS_PER_IMAGE]],
                    "text_found": [
                        text.text for text in analysis.detected_text[:IMAGE_TEXT_LINES_PER_IMAGE]
                    ],
                    "has_faces": analysis.has_faces,
                    "moderation_flags": [flag.name for flag in analysis.moderation_flags],
                }
                for analysis in record.images
            ],
        }
        for record in image_analyses.values()
    ]


def format_report_prompt(
    listings: Mapping[str, ParsedListing],
    image_analyses: Mapping[str, ImageAnalysisRecord],
) -> str:
    """Fill the report template with compact JSON for both data sets."""
    return REPORT_PROMPT_TEMPLATE.format(
        listings_json=json.dumps(listing_prompt_data(listings), ensure_ascii=False),
        image_analysis_json=json.dumps(image_prompt_data(image_analyses), ensure_ascii=False),
    )
