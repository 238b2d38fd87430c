"""
Listing Analysis Automation.

Monthly pipeline that reads Amazon product identifiers from a spreadsheet,
scrapes and parses their listings, analyzes listing images with AWS
Rekognition, and delivers a Claude-written competitive report.
"""

__version__ = "1.0.0"
__author__ = "Listing Analysis Team"

# Lazy imports to avoid circular dependencies
def get_pipeline():
    """Get the ListingAnalysisPipeline class (lazy import)."""
    from listing_analysis.pipeline.orchestrator import ListingAnalysisPipeline
    return ListingAnalysisPipeline

__all__ = ["get_pipeline", "__version__"]
