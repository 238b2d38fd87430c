"""Pipeline module for the Listing Analysis Pipeline."""

from listing_analysis.pipeline.orchestrator import (
    ListingAnalysisPipeline,
    PipelineError,
    PipelineStateDict,
    analyze_listings,
    state_to_run,
)

__all__ = [
    "ListingAnalysisPipeline",
    "PipelineError",
    "PipelineStateDict",
    "analyze_listings",
    "state_to_run",
]
