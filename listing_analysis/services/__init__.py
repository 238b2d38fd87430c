"""
Services package for the Listing Analysis pipeline.

This package contains the clients for every external collaborator.

Services:
    - FirecrawlService: Listing page scraping
    - RekognitionService / ImageDownloader: Image analysis
    - ClaudeService: Report text generation using Anthropic Claude
    - SheetsService: Identifier column from Google Sheets
    - EmailService / DriveService: Report delivery
"""

from listing_analysis.services.delivery_service import DeliveryError, DriveService, EmailService
from listing_analysis.services.firecrawl_service import FetchError, FirecrawlService
from listing_analysis.services.llm_service import (
    ClaudeService,
    ClaudeServiceError,
    MaxRetriesExceededError,
    TokenUsage,
)
from listing_analysis.services.rekognition_service import (
    ImageAnalysisError,
    ImageDownloader,
    ImageFetchError,
    RekognitionService,
)
from listing_analysis.services.sheets_service import (
    SheetsError,
    SheetsService,
    read_identifiers_from_file,
)

__all__ = [
    # Scraping
    "FirecrawlService",
    "FetchError",
    # Image analysis
    "RekognitionService",
    "ImageDownloader",
    "ImageFetchError",
    "ImageAnalysisError",
    # LLM
    "ClaudeService",
    "TokenUsage",
    "ClaudeServiceError",
    "MaxRetriesExceededError",
    # Identifier sources
    "SheetsService",
    "SheetsError",
    "read_identifiers_from_file",
    # Delivery
    "EmailService",
    "DriveService",
    "DeliveryError",
]
