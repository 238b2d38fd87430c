"""Listing and image parsers."""

from listing_analysis.parsers.image_extractor import extract_images, to_high_res_url
from listing_analysis.parsers.listing_parser import ListingParser, first_match, parse_listing

__all__ = [
    "ListingParser",
    "parse_listing",
    "first_match",
    "extract_images",
    "to_high_res_url",
]
