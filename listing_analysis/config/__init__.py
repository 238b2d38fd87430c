"""Configuration module for the Listing Analysis pipeline."""

from listing_analysis.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
