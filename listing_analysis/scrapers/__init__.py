"""Batch scraping of listing pages."""

from listing_analysis.scrapers.batch_scraper import BatchScrapeResult, BatchScraper

__all__ = ["BatchScraper", "BatchScrapeResult"]
