"""Utils module for the Listing Analysis Pipeline."""

from listing_analysis.utils.logger import LogContext, get_logger, setup_logging
from listing_analysis.utils.formatters import (
    archive_filename,
    generate_run_report,
    load_run_archive,
    render_html,
    save_report,
    save_run_archive,
)

__all__ = [
    "LogContext",
    "get_logger",
    "setup_logging",
    "archive_filename",
    "generate_run_report",
    "load_run_archive",
    "render_html",
    "save_report",
    "save_run_archive",
]
