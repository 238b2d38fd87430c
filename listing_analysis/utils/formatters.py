"""
Report formatting utilities.

Renders a pipeline run as Markdown (archive and email source), HTML (email
body) and JSON (run archive).
"""

import logging
from pathlib import Path
from typing import Iterable, Mapping

import markdown2

from listing_analysis.models.schemas import (
    AnalysisReport,
    ImageAnalysisRecord,
    ParsedListing,
    PipelineRun,
    RunError,
)

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "listing-analysis"
RUN_ID_PREFIX_LENGTH = 8

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<style>
body {{ font-family: -apple-system, system-ui, sans-serif; max-width: 900px; margin: 0 auto; padding: 40px; line-height: 1.6; color: #333; }}
table {{ border-collapse: collapse; width: 100%; margin: 20px 0; }}
th, td {{ border: 1px solid #ddd; padding: 12px; text-align: left; }}
th {{ background-color: #f5f5f5; }}
h1, h2, h3 {{ color: #2c3e50; margin-top: 30px; }}
h1 {{ border-bottom: 2px solid #2c3e50; padding-bottom: 10px; }}
code {{ background: #f5f5f5; padding: 2px 5px; border-radius: 3px; }}
</style>
</head>
<body>
{body}
</body>
</html>
"""


def _cell(value: object) -> str:
    return str(value).replace("|", "-").replace("\n", " ")


def archive_filename(run: PipelineRun, extension: str = "json") -> str:
    """listing-analysis-YYYY-MM-DD-HHMMSS-<run id prefix>.<extension>, unique per run."""
    stamp = run.started_at.strftime("%Y-%m-%d-%H%M%S")
    return f"{ARCHIVE_PREFIX}-{stamp}-{run.run_id[:RUN_ID_PREFIX_LENGTH]}.{extension}"


def format_listings_table(listings: Mapping[str, ParsedListing]) -> str:
    """
    Markdown table of scraped listings.

    | Identifier | Title | Price | Rating | Reviews | Images |
    |------------|-------|-------|--------|---------|--------|
    """
    if not listings:
        return "*No listings were scraped.*"

    header = (
        "| Identifier | Title | Price | Rating | Reviews | Images |\n"
        "|------------|-------|-------|--------|---------|--------|"
    )
    rows = []
    for identifier, listing in listings.items():
        title = listing.title[:60] + "..." if len(listing.title) > 60 else listing.title
        price = f"${listing.price:.2f}" if listing.price else "-"
        rating = f"{listing.rating:.1f}⭐" if listing.rating else "-"
        rows.append(
            f"| {identifier} | {_cell(title)} | {price} | {rating} "
            f"| {listing.review_count:,} | {len(listing.images)} |"
        )
    return header + "\n" + "\n".join(rows)


def format_image_summary(image_analyses: Mapping[str, ImageAnalysisRecord]) -> str:
    """One line per listing: images analyzed, top labels, faces, moderation flags."""
    if not image_analyses:
        return "*No images were analyzed.*"

    lines = []
    for identifier, record in image_analyses.items():
        labels: list[str] = []
        for analysis in record.images:
            for label in analysis.labels:
                if label.name not in labels:
                    labels.append(label.name)
        faces = sum(1 for analysis in record.images if analysis.has_faces)
        flags = sum(len(analysis.moderation_flags) for analysis in record.images)
        label_text = ", ".join(labels[:5]) or "none"
        lines.append(
            f"- **{identifier}**: {len(record.images)} images analyzed; "
            f"labels: {label_text}; images with faces: {faces}; moderation flags: {flags}"
        )
    return "\n".join(lines)


def format_errors_section(errors: Iterable[RunError]) -> str:
    """'Errors Encountered' section, or an empty string when the run was clean."""
    errors = list(errors)
    if not errors:
        return ""

    header = "## Errors Encountered\n\n| Stage | Identifier | Message |\n|-------|------------|---------|"
    rows = [
        f"| {_cell(error.stage)} | {_cell(error.identifier or '-')} | {_cell(error.message)} |"
        for error in errors
    ]
    return header + "\n" + "\n".join(rows)


def format_report_sections(report: AnalysisReport | None) -> str:
    if report is None:
        return "## Summary\n\n*The analysis report could not be generated for this run.*"

    insights = "\n".join(f"- {item}" for item in report.competitive_insights) or "*None.*"
    recommendations = "\n".join(
        f"{i}. {item}" for i, item in enumerate(report.recommendations, 1)
    ) or "*None.*"

    return (
        f"## Summary\n\n{report.summary}\n\n"
        f"## Competitive Insights\n\n{insights}\n\n"
        f"## Recommendations\n\n{recommendations}\n\n"
        f"## Image Quality Analysis\n\n{report.image_quality_analysis}"
    )


def generate_run_report(run: PipelineRun) -> str:
    """
    Complete Markdown report for a run.

    Structure:
    # Listing Analysis Report: {date}
    ## Summary / Competitive Insights / Recommendations / Image Quality Analysis
    ## Listings
    ## Image Analysis
    ## Errors Encountered (only when errors were logged)
    """
    timestamp = run.started_at.strftime("%Y-%m-%d %H:%M UTC")
    sections = [
        f"# Listing Analysis Report: {run.started_at.strftime('%Y-%m-%d')}",
        (
            f"**Listings scraped:** {len(run.listings)} of {len(run.identifiers)}  \n"
            f"**Images analyzed:** {run.images_analyzed}  \n"
            f"**Errors:** {len(run.errors)}"
        ),
        format_report_sections(run.report),
        f"## Listings\n\n{format_listings_table(run.listings)}",
        f"## Image Analysis\n\n{format_image_summary(run.image_analyses)}",
    ]
    errors_section = format_errors_section(run.errors)
    if errors_section:
        sections.append(errors_section)
    sections.append(f"---\nRun ID: {run.run_id}  \nGenerated on: {timestamp}")
    return "\n\n".join(sections) + "\n"


def render_html(markdown_text: str) -> str:
    """Convert Markdown to a styled standalone HTML document."""
    body = markdown2.markdown(
        markdown_text,
        extras=["tables", "fenced-code-blocks", "header-ids", "break-on-newline"],
    )
    return HTML_TEMPLATE.format(body=body)


def save_report(report: str, output_path: Path, format: str = "markdown") -> Path:
    """
    Save report text to file, optionally converting to HTML.

    Args:
        report: Markdown content
        output_path: Destination path (extension is replaced)
        format: 'markdown' or 'html'
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    base_path = output_path.with_suffix("")

    if format == "markdown":
        file_path = base_path.with_suffix(".md")
        file_path.write_text(report, encoding="utf-8")
    elif format == "html":
        file_path = base_path.with_suffix(".html")
        file_path.write_text(render_html(report), encoding="utf-8")
    else:
        raise ValueError(f"Unsupported format: {format}")

    logger.info(f"Saved {format} report to {file_path}")
    return file_path


def save_run_archive(run: PipelineRun, output_dir: Path) -> dict[str, Path]:
    """Write the JSON run archive and the Markdown report side by side."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    json_path = output_dir / archive_filename(run, "json")
    json_path.write_text(run.to_json(), encoding="utf-8")
    logger.info(f"Saved run archive to {json_path}")

    markdown_path = save_report(generate_run_report(run), output_dir / archive_filename(run, "md"))
    return {"json": json_path, "markdown": markdown_path}


def load_run_archive(path: Path) -> PipelineRun:
    """Restore a run from its JSON archive."""
    return PipelineRun.from_json(Path(path).read_text(encoding="utf-8"))
