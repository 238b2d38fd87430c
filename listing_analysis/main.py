"""
Listing Analysis Pipeline - CLI Entry Point.
CLI using Click and Rich.
"""

import sys
import asyncio
import logging
from pathlib import Path
from functools import wraps
from typing import Any, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler

from listing_analysis import __version__
from listing_analysis.config.settings import get_settings
from listing_analysis.models.schemas import PipelineRun
from listing_analysis.parsers.listing_parser import parse_listing
from listing_analysis.pipeline.orchestrator import ListingAnalysisPipeline, PipelineError
from listing_analysis.services.firecrawl_service import FirecrawlService
from listing_analysis.services.sheets_service import read_identifiers_from_file
from listing_analysis.utils.formatters import generate_run_report, load_run_archive, save_report
from listing_analysis.utils.logger import setup_logging

# Initialize Rich Console
console = Console()

LOG_FILENAME = "pipeline.log"

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper

def setup_logger(verbose: bool, log_dir: Optional[Path] = None):
    """Configure logging based on verbosity, also writing to log_dir/pipeline.log when given."""
    level = "DEBUG" if verbose else "WARNING"
    log_file = Path(log_dir) / LOG_FILENAME if log_dir else None
    setup_logging(level=level, json_format=False, log_file=log_file)
    root = logging.getLogger()
    handlers: list[logging.Handler] = [RichHandler(console=console, rich_tracebacks=True)]
    if log_file:
        # setup_logging appends the file handler last
        handlers.append(root.handlers[-1])
    root.handlers = handlers
    root.setLevel(level)

def print_run_summary(run: PipelineRun, duration: float, usage: Optional[dict[str, dict[str, Any]]] = None) -> None:
    usage = usage or {}
    table = Table(title="Run Summary", show_header=False)
    table.add_row("Run ID", run.run_id)
    table.add_row("Identifiers", str(len(run.identifiers)))
    table.add_row("Listings scraped", f"[green]{run.success_count}[/green]")
    table.add_row("Images analyzed", str(run.images_analyzed))
    table.add_row("Report", "[green]Generated[/green]" if run.report else "[yellow]Not generated[/yellow]")
    table.add_row("Email sent", "Yes" if run.email_sent else "No")
    table.add_row("Saved to Drive", "Yes" if run.drive_saved else "No")
    table.add_row("Errors", f"[red]{len(run.errors)}[/red]" if run.errors else "0")
    if "firecrawl" in usage:
        firecrawl = usage["firecrawl"]
        table.add_row("Firecrawl credits", f"{firecrawl['credits_used']} ({firecrawl['request_count']} requests)")
    if "claude" in usage:
        claude = usage["claude"]
        table.add_row("Claude tokens", f"{claude['total_tokens']:,} ({claude['total_requests']} requests)")
        table.add_row("Claude cost", f"${claude['total_cost']:.4f}")
    table.add_row("Duration", f"{duration:.2f}s")
    console.print(table)

    if run.errors:
        errors = Table(title="Errors Encountered", show_header=True, header_style="bold red")
        errors.add_column("Stage")
        errors.add_column("Identifier")
        errors.add_column("Message")
        for error in run.errors:
            errors.add_row(str(error.stage), error.identifier or "-", error.message)
        console.print(errors)

# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version=__version__)
def cli():
    """Product Listing Analysis Pipeline"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.option('--identifiers-file', type=click.Path(exists=True, dir_okay=False), help='Read identifiers from a local file instead of the sheet')
@click.option('--identifier', 'identifiers', multiple=True, help='Identifier to analyze (repeatable)')
@click.option('--output-dir', default=None, help='Custom output directory')
@click.option('--no-email', is_flag=True, help='Skip email delivery')
@click.option('--no-drive', is_flag=True, help='Skip Google Drive upload')
@click.option('--verbose', is_flag=True, help='Detailed logging')
@async_command
async def run(
    identifiers_file: Optional[str],
    identifiers: tuple[str, ...],
    output_dir: Optional[str],
    no_email: bool,
    no_drive: bool,
    verbose: bool,
):
    """
    Run the full pipeline: read, scrape, analyze images, report, deliver.

    Identifiers come from the configured Google Sheet unless given with
    --identifier or --identifiers-file.
    """
    settings = get_settings()
    setup_logger(verbose, log_dir=settings.log_dir)

    selected: Optional[list[str]] = None
    if identifiers_file:
        selected = read_identifiers_from_file(identifiers_file)
    if identifiers:
        selected = (selected or []) + list(identifiers)

    source = "Google Sheet" if selected is None else f"{len(selected)} provided identifiers"
    console.print(Panel.fit(f"[bold blue]Listing Analysis[/bold blue]\nSource: [cyan]{source}[/cyan]"))

    start_time = asyncio.get_event_loop().time()

    try:
        if output_dir:
            object.__setattr__(settings, 'output_dir', Path(output_dir))

        async with ListingAnalysisPipeline(
            settings=settings,
            send_email=not no_email,
            save_to_drive=not no_drive,
        ) as pipeline:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console
            ) as progress:
                task = progress.add_task("[cyan]Running pipeline...", total=None)
                result = await pipeline.run(selected)
                progress.update(task, completed=True, description="[green]Run complete!")
            usage = pipeline.get_usage_stats()

        duration = asyncio.get_event_loop().time() - start_time
        print_run_summary(result, duration, usage)

        if not result.identifiers:
            console.print("[yellow]No valid identifiers were found.[/yellow]")
        else:
            console.print(f"[green]✓[/green] Archive written to {settings.output_dir}")

    except PipelineError as e:
        console.print(f"[bold red]Pipeline Failed:[/bold red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument('identifier')
@async_command
async def scrape(identifier: str):
    """
    Fetch and parse a single listing.
    Outputs the parsed listing as JSON.
    """
    setup_logger(False)

    try:
        settings = get_settings()
        async with FirecrawlService(settings) as firecrawl:
            console.print(f"[dim]Scraping {identifier}...[/dim]", style="italic")
            result = await firecrawl.fetch_and_parse(identifier.strip().upper())

        if not result.success:
            console.print(f"[bold red]Parse Failed:[/bold red] {result.error}")
            sys.exit(1)

        console.print_json(result.data.model_dump_json(indent=2))

    except Exception as e:
        console.print(f"[bold red]Scrape Failed:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@click.argument('markdown_file', type=click.Path(exists=True, dir_okay=False))
@click.argument('html_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--identifier', required=True, help='Identifier of the saved page')
def parse(markdown_file: str, html_file: str, identifier: str):
    """
    Parse a saved listing page offline.

    MARKDOWN_FILE and HTML_FILE are the two views of the same page.
    """
    markdown = Path(markdown_file).read_text(encoding='utf-8')
    html = Path(html_file).read_text(encoding='utf-8')

    result = parse_listing(markdown, html, identifier)
    if not result.success:
        console.print(f"[bold red]Parse Failed:[/bold red] {result.error}")
        sys.exit(1)

    console.print_json(result.data.model_dump_json(indent=2))


@cli.command()
@click.argument('archive_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', default=None, help='Write the report here instead of printing it')
@click.option('--format', type=click.Choice(['markdown', 'html']), default='markdown', help='Output format')
def report(archive_file: str, output: Optional[str], format: str):
    """
    Rebuild the report from a saved run archive.

    ARCHIVE_FILE: JSON archive written by a previous run.
    """
    try:
        run_archive = load_run_archive(Path(archive_file))
    except Exception as e:
        console.print(f"[bold red]Invalid archive:[/bold red] {e}")
        sys.exit(1)

    markdown = generate_run_report(run_archive)
    if output:
        path = save_report(markdown, Path(output), format=format)
        console.print(f"[green]✓[/green] Report saved to {path}")
    else:
        console.print(markdown, markup=False)


@cli.command()
def validate_setup():
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Details")

        def optional(configured: bool) -> str:
            return "[green]Pass[/green]" if configured else "[yellow]Skipped[/yellow]"

        # Required keys
        firecrawl_key = settings.firecrawl_api_key.get_secret_value()
        status = "[green]Pass[/green]" if firecrawl_key else "[red]Fail[/red]"
        table.add_row("Firecrawl API Key", status, f"configured ({len(firecrawl_key)} chars)")

        anthropic_key = settings.anthropic_api_key.get_secret_value()
        status = "[green]Pass[/green]" if anthropic_key.startswith("sk-") else "[red]Fail[/red]"
        table.add_row("Anthropic API Key", status, f"configured ({len(anthropic_key)} chars)")

        # Optional integrations
        table.add_row("Google Sheet", optional(settings.sheets_configured()), str(settings.google_sheet_id or "not set"))
        table.add_row("AWS Rekognition", optional(settings.has_aws_credentials()), settings.aws_region)
        table.add_row("Email", optional(settings.email_configured()), ", ".join(settings.recipients()) or "not set")
        table.add_row("Google Drive", optional(settings.drive_configured()), str(settings.google_drive_folder_id or "not set"))

        # Configuration
        table.add_row("Output Dir", "[green]Pass[/green]", str(settings.output_dir))
        table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)

        console.print(table)

        if not settings.sheets_configured():
            console.print("\n[yellow]Warning: No Google Sheet configured. Use --identifiers-file or --identifier with 'run'.[/yellow]")

        if not firecrawl_key or not anthropic_key.startswith("sk-"):
            sys.exit(1)

    except Exception as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

if __name__ == "__main__":
    cli()
