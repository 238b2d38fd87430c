"""
Integration tests for the CLI using Click's CliRunner.
"""

import json
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch, MagicMock

import pytest
from click.testing import CliRunner
from listing_analysis.main import cli
from listing_analysis.models.schemas import ParsedListing, ParseResult, PipelineRun, PipelineStage, RunError
from listing_analysis.pipeline.orchestrator import PipelineError
from listing_analysis.utils.formatters import save_run_archive

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def runner():
    return CliRunner()

@pytest.fixture
def sample_run(sample_listings, sample_report):
    return PipelineRun(
        run_id="run-123",
        identifiers=["B0CX23V2ZK", "B07XJ8C8F5", "A123456789"],
        listings=sample_listings,
        report=sample_report,
        errors=[RunError(stage=PipelineStage.FETCH, identifier="A123456789", message="HTTP 500")],
        started_at=datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc),
    )

@pytest.fixture
def mock_pipeline_context(sample_run):
    """Patches Pipeline context manager and run method"""

    # Create the AsyncMock that will act as the pipeline instance
    mock_pipeline_instance = AsyncMock()
    # Support async context manager protocol: async with ... as ...
    mock_pipeline_instance.__aenter__.return_value = mock_pipeline_instance
    mock_pipeline_instance.__aexit__.return_value = None
    mock_pipeline_instance.run.return_value = sample_run
    mock_pipeline_instance.get_usage_stats = MagicMock(return_value={})

    with patch("listing_analysis.main.ListingAnalysisPipeline", return_value=mock_pipeline_instance) as mock_cls:
        yield mock_cls, mock_pipeline_instance

# =============================================================================
# Tests
# =============================================================================

def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Product Listing Analysis Pipeline" in result.output
    for command in ("run", "scrape", "parse", "report", "validate-setup"):
        assert command in result.output

def test_cli_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "1.0.0" in result.output

def test_run_from_sheet(runner, mock_pipeline_context):
    mock_cls, pipeline = mock_pipeline_context

    result = runner.invoke(cli, ["run"])

    assert result.exit_code == 0, result.output
    pipeline.run.assert_awaited_once_with(None)
    assert mock_cls.call_args.kwargs["send_email"] is True
    assert mock_cls.call_args.kwargs["save_to_drive"] is True
    assert "Run Summary" in result.output
    assert "Errors Encountered" in result.output

def test_run_with_identifiers(runner, mock_pipeline_context, tmp_path):
    mock_cls, pipeline = mock_pipeline_context
    ids_file = tmp_path / "ids.txt"
    ids_file.write_text("B0CX23V2ZK\nB07XJ8C8F5\n", encoding="utf-8")

    result = runner.invoke(cli, [
        "run",
        "--identifiers-file", str(ids_file),
        "--identifier", "a123456789",
        "--no-email",
        "--no-drive",
    ])

    assert result.exit_code == 0, result.output
    pipeline.run.assert_awaited_once_with(["B0CX23V2ZK", "B07XJ8C8F5", "a123456789"])
    assert mock_cls.call_args.kwargs["send_email"] is False
    assert mock_cls.call_args.kwargs["save_to_drive"] is False

def test_run_summary_shows_usage(runner, mock_pipeline_context):
    _, pipeline = mock_pipeline_context
    pipeline.get_usage_stats.return_value = {
        "firecrawl": {"request_count": 3, "credits_used": 3},
        "claude": {"total_requests": 1, "total_tokens": 5200, "total_cost": 0.0315, "avg_tokens_per_request": 5200},
    }

    result = runner.invoke(cli, ["run"])

    assert result.exit_code == 0, result.output
    assert "Firecrawl credits" in result.output
    assert "3 (3 requests)" in result.output
    assert "5,200 (1 requests)" in result.output
    assert "$0.0315" in result.output

def test_run_writes_log_file(runner, mock_pipeline_context, mock_settings):
    result = runner.invoke(cli, ["run"])

    assert result.exit_code == 0, result.output
    assert (mock_settings.log_dir / "pipeline.log").is_file()
    root = logging.getLogger()
    assert any(
        isinstance(h, logging.FileHandler) and h.baseFilename == str(mock_settings.log_dir / "pipeline.log")
        for h in root.handlers
    )

def test_run_output_dir_override(runner, mock_pipeline_context, mock_settings, tmp_path):
    result = runner.invoke(cli, ["run", "--output-dir", str(tmp_path / "custom")])

    assert result.exit_code == 0, result.output
    assert mock_settings.output_dir == tmp_path / "custom"

def test_run_pipeline_error(runner, mock_pipeline_context):
    _, pipeline = mock_pipeline_context
    pipeline.run.side_effect = PipelineError("Unexpected pipeline error: boom")

    result = runner.invoke(cli, ["run"])

    assert result.exit_code == 1
    assert "Pipeline Failed" in result.output

def test_run_without_identifiers(runner, mock_pipeline_context):
    _, pipeline = mock_pipeline_context
    pipeline.run.return_value = PipelineRun()

    result = runner.invoke(cli, ["run"])

    assert result.exit_code == 0
    assert "No valid identifiers" in result.output

def test_scrape_command(runner):
    firecrawl = AsyncMock()
    firecrawl.__aenter__.return_value = firecrawl
    firecrawl.__aexit__.return_value = None
    firecrawl.fetch_and_parse.return_value = ParseResult.ok(
        ParsedListing(identifier="B0CX23V2ZK", title="Insulated Water Bottle", price=24.99)
    )

    with patch("listing_analysis.main.FirecrawlService", return_value=firecrawl):
        result = runner.invoke(cli, ["scrape", " b0cx23v2zk "])

    assert result.exit_code == 0, result.output
    firecrawl.fetch_and_parse.assert_awaited_once_with("B0CX23V2ZK")
    assert '"title": "Insulated Water Bottle"' in result.output

def test_scrape_failure(runner):
    firecrawl = AsyncMock()
    firecrawl.__aenter__.return_value = firecrawl
    firecrawl.__aexit__.return_value = None
    firecrawl.fetch_and_parse.side_effect = RuntimeError("Firecrawl error: HTTP 401: bad key")

    with patch("listing_analysis.main.FirecrawlService", return_value=firecrawl):
        result = runner.invoke(cli, ["scrape", "B0CX23V2ZK"])

    assert result.exit_code == 1
    assert "Scrape Failed" in result.output

def test_parse_command(runner, tmp_path, sample_markdown, sample_html):
    markdown_file = tmp_path / "page.md"
    html_file = tmp_path / "page.html"
    markdown_file.write_text(sample_markdown, encoding="utf-8")
    html_file.write_text(sample_html, encoding="utf-8")

    result = runner.invoke(cli, ["parse", str(markdown_file), str(html_file), "--identifier", "B0CX23V2ZK"])

    assert result.exit_code == 0, result.output
    assert '"identifier": "B0CX23V2ZK"' in result.output
    assert '"rating": 4.7' in result.output

def test_report_command(runner, sample_run, tmp_path):
    paths = save_run_archive(sample_run, tmp_path / "archive")

    result = runner.invoke(cli, ["report", str(paths["json"])])

    assert result.exit_code == 0, result.output
    assert "Listing Analysis Report" in result.output

def test_report_command_html_output(runner, sample_run, tmp_path):
    paths = save_run_archive(sample_run, tmp_path / "archive")
    output = tmp_path / "rebuilt" / "report"

    result = runner.invoke(cli, ["report", str(paths["json"]), "--output", str(output), "--format", "html"])

    assert result.exit_code == 0, result.output
    html = (tmp_path / "rebuilt" / "report.html").read_text(encoding="utf-8")
    assert "<!DOCTYPE html>" in html

def test_report_command_invalid_archive(runner, tmp_path):
    archive = tmp_path / "broken.json"
    archive.write_text(json.dumps({"errors": "not a list"}), encoding="utf-8")

    result = runner.invoke(cli, ["report", str(archive)])

    assert result.exit_code == 1
    assert "Invalid archive" in result.output

def test_validate_setup(runner):
    result = runner.invoke(cli, ["validate-setup"])
    assert result.exit_code == 0, result.output
    assert "Validating Setup" in result.output

def test_validate_setup_bad_key(runner, mock_settings):
    mock_settings.anthropic_api_key.get_secret_value.return_value = "bad-key"
    result = runner.invoke(cli, ["validate-setup"])
    assert result.exit_code == 1

def test_validate_setup_configuration_error(runner):
    with patch("listing_analysis.main.get_settings", side_effect=ValueError("FIRECRAWL_API_KEY missing")):
        result = runner.invoke(cli, ["validate-setup"])
    assert result.exit_code == 1
    assert "Configuration Error" in result.output
