"""
Integration tests for the LangGraph Pipeline Orchestrator.

Every external service is injected as a mock; the graph, the state reducer,
the archive writer and the report formatter run for real.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from google.auth.exceptions import RefreshError

from listing_analysis.analyzers.image_collector import ImageCollectionResult
from listing_analysis.analyzers.report_synthesizer import ReportGenerationError
from listing_analysis.models.schemas import PipelineRun, PipelineStage, RunError
from listing_analysis.pipeline.orchestrator import (
    NODE_ORDER,
    ListingAnalysisPipeline,
    PipelineError,
    state_to_run,
)
from listing_analysis.scrapers.batch_scraper import BatchScrapeResult
from listing_analysis.services.delivery_service import DeliveryError
from listing_analysis.services.sheets_service import SheetsError, SheetsService
from listing_analysis.utils.formatters import load_run_archive


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sheets():
    mock = MagicMock()
    mock.read_column = AsyncMock(return_value=["ASIN", "b0cx23v2zk", "B07XJ8C8F5", "bad", "A123456789", "B0CX23V2ZK"])
    return mock


@pytest.fixture
def scraper(sample_listings):
    mock = MagicMock()
    mock.scrape = AsyncMock(return_value=BatchScrapeResult(
        listings=sample_listings,
        errors=[RunError(stage=PipelineStage.FETCH, identifier="A123456789", message="Firecrawl error: HTTP 500: boom")],
        attempted=3,
    ))
    return mock


@pytest.fixture
def image_collector(sample_image_analyses):
    mock = MagicMock()
    mock.collect = AsyncMock(return_value=ImageCollectionResult(analyses=sample_image_analyses))
    return mock


@pytest.fixture
def synthesizer(sample_report):
    mock = MagicMock()
    mock.synthesize = AsyncMock(return_value=sample_report)
    return mock


@pytest.fixture
def email():
    mock = MagicMock()
    mock.send_report = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def drive():
    mock = MagicMock()
    mock.upload_archive = AsyncMock(return_value={"id": "file-1"})
    return mock


@pytest.fixture
def pipeline(mock_settings, sheets, scraper, image_collector, synthesizer, email, drive):
    return ListingAnalysisPipeline(
        settings=mock_settings,
        sheets=sheets,
        scraper=scraper,
        image_collector=image_collector,
        synthesizer=synthesizer,
        email=email,
        drive=drive,
    )


# =============================================================================
# Full Runs
# =============================================================================

@pytest.mark.asyncio
async def test_full_run(pipeline, scraper, image_collector, email, drive, mock_settings):
    run = await pipeline.run()

    assert isinstance(run, PipelineRun)
    assert run.identifiers == ["B0CX23V2ZK", "B07XJ8C8F5", "A123456789"]
    scraper.scrape.assert_awaited_once_with(["B0CX23V2ZK", "B07XJ8C8F5", "A123456789"])

    assert list(run.listings) == ["B0CX23V2ZK", "B07XJ8C8F5"]
    assert run.images_analyzed == 1
    assert run.report.summary.startswith("Both listings compete")
    assert run.email_sent is True
    assert run.drive_saved is True
    assert run.completed_at is not None

    # The one fetch failure is logged and the run carries on
    assert [(e.stage, e.identifier) for e in run.errors] == [("fetch", "A123456789")]
    assert set(run.step_timings) == set(NODE_ORDER)

    collected = image_collector.collect.call_args[0][0]
    assert list(collected) == ["B0CX23V2ZK", "B07XJ8C8F5"]

    emailed = email.send_report.call_args[0][0]
    assert emailed.report.summary == run.report.summary
    drive.upload_archive.assert_awaited_once()


@pytest.mark.asyncio
async def test_archive_written(pipeline, mock_settings):
    run = await pipeline.run()

    json_files = list(mock_settings.output_dir.glob("listing-analysis-*.json"))
    md_files = list(mock_settings.output_dir.glob("listing-analysis-*.md"))
    assert len(json_files) == 1
    assert len(md_files) == 1

    archived = load_run_archive(json_files[0])
    assert archived.run_id == run.run_id
    assert archived.errors == run.errors
    assert "## Errors Encountered" in md_files[0].read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_provided_identifiers_skip_sheet(pipeline, sheets, scraper):
    run = await pipeline.run(["b07xj8c8f5", "nope", "B07XJ8C8F5"])

    sheets.read_column.assert_not_awaited()
    assert run.identifiers == ["B07XJ8C8F5"]
    scraper.scrape.assert_awaited_once_with(["B07XJ8C8F5"])


@pytest.mark.asyncio
async def test_sheet_failure_ends_with_empty_run(pipeline, sheets, scraper, synthesizer, email):
    sheets.read_column.side_effect = SheetsError("GOOGLE_SHEET_ID is not configured")

    run = await pipeline.run()

    assert run.identifiers == []
    assert run.listings == {}
    assert run.report is None
    scraper.scrape.assert_not_awaited()
    synthesizer.synthesize.assert_not_awaited()
    assert len(run.errors) == 1
    assert run.errors[0].stage == "readIdentifiers"
    assert "GOOGLE_SHEET_ID" in run.errors[0].message
    # Delivery still runs so the empty run is reported
    email.send_report.assert_awaited_once()


@pytest.mark.asyncio
async def test_sheet_auth_failure_ends_with_empty_run(mock_settings, scraper, synthesizer, email, drive):
    api = MagicMock()
    api.spreadsheets.return_value.values.return_value.get.return_value.execute.side_effect = RefreshError(
        "invalid_grant: account not found"
    )
    pipeline = ListingAnalysisPipeline(
        settings=mock_settings, sheets=SheetsService(settings=mock_settings, service=api),
        scraper=scraper, synthesizer=synthesizer, email=email, drive=drive,
    )

    run = await pipeline.run()

    assert run.identifiers == []
    assert run.completed_at is not None
    scraper.scrape.assert_not_awaited()
    assert [e.stage for e in run.errors] == ["readIdentifiers"]
    assert run.errors[0].message.startswith("Google authentication failed")


@pytest.mark.asyncio
async def test_report_failure_is_logged(pipeline, synthesizer):
    synthesizer.synthesize.side_effect = ReportGenerationError("Report generation failed: Authentication failed")

    run = await pipeline.run()

    assert run.report is None
    assert run.errors_for(PipelineStage.REPORT)[0].message.startswith("Report generation failed")
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_image_analysis_skipped_without_collector(mock_settings, sheets, scraper, synthesizer, email, drive):
    pipeline = ListingAnalysisPipeline(
        settings=mock_settings, sheets=sheets, scraper=scraper,
        synthesizer=synthesizer, email=email, drive=drive,
    )

    run = await pipeline.run()

    assert run.image_analyses == {}
    assert synthesizer.synthesize.call_args[0][1] == {}


@pytest.mark.asyncio
async def test_image_errors_are_appended(pipeline, image_collector, sample_image_analyses):
    image_collector.collect.return_value = ImageCollectionResult(
        analyses=sample_image_analyses,
        errors=[RunError(stage=PipelineStage.IMAGE_ANALYSIS, identifier="B07XJ8C8F5", message="Image analysis failed: HTTP 404")],
    )

    run = await pipeline.run()

    assert [e.stage for e in run.errors] == ["fetch", "imageAnalysis"]


@pytest.mark.asyncio
async def test_delivery_failures_are_not_fatal(pipeline, email, drive):
    email.send_report.side_effect = DeliveryError("Email delivery failed: connection refused", channel="email")
    drive.upload_archive.side_effect = DeliveryError("Drive upload failed: quota exceeded", channel="drive")

    run = await pipeline.run()

    assert run.email_sent is False
    assert run.drive_saved is False
    assert [e.stage for e in run.errors] == ["fetch", "email", "drive"]
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_disabled_delivery(mock_settings, sheets, scraper, image_collector, synthesizer, email, drive):
    pipeline = ListingAnalysisPipeline(
        settings=mock_settings, sheets=sheets, scraper=scraper, image_collector=image_collector,
        synthesizer=synthesizer, email=email, drive=drive, send_email=False, save_to_drive=False,
    )

    run = await pipeline.run()

    email.send_report.assert_not_awaited()
    drive.upload_archive.assert_not_awaited()
    assert run.email_sent is False
    assert run.drive_saved is False


@pytest.mark.asyncio
async def test_unconfigured_drive_is_not_saved(pipeline, drive):
    drive.upload_archive.return_value = None

    run = await pipeline.run()

    assert run.drive_saved is False
    assert run.errors_for(PipelineStage.DRIVE) == []


@pytest.mark.asyncio
async def test_archive_failure_is_logged(pipeline):
    with patch(
        "listing_analysis.pipeline.orchestrator.save_run_archive",
        side_effect=OSError("disk full"),
    ):
        run = await pipeline.run()

    assert run.errors_for(PipelineStage.ARCHIVE)[0].message == "Archive write failed: disk full"
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_unexpected_error_raises_pipeline_error(pipeline, scraper):
    scraper.scrape.side_effect = RuntimeError("boom")

    with pytest.raises(PipelineError, match="Unexpected pipeline error: boom") as exc_info:
        await pipeline.run()
    assert "run_id" in exc_info.value.details


# =============================================================================
# Testing Hooks
# =============================================================================

@pytest.mark.asyncio
async def test_mock_node_replaces_external_call(pipeline, sheets):
    pipeline.mock_node("read_identifiers", AsyncMock(return_value=["B0CX23V2ZK"]))

    run = await pipeline.run()

    sheets.read_column.assert_not_awaited()
    assert run.identifiers == ["B0CX23V2ZK"]

    pipeline.clear_mocks()
    run = await pipeline.run()
    assert len(run.identifiers) == 3


@pytest.mark.asyncio
async def test_run_step_single_node(pipeline):
    state = {"identifiers_override": ["b0cx23v2zk", "bad"], "errors": [], "step_timings": {}}

    result = await pipeline.run_step("read_identifiers", state)

    assert result["identifiers"] == ["B0CX23V2ZK"]
    assert "read_identifiers" in result["step_timings"]
    assert result["errors"] == []


@pytest.mark.asyncio
async def test_run_step_appends_errors(pipeline, sheets):
    sheets.read_column.side_effect = SheetsError("Sheets API error: 403")
    existing = RunError(stage=PipelineStage.FETCH, message="earlier").model_dump()

    result = await pipeline.run_step("read_identifiers", {"errors": [existing]})

    assert len(result["errors"]) == 2
    assert result["errors"][1]["stage"] == "readIdentifiers"


@pytest.mark.asyncio
async def test_run_step_unknown(pipeline):
    with pytest.raises(ValueError, match="Unknown step"):
        await pipeline.run_step("publish", {})


def test_state_to_run_partial_state():
    run = state_to_run({"run_id": "run-1", "identifiers": ["B0CX23V2ZK"]})
    assert run.run_id == "run-1"
    assert run.listings == {}
    assert run.report is None
    assert run.errors == []


# =============================================================================
# Usage
# =============================================================================

def test_usage_stats_empty_for_injected_services(pipeline):
    assert pipeline.get_usage_stats() == {}


@pytest.mark.asyncio
async def test_usage_stats_from_created_services(mock_settings, sheets, image_collector, email, drive):
    firecrawl = MagicMock()
    firecrawl.connect = AsyncMock()
    firecrawl.disconnect = AsyncMock()
    firecrawl.get_stats.return_value = {"request_count": 2, "credits_used": 2}
    claude = MagicMock()
    claude.close = AsyncMock()
    claude.get_usage_stats.return_value = {"total_requests": 1, "total_tokens": 5200, "total_cost": 0.0315}

    with patch("listing_analysis.pipeline.orchestrator.FirecrawlService", return_value=firecrawl), \
            patch("listing_analysis.pipeline.orchestrator.ClaudeService", return_value=claude):
        async with ListingAnalysisPipeline(
            settings=mock_settings, sheets=sheets, image_collector=image_collector, email=email, drive=drive,
        ) as pipeline:
            stats = pipeline.get_usage_stats()

    assert stats == {
        "firecrawl": {"request_count": 2, "credits_used": 2},
        "claude": {"total_requests": 1, "total_tokens": 5200, "total_cost": 0.0315},
    }
    firecrawl.disconnect.assert_awaited_once()
    claude.close.assert_awaited_once()
