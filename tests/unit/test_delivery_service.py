import pytest
from unittest.mock import MagicMock
from datetime import datetime, timezone
from listing_analysis.models.schemas import PipelineRun
from listing_analysis.services.delivery_service import DeliveryError, DriveService, EmailService

@pytest.fixture
def sample_run(sample_listings, sample_report):
    return PipelineRun(
        run_id="run-123",
        identifiers=list(sample_listings),
        listings=sample_listings,
        report=sample_report,
        started_at=datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc),
    )

@pytest.fixture
def smtp_factory():
    return MagicMock()

# =============================================================================
# Email
# =============================================================================

@pytest.mark.asyncio
async def test_email_skipped_when_not_configured(mock_settings, smtp_factory, sample_run):
    service = EmailService(settings=mock_settings, smtp_factory=smtp_factory)

    assert await service.send_report(sample_run) is False
    smtp_factory.assert_not_called()

@pytest.mark.asyncio
async def test_email_sends_report(mock_settings, smtp_factory, sample_run):
    mock_settings.email_configured.return_value = True
    smtp = smtp_factory.return_value.__enter__.return_value
    service = EmailService(settings=mock_settings, smtp_factory=smtp_factory)

    assert await service.send_report(sample_run) is True

    smtp_factory.assert_called_once_with("smtp.gmail.com", 465)
    smtp.login.assert_called_once_with("reports@example.com", "app-password")
    message = smtp.send_message.call_args[0][0]
    assert message["Subject"] == "Listing Analysis Report - 2026-03-14 (2 listings)"
    assert message["To"] == "reports@example.com"

def test_email_message_has_text_and_html(mock_settings, smtp_factory, sample_run):
    message = EmailService(settings=mock_settings, smtp_factory=smtp_factory).build_message(sample_run)

    plain = message.get_body(preferencelist=("plain",)).get_content()
    html = message.get_body(preferencelist=("html",)).get_content()
    assert "# Listing Analysis Report: 2026-03-14" in plain
    assert "<h1" in html

@pytest.mark.asyncio
async def test_email_failure_raises_delivery_error(mock_settings, smtp_factory, sample_run):
    mock_settings.email_configured.return_value = True
    smtp_factory.side_effect = OSError("connection refused")
    service = EmailService(settings=mock_settings, smtp_factory=smtp_factory)

    with pytest.raises(DeliveryError, match="Email delivery failed: connection refused") as exc_info:
        await service.send_report(sample_run)
    assert exc_info.value.channel == "email"

# =============================================================================
# Drive
# =============================================================================

@pytest.mark.asyncio
async def test_drive_skipped_without_folder(mock_settings, sample_run):
    drive_api = MagicMock()
    service = DriveService(settings=mock_settings, service=drive_api)

    assert service.configured is False
    assert await service.upload_archive(sample_run) is None
    drive_api.files.assert_not_called()

@pytest.mark.asyncio
async def test_drive_uploads_archive(mock_settings, sample_run):
    mock_settings.google_drive_folder_id = "folder-1"
    drive_api = MagicMock()
    drive_api.files.return_value.create.return_value.execute.return_value = {
        "id": "file-1",
        "name": "listing-analysis-2026-03-14-093000-run-123.json",
    }
    service = DriveService(settings=mock_settings, service=drive_api)

    metadata = await service.upload_archive(sample_run)

    assert metadata["id"] == "file-1"
    kwargs = drive_api.files.return_value.create.call_args.kwargs
    assert kwargs["body"] == {
        "name": "listing-analysis-2026-03-14-093000-run-123.json",
        "parents": ["folder-1"],
        "mimeType": "application/json",
    }
    assert kwargs["fields"] == "id,name,webViewLink"

@pytest.mark.asyncio
async def test_drive_failure_raises_delivery_error(mock_settings, sample_run):
    mock_settings.google_drive_folder_id = "folder-1"
    drive_api = MagicMock()
    drive_api.files.return_value.create.return_value.execute.side_effect = RuntimeError("quota exceeded")
    service = DriveService(settings=mock_settings, service=drive_api)

    with pytest.raises(DeliveryError, match="Drive upload failed: quota exceeded") as exc_info:
        await service.upload_archive(sample_run)
    assert exc_info.value.channel == "drive"
