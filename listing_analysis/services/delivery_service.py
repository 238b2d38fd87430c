"""
Report delivery: Gmail SMTP and Google Drive.

Both channels are optional. An unconfigured channel is skipped; a failing
channel raises DeliveryError, which the orchestrator records in the run
error log without failing the run.
"""

from __future__ import annotations

import asyncio
import io
import smtplib
from email.message import EmailMessage
from typing import Any, Callable, Optional

from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

from listing_analysis.config.settings import Settings, get_settings
from listing_analysis.models.schemas import PipelineRun
from listing_analysis.services.sheets_service import load_service_account_credentials
from listing_analysis.utils.formatters import archive_filename, generate_run_report, render_html
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)

DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"


class DeliveryError(Exception):
    """Raised when a configured delivery channel fails."""

    def __init__(self, message: str, channel: str):
        super().__init__(message)
        self.channel = channel


# =============================================================================
# Email
# =============================================================================

class EmailService:
    """
    Sends the rendered run report over SMTP (Gmail app password over SSL).

    Example:
        >>> sent = await EmailService().send_report(run)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        smtp_factory: Callable[..., Any] = smtplib.SMTP_SSL,
    ):
        self.settings = settings or get_settings()
        self._smtp_factory = smtp_factory

    @property
    def configured(self) -> bool:
        return self.settings.email_configured()

    def build_message(self, run: PipelineRun) -> EmailMessage:
        markdown_text = generate_run_report(run)
        message = EmailMessage()
        message["Subject"] = (
            f"Listing Analysis Report - {run.started_at.strftime('%Y-%m-%d')} "
            f"({len(run.listings)} listings)"
        )
        message["From"] = self.settings.gmail_user
        message["To"] = ", ".join(self.settings.recipients())
        message.set_content(markdown_text)
        message.add_alternative(render_html(markdown_text), subtype="html")
        return message

    def _send(self, message: EmailMessage) -> None:
        with self._smtp_factory(self.settings.smtp_host, self.settings.smtp_port) as smtp:
            smtp.login(
                self.settings.gmail_user,
                self.settings.gmail_app_password.get_secret_value(),
            )
            smtp.send_message(message)

    async def send_report(self, run: PipelineRun) -> bool:
        """
        Email the run report.

        Returns:
            True when sent, False when email is not configured

        Raises:
            DeliveryError: When SMTP fails
        """
        if not self.configured:
            logger.info("Email not configured, skipping")
            return False

        message = self.build_message(run)
        try:
            await asyncio.to_thread(self._send, message)
        except Exception as e:
            logger.error("Email delivery failed", error=str(e))
            raise DeliveryError(f"Email delivery failed: {e}", channel="email")

        logger.info("Report emailed", recipients=len(self.settings.recipients()))
        return True


# =============================================================================
# Google Drive
# =============================================================================

class DriveService:
    """Uploads the JSON run archive to a Google Drive folder."""

    def __init__(self, settings: Optional[Settings] = None, service: Any = None):
        self.settings = settings or get_settings()
        self._service = service

    @property
    def configured(self) -> bool:
        return bool(self.settings.google_drive_folder_id) and (
            self._service is not None or self.settings.drive_configured()
        )

    @property
    def service(self) -> Any:
        if self._service is None:
            credentials = load_service_account_credentials(
                self.settings.google_credentials_path, [DRIVE_FILE_SCOPE]
            )
            self._service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        return self._service

    def _upload(self, run: PipelineRun) -> dict[str, Any]:
        media = MediaIoBaseUpload(
            io.BytesIO(run.to_json().encode("utf-8")),
            mimetype="application/json",
            resumable=False,
        )
        request = self.service.files().create(
            body={
                "name": archive_filename(run, "json"),
                "parents": [self.settings.google_drive_folder_id],
                "mimeType": "application/json",
            },
            media_body=media,
            fields="id,name,webViewLink",
        )
        return request.execute()

    async def upload_archive(self, run: PipelineRun) -> Optional[dict[str, Any]]:
        """
        Upload the run archive.

        Returns:
            Drive file metadata, or None when Drive is not configured

        Raises:
            DeliveryError: When the upload fails
        """
        if not self.configured:
            logger.info("Google Drive not configured, skipping")
            return None

        try:
            metadata = await asyncio.to_thread(self._upload, run)
        except Exception as e:
            logger.error("Drive upload failed", error=str(e))
            raise DeliveryError(f"Drive upload failed: {e}", channel="drive")

        logger.info("Run archive uploaded", file_id=metadata.get("id"), name=metadata.get("name"))
        return metadata
