"""
Identifier sources: Google Sheets and local files.

The sheet holds one product identifier per row in a single column (header
rows allowed). Cells are returned raw; format validation and deduplication
happen in ``clean_identifiers``.
"""

from __future__ import annotations

import asyncio
import csv
from pathlib import Path
from typing import Any, Optional

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from listing_analysis.config.settings import Settings, get_settings
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)

SHEETS_READONLY_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"


class SheetsError(Exception):
    """Raised when the identifier sheet cannot be read."""
    pass


def load_service_account_credentials(path: Path, scopes: list[str]) -> Any:
    """Service-account credentials from a JSON key file."""
    return service_account.Credentials.from_service_account_file(str(path), scopes=scopes)


class SheetsService:
    """
    Reads the identifier column from a Google Sheet.

    Example:
        >>> rows = await SheetsService().read_column()
        >>> identifiers = clean_identifiers(rows)
    """

    def __init__(self, settings: Optional[Settings] = None, service: Any = None):
        self.settings = settings or get_settings()
        self._service = service

    @property
    def service(self) -> Any:
        if self._service is None:
            if not self.settings.google_credentials_path:
                raise SheetsError("GOOGLE_CREDENTIALS_PATH is not configured")
            credentials = load_service_account_credentials(
                self.settings.google_credentials_path, [SHEETS_READONLY_SCOPE]
            )
            self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._service

    def _read_values(self, sheet_id: str, cell_range: str) -> list[list[Any]]:
        request = self.service.spreadsheets().values().get(
            spreadsheetId=sheet_id, range=cell_range
        )
        return request.execute().get("values", [])

    async def read_column(
        self,
        sheet_id: Optional[str] = None,
        cell_range: Optional[str] = None,
    ) -> list[str]:
        """
        Read the first cell of every row in the range.

        Raises:
            SheetsError: When the sheet is not configured or the API call fails
        """
        sheet_id = sheet_id or self.settings.google_sheet_id
        cell_range = cell_range or self.settings.google_sheet_range
        if not sheet_id:
            raise SheetsError("GOOGLE_SHEET_ID is not configured")

        try:
            rows = await asyncio.to_thread(self._read_values, sheet_id, cell_range)
        except HttpError as e:
            raise SheetsError(f"Sheets API error: {e}")
        except GoogleAuthError as e:
            raise SheetsError(f"Google authentication failed: {e}")
        except (OSError, ValueError) as e:
            # ValueError covers a malformed service account file
            raise SheetsError(f"Could not load Google credentials: {e}")

        cells = [str(row[0]) for row in rows if row]
        logger.info("Read identifier column", sheet_id=sheet_id, range=cell_range, rows=len(cells))
        return cells


def read_identifiers_from_file(path: str | Path) -> list[str]:
    """
    First column of a local text or CSV file, one row per line.

    Blank lines are skipped; validation is left to ``clean_identifiers``.
    """
    cells: list[str] = []
    with open(path, newline="", encoding="utf-8") as handle:
        for row in csv.reader(handle):
            if row and row[0].strip():
                cells.append(row[0])
    return cells
