from __future__ import annotations

from typing import Any, Callable, List, Protocol, Sequence

import logging
import ssl
import time

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import Resource
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest
from httplib2 import HttpLib2Error

from .config import SheetsConfig

SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_RETRY_ATTEMPTS = 4
_INITIAL_BACKOFF_SECONDS = 1.0
_MAX_BACKOFF_SECONDS = 8.0
_RETRYABLE_EXCEPTIONS = (ssl.SSLEOFError, HttpLib2Error)


def column_letter(index: int) -> str:
    """Convert a 1-based column index to spreadsheet letters (1 -> A, 27 -> AA)."""

    if index < 1:
        raise ValueError(f"Column index must be 1-based; received {index}")
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def a1_notation(row: int, column: int, num_rows: int = 1, num_cols: int = 1) -> str:
    start = f"{column_letter(column)}{row}"
    if num_rows == 1 and num_cols == 1:
        return start
    end = f"{column_letter(column + num_cols - 1)}{row + num_rows - 1}"
    return f"{start}:{end}"


def _quote_sheet(sheet_name: str) -> str:
    return "'" + sheet_name.replace("'", "''") + "'"


class SheetReader(Protocol):
    """Read-only view of the bound spreadsheet used by the classifier and formatter."""

    def sheet_titles(self) -> List[str]: ...

    def read_range(
        self, sheet_name: str, row: int, column: int, num_rows: int = 1, num_cols: int = 1
    ) -> List[List[Any]]: ...

    def read_row(self, sheet_name: str, row: int) -> List[Any]: ...

    def read_columns(self, sheet_name: str, first: str, last: str) -> List[List[Any]]: ...


class GoogleSheetsClient:
    """Thin wrapper around the Google Sheets API for the bound spreadsheet."""

    def __init__(self, conf: SheetsConfig) -> None:
        self._conf = conf
        self._service: Resource | None = None

    def _service_client(self) -> Resource:
        if self._service is None:
            creds = Credentials.from_service_account_file(
                str(self._conf.credentials_file), scopes=SCOPES
            )
            self._service = build("sheets", "v4", credentials=creds, cache_discovery=False)
        return self._service

    # Reading -----------------------------------------------------------------
    def sheet_titles(self) -> List[str]:
        """Return the tab names of the bound spreadsheet."""

        def _build_request() -> HttpRequest:
            service = self._service_client()
            return service.spreadsheets().get(
                spreadsheetId=self._conf.spreadsheet_id,
                fields="sheets.properties.title",
            )

        result = self._execute_with_retry(_build_request, operation="list sheets")
        return [
            sheet.get("properties", {}).get("title", "")
            for sheet in result.get("sheets", [])
        ]

    def read_range(
        self, sheet_name: str, row: int, column: int, num_rows: int = 1, num_cols: int = 1
    ) -> List[List[Any]]:
        """Read a rectangle and pad it to exactly num_rows x num_cols with empty strings."""

        notation = a1_notation(row, column, num_rows, num_cols)
        values = self._get_values(f"{_quote_sheet(sheet_name)}!{notation}")
        grid: List[List[Any]] = []
        for offset in range(num_rows):
            source = values[offset] if offset < len(values) else []
            grid.append([source[idx] if idx < len(source) else "" for idx in range(num_cols)])
        return grid

    def read_row(self, sheet_name: str, row: int) -> List[Any]:
        """Read a whole row up to its last non-empty cell."""

        values = self._get_values(f"{_quote_sheet(sheet_name)}!{row}:{row}")
        return list(values[0]) if values else []

    def read_columns(self, sheet_name: str, first: str, last: str) -> List[List[Any]]:
        """Read full columns, e.g. ``A`` to ``B`` for a key/value table."""

        return self._get_values(f"{_quote_sheet(sheet_name)}!{first}:{last}")

    def _get_values(self, target_range: str) -> List[List[Any]]:
        def _build_request() -> HttpRequest:
            service = self._service_client()
            return (
                service.spreadsheets()
                .values()
                .get(
                    spreadsheetId=self._conf.spreadsheet_id,
                    range=target_range,
                    valueRenderOption="UNFORMATTED_VALUE",
                    dateTimeRenderOption="FORMATTED_STRING",
                )
            )

        result = self._execute_with_retry(_build_request, operation=f"read {target_range}")
        return result.get("values", [])

    # Internal ----------------------------------------------------------------
    def _reset_service(self) -> None:
        self._service = None

    def _execute_with_retry(
        self,
        request_builder: Callable[[], HttpRequest],
        *,
        operation: str,
    ) -> dict:
        """Execute a Sheets API request with retries for transient failures."""

        backoff = _INITIAL_BACKOFF_SECONDS
        last_exc: Exception | None = None

        for attempt in range(1, _MAX_RETRY_ATTEMPTS + 1):
            try:
                return request_builder().execute()
            except _RETRYABLE_EXCEPTIONS as exc:
                last_exc = exc
            except HttpError as exc:
                status = getattr(exc.resp, "status", None)
                if status not in _RETRYABLE_STATUS_CODES:
                    raise
                last_exc = exc

            if attempt == _MAX_RETRY_ATTEMPTS:
                raise last_exc

            wait_time = min(backoff, _MAX_BACKOFF_SECONDS)
            LOGGER.warning(
                "Sheets API %s failed on attempt %s/%s (%s); retrying in %.1f seconds",
                operation,
                attempt,
                _MAX_RETRY_ATTEMPTS,
                last_exc,
                wait_time,
            )
            self._reset_service()
            time.sleep(wait_time)
            backoff *= 2

        raise RuntimeError("Sheets API request failed without capturing an exception")


def cell_text(value: Any) -> str:
    """Render a raw cell value the way it would read in the sheet."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def is_blank(value: Any) -> bool:
    return cell_text(value).strip() == ""


def row_cells(row: Sequence[Any], width: int) -> List[Any]:
    """Pad or truncate a row to the given width."""

    return [row[idx] if idx < len(row) else "" for idx in range(width)]
