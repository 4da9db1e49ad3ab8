"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import pytz

from sheet_notifier.coordinator import EditCoordinator, NotifierContext
from sheet_notifier.settings import SettingsStore
from sheet_notifier.state import RateLimitStore
from sheet_notifier.telegram import NotificationGateway, TelegramError

SPREADSHEET_ID = "sheet-123"
INTAKE = "Заявки"
SETTINGS = "Настройки"
MOSCOW = pytz.timezone("Europe/Moscow")


class FakeSheetReader:
    """In-memory spreadsheet: sheet name -> list of rows (1-based when read)."""

    def __init__(self, sheets: dict[str, list[list[Any]]] | None = None) -> None:
        self.sheets: dict[str, list[list[Any]]] = sheets or {}
        self.calls: list[tuple[str, ...]] = []

    def sheet_titles(self) -> list[str]:
        self.calls.append(("sheet_titles",))
        return list(self.sheets)

    def read_range(
        self, sheet_name: str, row: int, column: int, num_rows: int = 1, num_cols: int = 1
    ) -> list[list[Any]]:
        self.calls.append(("read_range", sheet_name))
        rows = self.sheets[sheet_name]
        grid = []
        for r in range(row, row + num_rows):
            source = rows[r - 1] if r - 1 < len(rows) else []
            grid.append(
                [source[c - 1] if c - 1 < len(source) else "" for c in range(column, column + num_cols)]
            )
        return grid

    def read_row(self, sheet_name: str, row: int) -> list[Any]:
        self.calls.append(("read_row", sheet_name))
        rows = self.sheets[sheet_name]
        return list(rows[row - 1]) if row - 1 < len(rows) else []

    def read_columns(self, sheet_name: str, first: str, last: str) -> list[list[Any]]:
        self.calls.append(("read_columns", sheet_name))
        return [list(row) for row in self.sheets[sheet_name]]

    def set_row(self, sheet_name: str, row: int, values: list[Any]) -> None:
        rows = self.sheets.setdefault(sheet_name, [])
        while len(rows) < row:
            rows.append([])
        rows[row - 1] = list(values)


class FakeTransport:
    def __init__(self, failures: int = 0) -> None:
        self.sent: list[tuple[str, str | None]] = []
        self._failures = failures

    def send_message(self, text: str, parse_mode: str | None = "Markdown") -> dict[str, Any]:
        if self._failures > 0:
            self._failures -= 1
            raise TelegramError("Telegram API error (HTTP 400): can't parse entities")
        self.sent.append((text, parse_mode))
        return {"ok": True, "result": {"message_id": len(self.sent)}}


class FakeClock:
    def __init__(self, start: float = 1_700_000_040.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def reader() -> FakeSheetReader:
    return FakeSheetReader(
        {
            INTAKE: [["Дата", "Время", "Клиент", "Email", "Услуга", "Бюджет"]],
            SETTINGS: [
                ["Параметр", "Значение"],
                ["NOTIFICATION_DELAY_MS", 0],
            ],
            "Проекты": [["Проект", "Статус", "Комментарий"]],
        }
    )


@pytest.fixture
def rate_limit_store(tmp_path: Path) -> Generator[RateLimitStore, None, None]:
    store = RateLimitStore(tmp_path / "state.sqlite")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(
    reader: FakeSheetReader, rate_limit_store: RateLimitStore, clock: FakeClock
) -> SettingsStore:
    return SettingsStore(
        reader,
        rate_limit_store,
        settings_sheet_name=SETTINGS,
        clock=clock,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def gateway(
    transport: FakeTransport, settings: SettingsStore, sleeps: list[float]
) -> NotificationGateway:
    return NotificationGateway(transport, settings, sleep=sleeps.append)


@pytest.fixture
def coordinator(
    reader: FakeSheetReader, settings: SettingsStore, gateway: NotificationGateway
) -> EditCoordinator:
    context = NotifierContext(
        spreadsheet_id=SPREADSHEET_ID,
        intake_sheet_name=INTAKE,
        reader=reader,
        settings=settings,
        gateway=gateway,
        tz=MOSCOW,
        clock=lambda: MOSCOW.localize(datetime(2025, 6, 1, 12, 30, 0)),
    )
    return EditCoordinator(context)


def edit_payload(
    sheet: str,
    row: int,
    column: int,
    value: Any = None,
    *,
    num_rows: int = 1,
    num_cols: int = 1,
    spreadsheet_id: str = SPREADSHEET_ID,
    values: list[list[Any]] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "spreadsheetId": spreadsheet_id,
        "range": {
            "sheetName": sheet,
            "row": row,
            "column": column,
            "numRows": num_rows,
            "numCols": num_cols,
        },
    }
    if value is not None:
        payload["value"] = value
    if values is not None:
        payload["values"] = values
    return payload
