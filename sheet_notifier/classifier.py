from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .google_sheets import SheetReader, cell_text, is_blank, row_cells
from .models import EditEvent, RecordCandidate, StatusType

LOGGER = logging.getLogger(__name__)

# Order matters: the first vocabulary with a matching keyword wins
STATUS_KEYWORDS: Tuple[Tuple[StatusType, Tuple[str, ...]], ...] = (
    (StatusType.COMPLETED, ("✅", "выполнен", "завершен", "готово")),
    (StatusType.IN_PROGRESS, ("🟡", "в работе", "работа", "processing")),
    (StatusType.PROBLEM, ("🔴", "проблема", "ошибка", "error")),
    (StatusType.READY, ("🟢", "готов к сдаче", "готов", "ready")),
)

INTAKE_COLUMNS = ("date", "time", "client", "email", "service", "budget")
INTAKE_WIDTH = len(INTAKE_COLUMNS)
CLIENT_COLUMN = 3
SERVICE_COLUMN = 5
HEADER_ROW = 1


def classify_status(value: Any) -> StatusType:
    """Map a cell value to a status by keyword or emoji, ignoring case."""

    if value is None:
        return StatusType.NONE
    text = str(value).lower().strip()
    if not text:
        return StatusType.NONE
    for status_type, keywords in STATUS_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return status_type
    return StatusType.NONE


def normalize_time(value: Any) -> str:
    """Render a fractional-day time (0.5) as HH:MM; other values as text."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return cell_text(value)
    total_minutes = round((value % 1) * 24 * 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours % 24:02d}:{minutes:02d}"


def _row_was_empty(snapshot: Sequence[Any], event: EditEvent) -> bool:
    for column, value in enumerate(snapshot, start=1):
        if event.range.contains_column(column):
            continue
        if not is_blank(value):
            LOGGER.debug(
                "Row %s already had data in column %s before the edit",
                event.range.row,
                column,
            )
            return False
    return True


def _find_filled_key_field(block: List[List[Any]], first_row: int) -> Optional[Tuple[int, str]]:
    for offset, row in enumerate(block):
        cells = row_cells(row, INTAKE_WIDTH)
        if not is_blank(cells[CLIENT_COLUMN - 1]):
            return first_row + offset, "client"
        if not is_blank(cells[SERVICE_COLUMN - 1]):
            return first_row + offset, "service"
    return None


def is_new_record(event: EditEvent, reader: SheetReader, *, intake_sheet_name: str) -> bool:
    """Decide whether the edit populated a previously empty intake row."""

    edit_range = event.range
    if edit_range.sheet_name != intake_sheet_name:
        LOGGER.debug("Sheet '%s' is not tracked for new records", edit_range.sheet_name)
        return False
    if edit_range.row <= HEADER_ROW:
        LOGGER.debug("Ignoring edit in the header row")
        return False

    snapshot = row_cells(
        reader.read_range(edit_range.sheet_name, edit_range.row, 1, 1, INTAKE_WIDTH)[0],
        INTAKE_WIDTH,
    )
    if not _row_was_empty(snapshot, event):
        return False

    if event.is_mass_insertion:
        block = reader.read_range(
            edit_range.sheet_name, edit_range.row, 1, edit_range.num_rows, INTAKE_WIDTH
        )
        match = _find_filled_key_field(block, edit_range.row)
        if match is None:
            LOGGER.debug(
                "Mass insertion into rows %s-%s has no client or service",
                edit_range.row,
                edit_range.last_row,
            )
            return False
        LOGGER.info(
            "Mass insertion into rows %s-%s: %s filled in row %s",
            edit_range.row,
            edit_range.last_row,
            match[1],
            match[0],
        )
        return True

    if edit_range.column not in (CLIENT_COLUMN, SERVICE_COLUMN):
        LOGGER.debug("Column %s is neither client nor service", edit_range.column)
        return False
    value = event.top_left_value
    if value is None:
        value = snapshot[edit_range.column - 1]
    if is_blank(value):
        LOGGER.debug("Edited cell is empty; not a new record")
        return False
    return True


def extract_record(
    reader: SheetReader,
    sheet_name: str,
    row: int,
    *,
    captured_at: datetime,
) -> RecordCandidate:
    cells = row_cells(reader.read_range(sheet_name, row, 1, 1, INTAKE_WIDTH)[0], INTAKE_WIDTH)
    date, time_value, client, email, service, budget = cells
    return RecordCandidate(
        row=row,
        sheet_name=sheet_name,
        captured_at=captured_at,
        date=cell_text(date),
        time=normalize_time(time_value),
        client=cell_text(client),
        email=cell_text(email),
        service=cell_text(service),
        budget=cell_text(budget),
    )


def classify_new_record(
    event: EditEvent,
    reader: SheetReader,
    *,
    intake_sheet_name: str,
    clock: Callable[[], datetime] = datetime.now,
) -> Optional[RecordCandidate]:
    """Return the new record created by this edit, or None."""

    if not is_new_record(event, reader, intake_sheet_name=intake_sheet_name):
        return None

    record = extract_record(
        reader, event.range.sheet_name, event.range.row, captured_at=clock()
    )
    if not record.is_valid():
        LOGGER.info("Row %s has neither client nor service; skipping", record.row)
        return None
    return record
