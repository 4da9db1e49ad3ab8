from __future__ import annotations

import logging
import re
from datetime import datetime, tzinfo
from typing import Any, List, Optional

from googleapiclient.errors import HttpError
from httplib2 import HttpLib2Error

from .google_sheets import SheetReader, a1_notation, cell_text, column_letter, is_blank
from .models import RecordCandidate, StatusChange, StatusType

LOGGER = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%d.%m.%Y, %H:%M:%S"

CONTEXT_KEYWORDS = ("клиент", "товар", "заказ", "проект", "задача", "id")

_STATUS_EMOJI = {
    StatusType.COMPLETED: "✅",
    StatusType.IN_PROGRESS: "🟡",
    StatusType.PROBLEM: "🔴",
    StatusType.READY: "🟢",
}
_STATUS_LABELS = {
    StatusType.COMPLETED: "Выполнен",
    StatusType.IN_PROGRESS: "В работе",
    StatusType.PROBLEM: "Проблема",
    StatusType.READY: "Готов к сдаче",
}
_FALLBACK_EMOJI = "🔄"
_FALLBACK_LABEL = "Неизвестный статус"

_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")
_ENTITY_UNSAFE = re.compile(r"[*`\[]")

# Errors that make a lookup fall back to a plain rendering instead of failing
_LOOKUP_ERRORS = (HttpError, HttpLib2Error, OSError, IndexError)


def escape_markdown(value: Any) -> str:
    """Escape Telegram legacy Markdown control characters in user data."""

    return _MARKDOWN_SPECIAL.sub(r"\\\1", cell_text(value))


def bold_label(value: Any) -> str:
    """Header text safe to wrap in a bold entity, where escapes are not honoured."""

    text = _ENTITY_UNSAFE.sub("", cell_text(value)).replace("_", " ")
    return f"*{text.strip()}:*"


def status_emoji(status_type: Any) -> str:
    return _STATUS_EMOJI.get(status_type, _FALLBACK_EMOJI)


def status_label(status_type: Any) -> str:
    return _STATUS_LABELS.get(status_type, _FALLBACK_LABEL)


def format_timestamp(moment: datetime, tz: Optional[tzinfo] = None) -> str:
    if tz is not None:
        moment = moment.astimezone(tz)
    return moment.strftime(TIMESTAMP_FORMAT)


def column_display_name(reader: SheetReader, sheet_name: str, column: int) -> str:
    """Header text from row 1 of the column, or its letters when there is none."""

    try:
        header = reader.read_range(sheet_name, 1, column)[0][0]
    except _LOOKUP_ERRORS as exc:
        LOGGER.warning("Failed to read header of column %s on '%s': %s", column, sheet_name, exc)
        return column_letter(column)
    if is_blank(header):
        return column_letter(column)
    return cell_text(header)


def row_context(reader: SheetReader, sheet_name: str, row: int) -> str:
    """Lines with values of identifying columns (client, order, project, ...) of a row."""

    try:
        headers = reader.read_row(sheet_name, 1)
        values = reader.read_row(sheet_name, row)
    except _LOOKUP_ERRORS as exc:
        LOGGER.warning("Failed to read row context for %s!%s: %s", sheet_name, row, exc)
        return ""

    lines: List[str] = []
    for idx, header in enumerate(headers):
        value = values[idx] if idx < len(values) else ""
        if is_blank(value):
            continue
        header_text = cell_text(header).lower()
        if any(keyword in header_text for keyword in CONTEXT_KEYWORDS):
            lines.append(f"📋 {bold_label(header)} {escape_markdown(value)}\n")
    return "".join(lines)


def build_status_message(
    change: StatusChange,
    reader: SheetReader,
    *,
    tz: Optional[tzinfo] = None,
) -> str:
    column_name = column_display_name(reader, change.sheet_name, change.column)
    context = row_context(reader, change.sheet_name, change.row)
    return (
        f"{status_emoji(change.status_type)} *Изменение статуса*\n\n"
        f"📊 *Лист:* {escape_markdown(change.sheet_name)}\n"
        f"📍 *Ячейка:* {a1_notation(change.row, change.column)}\n"
        f"📝 *Столбец:* {escape_markdown(column_name)}\n"
        f"🔄 *Статус:* {status_label(change.status_type)}\n"
        f"💬 *Значение:* {escape_markdown(change.value)}\n"
        f"{context}"
        f"⏰ *Время:* {format_timestamp(change.captured_at, tz)}"
    )


_RECORD_FIELDS = (
    ("date", "📅", "Дата"),
    ("time", "⏰", "Время"),
    ("client", "👤", "Клиент"),
    ("email", "📧", "Email"),
    ("service", "💼", "Услуга"),
    ("budget", "💰", "Бюджет"),
)


def build_new_record_message(record: RecordCandidate, *, tz: Optional[tzinfo] = None) -> str:
    lines = ["🆕 *НОВАЯ ЗАЯВКА!*", ""]
    for attribute, emoji, label in _RECORD_FIELDS:
        value = getattr(record, attribute)
        if value and value.strip():
            lines.append(f"{emoji} *{label}:* {escape_markdown(value)}")
    lines.append("")
    lines.append(f"📋 *Строка:* {record.row}")
    lines.append(f"📊 *Лист:* {escape_markdown(record.sheet_name)}")
    lines.append(f"⏰ *Получено:* {format_timestamp(record.captured_at, tz)}")
    return "\n".join(lines)


def build_error_message(error: BaseException | str) -> str:
    return f"❌ Внутренняя ошибка системы уведомлений: {escape_markdown(error)}"


def build_test_message(
    bot_username: Optional[str],
    chat_id: str,
    moment: datetime,
    tz: Optional[tzinfo] = None,
) -> str:
    return (
        "🧪 *ТЕСТ ПОДКЛЮЧЕНИЯ*\n\n"
        f"⏰ Время: {format_timestamp(moment, tz)}\n"
        f"🤖 Бот: {escape_markdown(bot_username or '-')}\n"
        f"📊 Chat ID: {escape_markdown(chat_id)}\n\n"
        "✅ Telegram интеграция работает!"
    )
