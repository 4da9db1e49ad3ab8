"""Per-edit dispatch: filter the event, classify it, notify."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Callable, Optional, Tuple

from .classifier import classify_new_record, classify_status
from .formatter import build_error_message, build_new_record_message, build_status_message
from .google_sheets import SheetReader
from .models import (
    DispatchOutcome,
    DispatchReport,
    EditEvent,
    InvalidEventError,
    StatusChange,
    StatusType,
)
from .settings import SettingsStore
from .telegram import NotificationGateway

LOGGER = logging.getLogger(__name__)


@dataclass
class NotifierContext:
    """Everything a dispatch needs; built once per process."""

    spreadsheet_id: str
    intake_sheet_name: str
    reader: SheetReader
    settings: SettingsStore
    gateway: NotificationGateway
    tz: Optional[tzinfo] = None
    clock: Callable[[], datetime] = field(default=datetime.now)

    def now(self) -> datetime:
        moment = self.clock()
        if self.tz is not None and moment.tzinfo is None:
            return moment.astimezone(self.tz)
        return moment


class EditCoordinator:
    def __init__(self, context: NotifierContext) -> None:
        self._ctx = context

    def handle(self, payload: Any) -> DispatchReport:
        """Process one edit event; never raises."""

        try:
            return self._dispatch(payload)
        except Exception as exc:
            LOGGER.exception("Unexpected failure while handling edit event")
            report = DispatchReport(outcome=DispatchOutcome.ERROR, reason=str(exc))
            report.errors.append(f"{type(exc).__name__}: {exc}")
            self._notify_internal_error(exc, report)
            return report

    # Stages ------------------------------------------------------------------
    def _filter(self, payload: Any) -> Tuple[Optional[EditEvent], Optional[DispatchReport]]:
        try:
            event = EditEvent.from_payload(payload)
        except InvalidEventError as exc:
            LOGGER.debug("Rejected malformed edit event: %s", exc)
            return None, DispatchReport(outcome=DispatchOutcome.INVALID_EVENT, reason=str(exc))

        if event.spreadsheet_id != self._ctx.spreadsheet_id:
            LOGGER.debug("Edit belongs to spreadsheet %s; ignoring", event.spreadsheet_id)
            return None, DispatchReport(
                outcome=DispatchOutcome.IGNORED, reason="foreign spreadsheet"
            )

        if self._ctx.settings.is_system_sheet(event.range.sheet_name):
            LOGGER.debug("Edit on system sheet '%s'; ignoring", event.range.sheet_name)
            return None, DispatchReport(outcome=DispatchOutcome.IGNORED, reason="system sheet")

        return event, None

    def _dispatch(self, payload: Any) -> DispatchReport:
        self._ctx.settings.apply_debug_logging()

        event, rejection = self._filter(payload)
        if event is None:
            return rejection

        report = DispatchReport(outcome=DispatchOutcome.NO_MATCH)
        settings = self._ctx.settings

        if settings.is_status_notifications_enabled():
            self._handle_status(event, report)

        if settings.is_new_records_enabled():
            self._handle_new_record(event, report)

        if any(item.ok for item in report.deliveries):
            report.outcome = DispatchOutcome.NOTIFIED
        elif report.errors:
            report.outcome = DispatchOutcome.ERROR
        else:
            LOGGER.debug(
                "Edit %s!R%sC%s matched nothing",
                event.range.sheet_name,
                event.range.row,
                event.range.column,
            )
        return report

    def _handle_status(self, event: EditEvent, report: DispatchReport) -> None:
        value = event.top_left_value
        status_type = classify_status(value)
        if status_type is StatusType.NONE:
            LOGGER.debug("Value is not a status; skipping status notification")
            return

        report.status_type = status_type
        change = StatusChange(
            sheet_name=event.range.sheet_name,
            row=event.range.row,
            column=event.range.column,
            value=value,
            status_type=status_type,
            captured_at=self._ctx.now(),
        )
        message = build_status_message(change, self._ctx.reader, tz=self._ctx.tz)
        LOGGER.info(
            "Status '%s' detected in %s!R%sC%s",
            status_type.value,
            change.sheet_name,
            change.row,
            change.column,
        )
        self._deliver(message, report)

    def _handle_new_record(self, event: EditEvent, report: DispatchReport) -> None:
        record = classify_new_record(
            event,
            self._ctx.reader,
            intake_sheet_name=self._ctx.intake_sheet_name,
            clock=self._ctx.now,
        )
        if record is None:
            return

        report.record = record
        LOGGER.info("New record detected in %s row %s", record.sheet_name, record.row)
        self._deliver(build_new_record_message(record, tz=self._ctx.tz), report)

    def _deliver(self, message: str, report: DispatchReport) -> None:
        result = self._ctx.gateway.send(message)
        report.deliveries.append(result)
        if not result.ok:
            report.errors.append(f"delivery {result.status.value}: {result.error}")

    def _notify_internal_error(self, exc: BaseException, report: DispatchReport) -> None:
        try:
            result = self._ctx.gateway.send(build_error_message(exc))
        except Exception:
            LOGGER.exception("Failed to send internal error notification")
            return
        report.deliveries.append(result)
