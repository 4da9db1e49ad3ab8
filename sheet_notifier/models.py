from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class InvalidEventError(ValueError):
    """Raised when an edit event payload cannot be turned into an EditEvent."""


class StatusType(str, Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    PROBLEM = "problem"
    READY = "ready"
    NONE = "none"


class EditRange(BaseModel):
    """Rectangle affected by a single edit (1-based coordinates)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sheet_name: str = Field(..., alias="sheetName", min_length=1)
    row: int = Field(..., ge=1)
    column: int = Field(..., ge=1)
    num_rows: int = Field(1, alias="numRows", ge=1)
    num_cols: int = Field(1, alias="numCols", ge=1)

    @property
    def last_row(self) -> int:
        return self.row + self.num_rows - 1

    @property
    def last_column(self) -> int:
        return self.column + self.num_cols - 1

    def contains_column(self, column: int) -> bool:
        return self.column <= column <= self.last_column


class EditEvent(BaseModel):
    """A single edit delivered by the host platform."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    spreadsheet_id: str = Field(..., alias="spreadsheetId", min_length=1)
    range: EditRange
    value: Any = None
    values: Optional[List[List[Any]]] = None

    @model_validator(mode="after")
    def _check_grid_shape(self) -> "EditEvent":
        if self.values is not None and self.values and not self.values[0]:
            raise ValueError("values grid must not contain empty rows")
        return self

    @classmethod
    def from_payload(cls, payload: Any) -> "EditEvent":
        if not isinstance(payload, dict):
            raise InvalidEventError(f"Edit event must be an object, got {type(payload).__name__}")
        if not payload.get("range"):
            raise InvalidEventError("Edit event carries no range")
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise InvalidEventError(f"Invalid edit event: {exc}") from exc

    @property
    def is_mass_insertion(self) -> bool:
        return self.range.num_rows > 1 or self.range.num_cols > 1

    @property
    def top_left_value(self) -> Any:
        if self.value is not None:
            return self.value
        if self.values:
            return self.values[0][0]
        return None


@dataclass(slots=True)
class RecordCandidate:
    """A new business record reconstructed from an intake sheet row."""

    row: int
    sheet_name: str
    captured_at: datetime
    date: str = ""
    time: str = ""
    client: str = ""
    email: str = ""
    service: str = ""
    budget: str = ""

    def is_valid(self) -> bool:
        return bool(self.client.strip() or self.service.strip())


@dataclass(slots=True)
class StatusChange:
    """A cell whose new value matched one of the status vocabularies."""

    sheet_name: str
    row: int
    column: int
    value: Any
    status_type: StatusType
    captured_at: datetime


class DeliveryStatus(str, Enum):
    SENT = "sent"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass(slots=True)
class DeliveryResult:
    status: DeliveryStatus
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    fallback_sent: bool = False

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.SENT


class DispatchOutcome(str, Enum):
    IGNORED = "ignored"
    INVALID_EVENT = "invalid_event"
    NO_MATCH = "no_match"
    NOTIFIED = "notified"
    ERROR = "error"


@dataclass(slots=True)
class DispatchReport:
    """What happened to a single edit event."""

    outcome: DispatchOutcome
    reason: str = ""
    status_type: StatusType = StatusType.NONE
    record: Optional[RecordCandidate] = None
    deliveries: List[DeliveryResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        record = None
        if self.record is not None:
            record = {
                "row": self.record.row,
                "sheet": self.record.sheet_name,
                "date": self.record.date,
                "time": self.record.time,
                "client": self.record.client,
                "email": self.record.email,
                "service": self.record.service,
                "budget": self.record.budget,
            }
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "status_type": self.status_type.value,
            "record": record,
            "deliveries": [
                {
                    "status": item.status.value,
                    "error": item.error,
                    "fallback_sent": item.fallback_sent,
                }
                for item in self.deliveries
            ],
            "errors": list(self.errors),
        }
