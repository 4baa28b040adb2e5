"""Shared models used across oracle-browser."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ToggleStatus(str, enum.Enum):
    """Result tags of a toggle probe."""

    ALREADY_ON = "already-on"
    TOGGLED_ON = "toggled-on"
    NOT_FOUND = "not-found"
    ERROR = "error"


class ToggleOutcome(BaseModel):
    """Value returned by a toggle probe evaluated inside the page."""

    model_config = ConfigDict(frozen=True)

    status: ToggleStatus
    label: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_on(self) -> bool:
        return self.status in {ToggleStatus.ALREADY_ON, ToggleStatus.TOGGLED_ON}

    @classmethod
    def from_probe(cls, value: Any) -> "ToggleOutcome":
        """Build an outcome from the raw by-value probe result.

        Anything that does not look like a probe result is reported as an
        ``error`` outcome instead of raising.
        """

        if not isinstance(value, dict):
            return cls(status=ToggleStatus.ERROR, message=f"unexpected probe result: {value!r}")
        try:
            outcome = cls.model_validate(value)
        except ValidationError:
            return cls(status=ToggleStatus.ERROR, message=f"unexpected probe result: {value!r}")
        if outcome.status in {ToggleStatus.NOT_FOUND, ToggleStatus.ERROR}:
            return outcome.model_copy(update={"label": None})
        return outcome.model_copy(update={"message": None})


class ControlStatus(str, enum.Enum):
    """Result tags of a probe for a plain (non-toggle) control."""

    PRESENT = "present"
    DISABLED = "disabled"
    CLICKED = "clicked"
    NOT_FOUND = "not-found"
    ERROR = "error"


class ControlOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ControlStatus
    label: Optional[str] = None
    message: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status in {ControlStatus.PRESENT, ControlStatus.DISABLED, ControlStatus.CLICKED}

    @classmethod
    def from_probe(cls, value: Any) -> "ControlOutcome":
        if not isinstance(value, dict):
            return cls(status=ControlStatus.ERROR, message=f"unexpected probe result: {value!r}")
        try:
            return cls.model_validate(value)
        except ValidationError:
            return cls(status=ControlStatus.ERROR, message=f"unexpected probe result: {value!r}")


class QueryAttachment(BaseModel):
    """Resolved file handed to the browser layer for upload."""

    model_config = ConfigDict(frozen=True)

    path: Path
    display_path: str
    size_bytes: int = Field(ge=0)


class QueryResult(BaseModel):
    """Final answer of one query."""

    answer_text: str
    answer_markdown: Optional[str] = None
    empty: bool = Field(default=False, description="True when the assistant turn rendered no text.")
    session_id: Optional[str] = None
    elapsed_ms: Optional[int] = None
    search: Optional[ToggleOutcome] = None


class SessionState(str, enum.Enum):
    """Bookkeeping status of a stored browser session."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionDescriptor(BaseModel):
    """Persisted handle to a running, reusable browser instance."""

    session_id: str
    endpoint: str
    pid: Optional[int] = None
    user_data_dir: Optional[Path] = None
    profile_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)
    status: SessionState = SessionState.IDLE
    query_count: int = 0
    last_error: Optional[str] = None
    last_prompt_preview: Optional[str] = None

    def age_hours(self, now: Optional[datetime] = None) -> float:
        reference = now or utcnow()
        return (reference - self.last_used_at).total_seconds() / 3600


class SessionStatus(BaseModel):
    """Read-only view of a session as shown by the status listing."""

    descriptor: SessionDescriptor
    alive: bool


class DeleteResult(BaseModel):
    deleted: int


class NotificationLevel(str, enum.Enum):
    """Severity of notification events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class NotificationEvent(BaseModel):
    """Event emitted while a query runs."""

    type: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
