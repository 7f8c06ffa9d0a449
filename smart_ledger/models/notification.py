"""Transient user-facing messages (toasts)."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class Notification(BaseModel):
    """A single toast. Only one is ever shown at a time."""
    model_config = ConfigDict(frozen=True)

    message: str = Field(..., min_length=1)
    severity: Severity = Severity.SUCCESS
    shown_at: float = Field(
        ...,
        description="Clock reading (seconds) when the toast was shown"
    )

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR
