"""
Activity Models for Smart Ledger

Every load, save, push and sign-in/out is recorded as a structured
activity event. This gives us:
1. A trace of what the dashboard did for an owner
2. Debugging information when a save or load fails
3. Visibility into realtime updates that overwrite a draft

Activity events are written to the structured log only; they are never
sent to the record store.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class ActivityEventType(str, Enum):
    """Types of events we record."""
    # Loading
    RECORD_LOADED = "record_loaded"
    RECORD_LOAD_FAILED = "record_load_failed"

    # Saving
    RECORD_SAVED = "record_saved"
    RECORD_SAVE_FAILED = "record_save_failed"

    # Realtime
    PUSH_APPLIED = "push_applied"
    PUSH_IGNORED = "push_ignored"
    SUBSCRIPTION_STARTED = "subscription_started"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"

    # Identity
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    AUTH_FAILED = "auth_failed"


class ActivitySeverity(str, Enum):
    """Severity level for activity events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityEvent(BaseModel):
    """A single activity event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: ActivityEventType
    severity: ActivitySeverity = ActivitySeverity.INFO

    # Context - which record and whose
    entity: Optional[str] = Field(
        default=None,
        description="Record type (table name), if the event concerns one"
    )
    owner_id: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity": self.entity,
            "owner_id": self.owner_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class ActivityEventBuilder:
    """
    Helper class to build activity events with common patterns.

    Usage:
        event = ActivityEventBuilder.record_saved("sales", owner_id, values)
    """

    @staticmethod
    def record_loaded(entity: str, owner_id: str, found: bool) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.RECORD_LOADED,
            entity=entity,
            owner_id=owner_id,
            description=f"Loaded {entity}" if found else f"No {entity} record yet",
            details={"found": found},
        )

    @staticmethod
    def record_load_failed(entity: str, owner_id: str, error: str) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.RECORD_LOAD_FAILED,
            severity=ActivitySeverity.ERROR,
            entity=entity,
            owner_id=owner_id,
            description=f"Failed to load {entity}",
            error_message=error,
        )

    @staticmethod
    def record_saved(
        entity: str,
        owner_id: str,
        values: dict[str, Any],
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.RECORD_SAVED,
            entity=entity,
            owner_id=owner_id,
            description=f"Saved {entity}",
            details={"values": values},
            is_user_action=True,
        )

    @staticmethod
    def record_save_failed(entity: str, owner_id: str, error: str) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.RECORD_SAVE_FAILED,
            severity=ActivitySeverity.ERROR,
            entity=entity,
            owner_id=owner_id,
            description=f"Failed to save {entity}",
            error_message=error,
            is_user_action=True,
        )

    @staticmethod
    def push_applied(entity: str, owner_id: str, state: str) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.PUSH_APPLIED,
            entity=entity,
            owner_id=owner_id,
            description=f"Realtime update applied to {entity}",
            details={"controller_state": state},
        )

    @staticmethod
    def push_ignored(
        entity: str,
        owner_id: Optional[str],
        pushed_owner_id: Optional[str],
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.PUSH_IGNORED,
            severity=ActivitySeverity.WARNING,
            entity=entity,
            owner_id=owner_id,
            description=f"Realtime update for another owner ignored on {entity}",
            details={"pushed_owner_id": pushed_owner_id},
        )

    @staticmethod
    def subscription_changed(
        entity: str,
        owner_id: str,
        started: bool,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=(
                ActivityEventType.SUBSCRIPTION_STARTED
                if started
                else ActivityEventType.SUBSCRIPTION_CANCELLED
            ),
            severity=ActivitySeverity.DEBUG,
            entity=entity,
            owner_id=owner_id,
            description=(
                f"Subscribed to {entity} changes"
                if started
                else f"Unsubscribed from {entity} changes"
            ),
        )

    @staticmethod
    def signed_in(owner_id: str, is_anonymous: bool) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.SIGNED_IN,
            owner_id=owner_id,
            description="Anonymous client identified" if is_anonymous else "User signed in",
            details={"is_anonymous": is_anonymous},
        )

    @staticmethod
    def signed_out(owner_id: Optional[str]) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.SIGNED_OUT,
            owner_id=owner_id,
            description="User signed out",
            is_user_action=True,
        )

    @staticmethod
    def auth_failed(action: str, error: str) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.AUTH_FAILED,
            severity=ActivitySeverity.ERROR,
            description=f"Authentication action failed: {action}",
            details={"action": action},
            error_message=error,
            is_user_action=True,
        )
