"""
Activity Logger

DESIGN DECISION: Every load, save, push and auth action is logged as a
structured event. This provides:
1. Traceability of what happened to an owner's records
2. Debugging capability when a backend rejects a write
3. Visibility into realtime updates that replace a draft

The activity logger:
- Never raises into the caller (a logging failure must not break a save)
- Maps event severity onto log levels
"""

import logging
import sys
from typing import Optional

import structlog

from smart_ledger.models.activity import (
    ActivityEvent,
    ActivityEventBuilder,
    ActivitySeverity,
)


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of the standard library logger.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class ActivityLogger:
    """
    Central activity logging service.

    Events go to the structured local log only. Keeps the last events
    in memory (bounded) so the view and tests can inspect them.
    """

    def __init__(self, history_size: int = 200):
        self._logger = structlog.get_logger("smart_ledger.activity")
        self._history: list[ActivityEvent] = []
        self._history_size = history_size

    @property
    def history(self) -> list[ActivityEvent]:
        return list(self._history)

    def log(self, event: ActivityEvent) -> None:
        """Log an activity event."""
        self._history.append(event)
        if len(self._history) > self._history_size:
            del self._history[0]

        log_dict = event.to_log_dict()
        try:
            if event.severity == ActivitySeverity.ERROR:
                self._logger.error("activity_event", **log_dict)
            elif event.severity == ActivitySeverity.WARNING:
                self._logger.warning("activity_event", **log_dict)
            elif event.severity == ActivitySeverity.DEBUG:
                self._logger.debug("activity_event", **log_dict)
            else:
                self._logger.info("activity_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            logging.getLogger(__name__).error("activity logging failed: %s", e)

    def record_loaded(self, entity: str, owner_id: str, found: bool) -> None:
        self.log(ActivityEventBuilder.record_loaded(entity, owner_id, found))

    def record_load_failed(self, entity: str, owner_id: str, error: str) -> None:
        self.log(ActivityEventBuilder.record_load_failed(entity, owner_id, error))

    def record_saved(self, entity: str, owner_id: str, values: dict) -> None:
        self.log(ActivityEventBuilder.record_saved(entity, owner_id, values))

    def record_save_failed(self, entity: str, owner_id: str, error: str) -> None:
        self.log(ActivityEventBuilder.record_save_failed(entity, owner_id, error))

    def push_applied(self, entity: str, owner_id: str, state: str) -> None:
        self.log(ActivityEventBuilder.push_applied(entity, owner_id, state))

    def push_ignored(
        self,
        entity: str,
        owner_id: Optional[str],
        pushed_owner_id: Optional[str],
    ) -> None:
        self.log(ActivityEventBuilder.push_ignored(entity, owner_id, pushed_owner_id))

    def subscription_changed(self, entity: str, owner_id: str, started: bool) -> None:
        self.log(ActivityEventBuilder.subscription_changed(entity, owner_id, started))

    def signed_in(self, owner_id: str, is_anonymous: bool) -> None:
        self.log(ActivityEventBuilder.signed_in(owner_id, is_anonymous))

    def signed_out(self, owner_id: Optional[str]) -> None:
        self.log(ActivityEventBuilder.signed_out(owner_id))

    def auth_failed(self, action: str, error: str) -> None:
        self.log(ActivityEventBuilder.auth_failed(action, error))
