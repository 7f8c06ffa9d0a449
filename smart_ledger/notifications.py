"""
Notification Presenter

Holds the single toast the dashboard shows. A new toast replaces the
current one (no queue); a toast disappears after a fixed delay or when
the user dismisses it.

Expiry is checked against the clock on every read, so views that only
re-render on interaction still never show a stale toast. When an event
loop is running, a timer also clears the toast and notifies listeners
so push-driven views can re-render.
"""

import asyncio
import time
from typing import Callable, Optional

from smart_ledger.config import get_settings
from smart_ledger.models.notification import Notification, Severity


NotificationListener = Callable[[Optional[Notification]], None]


class NotificationPresenter:
    """At most one visible notification, latest wins."""

    def __init__(
        self,
        duration: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._duration = duration if duration is not None else get_settings().app.notification_seconds
        self._clock = clock
        self._current: Optional[Notification] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: list[NotificationListener] = []

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def current(self) -> Optional[Notification]:
        """The visible notification, or None once it has expired."""
        if self._current is None:
            return None
        if self._clock() - self._current.shown_at >= self._duration:
            self._current = None
            self._cancel_timer()
        return self._current

    def show(self, message: str, severity: Severity = Severity.SUCCESS) -> Notification:
        """Display a message, replacing whatever is currently shown."""
        self._cancel_timer()
        notification = Notification(
            message=message,
            severity=severity,
            shown_at=self._clock(),
        )
        self._current = notification
        self._schedule_expiry(notification)
        self._emit(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.show(message, Severity.SUCCESS)

    def error(self, message: str) -> Notification:
        return self.show(message, Severity.ERROR)

    def dismiss(self) -> None:
        """User clicked the toast."""
        if self._current is None:
            return
        self._cancel_timer()
        self._current = None
        self._emit(None)

    def on_change(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _schedule_expiry(self, notification: Notification) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self._duration, self._expire, notification)

    def _expire(self, notification: Notification) -> None:
        self._timer = None
        if self._current is notification:
            self._current = None
            self._emit(None)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _emit(self, notification: Optional[Notification]) -> None:
        for listener in list(self._listeners):
            listener(notification)
