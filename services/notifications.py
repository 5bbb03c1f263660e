"""Notification sinks: where order and stock outcomes are reported.

A sink is fire-and-forget. `notify` never raises and returns nothing; the
caller's result object is the authoritative outcome.
"""
import logging
from typing import List, Literal, Tuple

NotificationKind = Literal["success", "error", "warning", "info"]

logger = logging.getLogger(__name__)

_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class NotificationSink:
    def notify(self, message: str, kind: NotificationKind = "info") -> None:
        raise NotImplementedError


class LogNotificationSink(NotificationSink):
    """Writes notifications to the application log."""

    def __init__(self, name: str = "storefront.notifications"):
        self._logger = logging.getLogger(name)

    def notify(self, message: str, kind: NotificationKind = "info") -> None:
        self._logger.log(_LEVELS.get(kind, logging.INFO), "[%s] %s", kind, message)


class RecordingNotificationSink(LogNotificationSink):
    """Keeps every notification in memory as well as logging it."""

    def __init__(self, name: str = "storefront.notifications"):
        super().__init__(name)
        self.messages: List[Tuple[str, str]] = []

    def notify(self, message: str, kind: NotificationKind = "info") -> None:
        self.messages.append((kind, message))
        super().notify(message, kind)

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.messages]


def get_notification_sink() -> NotificationSink:
    """FastAPI dependency for the request's sink."""
    return LogNotificationSink()
