"""Notification sinks."""

import logging

from editorcore.core.interfaces import NotificationLevel, NotificationSink

_LOG_LEVELS = {
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}


class LoggingNotifier(NotificationSink):
    """Writes notifications to a logger, for headless use and scripts."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger("editorcore.notifications")

    def notify(
        self,
        level: NotificationLevel,
        title: str,
        message: str = "",
        duration: float | None = None,
    ) -> None:
        level = NotificationLevel(level)
        if message:
            self._logger.log(_LOG_LEVELS[level], "[%s] %s: %s", level.value.upper(), title, message)
        else:
            self._logger.log(_LOG_LEVELS[level], "[%s] %s", level.value.upper(), title)


class NullNotifier(NotificationSink):
    """Discards every notification."""

    def notify(
        self,
        level: NotificationLevel,
        title: str,
        message: str = "",
        duration: float | None = None,
    ) -> None:
        return None
