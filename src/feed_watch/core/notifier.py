"""
User-facing notifications about feeds and the scheduler.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from feed_watch.core.parser import group_severity
from feed_watch.logger import get_logger
from feed_watch.models import FeedEntry, PollingTask, Severity

logger = get_logger(__name__)


def new_entries_message(task: PollingTask, entries: list[FeedEntry]) -> str:
    """Notice text, e.g. "3 new Runtime Errors on DEV"."""
    return f"{len(entries)} new {task.feed_title} on {task.system_id}"


class NotificationDispatcher(ABC):
    """Receives everything the user should be told about."""

    @abstractmethod
    def notify_new_entries(self, task: PollingTask, entries: list[FeedEntry]) -> None:
        """New entries were observed on a feed with notifications enabled."""

    @abstractmethod
    def notify_feed_unavailable(self, system_id: str, feed_title: str) -> None:
        """A subscribed feed disappeared from its system's catalog."""

    @abstractmethod
    def notify_system_unreachable(self, system_id: str, error_count: int, last_error: Optional[str]) -> None:
        """A system keeps failing."""

    @abstractmethod
    def notify_polling_paused(self, resume_callback: Callable[[], None]) -> None:
        """Polling was paused because most feeds are failing."""

    @abstractmethod
    def notify_polling_resumed(self) -> None:
        """Polling resumed after a pause."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Reports notifications through the application log."""

    _LEVELS = {
        Severity.ERROR: "ERROR",
        Severity.WARNING: "WARNING",
        Severity.INFO: "INFO",
    }

    def notify_new_entries(self, task: PollingTask, entries: list[FeedEntry]) -> None:
        if not entries:
            return
        severity = group_severity(entries)
        logger.log(self._LEVELS[severity], f"{new_entries_message(task, entries)} [{severity.value}]")
        for entry in entries:
            logger.debug(f"  {entry.timestamp:%Y-%m-%d %H:%M:%S} {entry.title}")

    def notify_feed_unavailable(self, system_id: str, feed_title: str) -> None:
        logger.warning(f"Feed '{feed_title}' is no longer available on {system_id}")

    def notify_system_unreachable(self, system_id: str, error_count: int, last_error: Optional[str]) -> None:
        logger.error(f"{system_id} unreachable after {error_count} consecutive errors: {last_error}")

    def notify_polling_paused(self, resume_callback: Callable[[], None]) -> None:
        logger.warning("Feed polling paused: most feeds are failing, the systems look offline")

    def notify_polling_resumed(self) -> None:
        logger.info("Feed polling resumed")
