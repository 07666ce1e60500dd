"""
Offline detection: pauses polling while most feeds are failing.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.interval import IntervalTrigger

from feed_watch.config import OfflineConfig, get_config
from feed_watch.core.notifier import NotificationDispatcher
from feed_watch.core.scheduler import PollingScheduler
from feed_watch.logger import get_logger

logger = get_logger(__name__)

JOB_ID = "offline-detector"


class OfflineAction(str, Enum):
    NONE = "none"
    SKIPPED = "skipped"
    PAUSED = "paused"
    RESUMED = "resumed"


@dataclass
class OfflineSample:
    """Result of one error-rate sample."""

    total_tasks: int
    recent_errors: int
    error_rate: float
    consecutive_high: int
    action: OfflineAction = OfflineAction.NONE


class OfflineDetector:
    """Samples the aggregate error rate and pauses or resumes the scheduler.

    Polling pauses after `required_samples` consecutive samples above
    `pause_threshold` and resumes once the rate drops below
    `resume_threshold`. Rates between the two thresholds change nothing.
    """

    def __init__(
        self,
        scheduler: PollingScheduler,
        dispatcher: NotificationDispatcher,
        config: Optional[OfflineConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.config = config or get_config().offline
        self.clock = clock or scheduler.clock or time.time
        self._consecutive_high = 0
        self._lock = threading.Lock()

    @property
    def consecutive_high(self) -> int:
        with self._lock:
            return self._consecutive_high

    def start(self) -> None:
        """Schedule sampling on the scheduler's backend."""
        self.scheduler.backend.add_job(
            func=self.sample,
            trigger=IntervalTrigger(seconds=self.config.sample_interval_seconds),
            id=JOB_ID,
            name="Offline detection",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Offline detection every {self.config.sample_interval_seconds}s")

    def stop(self) -> None:
        try:
            self.scheduler.backend.remove_job(JOB_ID)
        except JobLookupError:
            pass
        with self._lock:
            self._consecutive_high = 0

    def sample(self) -> OfflineSample:
        """Take one sample and pause or resume polling if warranted."""
        if not self.scheduler.is_running:
            return OfflineSample(0, 0, 0.0, self.consecutive_high, OfflineAction.SKIPPED)

        tasks = self.scheduler.get_tasks()
        window_start_millis = (self.clock() - self.config.recent_window_seconds) * 1000

        recent_errors = 0
        for task in tasks:
            state = self.scheduler.entry_store.get_feed_state(task.system_id, task.feed_title)
            if state is not None and state.error_count > 0 and state.last_poll_time_millis >= window_start_millis:
                recent_errors += 1

        error_rate = recent_errors / max(len(tasks), 1)
        action = OfflineAction.NONE

        with self._lock:
            if error_rate > self.config.pause_threshold:
                self._consecutive_high += 1
                if self._consecutive_high >= self.config.required_samples and not self.scheduler.is_paused:
                    self._consecutive_high = 0
                    action = OfflineAction.PAUSED
            else:
                self._consecutive_high = 0
                if self.scheduler.is_paused and error_rate < self.config.resume_threshold:
                    action = OfflineAction.RESUMED
            consecutive = self._consecutive_high

        if action is OfflineAction.PAUSED:
            logger.warning(f"Error rate {error_rate:.0%} across {len(tasks)} feeds, pausing polling")
            self.scheduler.pause()
            self._notify(self.dispatcher.notify_polling_paused, self._resume_now)
        elif action is OfflineAction.RESUMED:
            logger.info(f"Error rate down to {error_rate:.0%}, resuming polling")
            self.scheduler.resume()
            self._notify(self.dispatcher.notify_polling_resumed)

        return OfflineSample(
            total_tasks=len(tasks),
            recent_errors=recent_errors,
            error_rate=error_rate,
            consecutive_high=consecutive,
            action=action,
        )

    def _resume_now(self) -> None:
        with self._lock:
            self._consecutive_high = 0
        self.scheduler.resume()

    def _notify(self, action: Callable, *args) -> None:
        try:
            action(*args)
        except Exception as e:
            logger.error(f"{getattr(action, '__name__', 'notification')} failed: {e}")
