"""
Coalescing trigger backed by an APScheduler one-shot job.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from feed_watch.logger import get_logger

logger = get_logger(__name__)


class CoalescingTrigger:
    """Runs an action once after a quiet period.

    Every fire() within the window pushes the run back, so a burst of
    requests results in a single invocation `delay_seconds` after the last.
    """

    def __init__(self, backend: BaseScheduler, action: Callable[[], None], delay_seconds: float, job_id: str):
        self.backend = backend
        self.action = action
        self.delay_seconds = delay_seconds
        self.job_id = job_id

    def fire(self) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=self.delay_seconds)
        self.backend.add_job(
            func=self._run,
            trigger=DateTrigger(run_date=run_date),
            id=self.job_id,
            name=f"Debounced {self.job_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug(f"{self.job_id} scheduled in {self.delay_seconds}s")

    def cancel(self) -> bool:
        """Drop the pending run, returning True if one was pending."""
        try:
            self.backend.remove_job(self.job_id)
            return True
        except JobLookupError:
            return False

    @property
    def pending(self) -> bool:
        return self.backend.get_job(self.job_id) is not None

    def _run(self) -> None:
        self.action()
