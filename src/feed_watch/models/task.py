"""
Runtime polling task records (never persisted).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from feed_watch.models.entry import FeedEntry
from feed_watch.models.feed import FeedSubscriptionConfig, FeedType, state_key


class TaskPhase(str, Enum):
    """Lifecycle of a polling task.

    IDLE: no timer armed (fresh, paused or cancelled).
    WAITING: timer armed for `next_poll_time`.
    RUNNING: a fetch is in flight.
    """

    IDLE = "idle"
    WAITING = "waiting"
    RUNNING = "running"


@dataclass
class PollingTask:
    """Binds one (system, feed) subscription to its schedule."""

    system_id: str
    feed_title: str
    feed_path: str
    config: FeedSubscriptionConfig
    feed_type: FeedType = FeedType.UNKNOWN
    next_poll_time: float = 0.0
    effective_interval_seconds: int = 0
    phase: TaskPhase = TaskPhase.IDLE
    timer_job_id: Optional[str] = None
    generation: int = 0

    def __post_init__(self):
        if not self.effective_interval_seconds:
            self.effective_interval_seconds = self.config.polling_interval_seconds

    @property
    def key(self) -> str:
        return state_key(self.system_id, self.feed_title)

    @property
    def job_id(self) -> str:
        return f"poll:{self.key}"

    @property
    def is_polling(self) -> bool:
        return self.phase is TaskPhase.RUNNING


@dataclass
class PollResult:
    """Outcome of one poll cycle."""

    task_key: str
    success: bool
    skipped: bool = False
    fetched: int = 0
    new_entries: list[FeedEntry] = field(default_factory=list)
    error: Optional[str] = None
    error_count: int = 0


@dataclass
class SchedulerStatistics:
    """Point-in-time scheduler health snapshot."""

    total_tasks: int = 0
    active_tasks: int = 0
    paused_tasks: int = 0
    errored_tasks: int = 0

    def to_dict(self) -> dict:
        return {
            "total_tasks": self.total_tasks,
            "active_tasks": self.active_tasks,
            "paused_tasks": self.paused_tasks,
            "errored_tasks": self.errored_tasks,
        }
