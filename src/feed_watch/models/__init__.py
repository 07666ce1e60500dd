"""Data models for feed-watch."""

from feed_watch.models.base import Base
from feed_watch.models.entry import EntryStatistics, FeedEntry
from feed_watch.models.feed import (
    DEFAULT_POLL_INTERVAL,
    MAX_POLL_INTERVAL,
    MIN_POLL_INTERVAL,
    FeedMetadata,
    FeedState,
    FeedSubscriptionConfig,
    FeedType,
    Severity,
    clamp_polling_interval,
    state_key,
)
from feed_watch.models.kv import KeyValueModel
from feed_watch.models.task import PollingTask, PollResult, SchedulerStatistics, TaskPhase

__all__ = [
    "Base",
    "KeyValueModel",
    "FeedSubscriptionConfig",
    "FeedMetadata",
    "FeedState",
    "FeedType",
    "Severity",
    "FeedEntry",
    "EntryStatistics",
    "PollingTask",
    "PollResult",
    "SchedulerStatistics",
    "TaskPhase",
    "MIN_POLL_INTERVAL",
    "MAX_POLL_INTERVAL",
    "DEFAULT_POLL_INTERVAL",
    "clamp_polling_interval",
    "state_key",
]
