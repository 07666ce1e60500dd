"""Core polling modules for feed-watch."""

from feed_watch.core.backoff import BackoffPolicy, EscalationThrottle
from feed_watch.core.debounce import CoalescingTrigger
from feed_watch.core.dedup import filter_new_entries
from feed_watch.core.factories import (
    create_entry_store,
    create_fetcher,
    create_offline_detector,
    create_scheduler,
)
from feed_watch.core.fetcher import FeedFetcher, HttpFeedFetcher
from feed_watch.core.notifier import LoggingNotificationDispatcher, NotificationDispatcher
from feed_watch.core.offline import OfflineAction, OfflineDetector, OfflineSample
from feed_watch.core.parser import (
    determine_feed_type,
    feed_type_name,
    get_default_query,
    group_severity,
    parse_feed_entry,
    parse_feed_response,
    to_feed_metadata,
)
from feed_watch.core.scheduler import PollingScheduler, create_backend
from feed_watch.core.subscriptions import (
    ConnectedSystemsProvider,
    FeedsFile,
    StaticSubscriptionProvider,
    StaticSystemsProvider,
    SubscriptionDiff,
    SubscriptionProvider,
    YamlSubscriptionProvider,
    YamlSystemsProvider,
    diff_subscriptions,
)

__all__ = [
    # Scheduling
    "PollingScheduler",
    "create_backend",
    "OfflineDetector",
    "OfflineSample",
    "OfflineAction",
    "BackoffPolicy",
    "EscalationThrottle",
    "CoalescingTrigger",
    "filter_new_entries",
    # Fetching
    "FeedFetcher",
    "HttpFeedFetcher",
    "determine_feed_type",
    "feed_type_name",
    "get_default_query",
    "group_severity",
    "parse_feed_entry",
    "parse_feed_response",
    "to_feed_metadata",
    # Configuration sources
    "SubscriptionProvider",
    "ConnectedSystemsProvider",
    "StaticSubscriptionProvider",
    "StaticSystemsProvider",
    "FeedsFile",
    "YamlSubscriptionProvider",
    "YamlSystemsProvider",
    "SubscriptionDiff",
    "diff_subscriptions",
    # Notifications
    "NotificationDispatcher",
    "LoggingNotificationDispatcher",
    # Factories
    "create_entry_store",
    "create_fetcher",
    "create_offline_detector",
    "create_scheduler",
]
