"""
Factory functions for creating core components from the configuration.

Usage:
    from feed_watch.core.factories import create_entry_store, create_scheduler

    store = create_entry_store()
    scheduler = create_scheduler(subscriptions, systems, fetcher, store)
"""

from typing import Callable, Mapping, Optional

from apscheduler.schedulers.base import BaseScheduler

from feed_watch.config import get_config
from feed_watch.core.backoff import BackoffPolicy, EscalationThrottle
from feed_watch.core.fetcher import FeedFetcher, HttpFeedFetcher
from feed_watch.core.notifier import LoggingNotificationDispatcher, NotificationDispatcher
from feed_watch.core.offline import OfflineDetector
from feed_watch.core.scheduler import PollingScheduler
from feed_watch.core.subscriptions import ConnectedSystemsProvider, SubscriptionProvider
from feed_watch.storage.database import DatabaseManager
from feed_watch.storage.entry_store import EntryStore
from feed_watch.storage.kv_store import MemoryKeyValueStore, SqlKeyValueStore


def create_fetcher(
    base_urls: Optional[Mapping[str, str]] = None,
    timeout_seconds: Optional[int] = None,
) -> HttpFeedFetcher:
    """Create a configured HttpFeedFetcher instance.

    Args:
        base_urls: Base URL per system id
        timeout_seconds: Override default timeout

    Returns:
        Configured HttpFeedFetcher instance
    """
    config = get_config()
    return HttpFeedFetcher(
        base_urls=base_urls,
        timeout_seconds=timeout_seconds or config.fetcher.timeout_seconds,
    )


def create_entry_store(db_manager: Optional[DatabaseManager] = None, in_memory: bool = False) -> EntryStore:
    """Create an EntryStore over the configured database.

    Args:
        db_manager: Optional DatabaseManager (one is created from config if omitted)
        in_memory: Keep everything in process memory instead

    Returns:
        EntryStore instance with persisted state loaded
    """
    if in_memory:
        return EntryStore(MemoryKeyValueStore())
    return EntryStore(SqlKeyValueStore(db_manager or DatabaseManager()))


def create_scheduler(
    subscription_provider: SubscriptionProvider,
    systems_provider: ConnectedSystemsProvider,
    fetcher: FeedFetcher,
    entry_store: EntryStore,
    dispatcher: Optional[NotificationDispatcher] = None,
    backend: Optional[BaseScheduler] = None,
    clock: Optional[Callable[[], float]] = None,
) -> PollingScheduler:
    """Create a PollingScheduler with backoff and throttling from config."""
    config = get_config()
    kwargs = {"clock": clock} if clock is not None else {}
    return PollingScheduler(
        subscription_provider=subscription_provider,
        systems_provider=systems_provider,
        fetcher=fetcher,
        entry_store=entry_store,
        dispatcher=dispatcher or LoggingNotificationDispatcher(),
        backend=backend,
        polling_config=config.polling,
        backoff=BackoffPolicy.from_config(config.backoff),
        throttle=EscalationThrottle.from_config(config.notifications),
        **kwargs,
    )


def create_offline_detector(
    scheduler: PollingScheduler,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> OfflineDetector:
    return OfflineDetector(
        scheduler,
        dispatcher or scheduler.dispatcher,
        config=get_config().offline,
    )
