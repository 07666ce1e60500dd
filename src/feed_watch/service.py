"""
Wiring of the polling service from the configuration and the feeds file.
"""

import signal
import threading
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.interval import IntervalTrigger

from feed_watch.config import Config, get_config
from feed_watch.core.factories import create_fetcher, create_offline_detector, create_scheduler
from feed_watch.core.notifier import LoggingNotificationDispatcher, NotificationDispatcher
from feed_watch.core.subscriptions import FeedsFile, YamlSubscriptionProvider, YamlSystemsProvider
from feed_watch.logger import get_logger
from feed_watch.storage.database import DatabaseManager
from feed_watch.storage.entry_store import EntryStore
from feed_watch.storage.kv_store import SqlKeyValueStore

logger = get_logger(__name__)

FEEDS_WATCH_JOB_ID = "feeds-file-watch"


class FeedWatchService:
    """Polling scheduler, offline detection and feeds-file watching in one unit."""

    def __init__(
        self,
        config: Optional[Config] = None,
        feeds_file: Optional[str] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.config = config or get_config()
        self.feeds_file = FeedsFile(feeds_file or self.config.feeds_file)

        self.subscriptions = YamlSubscriptionProvider(self.feeds_file)
        self.systems = YamlSystemsProvider(self.feeds_file)
        self.fetcher = create_fetcher(base_urls=self.systems.base_urls())

        self.db_manager = DatabaseManager(db_config=self.config.database)
        self.entry_store = EntryStore(SqlKeyValueStore(self.db_manager))
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()

        self.scheduler = create_scheduler(
            self.subscriptions,
            self.systems,
            self.fetcher,
            self.entry_store,
            dispatcher=self.dispatcher,
        )
        self.detector = create_offline_detector(self.scheduler, self.dispatcher)
        self._stopped = threading.Event()

    def start(self) -> None:
        self.scheduler.start()

        if self.config.offline.enabled:
            self.detector.start()

        self.scheduler.backend.add_job(
            func=self.check_feeds_file,
            trigger=IntervalTrigger(seconds=self.config.polling.config_watch_interval_seconds),
            id=FEEDS_WATCH_JOB_ID,
            name="Feeds file watch",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"feed-watch running with feeds file {self.feeds_file.path}")

    def check_feeds_file(self) -> None:
        """Pick up edits of the feeds file."""
        systems_before = self.systems.list_connected_system_ids()
        urls_before = self.systems.base_urls()

        self.subscriptions.check_for_changes()

        self.fetcher.set_base_urls(self.systems.base_urls())
        systems_changed = (
            self.systems.list_connected_system_ids() != systems_before
            or self.systems.base_urls() != urls_before
        )
        if systems_changed and self.scheduler.is_running:
            logger.info("Connected systems changed, restart scheduled")
            self.scheduler.request_restart()

    def stop(self) -> None:
        try:
            self.scheduler.backend.remove_job(FEEDS_WATCH_JOB_ID)
        except JobLookupError:
            pass
        self.detector.stop()
        self.scheduler.shutdown(wait=True)

        if not self.entry_store.flush():
            logger.error(f"{self.entry_store.pending_writes} changes could not be persisted")
        self.db_manager.close()
        self._stopped.set()
        logger.info("feed-watch stopped")

    def run_forever(self) -> None:
        """Run until interrupted (Ctrl+C or SIGTERM)."""

        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            self._stopped.set()

        signal.signal(signal.SIGTERM, handle_signal)
        self.start()
        try:
            while not self._stopped.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.stop()
