"""
Feed polling scheduler.

Uses APScheduler to run one self re-arming timer per subscribed feed. Every
task polls on its own cadence; a global ceiling bounds the number of
fetches in flight, failing feeds back off exponentially, and systems that
keep failing are escalated to the notification dispatcher.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from feed_watch.config import PollingConfig, get_config
from feed_watch.core.backoff import BackoffPolicy, EscalationThrottle
from feed_watch.core.debounce import CoalescingTrigger
from feed_watch.core.dedup import filter_new_entries
from feed_watch.core.fetcher import FeedFetcher
from feed_watch.core.notifier import NotificationDispatcher
from feed_watch.core.parser import determine_feed_type, parse_feed_response
from feed_watch.core.subscriptions import ConnectedSystemsProvider, SubscriptionDiff, SubscriptionProvider
from feed_watch.errors import FeedNotFoundError, FetchError
from feed_watch.logger import get_logger
from feed_watch.models import FeedMetadata, PollingTask, PollResult, SchedulerStatistics, TaskPhase, state_key
from feed_watch.storage.entry_store import EntryStore

logger = get_logger(__name__)

RESTART_JOB_ID = "feed-watch:restart"


def create_backend(polling_config: Optional[PollingConfig] = None) -> BackgroundScheduler:
    """Create the APScheduler backend running poll jobs in a thread pool."""
    config = polling_config or get_config().polling
    return BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=config.max_workers)},
        timezone=config.timezone,
    )


class PollingScheduler:
    """Scheduler for periodic feed polling."""

    def __init__(
        self,
        subscription_provider: SubscriptionProvider,
        systems_provider: ConnectedSystemsProvider,
        fetcher: FeedFetcher,
        entry_store: EntryStore,
        dispatcher: NotificationDispatcher,
        backend: Optional[BaseScheduler] = None,
        polling_config: Optional[PollingConfig] = None,
        backoff: Optional[BackoffPolicy] = None,
        throttle: Optional[EscalationThrottle] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize polling scheduler.

        Args:
            subscription_provider: Source of feed subscriptions
            systems_provider: Source of connected system ids
            fetcher: Catalog and feed fetcher
            entry_store: Feed state and entry persistence
            dispatcher: Receiver of user notifications
            backend: APScheduler instance running the timers (created from config if omitted)
            polling_config: Polling configuration (global config if omitted)
            backoff: Backoff policy for failing feeds
            throttle: Escalation throttle for failing systems
            clock: Wall clock in epoch seconds
        """
        config = get_config()

        self.subscription_provider = subscription_provider
        self.systems_provider = systems_provider
        self.fetcher = fetcher
        self.entry_store = entry_store
        self.dispatcher = dispatcher
        self.polling_config = polling_config or config.polling
        self.backoff = backoff or BackoffPolicy.from_config(config.backoff)
        self.throttle = throttle or EscalationThrottle.from_config(config.notifications)
        self.clock = clock

        self._backend = backend or create_backend(self.polling_config)
        self._backend.add_listener(self._on_job_error, EVENT_JOB_ERROR)

        self._lock = threading.RLock()
        self._slot_released = threading.Condition(self._lock)
        self._tasks: dict[str, PollingTask] = {}
        self._in_flight: set[str] = set()
        # removed subscriptions: their polls are skipped and in-flight ones purge stored state again
        self._purged: set[str] = set()
        self._current_polls = 0
        self._running = False
        self._paused = False
        self._generation = 0
        self._remove_listener: Optional[Callable[[], None]] = None
        self._on_entries_changed: Optional[Callable[[], None]] = None

        self._restart_trigger = CoalescingTrigger(
            self._backend,
            self.restart,
            delay_seconds=self.polling_config.restart_debounce_seconds,
            job_id=RESTART_JOB_ID,
        )

    # --- State ---

    @property
    def backend(self) -> BaseScheduler:
        return self._backend

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def current_polls(self) -> int:
        """Number of fetches currently in flight."""
        with self._lock:
            return self._current_polls

    def set_on_entries_changed(self, callback: Optional[Callable[[], None]]) -> None:
        """Register a callback invoked after a poll stored entries."""
        self._on_entries_changed = callback

    def get_tasks(self) -> list[PollingTask]:
        """Registered tasks in scheduling order."""
        with self._lock:
            return list(self._tasks.values())

    def get_task(self, system_id: str, feed_title: str) -> Optional[PollingTask]:
        with self._lock:
            for task in self._tasks.values():
                if task.system_id == system_id and task.feed_title == feed_title:
                    return task
            return None

    def get_statistics(self) -> SchedulerStatistics:
        with self._lock:
            tasks = list(self._tasks.values())
            paused = self._paused

        active = sum(1 for task in tasks if task.is_polling)
        errored = 0
        for task in tasks:
            state = self.entry_store.get_feed_state(task.system_id, task.feed_title)
            if state is not None and state.error_count > 0:
                errored += 1

        return SchedulerStatistics(
            total_tasks=len(tasks),
            active_tasks=active,
            paused_tasks=len(tasks) - active if paused else 0,
            errored_tasks=errored,
        )

    # --- Lifecycle ---

    def start(self) -> None:
        """Start polling every enabled subscription of every connected system."""
        if self.is_running:
            logger.warning("Polling scheduler is already running")
            return

        tasks = self._load_tasks()

        with self._lock:
            if self._running:
                return
            if not self._backend.running:
                self._backend.start()

            self._running = True
            self._paused = False
            self._generation += 1
            self._tasks = {}
            for task in tasks:
                task.generation = self._generation
                self._tasks[task.key] = task
            self._purged = {key for key in self._purged if key in self._in_flight and key not in self._tasks}

            stagger = self.polling_config.stagger_delay_seconds
            for index, task in enumerate(self._tasks.values()):
                self._arm(task, index * stagger)

            self._remove_listener = self.subscription_provider.add_listener(self._on_subscriptions_changed)

        logger.info(f"Polling scheduler started with {len(tasks)} tasks")

    def stop(self) -> None:
        """Stop polling.

        Armed timers are cancelled. In-flight fetches complete but do not
        re-arm. The APScheduler backend keeps running (see shutdown()).
        """
        with self._lock:
            if not self._running:
                return

            self._running = False
            self._paused = False
            for task in self._tasks.values():
                self._disarm(task)
            self._tasks.clear()
            self._restart_trigger.cancel()

            if self._remove_listener is not None:
                self._remove_listener()
                self._remove_listener = None

            self._slot_released.notify_all()

        logger.info("Polling scheduler stopped")

    def shutdown(self, wait: bool = True) -> None:
        """Stop polling and shut the APScheduler backend down."""
        self.stop()
        if self._backend.running:
            self._backend.shutdown(wait=wait)

    def restart(self) -> None:
        logger.info("Restarting polling scheduler")
        self.stop()
        self.start()

    def request_restart(self) -> None:
        """Schedule a debounced restart; requests within the window coalesce."""
        with self._lock:
            if not self._running:
                return
        self._restart_trigger.fire()

    @property
    def restart_pending(self) -> bool:
        return self._restart_trigger.pending

    def pause(self) -> None:
        """Cancel all timers but keep the tasks."""
        with self._lock:
            if not self._running or self._paused:
                return
            self._paused = True
            for task in self._tasks.values():
                self._disarm(task)
            self._slot_released.notify_all()

        logger.warning("Polling paused")

    def resume(self) -> None:
        """Resume after pause(), rebuilding the schedule from current configuration."""
        with self._lock:
            if not self._running or not self._paused:
                return

        logger.info("Resuming polling")
        self.restart()

    # --- Task construction ---

    def _load_tasks(self) -> list[PollingTask]:
        subscriptions = self.subscription_provider.get_subscriptions()
        tasks = []

        for system_id in self.systems_provider.list_connected_system_ids():
            enabled = {
                title: config for title, config in subscriptions.get(system_id, {}).items() if config.enabled
            }
            if not enabled:
                continue

            try:
                catalog = {feed.title: feed for feed in self.fetcher.list_available_feeds(system_id)}
            except Exception as e:
                # Tasks are still created; their polls fail and back off normally.
                logger.warning(f"Could not load feed catalog of {system_id}: {e}")
                catalog = {}

            for feed_title, config in enabled.items():
                metadata = catalog.get(feed_title)
                if metadata is not None:
                    feed_path, feed_type = metadata.feed_path, metadata.feed_type
                else:
                    state = self.entry_store.get_feed_state(system_id, feed_title)
                    feed_path = state.feed_path if state else ""
                    feed_type = determine_feed_type(feed_path)

                tasks.append(
                    PollingTask(
                        system_id=system_id,
                        feed_title=feed_title,
                        feed_path=feed_path,
                        config=config,
                        feed_type=feed_type,
                    )
                )

        return tasks

    # --- Timers ---

    def _arm(self, task: PollingTask, delay_seconds: float) -> None:
        """Arm the task's one-shot timer. Caller holds the lock."""
        task.next_poll_time = self.clock() + delay_seconds
        task.phase = TaskPhase.WAITING
        task.timer_job_id = task.job_id

        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self._backend.add_job(
            func=self._run_task,
            trigger=DateTrigger(run_date=run_date),
            args=[task.key, task.generation],
            id=task.job_id,
            name=f"Poll {task.key}",
            replace_existing=True,
            misfire_grace_time=None,
            max_instances=1,
        )

    def _disarm(self, task: PollingTask) -> None:
        """Cancel the task's timer if armed. Caller holds the lock."""
        if task.timer_job_id is not None:
            try:
                self._backend.remove_job(task.timer_job_id)
            except JobLookupError:
                pass
            task.timer_job_id = None
        if task.phase is TaskPhase.WAITING:
            task.phase = TaskPhase.IDLE

    def _run_task(self, key: str, generation: int) -> None:
        """Timer callback."""
        with self._lock:
            task = self._tasks.get(key)
            if task is None or task.generation != generation:
                logger.debug(f"Ignoring stale timer for {key}")
                return
            task.timer_job_id = None

        self.execute_poll(task)

    # --- Polling ---

    def execute_poll(self, task: PollingTask) -> PollResult:
        """Run one poll cycle for a task.

        Waits for a free slot under the global concurrency ceiling. Never
        raises: failures are recorded on the feed state. Afterwards the task
        is re-armed if it is still registered and polling is active. When a
        restart replaced the task while it was polling, the replacement is
        armed instead if its own timer already fired.
        """
        with self._lock:
            if not self._running or self._paused:
                return PollResult(task_key=task.key, success=False, skipped=True)
            if task.key in self._purged:
                logger.debug(f"Subscription {task.key} was removed, skipping")
                return PollResult(task_key=task.key, success=False, skipped=True)
            if task.is_polling or task.key in self._in_flight:
                logger.debug(f"Poll of {task.key} already in flight, skipping")
                if not task.is_polling and task.timer_job_id is None:
                    # re-armed by the in-flight poll when it finishes
                    task.phase = TaskPhase.IDLE
                return PollResult(task_key=task.key, success=False, skipped=True)

            self._in_flight.add(task.key)
            while self._current_polls >= self.polling_config.max_concurrent_polls:
                self._slot_released.wait(timeout=self.polling_config.slot_wait_seconds)
                if not self._running or self._paused:
                    self._in_flight.discard(task.key)
                    return PollResult(task_key=task.key, success=False, skipped=True)

            self._current_polls += 1
            task.phase = TaskPhase.RUNNING

        try:
            result = self._poll(task)
        finally:
            with self._lock:
                self._current_polls -= 1
                self._in_flight.discard(task.key)
                task.phase = TaskPhase.IDLE
                self._slot_released.notify_all()

                purge = task.key in self._purged
                registered = self._tasks.get(task.key)
                if self._running and not self._paused and registered is not None and not purge:
                    if registered is task:
                        self._arm(task, task.effective_interval_seconds)
                    elif registered.timer_job_id is None and not registered.is_polling:
                        self._arm(registered, 0)

            if purge:
                self.entry_store.remove_feed(task.system_id, task.feed_title)

        return result

    def _poll(self, task: PollingTask) -> PollResult:
        now_millis = int(self.clock() * 1000)

        try:
            metadata = self._resolve_feed(task)
        except FeedNotFoundError:
            if self.entry_store.mark_feed_unavailable(task.system_id, task.feed_title):
                logger.warning(f"Feed {task.key} is no longer available")
                self._dispatch(self.dispatcher.notify_feed_unavailable, task.system_id, task.feed_title)
            return PollResult(task_key=task.key, success=False, skipped=True, error="Feed not available")
        except Exception as e:
            return self._record_failure(task, e, now_millis)

        try:
            query = task.config.effective_query or metadata.default_query
            payload = self.fetcher.fetch(task.system_id, task.feed_path, query)
            entries = parse_feed_response(
                payload, task.system_id, task.feed_title, task.feed_path, task.feed_type
            )

            state = self.entry_store.get_feed_state(task.system_id, task.feed_title)
            new_entries = filter_new_entries(
                entries,
                state.last_seen_entry_id if state else None,
                self.entry_store.has_entries(task.system_id, task.feed_title),
            )

            if entries:
                self.entry_store.add_feed_entries(task.system_id, task.feed_title, entries)
                self.entry_store.update_last_seen(task.system_id, task.feed_title, entries[0].id)
        except Exception as e:
            return self._record_failure(task, e, now_millis)

        if entries and self._on_entries_changed is not None:
            self._dispatch(self._on_entries_changed)

        if new_entries:
            logger.info(f"{len(new_entries)} new entries on {task.key}")
            if task.config.notifications_enabled:
                self._dispatch(self.dispatcher.notify_new_entries, task, new_entries)

        self.entry_store.record_success(task.system_id, task.feed_title, task.feed_path, now_millis)
        task.effective_interval_seconds = task.config.polling_interval_seconds

        return PollResult(
            task_key=task.key,
            success=True,
            fetched=len(entries),
            new_entries=new_entries,
        )

    def _resolve_feed(self, task: PollingTask) -> FeedMetadata:
        """Look the task's feed up in its system's catalog.

        Raises:
            FeedNotFoundError: If the catalog no longer lists the feed
        """
        for feed in self.fetcher.list_available_feeds(task.system_id):
            if feed.title == task.feed_title:
                if feed.feed_path != task.feed_path:
                    task.feed_path = feed.feed_path
                    task.feed_type = feed.feed_type
                return feed

        raise FeedNotFoundError(f"{task.feed_title} not in catalog of {task.system_id}", system_id=task.system_id)

    def _record_failure(self, task: PollingTask, error: Exception, now_millis: int) -> PollResult:
        message = str(error) or type(error).__name__
        error_count = self.entry_store.record_failure(task.system_id, task.feed_title, message, now_millis)
        task.effective_interval_seconds = self.backoff.interval(task.config.polling_interval_seconds, error_count)

        if isinstance(error, FetchError):
            logger.warning(
                f"Polling {task.key} failed ({error_count} in a row, next in "
                f"{task.effective_interval_seconds}s): {message}"
            )
        else:
            logger.opt(exception=error).error(f"Unexpected error polling {task.key}: {message}")

        if self.throttle.should_notify(task.system_id, error_count, self.clock()):
            self._dispatch(self.dispatcher.notify_system_unreachable, task.system_id, error_count, message)

        return PollResult(task_key=task.key, success=False, error=message, error_count=error_count)

    def _dispatch(self, action: Callable, *args) -> None:
        """Invoke a notification or callback; its failures never affect polling."""
        try:
            action(*args)
        except Exception as e:
            logger.error(f"{getattr(action, '__name__', 'callback')} failed: {e}")

    # --- Events ---

    def _on_subscriptions_changed(self, diff: SubscriptionDiff) -> None:
        with self._lock:
            if not self._running:
                return
            for task in self._tasks.values():
                self._disarm(task)
            self._purged.update(state_key(system_id, feed_title) for system_id, feed_title in diff.removed)

        for system_id, feed_title in diff.removed:
            self.entry_store.remove_feed(system_id, feed_title)

        self.request_restart()
        logger.info("Subscriptions changed, restart scheduled")

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        if event.exception:
            logger.error(f"Job {event.job_id} failed: {type(event.exception).__name__}: {event.exception}")
