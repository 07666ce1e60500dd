"""Shared fixtures for feed-watch tests."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

import feed_watch.config as config_module
from feed_watch.config import PollingConfig
from feed_watch.core.fetcher import FeedFetcher
from feed_watch.core.notifier import NotificationDispatcher
from feed_watch.core.parser import determine_feed_type
from feed_watch.core.scheduler import PollingScheduler
from feed_watch.core.subscriptions import StaticSubscriptionProvider, StaticSystemsProvider
from feed_watch.errors import FetchError
from feed_watch.models import FeedMetadata, FeedSubscriptionConfig
from feed_watch.storage.entry_store import EntryStore
from feed_watch.storage.kv_store import MemoryKeyValueStore

BASE_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def raw_entry(entry_id: str, minutes_ago: int = 0, title: Optional[str] = None, **extra) -> dict:
    """A raw feed entry shaped like feedparser output."""
    entry = {
        "id": entry_id,
        "title": title or f"Entry {entry_id}",
        "updated": (BASE_TIME - timedelta(minutes=minutes_ago)).isoformat(),
        "summary": f"Summary of {entry_id}",
    }
    entry.update(extra)
    return entry


class ManualClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher(FeedFetcher):
    """In-memory catalogs and payloads.

    `payloads` values may be exceptions, which are raised by fetch(). When
    `gate` is set, fetch() blocks until it is released.
    """

    def __init__(self):
        self.catalogs: dict[str, list[FeedMetadata]] = {}
        self.catalog_errors: dict[str, Exception] = {}
        self.payloads: dict[tuple[str, str], Any] = {}
        self.fetch_calls: list[tuple[str, str, Optional[str]]] = []
        self.gate: Optional[threading.Event] = None
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def add_feed(self, system_id: str, title: str, feed_path: str, payload: Any = None, default_query=None):
        self.catalogs.setdefault(system_id, []).append(
            FeedMetadata(
                title=title,
                feed_path=feed_path,
                feed_type=determine_feed_type(feed_path),
                default_query=default_query,
            )
        )
        self.payloads[(system_id, feed_path)] = payload if payload is not None else []

    def remove_feed(self, system_id: str, title: str) -> None:
        self.catalogs[system_id] = [f for f in self.catalogs.get(system_id, []) if f.title != title]

    def list_available_feeds(self, system_id: str) -> list[FeedMetadata]:
        if system_id in self.catalog_errors:
            raise self.catalog_errors[system_id]
        return list(self.catalogs.get(system_id, []))

    def fetch(self, system_id: str, feed_path: str, query: Optional[str] = None) -> Any:
        with self._lock:
            self.fetch_calls.append((system_id, feed_path, query))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            payload = self.payloads.get((system_id, feed_path))
            if isinstance(payload, Exception):
                raise payload
            if payload is None:
                raise FetchError(f"No payload for {feed_path}", system_id=system_id)
            return payload
        finally:
            with self._lock:
                self.active -= 1


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.new_entries: list[tuple[str, list]] = []
        self.unavailable: list[tuple[str, str]] = []
        self.unreachable: list[tuple[str, int, Optional[str]]] = []
        self.paused: list = []
        self.resumed = 0

    def notify_new_entries(self, task, entries) -> None:
        self.new_entries.append((task.key, list(entries)))

    def notify_feed_unavailable(self, system_id, feed_title) -> None:
        self.unavailable.append((system_id, feed_title))

    def notify_system_unreachable(self, system_id, error_count, last_error) -> None:
        self.unreachable.append((system_id, error_count, last_error))

    def notify_polling_paused(self, resume_callback) -> None:
        self.paused.append(resume_callback)

    def notify_polling_resumed(self) -> None:
        self.resumed += 1


@pytest.fixture(autouse=True)
def reset_config():
    """Drop the global configuration after each test."""
    yield
    config_module._config = None


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def entry_store(kv_store):
    return EntryStore(kv_store)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def paused_backend():
    """APScheduler backend that accepts jobs but never runs them."""
    backend = BackgroundScheduler(timezone="UTC")
    backend.start(paused=True)
    yield backend
    if backend.running:
        backend.shutdown(wait=False)


@pytest.fixture
def polling_config():
    return PollingConfig(
        max_concurrent_polls=5,
        slot_wait_seconds=0.05,
        stagger_delay_seconds=5.0,
        restart_debounce_seconds=2.0,
    )


@pytest.fixture
def subscriptions():
    return StaticSubscriptionProvider()


@pytest.fixture
def systems():
    return StaticSystemsProvider(["DEV"])


@pytest.fixture
def make_scheduler(subscriptions, systems, fetcher, entry_store, dispatcher, paused_backend, polling_config, clock):
    """Build a PollingScheduler over the fake collaborators."""
    created = []

    def _make(**overrides) -> PollingScheduler:
        kwargs = dict(
            subscription_provider=subscriptions,
            systems_provider=systems,
            fetcher=fetcher,
            entry_store=entry_store,
            dispatcher=dispatcher,
            backend=paused_backend,
            polling_config=polling_config,
            clock=clock,
        )
        kwargs.update(overrides)
        scheduler = PollingScheduler(**kwargs)
        created.append(scheduler)
        return scheduler

    yield _make

    for scheduler in created:
        scheduler.stop()


def subscribe(provider: StaticSubscriptionProvider, system_id: str, feed_title: str, **settings) -> None:
    """Add one subscription to a static provider."""
    current = provider.get_subscriptions()
    current.setdefault(system_id, {})[feed_title] = FeedSubscriptionConfig(**settings)
    provider.set_subscriptions(current)


@pytest.fixture
def make_entry():
    """Factory for raw feed entries."""
    return raw_entry


@pytest.fixture
def add_subscription(subscriptions):
    """Subscribe a feed on the static provider."""

    def _add(system_id: str, feed_title: str, **settings) -> None:
        subscribe(subscriptions, system_id, feed_title, **settings)

    return _add
