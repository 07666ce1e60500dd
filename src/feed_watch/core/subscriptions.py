"""
Subscription and connected-system sources.

Subscriptions are nested mappings `{system_id: {feed_title: FeedSubscriptionConfig}}`.
Providers notify listeners with a SubscriptionDiff whenever the mapping
actually changes.

The YAML feeds file looks like:

    systems:
      DEV:
        base_url: https://dev.example.com:44300
      QAS:
        base_url: https://qas.example.com:44300
        enabled: false
    subscriptions:
      DEV:
        Runtime Errors:
          polling_interval_seconds: 300
        ATC Findings:
          polling_interval_seconds: 3600
          notifications_enabled: false
"""

import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from pydantic import ValidationError

from feed_watch.errors import ConfigurationError
from feed_watch.logger import get_logger
from feed_watch.models import FeedSubscriptionConfig

logger = get_logger(__name__)

Subscriptions = dict[str, dict[str, FeedSubscriptionConfig]]
FeedRef = tuple[str, str]


@dataclass
class SubscriptionDiff:
    """Difference between two subscription mappings, as (system_id, feed_title) pairs."""

    added: list[FeedRef] = field(default_factory=list)
    removed: list[FeedRef] = field(default_factory=list)
    changed: list[FeedRef] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def _flatten(subscriptions: Subscriptions) -> dict[FeedRef, FeedSubscriptionConfig]:
    return {
        (system_id, feed_title): config
        for system_id, feeds in subscriptions.items()
        for feed_title, config in feeds.items()
    }


def diff_subscriptions(old: Subscriptions, new: Subscriptions) -> SubscriptionDiff:
    """Compare two subscription mappings."""
    old_flat = _flatten(old)
    new_flat = _flatten(new)

    return SubscriptionDiff(
        added=sorted(ref for ref in new_flat if ref not in old_flat),
        removed=sorted(ref for ref in old_flat if ref not in new_flat),
        changed=sorted(ref for ref in new_flat if ref in old_flat and new_flat[ref] != old_flat[ref]),
    )


class SubscriptionProvider(ABC):
    """Source of per-system feed subscriptions with change notification."""

    def __init__(self):
        self._listeners: list[Callable[[SubscriptionDiff], None]] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def get_subscriptions(self) -> Subscriptions:
        """Current subscriptions, keyed by system then feed title."""

    def add_listener(self, callback: Callable[[SubscriptionDiff], None]) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Function that removes the listener again
        """
        with self._listeners_lock:
            self._listeners.append(callback)

        def remove() -> None:
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return remove

    @property
    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def _emit(self, diff: SubscriptionDiff) -> None:
        if diff.is_empty:
            return
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(diff)


class ConnectedSystemsProvider(ABC):
    """Source of the systems that should be polled."""

    @abstractmethod
    def list_connected_system_ids(self) -> list[str]:
        """Ids of the currently connected systems."""


class StaticSubscriptionProvider(SubscriptionProvider):
    """In-memory subscriptions, replaced wholesale by set_subscriptions()."""

    def __init__(self, subscriptions: Optional[Subscriptions] = None):
        super().__init__()
        self._subscriptions: Subscriptions = _copy(subscriptions or {})
        self._lock = threading.Lock()

    def get_subscriptions(self) -> Subscriptions:
        with self._lock:
            return _copy(self._subscriptions)

    def set_subscriptions(self, subscriptions: Subscriptions) -> SubscriptionDiff:
        with self._lock:
            diff = diff_subscriptions(self._subscriptions, subscriptions)
            self._subscriptions = _copy(subscriptions)
        self._emit(diff)
        return diff


class StaticSystemsProvider(ConnectedSystemsProvider):
    def __init__(self, system_ids: Optional[list[str]] = None):
        self.system_ids = list(system_ids or [])

    def list_connected_system_ids(self) -> list[str]:
        return list(self.system_ids)


def _copy(subscriptions: Subscriptions) -> Subscriptions:
    return {system_id: dict(feeds) for system_id, feeds in subscriptions.items()}


def _parse_subscriptions(raw: Any, path: Path) -> Subscriptions:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path}: 'subscriptions' must be a mapping")

    subscriptions: Subscriptions = {}
    for system_id, feeds in raw.items():
        if not isinstance(feeds, dict):
            raise ConfigurationError(f"{path}: subscriptions of {system_id} must be a mapping")
        parsed = {}
        for feed_title, settings in feeds.items():
            try:
                parsed[str(feed_title)] = FeedSubscriptionConfig(**(settings or {}))
            except (ValidationError, TypeError) as e:
                raise ConfigurationError(f"{path}: invalid subscription {system_id}/{feed_title}: {e}") from e
        subscriptions[str(system_id)] = parsed
    return subscriptions


def _parse_systems(raw: Any, path: Path) -> dict[str, dict]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path}: 'systems' must be a mapping")

    systems = {}
    for system_id, settings in raw.items():
        settings = settings or {}
        if not isinstance(settings, dict) or not settings.get("base_url"):
            raise ConfigurationError(f"{path}: system {system_id} needs a base_url")
        systems[str(system_id)] = {
            "base_url": str(settings["base_url"]),
            "enabled": bool(settings.get("enabled", True)),
        }
    return systems


class FeedsFile:
    """Parsed feeds file, re-read when its modification time changes."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._mtime: Optional[float] = None
        self._lock = threading.Lock()
        self.systems: dict[str, dict] = {}
        self.subscriptions: Subscriptions = {}
        self.reload()

    def reload(self) -> None:
        """Read the file, raising ConfigurationError if it is unusable."""
        if not self.path.exists():
            raise ConfigurationError(f"Feeds file not found: {self.path}")

        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{self.path}: top level must be a mapping")

        systems = _parse_systems(data.get("systems"), self.path)
        subscriptions = _parse_subscriptions(data.get("subscriptions"), self.path)

        with self._lock:
            self.systems = systems
            self.subscriptions = subscriptions
            self._mtime = os.path.getmtime(self.path)

    def is_modified(self) -> bool:
        try:
            return os.path.getmtime(self.path) != self._mtime
        except OSError:
            return False


class YamlSubscriptionProvider(SubscriptionProvider):
    """Subscriptions from the `subscriptions:` section of a feeds file."""

    def __init__(self, feeds_file: FeedsFile):
        super().__init__()
        self.feeds_file = feeds_file
        self._subscriptions = _copy(feeds_file.subscriptions)
        self._lock = threading.Lock()

    def get_subscriptions(self) -> Subscriptions:
        with self._lock:
            return _copy(self._subscriptions)

    def check_for_changes(self) -> Optional[SubscriptionDiff]:
        """Re-read the feeds file if it changed and notify listeners.

        A file that fails to parse is reported and the previous
        subscriptions stay in effect.

        Returns:
            The diff if the file was re-read, else None
        """
        if not self.feeds_file.is_modified():
            return None

        try:
            self.feeds_file.reload()
        except ConfigurationError as e:
            logger.error(f"Ignoring edited feeds file: {e}")
            return None

        with self._lock:
            diff = diff_subscriptions(self._subscriptions, self.feeds_file.subscriptions)
            self._subscriptions = _copy(self.feeds_file.subscriptions)

        if not diff.is_empty:
            logger.info(
                f"Subscriptions changed: {len(diff.added)} added, "
                f"{len(diff.removed)} removed, {len(diff.changed)} changed"
            )
        self._emit(diff)
        return diff


class YamlSystemsProvider(ConnectedSystemsProvider):
    """Enabled systems from the `systems:` section of a feeds file."""

    def __init__(self, feeds_file: FeedsFile):
        self.feeds_file = feeds_file

    def list_connected_system_ids(self) -> list[str]:
        return [system_id for system_id, settings in self.feeds_file.systems.items() if settings["enabled"]]

    def base_urls(self) -> dict[str, str]:
        return {system_id: settings["base_url"] for system_id, settings in self.feeds_file.systems.items()}
