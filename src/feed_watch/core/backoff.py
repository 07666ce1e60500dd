"""
Exponential backoff for failing feeds and throttling of unreachable notices.
"""

import threading
from dataclasses import dataclass, field
from typing import Optional

from feed_watch.config import BackoffConfig, NotificationConfig
from feed_watch.models import clamp_polling_interval


@dataclass
class BackoffPolicy:
    """Maps a consecutive error count to a polling interval.

    Up to `threshold` errors the configured interval is used unchanged;
    beyond that it grows by `base` per extra error, capped at
    `max_multiplier`.
    """

    threshold: int = 3
    base: int = 2
    max_multiplier: int = 8

    @classmethod
    def from_config(cls, config: BackoffConfig) -> "BackoffPolicy":
        return cls(threshold=config.threshold, base=config.base, max_multiplier=config.max_multiplier)

    def multiplier(self, error_count: int) -> int:
        if error_count <= self.threshold:
            return 1
        # exponent capped for very large error counts
        exponent = min(error_count - self.threshold, 64)
        return min(self.base ** exponent, self.max_multiplier)

    def interval(self, base_interval_seconds: int, error_count: int) -> int:
        """Effective interval, always derived from the clamped base interval."""
        return clamp_polling_interval(base_interval_seconds) * self.multiplier(error_count)


@dataclass
class EscalationThrottle:
    """Decides when a failing system is reported as unreachable.

    A system is reported once its error count reaches `threshold`, then at
    most once per `cooldown_seconds`.
    """

    threshold: int = 5
    cooldown_seconds: float = 3600
    _last_notified: dict[str, float] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "EscalationThrottle":
        return cls(threshold=config.error_threshold, cooldown_seconds=config.error_cooldown_seconds)

    def should_notify(self, system_id: str, error_count: int, now: float) -> bool:
        """Return True and record the notice if the system should be reported now."""
        if error_count < self.threshold:
            return False

        with self._lock:
            last = self._last_notified.get(system_id)
            if last is not None and now - last < self.cooldown_seconds:
                return False
            self._last_notified[system_id] = now
            return True

    def last_notified(self, system_id: str) -> Optional[float]:
        with self._lock:
            return self._last_notified.get(system_id)

    def reset(self) -> None:
        with self._lock:
            self._last_notified.clear()
