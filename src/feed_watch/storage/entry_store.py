"""
Persisted feed state and deduplicated entry collections.

EntryStore is the only writer of FeedState and FeedEntry records. It keeps
an in-memory copy of everything and mirrors each change into a
KeyValueStore as JSON documents:

    feed_state:<system>|<feed>    -> FeedState
    feed_entries:<system>|<feed>  -> [FeedEntry, ...] newest first

Writes that fail stay queued and are retried with the next write or an
explicit flush(), so a lost watermark update is retried on the next poll.
"""

import json
import threading
from typing import Optional

from feed_watch.errors import PersistenceError
from feed_watch.logger import get_logger
from feed_watch.models import EntryStatistics, FeedEntry, FeedState, state_key
from feed_watch.storage.kv_store import KeyValueStore

logger = get_logger(__name__)

STATE_PREFIX = "feed_state:"
ENTRIES_PREFIX = "feed_entries:"


def _newest_first(entries: list[FeedEntry]) -> list[FeedEntry]:
    return sorted(entries, key=lambda e: e.timestamp, reverse=True)


class EntryStore:
    """Feed state and entry persistence."""

    def __init__(self, kv_store: KeyValueStore, load: bool = True):
        """Initialize entry store.

        Args:
            kv_store: Backing key-value store
            load: Load previously persisted state immediately
        """
        self.kv_store = kv_store
        self._states: dict[str, FeedState] = {}
        self._entries: dict[str, list[FeedEntry]] = {}
        self._dirty: set[str] = set()
        self._lock = threading.RLock()

        if load:
            self.load()

    # --- Persistence ---

    def load(self) -> None:
        """Load all feed states and entries from the key-value store."""
        with self._lock:
            self._states.clear()
            self._entries.clear()

            try:
                for kv_key in self.kv_store.keys(STATE_PREFIX):
                    raw = self.kv_store.get(kv_key)
                    if raw is None:
                        continue
                    state = FeedState.model_validate_json(raw)
                    self._states[state.key] = state

                for kv_key in self.kv_store.keys(ENTRIES_PREFIX):
                    raw = self.kv_store.get(kv_key)
                    if raw is None:
                        continue
                    entries = [FeedEntry.model_validate(item) for item in json.loads(raw)]
                    self._entries[kv_key[len(ENTRIES_PREFIX):]] = _newest_first(entries)
            except (PersistenceError, ValueError) as e:
                logger.error(f"Failed to load stored feed data, starting empty: {e}")
                self._states.clear()
                self._entries.clear()
                return

            total = sum(len(entries) for entries in self._entries.values())
            logger.info(f"Loaded {len(self._states)} feed states and {total} entries")

    @property
    def pending_writes(self) -> int:
        """Number of keys whose last change has not reached the store yet."""
        with self._lock:
            return len(self._dirty)

    def flush(self) -> bool:
        """Write every pending change to the key-value store.

        Returns:
            True if nothing is left pending
        """
        with self._lock:
            for kv_key in sorted(self._dirty):
                try:
                    payload = self._serialize(kv_key)
                    if payload is None:
                        self.kv_store.delete(kv_key)
                    else:
                        self.kv_store.set(kv_key, payload)
                except PersistenceError as e:
                    logger.error(f"Persisting {kv_key} failed, will retry on next write: {e}")
                    continue
                self._dirty.discard(kv_key)
            return not self._dirty

    def _serialize(self, kv_key: str) -> Optional[bytes]:
        if kv_key.startswith(STATE_PREFIX):
            state = self._states.get(kv_key[len(STATE_PREFIX):])
            return state.model_dump_json().encode("utf-8") if state else None

        entries = self._entries.get(kv_key[len(ENTRIES_PREFIX):])
        if entries is None:
            return None
        return json.dumps([e.model_dump(mode="json") for e in entries]).encode("utf-8")

    def _save_state(self, key: str) -> None:
        self._dirty.add(STATE_PREFIX + key)
        self.flush()

    def _save_entries(self, key: str) -> None:
        self._dirty.add(ENTRIES_PREFIX + key)
        self.flush()

    # --- Feed state ---

    def get_feed_state(self, system_id: str, feed_title: str) -> Optional[FeedState]:
        """Get a copy of the feed's state, None if it was never polled."""
        with self._lock:
            state = self._states.get(state_key(system_id, feed_title))
            return state.model_copy() if state else None

    def get_feed_states(self) -> list[FeedState]:
        with self._lock:
            return [state.model_copy() for state in self._states.values()]

    def update_feed_state(self, system_id: str, feed_title: str, **changes) -> FeedState:
        """Apply field changes to a feed's state, creating it if needed."""
        with self._lock:
            key = state_key(system_id, feed_title)
            existing = self._states.get(key) or FeedState(system_id=system_id, feed_title=feed_title)
            updated = existing.model_copy(update=changes)
            self._states[key] = updated
            self._save_state(key)
            return updated.model_copy()

    def update_last_poll(self, system_id: str, feed_title: str, poll_time_millis: int) -> None:
        self.update_feed_state(system_id, feed_title, last_poll_time_millis=poll_time_millis)

    def update_last_seen(self, system_id: str, feed_title: str, entry_id: str) -> None:
        self.update_feed_state(system_id, feed_title, last_seen_entry_id=entry_id)

    def increment_error_count(self, system_id: str, feed_title: str, error: str) -> int:
        """Count one more consecutive failure and return the new count."""
        with self._lock:
            state = self._states.get(state_key(system_id, feed_title))
            error_count = (state.error_count if state else 0) + 1
            self.update_feed_state(system_id, feed_title, error_count=error_count, last_error=error)
            return error_count

    def reset_error_count(self, system_id: str, feed_title: str) -> None:
        self.update_feed_state(system_id, feed_title, error_count=0, last_error=None)

    def mark_feed_unavailable(self, system_id: str, feed_title: str) -> bool:
        """Mark a feed as gone from its catalog.

        Returns:
            True only when the feed was considered available before
        """
        with self._lock:
            state = self._states.get(state_key(system_id, feed_title))
            if state is not None and not state.is_available:
                return False
            self.update_feed_state(system_id, feed_title, is_available=False)
            return True

    def mark_feed_available(self, system_id: str, feed_title: str) -> None:
        self.update_feed_state(system_id, feed_title, is_available=True)

    def record_success(self, system_id: str, feed_title: str, feed_path: str, poll_time_millis: int) -> FeedState:
        """Record a successful poll: time, zero errors, available."""
        return self.update_feed_state(
            system_id,
            feed_title,
            feed_path=feed_path,
            last_poll_time_millis=poll_time_millis,
            error_count=0,
            last_error=None,
            is_available=True,
        )

    def record_failure(self, system_id: str, feed_title: str, error: str, poll_time_millis: int) -> int:
        """Record a failed poll and return the consecutive error count."""
        with self._lock:
            self.update_last_poll(system_id, feed_title, poll_time_millis)
            return self.increment_error_count(system_id, feed_title, error)

    # --- Entries ---

    def get_feed_entries(self, system_id: str, feed_title: str) -> list[FeedEntry]:
        with self._lock:
            return [e.model_copy() for e in self._entries.get(state_key(system_id, feed_title), [])]

    def has_entries(self, system_id: str, feed_title: str) -> bool:
        with self._lock:
            return bool(self._entries.get(state_key(system_id, feed_title)))

    def get_all_feed_entries(self) -> list[FeedEntry]:
        """All entries of all feeds, newest first."""
        with self._lock:
            everything = [e.model_copy() for entries in self._entries.values() for e in entries]
        return _newest_first(everything)

    def get_unread_entries(self, system_id: str, feed_title: str) -> list[FeedEntry]:
        return [e for e in self.get_feed_entries(system_id, feed_title) if not e.is_read]

    def get_all_unread_entries(self) -> list[FeedEntry]:
        return [e for e in self.get_all_feed_entries() if not e.is_read]

    def add_feed_entries(self, system_id: str, feed_title: str, entries: list[FeedEntry]) -> int:
        """Merge fetched entries into the feed's collection.

        Entries already stored keep their stored copy (and read flags).

        Returns:
            Number of entries that were not stored before
        """
        with self._lock:
            key = state_key(system_id, feed_title)
            merged = {e.id: e for e in self._entries.get(key, [])}
            added = 0
            for entry in entries:
                if entry.id not in merged:
                    merged[entry.id] = entry.model_copy()
                    added += 1

            self._entries[key] = _newest_first(list(merged.values()))
            self._save_entries(key)

        logger.debug(f"Stored {added} of {len(entries)} fetched entries for {key}")
        return added

    def mark_as_read(self, system_id: str, feed_title: str, entry_id: str) -> bool:
        with self._lock:
            key = state_key(system_id, feed_title)
            for entry in self._entries.get(key, []):
                if entry.id == entry_id:
                    entry.is_read = True
                    entry.is_new = False
                    self._save_entries(key)
                    return True
            return False

    def mark_all_as_read(self, system_id: str, feed_title: str) -> int:
        with self._lock:
            key = state_key(system_id, feed_title)
            return self._mark_read(key)

    def mark_all_entries_as_read(self) -> int:
        with self._lock:
            return sum(self._mark_read(key) for key in list(self._entries))

    def _mark_read(self, key: str) -> int:
        changed = 0
        for entry in self._entries.get(key, []):
            if not entry.is_read or entry.is_new:
                entry.is_read = True
                entry.is_new = False
                changed += 1
        if changed:
            self._save_entries(key)
        return changed

    def remove_entry(self, system_id: str, feed_title: str, entry_id: str) -> bool:
        with self._lock:
            key = state_key(system_id, feed_title)
            entries = self._entries.get(key, [])
            remaining = [e for e in entries if e.id != entry_id]
            if len(remaining) == len(entries):
                return False
            self._entries[key] = remaining
            self._save_entries(key)
            return True

    def clear_feed_entries(self, system_id: str, feed_title: str) -> None:
        with self._lock:
            key = state_key(system_id, feed_title)
            if self._entries.pop(key, None) is not None:
                self._save_entries(key)

    def clear_all_entries(self) -> None:
        with self._lock:
            keys = list(self._entries)
            self._entries.clear()
            for key in keys:
                self._dirty.add(ENTRIES_PREFIX + key)
            self.flush()

    def remove_feed(self, system_id: str, feed_title: str) -> None:
        """Forget a feed entirely (its subscription was removed)."""
        with self._lock:
            key = state_key(system_id, feed_title)
            self._states.pop(key, None)
            self._entries.pop(key, None)
            self._dirty.add(STATE_PREFIX + key)
            self._dirty.add(ENTRIES_PREFIX + key)
            self.flush()
        logger.info(f"Removed stored state for {key}")

    def is_new_entry(self, system_id: str, feed_title: str, entry_id: str) -> bool:
        state = self.get_feed_state(system_id, feed_title)
        if state is None:
            return True
        return state.last_seen_entry_id != entry_id

    # --- Statistics ---

    def get_statistics(self) -> EntryStatistics:
        return self._count(self.get_all_feed_entries())

    def get_feed_statistics(self, system_id: str, feed_title: str) -> EntryStatistics:
        return self._count(self.get_feed_entries(system_id, feed_title))

    @staticmethod
    def _count(entries: list[FeedEntry]) -> EntryStatistics:
        return EntryStatistics(
            total_entries=len(entries),
            unread_entries=sum(1 for e in entries if not e.is_read),
            new_entries=sum(1 for e in entries if e.is_new),
        )
