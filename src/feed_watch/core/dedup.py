"""
New-entry detection against the last seen entry of a feed.
"""

from typing import Optional

from feed_watch.models import FeedEntry


def filter_new_entries(
    entries: list[FeedEntry],
    last_seen_entry_id: Optional[str],
    has_existing_entries: bool,
) -> list[FeedEntry]:
    """Return the entries that were not seen before.

    `entries` must be ordered newest first. Everything above the watermark
    entry is new. Without stored entries, without a watermark, or when the
    watermark fell out of the fetched window, every entry counts as new.

    Args:
        entries: Fetched entries, newest first
        last_seen_entry_id: Id of the newest entry of the previous poll
        has_existing_entries: Whether the feed already has stored entries

    Returns:
        New entries, newest first
    """
    if not has_existing_entries or not last_seen_entry_id:
        return list(entries)

    for index, entry in enumerate(entries):
        if entry.id == last_seen_entry_id:
            return list(entries[:index])

    return list(entries)
