"""
Feed entry model.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from feed_watch.models.feed import FeedType, Severity


class FeedEntry(BaseModel):
    """A single entry observed on a feed.

    Entries are immutable once persisted except for the `is_new` and
    `is_read` flags.
    """

    id: str
    system_id: str
    feed_title: str
    feed_path: str = ""
    feed_type: FeedType = FeedType.UNKNOWN
    timestamp: datetime
    title: str = "Untitled"
    summary: str = ""
    author: Optional[str] = None
    category: Optional[str] = None
    severity: Severity = Severity.INFO
    is_new: bool = True
    is_read: bool = False
    raw_data: Any = Field(default=None, description="JSON-safe copy of the raw entry")


class EntryStatistics(BaseModel):
    """Entry counters for the inbox."""

    total_entries: int = 0
    unread_entries: int = 0
    new_entries: int = 0
