"""
Feed subscription, catalog and state models.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_POLL_INTERVAL = 120  # 2 minutes
MAX_POLL_INTERVAL = 86400  # 24 hours
DEFAULT_POLL_INTERVAL = 300


def clamp_polling_interval(seconds: int) -> int:
    """Clamp a polling interval into [MIN_POLL_INTERVAL, MAX_POLL_INTERVAL]."""
    if seconds < MIN_POLL_INTERVAL:
        return MIN_POLL_INTERVAL
    if seconds > MAX_POLL_INTERVAL:
        return MAX_POLL_INTERVAL
    return seconds


def state_key(system_id: str, feed_title: str) -> str:
    """Key identifying one (system, feed) pair."""
    return f"{system_id}|{feed_title}"


class FeedType(str, Enum):
    """Kinds of feeds a remote system publishes."""

    DUMPS = "dumps"
    ATC = "atc"
    GATEWAY_ERROR = "gateway_error"
    SYSTEM_MESSAGES = "system_messages"
    URI_ERRORS = "uri_errors"
    RAP_CONTRACT = "rap_contract"
    EEE_ERROR = "eee_error"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity of a feed entry."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FeedSubscriptionConfig(BaseModel):
    """Subscription settings for one feed of one system."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(True, description="Whether the feed is polled")
    polling_interval_seconds: int = Field(
        DEFAULT_POLL_INTERVAL, description="Polling interval, clamped to 120..86400 seconds"
    )
    notifications_enabled: bool = Field(True, description="Notify about new entries")
    query: Optional[str] = Field(None, description="Custom feed query")
    use_default_query: bool = Field(True, description="Ignore `query` and use the feed's default")

    @field_validator("polling_interval_seconds")
    @classmethod
    def clamp_interval(cls, v: int) -> int:
        """Clamp the interval into the supported range."""
        return clamp_polling_interval(v)

    @property
    def effective_query(self) -> Optional[str]:
        """Query to send with each fetch, None for the feed default."""
        if self.use_default_query:
            return None
        return self.query or None


class FeedMetadata(BaseModel):
    """A feed as advertised in a system's catalog."""

    title: str
    feed_path: str
    feed_type: FeedType = FeedType.UNKNOWN
    default_query: Optional[str] = None


class FeedState(BaseModel):
    """Persisted polling state of one feed."""

    system_id: str
    feed_title: str
    feed_path: str = ""
    last_poll_time_millis: int = 0
    last_seen_entry_id: str = ""
    error_count: int = Field(0, ge=0)
    last_error: Optional[str] = None
    is_available: bool = True

    @property
    def key(self) -> str:
        return state_key(self.system_id, self.feed_title)
