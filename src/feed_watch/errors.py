"""Exception types shared across feed-watch modules."""

from typing import Optional


class FeedWatchError(Exception):
    """Base class for all feed-watch errors."""


class ConfigurationError(FeedWatchError):
    """Raised when the feeds file or settings cannot be used."""


class FetchError(FeedWatchError):
    """Raised by a feed fetcher when a catalog or feed request fails.

    Attributes:
        system_id: System the request was addressed to.
        status_code: HTTP status, when the failure came from a response.
    """

    def __init__(self, message: str, system_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.system_id = system_id
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """Raised when a request exceeds the configured timeout."""


class FeedNotFoundError(FetchError):
    """Raised when a feed is missing from its system's catalog."""


class PersistenceError(FeedWatchError):
    """Raised by a key-value store when a read or write fails."""


__all__ = [
    "FeedWatchError",
    "ConfigurationError",
    "FetchError",
    "FetchTimeoutError",
    "FeedNotFoundError",
    "PersistenceError",
]
