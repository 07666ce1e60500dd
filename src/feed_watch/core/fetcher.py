"""
Feed fetchers: catalog discovery and feed retrieval per remote system.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import feedparser
import httpx

from feed_watch.config import get_config
from feed_watch.core.parser import to_feed_metadata
from feed_watch.errors import FetchError, FetchTimeoutError
from feed_watch.logger import get_logger
from feed_watch.models import FeedMetadata

logger = get_logger(__name__)

ATOM_FEED_TYPE = "application/atom+xml;type=feed"


class FeedFetcher(ABC):
    """Source of feed catalogs and feed payloads.

    Implementations raise FetchError (or a subclass) on any failure.
    """

    @abstractmethod
    def list_available_feeds(self, system_id: str) -> list[FeedMetadata]:
        """List the feeds a system currently publishes."""

    @abstractmethod
    def fetch(self, system_id: str, feed_path: str, query: Optional[str] = None) -> Any:
        """Fetch the raw payload of one feed."""


class HttpFeedFetcher(FeedFetcher):
    """Fetches catalogs and Atom feeds over HTTP."""

    def __init__(
        self,
        base_urls: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[int] = None,
        user_agent: Optional[str] = None,
        catalog_path: Optional[str] = None,
    ):
        """Initialize HTTP feed fetcher.

        Args:
            base_urls: Base URL per system id
            timeout_seconds: Request timeout in seconds
            user_agent: User-Agent header for HTTP requests
            catalog_path: Path of the feed catalog on every system
        """
        config = get_config()

        self.base_urls: dict[str, str] = dict(base_urls or {})
        self.timeout_seconds = timeout_seconds or config.fetcher.timeout_seconds
        self.user_agent = user_agent or config.fetcher.user_agent
        self.catalog_path = catalog_path or config.fetcher.catalog_path
        self.follow_redirects = config.fetcher.follow_redirects
        self.verify_ssl = config.fetcher.verify_ssl

    def set_base_urls(self, base_urls: Mapping[str, str]) -> None:
        self.base_urls = dict(base_urls)

    def list_available_feeds(self, system_id: str) -> list[FeedMetadata]:
        response = self._get(system_id, self.catalog_path, accept="application/atom+xml, application/json")

        if "json" in response.headers.get("Content-Type", ""):
            try:
                raw_feeds = response.json()
            except ValueError as e:
                raise FetchError(f"Invalid catalog from {system_id}: {e}", system_id=system_id) from e
            if isinstance(raw_feeds, Mapping):
                raw_feeds = raw_feeds.get("feeds", [])
        else:
            parsed = feedparser.parse(response.content)
            if parsed.bozo and not parsed.entries:
                raise FetchError(f"Invalid catalog from {system_id}: {parsed.get('bozo_exception')}", system_id=system_id)
            raw_feeds = [
                {
                    "title": entry.get("title"),
                    "href": entry.get("link") or entry.get("id"),
                    "query_variants": entry.get("query_variants"),
                }
                for entry in parsed.entries
            ]

        feeds = [to_feed_metadata(raw) for raw in raw_feeds if isinstance(raw, Mapping)]
        logger.debug(f"{system_id} publishes {len(feeds)} feeds")
        return feeds

    def fetch(self, system_id: str, feed_path: str, query: Optional[str] = None) -> Any:
        params = {"$query": query} if query else None
        response = self._get(system_id, feed_path, accept=ATOM_FEED_TYPE, params=params)

        parsed = feedparser.parse(response.content)
        if parsed.bozo and not parsed.entries and not parsed.feed:
            raise FetchError(
                f"Unparseable feed {feed_path} from {system_id}: {parsed.get('bozo_exception')}",
                system_id=system_id,
            )

        logger.debug(f"Fetched {len(parsed.entries)} entries from {system_id}{feed_path}")
        return {"entries": list(parsed.entries)}

    def _get(
        self,
        system_id: str,
        path: str,
        accept: str,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        """GET a path on a system, translating httpx errors to FetchError.

        Raises:
            FetchTimeoutError: On timeout
            FetchError: On unknown system, HTTP or network error
        """
        base_url = self.base_urls.get(system_id)
        if not base_url:
            raise FetchError(f"No base URL configured for system {system_id}", system_id=system_id)

        url = base_url.rstrip("/") + "/" + path.lstrip("/")
        headers = {"User-Agent": self.user_agent, "Accept": accept}

        try:
            with httpx.Client(
                timeout=self.timeout_seconds,
                follow_redirects=self.follow_redirects,
                verify=self.verify_ssl,
            ) as client:
                response = client.get(url, headers=headers, params=params)
                response.raise_for_status()
                return response

        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"Timeout: {url}: {e}", system_id=system_id) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise FetchError(f"HTTP {status}: {url}", system_id=system_id, status_code=status) from e

        except httpx.RequestError as e:
            raise FetchError(f"Request error: {url}: {e}", system_id=system_id) from e
