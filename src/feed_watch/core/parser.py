"""
Conversion of raw feed payloads into FeedEntry records.

Everything here is pure: no I/O, no state. Raw entries are mappings as
produced by feedparser (FeedParserDict) or decoded JSON.
"""

import hashlib
import json
import re
import time
from datetime import datetime, timezone
from html import unescape
from typing import Any, Iterable, Mapping, Optional

from feedparser.datetimes import _parse_date as _feedparser_parse_date
from bs4 import BeautifulSoup

from feed_watch.logger import get_logger
from feed_watch.models import FeedEntry, FeedMetadata, FeedType, Severity

logger = get_logger(__name__)

SUMMARY_LENGTH = 200
RUNTIME_ERROR_LABEL = "ABAP runtime error"

_PATH_TYPES = [
    ("/runtime/dumps", FeedType.DUMPS),
    ("/atc/feeds/verdicts", FeedType.ATC),
    ("/gw/errorlog", FeedType.GATEWAY_ERROR),
    ("/runtime/systemmessages", FeedType.SYSTEM_MESSAGES),
    ("/error/urimapper", FeedType.URI_ERRORS),
    ("/bo/feeds/ccviolations", FeedType.RAP_CONTRACT),
    ("/eee/errorlog", FeedType.EEE_ERROR),
]

_TYPE_NAMES = {
    FeedType.DUMPS: "Runtime Errors",
    FeedType.ATC: "ATC Findings",
    FeedType.GATEWAY_ERROR: "Gateway Errors",
    FeedType.SYSTEM_MESSAGES: "System Messages",
    FeedType.URI_ERRORS: "URI Errors",
    FeedType.RAP_CONTRACT: "RAP Contract Violations",
    FeedType.EEE_ERROR: "EEE Errors",
}


def determine_feed_type(feed_path: str) -> FeedType:
    """Classify a feed by its path."""
    path = (feed_path or "").lower()
    for fragment, feed_type in _PATH_TYPES:
        if fragment in path:
            return feed_type
    return FeedType.UNKNOWN


def feed_type_name(feed_type: FeedType) -> str:
    return _TYPE_NAMES.get(feed_type, "Unknown")


def get_default_query(query_variants: Optional[Iterable[Mapping]]) -> Optional[str]:
    """Query string of the default variant, else of the first one."""
    variants = list(query_variants or [])
    if not variants:
        return None

    for variant in variants:
        if variant.get("is_default") or variant.get("isDefault"):
            query = variant.get("query_string") or variant.get("queryString")
            if query:
                return query

    first = variants[0]
    return first.get("query_string") or first.get("queryString")


def to_feed_metadata(raw_feed: Mapping) -> FeedMetadata:
    """Convert a catalog record into FeedMetadata.

    Args:
        raw_feed: Mapping with `title`, `href` (or `feed_path`) and optional
            `query_variants`

    Returns:
        FeedMetadata
    """
    feed_path = raw_feed.get("href") or raw_feed.get("feed_path") or ""
    variants = raw_feed.get("query_variants") or raw_feed.get("queryVariants")
    return FeedMetadata(
        title=raw_feed.get("title") or feed_path,
        feed_path=feed_path,
        feed_type=determine_feed_type(feed_path),
        default_query=get_default_query(variants),
    )


def _strip_html(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    text = unescape(soup.get_text(separator=" "))
    return re.sub(r"\s+", " ", text).strip()


def _text_of(value: Any) -> Optional[str]:
    """Text of a field that may be a string, a text node or a content list."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for key in ("#text", "text", "value"):
            if isinstance(value.get(key), str):
                return value[key]
        return None
    if isinstance(value, (list, tuple)) and value:
        return _text_of(value[0])
    return None


def _categories(raw: Mapping) -> list[Mapping]:
    # feedparser exposes `categories` as (scheme, term) tuples; `tags` has the dicts.
    for key in ("categories", "tags", "category"):
        value = raw.get(key)
        if isinstance(value, Mapping):
            return [value]
        if isinstance(value, (list, tuple)):
            found = [c for c in value if isinstance(c, Mapping)]
            if found:
                return found
    return []


def _extract_title(raw: Mapping, feed_type: FeedType) -> str:
    title = raw.get("title") or "Untitled"

    categories = _categories(raw)
    if feed_type is FeedType.DUMPS and categories:
        for category in categories:
            if category.get("label") == RUNTIME_ERROR_LABEL and category.get("term"):
                return category["term"]
        return categories[0].get("term") or categories[0].get("label") or title

    return title


def _extract_summary(raw: Mapping) -> str:
    summary = _text_of(raw.get("summary"))
    if summary:
        return summary

    for key in ("content", "text"):
        text = _text_of(raw.get(key))
        if text:
            return _strip_html(text)[:SUMMARY_LENGTH]

    return ""


def _extract_category(raw: Mapping) -> Optional[str]:
    category = raw.get("category")
    if isinstance(category, str):
        return category or None

    categories = _categories(raw)
    if categories:
        return categories[0].get("term") or categories[0].get("label")
    return None


def _extract_author(raw: Mapping) -> Optional[str]:
    author = raw.get("author")
    if isinstance(author, Mapping):
        return author.get("name") or author.get("email")
    if author:
        return str(author)
    detail = raw.get("author_detail")
    if isinstance(detail, Mapping):
        return detail.get("name")
    return None


def _parse_date(raw: Mapping) -> datetime:
    """Entry timestamp in UTC; falls back to now when nothing parses."""
    for key in ("updated_parsed", "published_parsed"):
        parsed = raw.get(key)
        if isinstance(parsed, time.struct_time):
            return datetime(*parsed[:6], tzinfo=timezone.utc)

    value = raw.get("updated") or raw.get("published")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, str) and value:
        parsed = _feedparser_parse_date(value)
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc)

        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug(f"Failed to parse date: {value}")

    return datetime.now(timezone.utc)


def _determine_severity(raw: Mapping, feed_type: FeedType) -> Severity:
    if feed_type in (FeedType.DUMPS, FeedType.GATEWAY_ERROR, FeedType.EEE_ERROR):
        return Severity.ERROR

    if feed_type is FeedType.ATC:
        try:
            priority = int(raw.get("priority") or 3)
        except (TypeError, ValueError):
            priority = 3
        if priority == 1:
            return Severity.ERROR
        if priority == 2:
            return Severity.WARNING
        return Severity.INFO

    if feed_type is FeedType.SYSTEM_MESSAGES:
        summary = _extract_summary(raw).lower()
        if "error" in summary or "failed" in summary:
            return Severity.ERROR
        if "warn" in summary:
            return Severity.WARNING

    return Severity.INFO


def _fallback_id(title: str, timestamp: datetime, summary: str) -> str:
    digest = hashlib.sha1(f"{title}|{timestamp.isoformat()}|{summary}".encode("utf-8")).hexdigest()
    return f"sha1:{digest}"


def _json_safe(raw: Any) -> Any:
    return json.loads(json.dumps(raw, default=str))


def parse_feed_entry(
    raw: Mapping,
    system_id: str,
    feed_title: str,
    feed_path: str,
    feed_type: FeedType,
) -> FeedEntry:
    """Convert one raw entry into a FeedEntry.

    Entries without an id get a stable digest of title, timestamp and
    summary, so the same entry maps to the same id on every poll.
    """
    title = _extract_title(raw, feed_type)
    timestamp = _parse_date(raw)
    summary = _extract_summary(raw)

    return FeedEntry(
        id=raw.get("id") or _fallback_id(title, timestamp, summary),
        system_id=system_id,
        feed_title=feed_title,
        feed_path=feed_path,
        feed_type=feed_type,
        timestamp=timestamp,
        title=title,
        summary=summary,
        author=_extract_author(raw),
        category=_extract_category(raw),
        severity=_determine_severity(raw, feed_type),
        raw_data=_json_safe(raw),
    )


def parse_feed_response(
    payload: Any,
    system_id: str,
    feed_title: str,
    feed_path: str,
    feed_type: FeedType,
) -> list[FeedEntry]:
    """Convert a fetched payload into entries, preserving payload order.

    Accepts a list of entries or a mapping holding them under `dumps`,
    `entries` or `entry`. Unknown shapes yield an empty list and entries
    that fail to convert are skipped.
    """
    if isinstance(payload, (list, tuple)):
        raw_entries = list(payload)
    elif isinstance(payload, Mapping):
        if payload.get("dumps"):
            raw_entries = payload["dumps"]
        elif payload.get("entries"):
            raw_entries = payload["entries"]
        elif payload.get("entry"):
            raw_entries = payload["entry"]
        else:
            return []
        if isinstance(raw_entries, Mapping):
            raw_entries = [raw_entries]
    else:
        return []

    if not isinstance(raw_entries, (list, tuple)):
        return []

    entries = []
    for raw in raw_entries:
        if not isinstance(raw, Mapping):
            logger.debug(f"Skipping non-mapping entry in {system_id}/{feed_title}")
            continue
        try:
            entries.append(parse_feed_entry(raw, system_id, feed_title, feed_path, feed_type))
        except (ValueError, TypeError) as e:
            logger.debug(f"Skipping malformed entry in {system_id}/{feed_title}: {e}")

    return entries


def group_severity(entries: Iterable[FeedEntry]) -> Severity:
    """Highest severity present in a group of entries."""
    severities = {e.severity for e in entries}
    if Severity.ERROR in severities:
        return Severity.ERROR
    if Severity.WARNING in severities:
        return Severity.WARNING
    return Severity.INFO
