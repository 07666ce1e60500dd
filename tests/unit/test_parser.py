"""Unit tests for feed payload parsing."""

from datetime import datetime, timedelta, timezone

import feedparser
import pytest

from feed_watch.core.parser import (
    determine_feed_type,
    feed_type_name,
    get_default_query,
    group_severity,
    parse_feed_entry,
    parse_feed_response,
    to_feed_metadata,
)
from feed_watch.models import FeedEntry, FeedType, Severity

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Runtime Errors</title>
  <id>urn:dev:dumps</id>
  <updated>2026-01-15T12:00:00Z</updated>
  <entry>
    <id>dump-2</id>
    <title>Runtime error in ZCL_ORDER</title>
    <updated>2026-01-15T11:58:00Z</updated>
    <author><name>DEVELOPER</name></author>
    <category term="COMPUTE_INT_ZERODIVIDE" label="ABAP runtime error"/>
    <summary>Division by zero</summary>
  </entry>
  <entry>
    <id>dump-1</id>
    <title>Runtime error in ZCL_BILLING</title>
    <updated>2026-01-15T11:40:00Z</updated>
    <category term="DBSQL_DUPLICATE_KEY_ERROR" label="ABAP runtime error"/>
    <summary>Duplicate key</summary>
  </entry>
</feed>
"""


def _parse(raw, feed_type=FeedType.UNKNOWN):
    return parse_feed_entry(raw, "DEV", "Feed", "/feed", feed_type)


class TestFeedTypes:
    """Tests for feed classification."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/sap/bc/adt/runtime/dumps", FeedType.DUMPS),
            ("/sap/bc/adt/atc/feeds/verdicts", FeedType.ATC),
            ("/sap/bc/adt/gw/errorlog", FeedType.GATEWAY_ERROR),
            ("/sap/bc/adt/runtime/systemmessages", FeedType.SYSTEM_MESSAGES),
            ("/sap/bc/adt/error/urimapper", FeedType.URI_ERRORS),
            ("/sap/bc/adt/bo/feeds/ccviolations", FeedType.RAP_CONTRACT),
            ("/sap/bc/adt/eee/errorlog", FeedType.EEE_ERROR),
            ("/SAP/BC/ADT/RUNTIME/DUMPS", FeedType.DUMPS),
            ("/somewhere/else", FeedType.UNKNOWN),
            ("", FeedType.UNKNOWN),
        ],
    )
    def test_determine_feed_type(self, path, expected):
        """Test classification by path fragment."""
        assert determine_feed_type(path) is expected

    def test_feed_type_name(self):
        """Test display names."""
        assert feed_type_name(FeedType.DUMPS) == "Runtime Errors"
        assert feed_type_name(FeedType.UNKNOWN) == "Unknown"


class TestCatalogRecords:
    """Tests for catalog conversion."""

    def test_default_variant_wins(self):
        """Test the variant flagged as default is used."""
        variants = [
            {"query_string": "first"},
            {"queryString": "chosen", "isDefault": True},
        ]

        assert get_default_query(variants) == "chosen"

    def test_first_variant_fallback(self):
        """Test the first variant is used without a default."""
        assert get_default_query([{"query_string": "first"}, {"query_string": "second"}]) == "first"

    def test_no_variants(self):
        """Test missing variants give no query."""
        assert get_default_query(None) is None
        assert get_default_query([]) is None

    def test_to_feed_metadata(self):
        """Test a catalog record becomes FeedMetadata."""
        metadata = to_feed_metadata(
            {
                "title": "Runtime Errors",
                "href": "/sap/bc/adt/runtime/dumps",
                "query_variants": [{"query_string": "responsible eq 'ME'", "is_default": True}],
            }
        )

        assert metadata.title == "Runtime Errors"
        assert metadata.feed_type is FeedType.DUMPS
        assert metadata.default_query == "responsible eq 'ME'"

    def test_to_feed_metadata_without_title(self):
        """Test the path doubles as title."""
        metadata = to_feed_metadata({"feed_path": "/custom/feed"})

        assert metadata.title == "/custom/feed"
        assert metadata.default_query is None


class TestParseFeedEntry:
    """Tests for single entry conversion."""

    def test_basic_fields(self):
        """Test the common fields are mapped."""
        entry = _parse(
            {
                "id": "e1",
                "title": "Something happened",
                "updated": "2026-01-15T12:00:00Z",
                "summary": "Details",
                "author": "DEVELOPER",
                "category": "transport",
            }
        )

        assert entry.id == "e1"
        assert entry.title == "Something happened"
        assert entry.timestamp == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        assert entry.summary == "Details"
        assert entry.author == "DEVELOPER"
        assert entry.category == "transport"
        assert entry.severity is Severity.INFO
        assert entry.is_new is True
        assert entry.is_read is False

    def test_dump_title_from_category(self):
        """Test runtime error entries are titled by their error category."""
        entry = _parse(
            {
                "id": "d1",
                "title": "Runtime error",
                "tags": [
                    {"term": "ZCL_ORDER", "label": "program"},
                    {"term": "COMPUTE_INT_ZERODIVIDE", "label": "ABAP runtime error"},
                ],
            },
            FeedType.DUMPS,
        )

        assert entry.title == "COMPUTE_INT_ZERODIVIDE"
        assert entry.severity is Severity.ERROR

    def test_dump_title_falls_back_to_first_category(self):
        """Test dumps without the runtime error label use the first category."""
        entry = _parse({"id": "d1", "title": "Runtime error", "tags": [{"term": "ZCL_ORDER"}]}, FeedType.DUMPS)

        assert entry.title == "ZCL_ORDER"

    @pytest.mark.parametrize(
        "priority,expected",
        [("1", Severity.ERROR), (2, Severity.WARNING), (3, Severity.INFO), ("junk", Severity.INFO), (None, Severity.INFO)],
    )
    def test_atc_severity(self, priority, expected):
        """Test ATC findings map priorities to severities."""
        entry = _parse({"id": "a1", "title": "Finding", "priority": priority}, FeedType.ATC)

        assert entry.severity is expected

    @pytest.mark.parametrize(
        "summary,expected",
        [
            ("Update task failed", Severity.ERROR),
            ("Warning: spool is nearly full", Severity.WARNING),
            ("Planned downtime tonight", Severity.INFO),
        ],
    )
    def test_system_message_severity(self, summary, expected):
        """Test system messages are graded by their text."""
        entry = _parse({"id": "m1", "title": "Message", "summary": summary}, FeedType.SYSTEM_MESSAGES)

        assert entry.severity is expected

    def test_summary_from_html_content(self):
        """Test HTML content is stripped and shortened."""
        body = "<p>First&nbsp;line</p><script>ignored()</script><p>" + "x" * 300 + "</p>"
        entry = _parse({"id": "c1", "content": [{"value": body, "type": "text/html"}]})

        assert entry.summary.startswith("First line x")
        assert "ignored" not in entry.summary
        assert len(entry.summary) == 200

    def test_author_variants(self):
        """Test author mappings and author_detail."""
        assert _parse({"id": "1", "author": {"name": "A"}}).author == "A"
        assert _parse({"id": "2", "author_detail": {"name": "B"}}).author == "B"
        assert _parse({"id": "3"}).author is None

    def test_fallback_id_is_stable(self):
        """Test entries without an id get the same digest every time."""
        raw = {"title": "No id", "updated": "2026-01-15T12:00:00Z", "summary": "same"}

        first = _parse(dict(raw))
        second = _parse(dict(raw))
        other = _parse(dict(raw, summary="different"))

        assert first.id.startswith("sha1:")
        assert first.id == second.id
        assert first.id != other.id

    def test_unparseable_date_uses_now(self):
        """Test an invalid date falls back to the current time."""
        before = datetime.now(timezone.utc)
        entry = _parse({"id": "x", "updated": "not a date"})

        assert before - timedelta(seconds=1) <= entry.timestamp <= datetime.now(timezone.utc)

    def test_raw_data_is_json_safe(self):
        """Test raw data survives JSON serialization."""
        stamp = datetime(2026, 1, 15, tzinfo=timezone.utc)
        entry = _parse({"id": "x", "published": stamp, "extra": {"when": stamp}})

        assert entry.timestamp == stamp
        assert entry.raw_data["extra"]["when"] == str(stamp)


class TestParseFeedResponse:
    """Tests for payload conversion."""

    def test_list_payload_keeps_order(self):
        """Test list payloads convert in order."""
        entries = parse_feed_response([{"id": "b"}, {"id": "a"}], "DEV", "Feed", "/feed", FeedType.UNKNOWN)

        assert [e.id for e in entries] == ["b", "a"]

    @pytest.mark.parametrize("key", ["dumps", "entries", "entry"])
    def test_wrapped_payloads(self, key):
        """Test entries under the known wrapper keys."""
        entries = parse_feed_response({key: [{"id": "a"}]}, "DEV", "Feed", "/feed", FeedType.UNKNOWN)

        assert [e.id for e in entries] == ["a"]

    def test_single_entry_mapping(self):
        """Test a lone entry mapping is accepted."""
        entries = parse_feed_response({"entry": {"id": "solo"}}, "DEV", "Feed", "/feed", FeedType.UNKNOWN)

        assert [e.id for e in entries] == ["solo"]

    @pytest.mark.parametrize("payload", [None, "text", 42, {}, {"other": []}, {"entries": "nope"}])
    def test_unknown_shapes(self, payload):
        """Test unknown payloads yield nothing."""
        assert parse_feed_response(payload, "DEV", "Feed", "/feed", FeedType.UNKNOWN) == []

    def test_bad_entries_skipped(self):
        """Test non-mapping entries are skipped."""
        entries = parse_feed_response(["junk", {"id": "ok"}, 7], "DEV", "Feed", "/feed", FeedType.UNKNOWN)

        assert [e.id for e in entries] == ["ok"]

    def test_feedparser_atom(self):
        """Test entries parsed by feedparser from an Atom document."""
        parsed = feedparser.parse(ATOM_FEED)

        entries = parse_feed_response(
            {"entries": parsed.entries}, "DEV", "Runtime Errors", "/sap/bc/adt/runtime/dumps", FeedType.DUMPS
        )

        assert [e.id for e in entries] == ["dump-2", "dump-1"]
        assert entries[0].title == "COMPUTE_INT_ZERODIVIDE"
        assert entries[0].timestamp == datetime(2026, 1, 15, 11, 58, tzinfo=timezone.utc)
        assert entries[0].summary == "Division by zero"
        assert entries[0].author == "DEVELOPER"
        assert entries[0].severity is Severity.ERROR


class TestGroupSeverity:
    """Tests for group_severity."""

    def _entry(self, severity):
        return FeedEntry(
            id=severity.value,
            system_id="DEV",
            feed_title="Feed",
            timestamp=datetime(2026, 1, 15, tzinfo=timezone.utc),
            severity=severity,
        )

    def test_highest_wins(self):
        """Test the most severe entry decides."""
        assert group_severity([self._entry(Severity.INFO), self._entry(Severity.ERROR)]) is Severity.ERROR
        assert group_severity([self._entry(Severity.INFO), self._entry(Severity.WARNING)]) is Severity.WARNING
        assert group_severity([]) is Severity.INFO
