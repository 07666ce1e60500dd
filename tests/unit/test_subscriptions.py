"""Unit tests for subscription and system providers."""

import os

import pytest

from feed_watch.core.subscriptions import (
    FeedsFile,
    StaticSubscriptionProvider,
    StaticSystemsProvider,
    YamlSubscriptionProvider,
    YamlSystemsProvider,
    diff_subscriptions,
)
from feed_watch.errors import ConfigurationError
from feed_watch.models import FeedSubscriptionConfig

FEEDS_YAML = """
systems:
  DEV:
    base_url: https://dev.example.com
  QAS:
    base_url: https://qas.example.com
    enabled: false
subscriptions:
  DEV:
    Runtime Errors:
      polling_interval_seconds: 300
    ATC Findings:
      polling_interval_seconds: 10
"""


def _write(path, content, bump=0):
    path.write_text(content, encoding="utf-8")
    if bump:
        stat = os.stat(path)
        os.utime(path, (stat.st_atime + bump, stat.st_mtime + bump))


@pytest.fixture
def feeds_path(tmp_path):
    path = tmp_path / "feeds.yaml"
    _write(path, FEEDS_YAML)
    return path


class TestDiffSubscriptions:
    """Tests for diff_subscriptions."""

    def test_added_removed_changed(self):
        """Test each kind of difference is reported."""
        old = {
            "DEV": {
                "Runtime Errors": FeedSubscriptionConfig(),
                "ATC Findings": FeedSubscriptionConfig(),
            }
        }
        new = {
            "DEV": {
                "Runtime Errors": FeedSubscriptionConfig(polling_interval_seconds=600),
                "Gateway Errors": FeedSubscriptionConfig(),
            },
            "QAS": {"Runtime Errors": FeedSubscriptionConfig()},
        }

        diff = diff_subscriptions(old, new)

        assert diff.added == [("DEV", "Gateway Errors"), ("QAS", "Runtime Errors")]
        assert diff.removed == [("DEV", "ATC Findings")]
        assert diff.changed == [("DEV", "Runtime Errors")]
        assert not diff.is_empty

    def test_equal_settings_are_unchanged(self):
        """Test equal configs compare by value."""
        old = {"DEV": {"Runtime Errors": FeedSubscriptionConfig(polling_interval_seconds=300)}}
        new = {"DEV": {"Runtime Errors": FeedSubscriptionConfig(polling_interval_seconds=300)}}

        assert diff_subscriptions(old, new).is_empty


class TestStaticProviders:
    """Tests for the in-memory providers."""

    def test_listeners_get_diffs(self):
        """Test listeners see non-empty diffs only."""
        provider = StaticSubscriptionProvider()
        seen = []
        provider.add_listener(seen.append)

        provider.set_subscriptions({"DEV": {"Runtime Errors": FeedSubscriptionConfig()}})
        provider.set_subscriptions({"DEV": {"Runtime Errors": FeedSubscriptionConfig()}})

        assert len(seen) == 1
        assert seen[0].added == [("DEV", "Runtime Errors")]

    def test_remove_listener(self):
        """Test the returned remover unregisters the listener."""
        provider = StaticSubscriptionProvider()
        seen = []
        remove = provider.add_listener(seen.append)
        assert provider.listener_count == 1

        remove()
        remove()
        provider.set_subscriptions({"DEV": {"Runtime Errors": FeedSubscriptionConfig()}})

        assert provider.listener_count == 0
        assert seen == []

    def test_returned_mapping_is_a_copy(self):
        """Test callers cannot edit the provider's mapping."""
        provider = StaticSubscriptionProvider({"DEV": {"Runtime Errors": FeedSubscriptionConfig()}})
        provider.get_subscriptions()["DEV"].clear()

        assert "Runtime Errors" in provider.get_subscriptions()["DEV"]

    def test_static_systems(self):
        """Test the static systems list."""
        assert StaticSystemsProvider(["DEV", "QAS"]).list_connected_system_ids() == ["DEV", "QAS"]
        assert StaticSystemsProvider().list_connected_system_ids() == []


class TestFeedsFile:
    """Tests for reading the feeds file."""

    def test_load(self, feeds_path):
        """Test systems and subscriptions are parsed."""
        feeds_file = FeedsFile(str(feeds_path))

        assert feeds_file.systems["QAS"] == {"base_url": "https://qas.example.com", "enabled": False}
        atc = feeds_file.subscriptions["DEV"]["ATC Findings"]
        assert atc.polling_interval_seconds == 120
        assert feeds_file.is_modified() is False

    def test_missing_file(self, tmp_path):
        """Test a missing file is a configuration error."""
        with pytest.raises(ConfigurationError):
            FeedsFile(str(tmp_path / "missing.yaml"))

    @pytest.mark.parametrize(
        "content",
        [
            "systems: [unclosed",
            "- just\n- a list\n",
            "systems:\n  DEV:\n    enabled: true\n",
            "subscriptions:\n  DEV: nope\n",
            "subscriptions:\n  DEV:\n    Feed:\n      polling_interval_seconds: soon\n",
        ],
    )
    def test_invalid_content(self, tmp_path, content):
        """Test malformed files are configuration errors."""
        path = tmp_path / "feeds.yaml"
        _write(path, content)

        with pytest.raises(ConfigurationError):
            FeedsFile(str(path))

    def test_empty_file(self, tmp_path):
        """Test an empty file means no systems and no subscriptions."""
        path = tmp_path / "feeds.yaml"
        _write(path, "")

        feeds_file = FeedsFile(str(path))

        assert feeds_file.systems == {}
        assert feeds_file.subscriptions == {}


class TestYamlProviders:
    """Tests for the feeds-file backed providers."""

    def test_systems(self, feeds_path):
        """Test only enabled systems are connected."""
        systems = YamlSystemsProvider(FeedsFile(str(feeds_path)))

        assert systems.list_connected_system_ids() == ["DEV"]
        assert systems.base_urls() == {"DEV": "https://dev.example.com", "QAS": "https://qas.example.com"}

    def test_unchanged_file(self, feeds_path):
        """Test nothing happens while the file is untouched."""
        provider = YamlSubscriptionProvider(FeedsFile(str(feeds_path)))

        assert provider.check_for_changes() is None

    def test_edit_is_picked_up(self, feeds_path):
        """Test an edited file notifies listeners."""
        provider = YamlSubscriptionProvider(FeedsFile(str(feeds_path)))
        seen = []
        provider.add_listener(seen.append)

        _write(feeds_path, FEEDS_YAML.replace("ATC Findings", "Gateway Errors"), bump=10)
        diff = provider.check_for_changes()

        assert diff.added == [("DEV", "Gateway Errors")]
        assert diff.removed == [("DEV", "ATC Findings")]
        assert seen == [diff]
        assert set(provider.get_subscriptions()["DEV"]) == {"Runtime Errors", "Gateway Errors"}

    def test_invalid_edit_keeps_previous(self, feeds_path):
        """Test a broken edit keeps the previous subscriptions."""
        provider = YamlSubscriptionProvider(FeedsFile(str(feeds_path)))
        seen = []
        provider.add_listener(seen.append)

        _write(feeds_path, "subscriptions: [broken", bump=10)

        assert provider.check_for_changes() is None
        assert set(provider.get_subscriptions()["DEV"]) == {"Runtime Errors", "ATC Findings"}
        assert seen == []

    def test_touch_without_changes(self, feeds_path):
        """Test a touched but identical file yields an empty diff."""
        provider = YamlSubscriptionProvider(FeedsFile(str(feeds_path)))
        seen = []
        provider.add_listener(seen.append)

        _write(feeds_path, FEEDS_YAML, bump=10)
        diff = provider.check_for_changes()

        assert diff.is_empty
        assert seen == []
        assert provider.check_for_changes() is None
