"""
Command line interface for feed-watch.

    feed-watch run [--feeds FILE] [--config YAML]
    feed-watch inbox [--unread] [--limit N]
    feed-watch mark-read SYSTEM FEED [ENTRY_ID]
"""

import argparse
import sys
from typing import Optional

from feed_watch import __version__
from feed_watch.config import get_config, load_config_from_yaml, set_config
from feed_watch.core.factories import create_entry_store
from feed_watch.core.parser import feed_type_name
from feed_watch.errors import ConfigurationError
from feed_watch.logger import get_logger, setup_logger

logger = get_logger(__name__)


def cmd_run(args: argparse.Namespace) -> int:
    from feed_watch.service import FeedWatchService

    try:
        service = FeedWatchService(feeds_file=args.feeds)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    service.run_forever()
    return 0


def cmd_inbox(args: argparse.Namespace) -> int:
    store = create_entry_store()
    entries = store.get_all_unread_entries() if args.unread else store.get_all_feed_entries()
    if args.limit:
        entries = entries[: args.limit]

    for entry in entries:
        marker = " " if entry.is_read else "*"
        print(
            f"{marker} {entry.timestamp:%Y-%m-%d %H:%M} [{entry.severity.value:<7}] "
            f"{entry.system_id} / {entry.feed_title} ({feed_type_name(entry.feed_type)}): {entry.title}"
        )

    stats = store.get_statistics()
    print(f"\n{stats.total_entries} entries, {stats.unread_entries} unread")
    return 0


def cmd_mark_read(args: argparse.Namespace) -> int:
    store = create_entry_store()

    if args.entry_id:
        if not store.mark_as_read(args.system, args.feed, args.entry_id):
            print(f"No entry {args.entry_id} in {args.system} / {args.feed}", file=sys.stderr)
            return 1
        count = 1
    else:
        count = store.mark_all_as_read(args.system, args.feed)

    print(f"Marked {count} entries as read")
    return 0 if store.flush() else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feed-watch", description="Poll remote system feeds for new entries")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="YAML configuration file", default=None)

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Poll feeds until interrupted")
    run.add_argument("--feeds", help="Feeds file (systems and subscriptions)", default=None)
    run.set_defaults(func=cmd_run)

    inbox = subparsers.add_parser("inbox", help="List stored entries, newest first")
    inbox.add_argument("--unread", action="store_true", help="Only unread entries")
    inbox.add_argument("--limit", type=int, default=0, help="Maximum number of entries")
    inbox.set_defaults(func=cmd_inbox)

    mark_read = subparsers.add_parser("mark-read", help="Mark entries of a feed as read")
    mark_read.add_argument("system", help="System id")
    mark_read.add_argument("feed", help="Feed title")
    mark_read.add_argument("entry_id", nargs="?", help="Single entry id (default: all entries)")
    mark_read.set_defaults(func=cmd_mark_read)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.config:
        set_config(load_config_from_yaml(args.config))
    setup_logger(level="DEBUG" if get_config().debug else None)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
