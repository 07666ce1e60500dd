"""
feed-watch - Feed polling scheduler for remote development systems.

Polls the feeds of connected systems on per-feed schedules, deduplicates
and stores new entries, and reports them while backing off from failing
feeds and pausing when the systems look offline.
"""

__version__ = "0.1.0"
