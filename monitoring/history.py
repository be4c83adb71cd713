"""
History Log

Bounded, newest-first record of watches that were found and then dismissed.
"""

import logging
from datetime import datetime

from config import settings
from config import database

logger = logging.getLogger(__name__)


def snapshot_watch(watch):
    """JSON-safe copy of a watch."""
    snapshot = {}
    for key, value in watch.items():
        snapshot[key] = value.isoformat() if isinstance(value, datetime) else value
    return snapshot


def archive_watch(watch, dismissed_at=None, limit=None):
    """
    Append a dismissed watch to the history and evict the oldest entries past
    the limit.

    Returns:
        bool: True if the entry was stored
    """
    dismissed_at = dismissed_at or datetime.now()
    limit = limit or settings.HISTORY_LIMIT

    snapshot = snapshot_watch(watch)
    snapshot["dismissed_at"] = dismissed_at.isoformat()

    if not database.add_history_entry(watch["id"], snapshot, watch.get("found_at"), dismissed_at):
        return False

    evicted = database.trim_history(limit)
    if evicted:
        logger.info(f"Evicted {evicted} old history entries")
    logger.info(f"Archived watch {watch['id']} to history")
    return True


def list_history():
    return database.get_history()


def remove_history_entry(index):
    """
    Remove the entry at a position of the newest-first listing.

    Returns:
        bool: True if an entry was removed
    """
    history = database.get_history()
    if index < 0 or index >= len(history):
        return False
    return database.delete_history_entry(history[index]["entry_id"])


def clear_history():
    return database.clear_history()
