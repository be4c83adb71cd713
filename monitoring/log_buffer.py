"""
In-memory log capture

Keeps the most recent log records so the web API can show them without
reading the log file.
"""

import logging
import threading
from collections import deque

from config import settings


class LogBufferHandler(logging.Handler):
    """Logging handler that keeps the last ``capacity`` records."""

    def __init__(self, capacity=None, level=logging.INFO):
        super().__init__(level=level)
        self._entries = deque(maxlen=capacity or settings.LOG_BUFFER_SIZE)
        self._entries_lock = threading.Lock()

    def emit(self, record):
        try:
            entry = {
                "timestamp": record.created,
                "message": record.getMessage(),
                "source": record.name,
                "level": record.levelname.lower(),
            }
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    def entries(self, source=None):
        """
        Get captured records, oldest first.

        Args:
            source (str, optional): Keep only loggers whose name starts with this
        """
        with self._entries_lock:
            entries = list(self._entries)
        if source and source != "all":
            entries = [e for e in entries if e["source"].startswith(source)]
        return entries

    def clear(self):
        with self._entries_lock:
            self._entries.clear()


_handler = None


def install_log_buffer(capacity=None, level=logging.INFO):
    """Attach a shared LogBufferHandler to the root logger (once)."""
    global _handler
    if _handler is None:
        _handler = LogBufferHandler(capacity=capacity, level=level)
        logging.getLogger().addHandler(_handler)
    return _handler
