"""
Target Refresh Scheduler

One timer per target, armed for the shortest interval among the target's
Active watches. The scheduler exclusively owns timer lifecycle and the set of
targets that are being torn down on purpose by error recovery.
"""

import logging
import threading
from datetime import datetime, timedelta
from functools import partial

from config import database
from monitoring.types import ACTIVE, TARGET_GONE
from monitoring.timers import start_timer as default_start_timer

logger = logging.getLogger(__name__)


class TargetScheduler:
    """Per-target refresh timers."""

    def __init__(self, platform, lock=None, clock=datetime.now, start_timer=default_start_timer,
                 on_armed=None):
        self._platform = platform
        self._lock = lock or threading.RLock()
        self._clock = clock
        self._start_timer = start_timer
        self._on_armed = on_armed
        self._timers = {}  # handle -> (token, timer)
        self._resetting = set()

    def set_on_armed(self, callback):
        self._on_armed = callback

    def armed_handles(self):
        with self._lock:
            return set(self._timers)

    def is_armed(self, handle):
        with self._lock:
            return handle in self._timers

    # --- reset flags ---

    def begin_reset(self, handles):
        """Flag targets as intentionally torn down and stop their timers."""
        with self._lock:
            for handle in handles:
                self._resetting.add(handle)
                self.cancel(handle)

    def end_reset(self, handles):
        with self._lock:
            for handle in handles:
                self._resetting.discard(handle)

    def is_resetting(self, handle):
        with self._lock:
            return handle in self._resetting

    # --- timers ---

    def cancel(self, handle):
        with self._lock:
            entry = self._timers.pop(handle, None)
        if entry:
            entry[1].cancel()
            logger.debug(f"Cleared timer for target {handle}")

    def cancel_all(self):
        with self._lock:
            for handle in list(self._timers):
                self.cancel(handle)

    def schedule(self, handle):
        """
        Recompute the refresh timing of one target from its Active watches.

        Returns:
            datetime or None: The new next refresh time, None if unscheduled
        """
        with self._lock:
            self.cancel(handle)
            if handle is None:
                return None
            if handle in self._resetting:
                logger.info(f"Target {handle} is being reset, not scheduling")
                return None

            active = database.get_watches_for_target(handle, states=[ACTIVE])
            if not active:
                logger.info(f"No active watches for target {handle}, not scheduling")
                return None

            interval = min(w["interval_seconds"] for w in active)
            next_refresh_at = self._clock() + timedelta(seconds=interval)
            database.update_watches([w["id"] for w in active], next_refresh_at=next_refresh_at)

            token = object()
            timer = self._start_timer(interval, partial(self._fire, handle, token))
            self._timers[handle] = (token, timer)
            logger.info(f"Scheduling refresh for target {handle} in {interval} seconds")

        if self._on_armed:
            self._on_armed()
        return next_refresh_at

    def _fire(self, handle, token):
        with self._lock:
            entry = self._timers.get(handle)
            if entry is None or entry[0] is not token:
                return
            del self._timers[handle]

            if handle in self._resetting:
                return

            active = database.get_watches_for_target(handle, states=[ACTIVE])
            if not active:
                logger.info(f"No active watches, not refreshing target {handle}")
                return

            try:
                result = self._platform.refresh_target(handle)
            except Exception as e:
                logger.error(f"Error refreshing target {handle}: {e}", exc_info=True)
                return

            if result == TARGET_GONE:
                logger.info(f"Target {handle} no longer exists, removing its watches")
                self.drop_target(handle)

    def drop_target(self, handle):
        """
        Terminal cleanup for a vanished target: delete every watch bound to it
        and cancel its timer.

        Returns:
            int: Number of deleted watches
        """
        with self._lock:
            self.cancel(handle)
            return database.delete_watches_for_target(handle)
