"""
Stuck Watchdog

Periodic sweep that catches targets whose refresh never happened (a missed
timer, a load that never reported back, a suspend/resume). It only runs while
Active watches exist.
"""

import logging
import threading
from datetime import datetime, timedelta

from config import settings
from config import database
from monitoring.types import ACTIVE, TARGET_GONE
from monitoring.timers import start_timer as default_start_timer

logger = logging.getLogger(__name__)


class StuckWatchdog:
    def __init__(self, platform, scheduler, lock=None, clock=datetime.now,
                 start_timer=default_start_timer, interval=None, threshold=None, buffer=None):
        self._platform = platform
        self._scheduler = scheduler
        self._lock = lock or threading.RLock()
        self._clock = clock
        self._start_timer = start_timer
        self._interval = interval if interval is not None else settings.WATCHDOG_INTERVAL_SECONDS
        self._threshold = threshold if threshold is not None else settings.STUCK_THRESHOLD_SECONDS
        self._buffer = buffer if buffer is not None else settings.STUCK_BUFFER_SECONDS
        self._timer = None  # (token, timer)

    @property
    def running(self):
        with self._lock:
            return self._timer is not None

    def ensure_running(self):
        with self._lock:
            if self._timer is not None:
                return
            logger.info("Starting stuck watch watchdog")
            self._arm()

    def stop(self):
        with self._lock:
            if self._timer is None:
                return
            self._timer[1].cancel()
            self._timer = None
            logger.info("Stopped stuck watch watchdog")

    def _arm(self):
        token = object()
        timer = self._start_timer(self._interval, lambda: self._tick(token))
        self._timer = (token, timer)

    def _tick(self, token):
        with self._lock:
            if self._timer is None or self._timer[0] is not token:
                return
            self._timer = None

            if database.count_watches_by_state(ACTIVE) == 0:
                logger.info("No active watches, stopping watchdog")
                return

            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error during watchdog sweep: {e}", exc_info=True)
            self._arm()

    def sweep(self):
        """
        Force a refresh of every target with an Active watch whose expected
        refresh is more than the threshold in the past.

        Returns:
            list: Handles that were found stuck
        """
        with self._lock:
            now = self._clock()
            stuck = []
            for watch in database.get_watches_by_state(ACTIVE):
                handle = watch["target_handle"]
                if handle is None or watch["next_refresh_at"] is None:
                    continue
                if self._scheduler.is_resetting(handle):
                    continue
                overdue = (now - watch["next_refresh_at"]).total_seconds()
                if overdue > self._threshold and handle not in stuck:
                    logger.warning(
                        f"Watch {watch['id']} appears stuck: expected refresh was {round(overdue)} seconds ago"
                    )
                    stuck.append(handle)

            for handle in stuck:
                self._force_refresh(handle, now)
            return stuck

    def _force_refresh(self, handle, now):
        if not self._platform.target_exists(handle):
            logger.info(f"Stuck target {handle} no longer exists, cleaning up")
            self._scheduler.drop_target(handle)
            return

        active = database.get_watches_for_target(handle, states=[ACTIVE])
        if not active:
            return

        interval = min(w["interval_seconds"] for w in active)
        next_refresh_at = now + timedelta(seconds=interval + self._buffer)
        # Pushed forward before the reload so the next sweep does not fire again
        database.update_watches([w["id"] for w in active], next_refresh_at=next_refresh_at)

        logger.info(f"Force refreshing stuck target {handle}")
        try:
            result = self._platform.refresh_target(handle)
        except Exception as e:
            logger.error(f"Error force refreshing target {handle}: {e}", exc_info=True)
            return
        if result == TARGET_GONE:
            logger.info(f"Stuck target {handle} disappeared during refresh, cleaning up")
            self._scheduler.drop_target(handle)
