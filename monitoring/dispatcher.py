"""
Outcome Dispatcher

Single inbound queue for everything the target platform reports. Messages are
handled one at a time under the scheduling lock and routed to the scheduler,
the recovery engine or the watch state (found).
"""

import queue
import logging
import threading
from datetime import datetime

from config import database
from monitoring import content
from monitoring.types import (
    ACTIVE,
    FOUND,
    TARGET_GONE,
    Matched,
    NoMatch,
    NoContentAvailable,
    TargetRedirected,
    ErrorPageDetected,
    PageLoaded,
    NavigationFailed,
    TargetRemoved,
)

logger = logging.getLogger(__name__)


class OutcomeDispatcher:
    def __init__(self, platform, scheduler, recovery, notifier=None, lock=None, clock=datetime.now):
        self._platform = platform
        self._scheduler = scheduler
        self._recovery = recovery
        self._notifier = notifier
        self._lock = lock or threading.RLock()
        self._clock = clock
        self._queue = queue.Queue()
        self._thread = None
        self._stop_evt = threading.Event()
        self._handlers = {
            PageLoaded: self._on_page_loaded,
            Matched: self._on_matched,
            NoMatch: self._on_no_match,
            NoContentAvailable: self._on_no_content,
            TargetRedirected: self._on_redirected,
            ErrorPageDetected: self._on_error_page,
            NavigationFailed: self._on_navigation_failed,
            TargetRemoved: self._on_target_removed,
        }

    # --- queue ---

    def post(self, message):
        """Queue a message from any thread."""
        self._queue.put(message)

    def pending(self):
        return self._queue.qsize()

    def drain(self):
        """
        Handle every queued message on the calling thread.

        Returns:
            int: Number of messages handled
        """
        handled = 0
        while True:
            try:
                message = self._queue.get_nowait()
            except queue.Empty:
                return handled
            self.handle(message)
            handled += 1

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._run, name="OutcomeDispatcher", daemon=True)
        self._thread.start()

    def stop(self, timeout=5):
        self._stop_evt.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self):
        while not self._stop_evt.is_set():
            try:
                message = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self.handle(message)

    def handle(self, message):
        """Handle one message now. Errors are logged, never raised."""
        handler = self._handlers.get(type(message))
        if handler is None:
            logger.warning(f"Unknown message: {message!r}")
            return
        with self._lock:
            try:
                handler(message)
            except Exception as e:
                logger.error(f"Error handling {type(message).__name__} for target "
                             f"{getattr(message, 'handle', None)}: {e}", exc_info=True)

    # --- handlers ---

    def _on_page_loaded(self, message):
        handle = message.handle
        active = database.get_watches_for_target(handle, states=[ACTIVE])
        if not active:
            logger.debug(f"Page loaded on target {handle} without active watches")
            return

        evaluations = [
            (watch, self._platform.evaluate_content(handle, watch["match_spec"], watch["source_url"]))
            for watch in active
        ]

        # Page-level outcomes are the same for every watch on the target
        for watch, evaluation in evaluations:
            if evaluation.outcome == content.NO_CONTENT:
                self._on_no_content(NoContentAvailable(handle))
                return
            if evaluation.outcome == content.ERROR_PAGE:
                self._on_error_page(ErrorPageDetected(handle, evaluation.current_url or watch["source_url"]))
                return
            if evaluation.outcome == content.REDIRECTED:
                self._on_redirected(TargetRedirected(handle, watch["source_url"], evaluation.current_url))
                return

        # Content loaded without error: the reset cycle is over
        recovered = [w["id"] for w in active if w["reset_cycle_count"]]
        if recovered:
            database.update_watches(recovered, reset_cycle_count=0)

        remaining = 0
        for watch, evaluation in evaluations:
            if evaluation.outcome == content.MATCHED:
                self._mark_found(watch)
            else:
                remaining += 1

        if remaining:
            logger.info(f"Still looking for {remaining} watch(es) on target {handle}")
        self._scheduler.schedule(handle)

    def _mark_found(self, watch):
        found_at = self._clock()
        database.update_watch(
            watch["id"],
            state=FOUND,
            found_at=found_at,
            next_refresh_at=None,
            reset_cycle_count=0,
        )
        logger.info(f"Content FOUND for watch {watch['id']}")

        if self._notifier is not None:
            try:
                self._notifier.notify_match(dict(watch, state=FOUND, found_at=found_at))
            except Exception as e:
                logger.error(f"Error notifying match for watch {watch['id']}: {e}")

    def _on_matched(self, message):
        watch = database.get_watch(message.watch_id)
        if watch is None or watch["state"] != ACTIVE:
            logger.info(f"Ignoring match for watch {message.watch_id}, not active")
            return
        self._mark_found(watch)
        self._scheduler.schedule(watch["target_handle"])

    def _on_no_match(self, message):
        watch = database.get_watch(message.watch_id)
        if watch is None or watch["state"] != ACTIVE:
            return
        if watch["reset_cycle_count"]:
            database.update_watch(watch["id"], reset_cycle_count=0)
        self._scheduler.schedule(watch["target_handle"])

    def _on_no_content(self, message):
        logger.info(f"No page content on target {message.handle}, rescheduling")
        self._scheduler.schedule(message.handle)

    def _on_redirected(self, message):
        handle = message.handle
        if not database.get_watches_for_target(handle, states=[ACTIVE]):
            return
        logger.info(f"Target {handle} redirected to {message.current_url}, navigating back to {message.original_url}")

        result = self._platform.navigate_target(handle, message.original_url)
        if result == TARGET_GONE:
            logger.info(f"Target {handle} no longer exists, removing its watches")
            self._scheduler.drop_target(handle)
            return
        self._scheduler.schedule(handle)

    def _on_error_page(self, message):
        result = self._recovery.recover(message.handle, message.url)
        logger.info(f"Error page retry result for target {message.handle}: {result}")

    def _on_navigation_failed(self, message):
        logger.warning(f"Navigation error '{message.error}' on target {message.handle}")
        url = message.url
        if not url or url == "about:blank":
            url = None
        result = self._recovery.recover(message.handle, url)
        logger.info(f"Navigation error retry result for target {message.handle}: {result}")

    def _on_target_removed(self, message):
        handle = message.handle
        if self._scheduler.is_resetting(handle):
            logger.info(f"Target {handle} closed for session reset, keeping watches")
            return
        removed = self._scheduler.drop_target(handle)
        if removed:
            logger.info(f"Target {handle} closed, removed {removed} watch(es)")
