"""
Error Recovery Engine

Invoked when a target shows an error page or fails to load.

Normal targets are simply navigated back to the watched URL. Ephemeral
targets all share one logical browsing session, so recovering one of them
means closing every ephemeral container and reopening each of them at its
previous placement. With backoff enabled the reopen waits
min(base * 2^(n-1), max) seconds, where n counts the resets since the watch
last loaded cleanly.
"""

import logging
import threading
from datetime import datetime, timedelta

from config import settings
from config import database
from monitoring.types import ACTIVE, FOUND, IN_BACKOFF, EPHEMERAL, TARGET_GONE
from monitoring.timers import start_timer as default_start_timer
from utils.url_tools import normalize_url

logger = logging.getLogger(__name__)

# Dedup entries older than this are dropped
RECENT_ERROR_RETENTION_SECONDS = 60


class ErrorRecoveryEngine:
    def __init__(self, platform, scheduler, lock=None, clock=datetime.now,
                 start_timer=default_start_timer, cooldown=None, quiescence_delay=None,
                 backoff_base=None, backoff_max=None, use_backoff=None):
        self._platform = platform
        self._scheduler = scheduler
        self._lock = lock or threading.RLock()
        self._clock = clock
        self._start_timer = start_timer
        self._cooldown = cooldown if cooldown is not None else settings.ERROR_COOLDOWN_SECONDS
        self._quiescence_delay = (
            quiescence_delay if quiescence_delay is not None else settings.QUIESCENCE_DELAY_SECONDS
        )
        self._backoff_base = backoff_base if backoff_base is not None else settings.BACKOFF_BASE_SECONDS
        self._backoff_max = backoff_max if backoff_max is not None else settings.BACKOFF_MAX_SECONDS
        self._use_backoff = use_backoff if use_backoff is not None else settings.EPHEMERAL_RESET_BACKOFF
        self._recent_errors = {}  # handle -> datetime of last accepted error
        self._pending = {}  # token -> {"timer", "plan", "handles"}

    def backoff_delay(self, cycle):
        """
        Seconds to wait before reopening for the n-th consecutive reset.

        >>> [ErrorRecoveryEngine(None, None).backoff_delay(n) for n in range(1, 7)]
        [5.0, 10.0, 20.0, 40.0, 80.0, 120.0]
        """
        return float(min(self._backoff_base * 2 ** (cycle - 1), self._backoff_max))

    def pending_reopens(self):
        with self._lock:
            return len(self._pending)

    def recover(self, handle, url=None):
        """
        Recover a target that reported an error.

        Returns:
            dict: {"status": ...} describing what was done
        """
        with self._lock:
            if handle is None:
                return {"status": "skipped"}
            if self._scheduler.is_resetting(handle):
                logger.info(f"Target {handle} is already being reset, ignoring error")
                return {"status": "skipped"}

            active = database.get_watches_for_target(handle, states=[ACTIVE])
            if not active:
                logger.info(f"No active watches for target {handle}, ignoring error")
                return {"status": "skipped"}

            now = self._clock()
            if self._is_duplicate(handle, now):
                logger.info(f"Ignoring duplicate error for target {handle}")
                return {"status": "duplicate"}

            first = active[0]
            original_url = first["source_url"] or url
            if first["session_kind"] == EPHEMERAL:
                logger.warning(f"Error in ephemeral target {handle} - resetting all ephemeral containers")
                return self._reset_ephemeral_session(handle)

            logger.warning(f"Error page detected on target {handle} - retrying original URL {original_url}")
            return self._retry_normal(handle, original_url)

    def _is_duplicate(self, handle, now):
        for known, seen_at in list(self._recent_errors.items()):
            if (now - seen_at).total_seconds() > RECENT_ERROR_RETENTION_SECONDS:
                del self._recent_errors[known]

        last = self._recent_errors.get(handle)
        if last is not None and (now - last).total_seconds() < self._cooldown:
            return True
        self._recent_errors[handle] = now
        return False

    def _retry_normal(self, handle, url):
        try:
            result = self._platform.navigate_target(handle, url)
        except Exception as e:
            logger.error(f"Could not navigate target {handle} back to original URL: {e}")
            result = None

        if result == TARGET_GONE:
            logger.info(f"Target {handle} no longer exists, removing its watches")
            self._scheduler.drop_target(handle)
            return {"status": "gone"}

        self._scheduler.schedule(handle)
        return {"status": "retrying"}

    # --- ephemeral session reset ---

    def _collect_ephemeral_groups(self):
        """
        Active and in-backoff ephemeral watches still bound to a target,
        grouped container -> target with each container's placement.
        """
        groups = {}
        for watch in database.get_watches_by_state(ACTIVE, IN_BACKOFF):
            if watch["session_kind"] != EPHEMERAL or watch["target_handle"] is None:
                continue
            handle = watch["target_handle"]
            if self._scheduler.is_resetting(handle):
                continue

            container_id = self._platform.container_of(handle)
            if container_id is None:
                logger.warning(f"Could not find container for watch {watch['id']}")
                continue

            group = groups.get(container_id)
            if group is None:
                group = {"placement": self._placement_for(container_id, watch["source_url"]), "targets": {}}
                groups[container_id] = group
            target = group["targets"].setdefault(handle, {"url": watch["source_url"], "watch_ids": []})
            target["watch_ids"].append(watch["id"])
        return groups

    def _placement_for(self, container_id, url):
        try:
            return self._platform.get_container_placement(container_id)
        except Exception as e:
            logger.warning(f"Could not read placement of container {container_id}: {e}")
            return database.get_placement(normalize_url(url))

    def _reset_ephemeral_session(self, trigger_handle):
        groups = self._collect_ephemeral_groups()
        if not groups:
            logger.info("No ephemeral containers found to reset")
            self._scheduler.schedule(trigger_handle)
            return {"status": "retrying"}

        handles = [handle for group in groups.values() for handle in group["targets"]]
        self._scheduler.begin_reset(handles)
        logger.info(f"Closing {len(groups)} ephemeral container(s) for full session reset")

        plan = []
        failed_handles = []
        closed = 0
        for container_id, group in groups.items():
            try:
                self._platform.close_container(container_id)
                closed += 1
                logger.info(f"Closed ephemeral container {container_id}")
            except Exception as e:
                logger.error(f"Could not close ephemeral container {container_id}: {e}")
                for handle, target in group["targets"].items():
                    self._leave_unbound(target["watch_ids"], f"Could not close container: {e}")
                    failed_handles.append(handle)
                continue

            for handle, target in group["targets"].items():
                if group["placement"]:
                    database.save_placement(normalize_url(target["url"]), group["placement"])
                plan.append({
                    "old_handle": handle,
                    "url": target["url"],
                    "placement": group["placement"],
                    "watch_ids": target["watch_ids"],
                })

        if failed_handles:
            self._scheduler.end_reset(failed_handles)
        if not plan:
            return {"status": "failed"}

        watch_ids = [watch_id for entry in plan for watch_id in entry["watch_ids"]]
        counts = [w["reset_cycle_count"] for w in (database.get_watch(i) for i in watch_ids) if w]
        cycle = max(counts or [0]) + 1

        if self._use_backoff:
            delay = self.backoff_delay(cycle)
            database.update_watches(
                watch_ids,
                state=IN_BACKOFF,
                reset_cycle_count=cycle,
                target_handle=None,
                next_refresh_at=self._clock() + timedelta(seconds=delay),
            )
            logger.warning(f"Ephemeral reset cycle #{cycle}: reopening {len(plan)} target(s) in {delay} seconds")
            status = "backoff"
        else:
            delay = self._quiescence_delay
            database.update_watches(watch_ids, reset_cycle_count=cycle)
            status = "full-reset"

        self._arm_reopen(plan, max(delay, self._quiescence_delay), [entry["old_handle"] for entry in plan])
        return {"status": status, "containers_reset": closed, "cycle": cycle, "delay": delay}

    def _arm_reopen(self, plan, delay, handles):
        token = object()
        timer = self._start_timer(delay, lambda: self._reopen(token))
        self._pending[token] = {"timer": timer, "plan": plan, "handles": list(handles)}

    def _waiting_watches(self, entry):
        """Watches of a plan entry that still expect to be reopened."""
        waiting = []
        for watch_id in entry["watch_ids"]:
            watch = database.get_watch(watch_id)
            if watch is None or watch["state"] == FOUND:
                continue
            if watch["target_handle"] not in (None, entry["old_handle"]):
                continue
            waiting.append(watch)
        return waiting

    def _reopen(self, token):
        with self._lock:
            pending = self._pending.pop(token, None)
            if pending is None:
                return

            try:
                for entry in pending["plan"]:
                    watches = self._waiting_watches(entry)
                    if not watches:
                        logger.info(f"No watches left for {entry['url']}, not reopening")
                        continue
                    self._reopen_target(entry, [w["id"] for w in watches])
            finally:
                self._scheduler.end_reset(pending["handles"])

    def _reopen_target(self, entry, watch_ids):
        url = entry["url"]
        placement = entry["placement"] or database.get_placement(normalize_url(url))
        try:
            created = self._platform.create_container(url, ephemeral=True, placement=placement)
        except Exception as e:
            logger.error(f"Failed to reopen ephemeral container for {url}: {e}")
            self._leave_unbound(watch_ids, f"Could not reopen container: {e}")
            return None

        new_handle = created["handle"]
        if created.get("placement"):
            database.save_placement(normalize_url(url), created["placement"])
        database.update_watches(watch_ids, target_handle=new_handle, state=ACTIVE, recovery_error=None)
        logger.info(f"Reopened ephemeral container at {placement} with target {new_handle}")
        self._scheduler.schedule(new_handle)
        return new_handle

    def _leave_unbound(self, watch_ids, error):
        database.update_watches(
            watch_ids,
            state=ACTIVE,
            target_handle=None,
            next_refresh_at=None,
            recovery_error=error,
        )
        logger.error(f"Left {len(watch_ids)} watch(es) without a target: {error}")

    # --- pending reopen bookkeeping ---

    def cancel_orphaned(self):
        """Cancel pending reopens whose watches were all stopped."""
        with self._lock:
            for token, pending in list(self._pending.items()):
                if any(self._waiting_watches(entry) for entry in pending["plan"]):
                    continue
                pending["timer"].cancel()
                del self._pending[token]
                self._scheduler.end_reset(pending["handles"])
                logger.info("Cancelled pending reopen, no watches left")

    def cancel_all(self):
        with self._lock:
            for pending in self._pending.values():
                pending["timer"].cancel()
                self._scheduler.end_reset(pending["handles"])
            self._pending.clear()

    def resume_pending(self):
        """
        Re-arm backoff reopens persisted before a restart, honoring the
        remaining part of each deadline.

        Returns:
            int: Number of reopen timers armed
        """
        with self._lock:
            groups = {}
            for watch in database.get_watches_by_state(IN_BACKOFF):
                if watch["target_handle"] is not None:
                    continue
                groups.setdefault(watch["source_url"], []).append(watch)

            now = self._clock()
            for url, watches in groups.items():
                deadlines = [w["next_refresh_at"] for w in watches if w["next_refresh_at"]]
                delay = max(0.0, (max(deadlines) - now).total_seconds()) if deadlines else 0.0
                plan = [{
                    "old_handle": None,
                    "url": url,
                    "placement": database.get_placement(normalize_url(url)),
                    "watch_ids": [w["id"] for w in watches],
                }]
                logger.info(f"Resuming backoff reopen for {url} in {round(delay)} seconds")
                self._arm_reopen(plan, delay, [])
            return len(groups)
