"""
Main Monitor Class

Composition root of the watch engine. Owns the lock that serializes every
store mutation and timer change (the scheduling authority), wires the
scheduler, watchdog, recovery engine and dispatcher together and exposes the
operations the user-facing layer calls.
"""

import uuid
import logging
import threading
from datetime import datetime, timedelta

from config import settings
from config import database
from monitoring import history
from monitoring import saved_configs
from monitoring.content import normalize_match_spec
from monitoring.dispatcher import OutcomeDispatcher
from monitoring.errors import (
    ConfigNotFoundError,
    InvalidWatchError,
    MonitorError,
    RecoveryOperationFailed,
    WatchNotFoundError,
)
from monitoring.notifier import Notifier
from monitoring.recovery import ErrorRecoveryEngine
from monitoring.scheduler import TargetScheduler
from monitoring.timers import start_timer as default_start_timer
from monitoring.types import ACTIVE, FOUND, NORMAL, EPHEMERAL
from monitoring.watchdog import StuckWatchdog
from utils.url_tools import normalize_url, is_http_url

logger = logging.getLogger(__name__)

# Grace period on a new watch before the watchdog may consider it stuck
INITIAL_GRACE_SECONDS = 2


class Monitor:
    """Watch registry plus the scheduling, recovery and watchdog machinery."""

    def __init__(self, platform, notifier=None, clock=datetime.now, start_timer=default_start_timer,
                 use_backoff=None, watchdog_interval=None, stuck_threshold=None, stuck_buffer=None,
                 error_cooldown=None, quiescence_delay=None, backoff_base=None, backoff_max=None):
        self.lock = threading.RLock()
        self.platform = platform
        self.clock = clock

        self.scheduler = TargetScheduler(platform, self.lock, clock, start_timer)
        self.watchdog = StuckWatchdog(
            platform, self.scheduler, self.lock, clock, start_timer,
            interval=watchdog_interval, threshold=stuck_threshold, buffer=stuck_buffer,
        )
        self.scheduler.set_on_armed(self.watchdog.ensure_running)
        self.recovery = ErrorRecoveryEngine(
            platform, self.scheduler, self.lock, clock, start_timer,
            cooldown=error_cooldown, quiescence_delay=quiescence_delay,
            backoff_base=backoff_base, backoff_max=backoff_max, use_backoff=use_backoff,
        )
        self.notifier = notifier if notifier is not None else Notifier(platform)
        self.dispatcher = OutcomeDispatcher(
            platform, self.scheduler, self.recovery, self.notifier, self.lock, clock,
        )
        platform.set_listener(self.dispatcher.post)

    # --- lifecycle ---

    def cold_start(self):
        """
        Rebuild per-target timers from persisted watches. Active watches whose
        target no longer exists are deleted; pending backoff reopens are
        re-armed.

        Returns:
            dict: {"restored": n, "dropped": n, "resumed": n}
        """
        with self.lock:
            logger.info("Restoring timers from stored watches...")
            handles = []
            for watch in database.get_watches_by_state(ACTIVE):
                handle = watch["target_handle"]
                if handle is not None and handle not in handles:
                    handles.append(handle)

            restored = dropped = 0
            for handle in handles:
                if self.platform.target_exists(handle):
                    self.scheduler.schedule(handle)
                    restored += 1
                else:
                    logger.info(f"Target {handle} does not exist anymore, removing its watches")
                    self.scheduler.drop_target(handle)
                    dropped += 1

            resumed = self.recovery.resume_pending()
            if database.count_watches_by_state(ACTIVE):
                self.watchdog.ensure_running()

            logger.info(f"Cold start: {restored} target(s) restored, {dropped} dropped, {resumed} reopen(s) resumed")
            return {"restored": restored, "dropped": dropped, "resumed": resumed}

    def start(self):
        self.cold_start()
        self.dispatcher.start()

    def shutdown(self):
        self.dispatcher.stop()
        with self.lock:
            self.scheduler.cancel_all()
            self.recovery.cancel_all()
            self.watchdog.stop()

    # --- helpers ---

    def _require(self, watch_id):
        watch = database.get_watch(watch_id)
        if watch is None:
            raise WatchNotFoundError(f"Watch {watch_id} not found")
        return watch

    @staticmethod
    def _validate_interval(interval_seconds):
        if interval_seconds is None:
            return settings.DEFAULT_INTERVAL_SECONDS
        try:
            interval = int(interval_seconds)
        except (TypeError, ValueError):
            raise InvalidWatchError(f"Invalid refresh interval: {interval_seconds!r}")
        return max(settings.MIN_INTERVAL_SECONDS, min(interval, settings.MAX_INTERVAL_SECONDS))

    def _open_container(self, url, session_kind):
        placement = database.get_placement(normalize_url(url))
        created = self.platform.create_container(url, ephemeral=session_kind == EPHEMERAL, placement=placement)
        if created.get("placement"):
            database.save_placement(normalize_url(url), created["placement"])
        return created

    def _archive_and_delete(self, watch):
        if watch["state"] == FOUND and not history.archive_watch(watch, dismissed_at=self.clock()):
            raise MonitorError(f"Could not archive watch {watch['id']}")
        database.delete_watch(watch["id"])

    # --- watches ---

    def start_watch(self, url, match_spec, interval_seconds=None, display_label="",
                    session_kind=NORMAL, target_handle=None):
        """
        Create a watch. Without a target handle a new container is opened on
        ``url``.

        Returns:
            dict: The stored watch
        """
        url = (url or "").strip()
        if not is_http_url(url):
            raise InvalidWatchError(f"Invalid URL: {url!r}")
        if session_kind not in (NORMAL, EPHEMERAL):
            raise InvalidWatchError(f"Unknown session kind: {session_kind!r}")
        match_spec = normalize_match_spec(match_spec)
        interval = self._validate_interval(interval_seconds)

        with self.lock:
            if target_handle is None:
                try:
                    target_handle = self._open_container(url, session_kind)["handle"]
                except Exception as e:
                    logger.error(f"Could not open a container for {url}: {e}")
                    raise MonitorError(f"Could not open {url}: {e}")
            elif not self.platform.target_exists(target_handle):
                raise InvalidWatchError(f"Target {target_handle} does not exist")

            watch = database.create_watch(
                uuid.uuid4().hex,
                target_handle,
                match_spec,
                interval,
                url,
                display_label=display_label or "",
                session_kind=session_kind,
                next_refresh_at=self.clock() + timedelta(seconds=interval + INITIAL_GRACE_SECONDS),
            )
            if watch is None:
                raise MonitorError("Could not store watch")

            logger.info(f"Started monitoring: {watch['id']} on target {target_handle}")
            self.scheduler.schedule(target_handle)
            return database.get_watch(watch["id"])

    def stop_watch(self, watch_id):
        """
        Stop a watch. A found watch is archived to the history first.
        """
        with self.lock:
            watch = self._require(watch_id)
            self._archive_and_delete(watch)
            if watch["target_handle"]:
                self.scheduler.schedule(watch["target_handle"])
            self.recovery.cancel_orphaned()
            logger.info(f"Stopped watch {watch_id}")
            return watch

    def dismiss(self, watch_id):
        """Archive a found watch to the history and remove it."""
        with self.lock:
            watch = self._require(watch_id)
            if watch["state"] != FOUND:
                raise InvalidWatchError(f"Watch {watch_id} has not found anything yet")
            self._archive_and_delete(watch)
            logger.info(f"Dismissed watch {watch_id}")
            return watch

    def dismiss_target(self, target_handle):
        """
        Dismiss every found watch on a target.

        Returns:
            int: Number of dismissed watches
        """
        with self.lock:
            found = database.get_watches_for_target(target_handle, states=[FOUND])
            for watch in found:
                self._archive_and_delete(watch)
            return len(found)

    def stop_all(self):
        """
        Stop every watch. Found watches are archived first; one that cannot
        be archived is kept.

        Returns:
            int: Number of removed watches
        """
        with self.lock:
            self.scheduler.cancel_all()
            self.recovery.cancel_all()
            self.watchdog.stop()

            removed = 0
            for watch in database.get_all_watches():
                if watch["state"] == FOUND and not history.archive_watch(watch, dismissed_at=self.clock()):
                    logger.error(f"Could not archive watch {watch['id']}, keeping it")
                    continue
                if database.delete_watch(watch["id"]):
                    removed += 1
            logger.info(f"All monitoring stopped ({removed} watches removed)")
            return removed

    def enable_ephemeral(self, watch_id):
        """
        Move a watch to its own ephemeral container.

        Returns:
            dict: {"status": "enabled" | "already_enabled", "watch": ...}
        """
        with self.lock:
            watch = self._require(watch_id)
            if watch["state"] == FOUND:
                raise InvalidWatchError(f"Watch {watch_id} already found its text")
            if watch["session_kind"] == EPHEMERAL:
                return {"status": "already_enabled", "watch": watch}

            old_handle = watch["target_handle"]
            try:
                created = self._open_container(watch["source_url"], EPHEMERAL)
            except Exception as e:
                logger.error(f"Failed to enable ephemeral session for watch {watch_id}: {e}")
                raise RecoveryOperationFailed(f"Could not open ephemeral container: {e}")

            database.update_watch(
                watch_id,
                target_handle=created["handle"],
                session_kind=EPHEMERAL,
                reset_cycle_count=1,
                state=ACTIVE,
                recovery_error=None,
            )
            self.scheduler.schedule(created["handle"])

            if old_handle:
                self.scheduler.schedule(old_handle)
                container_id = self.platform.container_of(old_handle)
                if container_id and not database.get_watches_for_target(old_handle):
                    try:
                        self.platform.close_container(container_id)
                    except Exception as e:
                        logger.warning(f"Could not close original container {container_id}: {e}")

            logger.info(f"Enabled ephemeral session for watch {watch_id}, new target {created['handle']}")
            return {"status": "enabled", "watch": database.get_watch(watch_id)}

    def rebind(self, watch_id):
        """
        Give a watch left without a target (failed recovery) a new container.
        """
        with self.lock:
            watch = self._require(watch_id)
            if watch["state"] == FOUND:
                raise InvalidWatchError(f"Watch {watch_id} already found its text")
            if watch["target_handle"] and self.platform.target_exists(watch["target_handle"]):
                return watch

            try:
                created = self._open_container(watch["source_url"], watch["session_kind"])
            except Exception as e:
                database.update_watch(watch_id, recovery_error=f"Could not reopen container: {e}")
                raise RecoveryOperationFailed(f"Could not reopen {watch['source_url']}: {e}")

            database.update_watch(watch_id, target_handle=created["handle"], state=ACTIVE, recovery_error=None)
            self.scheduler.schedule(created["handle"])
            self.recovery.cancel_orphaned()
            logger.info(f"Rebound watch {watch_id} to target {created['handle']}")
            return database.get_watch(watch_id)

    def get_watch(self, watch_id):
        return self._require(watch_id)

    def list_watches(self):
        return database.get_all_watches()

    def status(self, target_handle):
        """Active watches of one target."""
        active = database.get_watches_for_target(target_handle, states=[ACTIVE])
        return {"is_monitored": bool(active), "watches": active}

    # --- history ---

    def list_history(self):
        return history.list_history()

    def remove_history_entry(self, index):
        return history.remove_history_entry(index)

    def clear_history(self):
        return history.clear_history()

    # --- saved configurations ---

    def save_config(self, name):
        watches = [w for w in database.get_all_watches() if w["state"] != FOUND]
        if not watches:
            raise InvalidWatchError("No watches to save")
        config = saved_configs.save_config(name, watches, created_at=self.clock())
        if config is None:
            raise MonitorError("Could not save configuration")
        return config

    def list_configs(self):
        return saved_configs.list_configs()

    def delete_config(self, config_id):
        if not saved_configs.delete_config(config_id):
            raise ConfigNotFoundError(f"Configuration {config_id} not found")

    def restore_config(self, config_id):
        """
        Recreate the watches of a saved configuration, one new container per
        URL and session kind.

        Returns:
            list: Created watches
        """
        config = saved_configs.get_config(config_id)
        if config is None:
            raise ConfigNotFoundError(f"Configuration {config_id} not found")

        created = []
        with self.lock:
            for (url, session_kind), templates in saved_configs.group_templates(config["templates"]):
                try:
                    handle = self._open_container(url, session_kind)["handle"]
                except Exception as e:
                    logger.error(f"Could not restore watches for {url}: {e}")
                    continue
                for template in templates:
                    try:
                        created.append(self.start_watch(
                            url,
                            template["match_spec"],
                            interval_seconds=template.get("interval_seconds"),
                            display_label=template.get("display_label") or "",
                            session_kind=session_kind,
                            target_handle=handle,
                        ))
                    except MonitorError as e:
                        logger.error(f"Could not restore watch for {url}: {e}")

        logger.info(f"Restored {len(created)} watches from configuration '{config['name']}'")
        return created
