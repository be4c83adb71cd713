"""Shared fixtures: temporary database, manual clock/timers and an in-memory target platform."""

import itertools
from datetime import datetime, timedelta
from functools import partial

import pytest

from config import database
from monitoring.monitor import Monitor
from monitoring.platform import TargetPlatform
from monitoring.types import TARGET_OK, TARGET_GONE, PageSnapshot, PageLoaded, TargetRemoved

URL = "https://example.com/tickets"


class FakeClock:
    def __init__(self, start=datetime(2026, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeTimer:
    def __init__(self, due, delay, callback):
        self.due = due
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualTimers:
    """start_timer replacement driven by FakeClock."""

    def __init__(self, clock):
        self.clock = clock
        self.timers = []

    def start(self, delay, callback, name=None):
        timer = FakeTimer(self.clock.now + timedelta(seconds=delay), delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def for_target(self, handle):
        """Live refresh timers armed by the scheduler for one target."""
        return [
            t for t in self.pending()
            if isinstance(t.callback, partial) and t.callback.args[0] == handle
        ]

    def advance(self, seconds):
        target = self.clock.now + timedelta(seconds=seconds)
        while True:
            due = sorted((t for t in self.pending() if t.due <= target), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self.clock.now = max(self.clock.now, timer.due)
            timer.fired = True
            timer.callback()
        self.clock.now = target


class FakePlatform(TargetPlatform):
    """In-memory containers and targets; loads are completed by calling ``load``."""

    def __init__(self):
        super().__init__()
        self.containers = {}  # container_id -> {"handles", "ephemeral", "placement"}
        self.targets = {}  # handle -> container_id
        self.urls = {}
        self.pages = {}
        self.refreshes = []
        self.navigations = []
        self.created = []
        self.closed = []
        self.focused = []
        self.fail_create = False
        self.fail_close = False
        self._ids = itertools.count(1)

    def add_target(self, url=URL, ephemeral=False, placement=None):
        return self.create_container(url, ephemeral=ephemeral, placement=placement)["handle"]

    def remove_target(self, handle):
        """Make a target vanish without telling anyone."""
        container_id = self.targets.pop(handle, None)
        if container_id in self.containers:
            self.containers[container_id]["handles"].remove(handle)

    def load(self, handle, html, url=None, title=""):
        self.pages[handle] = PageSnapshot(url=url or self.urls[handle], html=html, title=title)
        self.emit(PageLoaded(handle))

    def create_container(self, url, ephemeral=False, placement=None):
        if self.fail_create:
            raise RuntimeError("container creation failed")
        n = next(self._ids)
        container_id, handle = f"c{n}", f"t{n}"
        placement = dict(placement or {"left": 100 * n, "top": 20, "width": 800, "height": 600})
        self.containers[container_id] = {"handles": [handle], "ephemeral": ephemeral, "placement": placement}
        self.targets[handle] = container_id
        self.urls[handle] = url
        self.created.append({"url": url, "ephemeral": ephemeral, "placement": placement, "handle": handle})
        return {"handle": handle, "container_id": container_id, "placement": dict(placement)}

    def close_container(self, container_id):
        if self.fail_close:
            raise RuntimeError("container close failed")
        container = self.containers.pop(container_id)
        self.closed.append(container_id)
        for handle in container["handles"]:
            self.targets.pop(handle, None)
            self.pages.pop(handle, None)
            self.emit(TargetRemoved(handle))

    def refresh_target(self, handle):
        if handle not in self.targets:
            return TARGET_GONE
        self.refreshes.append(handle)
        return TARGET_OK

    def navigate_target(self, handle, url):
        if handle not in self.targets:
            return TARGET_GONE
        self.navigations.append((handle, url))
        return TARGET_OK

    def get_container_placement(self, container_id):
        return dict(self.containers[container_id]["placement"])

    def container_of(self, handle):
        return self.targets.get(handle)

    def target_exists(self, handle):
        return handle in self.targets

    def page_snapshot(self, handle):
        return self.pages.get(handle)

    def focus_target(self, handle):
        self.focused.append(handle)


class RecordingNotifier:
    def __init__(self):
        self.matches = []

    def notify_match(self, watch):
        self.matches.append(watch)


@pytest.fixture
def db(tmp_path):
    database.init_database(f"sqlite:///{tmp_path / 'watchdog.db'}")
    yield database
    database.engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return ManualTimers(clock)


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_monitor(db, platform, notifier, clock, timers):
    def _make(**kwargs):
        return Monitor(platform, notifier=notifier, clock=clock, start_timer=timers.start, **kwargs)
    return _make


@pytest.fixture
def monitor(make_monitor):
    return make_monitor(use_backoff=True)
