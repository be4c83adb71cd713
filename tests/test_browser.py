import queue
import threading

import pytest
from selenium.common.exceptions import NoSuchWindowException, WebDriverException

from monitoring import browser
from monitoring.browser import SeleniumPlatform
from monitoring.types import TARGET_OK, TARGET_GONE, PageLoaded, NavigationFailed, TargetRemoved

URL = "https://example.com/tickets"


class FakeSwitchTo:
    def window(self, handle):
        pass


class FakeDriver:
    def __init__(self, fail_with=None):
        self.current_window_handle = "window-1"
        self.switch_to = FakeSwitchTo()
        self.current_url = "about:blank"
        self.page_source = ""
        self.title = ""
        self.fail_with = fail_with
        self.quit_event = threading.Event()

    def get(self, url):
        if self.fail_with:
            raise self.fail_with
        self.current_url = url
        self.page_source = "<html><body>Tickets available</body></html>"
        self.title = "Tickets"

    def refresh(self):
        self.get(self.current_url)

    def execute_script(self, script):
        return "complete"

    def get_window_rect(self):
        return {"x": 40, "y": 50, "width": 1000, "height": 700}

    def quit(self):
        self.quit_event.set()


@pytest.fixture(autouse=True)
def no_settle(monkeypatch):
    monkeypatch.setattr(browser, "SETTLE_SECONDS", 0)


def make_platform(driver):
    messages = queue.Queue()
    factory_calls = []

    def factory(ephemeral, placement, headless, driver_path):
        factory_calls.append({"ephemeral": ephemeral, "placement": placement, "driver_path": driver_path})
        return driver

    platform = SeleniumPlatform(headless=True, driver_factory=factory, driver_path="/opt/chromedriver")
    platform.set_listener(messages.put)
    return platform, messages, factory_calls


def test_create_container_loads_page_and_captures_snapshot():
    driver = FakeDriver()
    platform, messages, calls = make_platform(driver)

    created = platform.create_container(URL, ephemeral=True, placement={"left": 1, "top": 2, "width": 3, "height": 4})

    assert messages.get(timeout=5) == PageLoaded(created["handle"])
    assert calls == [{
        "ephemeral": True,
        "placement": {"left": 1, "top": 2, "width": 3, "height": 4},
        "driver_path": "/opt/chromedriver",
    }]
    snapshot = platform.page_snapshot(created["handle"])
    assert snapshot.url == URL
    assert "Tickets available" in snapshot.html
    assert platform.get_container_placement(created["container_id"]) == {
        "left": 40, "top": 50, "width": 1000, "height": 700,
    }
    assert platform.container_of(created["handle"]) == created["container_id"]
    platform.shutdown()


def test_refresh_and_navigate_report_gone_for_unknown_targets():
    platform, _, _ = make_platform(FakeDriver())
    assert platform.refresh_target("missing") == TARGET_GONE
    assert platform.navigate_target("missing", URL) == TARGET_GONE
    assert not platform.target_exists("missing")


def test_refresh_existing_target():
    platform, messages, _ = make_platform(FakeDriver())
    handle = platform.create_container(URL)["handle"]
    messages.get(timeout=5)

    assert platform.refresh_target(handle) == TARGET_OK
    assert messages.get(timeout=5) == PageLoaded(handle)
    platform.shutdown()


def test_close_container_reports_removed_targets():
    driver = FakeDriver()
    platform, messages, _ = make_platform(driver)
    created = platform.create_container(URL)
    messages.get(timeout=5)

    platform.close_container(created["container_id"])

    assert messages.get(timeout=5) == TargetRemoved(created["handle"])
    assert driver.quit_event.wait(timeout=5)
    assert not platform.target_exists(created["handle"])


def test_load_error_is_reported_as_navigation_failure():
    platform, messages, _ = make_platform(FakeDriver(fail_with=WebDriverException("net::ERR_NAME_NOT_RESOLVED")))
    handle = platform.create_container(URL)["handle"]

    message = messages.get(timeout=5)
    assert isinstance(message, NavigationFailed)
    assert message.handle == handle
    assert message.url == URL
    platform.shutdown()


def test_closed_window_is_reported_as_removed():
    platform, messages, _ = make_platform(FakeDriver(fail_with=NoSuchWindowException("window closed")))
    handle = platform.create_container(URL)["handle"]

    assert messages.get(timeout=5) == TargetRemoved(handle)
    assert not platform.target_exists(handle)


def test_driver_path_is_resolved_once(monkeypatch):
    installs = []

    class CountingManager:
        def install(self):
            installs.append(1)
            return "/tmp/chromedriver"

    monkeypatch.setattr(browser, "ChromeDriverManager", CountingManager)
    paths = []

    def factory(ephemeral, placement, headless, driver_path):
        paths.append(driver_path)
        return FakeDriver()

    platform = SeleniumPlatform(headless=True, driver_factory=factory)
    assert platform.prepare() == "/tmp/chromedriver"
    platform.create_container(URL)
    platform.create_container(URL, ephemeral=True)

    assert installs == [1]
    assert paths == ["/tmp/chromedriver", "/tmp/chromedriver"]
    platform.shutdown()


def test_close_container_does_not_wait_for_quit():
    release = threading.Event()

    class SlowQuitDriver(FakeDriver):
        def quit(self):
            release.wait(timeout=5)
            super().quit()

    driver = SlowQuitDriver()
    platform, messages, _ = make_platform(driver)
    created = platform.create_container(URL)
    messages.get(timeout=5)

    platform.close_container(created["container_id"])

    assert not driver.quit_event.is_set()
    assert not platform.target_exists(created["handle"])
    release.set()
    assert driver.quit_event.wait(timeout=5)
