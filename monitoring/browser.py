"""
Selenium Browser Platform

Each container is its own Chrome instance. Ephemeral containers run with
--incognito, so closing every ephemeral container throws the session away
(cookies, cache, connections). Page loads run on a single worker thread per
container and report back through platform messages.
"""

import time
import uuid
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from selenium import webdriver
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.support.ui import WebDriverWait
from selenium.common.exceptions import (
    InvalidSessionIdException,
    NoSuchWindowException,
    TimeoutException,
    WebDriverException,
)
from webdriver_manager.chrome import ChromeDriverManager

from config import settings
from monitoring.platform import TargetPlatform
from monitoring.types import (
    TARGET_OK,
    TARGET_GONE,
    PageSnapshot,
    PageLoaded,
    NavigationFailed,
    TargetRemoved,
)

logger = logging.getLogger(__name__)

# Let late scripts render before the page is captured
SETTLE_SECONDS = 1.5

DEFAULT_PLACEMENT = {"left": 0, "top": 0, "width": 1280, "height": 900}


def resolve_driver_path():
    """Download (or reuse the cached) chromedriver and return its path."""
    path = ChromeDriverManager().install()
    logger.info(f"Using chromedriver at {path}")
    return path


def get_driver(ephemeral=False, placement=None, headless=None, driver_path=None):
    """
    Get a configured Chrome driver.
    """
    if headless is None:
        headless = settings.HEADLESS

    chrome_options = Options()
    if headless:
        chrome_options.add_argument("--headless=new")

    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    if ephemeral:
        chrome_options.add_argument("--incognito")

    placement = placement or DEFAULT_PLACEMENT
    chrome_options.add_argument(f"--window-position={placement['left']},{placement['top']}")
    chrome_options.add_argument(f"--window-size={placement['width']},{placement['height']}")

    chrome_options.add_experimental_option("excludeSwitches", ["enable-automation"])
    chrome_options.add_experimental_option("useAutomationExtension", False)

    driver = webdriver.Chrome(
        service=Service(driver_path or resolve_driver_path()), options=chrome_options
    )
    driver.set_page_load_timeout(settings.PAGE_LOAD_TIMEOUT)
    return driver


class BrowserContainer:
    """One Chrome instance and the worker that serializes its driver calls."""

    def __init__(self, container_id, driver, ephemeral, placement):
        self.container_id = container_id
        self.driver = driver
        self.ephemeral = ephemeral
        self.placement = placement
        self.windows = {}  # handle -> selenium window handle
        self.closed = False
        self.executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"container-{container_id[:8]}"
        )


class SeleniumPlatform(TargetPlatform):
    """Target platform backed by Selenium-driven Chrome windows."""

    def __init__(self, headless=None, driver_factory=get_driver, driver_path=None):
        super().__init__()
        self._headless = headless
        self._driver_factory = driver_factory
        self._driver_path = driver_path
        self._lock = threading.Lock()
        self._containers = {}
        self._targets = {}  # handle -> container_id
        self._snapshots = {}

    def prepare(self):
        """
        Resolve the chromedriver path once, before any container is opened.

        Returns:
            str: Path of the chromedriver binary
        """
        if self._driver_path is None:
            self._driver_path = resolve_driver_path()
        return self._driver_path

    # --- lookup ---

    def _container_for(self, handle):
        with self._lock:
            container_id = self._targets.get(handle)
            container = self._containers.get(container_id) if container_id else None
        if container is None or container.closed:
            return None
        return container

    def container_of(self, handle):
        container = self._container_for(handle)
        return container.container_id if container else None

    def target_exists(self, handle):
        return self._container_for(handle) is not None

    def page_snapshot(self, handle):
        with self._lock:
            return self._snapshots.get(handle)

    def get_container_placement(self, container_id):
        with self._lock:
            container = self._containers.get(container_id)
        if container is None:
            raise KeyError(f"Unknown container {container_id}")
        return dict(container.placement)

    # --- target operations ---

    def create_container(self, url, ephemeral=False, placement=None):
        container_id = uuid.uuid4().hex
        driver = self._driver_factory(
            ephemeral=ephemeral, placement=placement, headless=self._headless, driver_path=self.prepare()
        )
        container = BrowserContainer(container_id, driver, ephemeral, dict(placement or DEFAULT_PLACEMENT))

        handle = uuid.uuid4().hex
        container.windows[handle] = driver.current_window_handle
        with self._lock:
            self._containers[container_id] = container
            self._targets[handle] = container_id

        kind = "ephemeral" if ephemeral else "normal"
        logger.info(f"Opened {kind} container {container_id} with target {handle} for {url}")
        container.executor.submit(self._load, container, handle, url)
        return {"handle": handle, "container_id": container_id, "placement": dict(container.placement)}

    def refresh_target(self, handle):
        container = self._container_for(handle)
        if container is None:
            return TARGET_GONE
        logger.info(f"Refreshing target {handle}")
        container.executor.submit(self._load, container, handle, None)
        return TARGET_OK

    def navigate_target(self, handle, url):
        container = self._container_for(handle)
        if container is None:
            return TARGET_GONE
        logger.info(f"Navigating target {handle} to {url}")
        container.executor.submit(self._load, container, handle, url)
        return TARGET_OK

    def focus_target(self, handle):
        container = self._container_for(handle)
        if container is None:
            return

        def _focus():
            try:
                container.driver.switch_to.window(container.windows[handle])
                container.driver.execute_script("window.focus();")
            except WebDriverException as e:
                logger.warning(f"Could not focus target {handle}: {e}")

        container.executor.submit(_focus)

    def close_container(self, container_id):
        """Detach a container and quit its Chrome on a background thread."""
        container = self._detach(container_id)
        if container is None:
            return
        threading.Thread(
            target=self._quit, args=(container,), name=f"quit-{container_id[:8]}", daemon=True
        ).start()

    def shutdown(self):
        with self._lock:
            container_ids = list(self._containers)
        for container_id in container_ids:
            container = self._detach(container_id)
            if container is not None:
                self._quit(container)

    def _detach(self, container_id):
        with self._lock:
            container = self._containers.pop(container_id, None)
            if container is None:
                return None
            container.closed = True
            handles = list(container.windows)
            for handle in handles:
                self._targets.pop(handle, None)
                self._snapshots.pop(handle, None)

        container.executor.shutdown(wait=False, cancel_futures=True)
        for handle in handles:
            self.emit(TargetRemoved(handle))
        return container

    def _quit(self, container):
        try:
            container.driver.quit()
            logger.info(f"Closed container {container.container_id}")
        except Exception as e:
            logger.warning(f"Error quitting container {container.container_id}: {e}")

    # --- worker ---

    def _forget_container(self, container):
        with self._lock:
            self._containers.pop(container.container_id, None)
            container.closed = True
            for handle in container.windows:
                self._targets.pop(handle, None)
                self._snapshots.pop(handle, None)

    def _load(self, container, handle, url):
        """Refresh (url=None) or navigate a target, then capture its content."""
        if container.closed:
            return
        driver = container.driver
        try:
            driver.switch_to.window(container.windows[handle])
            if url:
                driver.get(url)
            else:
                driver.refresh()

            WebDriverWait(driver, settings.PAGE_LOAD_TIMEOUT).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
            time.sleep(SETTLE_SECONDS)

            snapshot = PageSnapshot(url=driver.current_url, html=driver.page_source, title=driver.title)
            rect = driver.get_window_rect()
            with self._lock:
                self._snapshots[handle] = snapshot
                container.placement = {
                    "left": rect.get("x", 0),
                    "top": rect.get("y", 0),
                    "width": rect.get("width", DEFAULT_PLACEMENT["width"]),
                    "height": rect.get("height", DEFAULT_PLACEMENT["height"]),
                }
            self.emit(PageLoaded(handle))

        except (NoSuchWindowException, InvalidSessionIdException) as e:
            if container.closed:
                return
            logger.warning(f"Target {handle} is gone: {e}")
            self._forget_container(container)
            self.emit(TargetRemoved(handle))
        except TimeoutException:
            if container.closed:
                return
            logger.warning(f"Timed out loading target {handle}")
            self.emit(NavigationFailed(handle, url, "timeout"))
        except WebDriverException as e:
            if container.closed:
                return
            logger.error(f"WebDriver error on target {handle}: {e}")
            self.emit(NavigationFailed(handle, url, str(e)))
