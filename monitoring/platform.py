"""
Target Platform Contract

The scheduler, watchdog and recovery engine drive targets only through this
interface. Calls return immediately: loads happen in the background and their
results come back later as messages (PageLoaded, NavigationFailed,
TargetRemoved) delivered to the registered listener.
"""

import logging

from monitoring import content

logger = logging.getLogger(__name__)


class TargetPlatform:
    """Base class for target platforms."""

    def __init__(self):
        self._listener = None

    def set_listener(self, listener):
        """Register the callable that receives platform messages."""
        self._listener = listener

    def emit(self, message):
        if self._listener is None:
            logger.debug(f"No listener for {message}")
            return
        self._listener(message)

    def refresh_target(self, handle):
        """Reload a target in place. Returns TARGET_OK or TARGET_GONE."""
        raise NotImplementedError

    def navigate_target(self, handle, url):
        """Load ``url`` in a target. Returns TARGET_OK or TARGET_GONE."""
        raise NotImplementedError

    def create_container(self, url, ephemeral=False, placement=None):
        """
        Open a new container showing ``url``.

        Returns:
            dict: {"handle", "container_id", "placement"}
        """
        raise NotImplementedError

    def close_container(self, container_id):
        raise NotImplementedError

    def get_container_placement(self, container_id):
        """Returns {"left", "top", "width", "height"}."""
        raise NotImplementedError

    def container_of(self, handle):
        """Container id hosting a target, or None."""
        raise NotImplementedError

    def target_exists(self, handle):
        raise NotImplementedError

    def page_snapshot(self, handle):
        """Latest PageSnapshot captured for a target, or None."""
        raise NotImplementedError

    def evaluate_content(self, handle, match_spec, expected_url):
        """
        Evaluate a watch against the target's latest content.

        Returns:
            content.Evaluation
        """
        return content.evaluate_page(self.page_snapshot(handle), match_spec, expected_url)

    def focus_target(self, handle):
        """Bring a target to the front. Optional."""

    def shutdown(self):
        """Release every container. Optional."""
