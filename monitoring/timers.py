"""
Cancellable one-shot timers.

Components receive ``start_timer`` as a dependency so tests can drive time
manually.
"""

import threading


def start_timer(delay, callback, name=None):
    """
    Arm a daemon timer that calls ``callback`` once after ``delay`` seconds.

    Returns:
        threading.Timer: Object with a ``cancel()`` method
    """
    timer = threading.Timer(max(0.0, delay), callback)
    timer.daemon = True
    if name:
        timer.name = name
    timer.start()
    return timer
