"""
Monitoring Daemon

Background service that runs the watch engine without the web API: restores
timers for stored watches, then keeps the dispatcher, scheduler and watchdog
alive until a shutdown signal arrives.
"""

import sys
import time
import logging
import signal
from pathlib import Path
from dotenv import load_dotenv

# Load env vars
load_dotenv()

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from config.database import init_database
from monitoring.browser import SeleniumPlatform
from monitoring.log_buffer import install_log_buffer
from monitoring.monitor import Monitor

logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
running = True


def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.FileHandler(settings.LOG_FILE), logging.StreamHandler()],
    )
    install_log_buffer()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global running
    logger.info("Received shutdown signal. Stopping gracefully...")
    running = False


def build_monitor(headless=None):
    """Create the database, browser platform and monitor."""
    init_database()
    platform = SeleniumPlatform(headless=headless)
    platform.prepare()
    return Monitor(platform)


def main():
    """
    Main daemon loop.
    Starts the monitor and idles until SIGINT/SIGTERM.
    """
    global running

    configure_logging()

    # Register signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting Monitoring Daemon")
    logger.info("Press Ctrl+C to stop")

    monitor = build_monitor()
    try:
        monitor.start()
        while running:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        monitor.shutdown()
        monitor.platform.shutdown()
        logger.info("Monitoring Daemon stopped")


if __name__ == "__main__":
    main()
