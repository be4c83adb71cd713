#!/usr/bin/env python3
"""
Page Watchdog - Main Entry Point

Starts the watch engine and serves its JSON API with Flask.

Usage:
    python main.py
    python main.py --no-web
"""

import argparse


def main():
    parser = argparse.ArgumentParser(description="Page Watchdog")

    # Web app specific arguments
    parser.add_argument("--host", default="127.0.0.1", help="Web app host")
    parser.add_argument("--port", type=int, default=5000, help="Web app port")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument("--no-web", action="store_true", help="Run the engine only, without the API")
    parser.add_argument("--show-browser", action="store_true", help="Run Chrome with a visible window")

    args = parser.parse_args()

    from services import monitoring_daemon

    if args.no_web:
        monitoring_daemon.main()
        return

    monitoring_daemon.configure_logging()
    monitor = monitoring_daemon.build_monitor(headless=False if args.show_browser else None)

    from webapp.app import create_app
    app = create_app(monitor)
    print(f"Starting Page Watchdog...")
    print(f"Server running at: http://{args.host}:{args.port}")
    print(f"Debug mode: {'ON' if args.debug else 'OFF'}")

    monitor.start()
    try:
        app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False)
    finally:
        monitor.shutdown()
        monitor.platform.shutdown()


if __name__ == "__main__":
    main()
