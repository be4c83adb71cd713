"""
Configuration and persistence for the page watchdog application.
"""
