"""
Utility modules for the page watchdog application.
"""

from .url_tools import normalize_url, urls_diverged, is_http_url

__all__ = ['normalize_url', 'urls_diverged', 'is_http_url']
