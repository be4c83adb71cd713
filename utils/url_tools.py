"""
URL Utilities

Helpers for comparing target locations with the URL a watch was configured
for. Only origin and path are significant; query string and fragment are
ignored.
"""

from urllib.parse import urlsplit


def normalize_url(url):
    """
    Reduce a URL to origin + path.

    Args:
        url (str): Any URL

    Returns:
        str: e.g. "https://example.com/tickets" for
             "https://Example.com/tickets/?page=2#top"
    """
    if not url:
        return ''
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        return url.strip()
    path = parts.path.rstrip('/') or '/'
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}"


def urls_diverged(original_url, current_url):
    """
    Check whether the current location differs from the configured one in
    origin or path.
    """
    if not original_url or not current_url:
        return False
    if current_url in ('about:blank', 'data:,'):
        return False
    return normalize_url(original_url) != normalize_url(current_url)


def is_http_url(url):
    if not url:
        return False
    parts = urlsplit(url.strip())
    return parts.scheme in ('http', 'https') and bool(parts.netloc)
