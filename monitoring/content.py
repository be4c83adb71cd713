"""
Content Evaluation

Decides what a loaded page means for a watch: the search terms matched, the
page is an error page, the target was redirected away from the watched URL,
or there is nothing to read yet.

Terms are evaluated with AND binding tighter than OR: the term list is split
into OR-separated groups and a page matches when every term of any one group
is present (case-insensitive substring match).
"""

import logging
from collections import namedtuple
from bs4 import BeautifulSoup

from monitoring.types import AND, OR
from monitoring.errors import InvalidWatchError
from utils.url_tools import urls_diverged

logger = logging.getLogger(__name__)

MATCHED = "matched"
NO_MATCH = "no_match"
NO_CONTENT = "no_content"
ERROR_PAGE = "error_page"
REDIRECTED = "redirected"

Evaluation = namedtuple("Evaluation", ["outcome", "current_url"])

# Phrases that identify a failure page wherever they appear
ERROR_PHRASES = [
    "this site can't be reached",
    "this site can’t be reached",
    "this page isn't working",
    "this page isn’t working",
    "err_connection_",
    "err_name_not_resolved",
    "err_timed_out",
    "err_too_many_redirects",
    "502 bad gateway",
    "503 service unavailable",
    "504 gateway timeout",
    "429 too many requests",
    "rate limit exceeded",
    "access denied",
    "you have been blocked",
]

# Keywords that only count on a very short page
SHORT_PAGE_KEYWORDS = [
    "error",
    "denied",
    "blocked",
    "forbidden",
    "unavailable",
    "too many requests",
    "captcha",
    "try again",
]

SHORT_PAGE_CHARS = 500


def normalize_match_spec(match_spec):
    """
    Validate a list of ``{"term", "joiner"}`` entries and return a clean copy.

    The first joiner is always None. Joiners are upper-cased; anything other
    than AND starts a new OR group.

    Raises:
        InvalidWatchError: If the list is empty or a term is blank
    """
    if not match_spec:
        raise InvalidWatchError("At least one search term is required")

    normalized = []
    for index, entry in enumerate(match_spec):
        if isinstance(entry, str):
            entry = {"term": entry, "joiner": None}
        term = str(entry.get("term") or "").strip()
        if not term:
            raise InvalidWatchError(f"Search term #{index + 1} is empty")
        joiner = entry.get("joiner")
        joiner = joiner.strip().upper() if isinstance(joiner, str) and joiner.strip() else None
        if joiner not in (None, AND, OR):
            raise InvalidWatchError(f"Unknown joiner '{entry.get('joiner')}' for term '{term}'")
        normalized.append({"term": term, "joiner": None if index == 0 else joiner})
    return normalized


def group_terms(match_spec):
    """
    Split terms into OR-separated AND groups.

    >>> group_terms([{"term": "A", "joiner": None}, {"term": "B", "joiner": "AND"},
    ...              {"term": "C", "joiner": "OR"}])
    [['A', 'B'], ['C']]
    """
    groups = []
    for index, entry in enumerate(match_spec):
        term = entry["term"].lower()
        if index > 0 and entry.get("joiner") == AND and groups:
            groups[-1].append(term)
        else:
            groups.append([term])
    return groups


def matches(text, match_spec):
    """True if any AND group has all of its terms present in text."""
    haystack = (text or "").lower()
    return any(all(term in haystack for term in group) for group in group_terms(match_spec))


def describe_match_spec(match_spec):
    parts = []
    for index, entry in enumerate(match_spec):
        if index > 0:
            parts.append(entry.get("joiner") or OR)
        parts.append(f'"{entry["term"]}"')
    return " ".join(parts)


def page_text(html):
    """Visible text of an HTML document."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return soup.get_text(" ", strip=True)


def looks_like_error_page(text, title=""):
    """
    Check for an explicit error phrase, or a very short body that contains an
    error/denial keyword.
    """
    combined = f"{title or ''} {text or ''}".lower()
    for phrase in ERROR_PHRASES:
        if phrase in combined:
            logger.debug(f"Error phrase on page: '{phrase}'")
            return True

    body = (text or "").strip().lower()
    if len(body) < SHORT_PAGE_CHARS:
        for keyword in SHORT_PAGE_KEYWORDS:
            if keyword in body:
                logger.debug(f"Short page ({len(body)} chars) contains '{keyword}'")
                return True
    return False


def evaluate_page(page, match_spec, expected_url):
    """
    Evaluate one watch against a page snapshot.

    Args:
        page (PageSnapshot or None): Latest content of the target
        match_spec (list): Normalized search terms
        expected_url (str): URL the watch was configured for

    Returns:
        Evaluation: outcome plus the page's current URL
    """
    if page is None:
        return Evaluation(NO_CONTENT, None)

    text = page_text(page.html)
    if not text:
        return Evaluation(NO_CONTENT, page.url)

    if looks_like_error_page(text, page.title):
        return Evaluation(ERROR_PAGE, page.url)

    if urls_diverged(expected_url, page.url):
        return Evaluation(REDIRECTED, page.url)

    if matches(text, match_spec):
        return Evaluation(MATCHED, page.url)
    return Evaluation(NO_MATCH, page.url)
