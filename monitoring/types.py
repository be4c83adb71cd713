"""
Shared Monitoring Types

Watch states, session kinds and the typed messages that flow from the target
platform into the outcome dispatcher.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# Watch states
ACTIVE = "active"
FOUND = "found"
IN_BACKOFF = "in_backoff"

# Session kinds
NORMAL = "normal"
EPHEMERAL = "ephemeral"

# Match term joiners
AND = "AND"
OR = "OR"

# Platform call results
TARGET_OK = "ok"
TARGET_GONE = "gone"


@dataclass(frozen=True)
class PageSnapshot:
    """Content of a target captured after a load finished."""
    url: str
    html: str
    title: str = ""
    loaded_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Matched:
    handle: str
    watch_id: str


@dataclass(frozen=True)
class NoMatch:
    handle: str
    watch_id: str


@dataclass(frozen=True)
class NoContentAvailable:
    handle: str


@dataclass(frozen=True)
class TargetRedirected:
    handle: str
    original_url: str
    current_url: str


@dataclass(frozen=True)
class ErrorPageDetected:
    handle: str
    url: str


@dataclass(frozen=True)
class PageLoaded:
    """A refresh or navigation of the target finished; content can be evaluated."""
    handle: str


@dataclass(frozen=True)
class NavigationFailed:
    """The platform reported a load error before any content was available."""
    handle: str
    url: Optional[str] = None
    error: str = ""


@dataclass(frozen=True)
class TargetRemoved:
    handle: str
