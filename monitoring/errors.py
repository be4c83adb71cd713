"""
Monitoring Errors
"""


class MonitorError(Exception):
    """Base class for errors surfaced to the user-facing layer."""


class WatchNotFoundError(MonitorError):
    pass


class InvalidWatchError(MonitorError):
    """Bad match terms, interval, URL or a state that does not allow the operation."""


class RecoveryOperationFailed(MonitorError):
    """A container could not be closed or reopened during error recovery."""


class ConfigNotFoundError(MonitorError):
    pass
