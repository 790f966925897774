"""
Exceptions Module

Error taxonomy shared by the monitoring engine and the HTTP layer.
"""

from typing import Optional


class MonitorError(Exception):
    """Base class for all ArpMon errors."""


class ProviderError(MonitorError):
    """A discovery provider could not produce a snapshot.

    Recorded on the scan result as status ``error`` or ``partial``; never
    propagated out of the scheduler loop.
    """

    UNREACHABLE = "unreachable"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    ERROR = "error"

    REASONS = (UNREACHABLE, PERMISSION_DENIED, TIMEOUT, ERROR)

    def __init__(self, reason: str, message: Optional[str] = None):
        if reason not in self.REASONS:
            reason = self.ERROR
        self.reason = reason
        self.message = message or reason
        super().__init__(f"{reason}: {self.message}")


class ValidationError(MonitorError):
    """Malformed job configuration or command input."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NotFoundError(MonitorError):
    """An operation referenced an unknown job, alert, or device."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ConcurrentRunError(MonitorError):
    """A manual scan was requested while the same job is already running."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} is already running")
