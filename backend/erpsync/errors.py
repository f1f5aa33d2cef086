"""
Sync error taxonomy.

Row-level problems (RowError) are counted inside a batch and never escape it.
Everything else aborts the current run or step; the `retryable` flag tells
the caller whether re-sending the same step makes sense.
"""
from __future__ import annotations


class SyncError(Exception):
    """Base class for session-level sync failures."""

    retryable = False
    status_code = 500

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "retryable": self.retryable,
        }


class RemoteError(SyncError):
    """The remote backend could not deliver a dataset."""

    status_code = 502


class RemoteUnavailable(RemoteError):
    """Transport or authentication failure talking to the remote backend."""

    retryable = True


class RemoteFault(RemoteError):
    """The remote backend answered with a fault or an unreadable payload."""


class LockHeld(SyncError):
    """Another run of the same sync type holds the lock."""

    status_code = 409

    def __init__(self, resource_key: str, holder: str | None = None):
        self.resource_key = resource_key
        self.holder = holder
        super().__init__(f"Sync already in progress ({resource_key})")


class InvalidStep(SyncError):
    """Step protocol misuse: unknown step/action, unknown session, skipped offset."""

    status_code = 400


class RowError(ValueError):
    """A single remote row could not be applied."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)
