"""Exception taxonomy shared by the store, remote client and sync engine."""

from __future__ import annotations


class HabitSyncError(Exception):
    """Base class for all habitsync failures."""


class ValidationError(HabitSyncError, ValueError):
    """Input rejected before any storage or network call."""


class StorageError(HabitSyncError):
    """The local store could not be read or written; the change is not durable."""


class RemoteError(HabitSyncError):
    """Recoverable remote failure: timeout, connectivity loss, 5xx or a bad body."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(RemoteError):
    """The remote answered 404 for the addressed entity."""


class AuthenticationError(HabitSyncError):
    """Session rejected by the remote (401/403).

    Not a RemoteError subclass so that per-item handlers never swallow it.
    """

    def __init__(self, message: str = "Remote session rejected", *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "AuthenticationError",
    "HabitSyncError",
    "NotFoundError",
    "RemoteError",
    "StorageError",
    "ValidationError",
]
