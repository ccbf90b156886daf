# distributed_mutex/errors.py

from __future__ import annotations

from typing import Optional


class MutexError(Exception):
    """Base class for every error raised by the distributed mutex."""

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class LockTimeout(MutexError, TimeoutError):
    """Acquisition gave up after its retry budget was spent."""

    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(f"Failed to acquire lock '{key}' after {timeout}s", key=key)
        self.timeout = timeout


class DeadlockDetected(MutexError, RuntimeError):
    """
    The calling thread asked for a key it already holds.

    Waiting would never end: the only party able to release the lease is the
    thread that is blocked on it.
    """

    def __init__(self, key: str) -> None:
        super().__init__(f"Lock '{key}' is already held by this thread", key=key)


class StoreError(MutexError):
    """The backing store failed. Never retried."""


class StoreReadOnly(StoreError):
    """The store rejected a write (e.g. a replica that lost primary status)."""


class StoreUnavailable(StoreError):
    """The store could not be reached."""
