# distributed_mutex/core/mutex.py

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, Set, Tuple, TypeVar

from loguru import logger

from distributed_mutex.errors import DeadlockDetected, LockTimeout
from distributed_mutex.utils.tokens import new_owner_token

if TYPE_CHECKING:
    # Imported only for type hints.
    from distributed_mutex.config import MutexSettings
    from distributed_mutex.ports.lease_store import LeaseStore

T = TypeVar("T")

DEFAULT_VALIDITY = 60
DEFAULT_ACQUIRE_TIMEOUT = 90.0
DEFAULT_RETRY_INTERVAL = 0.001
DEFAULT_MAX_RETRY_INTERVAL = 0.05

# (store id, key) pairs held by the current thread, across every handle.
_held = threading.local()


def _held_keys() -> Set[Tuple[int, str]]:
    keys = getattr(_held, "keys", None)
    if keys is None:
        keys = _held.keys = set()
    return keys


class MutexState(str, Enum):
    """
    Per-thread state of a handle.

    State transitions:
        UNLOCKED -> ACQUIRING -> LOCKED -> UNLOCKED
    """

    UNLOCKED = "UNLOCKED"
    ACQUIRING = "ACQUIRING"
    LOCKED = "LOCKED"


@dataclass(frozen=True)
class Lease:
    """
    One successful acquisition, handed to the caller while the lock is held.

    `acquired_at` and `expires_at` are wall-clock estimates taken locally; the
    authoritative expiry lives in the store.
    """

    key: str
    owner_token: str
    acquired_at: float
    expires_at: float
    held_since: float = field(repr=False, compare=False, default=0.0)

    def held_for(self) -> float:
        return time.monotonic() - self.held_since


@dataclass(frozen=True)
class MutexOptions:
    """Everything a handle needs besides its key."""

    validity: float = DEFAULT_VALIDITY
    store: Optional[LeaseStore] = None
    acquire_timeout: Optional[float] = DEFAULT_ACQUIRE_TIMEOUT
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    max_retry_interval: float = DEFAULT_MAX_RETRY_INTERVAL

    def with_overrides(self, **overrides: Any) -> "MutexOptions":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_settings(cls, settings: MutexSettings, store: Optional[LeaseStore] = None) -> "MutexOptions":
        return cls(
            validity=settings.validity,
            store=store,
            acquire_timeout=settings.acquire_timeout,
            retry_interval=settings.retry_interval,
            max_retry_interval=settings.max_retry_interval,
        )

    def validate(self) -> None:
        if self.validity <= 0:
            raise ValueError(f"validity must be positive, got={self.validity}")
        if self.acquire_timeout is not None and self.acquire_timeout < 0:
            raise ValueError(f"acquire_timeout must be >= 0, got={self.acquire_timeout}")
        if self.retry_interval < 0:
            raise ValueError(f"retry_interval must be >= 0, got={self.retry_interval}")
        if self.max_retry_interval < self.retry_interval:
            raise ValueError(
                f"max_retry_interval must be >= retry_interval, "
                f"got={self.max_retry_interval} < {self.retry_interval}"
            )


class DistributedMutex:
    """
    Mutual exclusion across processes, rendezvousing on a lease store.

    Notes:
    - Threads in one process contend exactly like separate processes do.
    - Acquiring a key the calling thread already holds raises DeadlockDetected.
    - Store failures (read-only, unavailable) are never retried.
    - A handle can be shared between threads: owner tokens live in the Lease
      of each acquisition, not on the handle.
    """

    def __init__(
        self,
        key: str,
        options: Optional[MutexOptions] = None,
        *,
        validity: Optional[float] = None,
        store: Optional[LeaseStore] = None,
        acquire_timeout: Optional[float] = None,
        retry_interval: Optional[float] = None,
        max_retry_interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not key:
            raise ValueError("key must be a non-empty string")

        opts = (options or MutexOptions()).with_overrides(
            validity=validity,
            store=store,
            acquire_timeout=acquire_timeout,
            retry_interval=retry_interval,
            max_retry_interval=max_retry_interval,
        )
        opts.validate()

        self.key = key
        self.options = opts
        self._sleep = sleep
        self._local = threading.local()

    def __repr__(self) -> str:
        return f"DistributedMutex(key={self.key!r}, validity={self.validity})"

    @property
    def validity(self) -> float:
        return self.options.validity

    @property
    def store(self) -> LeaseStore:
        if self.options.store is not None:
            return self.options.store
        # Imported lazily: store -> config -> this module.
        from distributed_mutex.store import default_store
        return default_store()

    @property
    def state(self) -> MutexState:
        return getattr(self._local, "state", MutexState.UNLOCKED)

    @property
    def held_by_current_thread(self) -> bool:
        return (id(self.store), self.key) in _held_keys()

    def _set_state(self, state: MutexState) -> None:
        self._local.state = state

    def synchronize(self, work: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run `work` while holding the lock and return its result.
        The lock is released on every exit path.
        """
        with self.acquire():
            return work(*args, **kwargs)

    @contextmanager
    def acquire(self) -> Iterator[Lease]:
        """
        Hold the lock for the duration of the block.

        If the block raises and the release then fails too, the release
        failure is logged and the block's exception propagates.
        """
        lease = self._lock()
        try:
            yield lease
        except BaseException:
            try:
                self._unlock(lease)
            except Exception as e:
                logger.error(f"Failed to release lock '{self.key}' after error in critical section: {e}")
            raise
        self._unlock(lease)

    def _lock(self) -> Lease:
        store = self.store
        if (id(store), self.key) in _held_keys():
            raise DeadlockDetected(self.key)

        timeout = self.options.acquire_timeout
        interval = self.options.retry_interval
        token = new_owner_token()

        self._set_state(MutexState.ACQUIRING)
        start_time = time.monotonic()
        attempts = 0

        try:
            # Polling loop: a stale lease lets the next try_create win, no special case needed
            while True:
                attempts += 1
                if store.try_create(self.key, token, self.validity):
                    break

                # Check for timeout
                elapsed = time.monotonic() - start_time
                if timeout is not None and elapsed >= timeout:
                    logger.warning(f"Gave up on lock '{self.key}' after {attempts} attempts ({elapsed:.3f}s)")
                    raise LockTimeout(self.key, timeout)

                wait = interval if timeout is None else min(interval, timeout - elapsed)
                self._sleep(wait)
                interval = min(interval * 2, self.options.max_retry_interval)
        except BaseException:
            self._set_state(MutexState.UNLOCKED)
            raise

        now = time.time()
        lease = Lease(
            key=self.key,
            owner_token=token,
            acquired_at=now,
            expires_at=now + self.validity,
            held_since=time.monotonic(),
        )
        _held_keys().add((id(store), self.key))
        self._set_state(MutexState.LOCKED)
        logger.debug(f"Lock acquired: {self.key} (attempts={attempts})")
        return lease

    def _unlock(self, lease: Lease) -> None:
        store = self.store
        try:
            released = store.try_delete_owned(self.key, lease.owner_token)
        finally:
            _held_keys().discard((id(store), self.key))
            self._set_state(MutexState.UNLOCKED)

        held_for = lease.held_for()
        if held_for > self.validity:
            logger.warning(
                f"Lock '{self.key}' held for too long, expected max: {self.validity}s, "
                f"took an extra {held_for - self.validity:.3f}s"
            )
        elif not released:
            logger.warning(f"Lease for '{self.key}' was removed by someone else before it expired")
        else:
            logger.debug(f"Lock released: {self.key} (held {held_for:.3f}s)")
