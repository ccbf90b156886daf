# distributed_mutex/core/scoped.py

from __future__ import annotations

import functools
from typing import Any, Callable, Optional, TypeVar

from distributed_mutex.core.mutex import DistributedMutex, MutexOptions

T = TypeVar("T")


def synchronize(
    key: str,
    work: Callable[[], T],
    options: Optional[MutexOptions] = None,
    **overrides: Any,
) -> T:
    """
    One-shot form: build a throwaway handle for `key` and run `work` under it.

    `overrides` accepts the MutexOptions fields (validity, store,
    acquire_timeout, retry_interval, max_retry_interval) plus `sleep`.
    """
    return DistributedMutex(key, options, **overrides).synchronize(work)


def synchronized(key: str, options: Optional[MutexOptions] = None, **overrides: Any):
    """
    Decorator running every call of the wrapped function under `key`.

        @synchronized("reports:rebuild", validity=120)
        def rebuild_reports(): ...
    """
    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return DistributedMutex(key, options, **overrides).synchronize(fn, *args, **kwargs)
        return wrapper
    return decorator
