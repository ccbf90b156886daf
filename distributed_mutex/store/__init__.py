# distributed_mutex/store/__init__.py

from __future__ import annotations

import threading
from typing import Optional

from loguru import logger

from distributed_mutex.config import load_redis_settings
from distributed_mutex.ports.lease_store import LeaseStore
from distributed_mutex.store.memory import InMemoryLeaseStore
from distributed_mutex.store.redis_store import RedisLeaseStore

__all__ = [
    "InMemoryLeaseStore",
    "RedisLeaseStore",
    "default_store",
    "set_default_store",
]

_default: Optional[LeaseStore] = None
_default_lock = threading.Lock()


def default_store() -> LeaseStore:
    """
    Process-wide store used by handles created without one.
    Built lazily from REDIS_URL / MUTEX_KEY_PREFIX on first use.
    """
    global _default
    with _default_lock:
        if _default is None:
            settings = load_redis_settings()
            logger.debug(f"Creating default Redis lease store for {settings.url}")
            _default = RedisLeaseStore.from_url(
                settings.url,
                key_prefix=settings.key_prefix,
                socket_timeout=settings.socket_timeout,
            )
        return _default


def set_default_store(store: Optional[LeaseStore]) -> None:
    """Replace (or with None, reset) the process-wide default store."""
    global _default
    with _default_lock:
        _default = store
