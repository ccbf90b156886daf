"""
Distributed mutual exclusion over a shared lease store.

Public API surface for the distributed_mutex package.
"""

# core.mutex must load before config/store, which import its defaults.
from distributed_mutex.core.mutex import (
    DEFAULT_ACQUIRE_TIMEOUT,
    DEFAULT_MAX_RETRY_INTERVAL,
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_VALIDITY,
    DistributedMutex,
    Lease,
    MutexOptions,
    MutexState,
)
from distributed_mutex.core.scoped import synchronize, synchronized
from distributed_mutex.errors import (
    DeadlockDetected,
    LockTimeout,
    MutexError,
    StoreError,
    StoreReadOnly,
    StoreUnavailable,
)
from distributed_mutex.ports.lease_store import LeaseRecord, LeaseStore
from distributed_mutex.store import InMemoryLeaseStore, RedisLeaseStore, default_store, set_default_store

__all__ = [
    "DEFAULT_ACQUIRE_TIMEOUT",
    "DEFAULT_MAX_RETRY_INTERVAL",
    "DEFAULT_RETRY_INTERVAL",
    "DEFAULT_VALIDITY",
    "DeadlockDetected",
    "DistributedMutex",
    "InMemoryLeaseStore",
    "Lease",
    "LeaseRecord",
    "LeaseStore",
    "LockTimeout",
    "MutexError",
    "MutexOptions",
    "MutexState",
    "RedisLeaseStore",
    "StoreError",
    "StoreReadOnly",
    "StoreUnavailable",
    "default_store",
    "set_default_store",
    "synchronize",
    "synchronized",
]

__version__ = "0.1.0"
