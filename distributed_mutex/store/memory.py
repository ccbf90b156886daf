# distributed_mutex/store/memory.py

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from distributed_mutex.errors import StoreReadOnly, StoreUnavailable
from distributed_mutex.ports.lease_store import LeaseRecord


class InMemoryLeaseStore:
    """
    In-process lease store with the same atomicity as the Redis one.

    Used for:
    - Tests (including the deterministic interleaving scenarios)
    - Local experiments

    Set `read_only` or clear `available` to simulate a demoted replica or a
    dropped connection.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: Dict[str, LeaseRecord] = {}
        self._lock = threading.Lock()
        self.read_only = False
        self.available = True

    def _check(self, key: Optional[str], *, write: bool) -> None:
        if not self.available:
            raise StoreUnavailable("In-memory store marked unavailable", key=key)
        if write and self.read_only:
            raise StoreReadOnly("In-memory store is read-only", key=key)

    def try_create(self, key: str, owner_token: str, ttl: float) -> bool:
        with self._lock:
            self._check(key, write=True)
            now = self._clock()
            current = self._records.get(key)
            if current is not None and not current.is_expired(now):
                return False
            self._records[key] = LeaseRecord(owner_token=owner_token, expires_at=now + ttl)
            return True

    def read(self, key: str) -> Optional[LeaseRecord]:
        with self._lock:
            self._check(key, write=False)
            return self._records.get(key)

    def try_delete_owned(self, key: str, owner_token: str) -> bool:
        with self._lock:
            self._check(key, write=True)
            current = self._records.get(key)
            if current is None or current.owner_token != owner_token:
                return False
            del self._records[key]
            return True

    def now(self) -> float:
        self._check(None, write=False)
        return self._clock()

    def put(self, key: str, record: LeaseRecord) -> None:
        """Plant a record directly, bypassing the create rules."""
        with self._lock:
            self._records[key] = record

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._records)
