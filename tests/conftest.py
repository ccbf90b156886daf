import sys
from typing import List, Optional, Tuple

import pytest
from loguru import logger

from distributed_mutex.ports.lease_store import LeaseRecord
from distributed_mutex.store import InMemoryLeaseStore, set_default_store


class RecordingStore:
    """Delegates to another store and remembers every call made on it."""

    def __init__(self, inner):
        self.inner = inner
        self.calls: List[Tuple[str, str]] = []

    def try_create(self, key: str, owner_token: str, ttl: float) -> bool:
        self.calls.append(("try_create", key))
        return self.inner.try_create(key, owner_token, ttl)

    def read(self, key: str) -> Optional[LeaseRecord]:
        self.calls.append(("read", key))
        return self.inner.read(key)

    def try_delete_owned(self, key: str, owner_token: str) -> bool:
        self.calls.append(("try_delete_owned", key))
        return self.inner.try_delete_owned(key, owner_token)

    def now(self) -> float:
        self.calls.append(("now", ""))
        return self.inner.now()


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def store() -> InMemoryLeaseStore:
    return InMemoryLeaseStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_store(store) -> RecordingStore:
    return RecordingStore(store)


@pytest.fixture
def log_messages():
    messages: List[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def _reset_default_store():
    yield
    set_default_store(None)


@pytest.fixture
def restore_logging():
    # The CLI reconfigures loguru sinks; put back a plain stderr sink afterwards.
    yield
    logger.remove()
    logger.add(sys.stderr)
