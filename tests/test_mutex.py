"""
Tests proving mutual exclusion and failure behaviour of DistributedMutex.

Validates that:
- Only one holder at a time, across handles and threads
- Stale leases are reclaimed within the retry interval
- Lease validity is configurable and defaults to DEFAULT_VALIDITY
- Reentrant acquisition is rejected without touching the store
- Store failures surface immediately, never after the timeout
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from distributed_mutex import (
    DEFAULT_VALIDITY,
    DeadlockDetected,
    DistributedMutex,
    LockTimeout,
    MutexOptions,
    MutexState,
    StoreReadOnly,
    StoreUnavailable,
)
from distributed_mutex.ports.lease_store import LeaseRecord
from distributed_mutex.store import InMemoryLeaseStore

KEY = "test_mutex_key"


# -------- mutual exclusion --------

def test_only_one_holder_at_a_time(store):
    """
    Scenario:
    10 handles on the same key each do read-sleep-write on a shared counter.

    Expectation:
    - No lost update: the counter ends at exactly 10
    """
    mutexes = [DistributedMutex(KEY, store=store) for _ in range(10)]
    counter = {"x": 0}

    def critical_section():
        y = counter["x"]
        time.sleep(0.001)
        counter["x"] = y + 1

    with ThreadPoolExecutor(max_workers=10) as executor:
        futures = [executor.submit(m.synchronize, critical_section) for m in mutexes]
        for future in futures:
            future.result()

    assert counter["x"] == 10
    assert store.read(KEY) is None


def test_shared_handle_across_threads(store):
    mutex = DistributedMutex(KEY, store=store)
    counter = {"x": 0}
    inside = []
    overlap = threading.Event()

    def critical_section():
        inside.append(1)
        if len(inside) > 1:
            overlap.set()
        y = counter["x"]
        time.sleep(0.001)
        counter["x"] = y + 1
        inside.pop()

    with ThreadPoolExecutor(max_workers=5) as executor:
        futures = [executor.submit(mutex.synchronize, critical_section) for _ in range(5)]
        for future in futures:
            future.result()

    assert counter["x"] == 5
    assert not overlap.is_set()


# -------- lease expiry --------

def test_stale_lease_is_reclaimed_quickly(store):
    """
    Scenario:
    A crashed holder left a lease that expired a second ago.

    Expectation:
    - The next acquirer gets in well within one second
    """
    store.put(KEY, LeaseRecord(owner_token="", expires_at=time.time() - 1))
    mutex = DistributedMutex(KEY, store=store)

    start = time.monotonic()
    assert mutex.synchronize(lambda: "nop") == "nop"

    assert time.monotonic() - start <= 1


def test_validity_is_configurable(store):
    mutex = DistributedMutex(KEY, store=store, validity=2)

    def check():
        record = store.read(KEY)
        assert record.expires_at == pytest.approx(time.time() + 2, abs=1)

    mutex.synchronize(check)


def test_validity_defaults_to_constant(store):
    mutex = DistributedMutex(KEY, store=store)
    assert mutex.validity == DEFAULT_VALIDITY

    def check():
        record = store.read(KEY)
        assert record.expires_at == pytest.approx(time.time() + DEFAULT_VALIDITY, abs=1)

    mutex.synchronize(check)


def test_release_after_lease_was_superseded_is_not_an_error(clock, log_messages):
    """
    Scenario:
    The holder overran its lease and a later acquirer took the key.

    Expectation:
    - Leaving the critical section does not raise
    - The later acquirer's lease is left alone
    """
    store = InMemoryLeaseStore(clock=clock)
    mutex = DistributedMutex(KEY, store=store, validity=5)

    with mutex.acquire() as lease:
        clock.advance(10)
        assert store.try_create(KEY, "later-acquirer", 5)
        assert lease.owner_token != "later-acquirer"

    assert store.read(KEY).owner_token == "later-acquirer"
    assert mutex.state == MutexState.UNLOCKED
    assert any("removed by someone else" in m for m in log_messages)


def test_overrun_is_logged(store, log_messages):
    mutex = DistributedMutex(KEY, store=store, validity=0.01)

    mutex.synchronize(time.sleep, 0.05)

    assert any("held for too long" in m for m in log_messages)
    assert store.read(KEY) is None


# -------- reentrancy --------

def test_reentrant_acquire_raises_before_touching_store(recording_store):
    """
    Scenario:
    The holder calls synchronize on the same key again.

    Expectation:
    - DeadlockDetected, with no extra store call
    - The outer lock stays held, then is released normally
    """
    mutex = DistributedMutex(KEY, store=recording_store)

    def outer():
        calls_before = len(recording_store.calls)
        with pytest.raises(DeadlockDetected):
            mutex.synchronize(lambda: None)
        assert len(recording_store.calls) == calls_before
        assert mutex.state == MutexState.LOCKED
        assert recording_store.inner.read(KEY) is not None

    mutex.synchronize(outer)

    assert recording_store.inner.read(KEY) is None
    assert not mutex.held_by_current_thread


def test_reentrant_acquire_through_another_handle(store):
    outer = DistributedMutex(KEY, store=store)
    inner = DistributedMutex(KEY, store=store)

    with outer.acquire():
        with pytest.raises(DeadlockDetected) as excinfo:
            inner.synchronize(lambda: None)

    assert excinfo.value.key == KEY
    assert store.read(KEY) is None


def test_different_keys_can_nest(store):
    outer = DistributedMutex("a", store=store)
    inner = DistributedMutex("b", store=store)

    assert outer.synchronize(lambda: inner.synchronize(lambda: "both")) == "both"
    assert store.keys() == []


# -------- timeouts and store failures --------

def test_timeout_when_lock_is_held_elsewhere(store):
    store.put(KEY, LeaseRecord(owner_token="someone-else", expires_at=time.time() + 60))
    mutex = DistributedMutex(KEY, store=store, acquire_timeout=0.05)
    done = False

    def work():
        nonlocal done
        done = True

    start = time.monotonic()
    with pytest.raises(LockTimeout) as excinfo:
        mutex.synchronize(work)

    assert time.monotonic() - start < 1
    assert excinfo.value.timeout == 0.05
    assert done is False
    assert mutex.state == MutexState.UNLOCKED
    assert store.read(KEY).owner_token == "someone-else"


def test_backoff_stays_within_bounds(store):
    store.put(KEY, LeaseRecord(owner_token="someone-else", expires_at=time.time() + 60))
    sleeps = []
    states = []
    mutex = DistributedMutex(
        KEY,
        store=store,
        acquire_timeout=0.2,
        retry_interval=0.001,
        max_retry_interval=0.004,
    )

    def fake_sleep(seconds):
        sleeps.append(seconds)
        states.append(mutex.state)
        time.sleep(seconds)

    mutex._sleep = fake_sleep

    with pytest.raises(LockTimeout):
        mutex.synchronize(lambda: None)

    assert sleeps[:3] == [0.001, 0.002, 0.004]
    assert max(sleeps) <= 0.004
    assert set(states) == {MutexState.ACQUIRING}


def test_read_only_store_fails_fast(store):
    """
    Scenario:
    The store was demoted to a read-only replica.

    Expectation:
    - StoreReadOnly, the work never runs
    - Returns far sooner than the acquisition timeout
    """
    store.read_only = True
    mutex = DistributedMutex(KEY, store=store, acquire_timeout=10)
    done = False

    def work():
        nonlocal done
        done = True

    start = time.monotonic()
    with pytest.raises(StoreReadOnly):
        mutex.synchronize(work)

    assert done is False
    assert time.monotonic() - start <= 1
    assert mutex.state == MutexState.UNLOCKED
    assert not mutex.held_by_current_thread


def test_unavailable_store_fails_fast(store):
    store.available = False
    mutex = DistributedMutex(KEY, store=store, acquire_timeout=10)

    start = time.monotonic()
    with pytest.raises(StoreUnavailable):
        mutex.synchronize(lambda: None)

    assert time.monotonic() - start <= 1


def test_release_failure_propagates(store):
    mutex = DistributedMutex(KEY, store=store)

    def work():
        store.available = False
        return "result"

    with pytest.raises(StoreUnavailable):
        mutex.synchronize(work)

    assert not mutex.held_by_current_thread
    assert mutex.state == MutexState.UNLOCKED


def test_work_error_wins_over_release_failure(store, log_messages):
    mutex = DistributedMutex(KEY, store=store)

    def work():
        store.available = False
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        mutex.synchronize(work)

    assert any("Failed to release lock" in m for m in log_messages)


# -------- construction --------

def test_options_and_keyword_overrides():
    options = MutexOptions(validity=5, acquire_timeout=1.0)
    mutex = DistributedMutex(KEY, options, validity=7)

    assert mutex.validity == 7
    assert mutex.options.acquire_timeout == 1.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"validity": 0},
        {"acquire_timeout": -1},
        {"retry_interval": -0.1},
        {"retry_interval": 0.5, "max_retry_interval": 0.1},
    ],
)
def test_invalid_options_are_rejected(kwargs):
    with pytest.raises(ValueError):
        DistributedMutex(KEY, **kwargs)


def test_empty_key_is_rejected():
    with pytest.raises(ValueError):
        DistributedMutex("")


# -------- store scoping and release errors --------

def test_same_key_on_different_stores_can_nest():
    """
    Scenario:
    One thread locks the same key name in two unrelated stores.

    Expectation:
    - No DeadlockDetected: the keys live in different namespaces
    """
    first = InMemoryLeaseStore()
    second = InMemoryLeaseStore()
    outer = DistributedMutex(KEY, store=first)
    inner = DistributedMutex(KEY, store=second)

    def nested():
        assert outer.held_by_current_thread
        assert not inner.held_by_current_thread
        return inner.synchronize(lambda: "both")

    assert outer.synchronize(nested) == "both"
    assert first.read(KEY) is None
    assert second.read(KEY) is None


class FailingReleaseStore(InMemoryLeaseStore):
    """Release blows up with an error outside the store taxonomy."""

    def try_delete_owned(self, key, owner_token):
        raise RuntimeError("release went wrong")


def test_work_error_wins_over_unexpected_release_error(log_messages):
    mutex = DistributedMutex(KEY, store=FailingReleaseStore())

    def work():
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        mutex.synchronize(work)

    assert any("release went wrong" in m for m in log_messages)
    assert not mutex.held_by_current_thread


def test_read_only_store_fails_fast_while_key_is_held(store):
    store.put(KEY, LeaseRecord(owner_token="other-holder", expires_at=time.time() + 60))
    store.read_only = True
    mutex = DistributedMutex(KEY, store=store, acquire_timeout=3)

    start = time.monotonic()
    with pytest.raises(StoreReadOnly):
        mutex.synchronize(lambda: None)

    assert time.monotonic() - start <= 1
