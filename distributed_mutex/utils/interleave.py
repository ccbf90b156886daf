# distributed_mutex/utils/interleave.py

from __future__ import annotations

import random
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from loguru import logger

from distributed_mutex.ports.lease_store import LeaseRecord, LeaseStore


class ScheduleError(RuntimeError):
    """A spawned task failed; carries the schedule that produced the failure."""

    def __init__(self, message: str, path: List[int]) -> None:
        super().__init__(f"{message} (path={path})")
        self.path = path


@dataclass
class _Task:
    index: int
    fn: Callable[[], None]
    done: bool = False
    error: Optional[Exception] = None
    thread: Optional[threading.Thread] = field(default=None, repr=False)


class Execution:
    """
    One run of a scenario.

    Spawned tasks are real threads, but only one of them runs at a time.
    A task keeps running until it calls `yield_()`, at which point the seeded
    RNG picks the next task (possibly the same one). The same seed always
    produces the same interleaving; `path` records it.
    """

    def __init__(self, rng: random.Random, *, join_timeout: float = 30.0):
        self._rng = rng
        self._join_timeout = join_timeout
        self._cond = threading.Condition()
        self._tasks: List[_Task] = []
        self._current: Optional[_Task] = None
        self._local = threading.local()
        self.path: List[int] = []

    def spawn(self, fn: Callable[[], None]) -> None:
        self._tasks.append(_Task(index=len(self._tasks), fn=fn))

    def yield_(self, *_: object) -> None:
        """
        Hand control to a randomly chosen task.
        Accepts and ignores arguments so it can stand in for time.sleep.
        """
        task = getattr(self._local, "task", None)
        if task is None:
            raise RuntimeError("yield_() called outside a spawned task")
        with self._cond:
            self._switch()
            self._wait_turn(task)

    def _switch(self) -> None:
        # Caller holds self._cond
        alive = [t for t in self._tasks if not t.done]
        if alive:
            self._current = self._rng.choice(alive)
            self.path.append(self._current.index)
        else:
            self._current = None
        self._cond.notify_all()

    def _wait_turn(self, task: _Task) -> None:
        while self._current is not task:
            self._cond.wait()

    def _bootstrap(self, task: _Task) -> None:
        self._local.task = task
        with self._cond:
            self._wait_turn(task)
        try:
            task.fn()
        except Exception as e:
            task.error = e
        finally:
            with self._cond:
                task.done = True
                self._switch()

    def run(self) -> None:
        for task in self._tasks:
            task.thread = threading.Thread(
                target=self._bootstrap, args=(task,), name=f"interleave-{task.index}", daemon=True
            )
            task.thread.start()

        with self._cond:
            self._switch()

        for task in self._tasks:
            task.thread.join(self._join_timeout)
            if task.thread.is_alive():
                raise ScheduleError(f"task {task.index} did not finish", self.path)

        for task in self._tasks:
            if task.error is not None:
                raise ScheduleError(f"task {task.index} failed: {task.error!r}", self.path) from task.error


class Scenario:
    """
    Repeatable randomized interleaving of cooperating tasks.

        scenario = Scenario(lambda execution: ...)
        scenario.run(runs=10)

    The body receives an Execution, spawns tasks on it and returns; the
    scenario then runs them. Run `i` uses seed `seed + i`.
    """

    def __init__(self, body: Callable[[Execution], None]):
        self._body = body

    def run(self, runs: int = 1, seed: int = 0) -> List[List[int]]:
        paths = []
        for i in range(runs):
            execution = Execution(random.Random(seed + i))
            self._body(execution)
            execution.run()
            logger.debug(f"Scenario run {i} finished after {len(execution.path)} switches")
            paths.append(execution.path)
        return paths


class InterleavedLeaseStore:
    """
    Wraps a lease store so every call is a scheduling point.

    The switch happens before the call; the call itself stays atomic.
    """

    def __init__(self, store: LeaseStore, execution: Execution):
        self._store = store
        self._execution = execution

    def try_create(self, key: str, owner_token: str, ttl: float) -> bool:
        self._execution.yield_()
        return self._store.try_create(key, owner_token, ttl)

    def read(self, key: str) -> Optional[LeaseRecord]:
        self._execution.yield_()
        return self._store.read(key)

    def try_delete_owned(self, key: str, owner_token: str) -> bool:
        self._execution.yield_()
        return self._store.try_delete_owned(key, owner_token)

    def now(self) -> float:
        self._execution.yield_()
        return self._store.now()
