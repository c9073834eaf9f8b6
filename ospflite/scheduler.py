#!/usr/bin/env python3

###############################
#---------- Imports ----------#
###############################

# Used for type hints
from __future__ import annotations
from typing import Callable, List, Optional

# Used for the timer threads and for guarding the task queue
from threading import Thread, Event, Lock

# Used to fetch the current time for the real-time scheduler
from time import monotonic

# Used for the virtual clock task queue
import heapq

# Used for the virtual clock task entries
from dataclasses import dataclass, field

import logging

log = logging.getLogger(__name__)


#####################################
#---------- Timer Handles ----------#
#####################################

# This class defines the handle returned for a scheduled task, used for cancelling it
class TimerHandle:
    def cancel(self) -> None:
        raise NotImplementedError

    @property
    def cancelled(self) -> bool:
        raise NotImplementedError


# This function runs a scheduled task, so that an exception in one handler does not take down the scheduler
def _run_task(fn: Callable[[], None]) -> None:
    try:
        fn()
    except Exception:
        log.exception("Scheduler: task %r failed", fn)


##################################
#---------- Schedulers ----------#
##################################

# The clock and timer service used by the routing engine. All times are in milliseconds.
class Scheduler:
    # This function returns the current time
    def now(self) -> int:
        raise NotImplementedError

    # This function schedules fn to run once, delay milliseconds from now
    def after(self, delay: int, fn: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


# This class defines a thread that sleeps until its deadline and then runs its task, unless it was cancelled
class _TimerThread(Thread, TimerHandle):
    def __init__(self, delay: int, fn: Callable[[], None]):
        # Call the Thread class initializer
        super(_TimerThread, self).__init__(daemon=True)

        # The delay, in milliseconds
        self.delay = delay

        # The task to run
        self.fn = fn

        # Event set when the task is cancelled
        self.cancel_event = Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    # This function defines the activity of the timer - sleep for delay milliseconds or until cancelled
    def run(self):
        if self.cancel_event.wait(timeout=max(self.delay, 0) / 1000.0):
            return
        _run_task(self.fn)


# Scheduler backed by wall-clock time, each task runs on its own timer thread
class RealTimeScheduler(Scheduler):
    def __init__(self):
        self.start = monotonic()

    def now(self) -> int:
        return int((monotonic() - self.start) * 1000)

    def after(self, delay: int, fn: Callable[[], None]) -> TimerHandle:
        timer = _TimerThread(delay, fn)
        timer.start()
        return timer


@dataclass(order=True)
class _VirtualTask(TimerHandle):
    deadline: int
    seq: int
    fn: Callable[[], None] = field(compare=False)
    is_cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.is_cancelled = True

    @property
    def cancelled(self) -> bool:
        return self.is_cancelled


class VirtualClock(Scheduler):
    """Deterministic scheduler driven by explicit time advances.

    Tasks run on the caller's thread, in deadline order; tasks sharing a
    deadline run in the order they were scheduled. A task scheduled while
    the clock is advancing runs in the same advance if its deadline falls
    inside it.
    """

    def __init__(self, start: int = 0):
        self.current_time = start
        self.tasks: List[_VirtualTask] = []
        self.task_seq = 0
        self.lock = Lock()

    def now(self) -> int:
        with self.lock:
            return self.current_time

    def after(self, delay: int, fn: Callable[[], None]) -> TimerHandle:
        with self.lock:
            self.task_seq += 1
            task = _VirtualTask(self.current_time + max(delay, 0), self.task_seq, fn)
            heapq.heappush(self.tasks, task)
        return task

    def pending(self) -> int:
        with self.lock:
            return sum(1 for task in self.tasks if not task.cancelled)

    def advance(self, duration: int) -> int:
        """Move the clock forward by ``duration`` ms; returns the number of tasks run."""
        if duration < 0:
            raise ValueError("cannot move a virtual clock backwards")
        return self.run_until(self.now() + duration)

    def run_until(self, deadline: int) -> int:
        ran = 0
        while True:
            with self.lock:
                if not self.tasks or self.tasks[0].deadline > deadline:
                    self.current_time = max(self.current_time, deadline)
                    return ran
                task = heapq.heappop(self.tasks)
                if task.cancelled:
                    continue
                self.current_time = task.deadline
            # The lock is released so the task can schedule further tasks
            _run_task(task.fn)
            ran += 1

    def run_next(self) -> Optional[int]:
        """Run the earliest pending task, returning its deadline (None when idle)."""
        while True:
            with self.lock:
                if not self.tasks:
                    return None
                task = heapq.heappop(self.tasks)
                if task.cancelled:
                    continue
                self.current_time = max(self.current_time, task.deadline)
            _run_task(task.fn)
            return task.deadline
