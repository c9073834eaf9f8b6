"""
Unit tests for the virtual clock and the real-time scheduler.
"""

import logging
import threading
import time

import pytest

from ospflite.scheduler import RealTimeScheduler, VirtualClock


def test_tasks_run_in_deadline_order():
    clock = VirtualClock()
    ran = []

    clock.after(100, lambda: ran.append("a"))
    clock.after(50, lambda: ran.append("b"))
    clock.after(100, lambda: ran.append("c"))

    assert clock.advance(99) == 1
    assert ran == ["b"]
    assert clock.now() == 99

    clock.advance(1)
    assert ran == ["b", "a", "c"]
    assert clock.now() == 100


def test_tasks_see_their_deadline_as_now():
    clock = VirtualClock()
    seen = []

    clock.after(30, lambda: seen.append(clock.now()))
    clock.advance(100)

    assert seen == [30]


def test_cancelled_task_does_not_run():
    clock = VirtualClock()
    ran = []

    handle = clock.after(10, lambda: ran.append(1))
    handle.cancel()

    assert handle.cancelled
    assert clock.pending() == 0
    clock.advance(20)
    assert ran == []


def test_tasks_scheduled_while_advancing():
    clock = VirtualClock()
    seen = []

    def first():
        seen.append(clock.now())
        clock.after(10, lambda: seen.append(clock.now()))

    clock.after(10, first)
    clock.advance(30)

    assert seen == [10, 20]


def test_run_next():
    clock = VirtualClock()
    ran = []
    clock.after(500, lambda: ran.append(1))

    assert clock.run_next() == 500
    assert ran == [1]
    assert clock.run_next() is None


def test_failing_task_is_logged(caplog):
    clock = VirtualClock()
    ran = []

    def boom():
        raise RuntimeError("boom")

    clock.after(1, boom)
    clock.after(2, lambda: ran.append(1))

    with caplog.at_level(logging.ERROR):
        clock.advance(5)

    assert ran == [1]
    assert "failed" in caplog.text


def test_clock_does_not_go_backwards():
    with pytest.raises(ValueError):
        VirtualClock().advance(-1)


def test_real_time_scheduler_runs_and_cancels():
    scheduler = RealTimeScheduler()
    fired = threading.Event()
    cancelled = threading.Event()

    scheduler.after(10, fired.set)
    handle = scheduler.after(50, cancelled.set)
    handle.cancel()

    assert fired.wait(timeout=5)
    time.sleep(0.2)
    assert not cancelled.is_set()
    assert scheduler.now() >= 10
