import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from notification_engine.core.errors import StoreUnavailableError
from notification_engine.services.work_queue import DueQueue, WorkerPool


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def test_items_come_out_in_due_order():
    clock = FakeClock(datetime(2024, 1, 15, 9, 0))
    queue = DueQueue(clock=clock)
    queue.put("late", clock.now - timedelta(seconds=1))
    queue.put("early", clock.now - timedelta(seconds=30))
    queue.put("now")

    assert [queue.get(timeout=0), queue.get(timeout=0), queue.get(timeout=0)] == ["early", "late", "now"]
    assert queue.get(timeout=0) is None


def test_future_items_wait_until_due():
    clock = FakeClock(datetime(2024, 1, 15, 9, 0))
    queue = DueQueue(clock=clock)
    queue.put("retry", clock.now + timedelta(minutes=1))

    assert queue.get(timeout=0) is None
    assert queue.peek_due() == clock.now + timedelta(minutes=1)

    clock.now += timedelta(minutes=1)
    assert queue.get(timeout=0) == "retry"


def test_re_adding_keeps_the_earliest_due_time():
    clock = FakeClock(datetime(2024, 1, 15, 9, 0))
    queue = DueQueue(clock=clock)
    queue.put(1, clock.now + timedelta(hours=1))
    queue.put(1, clock.now)
    queue.put(1, clock.now + timedelta(hours=2))

    assert len(queue) == 1
    assert queue.get(timeout=0) == 1
    assert len(queue) == 0
    assert queue.get(timeout=0) is None


def test_close_wakes_blocked_getters():
    queue = DueQueue()
    results = []
    thread = threading.Thread(target=lambda: results.append(queue.get()))
    thread.start()
    queue.close()
    thread.join(timeout=2)
    assert results == [None]


def test_worker_pool_handles_items():
    queue = DueQueue()
    done = threading.Event()
    handled = []

    def handler(item):
        handled.append(item)
        if len(handled) == 2:
            done.set()

    pool = WorkerPool(queue, handler, size=2)
    pool.start()
    queue.put(1)
    queue.put(2)
    assert done.wait(timeout=5)
    pool.stop()
    assert sorted(handled) == [1, 2]
    assert not pool.running


def test_store_unavailable_halts_the_pool():
    queue = DueQueue()
    handler = MagicMock(side_effect=StoreUnavailableError("database is locked"))
    pool = WorkerPool(queue, handler, size=1)
    pool.start()
    queue.put(1)
    for thread in pool._threads:
        thread.join(timeout=5)

    assert pool.halted_reason == "database is locked"
    assert not pool.running
    handler.assert_called_once_with(1)
