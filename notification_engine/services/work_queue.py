"""In-process, time-ordered work queue and the worker pool that drains it."""
import heapq
import itertools
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from notification_engine.core.clock import utcnow
from notification_engine.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class DueQueue:
    """Min-heap of items keyed by due time.

    ``get`` blocks until the earliest item is due instead of polling.
    Re-adding an item replaces its due time; stale heap entries are skipped.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._heap: List[Tuple[datetime, int, Hashable]] = []
        self._due: Dict[Hashable, datetime] = {}
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._closed = False

    def put(self, item: Hashable, due_at: Optional[datetime] = None) -> None:
        due_at = due_at or self._clock()
        with self._cond:
            current = self._due.get(item)
            if current is not None and current <= due_at:
                return
            self._due[item] = due_at
            heapq.heappush(self._heap, (due_at, next(self._counter), item))
            self._cond.notify()

    def _drop_stale(self) -> None:
        while self._heap and self._due.get(self._heap[0][2]) != self._heap[0][0]:
            heapq.heappop(self._heap)

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Next due item, or None on timeout or after ``close``."""
        deadline = None if timeout is None else self._clock().timestamp() + timeout
        with self._cond:
            while not self._closed:
                self._drop_stale()
                wait: Optional[float] = None
                if self._heap:
                    due_at, _, item = self._heap[0]
                    wait = (due_at - self._clock()).total_seconds()
                    if wait <= 0:
                        heapq.heappop(self._heap)
                        del self._due[item]
                        return item
                if deadline is not None:
                    remaining = deadline - self._clock().timestamp()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)
            return None

    def peek_due(self) -> Optional[datetime]:
        with self._cond:
            self._drop_stale()
            return self._heap[0][0] if self._heap else None

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._due)


class WorkerPool:
    """Threads pulling due items from a DueQueue and passing them to ``handler``.

    A StoreUnavailableError halts the whole pool; any other error is logged
    and only affects the item being handled.
    """

    def __init__(self, queue: DueQueue, handler: Callable[[Hashable], object], size: int = 4, name: str = "delivery-worker"):
        self.queue = queue
        self.handler = handler
        self.size = size
        self.name = name
        self._threads: List[threading.Thread] = []
        self._stop = threading.Event()
        self.halted_reason: Optional[str] = None

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for index in range(self.size):
            thread = threading.Thread(target=self._run, name=f"{self.name}-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Started %s delivery workers", self.size)

    def _run(self) -> None:
        while not self._stop.is_set():
            item = self.queue.get(timeout=1.0)
            if item is None:
                continue
            try:
                self.handler(item)
            except StoreUnavailableError as exc:
                logger.error("Delivery store unavailable, halting workers: %s", exc, exc_info=True)
                self.halted_reason = str(exc)
                self._stop.set()
                self.queue.close()
            except Exception:
                logger.exception("Worker failed handling %s", item)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self.queue.close()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Delivery workers stopped")

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads) and not self._stop.is_set()
