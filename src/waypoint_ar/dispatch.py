"""
Execution contexts and event channels.

Hardware calls (session configuration, start/stop, still capture) may block
and run on an I/O dispatcher. State notifications for observers are handed
to a UI dispatcher, which the viewer loop drains on its own thread. All
cross-thread handoffs go through these classes.
"""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class Dispatcher(ABC):
    """Runs callables on some execution context."""

    @abstractmethod
    def submit(self, fn: Callable, *args: Any) -> None:
        """Run ``fn(*args)`` on this context."""

    @abstractmethod
    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        """Run ``fn(*args)`` on this context after ``delay`` seconds."""

    def shutdown(self) -> None:
        pass


class InlineDispatcher(Dispatcher):
    """
    Runs tasks immediately on the calling thread.

    Delayed calls are held until ``run_timers()``; used by offline tools and
    for deterministic runs.
    """

    def __init__(self):
        self.timers: List[tuple] = []

    def submit(self, fn: Callable, *args: Any) -> None:
        fn(*args)

    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        self.timers.append((delay, fn, args))

    def run_timers(self) -> int:
        """Fire all pending delayed calls. Returns how many ran."""
        pending, self.timers = self.timers, []
        for _, fn, args in pending:
            fn(*args)
        return len(pending)


class ThreadDispatcher(Dispatcher):
    """Single background worker; tasks run in submission order."""

    def __init__(self, name: str = "camera-io"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._timers: List[threading.Timer] = []
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, fn: Callable, *args: Any) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Dispatcher closed, dropping %r", fn)
                return
            future = self._executor.submit(fn, *args)
        future.add_done_callback(self._report)

    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        timer = threading.Timer(delay, self.submit, args=(fn, *args))
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    @staticmethod
    def _report(future) -> None:
        error = future.exception()
        if error is not None:
            logger.error("Background task failed: %s", error, exc_info=error)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
        self._executor.shutdown(wait=True)


class QueueDispatcher(Dispatcher):
    """
    Task queue drained by an owning loop (the UI thread).

    ``submit`` and ``call_later`` are safe from any thread; tasks only run
    inside ``drain()``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._ready: deque = deque()
        self._delayed: List[tuple] = []
        self._seq = itertools.count()

    def submit(self, fn: Callable, *args: Any) -> None:
        with self._lock:
            self._ready.append((fn, args))

    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        due = self._clock() + delay
        with self._lock:
            heapq.heappush(self._delayed, (due, next(self._seq), fn, args))

    def drain(self) -> int:
        """Run every ready task and every delayed task that is due."""
        now = self._clock()
        with self._lock:
            while self._delayed and self._delayed[0][0] <= now:
                _, _, fn, args = heapq.heappop(self._delayed)
                self._ready.append((fn, args))
            tasks = list(self._ready)
            self._ready.clear()

        for fn, args in tasks:
            try:
                fn(*args)
            except Exception:
                logger.exception("UI task %r failed", fn)
        return len(tasks)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._ready) + len(self._delayed)


class EventBus:
    """
    Observer list.

    Each subscriber chooses where it is called: on the publisher's thread
    (no dispatcher) or on a given dispatcher, e.g. the UI queue.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[tuple] = []

    def subscribe(self, callback: Callable[[Any], None],
                  dispatcher: Optional[Dispatcher] = None) -> Callable[[], None]:
        """
        Register a subscriber.

        Args:
            callback: Called with each published event
            dispatcher: Context to deliver on; None means the publisher's thread

        Returns:
            Function that removes the subscription
        """
        entry = (callback, dispatcher)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Any) -> None:
        """Deliver an event to all subscribers."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback, dispatcher in subscribers:
            if dispatcher is not None:
                dispatcher.submit(callback, event)
            else:
                callback(event)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
