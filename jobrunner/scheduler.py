import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Thread pool with a delayed-submission primitive.

    `submit` runs work as soon as a thread is free; `call_later` arms a
    daemon timer that submits the work once the delay has elapsed, so the
    caller never blocks. Anything a task raises is logged here, since
    nobody waits on these futures.
    """

    def __init__(self, max_workers: Optional[int] = None, name: str = "jobrunner"):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._timers = set()
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, fn: Callable, *args) -> Future:
        future = self._executor.submit(fn, *args)
        future.add_done_callback(self._report)
        return future

    def call_later(self, delay: float, fn: Callable, *args) -> threading.Timer:
        timer = None

        def fire():
            with self._lock:
                self._timers.discard(timer)
                if self._closed:
                    return
            self.submit(fn, *args)

        timer = threading.Timer(max(0.0, delay), fire)
        timer.daemon = True
        with self._lock:
            if self._closed:
                raise RuntimeError("scheduler is shut down")
            self._timers.add(timer)
        timer.start()
        return timer

    @property
    def pending_timers(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            timers = list(self._timers)
            self._timers.clear()
        for t in timers:
            t.cancel()
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _report(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Job cycle crashed: %s", exc, exc_info=(type(exc), exc, exc.__traceback__))
