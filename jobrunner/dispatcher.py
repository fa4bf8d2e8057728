import copy
import json
import logging
import threading
from collections import Counter

from .models import Job, PENDING, RUNNING, DONE, FAILED, transition
from .registry import EventBus, HandlerRegistry
from .storage import StorageAdapter

logger = logging.getLogger(__name__)

BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 30000


def backoff_delay_ms(attempts: int, base_ms: int = BACKOFF_BASE_MS, cap_ms: int = BACKOFF_CAP_MS) -> int:
    """Delay before the next attempt, given the attempts already failed."""
    return min(base_ms * 2 ** attempts, cap_ms)


def error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class Dispatcher:
    """
    Drives each job from `pending` to a terminal state; jobs run concurrently
    on the scheduler's threads.

    Each state change is written to the store first, then applied to the
    in-memory job, then announced on the event bus. Storage errors are not
    caught: they end the cycle and surface through the scheduler.
    """

    def __init__(self, store: StorageAdapter, handlers: HandlerRegistry, events: EventBus,
                 scheduler, backoff_base_ms: int = BACKOFF_BASE_MS,
                 backoff_cap_ms: int = BACKOFF_CAP_MS):
        self.store = store
        self.handlers = handlers
        self.events = events
        self.scheduler = scheduler
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        # dispatch cycles in progress per job id
        self._owned = Counter()
        self._lock = threading.Lock()

    # ---------- Ownership ----------
    def owns(self, job_id: str) -> bool:
        with self._lock:
            return self._owned[job_id] > 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._owned)

    def _release(self, job_id: str) -> None:
        with self._lock:
            self._owned[job_id] -= 1
            if self._owned[job_id] <= 0:
                del self._owned[job_id]

    def dispatch(self, job: Job):
        with self._lock:
            self._owned[job.id] += 1
        return self.scheduler.submit(self.process, job)

    # ---------- Cycle ----------
    def process(self, job: Job) -> None:
        try:
            finished = self._attempt(job)
        except BaseException:
            self._release(job.id)
            raise
        if finished:
            self._release(job.id)

    def _attempt(self, job: Job) -> bool:
        """Run one attempt. Returns True once this cycle is over."""
        if not self.store.mark_running(job.id):
            # another cycle claimed it first, or it already finished
            logger.info("Job %s is no longer pending, skipping.", job.id)
            return True
        transition(job, RUNNING)
        logger.info("Executing job %s (%s), attempt %d/%d",
                    job.id, job.name, job.attempts + 1, job.max_attempts)
        self.events.emit("start", copy.deepcopy(job))

        try:
            handler = self.handlers.get(job.name)
            result = handler(job.payload)
            # results are persisted as JSON
            json.dumps(result)
        except Exception as exc:
            return self._on_failure(job, exc)

        self.store.mark_done(job.id, result)
        transition(job, DONE)
        job.result = result
        logger.info("Job %s completed.", job.id)
        self.events.emit("done", copy.deepcopy(job))
        return True

    def _on_failure(self, job: Job, exc: Exception) -> bool:
        self.store.inc_attempts(job.id)
        job.attempts += 1

        if job.attempts < job.max_attempts:
            delay = backoff_delay_ms(job.attempts, self.backoff_base_ms, self.backoff_cap_ms)
            self.store.mark_pending(job.id)
            transition(job, PENDING)
            logger.warning("Job %s failed (%s), retrying in %d ms (attempt %d/%d).",
                           job.id, error_message(exc), delay, job.attempts, job.max_attempts)
            self.scheduler.call_later(delay / 1000.0, self.process, job)
            return False

        message = error_message(exc)
        self.store.mark_failed(job.id, message)
        transition(job, FAILED)
        job.error = message
        logger.error("Job %s failed after %d attempts: %s", job.id, job.attempts, message)
        self.events.emit("failed", copy.deepcopy(job))
        return True
