"""
Public entry point: owns the handler registry, the event bus and the
dispatcher for one storage backend.

    >>> runner = Runner(SQLiteStore("jobs.db"))
    >>> runner.register("resize", resize_image).on("failed", alert)
    >>> runner.recover()
    >>> job = runner.add("resize", {"path": "cat.png"}, max_attempts=5)

`add` and `recover` only hand jobs over; execution happens on the
scheduler's threads.
"""
import copy
import logging
import threading
from typing import Any, List, Optional

from .config import RunnerSettings
from .dispatcher import Dispatcher, BACKOFF_BASE_MS, BACKOFF_CAP_MS
from .errors import ConfigurationError
from .models import Job, DEFAULT_MAX_ATTEMPTS, PENDING, RUNNING, transition
from .registry import EventBus, Handler, HandlerRegistry, Listener
from .scheduler import Scheduler
from .storage import StorageAdapter

logger = logging.getLogger(__name__)


class Runner:
    def __init__(self, store: StorageAdapter, scheduler=None,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 backoff_base_ms: int = BACKOFF_BASE_MS,
                 backoff_cap_ms: int = BACKOFF_CAP_MS):
        self.store = store
        self.scheduler = scheduler if scheduler is not None else Scheduler()
        self.max_attempts = self._check_max_attempts(max_attempts)
        self.handlers = HandlerRegistry()
        self.events = EventBus()
        self.dispatcher = Dispatcher(
            store, self.handlers, self.events, self.scheduler,
            backoff_base_ms=backoff_base_ms, backoff_cap_ms=backoff_cap_ms,
        )
        # create+dispatch and claim_pending must not interleave
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, store: StorageAdapter, scheduler=None) -> "Runner":
        settings = RunnerSettings.from_mapping(store.get_config())
        return cls(
            store,
            scheduler=scheduler,
            max_attempts=settings.max_attempts,
            backoff_base_ms=settings.backoff_base_ms,
            backoff_cap_ms=settings.backoff_cap_ms,
        )

    @staticmethod
    def _check_max_attempts(value) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigurationError(f"max_attempts must be a positive integer, got {value!r}")
        return value

    # ---------- Registration ----------
    def register(self, name: str, handler: Handler) -> "Runner":
        self.handlers.register(name, handler)
        return self

    def on(self, event: str, listener: Listener) -> "Runner":
        self.events.subscribe(event, listener)
        return self

    # ---------- Submission ----------
    def add(self, name: str, payload: Any = None, max_attempts: Optional[int] = None) -> Job:
        limit = self.max_attempts if max_attempts is None else self._check_max_attempts(max_attempts)
        with self._lock:
            job = self.store.create(name, payload, limit)
            self.dispatcher.dispatch(copy.deepcopy(job))
        logger.debug("Enqueued job %s (%s)", job.id, name)
        return job

    def recover(self) -> int:
        """
        Resume jobs a previous process left unfinished. `running` jobs are
        reset to `pending` first; attempts are kept as they are.
        """
        pending = self.store.find_jobs_by_status(PENDING)
        running = self.store.find_jobs_by_status(RUNNING)

        for job in running:
            self.store.reset_job_status(job.id, PENDING)
            transition(job, PENDING)
            logger.info("Recovered interrupted job %s (%s)", job.id, job.name)
            self.events.emit("recover", copy.deepcopy(job))

        jobs = pending + running
        for job in jobs:
            self.dispatcher.dispatch(job)
        return len(jobs)

    def claim_pending(self) -> int:
        """Dispatch stored `pending` jobs this runner is not already driving."""
        claimed = 0
        with self._lock:
            # oldest first
            for job in reversed(self.store.find_jobs_by_status(PENDING)):
                if self.dispatcher.owns(job.id):
                    continue
                self.dispatcher.dispatch(job)
                claimed += 1
        return claimed

    # ---------- Queries ----------
    def list_jobs(self, status=None, limit: Optional[int] = None, offset: int = 0) -> List[Job]:
        return self.store.list_jobs(status=status, limit=limit, offset=offset)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.get_job(job_id)

    @property
    def idle(self) -> bool:
        return self.dispatcher.in_flight == 0

    def shutdown(self, wait: bool = True) -> None:
        self.scheduler.shutdown(wait=wait)
