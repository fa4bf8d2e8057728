"""
Storage contract consumed by the runner, plus an in-memory backend.

Backends are picked when the runner is built: MemoryStore here,
SQLiteStore in `jobrunner.repository`, FileStore in `jobrunner.filestore`.
Every mutating call on an unknown id raises JobNotFound, and every listing
returns jobs newest-created first.
"""
import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .config import DEFAULT_CONFIG, validate_config_value
from .errors import JobNotFound
from .models import Job, PENDING, RUNNING, DONE, FAILED, STATES
from .utils import now_iso, new_job_id, normalize_statuses, paginate


class StorageAdapter(ABC):

    # ---------- Jobs ----------
    @abstractmethod
    def create(self, name: str, payload: Any, max_attempts: int) -> Job:
        """Persist a new `pending` job with zero attempts and a fresh id."""

    @abstractmethod
    def mark_running(self, job_id: str) -> bool:
        """
        Claim a `pending` job by moving it to `running`. Returns False, and
        writes nothing, when the job is no longer `pending`.
        """

    @abstractmethod
    def mark_done(self, job_id: str, result: Any = None) -> None: ...

    @abstractmethod
    def mark_failed(self, job_id: str, error: str) -> None: ...

    @abstractmethod
    def mark_pending(self, job_id: str) -> None:
        """Put a job back to `pending` while a retry is scheduled."""

    @abstractmethod
    def inc_attempts(self, job_id: str) -> None:
        """Atomically add one to `attempts`."""

    @abstractmethod
    def reset_job_status(self, job_id: str, status: str) -> None:
        """Force-set a status; only used by crash recovery."""

    @abstractmethod
    def list_jobs(self, status=None, limit: Optional[int] = None, offset: int = 0) -> List[Job]:
        """`status` may be None, one status or an iterable of statuses."""

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]: ...

    def find_jobs_by_status(self, status) -> List[Job]:
        return self.list_jobs(status=status)

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for job in self.list_jobs():
            out[job.status] = out.get(job.status, 0) + 1
        return out

    # ---------- Config ----------
    @abstractmethod
    def _read_config(self) -> Dict[str, str]: ...

    @abstractmethod
    def _write_config(self, key: str, value: str) -> None: ...

    def get_config(self) -> Dict[str, str]:
        return {**DEFAULT_CONFIG, **self._read_config()}

    def set_config(self, key: str, value) -> None:
        self._write_config(key, validate_config_value(key, value))

    def close(self) -> None:
        pass


def check_status(status: str) -> str:
    if status not in STATES:
        raise ValueError(f"Unknown job status: {status!r}")
    return status


class MemoryStore(StorageAdapter):
    """Process-local backend; returns copies so callers never share state."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._config: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, name, payload, max_attempts):
        ts = now_iso()
        job = Job(
            id=new_job_id(),
            name=name,
            status=PENDING,
            payload=copy.deepcopy(payload),
            attempts=0,
            max_attempts=max_attempts,
            created_at=ts,
            updated_at=ts,
        )
        with self._lock:
            self._jobs[job.id] = job
            return copy.deepcopy(job)

    def _update(self, job_id, **changes):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            for k, v in changes.items():
                setattr(job, k, v)
            job.updated_at = now_iso()

    def mark_running(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.status != PENDING:
                return False
            job.status = RUNNING
            job.updated_at = now_iso()
            return True

    def mark_done(self, job_id, result=None):
        self._update(job_id, status=DONE, result=copy.deepcopy(result))

    def mark_failed(self, job_id, error):
        self._update(job_id, status=FAILED, error=error)

    def mark_pending(self, job_id):
        self._update(job_id, status=PENDING)

    def inc_attempts(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            job.attempts += 1
            job.updated_at = now_iso()

    def reset_job_status(self, job_id, status):
        self._update(job_id, status=check_status(status))

    def list_jobs(self, status=None, limit=None, offset=0):
        wanted = set(normalize_statuses(status))
        with self._lock:
            # dict keeps insertion order, so reversing gives newest first
            jobs = [j for j in reversed(list(self._jobs.values()))
                    if not wanted or j.status in wanted]
            return copy.deepcopy(paginate(jobs, limit, offset))

    def get_job(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def _read_config(self):
        with self._lock:
            return dict(self._config)

    def _write_config(self, key, value):
        with self._lock:
            self._config[key] = value
