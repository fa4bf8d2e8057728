import json
import os
import threading
from typing import Optional

from .errors import JobNotFound, StorageError
from .models import Job, PENDING, RUNNING, DONE, FAILED
from .storage import StorageAdapter, check_status
from .utils import now_iso, new_job_id, normalize_statuses, paginate

DIR_DEFAULT = os.environ.get("JOBRUNNER_DIR", "data")


class FileStore(StorageAdapter):
    """
    One JSON document per job under `<directory>/jobs/<id>.json`, config in
    `<directory>/config.json`. Writes go through a temp file and os.replace
    so a reader never sees a half-written job.
    """

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or DIR_DEFAULT
        self.jobs_dir = os.path.join(self.directory, "jobs")
        self.config_path = os.path.join(self.directory, "config.json")
        self._lock = threading.RLock()

    def _job_path(self, job_id: str) -> str:
        return os.path.join(self.jobs_dir, f"{job_id}.json")

    def _write_json(self, path: str, data) -> None:
        tmp = f"{path}.{threading.get_ident()}.tmp"
        try:
            text = json.dumps(data, indent=2)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot encode {path}: {e}") from e
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}") from e
        finally:
            # gone already after a successful replace
            try:
                os.remove(tmp)
            except FileNotFoundError:
                pass

    def _load(self, job_id: str) -> Optional[Job]:
        try:
            with open(self._job_path(job_id), encoding="utf-8") as fh:
                return Job.from_dict(json.load(fh))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read job {job_id}: {e}") from e

    def _save(self, job: Job) -> None:
        self._write_json(self._job_path(job.id), job.to_dict())

    def _update(self, job_id, **changes):
        with self._lock:
            job = self._load(job_id)
            if job is None:
                raise JobNotFound(job_id)
            for k, v in changes.items():
                setattr(job, k, v)
            job.updated_at = now_iso()
            self._save(job)

    # ---------- Jobs ----------
    def create(self, name, payload, max_attempts):
        ts = now_iso()
        job = Job(
            id=new_job_id(),
            name=name,
            status=PENDING,
            payload=payload,
            attempts=0,
            max_attempts=max_attempts,
            created_at=ts,
            updated_at=ts,
        )
        with self._lock:
            self._save(job)
        return job

    def mark_running(self, job_id):
        with self._lock:
            job = self._load(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.status != PENDING:
                return False
            job.status = RUNNING
            job.updated_at = now_iso()
            self._save(job)
            return True

    def mark_done(self, job_id, result=None):
        self._update(job_id, status=DONE, result=result)

    def mark_failed(self, job_id, error):
        self._update(job_id, status=FAILED, error=error)

    def mark_pending(self, job_id):
        self._update(job_id, status=PENDING)

    def inc_attempts(self, job_id):
        with self._lock:
            job = self._load(job_id)
            if job is None:
                raise JobNotFound(job_id)
            job.attempts += 1
            job.updated_at = now_iso()
            self._save(job)

    def reset_job_status(self, job_id, status):
        self._update(job_id, status=check_status(status))

    # ---------- Queries ----------
    def list_jobs(self, status=None, limit=None, offset=0):
        wanted = set(normalize_statuses(status))
        try:
            names = os.listdir(self.jobs_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Could not list {self.jobs_dir}: {e}") from e

        jobs = []
        for fname in names:
            if not fname.endswith(".json"):
                continue
            job = self._load(fname[: -len(".json")])
            # deleted between listdir and open
            if job is None:
                continue
            if wanted and job.status not in wanted:
                continue
            jobs.append(job)
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return paginate(jobs, limit, offset)

    def get_job(self, job_id):
        return self._load(job_id)

    # ---------- Config ----------
    def _read_config(self):
        try:
            with open(self.config_path, encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read {self.config_path}: {e}") from e

    def _write_config(self, key, value):
        with self._lock:
            cfg = self._read_config()
            cfg[key] = value
            self._write_json(self.config_path, cfg)
