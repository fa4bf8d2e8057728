import json
import sqlite3
from contextlib import contextmanager
from typing import Dict, Optional

from .db import init_db, connect_db
from .errors import JobNotFound, StorageError
from .models import Job, PENDING, RUNNING, DONE, FAILED
from .storage import StorageAdapter, check_status
from .utils import now_iso, new_job_id, normalize_statuses


def row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        name=row["name"],
        status=row["status"],
        payload=json.loads(row["payload"]) if row["payload"] is not None else None,
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        result=json.loads(row["result"]) if row["result"] is not None else None,
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def encode_json(value, job_id=None) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Cannot encode data for job {job_id}: {e}") from e


class SQLiteStore(StorageAdapter):
    """Jobs and config in one SQLite file; each call opens its own connection."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        try:
            init_db(path)
        except sqlite3.Error as e:
            raise StorageError(f"DB error while initialising {path}: {e}") from e

    @contextmanager
    def _session(self):
        conn = connect_db(self.path)
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StorageError(f"DB error: {e}") from e
        finally:
            conn.close()

    def _update(self, job_id: str, sql: str, params: tuple = ()):
        with self._session() as conn:
            cur = conn.execute(
                f"UPDATE jobs SET {sql}, updated_at=? WHERE id=?",
                params + (now_iso(), job_id),
            )
            if cur.rowcount != 1:
                raise JobNotFound(job_id)

    # ---------- Jobs: create / transitions ----------
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
        with self._session() as conn:
            conn.execute(
                """INSERT INTO jobs
                   (id, name, status, payload, attempts, max_attempts, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (job.id, name, PENDING, encode_json(payload, job.id), 0, int(max_attempts), ts, ts),
            )
        return job

    def mark_running(self, job_id):
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE jobs SET status=?, updated_at=? WHERE id=? AND status=?",
                (RUNNING, now_iso(), job_id, PENDING),
            )
            if cur.rowcount == 1:
                return True
            if not conn.execute("SELECT 1 FROM jobs WHERE id=?", (job_id,)).fetchone():
                raise JobNotFound(job_id)
            return False

    def mark_done(self, job_id, result=None):
        encoded = encode_json(result, job_id) if result is not None else None
        self._update(job_id, "status=?, result=?", (DONE, encoded))

    def mark_failed(self, job_id, error):
        self._update(job_id, "status=?, error=?", (FAILED, error))

    def mark_pending(self, job_id):
        self._update(job_id, "status=?", (PENDING,))

    def inc_attempts(self, job_id):
        self._update(job_id, "attempts=attempts+1")

    def reset_job_status(self, job_id, status):
        self._update(job_id, "status=?", (check_status(status),))

    # ---------- Queries ----------
    def list_jobs(self, status=None, limit=None, offset=0):
        statuses = normalize_statuses(status)
        sql = "SELECT * FROM jobs"
        params = []
        if statuses:
            sql += f" WHERE status IN ({','.join('?' * len(statuses))})"
            params.extend(statuses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None or offset:
            sql += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else int(limit), int(offset or 0)])
        try:
            with self._session() as conn:
                rows = conn.execute(sql, params).fetchall()
        except StorageError as e:
            # table dropped or file replaced under us: treat as empty
            if "no such table" in str(e):
                return []
            raise
        return [row_to_job(r) for r in rows]

    def get_job(self, job_id):
        with self._session() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        return row_to_job(row) if row else None

    def counts(self) -> Dict[str, int]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(1) AS c FROM jobs GROUP BY status"
            ).fetchall()
        return {r["status"]: r["c"] for r in rows}

    # ---------- Config ----------
    def _read_config(self):
        with self._session() as conn:
            cur = conn.execute("SELECT key, value FROM config")
            return {r["key"]: r["value"] for r in cur.fetchall()}

    def _write_config(self, key, value):
        with self._session() as conn:
            conn.execute(
                "INSERT INTO config(key,value) VALUES(?,?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, str(value)),
            )
