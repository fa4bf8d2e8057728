import os
import sqlite3
from .config import DEFAULT_CONFIG

DB_FILE = os.environ.get("JOBRUNNER_DB", "jobs.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    status TEXT NOT NULL,
    payload TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    result TEXT,
    error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def connect_db(path: str = None):
    # one connection per operation keeps the store usable from worker threads
    conn = sqlite3.connect(path or DB_FILE, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: str = None):
    conn = connect_db(path)
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        with conn:
            conn.executescript(SCHEMA)
            # seed defaults
            for k, v in DEFAULT_CONFIG.items():
                conn.execute(
                    "INSERT OR IGNORE INTO config(key, value) VALUES(?,?)", (k, v)
                )
    finally:
        conn.close()
