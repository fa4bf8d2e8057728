from .errors import (
    JobRunnerError, JobNotFound, HandlerNotFound, ConfigurationError,
    InvalidTransition, StorageError,
)
from .models import Job, PENDING, RUNNING, DONE, FAILED
from .runner import Runner
from .scheduler import Scheduler
from .storage import StorageAdapter, MemoryStore
from .repository import SQLiteStore
from .filestore import FileStore

__all__ = [
    "Runner", "Scheduler", "Job",
    "StorageAdapter", "MemoryStore", "SQLiteStore", "FileStore",
    "PENDING", "RUNNING", "DONE", "FAILED",
    "JobRunnerError", "JobNotFound", "HandlerNotFound", "ConfigurationError",
    "InvalidTransition", "StorageError",
]
