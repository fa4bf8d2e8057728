import uuid
from datetime import datetime, timezone


def now_iso() -> str:
    """UTC timestamp like '2025-11-06T09:12:34.123456Z'."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_job_id() -> str:
    return uuid.uuid4().hex


def normalize_statuses(status) -> tuple:
    """
    Accept None, a single status string or an iterable of statuses.
    Returns a tuple (empty means "no filter").
    """
    if status is None:
        return ()
    if isinstance(status, str):
        return (status,)
    return tuple(status)


def paginate(items: list, limit=None, offset: int = 0) -> list:
    start = offset or 0
    end = start + limit if limit is not None else None
    return items[start:end]
