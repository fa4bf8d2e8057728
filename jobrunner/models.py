from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

from .errors import InvalidTransition
from .utils import now_iso

# Job States
PENDING = "pending"
RUNNING = "running"
DONE = "done"
FAILED = "failed"

STATES = (PENDING, RUNNING, DONE, FAILED)
TERMINAL_STATES = frozenset({DONE, FAILED})

# running -> pending covers both a scheduled retry and the recovery reset
TRANSITIONS = {
    PENDING: frozenset({RUNNING}),
    RUNNING: frozenset({DONE, FAILED, PENDING}),
    DONE: frozenset(),
    FAILED: frozenset(),
}

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class Job:
    id: str
    name: str
    status: str = PENDING
    payload: Any = None
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    result: Any = None
    error: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def can_transition(src: str, dst: str) -> bool:
    return dst in TRANSITIONS.get(src, frozenset())


def transition(job: Job, dst: str) -> Job:
    """
    Move `job` to `dst` in memory, refreshing `updated_at`.
    Raises InvalidTransition if the state table forbids the move.
    """
    if not can_transition(job.status, dst):
        raise InvalidTransition(job.id, job.status, dst)
    job.status = dst
    job.updated_at = now_iso()
    return job
