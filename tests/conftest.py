from collections import deque

import pytest

from jobrunner.filestore import FileStore
from jobrunner.repository import SQLiteStore
from jobrunner.runner import Runner
from jobrunner.storage import MemoryStore


class FakeScheduler:
    """Runs nothing until told to; records every retry delay."""

    def __init__(self):
        self.ready = deque()
        self.delayed = deque()
        self.delays = []
        self.closed = False

    def submit(self, fn, *args):
        self.ready.append((fn, args))

    def call_later(self, delay, fn, *args):
        self.delays.append(delay)
        self.delayed.append((fn, args))

    @property
    def delays_ms(self):
        return [round(d * 1000) for d in self.delays]

    def run_ready(self):
        while self.ready:
            fn, args = self.ready.popleft()
            fn(*args)

    def run_all(self):
        """Run ready work, then let each delay elapse in order until nothing is left."""
        self.run_ready()
        while self.delayed:
            self.ready.append(self.delayed.popleft())
            self.run_ready()

    def shutdown(self, wait=True):
        self.closed = True


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture(params=["memory", "sqlite", "fs"])
def store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteStore(str(tmp_path / "jobs.db"))
    if request.param == "fs":
        return FileStore(str(tmp_path / "data"))
    return MemoryStore()


@pytest.fixture
def runner(memory_store, scheduler):
    return Runner(memory_store, scheduler=scheduler)
