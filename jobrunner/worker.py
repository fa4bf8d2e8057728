import logging
import shlex
import signal
import subprocess
import threading
import time

from .config import RunnerSettings
from .errors import JobRunnerError
from .models import PENDING
from .runner import Runner
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

SHELL_JOB = "shell"


def setup_signal_handlers(stop: threading.Event) -> dict:
    """Install SIGINT/SIGTERM handlers that set `stop`; returns the previous ones."""
    def _handler(signum, frame):
        logger.info("[Main] Received signal %s. Stopping worker", signum)
        stop.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:
            # not the main thread
            pass
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def run_shell_command(cmd: str, timeout: float = 20) -> dict:
    """
    Run `cmd` without a shell. Returns exit code, output and duration;
    raises RuntimeError on a non-zero exit, a timeout or a missing binary.
    """
    if not cmd or not cmd.strip():
        raise ValueError("Command cannot be empty.")
    args = shlex.split(cmd)
    started = time.monotonic()
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"Command timed out after {timeout}s: {cmd}")
    except FileNotFoundError:
        raise RuntimeError(f"Command not found: {cmd}")
    duration = round(time.monotonic() - started, 3)

    if result.stdout:
        logger.info(result.stdout.strip())
    if result.stderr:
        logger.info(result.stderr.strip())
    if result.returncode != 0:
        raise RuntimeError(f"exit_code={result.returncode}")
    return {
        "exit_code": result.returncode,
        "stdout": result.stdout,
        "duration_seconds": duration,
    }


def make_shell_handler(timeout: float):
    def handle(payload):
        return run_shell_command(payload["command"], timeout=timeout)
    return handle


def build_runner(store, threads: int = 1) -> Runner:
    settings = RunnerSettings.from_mapping(store.get_config())
    runner = Runner.from_config(store, scheduler=Scheduler(max_workers=threads, name="worker"))
    runner.register(SHELL_JOB, make_shell_handler(settings.timeout_seconds))
    runner.on("failed", lambda job: logger.warning(
        "[System] Job %s failed permanently after %d attempts: %s", job.id, job.attempts, job.error))
    runner.on("recover", lambda job: logger.info(
        "[System] Job %s was interrupted, resetting to pending", job.id))
    return runner


def worker_loop(runner: Runner, stop: threading.Event, poll_interval: float = 0.5,
                drain: bool = False) -> None:
    resumed = runner.recover()
    logger.info("[System] Resumed %d unfinished job(s).", resumed)

    while not stop.is_set():
        try:
            runner.claim_pending()
            if drain and runner.idle and not runner.list_jobs(status=PENDING, limit=1):
                logger.info("[System] Queue drained.")
                break
        except JobRunnerError as e:
            logger.error("[System] Unexpected error: %s", e)
        stop.wait(poll_interval)


def start_worker(store, threads: int = 1, poll_interval: float = 0.5, drain: bool = False) -> None:
    """Own job execution for `store` until signalled (or drained)."""
    stop = threading.Event()
    previous = setup_signal_handlers(stop)
    runner = build_runner(store, threads=threads)
    try:
        worker_loop(runner, stop, poll_interval=poll_interval, drain=drain)
    finally:
        stop.set()
        runner.shutdown(wait=True)
        restore_signal_handlers(previous)
        logger.info("[System] Worker stopped gracefully.")
