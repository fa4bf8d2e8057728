import json
import logging
import click

from .config import RunnerSettings
from .db import DB_FILE
from .errors import JobRunnerError
from .filestore import FileStore, DIR_DEFAULT
from .models import STATES
from .repository import SQLiteStore
from .worker import SHELL_JOB, start_worker


def open_store(ctx):
    opts = ctx.obj
    if "store" not in opts:
        if opts["backend"] == "fs":
            opts["store"] = FileStore(opts["directory"])
        else:
            opts["store"] = SQLiteStore(opts["db"])
    return opts["store"]


def fail(e):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


@click.group(help="jobrunner — background job runner CLI")
@click.option("--backend", type=click.Choice(["sqlite", "fs"]), default="sqlite", show_default=True,
              help="Storage backend")
@click.option("--db", default=DB_FILE, show_default=True, help="SQLite file (sqlite backend)")
@click.option("--dir", "directory", default=DIR_DEFAULT, show_default=True,
              help="Data directory (fs backend)")
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def cli(ctx, backend, db, directory, log_level):
    logging.basicConfig(level=log_level.upper(), format="[%(threadName)s] %(message)s")
    ctx.obj = {"backend": backend, "db": db, "directory": directory}


# ---------- Enqueue ----------
@cli.command("enqueue", help="Add a shell-command job to the queue")
@click.option("--cmd", "command", required=True, help="Command to execute")
@click.option("--max-attempts", default=None, type=int, help="Override max attempt count")
@click.pass_context
def enqueue_cmd(ctx, command, max_attempts):
    try:
        if not command.strip():
            raise click.ClickException("Command cannot be empty.")
        store = open_store(ctx)
        settings = RunnerSettings.from_mapping(store.get_config())
        limit = settings.max_attempts if max_attempts is None else max_attempts
        if limit < 1:
            raise click.ClickException("--max-attempts must be >= 1")
        # stored only; a running worker claims it on its next poll
        job = store.create(SHELL_JOB, {"command": command}, limit)
        click.secho(f"Enqueued {job.id} -> `{command}` (max_attempts={limit})", fg="green")
    except (JobRunnerError, click.ClickException) as e:
        fail(e)


# ---------- Worker ----------
@cli.group("worker", help="Run the worker that executes jobs")
def worker_group():
    pass


@worker_group.command("start")
@click.option("--threads", type=int, default=1, show_default=True, help="Number of handler threads")
@click.option("--poll-interval", type=float, default=0.5, show_default=True,
              help="Seconds between checks for new jobs")
@click.option("--drain", is_flag=True, help="Exit once no job is pending or in flight")
@click.pass_context
def worker_start(ctx, threads, poll_interval, drain):
    click.secho(f"Starting worker with {threads} thread(s). Press Ctrl+C to stop…", fg="cyan")
    try:
        start_worker(open_store(ctx), threads=threads, poll_interval=poll_interval, drain=drain)
    except JobRunnerError as e:
        fail(e)
    click.secho("Worker stopped.", fg="yellow")


# ---------- Jobs ----------
@cli.command("list")
@click.option("--state", type=click.Choice(STATES), default=None)
@click.option("--limit", type=int, default=None)
@click.pass_context
def list_cmd(ctx, state, limit):
    try:
        jobs = open_store(ctx).list_jobs(status=state, limit=limit)
    except JobRunnerError as e:
        fail(e)

    if not jobs:
        click.echo("No jobs.")
        return

    for j in jobs:
        cmd = j.payload.get("command") if isinstance(j.payload, dict) else j.payload
        click.echo(
            f"{j.id:>32} | {j.status:<7} | attempts={j.attempts}/{j.max_attempts} "
            f"| name={j.name} | cmd={cmd} | error={j.error}"
        )


@cli.command("show")
@click.argument("job_id")
@click.pass_context
def show_cmd(ctx, job_id):
    try:
        job = open_store(ctx).get_job(job_id)
    except JobRunnerError as e:
        fail(e)
    if job is None:
        fail(f"Job {job_id} not found.")
    click.echo(json.dumps(job.to_dict(), indent=2))


@cli.command("status")
@click.pass_context
def status_cmd(ctx):
    try:
        found = open_store(ctx).counts()
    except JobRunnerError as e:
        fail(e)
    click.echo(json.dumps({s: found.get(s, 0) for s in STATES}, indent=2))


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_context
def config_get(ctx):
    try:
        click.echo(json.dumps(open_store(ctx).get_config(), indent=2))
    except JobRunnerError as e:
        fail(e)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx, key, value):
    try:
        open_store(ctx).set_config(key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except JobRunnerError as e:
        fail(e)


def main():
    cli()
