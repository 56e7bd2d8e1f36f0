import json

import click

from .db import connect_db, db_path, init_db
from .errors import SubmissionError
from .handlers import default_registry, make_command_handler
from .logging_setup import setup_logging
from .models import PRIORITIES, STATES
from .registry import WorkerRegistry
from .repository import TaskRepository, get_config, load_settings, set_config
from .worker import import_handler_modules, start_workers


def _repo(conn) -> TaskRepository:
    return TaskRepository(conn)


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red")
    raise SystemExit(1)


@click.group(help="taskq - priority task queue CLI")
@click.option("--db", "db", default=None, envvar="TASKQ_DB", help="SQLite database file")
@click.option("--log-level", default=None, help="Console log level (default: $TASKQ_LOG_LEVEL or WARNING)")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Also write full logs here")
@click.pass_context
def cli(ctx, db, log_level, log_file):
    setup_logging(console_level=log_level.upper() if log_level else None, log_file=log_file)
    ctx.ensure_object(dict)
    ctx.obj["db"] = db or db_path()
    # Ensure DB/schema exist before any command runs
    init_db(ctx.obj["db"])


# ---------- Submit ----------
@cli.command("submit", help="Submit a new task")
@click.option("--type", "task_type", required=True, help="Task type (selects the handler)")
@click.option("--payload", default="{}", show_default=True, help="JSON object passed to the handler")
@click.option("--priority", type=click.Choice(PRIORITIES), default="normal", show_default=True)
@click.pass_context
def submit_cmd(ctx, task_type, payload, priority):
    try:
        data = json.loads(payload)
    except ValueError as e:
        _fail(f"--payload is not valid JSON ({e})")
    if not isinstance(data, dict):
        _fail("--payload must be a JSON object")

    conn = connect_db(ctx.obj["db"])
    try:
        task = _repo(conn).submit(task_type, data, priority)
        click.secho(f"Submitted {task.id} ({task.type}, priority={task.priority})", fg="green")
    except SubmissionError as e:
        _fail(str(e))
    finally:
        conn.close()


# ---------- Queries ----------
@cli.command("get", help="Show one task")
@click.argument("task_id")
@click.pass_context
def get_cmd(ctx, task_id):
    conn = connect_db(ctx.obj["db"])
    try:
        task = _repo(conn).get(task_id)
    finally:
        conn.close()
    if task is None:
        _fail(f"Task {task_id} not found.")
    click.echo(json.dumps(task.to_dict(), indent=2))


@cli.command("list", help="List tasks, newest first")
@click.option("--status", type=click.Choice(STATES), default=None)
@click.pass_context
def list_cmd(ctx, status):
    conn = connect_db(ctx.obj["db"])
    try:
        repo = _repo(conn)
        rows = repo.list_by_status(status) if status else repo.list_all()
    finally:
        conn.close()

    if not rows:
        click.echo("No tasks.")
        return

    for t in rows:
        click.echo(
            f"{t.id:>36} | {t.status:<10} | {t.priority:<6} | {t.type} "
            f"| retries={t.retry_count}/{t.max_retries} | worker={t.worker_id} "
            f"| {t.execution_time_ms}ms | error={t.error}"
        )


@cli.command("stats", help="Task counts and average execution time")
@click.pass_context
def stats_cmd(ctx):
    conn = connect_db(ctx.obj["db"])
    try:
        click.echo(json.dumps(_repo(conn).statistics(), indent=2))
    finally:
        conn.close()


@cli.command("workers", help="List workers seen recently")
@click.pass_context
def workers_cmd(ctx):
    conn = connect_db(ctx.obj["db"])
    try:
        settings = load_settings(conn)
        entries = WorkerRegistry(conn, ttl_seconds=settings.worker_ttl_seconds).list_active()
    finally:
        conn.close()

    if not entries:
        click.echo("No active workers.")
        return
    for w in entries:
        click.echo(f"{w.id} | {w.status:<6} | last_seen={w.last_seen}")


# ---------- Control ----------
def _control(ctx, task_id: str, action: str, verb: str):
    conn = connect_db(ctx.obj["db"])
    try:
        ok = getattr(_repo(conn), action)(task_id)
    finally:
        conn.close()
    if not ok:
        _fail(f"Task {task_id} not found or cannot be {verb}.")
    click.secho(f"Task {task_id} {verb}.", fg="green")


@cli.command("cancel")
@click.argument("task_id")
@click.pass_context
def cancel_cmd(ctx, task_id):
    _control(ctx, task_id, "cancel", "cancelled")


@cli.command("pause")
@click.argument("task_id")
@click.pass_context
def pause_cmd(ctx, task_id):
    _control(ctx, task_id, "pause", "paused")


@cli.command("resume")
@click.argument("task_id")
@click.pass_context
def resume_cmd(ctx, task_id):
    _control(ctx, task_id, "resume", "resumed")


@cli.command("retry", help="Re-queue a failed task with a fresh retry budget")
@click.argument("task_id")
@click.pass_context
def retry_cmd(ctx, task_id):
    _control(ctx, task_id, "retry", "re-queued")


@cli.command("delete")
@click.argument("task_id")
@click.pass_context
def delete_cmd(ctx, task_id):
    _control(ctx, task_id, "delete", "deleted")


@cli.command("purge", help="Drop expired task records and worker entries")
@click.pass_context
def purge_cmd(ctx):
    conn = connect_db(ctx.obj["db"])
    try:
        removed = _repo(conn).purge_expired()
    finally:
        conn.close()
    click.echo(f"Purged {removed} expired entries.")


# ---------- Workers ----------
@cli.group("worker", help="Manage workers")
def worker_group():
    pass


@worker_group.command("start")
@click.option("--count", type=int, default=1, show_default=True, help="Number of worker threads")
@click.option("--import", "modules", multiple=True, help="Module that registers extra handlers")
@click.pass_context
def worker_start(ctx, count, modules):
    db = ctx.obj["db"]
    conn = connect_db(db)
    try:
        settings = load_settings(conn)
    finally:
        conn.close()
    default_registry.register("command", make_command_handler(settings.timeout_seconds))
    try:
        import_handler_modules(modules)
    except ImportError as e:
        _fail(f"Cannot import handler module: {e}")

    click.secho(f"Starting {count} worker(s). Press Ctrl+C to stop…", fg="cyan")
    start_workers(count, db=db)
    click.secho("Workers stopped.", fg="yellow")


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_context
def config_get(ctx):
    conn = connect_db(ctx.obj["db"])
    try:
        click.echo(json.dumps(get_config(conn), indent=2))
    finally:
        conn.close()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx, key, value):
    conn = connect_db(ctx.obj["db"])
    try:
        set_config(conn, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        _fail(str(e))
    finally:
        conn.close()


def main():
    cli(obj={})
