import json
from datetime import datetime

import click

from cmdqueue.cancel import Canceller
from cmdqueue.cli_utils import (
    JOB_HEADERS, STATUS_EMOJIS, STOP_FLAG, clear_stop, get_job_summary, job_row,
    print_job_table, request_stop, stop_requested, worker_activity,
)
from cmdqueue.config import AT_MOST_ONCE_MODES, Config
from cmdqueue.context import QueueContext
from cmdqueue.enqueue import Enqueuer
from cmdqueue.errors import JobNotFound, UnknownCommandType
from cmdqueue.handlers import load_handlers, register_default_handlers
from cmdqueue.logs import configure_logging
from cmdqueue.models import ErrorKind, JobStatus
from cmdqueue.registry import HandlerRegistry
from cmdqueue.retention import RetentionManager
from cmdqueue.waiter import ResultWaiter
from cmdqueue.worker import Dispatcher

EXIT_CODES = {
    ErrorKind.HANDLER: 2,
    ErrorKind.TIMEOUT: 3,
    ErrorKind.CANCELLED: 4,
}


def coerce_value(val: str):
    """Config values arrive as strings; store ints, floats and booleans as such."""
    try:
        return int(val)
    except ValueError:
        pass
    try:
        return float(val)
    except ValueError:
        pass
    if val.lower() in ("true", "false"):
        return val.lower() == "true"
    return val


def _queue(ctx) -> QueueContext:
    """Build the QueueContext on first use; config commands never touch the database."""
    obj = ctx.find_root().obj
    if obj.get("queue") is None:
        obj["queue"] = QueueContext(obj["config"], database_url=obj["database_url"])
        ctx.find_root().call_on_close(obj["queue"].close)
    return obj["queue"]


def _echo_outcome(outcome):
    if outcome.success:
        click.echo(f"✅ Job {outcome.job_id} completed: {outcome.result}")
        return 0
    click.echo(f"❌ Job {outcome.job_id} {outcome.error_kind.value}: {outcome.error}", err=True)
    return EXIT_CODES[outcome.error_kind]


@click.group()
@click.option("--config", "config_path", default=None, envvar="CMDQUEUE_CONFIG",
              help="Path to the JSON config file.")
@click.option("--db", "database_url", default=None, help="Database URL (overrides config).")
@click.pass_context
def cli(ctx, config_path, database_url):
    """Command dispatch queue between the admin panel and the bot worker."""
    config = Config(config_path)
    configure_logging(config.get("log_level"), config.get("log_format"))
    ctx.obj = {"config": config, "database_url": database_url, "queue": None}


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the command table."""
    queue = _queue(ctx)
    click.echo(f"Initialized DB at {queue.database.url}")


@cli.command()
@click.argument("command_type")
@click.argument("target_id")
@click.option("--params", default=None, help="JSON parameters for the handler.")
@click.option("--wait", is_flag=True, help="Block until the worker reports a result.")
@click.option("--timeout", type=float, default=None, help="Seconds to wait (with --wait).")
@click.pass_context
def enqueue(ctx, command_type, target_id, params, wait, timeout):
    """Queue COMMAND_TYPE against TARGET_ID."""
    try:
        parameters = json.loads(params) if params is not None else None
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--params")

    queue = _queue(ctx)
    try:
        job_id = Enqueuer(queue).enqueue(command_type, target_id, parameters)
    except ValueError as e:
        raise click.UsageError(str(e))
    click.echo(f"Enqueued job {job_id}: {command_type} -> {target_id}")

    if wait:
        outcome = ResultWaiter(queue).wait_for_result(job_id, timeout)
        ctx.exit(_echo_outcome(outcome))


@cli.command()
@click.argument("job_id", type=int)
@click.option("--timeout", type=float, default=None, help="Seconds to wait.")
@click.pass_context
def wait(ctx, job_id, timeout):
    """Wait for JOB_ID to finish."""
    try:
        outcome = ResultWaiter(_queue(ctx)).wait_for_result(job_id, timeout)
    except JobNotFound as e:
        raise click.ClickException(str(e))
    ctx.exit(_echo_outcome(outcome))


@cli.command()
@click.argument("job_id", type=int)
@click.option("--reason", default=None, help="Stored as the job result.")
@click.pass_context
def cancel(ctx, job_id, reason):
    """Cancel JOB_ID if the worker has not picked it up yet."""
    try:
        ok = Canceller(_queue(ctx)).cancel(job_id, reason)
    except JobNotFound as e:
        raise click.ClickException(str(e))
    if not ok:
        click.echo(f"Job {job_id} is no longer pending; not cancelled.", err=True)
        ctx.exit(1)
    click.echo(f"🚫 Job {job_id} cancelled.")


@cli.command()
@click.argument("job_id", type=int)
@click.pass_context
def show(ctx, job_id):
    """Print one job as JSON."""
    try:
        job = _queue(ctx).store.get(job_id)
    except JobNotFound as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(job.to_dict(), indent=2))


@cli.command("list")
@click.option("--status", type=click.Choice([s.value for s in JobStatus]), default=None)
@click.option("--limit", type=int, default=50)
@click.pass_context
def list_jobs(ctx, status, limit):
    """List recent jobs, newest first."""
    jobs = _queue(ctx).store.list_jobs(status=status, limit=limit)
    if not jobs:
        click.echo("No jobs found.")
        return
    click.echo(print_job_table(JOB_HEADERS, [job_row(j) for j in jobs]))


@cli.command()
@click.pass_context
def status(ctx):
    """Show job counts and worker activity."""
    queue = _queue(ctx)
    summary = get_job_summary(queue.store)
    activity = worker_activity(queue.store, float(queue.config.get("activity_window", 60)))

    click.echo(f"\n🕒 Status checked at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    click.echo("📊 Job Summary:")
    for state, count in summary.items():
        click.echo(f"  {STATUS_EMOJIS.get(state, '')} {state.capitalize():<12}: {count}")
    click.echo(f"🤖 Worker: {'online' if activity['online'] else 'offline'}"
               f" (last activity: {activity['last_activity'] or 'never'})")


@cli.command()
@click.option("--days", type=int, default=None, help="Age in days (default: retention_days).")
@click.pass_context
def cleanup(ctx, days):
    """Delete finished jobs older than DAYS."""
    try:
        deleted = RetentionManager(_queue(ctx)).cleanup_old_jobs(days)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--days")
    if deleted:
        click.echo(f"Cleaned up {deleted} old job(s).")
    else:
        click.echo("No old jobs to clean up.")


@cli.command()
@click.option("--output", type=click.File("w"), default="-", help="File to write (default stdout).")
@click.pass_context
def export(ctx, output):
    """Dump every job as JSON."""
    count = RetentionManager(_queue(ctx)).export_json(output)
    click.echo(f"Exported {count} job(s).", err=True)

# --- Worker ---

@cli.group()
def worker():
    """Run or stop the dispatcher."""


@worker.command()
@click.option("--handlers", "handler_specs", multiple=True,
              help="package.module:function that registers handlers. Repeatable.")
@click.option("--require", "required", multiple=True,
              help="Command type that must have a handler before starting. Repeatable.")
@click.option("--mode", type=click.Choice(AT_MOST_ONCE_MODES), default=None,
              help="At-most-once guarantee (default from config).")
@click.option("--interval", type=float, default=None, help="Seconds between ticks.")
@click.option("--stop-flag", default=STOP_FLAG, show_default=True)
@click.pass_context
def start(ctx, handler_specs, required, mode, interval, stop_flag):
    """Poll for pending jobs until stopped."""
    registry = register_default_handlers(HandlerRegistry())
    for spec in handler_specs:
        load_handlers(spec, registry)
    try:
        registry.validate(required)
    except UnknownCommandType as e:
        raise click.ClickException(f"Missing handlers: {e.command_type}")

    clear_stop(stop_flag)
    dispatcher = Dispatcher(_queue(ctx), registry, interval=interval, at_most_once=mode)
    click.echo(f"Worker started ({dispatcher.mode}, every {dispatcher.interval:g}s). "
               f"Press Ctrl+C or run 'cmdqueuectl worker stop'.")
    try:
        dispatcher.run_forever(lambda: stop_requested(stop_flag))
    except KeyboardInterrupt:
        click.echo("Stopping worker (KeyboardInterrupt). Waiting for running handlers...")
        dispatcher.stop()


@worker.command()
@click.option("--stop-flag", default=STOP_FLAG, show_default=True)
def stop(stop_flag):
    """Ask running workers to stop after the current tick."""
    request_stop(stop_flag)
    click.echo("Stop flag created. Running workers will stop after the current tick.")

# --- Config ---

@cli.group()
def config():
    """Show or change configuration."""


@config.command("show")
@click.pass_context
def config_show(ctx):
    for k, v in ctx.find_root().obj["config"].all().items():
        click.echo(f"{k}: {v}")


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key, value):
    v = coerce_value(value)
    try:
        ctx.find_root().obj["config"].set(key, v)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="VALUE")
    click.echo(f"✅ Set {key} = {v}")


if __name__ == "__main__":
    cli()
