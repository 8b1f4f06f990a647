import logging
import signal

import click

from wa_relay.config import load_settings


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _open_store(settings):
    from wa_relay.db import init_db, make_engine, make_session_factory
    from wa_relay.services.queue_store import SqlQueueStore

    engine = make_engine(settings.require_database_url())
    init_db(engine)
    return SqlQueueStore(make_session_factory(engine), default_max_attempts=settings.max_retries)


@click.group(help="wa-relay: WhatsApp notification relay server + queue bridge")
@click.pass_context
def cli(ctx):
    try:
        settings = load_settings()
    except RuntimeError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    _configure_logging(settings.log_level)
    ctx.obj = settings


# ---------- Relay server ----------
@cli.command("serve", help="Run the relay HTTP server (owns the WhatsApp transport)")
@click.pass_obj
def serve_cmd(settings):
    import uvicorn

    from wa_relay.main import create_app

    try:
        app = create_app(settings=settings)
    except RuntimeError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)

    click.secho(f"Relay server on http://{settings.host}:{settings.port}", fg="green")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


# ---------- Bridge ----------
@cli.command("bridge", help="Poll the queue and deliver pending jobs through the relay server")
@click.option("--once", is_flag=True, help="Run a single tick and exit")
@click.pass_obj
def bridge_cmd(settings, once):
    from wa_relay.services.bridge import Bridge
    from wa_relay.services.relay_client import RelayClient

    try:
        store = _open_store(settings)
    except RuntimeError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)

    relay = RelayClient(
        settings.relay_url,
        timeout=settings.http_timeout_seconds,
        probe_timeout=settings.probe_timeout_seconds,
    )
    bridge = Bridge.from_settings(settings, store, relay)

    if once:
        report = bridge.run_tick()
        click.echo(f"ready={report.ready} reconciled={report.reconciled} outcomes={report.outcomes}")
        return

    def _handler(signum, frame):
        logging.getLogger("bridge").info("Received signal %s, shutting down", signum)
        bridge.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)

    click.secho(f"Bridge monitoring queue via {settings.relay_url}", fg="green")
    bridge.startup_check(attempts=3, delay=settings.retry_delay_ms / 1000.0)
    bridge.run_forever()
    relay.close()


# ---------- Queue maintenance ----------
@cli.command("enqueue", help="Add a message to a scope's queue")
@click.option("--scope", required=True, help="Scope (owner) identifier")
@click.option("--to", "recipient", required=True, help="Recipient phone number")
@click.option("--message", "text", required=True, help="Message text")
@click.option("--max-attempts", default=None, type=int, help="Override MAX_RETRIES for this job")
@click.option("--type", "message_type", default=None, help="Free-form message type tag")
@click.pass_obj
def enqueue_cmd(settings, scope, recipient, text, max_attempts, message_type):
    from wa_relay.errors import StoreError

    try:
        job = _open_store(settings).enqueue(
            scope, recipient, text, max_attempts=max_attempts, message_type=message_type
        )
    except (RuntimeError, StoreError) as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    click.secho(f"Enqueued {scope}/{job.id} -> {recipient}", fg="green")


@cli.command("reset-failed", help="Move failed jobs back to pending")
@click.option("--scope", default=None, help="Only this scope (default: all)")
@click.option("--keep-attempts", is_flag=True, help="Do not zero the attempts counter")
@click.option(
    "--include-processing",
    is_flag=True,
    help="Also reset jobs stuck in processing (stop the bridge first)",
)
@click.pass_obj
def reset_failed_cmd(settings, scope, keep_attempts, include_processing):
    from wa_relay.errors import StoreError

    try:
        total = _open_store(settings).reset_failed(
            scope, reset_attempts=not keep_attempts, include_processing=include_processing
        )
    except (RuntimeError, StoreError) as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    click.echo(f"Total reset: {total} messages")


@cli.command("stats", help="Show job counts by status")
@click.option("--scope", default=None, help="Only this scope (default: all)")
@click.pass_obj
def stats_cmd(settings, scope):
    from wa_relay.errors import StoreError

    try:
        counts = _open_store(settings).counts(scope)
    except (RuntimeError, StoreError) as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    for status, n in counts.items():
        click.echo(f"{status:<11} {n}")


# ---------- Diagnostics ----------
@cli.command("diagnose", help="Verify configuration, database and relay connectivity")
@click.option("--require-relay", is_flag=True, help="Fail when the relay is not online and ready")
@click.pass_obj
def diagnose_cmd(settings, require_relay):
    from wa_relay.diagnostics import all_passed, run_checks

    results = run_checks(settings, require_relay=require_relay)
    for r in results:
        if r.ok:
            click.secho(f"[ok]   {r.name}: {r.detail}", fg="green")
        elif r.required:
            click.secho(f"[fail] {r.name}: {r.detail}", fg="red")
        else:
            click.secho(f"[warn] {r.name}: {r.detail}", fg="yellow")

    if not all_passed(results):
        raise SystemExit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
