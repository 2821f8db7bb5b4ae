"""Command-line entry point: run the monitor or produce batch reports."""
import asyncio
import logging
import os
from datetime import date, datetime
from typing import Optional

import click
from sqlalchemy.engine.url import make_url

from .config import get_database_url, settings
from .database import close_db
from .services import reports
from .services.store import probe_store
from .utils.time_utils import now_ms

logger = logging.getLogger(__name__)

DAY_TYPE = click.DateTime(formats=["%Y-%m-%d"])


def _day_or_yesterday(value: Optional[datetime]) -> date:
    return value.date() if value else reports.yesterday()


def _require_database():
    """Batch commands read an existing database; they never create one."""
    database = make_url(get_database_url()).database
    if not database or not os.path.exists(database):
        raise click.ClickException(f"Database not found at {database}")


def _run_batch(coro_factory):
    """Run a batch coroutine against the store and release the engine afterwards."""
    async def _main():
        try:
            return await coro_factory()
        finally:
            await close_db()

    try:
        return asyncio.run(_main())
    except click.ClickException:
        raise
    except Exception as e:
        logger.error(f"Batch job failed: {e}")
        raise click.ClickException(str(e)) from e


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--log-level", default=settings.log_level, show_default=True, help="Logging level.")
def main(log_level: str) -> None:
    """LAN monitor: ping/traceroute probes, dashboard API and CSV reports."""
    from .main import configure_logging

    configure_logging(log_level)


@main.command("serve")
@click.option("--host", default=settings.web_host, show_default=True)
@click.option("--port", default=settings.web_port, show_default=True, type=int)
def serve_cmd(host: str, port: int):
    """Start the probe scheduler and the HTTP API."""
    import uvicorn

    from .main import app

    click.echo(f"[serve] monitoring {len(settings.targets)} targets on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


@main.command("export-daily")
@click.argument("day", required=False, type=DAY_TYPE)
@click.option("--out-dir", default=settings.reports_dir, show_default=True, type=click.Path(file_okay=False))
def export_daily_cmd(day: Optional[datetime], out_dir: str):
    """Per-minute health CSV for DAY (YYYY-MM-DD, default yesterday)."""
    _require_database()
    target_day = _day_or_yesterday(day)
    path, count = _run_batch(
        lambda: reports.export_daily_csv(probe_store, target_day, settings.targets, out_dir)
    )
    click.echo(f"[export-daily] wrote {count} rows -> {path}")


@main.command("export-failures")
@click.argument("day", required=False, type=DAY_TYPE)
@click.option("--primary", default=settings.correlation_primary, show_default=True,
              help="Target whose failures are listed.")
@click.option("--tolerance-ms", default=settings.correlation_tolerance_ms, show_default=True, type=int,
              help="Window around each failure searched on the other targets.")
@click.option("--out-dir", default=settings.reports_dir, show_default=True, type=click.Path(file_okay=False))
def export_failures_cmd(day: Optional[datetime], primary: str, tolerance_ms: int, out_dir: str):
    """Failures of PRIMARY on DAY with the state of every other target."""
    if primary not in settings.targets:
        raise click.BadParameter(f"{primary} is not a configured target", param_hint="--primary")
    if tolerance_ms < 0:
        raise click.BadParameter("must not be negative", param_hint="--tolerance-ms")
    _require_database()

    target_day = _day_or_yesterday(day)
    others = settings.other_targets(primary)
    path, count = _run_batch(
        lambda: reports.export_failures_csv(
            probe_store, target_day, primary, others, out_dir, tolerance_ms
        )
    )
    click.echo(f"[export-failures] wrote {count} failures of {primary} -> {path}")


@main.command("prune")
@click.option("--ping-days", default=settings.ping_retention_days, show_default=True, type=int)
@click.option("--trace-days", default=settings.trace_retention_days, show_default=True, type=int)
def prune_cmd(ping_days: int, trace_days: int):
    """Delete samples older than the retention period."""
    _require_database()
    pings, traces = _run_batch(
        lambda: reports.prune_old_samples(probe_store, now_ms(), ping_days, trace_days)
    )
    click.echo(f"[prune] removed {pings} pings and {traces} traceroutes")


if __name__ == "__main__":
    main()
