"""Report generator - daily CSV exports and retention pruning.

Batch operations run from the CLI against the live database. Reads retry on
SQLite lock contention, and every CSV is written to a temporary file first
and renamed into place, so a failed run never leaves a partial report.
"""
import csv
import logging
import os
import tempfile
from datetime import date, datetime, time, timedelta
from typing import List, Sequence, Tuple

from ..utils.db_utils import retry_on_lock
from ..utils.time_utils import local_datetime_str
from .aggregation import MINUTE_MS, BucketAggregator, format_latency, format_ratio
from .correlation import DEFAULT_TOLERANCE_MS, CorrelationRow, FailureCorrelator
from .store import ProbeStore

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
MINUTES_PER_DAY = 1440

# Lock contention while the monitor keeps writing
REPORT_RETRIES = 5
REPORT_RETRY_DELAY = 2.0

DAILY_HEADER = ["minute", "target", "success_count", "total", "success_ratio", "avg_ms", "result"]


def day_bounds(day: date) -> Tuple[int, int]:
    """Epoch ms of local midnight starting `day` and 24 hours later."""
    start = datetime.combine(day, time.min).astimezone()
    start_ms = int(start.timestamp() * 1000)
    return start_ms, start_ms + DAY_MS


def yesterday() -> date:
    return date.today() - timedelta(days=1)


def daily_report_path(reports_dir: str, day: date) -> str:
    return os.path.join(reports_dir, f"ping-report-{day.isoformat()}.csv")


def failures_report_path(reports_dir: str, day: date) -> str:
    return os.path.join(reports_dir, f"ping-failures-{day.isoformat()}.csv")


def _write_csv_atomic(path: str, header: Sequence[str], rows) -> int:
    """Write rows to `path` through a temp file; returns the row count."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".inprogress-", suffix=".csv")
    count = 0
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(header)
            for row in rows:
                writer.writerow(row)
                count += 1
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return count


def daily_rows(buckets, start_ms: int, targets: Sequence[str]):
    """CSV rows of one day: every minute of the day for every target."""
    for minute in range(MINUTES_PER_DAY):
        bucket_start = start_ms + minute * MINUTE_MS
        for target in targets:
            bucket = buckets[(target, bucket_start)]
            yield [
                local_datetime_str(bucket_start),
                target,
                bucket.success_count,
                bucket.total,
                format_ratio(bucket),
                format_latency(bucket),
                bucket.state.value,
            ]


async def export_daily_csv(
    store: ProbeStore,
    day: date,
    targets: Sequence[str],
    reports_dir: str,
) -> Tuple[str, int]:
    """Write the per-minute health report of `day`.

    Produces exactly 1440 x len(targets) rows, including minutes without any
    sample. Returns the output path and the row count.
    """
    start_ms, _ = day_bounds(day)
    end_ms = start_ms + MINUTES_PER_DAY * MINUTE_MS

    async def collect() -> BucketAggregator:
        aggregator = BucketAggregator(start_ms, end_ms, MINUTE_MS, targets)
        async for batch in store.iter_probes_between(start_ms, end_ms, targets):
            aggregator.add_all(batch)
        return aggregator

    aggregator = await retry_on_lock(collect, max_retries=REPORT_RETRIES, base_delay=REPORT_RETRY_DELAY)
    logger.info(f"Exporting {aggregator.sample_count} samples for {day.isoformat()}")

    path = daily_report_path(reports_dir, day)
    count = _write_csv_atomic(path, DAILY_HEADER, daily_rows(aggregator.buckets(), start_ms, targets))
    logger.info(f"Wrote {path} ({count} rows)")
    return path, count


async def export_failures_csv(
    store: ProbeStore,
    day: date,
    primary: str,
    others: Sequence[str],
    reports_dir: str,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> Tuple[str, int]:
    """Write one row per failed ping of `primary` during `day`.

    Each row carries the state of every other target within
    +/- tolerance_ms of the failure.
    """
    start_ms, end_ms = day_bounds(day)

    async def collect() -> List[CorrelationRow]:
        correlator = FailureCorrelator(primary, others, start_ms, end_ms, tolerance_ms)
        async for batch in store.iter_probes_between(
            start_ms - tolerance_ms, end_ms + tolerance_ms + 1, [primary, *others]
        ):
            correlator.add_all(batch)
        return correlator.finish()

    correlation = await retry_on_lock(collect, max_retries=REPORT_RETRIES, base_delay=REPORT_RETRY_DELAY)

    header = ["datetime", primary, *others]
    rows = (
        [local_datetime_str(row.ts), row.primary_state.value]
        + [row.others[target].value for target in others]
        for row in correlation
    )
    path = failures_report_path(reports_dir, day)
    count = _write_csv_atomic(path, header, rows)
    logger.info(f"Wrote {path} ({count} failures of {primary}, tolerance {tolerance_ms}ms)")
    return path, count


async def prune_old_samples(
    store: ProbeStore,
    now_ms: int,
    ping_days: int = 7,
    trace_days: int = 14,
) -> Tuple[int, int]:
    """Delete pings older than `ping_days` and traceroutes older than `trace_days`."""
    return await retry_on_lock(
        lambda: store.prune(now_ms - ping_days * DAY_MS, now_ms - trace_days * DAY_MS),
        max_retries=REPORT_RETRIES,
        base_delay=REPORT_RETRY_DELAY,
    )
